import os

from celery import Celery
from celery.schedules import crontab
from kombu import Queue

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'backend.config.settings.development')

app = Celery('afrimobile')

# Configure Celery using Django settings
app.config_from_object('django.conf:settings', namespace='CELERY')

# Auto-discover tasks from all registered Django apps
app.autodiscover_tasks()

# Explicit queues: rail verification must not wait behind bulk maintenance work
app.conf.task_queues = (
    Queue('default'),
    Queue('payments'),
    Queue('emails'),
    Queue('maintenance'),
)

app.conf.task_default_queue = 'default'
app.conf.task_default_exchange = 'default'
app.conf.task_default_routing_key = 'default'

# Enforce JSON serialization for security and compatibility
app.conf.task_serializer = 'json'
app.conf.result_serializer = 'json'
app.conf.accept_content = ['json']

# Periodic tasks (Celery Beat schedule)
app.conf.beat_schedule = {
    # Re-query rails for transactions stuck in pending/verifying
    'sweep-stuck-transactions': {
        'task': 'payments.tasks.sweep_stuck_transactions',
        'schedule': crontab(minute='*/30'),
        'options': {'queue': 'payments'}
    },

    # Daily late-fee assessment for installment plans
    'apply-installment-late-fees': {
        'task': 'installments.tasks.apply_late_fees',
        'schedule': crontab(hour=0, minute=30),
        'options': {'queue': 'maintenance'}
    },

    'send-installment-reminders': {
        'task': 'installments.tasks.send_installment_reminders',
        'schedule': crontab(hour=8, minute=0),
        'options': {'queue': 'emails'}
    },

    # Nightly comparison of referral aggregates against the entry ledger
    'reconcile-referral-aggregates': {
        'task': 'referrals.tasks.reconcile_referral_aggregates',
        'schedule': crontab(hour=3, minute=0),
        'options': {'queue': 'maintenance'}
    },
}

# Order matters: more specific patterns must come before generic ones.
app.conf.task_routes = {
    'payments.tasks.send_*': {'queue': 'emails'},
    'payments.tasks.*': {'queue': 'payments'},
    'installments.tasks.send_*': {'queue': 'emails'},
    'installments.tasks.*': {'queue': 'maintenance'},
    'referrals.tasks.*': {'queue': 'maintenance'},
}

app.conf.task_time_limit = 300  # 5 minutes max
app.conf.task_soft_time_limit = 240
app.conf.result_expires = 3600

# Tasks touching money are acknowledged only after they finish
app.conf.task_acks_late = True
app.conf.task_reject_on_worker_lost = True

app.conf.broker_transport_options = {
    'visibility_timeout': 3600,
    'socket_connect_timeout': 5,
    'retry_on_timeout': True,
}


@app.task(bind=True, name='health_check')
def health_check(self):
    """Health check task for monitoring."""
    return {
        'status': 'healthy',
        'timestamp': self.request.timestamp,
        'worker': self.request.hostname,
        'queues': [q.name for q in app.conf.task_queues],
    }
