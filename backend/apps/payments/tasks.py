import logging

from celery import Task, shared_task
from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.utils import timezone

from backend.core.exceptions import RailError
from backend.core.money import format_amount

logger = logging.getLogger(__name__)


class BaseEmailTask(Task):
    """
    Base task class for email operations with retry logic.
    """
    max_retries = 3
    default_retry_delay = 60  # 1 minute

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error(f"Task {task_id} failed: {exc}")
        super().on_failure(exc, task_id, args, kwargs, einfo)


@shared_task(
    name="payments.tasks.verify_chain_payment",
    bind=True,
    max_retries=5,
    default_retry_delay=60
)
def verify_chain_payment(self, transaction_id):
    """
    Verify a submitted BSC transaction hash and settle or fail the purchase.
    Unconfirmed transactions and unreachable nodes are retried.
    """
    from .rails.chain import verify_transaction

    try:
        tx = verify_transaction(transaction_id)
    except RailError as e:
        if not e.transient:
            logger.error(f"Chain verification of {transaction_id} failed: {e.detail}")
            return {'status': 'error', 'transaction_id': transaction_id, 'message': str(e.detail)}
        logger.warning(f"Chain verification of {transaction_id} deferred: {e.detail}")
        raise self.retry(exc=e)

    return {'status': tx.status, 'transaction_id': transaction_id}


@shared_task(name="payments.tasks.sweep_stuck_transactions")
def sweep_stuck_transactions():
    """Re-query rails for idle open purchases and flag those still unresolved."""
    from .reconciliation import sweep_stuck

    return sweep_stuck()


@shared_task(name="payments.tasks.send_purchase_receipt_email", base=BaseEmailTask)
def send_purchase_receipt_email(transaction_id):
    """Send a receipt when a purchase (or an installment payment) completes."""
    from .models import PurchaseTransaction

    try:
        tx = PurchaseTransaction.objects.select_related('user').get(transaction_id=transaction_id)
    except PurchaseTransaction.DoesNotExist:
        logger.error(f"Receipt requested for unknown transaction {transaction_id}")
        return {'status': 'error', 'message': 'Transaction not found'}

    if tx.status != PurchaseTransaction.Status.COMPLETED:
        return {'status': 'skipped', 'message': f'Transaction is {tx.status}'}

    user = tx.user
    amount = format_amount(tx.amount_minor, tx.currency)
    kind = "co-founder" if tx.kind == 'cofounder' else "regular"
    subject = f"Your AfriMobile share purchase {tx.transaction_id}"
    body = f"""
Dear {user.get_full_name() or user.email},

Your payment of {amount} has been confirmed.

Transaction: {tx.transaction_id}
Shares: {tx.shares} {kind}
Payment method: {tx.get_rail_display()}
Date: {(tx.completed_at or timezone.now()):%Y-%m-%d %H:%M} UTC

You can view your holdings at {settings.FRONTEND_URL}/dashboard.

Thank you for investing with AfriMobile.
"""
    email = EmailMultiAlternatives(
        subject=subject,
        body=body,
        from_email=settings.DEFAULT_FROM_EMAIL,
        to=[user.email],
        reply_to=[settings.SUPPORT_EMAIL],
    )
    email.send(fail_silently=False)

    logger.info(f"Purchase receipt sent to {user.email} for {tx.transaction_id}")
    return {
        'status': 'success',
        'message': f"Receipt sent to {user.email}",
        'transaction_id': tx.transaction_id,
    }
