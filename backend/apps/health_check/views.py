import logging
import sys
from datetime import datetime

from celery import current_app as celery_app
from django.conf import settings
from django.db import connections
from django.db.utils import OperationalError
from drf_spectacular.utils import extend_schema
from kombu.exceptions import OperationalError as BrokerError
from redis import Redis
from redis.exceptions import RedisError
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from backend.apps.accounts.permissions import IsAdmin
from backend.apps.payments.models import PurchaseTransaction
from backend.apps.shares.inventory import inventory_statistics

logger = logging.getLogger(__name__)


def _check_database():
    try:
        db_conn = connections['default']
        with db_conn.cursor() as cursor:
            cursor.execute('SELECT 1')
            cursor.fetchone()
        return {'status': 'ok', 'details': {'backend': db_conn.vendor}}
    except OperationalError as e:
        logger.exception('Database health check failed')
        return {'status': 'unavailable', 'details': {'error': str(e)}}


def _check_redis():
    try:
        client = Redis.from_url(settings.REDIS_URL, socket_connect_timeout=2, socket_timeout=2)
        client.ping()
        return {'status': 'ok', 'details': {'version': client.info().get('redis_version', 'unknown')}}
    except RedisError as e:
        logger.warning(f'Redis health check failed: {e}')
        return {'status': 'unavailable', 'details': {'error': str(e)}}


def _check_celery():
    try:
        conn = celery_app.connection()
        conn.ensure_connection(max_retries=1)
        conn.close()
        workers = celery_app.control.inspect(timeout=1).ping() or {}
    except (BrokerError, OSError) as e:
        logger.warning(f'Celery health check failed: {e}')
        return {'status': 'unavailable', 'details': {'error': str(e)}}
    if not workers:
        return {'status': 'degraded', 'details': {'workers': 0, 'note': 'No active workers found.'}}
    return {'status': 'ok', 'details': {'workers': len(workers), 'hostnames': list(workers)}}


def _check_ledger():
    """Inventory counters within capacity and the count of flagged purchases."""
    stats = inventory_statistics()
    oversold = [
        tier['tier'] for tier in stats['tiers'] if tier['sold'] > tier['capacity']
    ]
    stuck = PurchaseTransaction.objects.filter(
        stuck_since__isnull=False, status__in=PurchaseTransaction.OPEN_STATUSES
    ).count()
    status = 'ok'
    if oversold:
        status = 'unavailable'
    elif stuck:
        status = 'degraded'
    return {'status': status, 'details': {'oversold_tiers': oversold, 'stuck_transactions': stuck}}


def collect_health_data():
    start_time = datetime.now()
    components = {
        'database': _check_database(),
        'redis': _check_redis(),
        'celery': _check_celery(),
    }
    if components['database']['status'] == 'ok':
        components['ledger'] = _check_ledger()

    overall_status = 'ok'
    if any(c['status'] != 'ok' for c in components.values()):
        overall_status = 'degraded'

    return {
        'timestamp': datetime.now().isoformat(),
        'status': overall_status,
        'components': components,
        'summary': {
            'response_time_ms': round((datetime.now() - start_time).total_seconds() * 1000, 2),
            'environment': 'development' if settings.DEBUG else 'production',
            'python_version': sys.version.split()[0],
        },
    }


@extend_schema(exclude=True)
class LivenessView(APIView):
    """Load balancer probe: the process is up and the database answers."""
    authentication_classes = []
    permission_classes = [AllowAny]

    def get(self, request):
        database = _check_database()
        status_code = 200 if database['status'] == 'ok' else 503
        return Response({'status': database['status']}, status=status_code)


class HealthDetailView(APIView):
    permission_classes = [IsAdmin]

    def get(self, request):
        health_data = collect_health_data()
        status_code = 200 if health_data['status'] == 'ok' else 503
        return Response(health_data, status=status_code)
