import logging

from celery import shared_task
from django.conf import settings

logger = logging.getLogger(__name__)


@shared_task(name="referrals.tasks.reconcile_referral_aggregates")
def reconcile_referral_aggregates():
    """
    Nightly comparison of referral aggregates with the entry ledger.
    Drift is rebuilt from entries only when REFERRAL_RECONCILE_REPAIR is on.
    """
    from .ledger import reconcile

    result = reconcile(repair=settings.SHARE_PLATFORM["REFERRAL_RECONCILE_REPAIR"])
    summary = {
        'checked': result['checked'],
        'drifted': len(result['drift']),
        'unreversed': len(result['unreversed_transactions']),
        'repaired': result['repaired'],
    }
    logger.info(f"Referral reconciliation: {summary}")
    return summary
