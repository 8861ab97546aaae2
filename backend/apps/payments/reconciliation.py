"""
Stuck-transaction sweep.

Open purchases idle past their threshold are re-queried at their rail.
Whatever is still open afterwards is flagged with ``stuck_since`` for an
administrator; nothing is failed automatically.
"""
import logging
from datetime import timedelta

from django.conf import settings
from django.db.models import Q
from django.utils import timezone
from rest_framework.exceptions import APIException

from .models import PurchaseTransaction, Rail
from .rails import card, chain, invoice

logger = logging.getLogger(__name__)

Status = PurchaseTransaction.Status


def idle_transactions(now=None):
    now = now or timezone.now()
    config = settings.SHARE_PLATFORM
    pending_cutoff = now - timedelta(hours=config["PENDING_IDLE_HOURS"])
    verifying_cutoff = now - timedelta(hours=config["VERIFYING_IDLE_HOURS"])
    return (
        PurchaseTransaction.objects.filter(
            Q(status=Status.PENDING, created_at__lt=pending_cutoff)
            | Q(status=Status.VERIFYING, verification_started_at__lt=verifying_cutoff)
            | Q(status=Status.VERIFYING, verification_started_at__isnull=True, created_at__lt=verifying_cutoff)
        )
        .select_related("user")
        .order_by("created_at")
    )


def requery(tx):
    """Ask the rail about ``tx`` again. Rails without a query API are left alone."""
    if tx.card_reference and tx.rail in (Rail.CARD, Rail.INSTALLMENT):
        return card.process_verification(tx.card_reference)
    if tx.rail == Rail.INVOICE and tx.invoice_order_id:
        return invoice.sync_order(tx.transaction_id)
    if tx.rail == Rail.CHAIN and tx.chain_tx_hash:
        return chain.verify_transaction(tx.transaction_id)
    return tx


def sweep_stuck(now=None):
    now = now or timezone.now()
    summary = {"checked": 0, "resolved": 0, "stuck": 0, "errors": 0}

    for tx in idle_transactions(now):
        summary["checked"] += 1
        try:
            requery(tx)
        except APIException as e:
            summary["errors"] += 1
            logger.error(f"Re-query of {tx.transaction_id} via {tx.rail} failed: {e.detail}")

        tx.refresh_from_db()
        if not tx.is_open:
            summary["resolved"] += 1
            continue
        summary["stuck"] += 1
        if tx.stuck_since is None:
            PurchaseTransaction.objects.filter(pk=tx.pk, stuck_since__isnull=True).update(stuck_since=now)
            logger.warning(f"{tx.transaction_id} ({tx.rail}) is stuck in {tx.status} since {tx.created_at}")

    logger.info(f"Stuck transaction sweep: {summary}")
    return summary
