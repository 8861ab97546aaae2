"""
Invoice rail (Centiiv hosted invoices).

A purchase opens an order at Centiiv. The order's status comes back
through the signed webhook, the browser return, or an explicit status
sync; all three go through ``apply_provider_status``.
"""
import logging
from datetime import timedelta

from django.conf import settings
from django.utils import timezone

from backend.core.exceptions import NotFoundError, RailError
from backend.core.money import ISO_CODES, to_major

from .. import ledger
from ..evidence import EvidenceMismatch, InvoiceEvidence
from ..models import PurchaseTransaction, Rail
from .base import build_session, send

logger = logging.getLogger(__name__)

RAIL = 'centiiv'

Status = PurchaseTransaction.Status

STATUS_MAP = {
    'paid': Status.COMPLETED,
    'completed': Status.COMPLETED,
    'success': Status.COMPLETED,
    'cancelled': Status.FAILED,
    'expired': Status.FAILED,
    'failed': Status.FAILED,
    'processing': Status.VERIFYING,
    'pending': Status.VERIFYING,
}


def map_status(provider_status):
    return STATUS_MAP.get((provider_status or '').strip().lower())


class CentiivClient:
    def __init__(self, api_key=None, base_url=None, session=None):
        self.api_key = api_key or settings.CENTIIV_API_KEY
        self.base_url = (base_url or settings.CENTIIV_BASE_URL).rstrip('/')
        self.session = session or build_session(allowed_methods=("GET", "POST"))

    def _headers(self):
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def create_order(self, payload):
        data = send(self.session, "POST", f"{self.base_url}/order", RAIL,
                    json=payload, headers=self._headers())
        order = data.get('data') or {}
        if not order.get('id'):
            raise RailError("Centiiv did not return an order id.", rail=RAIL)
        return order

    def get_order(self, order_id):
        data = send(self.session, "GET", f"{self.base_url}/order/{order_id}", RAIL,
                    headers=self._headers())
        return data.get('data') or {}


def get_client():
    return CentiivClient()


def order_subject(tx):
    label = "Co-Founder" if tx.kind == 'cofounder' else "Regular"
    name = tx.user.get_full_name() or tx.user.email
    return f"AfriMobile {label} Share Purchase - {tx.shares} Shares for {name}"


def order_product(tx):
    label = "Co-Founder" if tx.kind == 'cofounder' else "Regular"
    return f"AfriMobile {label} Shares ({tx.shares} shares)"


def build_order_payload(tx):
    due = timezone.now().date() + timedelta(days=settings.CENTIIV_DEFAULT_DUE_DAYS)
    return {
        "amount": str(to_major(tx.amount_minor)),
        "currency": ISO_CODES[tx.currency],
        "subject": order_subject(tx),
        "product": order_product(tx),
        "customerEmail": tx.user.email,
        "customerName": tx.user.get_full_name(),
        "dueDate": due.isoformat(),
        "reminderInterval": settings.CENTIIV_REMINDER_INTERVAL_DAYS,
        "metadata": {
            "transactionId": tx.transaction_id,
            "kind": tx.kind,
            "shares": tx.shares,
        },
    }


def begin_purchase(user, quote):
    """Create a pending purchase and a hosted invoice for it."""
    tx = ledger.create_transaction(user, quote, Rail.INVOICE, actor=user)
    try:
        order = get_client().create_order(build_order_payload(tx))
    except RailError as e:
        # Without an order there is nothing to reconcile against later
        ledger.fail(tx.transaction_id, reason=f"Centiiv order creation failed: {e.detail}")
        raise

    PurchaseTransaction.objects.filter(pk=tx.pk).update(invoice_order_id=order['id'])
    tx.invoice_order_id = order['id']
    logger.info(f"Centiiv order {order['id']} created for {tx.transaction_id}")
    return {
        "transaction_id": tx.transaction_id,
        "order_id": order['id'],
        "invoice_url": order.get('payment_link') or order.get('url'),
        "amount_minor": tx.amount_minor,
        "currency": tx.currency,
    }


def _by_order(order_id):
    try:
        return PurchaseTransaction.objects.get(invoice_order_id=order_id, rail=Rail.INVOICE)
    except PurchaseTransaction.DoesNotExist:
        raise NotFoundError(f"No invoice payment for order {order_id}.")


def apply_provider_status(order_id, provider_status, payment_id="", actor=None, source="webhook"):
    """Translate a Centiiv order status into a ledger transition."""
    tx = _by_order(order_id)
    target = map_status(provider_status)
    if target is None:
        logger.warning(f"Unknown Centiiv status '{provider_status}' for order {order_id} ({source})")
        return tx

    if payment_id and not tx.invoice_payment_id:
        PurchaseTransaction.objects.filter(pk=tx.pk).update(invoice_payment_id=payment_id)
        tx.invoice_payment_id = payment_id

    if target == Status.COMPLETED:
        evidence = InvoiceEvidence(order_id=order_id, status=provider_status, payment_id=payment_id)
        try:
            return ledger.settle(tx.transaction_id, evidence, actor=actor, reason=f"Centiiv {source}: {provider_status}")
        except EvidenceMismatch as e:
            logger.error(f"Centiiv evidence rejected for {tx.transaction_id}: {e.detail}")
            raise
    if not tx.is_open:
        logger.info(f"Centiiv {source} '{provider_status}' ignored for {tx.transaction_id} ({tx.status})")
        return tx
    if target == Status.FAILED:
        return ledger.fail(tx.transaction_id, actor=actor, reason=f"Centiiv {source}: {provider_status}")
    if tx.status == Status.PENDING:
        return ledger.begin_verification(tx.transaction_id, actor=actor, reason=f"Centiiv {source}: {provider_status}")
    return tx


def sync_order(transaction_id, actor=None):
    """Re-query Centiiv for the order of ``transaction_id`` and apply its status."""
    tx = ledger.get_transaction(transaction_id)
    if tx.rail != Rail.INVOICE or not tx.invoice_order_id:
        raise NotFoundError(f"Transaction {transaction_id} has no invoice order.")
    order = get_client().get_order(tx.invoice_order_id)
    return apply_provider_status(
        tx.invoice_order_id,
        order.get('status'),
        payment_id=order.get('paymentId') or '',
        actor=actor,
        source="sync",
    )


def handle_callback(order_id):
    """
    Browser return from the hosted invoice. The query string is not signed,
    so the order is re-read from Centiiv instead of trusted.
    """
    tx = _by_order(order_id)
    return sync_order(tx.transaction_id)
