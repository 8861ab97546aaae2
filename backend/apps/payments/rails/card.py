"""
Card rail (Paystack hosted checkout).

Checkout is initialised with the transaction id as the Paystack reference.
The browser return and the ``charge.*`` webhooks both end up in
``process_verification``, which asks Paystack for the authoritative charge
status before touching the ledger.
"""
import logging

from django.conf import settings

from backend.apps.shares.models import Currency
from backend.core.exceptions import ConflictingStateError, NotFoundError, RailError, SharePlatformValidationError
from backend.core.money import ISO_CODES

from .. import ledger
from ..evidence import CardEvidence, EvidenceMismatch
from ..models import PurchaseTransaction, Rail
from .base import build_session, send

logger = logging.getLogger(__name__)

RAIL = 'paystack'

# Paystack charge statuses that end the attempt
FAILED_STATUSES = {'failed', 'reversed'}


class PaystackClient:
    """Thin wrapper around the Paystack transaction API."""

    def __init__(self, secret_key=None, base_url=None, session=None):
        self.secret_key = secret_key or settings.PAYSTACK_SECRET_KEY
        self.base_url = (base_url or settings.PAYSTACK_BASE_URL).rstrip('/')
        self.session = session or build_session(allowed_methods=("GET", "POST"))

    def _headers(self):
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    def initialize(self, email, amount_minor, currency, reference, callback_url, metadata=None):
        payload = {
            "email": email,
            "amount": amount_minor,
            "currency": ISO_CODES[currency],
            "reference": reference,
            "callback_url": callback_url,
            "metadata": metadata or {},
        }
        data = send(self.session, "POST", f"{self.base_url}/transaction/initialize", RAIL,
                    json=payload, headers=self._headers())
        if not data.get('status'):
            raise RailError(data.get('message') or "Paystack initialization failed.", rail=RAIL)
        return data['data']

    def verify(self, reference):
        data = send(self.session, "GET", f"{self.base_url}/transaction/verify/{reference}", RAIL,
                    headers=self._headers())
        if not data.get('status'):
            raise RailError(f"Paystack verify returned error: {data.get('message')}", rail=RAIL)
        return data['data']


def get_client():
    return PaystackClient()


def callback_url():
    return f"{settings.FRONTEND_URL}/payments/verify"


def evidence_from_charge(charge):
    return CardEvidence(
        reference=charge.get('reference', ''),
        status=charge.get('status', ''),
        amount_minor=int(charge.get('amount') or 0),
        paid_at=charge.get('paid_at'),
        raw=charge,
    )


def begin_purchase(user, quote):
    """Create a card purchase and open a hosted checkout for it."""
    if quote.currency != Currency.NAIRA:
        raise SharePlatformValidationError("Card payments are only available in naira.")
    tx = ledger.create_transaction(user, quote, Rail.CARD, actor=user)
    PurchaseTransaction.objects.filter(pk=tx.pk).update(card_reference=tx.transaction_id)
    tx.card_reference = tx.transaction_id
    return start_checkout(tx)


def start_checkout(tx):
    """
    Initialise Paystack checkout for a pending card or installment
    transaction. Terminal gateway errors fail the transaction; transient
    ones leave it pending so the buyer can retry.
    """
    metadata = {
        "transaction_id": tx.transaction_id,
        "kind": tx.kind,
        "shares": tx.shares,
        "rail": tx.rail,
    }
    if tx.installment_plan_id:
        metadata["plan_id"] = tx.installment_plan.plan_id
    try:
        data = get_client().initialize(
            email=tx.user.email,
            amount_minor=tx.amount_minor,
            currency=tx.currency,
            reference=tx.card_reference,
            callback_url=callback_url(),
            metadata=metadata,
        )
    except RailError as e:
        if not e.transient:
            ledger.fail(tx.transaction_id, reason=f"Paystack init failed: {e.detail}")
        raise

    if data.get('reference') != tx.card_reference:
        logger.error(f"Paystack reference mismatch: expected {tx.card_reference}, got {data.get('reference')}")
        ledger.fail(tx.transaction_id, reason="Paystack reference mismatch")
        raise RailError("Payment gateway integrity error.", rail=RAIL)

    logger.info(f"Paystack checkout opened for {tx.transaction_id}")
    return {
        "transaction_id": tx.transaction_id,
        "authorization_url": data.get('authorization_url'),
        "access_code": data.get('access_code'),
        "reference": tx.card_reference,
        "amount_minor": tx.amount_minor,
        "currency": tx.currency,
    }


def process_verification(reference, actor=None):
    """
    Ask Paystack for the charge behind ``reference`` and move the ledger.
    Safe to call any number of times for the same reference.
    """
    try:
        tx = PurchaseTransaction.objects.get(card_reference=reference)
    except PurchaseTransaction.DoesNotExist:
        raise NotFoundError(f"No card payment with reference {reference}.")
    if tx.status == PurchaseTransaction.Status.COMPLETED:
        return tx
    if not tx.is_open:
        raise ConflictingStateError(f"Transaction {tx.transaction_id} is already {tx.status}.")

    charge = get_client().verify(reference)
    charge_status = charge.get('status')

    if charge_status == 'success':
        try:
            return ledger.settle(tx.transaction_id, evidence_from_charge(charge), actor=actor,
                                 reason="Paystack charge verified")
        except EvidenceMismatch as e:
            logger.error(f"Paystack evidence rejected for {tx.transaction_id}: {e.detail}")
            ledger.fail(tx.transaction_id, actor=actor, reason=str(e.detail))
            raise
    if charge_status in FAILED_STATUSES:
        reason = charge.get('gateway_response') or f"Paystack charge {charge_status}"
        return ledger.fail(tx.transaction_id, actor=actor, reason=reason)

    # abandoned / ongoing / pending: the buyer may still complete checkout
    logger.info(f"Paystack charge for {tx.transaction_id} is {charge_status}; leaving it {tx.status}")
    return tx


def handle_webhook_event(event, data):
    """Apply a verified ``charge.success`` or ``charge.failed`` webhook."""
    reference = data.get('reference')
    if event == 'charge.success':
        return process_verification(reference)
    try:
        tx = PurchaseTransaction.objects.get(card_reference=reference)
    except PurchaseTransaction.DoesNotExist:
        raise NotFoundError(f"No card payment with reference {reference}.")
    if not tx.is_open:
        return tx
    return ledger.fail(tx.transaction_id, reason=f"Paystack: {data.get('gateway_response', 'Payment failed')}")
