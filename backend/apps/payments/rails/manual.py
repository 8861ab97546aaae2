"""
Manual rail: bank transfer, cash or other off-platform payment, proven by
an uploaded receipt and adjudicated by an administrator.
"""
import logging

from django.conf import settings

from backend.core.exceptions import SharePlatformValidationError

from .. import ledger
from ..evidence import AdminApproval
from ..models import ManualMethod, PurchaseTransaction, Rail

logger = logging.getLogger(__name__)


def proof_fields(proof_url, method=ManualMethod.BANK, bank_name="", account_name="", reference=""):
    if not proof_url:
        raise SharePlatformValidationError("Payment proof is required for manual payments.")
    if method not in ManualMethod.values:
        raise SharePlatformValidationError(f"Unknown payment method '{method}'.")
    return {
        "manual_proof_url": proof_url,
        "manual_method": method,
        "manual_bank_name": bank_name or "",
        "manual_account_name": account_name or "",
        "manual_reference": reference or "",
    }


def begin_purchase(user, quote, proof_url, method=ManualMethod.BANK, bank_name="",
                   account_name="", reference=""):
    """Record a manual payment with its proof and queue it for admin review."""
    fields = proof_fields(proof_url, method, bank_name, account_name, reference)
    tx = ledger.create_transaction(user, quote, Rail.MANUAL, actor=user, **fields)
    tx = ledger.begin_verification(tx.transaction_id, actor=user, reason="Payment proof submitted")
    return {
        "transaction_id": tx.transaction_id,
        "status": tx.status,
        "amount_minor": tx.amount_minor,
        "currency": tx.currency,
        "bank_details": settings.MANUAL_PAYMENT_BANK_DETAILS,
    }


def approve(transaction_id, admin, note=""):
    tx = ledger.settle(transaction_id, AdminApproval(admin=admin, note=note), actor=admin,
                       reason=note or "Manual payment approved")
    if note:
        PurchaseTransaction.objects.filter(pk=tx.pk).update(admin_note=note)
        tx.admin_note = note
    return tx


def reject(transaction_id, admin, reason=""):
    return ledger.fail(transaction_id, actor=admin, reason=reason or "Manual payment rejected")


def cancel_approval(transaction_id, admin, reason=""):
    """Undo a previous approval. Same effect as a refund."""
    logger.info(f"Cancelling approval of {transaction_id} by {admin}")
    return ledger.refund(transaction_id, actor=admin, reason=reason or "Approval cancelled")
