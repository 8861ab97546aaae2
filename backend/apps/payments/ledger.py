"""
Purchase ledger.

Every status change of a purchase goes through this module. Each entry
point locks the transaction row, re-checks the state inside the database
transaction and either applies the change with all of its side effects
(inventory counters, referral entries, installment plan) or raises and
leaves everything untouched.
"""
import logging

from django.db import transaction
from django.db.models import Count, Sum
from django.utils import timezone

from backend.apps.referrals.ledger import emit_commissions, reverse_commissions
from backend.apps.shares import inventory
from backend.apps.shares.models import CoFounderInventory, ShareKind
from backend.core.exceptions import (
    ConflictingStateError,
    NotFoundError,
    SharePlatformValidationError,
)
from backend.core.identifiers import plan_identifier, transaction_identifier

from .evidence import check_evidence
from .models import ALL_RAIL_FIELDS, RAIL_FIELDS, PurchaseTransaction, Rail

logger = logging.getLogger(__name__)

Status = PurchaseTransaction.Status


def _locked(transaction_id):
    try:
        return PurchaseTransaction.objects.select_for_update().get(transaction_id=transaction_id)
    except PurchaseTransaction.DoesNotExist:
        raise NotFoundError(f"Transaction {transaction_id} does not exist.")


def get_transaction(transaction_id, user=None):
    qs = PurchaseTransaction.objects.select_related("user", "installment_plan")
    if user is not None:
        qs = qs.filter(user=user)
    try:
        return qs.get(transaction_id=transaction_id)
    except PurchaseTransaction.DoesNotExist:
        raise NotFoundError(f"Transaction {transaction_id} does not exist.")


def _reject(tx, action):
    logger.warning(f"Rejected {action} on {tx.transaction_id}: status is {tx.status}")
    raise ConflictingStateError(
        f"Cannot {action} transaction {tx.transaction_id} while it is {tx.status}."
    )


# ----------------------------------------------------------------------
# Creation
# ----------------------------------------------------------------------

@transaction.atomic
def create_transaction(user, quote, rail, actor=None, installment_plan=None,
                       installment_number=None, admin_note="", metadata=None, **rail_fields):
    """
    Write a ``pending`` purchase for ``quote`` on ``rail``.

    ``rail_fields`` are the rail metadata columns (card reference, chain
    addresses, manual proof, ...). Only the columns belonging to ``rail``
    are accepted.
    """
    if rail not in Rail.values:
        raise SharePlatformValidationError(f"Unknown payment rail '{rail}'.")
    unknown = set(rail_fields) - ALL_RAIL_FIELDS
    if unknown:
        raise SharePlatformValidationError(f"Unknown fields: {', '.join(sorted(unknown))}.")
    foreign = set(rail_fields) - RAIL_FIELDS[rail]
    if foreign:
        raise SharePlatformValidationError(
            f"Fields {', '.join(sorted(foreign))} do not apply to {rail} payments."
        )
    if (rail == Rail.INSTALLMENT) != (installment_plan is not None):
        raise SharePlatformValidationError("Installment payments must reference their plan.")

    if rail == Rail.INSTALLMENT:
        identifier = plan_identifier(quote.kind)
    else:
        identifier = transaction_identifier(quote.kind)

    tx = PurchaseTransaction(
        transaction_id=identifier,
        user=user,
        kind=quote.kind,
        currency=quote.currency,
        shares=quote.quantity,
        amount_minor=quote.total_price_minor,
        price_per_share_minor=quote.price_per_share_minor,
        rail=rail,
        installment_plan=installment_plan,
        installment_number=installment_number,
        admin_note=admin_note,
        metadata=metadata or {},
        **rail_fields,
    )
    tx.set_tier_breakdown(quote.tier_breakdown)
    tx.save()
    tx.status_history.create(from_status="", to_status=Status.PENDING, actor=actor, reason="created")
    logger.info(
        f"Created {tx.transaction_id}: {tx.kind} x{tx.shares} {tx.amount_minor} {tx.currency} via {tx.rail}"
    )
    return tx


# ----------------------------------------------------------------------
# Transitions
# ----------------------------------------------------------------------

@transaction.atomic
def begin_verification(transaction_id, actor=None, reason="", **rail_fields):
    """Move a pending purchase to ``verifying``, optionally recording rail metadata."""
    tx = _locked(transaction_id)
    if tx.status == Status.VERIFYING and not rail_fields:
        return tx
    if tx.status != Status.PENDING:
        _reject(tx, "verify")
    foreign = set(rail_fields) - RAIL_FIELDS[tx.rail]
    if foreign:
        raise SharePlatformValidationError(
            f"Fields {', '.join(sorted(foreign))} do not apply to {tx.rail} payments."
        )
    for name, value in rail_fields.items():
        setattr(tx, name, value)
    tx.record_transition(Status.VERIFYING, actor=actor, reason=reason)
    tx.verification_started_at = timezone.now()
    tx.stuck_since = None
    tx.save()
    logger.info(f"{tx.transaction_id} is verifying ({tx.rail})")
    return tx


def settle(transaction_id, evidence, actor=None, reason=""):
    """
    Complete a purchase. Inventory, installment plan and referral entries
    move in the same database transaction as the status change.

    Settling an already completed purchase is a no-op and returns it
    unchanged, so duplicate callbacks are harmless.
    """
    with transaction.atomic():
        tx = _locked(transaction_id)
        if tx.status == Status.COMPLETED:
            logger.info(f"{tx.transaction_id} already completed; settle ignored")
            return tx
        if not tx.is_open:
            _reject(tx, "settle")

        check_evidence(tx, evidence)

        if tx.rail == Rail.INSTALLMENT:
            from backend.apps.installments.engine import apply_settled_payment
            apply_settled_payment(tx)
        else:
            inventory.commit(tx.kind, tx.shares, tx.tier_breakdown)

        now = timezone.now()
        tx.record_transition(Status.COMPLETED, actor=actor, reason=reason)
        tx.completed_at = now
        tx.stuck_since = None
        if actor is not None and getattr(actor, "is_admin", False):
            tx.verified_by = actor
        tx.save()

        emit_commissions(tx)

        from .tasks import send_purchase_receipt_email
        transaction.on_commit(lambda: send_purchase_receipt_email.delay(tx.transaction_id))

    logger.info(f"Settled {tx.transaction_id}: {tx.kind} x{tx.shares} for {tx.amount_minor} {tx.currency}")
    return tx


@transaction.atomic
def fail(transaction_id, actor=None, reason=""):
    tx = _locked(transaction_id)
    if tx.status == Status.FAILED:
        return tx
    if not tx.is_open:
        _reject(tx, "fail")
    tx.record_transition(Status.FAILED, actor=actor, reason=reason)
    if actor is not None and getattr(actor, "is_admin", False):
        tx.verified_by = actor
    tx.save()
    logger.info(f"{tx.transaction_id} failed: {reason}")
    return tx


@transaction.atomic
def cancel(transaction_id, actor=None, reason=""):
    tx = _locked(transaction_id)
    if tx.status == Status.CANCELLED:
        return tx
    if not tx.is_open:
        _reject(tx, "cancel")
    tx.record_transition(Status.CANCELLED, actor=actor, reason=reason)
    tx.save()
    logger.info(f"{tx.transaction_id} cancelled: {reason}")
    return tx


@transaction.atomic
def refund(transaction_id, actor=None, reason=""):
    """
    Reverse a completed purchase: give the shares back to inventory and
    write compensating referral entries.
    """
    tx = _locked(transaction_id)
    if tx.status == Status.REFUNDED:
        return tx
    if tx.status != Status.COMPLETED:
        _reject(tx, "refund")
    if tx.rail == Rail.INSTALLMENT:
        raise ConflictingStateError("Installment payments are handled through their plan and cannot be refunded.")

    inventory.release(tx.kind, tx.shares, tx.tier_breakdown)
    reverse_commissions(tx, actor=actor, reason=reason)
    tx.record_transition(Status.REFUNDED, actor=actor, reason=reason)
    tx.refunded_at = timezone.now()
    tx.save()
    logger.info(f"Refunded {tx.transaction_id}: {tx.shares} {tx.kind} shares released")
    return tx


# ----------------------------------------------------------------------
# Reads
# ----------------------------------------------------------------------

def holdings(user):
    """Shares owned through completed purchases, per kind."""
    totals = dict(
        PurchaseTransaction.objects.filter(user=user, status=Status.COMPLETED)
        .order_by()
        .values_list("kind")
        .annotate(total=Sum("shares"))
    )
    regular = totals.get(ShareKind.REGULAR, 0) or 0
    cofounder = totals.get(ShareKind.COFOUNDER, 0) or 0
    ratio = CoFounderInventory.load().share_to_regular_ratio
    return {
        "regular": regular,
        "cofounder": cofounder,
        "equivalent_regular": regular + cofounder * ratio,
    }


def purchase_report():
    """Completed purchase totals grouped by kind, currency and rail."""
    rows = (
        PurchaseTransaction.objects.filter(status=Status.COMPLETED)
        .values("kind", "currency", "rail")
        .annotate(count=Count("id"), shares=Sum("shares"), amount_minor=Sum("amount_minor"))
        .order_by("kind", "currency", "rail")
    )
    return {
        "rows": list(rows),
        "pending": PurchaseTransaction.objects.filter(status__in=PurchaseTransaction.OPEN_STATUSES).count(),
        "refunded": PurchaseTransaction.objects.filter(status=Status.REFUNDED).count(),
    }
