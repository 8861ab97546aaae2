"""
Referral commission ledger.

Commissions are written only when a purchase settles and taken back only
when a completed purchase is refunded. Both run inside the purchase
ledger's transaction so entries and aggregates commit with the status change.
"""
import logging

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.db.models import BigIntegerField, Case, F, Sum, When

from backend.core.exceptions import (
    ConflictingStateError,
    LedgerIntegrityError,
    NotFoundError,
    SharePlatformValidationError,
)
from backend.core.money import percent_of

from .models import GENERATIONS, EntryKind, ReferralAggregate, ReferralEntry

logger = logging.getLogger(__name__)

User = get_user_model()

Status = ReferralEntry.Status

_SIGNED_AMOUNT = Case(
    When(status=Status.COMPLETED, then=F("amount_minor")),
    default=-F("amount_minor"),
    output_field=BigIntegerField(),
)


def commission_rates():
    return {int(g): rate for g, rate in settings.SHARE_PLATFORM["REFERRAL_RATES"].items()}


def upline(user, depth=3):
    """
    ``[(generation, beneficiary), ...]`` for up to ``depth`` hops above
    ``user``. Stops at the first missing link or at a user already seen.
    """
    chain = []
    seen = {user.pk}
    current = user
    for generation in range(1, depth + 1):
        referrer_id = current.referred_by_id
        if referrer_id is None or referrer_id in seen:
            break
        current = User.objects.get(pk=referrer_id)
        seen.add(current.pk)
        chain.append((generation, current))
    return chain


def _locked_aggregate(user_id):
    ReferralAggregate.objects.get_or_create(user_id=user_id)
    return ReferralAggregate.objects.select_for_update().get(user_id=user_id)


def _net_by_source(beneficiary_id, generation):
    return (
        ReferralEntry.objects.filter(beneficiary_id=beneficiary_id, generation=generation)
        .exclude(source_user__isnull=True)
        .order_by()
        .values("source_user")
        .annotate(net=Sum(_SIGNED_AMOUNT))
    )


def _referral_count(beneficiary_id, generation):
    """Distinct source users with net positive commission at a generation."""
    return sum(1 for row in _net_by_source(beneficiary_id, generation) if row["net"] > 0)


def _apply_delta(aggregate, generation, delta):
    earnings_field = f"gen{generation}_earnings_minor"
    new_earnings = getattr(aggregate, earnings_field) + delta
    new_total = aggregate.total_earnings_minor + delta
    if new_earnings < 0 or new_total < 0:
        raise LedgerIntegrityError(
            f"Referral earnings of user {aggregate.user_id} would go negative at generation {generation}."
        )
    setattr(aggregate, earnings_field, new_earnings)
    aggregate.total_earnings_minor = new_total
    setattr(aggregate, f"gen{generation}_count", _referral_count(aggregate.user_id, generation))
    aggregate.save()


# ----------------------------------------------------------------------
# Emission and rollback
# ----------------------------------------------------------------------

def emit_commissions(tx):
    """
    Credit the buyer's upline for a settled purchase. Must run inside the
    settle transaction. A second call for the same purchase writes nothing.
    """
    if tx.amount_minor <= 0:
        return []
    if ReferralEntry.objects.filter(source_transaction=tx, status=Status.COMPLETED).exists():
        logger.warning(f"Commissions for {tx.transaction_id} already exist, skipping")
        return []

    rates = commission_rates()
    entries = []
    for generation, beneficiary in upline(tx.user):
        amount = percent_of(tx.amount_minor, rates.get(generation, 0))
        if amount <= 0:
            continue
        entry = ReferralEntry.objects.create(
            beneficiary=beneficiary,
            source_user=tx.user,
            source_transaction=tx,
            generation=generation,
            purchase_kind=tx.kind,
            amount_minor=amount,
            currency=tx.currency,
            status=Status.COMPLETED,
        )
        _apply_delta(_locked_aggregate(beneficiary.pk), generation, amount)
        entries.append(entry)
        logger.info(
            f"Referral commission: {beneficiary.email} gen{generation} +{amount} {tx.currency} from {tx.transaction_id}"
        )
    return entries


def reverse_commissions(tx, actor=None, reason=""):
    """
    Write a compensating ``reversed`` entry for every commission the
    purchase earned and take the amounts back off the aggregates.
    """
    reason = reason or f"Purchase {tx.transaction_id} reversed"
    reversals = []
    originals = (
        ReferralEntry.objects.select_for_update(of=("self",))
        .filter(source_transaction=tx, status=Status.COMPLETED, reversal__isnull=True)
        .order_by("generation")
    )
    for entry in originals:
        reversal = ReferralEntry.objects.create(
            beneficiary_id=entry.beneficiary_id,
            source_user_id=entry.source_user_id,
            source_transaction=tx,
            generation=entry.generation,
            purchase_kind=entry.purchase_kind,
            amount_minor=entry.amount_minor,
            currency=entry.currency,
            status=Status.REVERSED,
            reverses=entry,
            adjusted_by=actor,
            reason=reason,
        )
        _apply_delta(_locked_aggregate(entry.beneficiary_id), entry.generation, -entry.amount_minor)
        reversals.append(reversal)
        logger.info(
            f"Referral commission reversed: user {entry.beneficiary_id} gen{entry.generation} "
            f"-{entry.amount_minor} {entry.currency} for {tx.transaction_id}"
        )
    return reversals


# ----------------------------------------------------------------------
# Admin adjustments
# ----------------------------------------------------------------------

def adjust_entry(entry_id, admin, reason, amount_minor=None, status=None):
    """
    Edit one entry's amount or status in place. The first original amount
    is kept and the beneficiary's aggregate is rebuilt from entries.
    """
    if not reason:
        raise SharePlatformValidationError("A reason is required for referral adjustments.")
    if amount_minor is None and status is None:
        raise SharePlatformValidationError("Nothing to adjust.")
    if amount_minor is not None and amount_minor < 0:
        raise SharePlatformValidationError("Amount cannot be negative.")
    if status is not None and status not in Status.values:
        raise SharePlatformValidationError(f"Unknown referral status '{status}'.")

    with transaction.atomic():
        try:
            entry = ReferralEntry.objects.select_for_update().get(pk=entry_id)
        except ReferralEntry.DoesNotExist:
            raise NotFoundError(f"Referral entry {entry_id} does not exist.")
        if entry.original_amount_minor is None:
            entry.original_amount_minor = entry.amount_minor
        if amount_minor is not None:
            entry.amount_minor = amount_minor
        if status is not None:
            entry.status = status
        entry.adjusted_by = admin
        entry.reason = reason
        try:
            with transaction.atomic():
                entry.save()
        except IntegrityError:
            raise ConflictingStateError("Another entry already holds that status for this purchase and generation.")
        _rebuild(entry.beneficiary_id)
    logger.info(f"Admin {admin.id} adjusted referral entry {entry.pk}: {reason}")
    return entry


def create_adjustment(beneficiary, amount_minor, currency, admin, reason, generation=1):
    """
    Ad-hoc credit (positive amount) or debit (negative amount) not tied to
    any purchase.
    """
    if not reason:
        raise SharePlatformValidationError("A reason is required for referral adjustments.")
    if amount_minor == 0:
        raise SharePlatformValidationError("Adjustment amount cannot be zero.")
    if generation not in GENERATIONS:
        raise SharePlatformValidationError("Generation must be 1, 2 or 3.")

    with transaction.atomic():
        aggregate = _locked_aggregate(beneficiary.pk)
        entry = ReferralEntry.objects.create(
            beneficiary=beneficiary,
            generation=generation,
            purchase_kind=EntryKind.ADJUSTMENT,
            amount_minor=abs(amount_minor),
            currency=currency,
            status=Status.COMPLETED if amount_minor > 0 else Status.REVERSED,
            adjusted_by=admin,
            reason=reason,
        )
        _apply_delta(aggregate, generation, amount_minor)
    logger.info(f"Admin {admin.id} created referral adjustment {amount_minor} {currency} for {beneficiary.email}")
    return entry


# ----------------------------------------------------------------------
# Projection rebuild and reconciliation
# ----------------------------------------------------------------------

def expected_aggregate(user_id):
    """Aggregate values computed from the entries alone."""
    sums = dict(
        ReferralEntry.objects.filter(beneficiary_id=user_id)
        .order_by()
        .values_list("generation")
        .annotate(net=Sum(_SIGNED_AMOUNT))
    )
    values = {}
    for g in GENERATIONS:
        values[f"gen{g}_earnings_minor"] = sums.get(g) or 0
        values[f"gen{g}_count"] = _referral_count(user_id, g)
    values["total_earnings_minor"] = sum(values[f"gen{g}_earnings_minor"] for g in GENERATIONS)
    return values


def _rebuild(user_id):
    values = expected_aggregate(user_id)
    if any(values[f"gen{g}_earnings_minor"] < 0 for g in GENERATIONS):
        raise LedgerIntegrityError(f"Referral entries of user {user_id} sum to a negative balance.")
    aggregate = _locked_aggregate(user_id)
    for field, value in values.items():
        setattr(aggregate, field, value)
    aggregate.save()
    return aggregate


def _users_with_referral_data():
    ids = set(ReferralEntry.objects.order_by().values_list("beneficiary_id", flat=True).distinct())
    ids.update(ReferralAggregate.objects.values_list("user_id", flat=True))
    return ids


def sync_stats(user=None):
    """Rebuild aggregates from entries for one user, or for everyone."""
    user_ids = [user.pk] if user is not None else _users_with_referral_data()
    synced = 0
    for user_id in user_ids:
        with transaction.atomic():
            _rebuild(user_id)
        synced += 1
    logger.info(f"Referral stats synced for {synced} users")
    return {"synced": synced}


def reconcile(strict=False, repair=False):
    """
    Compare every aggregate with its entries and every refunded purchase
    with its reversals. ``strict`` raises on any finding; ``repair``
    rebuilds drifted aggregates.
    """
    drift = []
    aggregates = {a.user_id: a for a in ReferralAggregate.objects.all()}
    for user_id in _users_with_referral_data():
        expected = expected_aggregate(user_id)
        aggregate = aggregates.get(user_id)
        actual = {field: getattr(aggregate, field, 0) for field in expected}
        diff = {
            field: {"expected": expected[field], "actual": actual[field]}
            for field in expected
            if expected[field] != actual[field]
        }
        if diff:
            drift.append({"user_id": str(user_id), "fields": diff})

    unreversed = list(
        ReferralEntry.objects.filter(
            status=Status.COMPLETED,
            reversal__isnull=True,
            source_transaction__status="refunded",
        ).order_by().values_list("source_transaction__transaction_id", flat=True).distinct()
    )

    result = {
        "checked": len(aggregates),
        "drift": drift,
        "unreversed_transactions": unreversed,
        "repaired": 0,
    }
    if drift or unreversed:
        logger.error(f"Referral reconciliation found {len(drift)} drifted aggregates and {len(unreversed)} unreversed refunds")
        if strict:
            raise LedgerIntegrityError(
                f"Referral aggregates drifted for {len(drift)} users; {len(unreversed)} refunds not reversed."
            )
        if repair:
            for item in drift:
                with transaction.atomic():
                    _rebuild(item["user_id"])
                result["repaired"] += 1
    else:
        logger.info(f"Referral reconciliation clean over {len(aggregates)} aggregates")
    return result


# ----------------------------------------------------------------------
# Read side
# ----------------------------------------------------------------------

def referral_tree(user):
    """The user's downline by generation."""
    lookups = {1: "referred_by", 2: "referred_by__referred_by", 3: "referred_by__referred_by__referred_by"}
    tree = {}
    for g in GENERATIONS:
        members = (
            User.objects.filter(**{lookups[g]: user})
            .exclude(pk=user.pk)
            .order_by("date_joined")
            .values("id", "email", "first_name", "last_name", "referral_code", "date_joined")
        )
        members = list(members)
        tree[f"gen{g}"] = {"count": len(members), "members": members}
    return tree


def user_earnings(user, recent=20):
    aggregate = ReferralAggregate.objects.filter(user=user).first() or ReferralAggregate(user=user)
    entries = (
        ReferralEntry.objects.filter(beneficiary=user)
        .select_related("source_user", "source_transaction")
        [:recent]
    )
    return {"totals": aggregate.as_dict(), "recent_entries": list(entries)}
