"""
Installment engine.

A plan reserves nothing. Each payment is a ledger transaction on the
``installment`` rail; when it settles, ``apply_settled_payment`` moves the
plan forward and commits the shares the cumulative payment has earned.
"""
import logging
from decimal import Decimal

from dateutil.relativedelta import relativedelta
from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from backend.apps.payments import ledger
from backend.apps.payments.models import ManualMethod, PurchaseTransaction, Rail
from backend.apps.shares import inventory
from backend.apps.shares.inventory import PRICE_PER_SHARE_QUANTUM, Quote, empty_breakdown
from backend.apps.shares.models import TIER_NUMBERS, Currency, ShareKind
from backend.core.exceptions import (
    ConflictingStateError,
    LedgerIntegrityError,
    NotFoundError,
    SharePlatformValidationError,
)
from backend.core.identifiers import plan_identifier
from backend.core.money import percent_of, split_evenly

from .models import Installment, InstallmentPayment, InstallmentPlan

logger = logging.getLogger(__name__)

PlanStatus = InstallmentPlan.Status

# User-facing plans are for a single share
PLAN_SHARES = 1


def plan_rules(kind):
    rules = settings.SHARE_PLATFORM["INSTALLMENT_RULES"][kind]
    return {
        "min_down_payment_pct": Decimal(rules["MIN_DOWN_PAYMENT_PCT"]),
        "late_fee_rate_pct": Decimal(rules["LATE_FEE_RATE_PCT"]),
        "late_fee_cap_pct": Decimal(rules["LATE_FEE_CAP_PCT"]),
    }


def _validate_months(months):
    low = settings.SHARE_PLATFORM["INSTALLMENT_MIN_MONTHS"]
    high = settings.SHARE_PLATFORM["INSTALLMENT_MAX_MONTHS"]
    if isinstance(months, bool) or not isinstance(months, int) or not low <= months <= high:
        raise SharePlatformValidationError(f"Installment months must be between {low} and {high}.")


def due_dates(start, months):
    """Monthly due dates keeping the start's day of month, clamped to month end."""
    start_date = start.date() if hasattr(start, "date") else start
    return [start_date + relativedelta(months=n) for n in range(1, months + 1)]


def build_schedule(total_price_minor, months, start):
    amounts = split_evenly(total_price_minor, months)
    return [
        {
            "number": n,
            "scheduled_amount_minor": amount,
            "due_date": due,
            "is_first_payment": n == 1,
        }
        for n, (amount, due) in enumerate(zip(amounts, due_dates(start, months)), start=1)
    ]


def calculate_plan(kind, currency, months, quantity=PLAN_SHARES, start=None):
    """Preview a plan without saving anything."""
    _validate_months(months)
    quote = inventory.quote(kind, quantity, currency)
    rules = plan_rules(kind)
    start = start or timezone.now()
    return {
        "kind": kind,
        "currency": currency,
        "months": months,
        "total_shares": quantity,
        "total_price_minor": quote.total_price_minor,
        "tier_breakdown": quote.as_dict()["tier_breakdown"],
        "min_down_payment_minor": percent_of(quote.total_price_minor, rules["min_down_payment_pct"]),
        "min_down_payment_pct": str(rules["min_down_payment_pct"]),
        "late_fee_rate_pct": str(rules["late_fee_rate_pct"]),
        "late_fee_cap_minor": percent_of(quote.total_price_minor, rules["late_fee_cap_pct"]),
        "installments": [
            {**row, "due_date": row["due_date"].isoformat()}
            for row in build_schedule(quote.total_price_minor, months, start)
        ],
    }


@transaction.atomic
def create_plan(user, kind, currency, months, quantity=PLAN_SHARES, start=None):
    _validate_months(months)
    if InstallmentPlan.objects.filter(user=user, kind=kind, status__in=InstallmentPlan.OPEN_STATUSES).exists():
        raise ConflictingStateError("You already have an open installment plan for these shares.")

    quote = inventory.quote(kind, quantity, currency)
    rules = plan_rules(kind)
    start = start or timezone.now()
    plan = InstallmentPlan(
        plan_id=plan_identifier(kind),
        user=user,
        kind=kind,
        currency=currency,
        months=months,
        total_shares=quantity,
        total_price_minor=quote.total_price_minor,
        min_down_payment_minor=percent_of(quote.total_price_minor, rules["min_down_payment_pct"]),
        late_fee_rate_pct=rules["late_fee_rate_pct"],
        late_fee_cap_pct=rules["late_fee_cap_pct"],
        created_at=start,
    )
    for number in TIER_NUMBERS:
        setattr(plan, f"tier{number}_shares", quote.tier_breakdown.get(number, 0))
    try:
        with transaction.atomic():
            plan.save()
    except IntegrityError:
        raise ConflictingStateError("You already have an open installment plan for these shares.")

    Installment.objects.bulk_create([
        Installment(plan=plan, **row) for row in build_schedule(plan.total_price_minor, months, start)
    ])
    logger.info(f"Created installment plan {plan.plan_id} for {user}: {kind} {plan.total_price_minor} {currency} over {months} months")
    return plan


def get_plan(plan_id, user=None):
    qs = InstallmentPlan.objects.all()
    if user is not None:
        qs = qs.filter(user=user)
    try:
        return qs.get(plan_id=plan_id)
    except InstallmentPlan.DoesNotExist:
        raise NotFoundError(f"Installment plan {plan_id} does not exist.")


def _check_amount(plan, amount_minor):
    if isinstance(amount_minor, bool) or not isinstance(amount_minor, int) or amount_minor <= 0:
        raise SharePlatformValidationError("Payment amount must be a positive amount.")
    if amount_minor > plan.remaining_balance_minor:
        raise SharePlatformValidationError(
            f"Payment exceeds the remaining balance of {plan.remaining_balance_minor}."
        )
    if plan.total_paid_minor == 0 and amount_minor < plan.min_down_payment_minor:
        raise SharePlatformValidationError(
            f"First payment must be at least {plan.min_down_payment_minor}."
        )


# ----------------------------------------------------------------------
# Payments
# ----------------------------------------------------------------------

def start_payment(plan_id, user, amount_minor, method="card", proof=None):
    """
    Open a ledger transaction for the next payment on a plan.
    ``method`` is ``card`` (Paystack checkout) or ``manual`` (uploaded proof).
    """
    from backend.apps.payments.rails import card, manual

    with transaction.atomic():
        try:
            plan = InstallmentPlan.objects.select_for_update().get(plan_id=plan_id, user=user)
        except InstallmentPlan.DoesNotExist:
            raise NotFoundError(f"Installment plan {plan_id} does not exist.")
        if not plan.is_open:
            raise ConflictingStateError(f"Plan {plan.plan_id} is {plan.status}.")
        _check_amount(plan, amount_minor)
        if plan.transactions.filter(status__in=PurchaseTransaction.OPEN_STATUSES).exists():
            raise ConflictingStateError("A payment for this plan is already in progress.")
        if method == "card" and plan.currency != Currency.NAIRA:
            raise SharePlatformValidationError("Card payments are only available in naira.")

        installment = plan.installments.exclude(status=Installment.Status.PAID).order_by("number").first()
        number = installment.number if installment else plan.months
        quote = Quote(
            kind=plan.kind,
            currency=plan.currency,
            quantity=0,
            total_price_minor=amount_minor,
            price_per_share_minor=(Decimal(plan.total_price_minor) / plan.total_shares).quantize(PRICE_PER_SHARE_QUANTUM),
            tier_breakdown=empty_breakdown(),
        )
        if method == "manual":
            proof = proof or {}
            fields = manual.proof_fields(
                proof.get("proof_url"),
                proof.get("method", ManualMethod.BANK),
                proof.get("bank_name", ""),
                proof.get("account_name", ""),
                proof.get("reference", ""),
            )
        elif method == "card":
            fields = {}
        else:
            raise SharePlatformValidationError(f"Unsupported installment payment method '{method}'.")

        tx = ledger.create_transaction(
            user, quote, Rail.INSTALLMENT, actor=user,
            installment_plan=plan, installment_number=number,
            metadata={"plan_id": plan.plan_id}, **fields,
        )
    logger.info(f"Installment payment {tx.transaction_id} of {amount_minor} started on {plan.plan_id} ({method})")
    if method == "manual":
        tx = ledger.begin_verification(tx.transaction_id, actor=user, reason="Payment proof submitted")
        return {"transaction_id": tx.transaction_id, "status": tx.status, "plan_id": plan.plan_id}

    PurchaseTransaction.objects.filter(pk=tx.pk).update(card_reference=tx.transaction_id)
    tx.card_reference = tx.transaction_id
    return {**card.start_checkout(tx), "plan_id": plan.plan_id}


def release_targets(plan, total_paid_minor):
    """
    Shares per tier earned by ``total_paid_minor``. Each tier gets its
    floored proportional share; shares still owed to reach the overall
    floor go to the lowest tiers that have room.
    """
    overall = (plan.total_shares * total_paid_minor) // plan.total_price_minor
    breakdown = plan.tier_breakdown
    targets = {n: (breakdown[n] * total_paid_minor) // plan.total_price_minor for n in TIER_NUMBERS}
    shortfall = overall - sum(targets.values())
    for number in TIER_NUMBERS:
        if shortfall <= 0:
            break
        extra = min(shortfall, breakdown[number] - targets[number])
        targets[number] += extra
        shortfall -= extra
    return overall, targets


def apply_settled_payment(tx):
    """
    Apply a settling installment transaction to its plan. Runs inside the
    ledger's settle transaction; sets ``tx.shares`` and the tier split to
    the shares this payment releases.
    """
    plan = InstallmentPlan.objects.select_for_update().get(pk=tx.installment_plan_id)
    if not plan.is_open:
        raise ConflictingStateError(f"Plan {plan.plan_id} is {plan.status}.")
    amount = tx.amount_minor
    _check_amount(plan, amount)

    now = timezone.now()
    new_total = plan.total_paid_minor + amount
    overall, targets = release_targets(plan, new_total)
    delta_shares = overall - plan.shares_released

    if plan.kind == ShareKind.COFOUNDER:
        delta_breakdown = empty_breakdown()
    else:
        released = plan.tier_released
        delta_breakdown = {n: targets[n] - released[n] for n in TIER_NUMBERS}
        if any(v < 0 for v in delta_breakdown.values()) or sum(delta_breakdown.values()) != delta_shares:
            raise LedgerIntegrityError(f"Share release for plan {plan.plan_id} went backwards.")
    if delta_shares < 0:
        raise LedgerIntegrityError(f"Share release for plan {plan.plan_id} went backwards.")

    if delta_shares:
        inventory.commit(plan.kind, delta_shares, delta_breakdown)

    tx.shares = delta_shares
    tx.set_tier_breakdown(delta_breakdown)

    plan.total_paid_minor = new_total
    plan.shares_released = overall
    if plan.kind != ShareKind.COFOUNDER:
        for number in TIER_NUMBERS:
            setattr(plan, f"tier{number}_released", targets[number])
    plan.last_payment_at = now
    plan.current_late_fee_minor = 0
    plan.months_late = 0
    if new_total == plan.total_price_minor:
        plan.status = PlanStatus.COMPLETED
        plan.completed_at = now
    else:
        plan.status = PlanStatus.ACTIVE
    plan.save()

    InstallmentPayment.objects.create(
        plan=plan,
        transaction_id=tx.transaction_id,
        amount_minor=amount,
        shares_released=delta_shares,
        total_paid_after_minor=new_total,
        paid_at=now,
    )
    _allocate_to_schedule(plan, amount, tx.transaction_id, now)
    logger.info(
        f"Plan {plan.plan_id}: paid {amount}, total {new_total}/{plan.total_price_minor}, "
        f"released {delta_shares} (now {overall}/{plan.total_shares}), status {plan.status}"
    )
    return plan


def _allocate_to_schedule(plan, amount, transaction_id, paid_at):
    """Fill scheduled installments in order with a flexible-amount payment."""
    remaining = amount
    for installment in plan.installments.exclude(status=Installment.Status.PAID).order_by("number"):
        if remaining <= 0:
            break
        applied = min(remaining, installment.outstanding_minor)
        installment.paid_amount_minor += applied
        installment.paid_at = paid_at
        installment.transaction_id = transaction_id
        installment.status = (
            Installment.Status.PAID if installment.outstanding_minor == 0 else Installment.Status.PARTIAL
        )
        installment.save(update_fields=["paid_amount_minor", "paid_at", "transaction_id", "status"])
        remaining -= applied


# ----------------------------------------------------------------------
# Late fees and cancellation
# ----------------------------------------------------------------------

def assess_late_fee(plan, now):
    """
    Late fee owed by ``plan`` at ``now``, or ``None`` when it is not late.
    Returns ``(months_late, fee_minor)``.
    """
    if plan.total_paid_minor >= plan.total_price_minor:
        return None
    since = max(plan.last_payment_at or plan.created_at, plan.created_at)
    days = (now - since).days
    grace = settings.SHARE_PLATFORM["INSTALLMENT_GRACE_DAYS"]
    if days <= grace:
        return None
    months_late = days // grace
    raw_fee = percent_of(plan.remaining_balance_minor, months_late * plan.late_fee_rate_pct)
    cap = percent_of(plan.total_price_minor, plan.late_fee_cap_pct)
    return months_late, min(raw_fee, cap)


def apply_late_fees(now=None):
    """Late-payment sweep over open plans. Safe to run repeatedly."""
    now = now or timezone.now()
    summary = {"checked": 0, "late": 0, "fees_changed": 0}
    plan_ids = list(
        InstallmentPlan.objects.filter(status__in=InstallmentPlan.OPEN_STATUSES).values_list("pk", flat=True)
    )
    for pk in plan_ids:
        with transaction.atomic():
            plan = InstallmentPlan.objects.select_for_update().get(pk=pk)
            if not plan.is_open:
                continue
            summary["checked"] += 1
            assessment = assess_late_fee(plan, now)
            plan.last_late_check_at = now
            if assessment is None:
                plan.save(update_fields=["last_late_check_at", "updated_at"])
                continue
            months_late, fee = assessment
            # Fees never go down until the next payment resets them
            fee = max(fee, plan.current_late_fee_minor)
            if fee != plan.current_late_fee_minor:
                summary["fees_changed"] += 1
            plan.current_late_fee_minor = fee
            plan.months_late = max(months_late, plan.months_late)
            plan.status = PlanStatus.LATE
            plan.save()
            summary["late"] += 1
            logger.info(f"Plan {plan.plan_id} is {months_late} months late, fee {fee}")
    logger.info(f"Late fee sweep: {summary}")
    return summary


def cancel_plan(plan_id, actor, reason="", user=None):
    """
    Cancel an open plan once the minimum down payment has been made.
    Released shares stay with the owner; in-flight payments are cancelled.
    """
    with transaction.atomic():
        qs = InstallmentPlan.objects.select_for_update()
        if user is not None:
            qs = qs.filter(user=user)
        try:
            plan = qs.get(plan_id=plan_id)
        except InstallmentPlan.DoesNotExist:
            raise NotFoundError(f"Installment plan {plan_id} does not exist.")
        if not plan.is_open:
            raise ConflictingStateError(f"Plan {plan.plan_id} is {plan.status}.")
        if plan.total_paid_minor < plan.min_down_payment_minor:
            raise ConflictingStateError(
                f"The minimum down payment of {plan.min_down_payment_minor} must be paid before cancelling."
            )
        for tx_id in plan.transactions.filter(
            status__in=PurchaseTransaction.OPEN_STATUSES
        ).values_list("transaction_id", flat=True):
            ledger.cancel(tx_id, actor=actor, reason="Installment plan cancelled")

        plan.status = PlanStatus.CANCELLED
        plan.cancelled_at = timezone.now()
        plan.cancellation_reason = reason
        plan.save()
    logger.info(f"Plan {plan.plan_id} cancelled by {actor}: {reason}")
    return plan


def upcoming_reminders(now=None, days_ahead=3):
    """Open plans with an unpaid installment due within ``days_ahead`` days or overdue."""
    now = now or timezone.now()
    horizon = now.date() + relativedelta(days=days_ahead)
    return (
        Installment.objects.filter(
            plan__status__in=InstallmentPlan.OPEN_STATUSES,
            due_date__lte=horizon,
        )
        .exclude(status=Installment.Status.PAID)
        .select_related("plan", "plan__user")
        .order_by("due_date")
    )
