"""
Inventory keeper: quotes, availability and the sold counters.

Counters only move inside a ledger settle or refund. Writes use a
compare-and-swap on ``version`` and are retried a small number of times
before the surrounding settle is failed.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings
from django.db import transaction
from django.db.models import F, Sum

from backend.core.exceptions import (
    ConflictingStateError,
    InsufficientCapacityError,
    LedgerIntegrityError,
    SharePlatformValidationError,
)

from .models import TIER_NUMBERS, CoFounderInventory, Currency, ShareKind, ShareTier

logger = logging.getLogger(__name__)

PRICE_PER_SHARE_QUANTUM = Decimal("0.0001")


def empty_breakdown():
    return {number: 0 for number in TIER_NUMBERS}


@dataclass(frozen=True)
class Quote:
    kind: str
    currency: str
    quantity: int
    total_price_minor: int
    price_per_share_minor: Decimal
    tier_breakdown: dict = field(default_factory=empty_breakdown)

    def as_dict(self):
        return {
            "kind": self.kind,
            "currency": self.currency,
            "quantity": self.quantity,
            "total_price_minor": self.total_price_minor,
            "price_per_share_minor": str(self.price_per_share_minor),
            "tier_breakdown": {f"tier{n}": self.tier_breakdown.get(n, 0) for n in TIER_NUMBERS},
        }


def _retries():
    return settings.SHARE_PLATFORM["INVENTORY_COMMIT_RETRIES"]


def _validate_request(kind, quantity, currency):
    if kind not in ShareKind.values:
        raise SharePlatformValidationError(f"Unknown share kind '{kind}'.")
    if currency not in Currency.values:
        raise SharePlatformValidationError(f"Unsupported currency '{currency}'.")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise SharePlatformValidationError("Quantity must be a positive whole number.")


def _tiers():
    tiers = list(ShareTier.objects.order_by("number"))
    if [t.number for t in tiers] != list(TIER_NUMBERS):
        raise LedgerIntegrityError("Share tiers are not configured.")
    return tiers


def effective_tier_availability(tiers, cofounder):
    """
    Available regular shares per tier after co-founder occupancy is
    absorbed, tier 1 first. Returns ``(per_tier, overflow)`` where a
    positive overflow means co-founder sales exceed regular capacity.
    """
    occupied = cofounder.sold_count * cofounder.share_to_regular_ratio
    per_tier = {}
    for tier in tiers:
        remaining = tier.capacity - tier.sold_count
        absorbed = min(occupied, remaining)
        occupied -= absorbed
        per_tier[tier.number] = remaining - absorbed
    return per_tier, occupied


def _price_per_share(total_price_minor, quantity):
    return (Decimal(total_price_minor) / quantity).quantize(PRICE_PER_SHARE_QUANTUM, rounding=ROUND_HALF_UP)


# ----------------------------------------------------------------------
# Read side
# ----------------------------------------------------------------------

def availability(kind=ShareKind.REGULAR):
    """Current availability snapshot for one share kind."""
    tiers = _tiers()
    cofounder = CoFounderInventory.load()

    if kind == ShareKind.COFOUNDER:
        return {
            "kind": ShareKind.COFOUNDER.value,
            "total_capacity": cofounder.total_capacity,
            "sold": cofounder.sold_count,
            "available": cofounder.available,
            "share_to_regular_ratio": cofounder.share_to_regular_ratio,
            "price_naira_minor": cofounder.price_naira_minor,
            "price_usdt_minor": cofounder.price_usdt_minor,
        }
    if kind != ShareKind.REGULAR:
        raise SharePlatformValidationError(f"Unknown share kind '{kind}'.")

    per_tier, _overflow = effective_tier_availability(tiers, cofounder)
    return {
        "kind": ShareKind.REGULAR.value,
        "tiers": [
            {
                "tier": tier.number,
                "capacity": tier.capacity,
                "sold": tier.sold_count,
                "available": per_tier[tier.number],
                "price_naira_minor": tier.price_naira_minor,
                "price_usdt_minor": tier.price_usdt_minor,
            }
            for tier in tiers
        ],
        "total_available": sum(per_tier.values()),
        "cofounder_equivalent_sold": cofounder.sold_count * cofounder.share_to_regular_ratio,
    }


def quote(kind, quantity, currency):
    """
    Price ``quantity`` shares at current prices.

    Regular purchases walk the tiers in order, filling each tier's
    remaining capacity before moving on. Nothing is reserved.
    """
    _validate_request(kind, quantity, currency)
    tiers = _tiers()
    cofounder = CoFounderInventory.load()
    per_tier, overflow = effective_tier_availability(tiers, cofounder)
    regular_available = sum(per_tier.values())

    if kind == ShareKind.COFOUNDER:
        regular_equivalent_room = regular_available // cofounder.share_to_regular_ratio
        available = min(cofounder.available, regular_equivalent_room)
        if quantity > available:
            raise InsufficientCapacityError(
                f"Only {available} co-founder shares are available.",
                requested=quantity,
                available=available,
            )
        total = quantity * cofounder.price_for(currency)
        return Quote(
            kind=ShareKind.COFOUNDER.value,
            currency=currency,
            quantity=quantity,
            total_price_minor=total,
            price_per_share_minor=_price_per_share(total, quantity),
            tier_breakdown=empty_breakdown(),
        )

    if quantity > regular_available:
        raise InsufficientCapacityError(
            f"Only {regular_available} shares are available.",
            requested=quantity,
            available=regular_available,
        )

    breakdown = empty_breakdown()
    remaining = quantity
    total = 0
    for tier in tiers:
        if remaining == 0:
            break
        take = min(remaining, per_tier[tier.number])
        if take <= 0:
            continue
        breakdown[tier.number] = take
        total += take * tier.price_for(currency)
        remaining -= take

    return Quote(
        kind=ShareKind.REGULAR.value,
        currency=currency,
        quantity=quantity,
        total_price_minor=total,
        price_per_share_minor=_price_per_share(total, quantity),
        tier_breakdown=breakdown,
    )


# ----------------------------------------------------------------------
# Write side (called from inside a ledger transaction)
# ----------------------------------------------------------------------

def _increment_tier(number, count):
    for attempt in range(_retries()):
        tier = ShareTier.objects.get(number=number)
        if tier.sold_count + count > tier.capacity:
            raise InsufficientCapacityError(
                f"Tier {number} has only {tier.capacity - tier.sold_count} shares left.",
                requested=count,
                available=tier.capacity - tier.sold_count,
            )
        updated = ShareTier.objects.filter(pk=tier.pk, version=tier.version).update(
            sold_count=F("sold_count") + count,
            version=F("version") + 1,
        )
        if updated:
            return
        logger.warning("Tier %s counter changed under us (attempt %s), retrying", number, attempt + 1)
    raise ConflictingStateError("Share inventory is busy, please retry the purchase.")


def _increment_cofounder(count):
    for attempt in range(_retries()):
        pool = CoFounderInventory.load()
        if pool.sold_count + count > pool.total_capacity:
            raise InsufficientCapacityError(
                f"Only {pool.available} co-founder shares are available.",
                requested=count,
                available=pool.available,
            )
        updated = CoFounderInventory.objects.filter(pk=pool.pk, version=pool.version).update(
            sold_count=F("sold_count") + count,
            version=F("version") + 1,
        )
        if updated:
            return
        logger.warning("Co-founder counter changed under us (attempt %s), retrying", attempt + 1)
    raise ConflictingStateError("Share inventory is busy, please retry the purchase.")


def _assert_cross_sku_capacity(requested):
    tiers = _tiers()
    cofounder = CoFounderInventory.load()
    _per_tier, overflow = effective_tier_availability(tiers, cofounder)
    if overflow > 0:
        raise InsufficientCapacityError(
            "Regular and co-founder sales would exceed total share capacity.",
            requested=requested,
            available=0,
        )


@transaction.atomic
def commit(kind, quantity, breakdown=None):
    """Move sold counters forward for a settled purchase."""
    if quantity <= 0:
        return
    if kind == ShareKind.COFOUNDER:
        _increment_cofounder(quantity)
    else:
        breakdown = breakdown or {}
        if sum(breakdown.get(n, 0) for n in TIER_NUMBERS) != quantity:
            raise LedgerIntegrityError(
                f"Tier breakdown {breakdown} does not add up to {quantity} shares."
            )
        for number in TIER_NUMBERS:
            count = breakdown.get(number, 0)
            if count:
                _increment_tier(number, count)
    _assert_cross_sku_capacity(quantity)
    logger.info("Committed %s %s shares %s", quantity, kind, breakdown or "")


@transaction.atomic
def release(kind, quantity, breakdown=None):
    """Inverse of ``commit``; used when a completed purchase is refunded."""
    if quantity <= 0:
        return
    if kind == ShareKind.COFOUNDER:
        updated = CoFounderInventory.objects.filter(pk=1, sold_count__gte=quantity).update(
            sold_count=F("sold_count") - quantity,
            version=F("version") + 1,
        )
        if not updated:
            raise LedgerIntegrityError(f"Releasing {quantity} co-founder shares would go negative.")
    else:
        breakdown = breakdown or {}
        for number in TIER_NUMBERS:
            count = breakdown.get(number, 0)
            if not count:
                continue
            updated = ShareTier.objects.filter(number=number, sold_count__gte=count).update(
                sold_count=F("sold_count") - count,
                version=F("version") + 1,
            )
            if not updated:
                raise LedgerIntegrityError(f"Releasing {count} shares from tier {number} would go negative.")
    logger.info("Released %s %s shares %s", quantity, kind, breakdown or "")


# ----------------------------------------------------------------------
# Admin operations
# ----------------------------------------------------------------------

@transaction.atomic
def update_pricing(target, price_naira_minor=None, price_usdt_minor=None, capacity=None, ratio=None):
    """
    Change prices (and optionally capacity) of a tier or of the co-founder
    pool. Existing transactions keep the price they were created with.
    ``target`` is a tier number or ``"cofounder"``.
    """
    if target == ShareKind.COFOUNDER:
        row = CoFounderInventory.objects.select_for_update().get(pk=CoFounderInventory.load().pk)
        capacity_field = "total_capacity"
    else:
        try:
            row = ShareTier.objects.select_for_update().get(number=int(target))
        except (ValueError, ShareTier.DoesNotExist):
            raise SharePlatformValidationError(f"Unknown tier '{target}'.")
        capacity_field = "capacity"

    for value in (price_naira_minor, price_usdt_minor):
        if value is not None and value <= 0:
            raise SharePlatformValidationError("Prices must be positive.")
    if price_naira_minor is not None:
        row.price_naira_minor = price_naira_minor
    if price_usdt_minor is not None:
        row.price_usdt_minor = price_usdt_minor
    if capacity is not None:
        if capacity < row.sold_count:
            raise SharePlatformValidationError("Capacity cannot be lower than shares already sold.")
        setattr(row, capacity_field, capacity)
    if ratio is not None:
        if target != ShareKind.COFOUNDER or ratio < 1:
            raise SharePlatformValidationError("Ratio applies to the co-founder pool and must be at least 1.")
        row.share_to_regular_ratio = ratio
    row.version = F("version") + 1
    row.save()
    row.refresh_from_db()
    _per_tier, overflow = effective_tier_availability(_tiers(), CoFounderInventory.load())
    if overflow > 0:
        raise SharePlatformValidationError("The new configuration leaves less capacity than already sold.")
    logger.info("Pricing updated for %s", target)
    return row


def inventory_statistics():
    tiers = _tiers()
    cofounder = CoFounderInventory.load()
    per_tier, overflow = effective_tier_availability(tiers, cofounder)
    total_capacity = ShareTier.objects.aggregate(total=Sum("capacity"))["total"] or 0
    regular_sold = sum(t.sold_count for t in tiers)
    cofounder_equivalent = cofounder.sold_count * cofounder.share_to_regular_ratio
    return {
        "total_capacity": total_capacity,
        "regular_sold": regular_sold,
        "cofounder_sold": cofounder.sold_count,
        "cofounder_equivalent": cofounder_equivalent,
        "remaining": sum(per_tier.values()),
        "overflow": overflow,
        "tiers": [
            {
                "tier": t.number,
                "capacity": t.capacity,
                "sold": t.sold_count,
                "available": per_tier[t.number],
                "value_sold_naira_minor": t.sold_count * t.price_naira_minor,
            }
            for t in tiers
        ],
        "cofounder": {
            "total_capacity": cofounder.total_capacity,
            "sold": cofounder.sold_count,
            "available": cofounder.available,
            "share_to_regular_ratio": cofounder.share_to_regular_ratio,
        },
    }
