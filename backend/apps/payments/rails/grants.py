"""
Admin grants: shares allocated by an administrator without payment.
The grant is recorded as a zero-amount purchase and settled at once, so
inventory moves like any other sale and no commission is paid.
"""
import dataclasses
import logging
from decimal import Decimal

from backend.apps.shares import inventory
from backend.apps.shares.models import Currency

from .. import ledger
from ..evidence import AdminApproval
from ..models import Rail

logger = logging.getLogger(__name__)


def admin_grant(user, kind, shares, admin, note="", currency=Currency.NAIRA):
    quote = inventory.quote(kind, shares, currency)
    free = dataclasses.replace(quote, total_price_minor=0, price_per_share_minor=Decimal("0"))
    tx = ledger.create_transaction(
        user, free, Rail.ADMIN_GRANT, actor=admin, admin_note=note,
        metadata={"list_price_minor": quote.total_price_minor},
    )
    tx = ledger.settle(tx.transaction_id, AdminApproval(admin=admin, note=note), actor=admin,
                       reason=note or "Granted by admin")
    logger.info(f"Admin {admin} granted {shares} {kind} shares to {user} ({tx.transaction_id})")
    return tx
