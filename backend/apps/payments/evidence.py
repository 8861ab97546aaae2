"""
Settlement evidence.

Each rail proves a payment with its own kind of evidence. ``settle`` only
accepts evidence types registered for the transaction's rail and asks the
evidence to check itself against the transaction before anything moves.
"""
from dataclasses import dataclass, field
from typing import Any, Optional

from django.conf import settings

from backend.core.exceptions import SharePlatformValidationError

from .models import Rail


class EvidenceMismatch(SharePlatformValidationError):
    default_detail = 'The payment evidence does not match the transaction.'
    default_code = 'evidence_mismatch'


def _same_address(left, right):
    return bool(left) and bool(right) and left.lower() == right.lower()


@dataclass(frozen=True)
class CardEvidence:
    """Result of the card processor's verify call."""
    reference: str
    status: str
    amount_minor: int
    paid_at: Optional[str] = None
    raw: dict = field(default_factory=dict)

    def verify(self, tx):
        if self.reference != tx.card_reference:
            raise EvidenceMismatch(f"Reference {self.reference} does not belong to {tx.transaction_id}.")
        if self.status != "success":
            raise EvidenceMismatch(f"Card charge status is '{self.status}'.")
        if self.amount_minor != tx.amount_minor:
            raise EvidenceMismatch(
                f"Charged amount {self.amount_minor} differs from expected {tx.amount_minor}."
            )


@dataclass(frozen=True)
class ChainEvidence:
    """A confirmed BEP-20 transfer read back from the chain."""
    tx_hash: str
    from_address: str
    token_contract: str
    recipient: str
    amount_minor: int
    confirmed: bool = True

    def verify(self, tx):
        if not tx.chain_tx_hash or self.tx_hash.lower() != tx.chain_tx_hash.lower():
            raise EvidenceMismatch("Transaction hash does not match the submitted hash.")
        if not self.confirmed:
            raise EvidenceMismatch("On-chain transaction was not successful.")
        if not _same_address(self.token_contract, settings.USDT_CONTRACT_ADDRESS):
            raise EvidenceMismatch("Transfer is not in the accepted stablecoin.")
        if not _same_address(self.recipient, settings.COMPANY_WALLET_ADDRESS):
            raise EvidenceMismatch("Transfer recipient is not the company wallet.")
        if tx.chain_from_address and not _same_address(self.from_address, tx.chain_from_address):
            raise EvidenceMismatch("Transfer was sent from a different wallet.")
        if self.amount_minor != tx.amount_minor:
            raise EvidenceMismatch(
                f"Transferred amount {self.amount_minor} differs from expected {tx.amount_minor}."
            )


@dataclass(frozen=True)
class InvoiceEvidence:
    """Order status reported (or re-queried) from the invoice provider."""
    order_id: str
    status: str
    payment_id: str = ""

    def verify(self, tx):
        from .rails.invoice import map_status

        if self.order_id != tx.invoice_order_id:
            raise EvidenceMismatch(f"Order {self.order_id} does not belong to {tx.transaction_id}.")
        if map_status(self.status) != tx.Status.COMPLETED:
            raise EvidenceMismatch(f"Invoice status '{self.status}' is not a paid status.")


@dataclass(frozen=True)
class AdminApproval:
    admin: Any
    approved: bool = True
    note: str = ""

    def verify(self, tx):
        if not self.approved:
            raise EvidenceMismatch("Admin decision was not an approval.")
        if self.admin is None or not getattr(self.admin, "is_admin", False):
            raise EvidenceMismatch("Only an administrator can approve this payment.")


ACCEPTED_EVIDENCE = {
    Rail.CARD: (CardEvidence,),
    Rail.CHAIN: (ChainEvidence, AdminApproval),
    Rail.INVOICE: (InvoiceEvidence,),
    Rail.MANUAL: (AdminApproval,),
    Rail.ADMIN_GRANT: (AdminApproval,),
    Rail.INSTALLMENT: (CardEvidence, AdminApproval),
}


def check_evidence(tx, evidence):
    accepted = ACCEPTED_EVIDENCE.get(tx.rail, ())
    if not isinstance(evidence, accepted):
        raise EvidenceMismatch(
            f"{type(evidence).__name__} cannot settle a {tx.rail} transaction."
        )
    evidence.verify(tx)
