"""
Purchase ledger models for the AfriMobile share platform.
"""
import hashlib
import uuid

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from backend.apps.shares.models import TIER_NUMBERS, Currency, ShareKind
from backend.core.exceptions import ConflictingStateError


class Rail(models.TextChoices):
    CARD = "card", _("Card (Paystack)")
    CHAIN = "chain", _("USDT on BSC")
    INVOICE = "invoice", _("Invoice (Centiiv)")
    MANUAL = "manual", _("Manual transfer")
    ADMIN_GRANT = "admin_grant", _("Admin grant")
    INSTALLMENT = "installment", _("Installment payment")


class ManualMethod(models.TextChoices):
    BANK = "bank", _("Bank transfer")
    CASH = "cash", _("Cash")
    OTHER = "other", _("Other")


# Rail metadata columns; a transaction may only carry the ones of its own rail
RAIL_FIELDS = {
    Rail.CARD: {"card_reference"},
    Rail.CHAIN: {"chain_tx_hash", "chain_from_address", "chain_to_address"},
    Rail.INVOICE: {"invoice_order_id", "invoice_payment_id"},
    Rail.MANUAL: {
        "manual_proof_url", "manual_method", "manual_bank_name",
        "manual_account_name", "manual_reference",
    },
    Rail.ADMIN_GRANT: set(),
    # Installment payments are collected by card or by manual proof
    Rail.INSTALLMENT: {
        "card_reference", "manual_proof_url", "manual_method", "manual_bank_name",
        "manual_account_name", "manual_reference",
    },
}
ALL_RAIL_FIELDS = set().union(*RAIL_FIELDS.values())


class PurchaseTransaction(models.Model):
    """A single share purchase (or installment payment) and its lifecycle."""

    class Status(models.TextChoices):
        PENDING = "pending", _("Pending")
        VERIFYING = "verifying", _("Verifying")
        COMPLETED = "completed", _("Completed")
        FAILED = "failed", _("Failed")
        CANCELLED = "cancelled", _("Cancelled")
        REFUNDED = "refunded", _("Refunded")

    # Allowed state transitions, checked inside the row lock
    _STATUS_TRANSITIONS = {
        Status.PENDING: [Status.VERIFYING, Status.COMPLETED, Status.FAILED, Status.CANCELLED],
        Status.VERIFYING: [Status.COMPLETED, Status.FAILED, Status.CANCELLED],
        Status.COMPLETED: [Status.REFUNDED],
        Status.FAILED: [],
        Status.CANCELLED: [],
        Status.REFUNDED: [],
    }
    OPEN_STATUSES = (Status.PENDING, Status.VERIFYING)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    transaction_id = models.CharField(_("transaction ID"), max_length=32, unique=True)

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="share_transactions"
    )
    kind = models.CharField(_("share kind"), max_length=10, choices=ShareKind.choices)
    currency = models.CharField(_("currency"), max_length=5, choices=Currency.choices)
    shares = models.PositiveIntegerField(_("shares"), default=0)
    tier1_shares = models.PositiveIntegerField(default=0)
    tier2_shares = models.PositiveIntegerField(default=0)
    tier3_shares = models.PositiveIntegerField(default=0)
    amount_minor = models.BigIntegerField(_("amount (minor units)"))
    price_per_share_minor = models.DecimalField(
        _("price per share (minor units)"),
        max_digits=24,
        decimal_places=4,
        default=0
    )

    rail = models.CharField(_("payment rail"), max_length=15, choices=Rail.choices)
    status = models.CharField(
        _("status"),
        max_length=10,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True
    )
    status_reason = models.TextField(_("status reason"), blank=True)

    # Card rail
    card_reference = models.CharField(max_length=100, unique=True, null=True, blank=True)
    # Chain rail: NULL until the buyer submits a hash, then globally one-use
    chain_tx_hash = models.CharField(max_length=66, unique=True, null=True, blank=True)
    chain_from_address = models.CharField(max_length=42, blank=True)
    chain_to_address = models.CharField(max_length=42, blank=True)
    # Invoice rail
    invoice_order_id = models.CharField(max_length=100, unique=True, null=True, blank=True)
    invoice_payment_id = models.CharField(max_length=100, blank=True)
    # Manual rail
    manual_proof_url = models.URLField(max_length=500, blank=True)
    manual_method = models.CharField(max_length=10, choices=ManualMethod.choices, blank=True)
    manual_bank_name = models.CharField(max_length=100, blank=True)
    manual_account_name = models.CharField(max_length=150, blank=True)
    manual_reference = models.CharField(max_length=100, blank=True)

    installment_plan = models.ForeignKey(
        "installments.InstallmentPlan",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="transactions"
    )
    installment_number = models.PositiveSmallIntegerField(null=True, blank=True)

    admin_note = models.TextField(_("admin note"), blank=True)
    verified_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="verified_share_transactions"
    )
    metadata = models.JSONField(_("metadata"), default=dict, blank=True)

    created_at = models.DateTimeField(_("created at"), default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(_("updated at"), auto_now=True)
    verification_started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(_("completed at"), null=True, blank=True)
    refunded_at = models.DateTimeField(_("refunded at"), null=True, blank=True)
    # Set by the reconciliation sweep when a rail gives no answer
    stuck_since = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = _("purchase transaction")
        verbose_name_plural = _("purchase transactions")
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user", "status"], name="payments_tx_user_status_idx"),
            models.Index(fields=["rail", "status", "created_at"], name="payments_tx_rail_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=Q(amount_minor__gte=0), name="purchase_amount_non_negative"),
        ]

    def __str__(self):
        return f"{self.transaction_id} {self.kind} x{self.shares} ({self.status})"

    @property
    def tier_breakdown(self):
        return {1: self.tier1_shares, 2: self.tier2_shares, 3: self.tier3_shares}

    def set_tier_breakdown(self, breakdown):
        for number in TIER_NUMBERS:
            setattr(self, f"tier{number}_shares", breakdown.get(number, 0))

    @property
    def is_open(self):
        return self.status in self.OPEN_STATUSES

    def can_transition_to(self, new_status):
        return new_status in self._STATUS_TRANSITIONS.get(self.status, [])

    def record_transition(self, new_status, actor=None, reason=""):
        """
        Apply ``new_status`` and append a history row. The caller must hold
        the row lock (``select_for_update``) and save the instance.
        """
        if not self.can_transition_to(new_status):
            raise ConflictingStateError(
                f"Transaction {self.transaction_id} cannot move from {self.status} to {new_status}."
            )
        previous = self.status
        self.status = new_status
        if reason:
            self.status_reason = reason
        return TransactionStatusChange.objects.create(
            transaction=self,
            from_status=previous,
            to_status=new_status,
            actor=actor,
            reason=reason,
        )


class TransactionStatusChange(models.Model):
    """Append-only status history of a purchase transaction."""

    transaction = models.ForeignKey(
        PurchaseTransaction,
        on_delete=models.CASCADE,
        related_name="status_history"
    )
    from_status = models.CharField(max_length=10, blank=True)
    to_status = models.CharField(max_length=10)
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+"
    )
    reason = models.TextField(blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["created_at", "id"]
        verbose_name = _("status change")
        verbose_name_plural = _("status changes")

    def __str__(self):
        return f"{self.transaction_id}: {self.from_status or '-'} -> {self.to_status}"


class GatewayEventLog(models.Model):
    """
    Immutable log of inbound provider events (Paystack and Centiiv webhooks,
    browser callbacks). Used for audit, replay detection and reconciliation.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    gateway = models.CharField(max_length=20, db_index=True)
    event_type = models.CharField(max_length=50, blank=True)
    reference = models.CharField(max_length=255, blank=True, db_index=True)
    payload = models.JSONField(default=dict)             # masked, parsed payload
    raw_payload = models.TextField(blank=True)
    status_code = models.PositiveSmallIntegerField(default=200)
    error_message = models.TextField(blank=True)
    correlation_id = models.CharField(max_length=64, blank=True, db_index=True)
    payload_hash = models.CharField(max_length=64, unique=True, null=True, blank=True, editable=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("gateway event log")
        verbose_name_plural = _("gateway event logs")
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["gateway", "-created_at"], name="payments_gw_gateway_idx"),
        ]

    def save(self, *args, **kwargs):
        # Same raw body twice is a replay; the unique hash rejects the second row
        if not self.payload_hash and self.raw_payload:
            self.payload_hash = hashlib.sha256(self.raw_payload.encode()).hexdigest()
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.gateway} {self.event_type} {self.reference}"
