"""
Referral commission ledger.

``ReferralEntry`` rows are the record of truth; ``ReferralAggregate`` is a
per-beneficiary projection that ``ledger.sync_stats`` can rebuild at any time.
"""
from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import Q
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from backend.apps.shares.models import Currency

GENERATIONS = (1, 2, 3)


class EntryKind(models.TextChoices):
    REGULAR = "regular", _("Regular purchase")
    COFOUNDER = "cofounder", _("Co-founder purchase")
    ADJUSTMENT = "adjustment", _("Admin adjustment")


class ReferralEntry(models.Model):
    """
    One commission credited to (``completed``) or taken back from
    (``reversed``) a beneficiary. Amounts are always non-negative.
    """

    class Status(models.TextChoices):
        COMPLETED = "completed", _("Completed")
        REVERSED = "reversed", _("Reversed")

    beneficiary = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="referral_entries"
    )
    source_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+"
    )
    source_transaction = models.ForeignKey(
        "payments.PurchaseTransaction",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="referral_entries"
    )
    generation = models.PositiveSmallIntegerField(
        _("generation"),
        validators=[MinValueValidator(1), MaxValueValidator(3)]
    )
    purchase_kind = models.CharField(_("purchase kind"), max_length=10, choices=EntryKind.choices)
    amount_minor = models.BigIntegerField(_("amount (minor units)"))
    currency = models.CharField(_("currency"), max_length=5, choices=Currency.choices)
    status = models.CharField(_("status"), max_length=10, choices=Status.choices, default=Status.COMPLETED)

    # A reversal points at the completed entry it cancels
    reverses = models.OneToOneField(
        "self",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="reversal"
    )
    original_amount_minor = models.BigIntegerField(null=True, blank=True)
    adjusted_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+"
    )
    reason = models.TextField(blank=True)

    created_at = models.DateTimeField(_("created at"), default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(_("updated at"), auto_now=True)

    class Meta:
        verbose_name = _("referral entry")
        verbose_name_plural = _("referral entries")
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["beneficiary", "generation", "status"], name="referrals_entry_benef_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=Q(amount_minor__gte=0), name="referral_amount_non_negative"),
            models.UniqueConstraint(
                fields=["source_transaction", "generation", "status"],
                condition=Q(source_transaction__isnull=False),
                name="one_entry_per_tx_generation_status",
            ),
        ]

    def __str__(self):
        return f"{self.beneficiary_id} gen{self.generation} {self.amount_minor} {self.currency} ({self.status})"


class ReferralAggregate(models.Model):
    """Materialized per-user commission totals."""

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="referral_aggregate"
    )
    gen1_earnings_minor = models.BigIntegerField(default=0)
    gen1_count = models.PositiveIntegerField(default=0)
    gen2_earnings_minor = models.BigIntegerField(default=0)
    gen2_count = models.PositiveIntegerField(default=0)
    gen3_earnings_minor = models.BigIntegerField(default=0)
    gen3_count = models.PositiveIntegerField(default=0)
    total_earnings_minor = models.BigIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("referral aggregate")
        verbose_name_plural = _("referral aggregates")
        constraints = [
            models.CheckConstraint(
                condition=Q(gen1_earnings_minor__gte=0) & Q(gen2_earnings_minor__gte=0)
                & Q(gen3_earnings_minor__gte=0) & Q(total_earnings_minor__gte=0),
                name="referral_aggregate_non_negative",
            ),
        ]

    def __str__(self):
        return f"{self.user_id}: {self.total_earnings_minor}"

    def as_dict(self):
        data = {
            f"gen{g}": {
                "earnings_minor": getattr(self, f"gen{g}_earnings_minor"),
                "count": getattr(self, f"gen{g}_count"),
            }
            for g in GENERATIONS
        }
        data["total_earnings_minor"] = self.total_earnings_minor
        return data
