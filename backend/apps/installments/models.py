"""
Installment plans: one share bought over 2 to 12 months with a minimum
down payment and capped monthly late fees.
"""
import uuid

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import F, Q
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from backend.apps.shares.models import TIER_NUMBERS, Currency, ShareKind


class InstallmentPlan(models.Model):

    class Status(models.TextChoices):
        PENDING = "pending", _("Pending first payment")
        ACTIVE = "active", _("Active")
        LATE = "late", _("Late")
        COMPLETED = "completed", _("Completed")
        CANCELLED = "cancelled", _("Cancelled")

    OPEN_STATUSES = (Status.PENDING, Status.ACTIVE, Status.LATE)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    plan_id = models.CharField(_("plan ID"), max_length=32, unique=True)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="installment_plans"
    )
    kind = models.CharField(_("share kind"), max_length=10, choices=ShareKind.choices)
    currency = models.CharField(_("currency"), max_length=5, choices=Currency.choices)
    months = models.PositiveSmallIntegerField(
        _("months"),
        validators=[MinValueValidator(2), MaxValueValidator(12)]
    )

    total_shares = models.PositiveIntegerField(_("total shares"), default=1)
    tier1_shares = models.PositiveIntegerField(default=0)
    tier2_shares = models.PositiveIntegerField(default=0)
    tier3_shares = models.PositiveIntegerField(default=0)
    total_price_minor = models.BigIntegerField(_("total price (minor units)"))

    min_down_payment_minor = models.BigIntegerField(_("minimum down payment"))
    late_fee_rate_pct = models.DecimalField(_("monthly late fee (%)"), max_digits=6, decimal_places=3)
    late_fee_cap_pct = models.DecimalField(_("late fee cap (%)"), max_digits=6, decimal_places=3)

    total_paid_minor = models.BigIntegerField(_("total paid"), default=0)
    shares_released = models.PositiveIntegerField(_("shares released"), default=0)
    tier1_released = models.PositiveIntegerField(default=0)
    tier2_released = models.PositiveIntegerField(default=0)
    tier3_released = models.PositiveIntegerField(default=0)

    current_late_fee_minor = models.BigIntegerField(_("current late fee"), default=0)
    months_late = models.PositiveSmallIntegerField(default=0)

    status = models.CharField(
        _("status"),
        max_length=10,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True
    )
    cancellation_reason = models.TextField(blank=True)

    created_at = models.DateTimeField(_("created at"), default=timezone.now)
    updated_at = models.DateTimeField(_("updated at"), auto_now=True)
    last_payment_at = models.DateTimeField(null=True, blank=True)
    last_late_check_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = _("installment plan")
        verbose_name_plural = _("installment plans")
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["user", "kind"],
                condition=Q(status__in=["pending", "active", "late"]),
                name="one_open_plan_per_user_kind",
            ),
            models.CheckConstraint(
                condition=Q(total_paid_minor__gte=0) & Q(total_paid_minor__lte=F("total_price_minor")),
                name="plan_paid_within_price",
            ),
        ]

    def __str__(self):
        return f"{self.plan_id} ({self.status})"

    @property
    def tier_breakdown(self):
        return {n: getattr(self, f"tier{n}_shares") for n in TIER_NUMBERS}

    @property
    def tier_released(self):
        return {n: getattr(self, f"tier{n}_released") for n in TIER_NUMBERS}

    @property
    def remaining_balance_minor(self):
        return self.total_price_minor - self.total_paid_minor

    @property
    def is_open(self):
        return self.status in self.OPEN_STATUSES


class Installment(models.Model):
    """One scheduled monthly installment of a plan."""

    class Status(models.TextChoices):
        UPCOMING = "upcoming", _("Upcoming")
        PARTIAL = "partial", _("Partially paid")
        PAID = "paid", _("Paid")

    plan = models.ForeignKey(InstallmentPlan, on_delete=models.CASCADE, related_name="installments")
    number = models.PositiveSmallIntegerField()
    scheduled_amount_minor = models.BigIntegerField()
    due_date = models.DateField()
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.UPCOMING)
    paid_amount_minor = models.BigIntegerField(default=0)
    paid_at = models.DateTimeField(null=True, blank=True)
    transaction_id = models.CharField(max_length=32, blank=True)
    is_first_payment = models.BooleanField(default=False)

    class Meta:
        ordering = ["plan", "number"]
        constraints = [
            models.UniqueConstraint(fields=["plan", "number"], name="unique_installment_number"),
        ]

    def __str__(self):
        return f"{self.plan.plan_id} #{self.number} due {self.due_date}"

    @property
    def outstanding_minor(self):
        return max(self.scheduled_amount_minor - self.paid_amount_minor, 0)


class InstallmentPayment(models.Model):
    """A payment actually applied to a plan, in the order it settled."""

    plan = models.ForeignKey(InstallmentPlan, on_delete=models.CASCADE, related_name="payments")
    transaction_id = models.CharField(max_length=32, unique=True)
    amount_minor = models.BigIntegerField()
    shares_released = models.PositiveIntegerField(default=0)
    total_paid_after_minor = models.BigIntegerField()
    paid_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["paid_at", "id"]

    def __str__(self):
        return f"{self.plan.plan_id}: {self.amount_minor} ({self.transaction_id})"
