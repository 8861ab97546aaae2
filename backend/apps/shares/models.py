"""
Share inventory models for the AfriMobile share platform.

Regular shares are sold from three price tiers; co-founder shares come
from a single fixed-price pool. Each co-founder share occupies
``share_to_regular_ratio`` units of regular capacity.
"""
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import F, Q
from django.utils.translation import gettext_lazy as _


class ShareKind(models.TextChoices):
    REGULAR = "regular", _("Regular")
    COFOUNDER = "cofounder", _("Co-founder")


class Currency(models.TextChoices):
    NAIRA = "naira", _("Naira")
    USDT = "usdt", _("USDT")


TIER_NUMBERS = (1, 2, 3)

DEFAULT_COFOUNDER = {
    "total_capacity": 500,
    "price_naira_minor": 1000000_00,
    "price_usdt_minor": 1000_00,
    "share_to_regular_ratio": 29,
}


class ShareTier(models.Model):
    """One price tier of regular shares. Prices are stored in minor units."""

    number = models.PositiveSmallIntegerField(
        _("tier number"),
        unique=True,
        validators=[MinValueValidator(1), MaxValueValidator(3)]
    )
    capacity = models.PositiveIntegerField(_("capacity"))
    price_naira_minor = models.BigIntegerField(_("price (kobo)"))
    price_usdt_minor = models.BigIntegerField(_("price (USDT cents)"))
    sold_count = models.PositiveIntegerField(_("sold"), default=0)
    # Bumped on every counter write; commits compare-and-swap on it
    version = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(_("updated at"), auto_now=True)

    class Meta:
        verbose_name = _("share tier")
        verbose_name_plural = _("share tiers")
        ordering = ["number"]
        constraints = [
            models.CheckConstraint(
                condition=Q(sold_count__lte=F("capacity")),
                name="share_tier_sold_within_capacity",
            ),
        ]

    def __str__(self):
        return f"Tier {self.number}: {self.sold_count}/{self.capacity}"

    def price_for(self, currency):
        return self.price_naira_minor if currency == Currency.NAIRA else self.price_usdt_minor


class CoFounderInventory(models.Model):
    """Singleton row (pk=1) describing the co-founder share pool."""

    total_capacity = models.PositiveIntegerField(_("total capacity"))
    sold_count = models.PositiveIntegerField(_("sold"), default=0)
    price_naira_minor = models.BigIntegerField(_("price (kobo)"))
    price_usdt_minor = models.BigIntegerField(_("price (USDT cents)"))
    share_to_regular_ratio = models.PositiveIntegerField(
        _("share to regular ratio"),
        default=29,
        validators=[MinValueValidator(1)]
    )
    version = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(_("updated at"), auto_now=True)

    class Meta:
        verbose_name = _("co-founder inventory")
        verbose_name_plural = _("co-founder inventory")
        constraints = [
            models.CheckConstraint(
                condition=Q(sold_count__lte=F("total_capacity")),
                name="cofounder_sold_within_capacity",
            ),
        ]

    def __str__(self):
        return f"Co-founder pool: {self.sold_count}/{self.total_capacity}"

    @classmethod
    def load(cls):
        obj, _created = cls.objects.get_or_create(pk=1, defaults=DEFAULT_COFOUNDER)
        return obj

    def price_for(self, currency):
        return self.price_naira_minor if currency == Currency.NAIRA else self.price_usdt_minor

    @property
    def available(self):
        return self.total_capacity - self.sold_count
