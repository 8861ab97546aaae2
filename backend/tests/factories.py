import factory
from decimal import Decimal
from django.contrib.auth import get_user_model

from backend.apps.installments.models import InstallmentPlan
from backend.apps.payments.models import PurchaseTransaction, Rail
from backend.apps.shares.models import CoFounderInventory, Currency, ShareKind, ShareTier

User = get_user_model()


class UserFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = User
        skip_postgeneration_save = True

    email = factory.Sequence(lambda n: f"user{n}@example.com")
    first_name = factory.Faker('first_name')
    last_name = factory.Faker('last_name')
    is_active = True
    role = User.Role.USER
    password = factory.django.Password('testpass123')


class AdminUserFactory(UserFactory):
    email = factory.Sequence(lambda n: f"admin{n}@afrimobile.test")
    role = User.Role.ADMIN
    is_staff = True


class PurchaseTransactionFactory(factory.django.DjangoModelFactory):
    """A pending 10-share tier 1 purchase; override fields per test."""

    class Meta:
        model = PurchaseTransaction

    transaction_id = factory.Sequence(lambda n: f"TXN-TEST{n:04d}-000000")
    user = factory.SubFactory(UserFactory)
    kind = ShareKind.REGULAR
    currency = Currency.NAIRA
    shares = 10
    tier1_shares = 10
    amount_minor = 1000_00
    price_per_share_minor = Decimal("10000")
    rail = Rail.MANUAL
    status = PurchaseTransaction.Status.PENDING


class InstallmentPlanFactory(factory.django.DjangoModelFactory):
    """A one-share regular plan of ₦100,000 over 5 months."""

    class Meta:
        model = InstallmentPlan

    plan_id = factory.Sequence(lambda n: f"INST-TEST{n:04d}-000000")
    user = factory.SubFactory(UserFactory)
    kind = ShareKind.REGULAR
    currency = Currency.NAIRA
    months = 5
    total_shares = 1
    tier1_shares = 1
    total_price_minor = 100000_00
    min_down_payment_minor = 20000_00
    late_fee_rate_pct = Decimal("0.34")
    late_fee_cap_pct = Decimal("5")


def configure_inventory(tiers=None, cofounder=None):
    """
    Reset the seeded inventory to known values. ``tiers`` maps tier number
    to ``(capacity, price_naira_minor, price_usdt_minor)``.
    """
    tiers = tiers or {
        1: (1000, 100_00, 1_00),
        2: (1000, 200_00, 2_00),
        3: (1000, 300_00, 3_00),
    }
    for number, (capacity, naira, usdt) in tiers.items():
        ShareTier.objects.update_or_create(
            number=number,
            defaults={
                'capacity': capacity,
                'price_naira_minor': naira,
                'price_usdt_minor': usdt,
                'sold_count': 0,
            },
        )
    defaults = {
        'total_capacity': 500,
        'price_naira_minor': 1000000_00,
        'price_usdt_minor': 1000_00,
        'share_to_regular_ratio': 29,
        'sold_count': 0,
    }
    defaults.update(cofounder or {})
    CoFounderInventory.objects.update_or_create(pk=1, defaults=defaults)
