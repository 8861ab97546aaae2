from decimal import Decimal

from django.test import TestCase
from django.urls import reverse
from rest_framework.test import APITestCase

from backend.apps.shares import inventory
from backend.apps.shares.models import CoFounderInventory, Currency, ShareKind, ShareTier
from backend.core.exceptions import InsufficientCapacityError, LedgerIntegrityError, SharePlatformValidationError
from backend.tests.factories import AdminUserFactory, UserFactory, configure_inventory


class QuoteTests(TestCase):

    def setUp(self):
        configure_inventory()

    def test_quote_fills_tiers_in_order(self):
        quote = inventory.quote(ShareKind.REGULAR, 1200, Currency.NAIRA)

        self.assertEqual(quote.tier_breakdown, {1: 1000, 2: 200, 3: 0})
        self.assertEqual(quote.total_price_minor, 140000_00)
        self.assertEqual(quote.price_per_share_minor, Decimal("11666.6667"))

    def test_quote_does_not_reserve(self):
        inventory.quote(ShareKind.REGULAR, 500, Currency.NAIRA)
        self.assertEqual(ShareTier.objects.get(number=1).sold_count, 0)

    def test_quote_in_usdt_uses_usdt_prices(self):
        quote = inventory.quote(ShareKind.REGULAR, 1001, Currency.USDT)
        self.assertEqual(quote.total_price_minor, 1000 * 1_00 + 2_00)

    def test_quote_rejects_bad_quantity(self):
        for quantity in (0, -1, True, "3"):
            with self.assertRaises(SharePlatformValidationError):
                inventory.quote(ShareKind.REGULAR, quantity, Currency.NAIRA)

    def test_quote_rejects_unknown_currency(self):
        with self.assertRaises(SharePlatformValidationError):
            inventory.quote(ShareKind.REGULAR, 1, "eur")

    def test_quote_beyond_capacity(self):
        with self.assertRaises(InsufficientCapacityError) as ctx:
            inventory.quote(ShareKind.REGULAR, 3001, Currency.NAIRA)
        self.assertEqual(ctx.exception.available, 3000)

    def test_cofounder_quote_is_fixed_price(self):
        quote = inventory.quote(ShareKind.COFOUNDER, 2, Currency.NAIRA)
        self.assertEqual(quote.total_price_minor, 2 * 1000000_00)
        self.assertEqual(quote.tier_breakdown, {1: 0, 2: 0, 3: 0})

    def test_cofounder_quote_limited_by_regular_room(self):
        # 3000 regular shares fit 103 co-founder shares at ratio 29
        with self.assertRaises(InsufficientCapacityError) as ctx:
            inventory.quote(ShareKind.COFOUNDER, 104, Currency.NAIRA)
        self.assertEqual(ctx.exception.available, 103)


class EffectiveAvailabilityTests(TestCase):

    def test_cofounder_occupancy_spills_into_tier_two(self):
        configure_inventory(
            tiers={1: (250, 100_00, 1_00), 2: (1000, 200_00, 2_00), 3: (1000, 300_00, 3_00)},
            cofounder={'sold_count': 10},
        )
        per_tier, overflow = inventory.effective_tier_availability(
            list(ShareTier.objects.order_by('number')), CoFounderInventory.load()
        )

        self.assertEqual(per_tier[1], 0)
        self.assertEqual(per_tier[2], 1000 - 40)
        self.assertEqual(per_tier[3], 1000)
        self.assertEqual(overflow, 0)

    def test_cofounder_shares_occupy_ratio_of_tier_one(self):
        configure_inventory(cofounder={'sold_count': 3})
        availability = inventory.availability(ShareKind.REGULAR)
        self.assertEqual(availability['tiers'][0]['available'], 1000 - 3 * 29)
        self.assertEqual(availability['cofounder_equivalent_sold'], 87)


class CommitReleaseTests(TestCase):

    def setUp(self):
        configure_inventory()

    def test_commit_moves_counters(self):
        inventory.commit(ShareKind.REGULAR, 1200, {1: 1000, 2: 200, 3: 0})

        self.assertEqual(ShareTier.objects.get(number=1).sold_count, 1000)
        self.assertEqual(ShareTier.objects.get(number=2).sold_count, 200)
        self.assertEqual(ShareTier.objects.get(number=3).sold_count, 0)

    def test_commit_rejects_breakdown_that_does_not_add_up(self):
        with self.assertRaises(LedgerIntegrityError):
            inventory.commit(ShareKind.REGULAR, 10, {1: 5})

    def test_commit_beyond_tier_capacity(self):
        inventory.commit(ShareKind.REGULAR, 990, {1: 990})
        with self.assertRaises(InsufficientCapacityError):
            inventory.commit(ShareKind.REGULAR, 20, {1: 20})
        self.assertEqual(ShareTier.objects.get(number=1).sold_count, 990)

    def test_cofounder_commit_checks_shared_capacity(self):
        inventory.commit(ShareKind.REGULAR, 2990, {1: 1000, 2: 1000, 3: 990})
        with self.assertRaises(InsufficientCapacityError):
            inventory.commit(ShareKind.COFOUNDER, 1)

    def test_release_is_inverse_of_commit(self):
        inventory.commit(ShareKind.REGULAR, 1200, {1: 1000, 2: 200})
        inventory.release(ShareKind.REGULAR, 1200, {1: 1000, 2: 200})
        self.assertEqual(sum(ShareTier.objects.values_list('sold_count', flat=True)), 0)

    def test_release_never_goes_negative(self):
        with self.assertRaises(LedgerIntegrityError):
            inventory.release(ShareKind.COFOUNDER, 1)

    def test_update_pricing_rejects_capacity_below_sold(self):
        inventory.commit(ShareKind.REGULAR, 100, {1: 100})
        with self.assertRaises(SharePlatformValidationError):
            inventory.update_pricing(1, capacity=50)


class InventoryApiTests(APITestCase):

    def setUp(self):
        configure_inventory()
        self.user = UserFactory()
        self.admin = AdminUserFactory()

    def test_availability_is_public(self):
        response = self.client.get(reverse('shares:availability'))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['total_available'], 3000)

    def test_quote_endpoint(self):
        self.client.force_authenticate(self.user)
        response = self.client.post(
            reverse('shares:quote'),
            {'kind': 'regular', 'quantity': 1200, 'currency': 'naira'},
            format='json',
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['total_price_minor'], 140000_00)
        self.assertEqual(response.data['tier_breakdown'], {'tier1': 1000, 'tier2': 200, 'tier3': 0})

    def test_quote_over_capacity_is_conflict(self):
        self.client.force_authenticate(self.user)
        response = self.client.post(
            reverse('shares:quote'),
            {'kind': 'regular', 'quantity': 5000, 'currency': 'naira'},
            format='json',
        )
        self.assertEqual(response.status_code, 409)

    def test_statistics_require_admin(self):
        self.client.force_authenticate(self.user)
        self.assertEqual(self.client.get(reverse('shares:statistics')).status_code, 403)
        self.client.force_authenticate(self.admin)
        self.assertEqual(self.client.get(reverse('shares:statistics')).status_code, 200)

    def test_pricing_update(self):
        self.client.force_authenticate(self.admin)
        response = self.client.post(
            reverse('shares:pricing'), {'target': '2', 'price_naira_minor': 250_00}, format='json',
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(ShareTier.objects.get(number=2).price_naira_minor, 250_00)

    def test_pricing_update_needs_a_change(self):
        self.client.force_authenticate(self.admin)
        response = self.client.post(reverse('shares:pricing'), {'target': '1'}, format='json')
        self.assertEqual(response.status_code, 400)
