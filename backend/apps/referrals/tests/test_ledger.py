from django.test import TestCase, override_settings
from django.conf import settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from backend.apps.payments import ledger as purchases
from backend.apps.payments.evidence import AdminApproval
from backend.apps.payments.models import PurchaseTransaction
from backend.apps.referrals import ledger
from backend.apps.referrals.models import EntryKind, ReferralAggregate, ReferralEntry
from backend.apps.referrals.tasks import reconcile_referral_aggregates
from backend.apps.shares.models import Currency
from backend.core.exceptions import LedgerIntegrityError, SharePlatformValidationError
from backend.tests.factories import AdminUserFactory, PurchaseTransactionFactory, UserFactory, configure_inventory

Status = ReferralEntry.Status


def aggregate(user):
    return ReferralAggregate.objects.get(user=user)


class ReferralChainMixin:
    """U1 referred U2, who referred U3."""

    def build_chain(self):
        configure_inventory()
        self.admin = AdminUserFactory()
        self.u1 = UserFactory()
        self.u2 = UserFactory(referred_by=self.u1)
        self.u3 = UserFactory(referred_by=self.u2)

    def settled_purchase(self, buyer, shares=1000):
        # 1000 tier 1 shares at ₦100 each: ₦100,000
        tx = PurchaseTransactionFactory(
            user=buyer, shares=shares, tier1_shares=shares, amount_minor=shares * 100_00,
        )
        return purchases.settle(tx.transaction_id, AdminApproval(admin=self.admin), actor=self.admin)


class CommissionTests(ReferralChainMixin, TestCase):

    def setUp(self):
        self.build_chain()

    def test_three_generation_commission_and_reversal(self):
        tx = self.settled_purchase(self.u3)

        entries = {
            (e.beneficiary_id, e.generation): e.amount_minor
            for e in ReferralEntry.objects.filter(source_transaction=tx, status=Status.COMPLETED)
        }
        self.assertEqual(entries, {(self.u2.pk, 1): 15000_00, (self.u1.pk, 2): 3000_00})
        self.assertEqual(aggregate(self.u2).gen1_earnings_minor, 15000_00)
        self.assertEqual(aggregate(self.u2).gen1_count, 1)
        self.assertEqual(aggregate(self.u1).gen2_earnings_minor, 3000_00)
        self.assertEqual(aggregate(self.u1).total_earnings_minor, 3000_00)

        purchases.refund(tx.transaction_id, actor=self.admin, reason='Chargeback')

        reversed_entries = ReferralEntry.objects.filter(source_transaction=tx, status=Status.REVERSED)
        self.assertEqual(
            sorted(reversed_entries.values_list('generation', 'amount_minor')),
            [(1, 15000_00), (2, 3000_00)],
        )
        self.assertTrue(all(e.reverses_id for e in reversed_entries))
        self.assertEqual(aggregate(self.u2).gen1_earnings_minor, 0)
        self.assertEqual(aggregate(self.u2).gen1_count, 0)
        self.assertEqual(aggregate(self.u1).gen2_earnings_minor, 0)
        self.assertEqual(aggregate(self.u1).total_earnings_minor, 0)

    def test_third_generation_is_paid(self):
        u4 = UserFactory(referred_by=self.u3)
        self.settled_purchase(u4)

        self.assertEqual(aggregate(self.u3).gen1_earnings_minor, 15000_00)
        self.assertEqual(aggregate(self.u2).gen2_earnings_minor, 3000_00)
        self.assertEqual(aggregate(self.u1).gen3_earnings_minor, 2000_00)

    def test_duplicate_settle_emits_once(self):
        tx = self.settled_purchase(self.u3)
        purchases.settle(tx.transaction_id, AdminApproval(admin=self.admin), actor=self.admin)
        ledger.emit_commissions(tx)

        self.assertEqual(ReferralEntry.objects.filter(source_transaction=tx).count(), 2)
        self.assertEqual(aggregate(self.u2).gen1_earnings_minor, 15000_00)

    def test_no_commission_without_referrer(self):
        self.settled_purchase(self.u1)
        self.assertFalse(ReferralEntry.objects.exists())

    def test_failed_purchase_pays_nothing(self):
        tx = PurchaseTransactionFactory(user=self.u3)
        purchases.fail(tx.transaction_id, reason='Declined')
        self.assertFalse(ReferralEntry.objects.exists())

    def test_count_is_distinct_buyers(self):
        self.settled_purchase(self.u3, shares=10)
        self.settled_purchase(self.u3, shares=20)
        other = UserFactory(referred_by=self.u2)
        self.settled_purchase(other, shares=10)

        self.assertEqual(aggregate(self.u2).gen1_count, 2)
        self.assertEqual(aggregate(self.u2).gen1_earnings_minor, 15 * (40 * 100_00) // 100)

    def test_upline_stops_at_cycle(self):
        a = UserFactory()
        b = UserFactory(referred_by=a)
        type(a).objects.filter(pk=a.pk).update(referred_by=b)
        a.refresh_from_db()

        self.assertEqual(ledger.upline(a), [(1, b)])

    def test_referral_tree(self):
        tree = ledger.referral_tree(self.u1)
        self.assertEqual(tree['gen1']['count'], 1)
        self.assertEqual(tree['gen1']['members'][0]['email'], self.u2.email)
        self.assertEqual(tree['gen2']['members'][0]['email'], self.u3.email)
        self.assertEqual(tree['gen3']['count'], 0)


class AdjustmentTests(ReferralChainMixin, TestCase):

    def setUp(self):
        self.build_chain()
        self.tx = self.settled_purchase(self.u3)
        self.entry = ReferralEntry.objects.get(source_transaction=self.tx, generation=1)

    def test_adjust_entry_amount(self):
        entry = ledger.adjust_entry(self.entry.pk, self.admin, 'Promo rate', amount_minor=10000_00)

        self.assertEqual(entry.original_amount_minor, 15000_00)
        self.assertEqual(entry.adjusted_by, self.admin)
        self.assertEqual(aggregate(self.u2).gen1_earnings_minor, 10000_00)

        ledger.adjust_entry(self.entry.pk, self.admin, 'Second change', amount_minor=12000_00)
        self.entry.refresh_from_db()
        self.assertEqual(self.entry.original_amount_minor, 15000_00)

    def test_adjust_requires_reason(self):
        with self.assertRaises(SharePlatformValidationError):
            ledger.adjust_entry(self.entry.pk, self.admin, '', amount_minor=1)

    def test_manual_credit_and_debit(self):
        credit = ledger.create_adjustment(self.u1, 500_00, Currency.NAIRA, self.admin, 'Event bonus')
        debit = ledger.create_adjustment(self.u2, -1000_00, Currency.NAIRA, self.admin, 'Clawback')

        self.assertEqual(credit.purchase_kind, EntryKind.ADJUSTMENT)
        self.assertEqual(debit.status, Status.REVERSED)
        self.assertEqual(debit.amount_minor, 1000_00)
        self.assertEqual(aggregate(self.u1).gen1_earnings_minor, 500_00)
        self.assertEqual(aggregate(self.u2).gen1_earnings_minor, 14000_00)

    def test_debit_cannot_go_negative(self):
        with self.assertRaises(LedgerIntegrityError):
            ledger.create_adjustment(self.u1, -1, Currency.NAIRA, self.admin, 'Too much')
        self.assertFalse(ReferralEntry.objects.filter(purchase_kind=EntryKind.ADJUSTMENT).exists())


class ReconcileTests(ReferralChainMixin, TestCase):

    def setUp(self):
        self.build_chain()
        self.tx = self.settled_purchase(self.u3)

    def _drift(self):
        ReferralAggregate.objects.filter(user=self.u2).update(gen1_earnings_minor=1, total_earnings_minor=1)

    def test_clean_ledger(self):
        result = ledger.reconcile(strict=True)
        self.assertEqual(result['drift'], [])
        self.assertEqual(result['unreversed_transactions'], [])

    def test_drift_is_reported(self):
        self._drift()
        result = ledger.reconcile()

        self.assertEqual(len(result['drift']), 1)
        fields = result['drift'][0]['fields']
        self.assertEqual(fields['gen1_earnings_minor'], {'expected': 15000_00, 'actual': 1})
        self.assertEqual(aggregate(self.u2).gen1_earnings_minor, 1)

    def test_strict_raises(self):
        self._drift()
        with self.assertRaises(LedgerIntegrityError):
            ledger.reconcile(strict=True)

    def test_repair_rebuilds(self):
        self._drift()
        result = ledger.reconcile(repair=True)

        self.assertEqual(result['repaired'], 1)
        self.assertEqual(aggregate(self.u2).gen1_earnings_minor, 15000_00)
        self.assertEqual(ledger.reconcile()['drift'], [])

    def test_refund_without_reversal_is_reported(self):
        PurchaseTransaction.objects.filter(pk=self.tx.pk).update(status=PurchaseTransaction.Status.REFUNDED)
        result = ledger.reconcile()
        self.assertEqual(result['unreversed_transactions'], [self.tx.transaction_id])

    def test_sync_stats(self):
        self._drift()
        self.assertEqual(ledger.sync_stats(self.u2), {'synced': 1})
        self.assertEqual(aggregate(self.u2).gen1_earnings_minor, 15000_00)

    def test_nightly_task_reports_without_repair(self):
        self._drift()
        summary = reconcile_referral_aggregates()
        self.assertEqual(summary['drifted'], 1)
        self.assertEqual(summary['repaired'], 0)

    def test_nightly_task_repairs_when_enabled(self):
        self._drift()
        with override_settings(SHARE_PLATFORM={**settings.SHARE_PLATFORM, 'REFERRAL_RECONCILE_REPAIR': True}):
            summary = reconcile_referral_aggregates()
        self.assertEqual(summary['repaired'], 1)


class ReferralApiTests(ReferralChainMixin, APITestCase):

    def setUp(self):
        self.build_chain()
        self.settled_purchase(self.u3)

    def test_earnings(self):
        self.client.force_authenticate(self.u2)
        response = self.client.get(reverse('referral-earnings'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['referral_code'], self.u2.referral_code)
        self.assertEqual(response.data['totals']['gen1']['earnings_minor'], 15000_00)
        self.assertEqual(response.data['totals']['gen1']['count'], 1)
        self.assertEqual(response.data['recent_entries'][0]['source_user_email'], self.u3.email)

    def test_entries_filter(self):
        self.client.force_authenticate(self.u1)
        response = self.client.get(reverse('referral-entries'), {'generation': 2})
        self.assertEqual(response.data['count'], 1)

    def test_admin_adjustment(self):
        self.client.force_authenticate(self.admin)
        response = self.client.post(reverse('referral-admin-adjustment'), {
            'user_id': str(self.u1.pk), 'amount_minor': 250_00, 'reason': 'Ambassador bonus',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(aggregate(self.u1).gen1_earnings_minor, 250_00)

    def test_admin_reconcile_and_sync(self):
        self.client.force_authenticate(self.admin)
        response = self.client.post(reverse('referral-admin-reconcile'), {}, format='json')
        self.assertEqual(response.data['drift'], [])

        response = self.client.post(reverse('referral-admin-sync'), {'user_id': 'not-a-uuid'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_admin_endpoints_need_admin(self):
        self.client.force_authenticate(self.u1)
        response = self.client.post(reverse('referral-admin-reconcile'), {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_tree(self):
        self.client.force_authenticate(self.u1)
        response = self.client.get(reverse('referral-tree'))
        self.assertEqual(response.data['gen1']['count'], 1)
        self.assertEqual(response.data['gen2']['count'], 1)

    def test_admin_adjusts_entry(self):
        entry = ReferralEntry.objects.get(generation=1)
        self.client.force_authenticate(self.admin)

        response = self.client.post(
            reverse('admin-referral-entry-adjust', args=[entry.pk]),
            {'amount_minor': 5000_00, 'reason': 'Capped campaign'},
            format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(aggregate(self.u2).gen1_earnings_minor, 5000_00)
