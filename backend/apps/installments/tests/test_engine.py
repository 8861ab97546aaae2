from datetime import date, datetime, timedelta, timezone as dt_timezone
from unittest import mock

from django.core import mail
from django.test import TestCase
from django.utils import timezone

from backend.apps.installments import engine
from backend.apps.installments.models import Installment, InstallmentPlan
from backend.apps.installments.tasks import send_installment_reminders
from backend.apps.payments.models import PurchaseTransaction, Rail
from backend.apps.payments.rails import card, manual
from backend.apps.referrals.models import ReferralAggregate, ReferralEntry
from backend.apps.shares.models import Currency, ShareKind, ShareTier
from backend.core.exceptions import ConflictingStateError, SharePlatformValidationError
from backend.tests.factories import AdminUserFactory, UserFactory, configure_inventory

PlanStatus = InstallmentPlan.Status

PLAN_START = datetime(2024, 1, 15, 9, 0, tzinfo=dt_timezone.utc)
PROOF = {'proof_url': 'https://files.example.com/transfer.png', 'bank_name': 'Access Bank'}


def hundred_thousand_naira_share():
    """One tier 1 share priced at ₦100,000."""
    configure_inventory(tiers={
        1: (1000, 100000_00, 100_00),
        2: (1000, 120000_00, 120_00),
        3: (1000, 150000_00, 150_00),
    })


class ScheduleTests(TestCase):

    def test_due_dates_keep_day_of_month(self):
        self.assertEqual(
            engine.due_dates(PLAN_START, 3),
            [date(2024, 2, 15), date(2024, 3, 15), date(2024, 4, 15)],
        )

    def test_month_end_is_clamped(self):
        dates = engine.due_dates(datetime(2024, 1, 31, tzinfo=dt_timezone.utc), 3)
        self.assertEqual(dates, [date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30)])

    def test_schedule_remainder_on_last_installment(self):
        rows = engine.build_schedule(100_01, 3, PLAN_START)
        self.assertEqual([r['scheduled_amount_minor'] for r in rows], [33_33, 33_33, 33_35])
        self.assertTrue(rows[0]['is_first_payment'])
        self.assertFalse(rows[1]['is_first_payment'])

    def test_calculator(self):
        hundred_thousand_naira_share()
        preview = engine.calculate_plan(ShareKind.REGULAR, Currency.NAIRA, 5, start=PLAN_START)

        self.assertEqual(preview['total_price_minor'], 100000_00)
        self.assertEqual(preview['min_down_payment_minor'], 20000_00)
        self.assertEqual(preview['late_fee_cap_minor'], 5000_00)
        self.assertEqual(preview['installments'][0]['due_date'], '2024-02-15')
        self.assertFalse(InstallmentPlan.objects.exists())

    def test_months_out_of_range(self):
        hundred_thousand_naira_share()
        for months in (1, 13):
            with self.assertRaises(SharePlatformValidationError):
                engine.calculate_plan(ShareKind.REGULAR, Currency.NAIRA, months)


class PlanLifecycleTests(TestCase):

    def setUp(self):
        hundred_thousand_naira_share()
        self.user = UserFactory()
        self.admin = AdminUserFactory()
        self.plan = engine.create_plan(self.user, ShareKind.REGULAR, Currency.NAIRA, 5, start=PLAN_START)

    def _pay_manually(self, amount_minor, plan=None):
        plan = plan or self.plan
        result = engine.start_payment(plan.plan_id, plan.user, amount_minor, method='manual', proof=PROOF)
        return manual.approve(result['transaction_id'], self.admin, 'Transfer received')

    def test_plan_created_with_schedule(self):
        self.assertTrue(self.plan.plan_id.startswith('INST-'))
        self.assertEqual(self.plan.status, PlanStatus.PENDING)
        self.assertEqual(self.plan.min_down_payment_minor, 20000_00)
        self.assertEqual(self.plan.installments.count(), 5)
        # A plan reserves nothing
        self.assertEqual(ShareTier.objects.get(number=1).sold_count, 0)

    def test_one_open_plan_per_kind(self):
        with self.assertRaises(ConflictingStateError):
            engine.create_plan(self.user, ShareKind.REGULAR, Currency.NAIRA, 3)
        cofounder = engine.create_plan(self.user, ShareKind.COFOUNDER, Currency.NAIRA, 3)
        self.assertTrue(cofounder.plan_id.startswith('CFI-'))

    def test_first_payment_must_cover_down_payment(self):
        with self.assertRaises(SharePlatformValidationError):
            engine.start_payment(self.plan.plan_id, self.user, 20000_00 - 1, method='manual', proof=PROOF)

        result = engine.start_payment(self.plan.plan_id, self.user, 20000_00, method='manual', proof=PROOF)
        self.assertEqual(result['status'], PurchaseTransaction.Status.VERIFYING)

    def test_payment_cannot_exceed_balance(self):
        with self.assertRaises(SharePlatformValidationError):
            engine.start_payment(self.plan.plan_id, self.user, 100000_00 + 1, method='manual', proof=PROOF)

    def test_one_payment_in_flight(self):
        engine.start_payment(self.plan.plan_id, self.user, 30000_00, method='manual', proof=PROOF)
        with self.assertRaises(ConflictingStateError):
            engine.start_payment(self.plan.plan_id, self.user, 30000_00, method='manual', proof=PROOF)

    def test_manual_payment_needs_proof(self):
        with self.assertRaises(SharePlatformValidationError):
            engine.start_payment(self.plan.plan_id, self.user, 30000_00, method='manual')

    def test_partial_payment_releases_nothing_yet(self):
        tx = self._pay_manually(30000_00)
        self.plan.refresh_from_db()

        self.assertEqual(tx.status, PurchaseTransaction.Status.COMPLETED)
        self.assertEqual(tx.rail, Rail.INSTALLMENT)
        self.assertEqual(tx.shares, 0)
        self.assertEqual(self.plan.status, PlanStatus.ACTIVE)
        self.assertEqual(self.plan.total_paid_minor, 30000_00)
        self.assertEqual(self.plan.shares_released, 0)
        self.assertEqual(self.plan.remaining_balance_minor, 70000_00)

        first, second = self.plan.installments.order_by('number')[:2]
        self.assertEqual((first.status, first.paid_amount_minor), (Installment.Status.PAID, 20000_00))
        self.assertEqual((second.status, second.paid_amount_minor), (Installment.Status.PARTIAL, 10000_00))
        self.assertEqual(second.transaction_id, tx.transaction_id)

    def test_completion_releases_the_share(self):
        self._pay_manually(30000_00)
        final = self._pay_manually(70000_00)
        self.plan.refresh_from_db()

        self.assertEqual(self.plan.status, PlanStatus.COMPLETED)
        self.assertIsNotNone(self.plan.completed_at)
        self.assertEqual(self.plan.shares_released, 1)
        self.assertEqual(self.plan.tier_released, {1: 1, 2: 0, 3: 0})
        self.assertEqual(final.shares, 1)
        self.assertEqual(final.tier_breakdown, {1: 1, 2: 0, 3: 0})
        self.assertEqual(ShareTier.objects.get(number=1).sold_count, 1)
        self.assertFalse(self.plan.installments.exclude(status=Installment.Status.PAID).exists())

        with self.assertRaises(ConflictingStateError):
            engine.start_payment(self.plan.plan_id, self.user, 1, method='manual', proof=PROOF)

    def _referred_plan(self):
        grandparent = UserFactory()
        parent = UserFactory(referred_by=grandparent)
        buyer = UserFactory(referred_by=parent)
        plan = engine.create_plan(buyer, ShareKind.REGULAR, Currency.NAIRA, 5, start=PLAN_START)
        return plan, parent, grandparent

    def test_commission_is_on_amount_paid(self):
        plan, parent, grandparent = self._referred_plan()

        tx = self._pay_manually(30000_00, plan=plan)

        entries = ReferralEntry.objects.filter(source_transaction=tx, status=ReferralEntry.Status.COMPLETED)
        self.assertEqual(
            sorted(entries.values_list('generation', 'beneficiary', 'amount_minor')),
            [(1, parent.pk, 4500_00), (2, grandparent.pk, 900_00)],
        )
        self.assertEqual(ReferralAggregate.objects.get(user=parent).gen1_earnings_minor, 4500_00)

    def test_each_payment_emits_its_own_commission(self):
        plan, parent, _grandparent = self._referred_plan()

        first = self._pay_manually(30000_00, plan=plan)
        second = self._pay_manually(20000_00, plan=plan)

        gen1 = ReferralEntry.objects.filter(beneficiary=parent, generation=1).order_by('-amount_minor')
        self.assertEqual(
            [(e.source_transaction_id, e.amount_minor) for e in gen1],
            [(first.pk, 4500_00), (second.pk, 3000_00)],
        )
        aggregate = ReferralAggregate.objects.get(user=parent)
        self.assertEqual(aggregate.gen1_earnings_minor, 7500_00)
        self.assertEqual(aggregate.gen1_count, 1)

    def test_late_fee_after_partial_payment(self):
        day_one = PLAN_START + timedelta(days=1)
        with mock.patch.object(timezone, 'now', return_value=day_one):
            self._pay_manually(30000_00)

        summary = engine.apply_late_fees(now=PLAN_START + timedelta(days=66))
        self.plan.refresh_from_db()

        self.assertEqual(summary, {'checked': 1, 'late': 1, 'fees_changed': 1})
        self.assertEqual(self.plan.months_late, 2)
        self.assertEqual(self.plan.current_late_fee_minor, 476_00)
        self.assertEqual(self.plan.status, PlanStatus.LATE)
        # The fee is tracked on its own; the balance is unchanged
        self.assertEqual(self.plan.remaining_balance_minor, 70000_00)

    def test_late_fee_is_capped(self):
        engine.apply_late_fees(now=PLAN_START + timedelta(days=30 * 40))
        self.plan.refresh_from_db()
        self.assertEqual(self.plan.current_late_fee_minor, 5000_00)

    def test_within_grace_period_is_not_late(self):
        engine.apply_late_fees(now=PLAN_START + timedelta(days=30))
        self.plan.refresh_from_db()
        self.assertEqual(self.plan.status, PlanStatus.PENDING)
        self.assertEqual(self.plan.current_late_fee_minor, 0)
        self.assertIsNotNone(self.plan.last_late_check_at)

    def test_late_sweep_is_repeatable(self):
        now = PLAN_START + timedelta(days=66)
        engine.apply_late_fees(now=now)
        summary = engine.apply_late_fees(now=now)
        self.assertEqual(summary['fees_changed'], 0)

    def test_payment_resets_late_fee(self):
        engine.apply_late_fees(now=PLAN_START + timedelta(days=66))
        self._pay_manually(30000_00)
        self.plan.refresh_from_db()

        self.assertEqual(self.plan.status, PlanStatus.ACTIVE)
        self.assertEqual(self.plan.current_late_fee_minor, 0)
        self.assertEqual(self.plan.months_late, 0)

    def test_cancel_requires_down_payment(self):
        with self.assertRaises(ConflictingStateError):
            engine.cancel_plan(self.plan.plan_id, self.user, user=self.user)

    def test_cancel_keeps_released_shares_and_cancels_open_payments(self):
        self._pay_manually(30000_00)
        pending = engine.start_payment(self.plan.plan_id, self.user, 10000_00, method='manual', proof=PROOF)

        plan = engine.cancel_plan(self.plan.plan_id, self.admin, reason='Customer request')

        self.assertEqual(plan.status, PlanStatus.CANCELLED)
        self.assertEqual(plan.cancellation_reason, 'Customer request')
        self.assertEqual(
            PurchaseTransaction.objects.get(transaction_id=pending['transaction_id']).status,
            PurchaseTransaction.Status.CANCELLED,
        )
        with self.assertRaises(ConflictingStateError):
            engine.cancel_plan(self.plan.plan_id, self.admin)

    def test_cancelled_plan_frees_the_kind(self):
        self._pay_manually(30000_00)
        engine.cancel_plan(self.plan.plan_id, self.user, user=self.user)
        engine.create_plan(self.user, ShareKind.REGULAR, Currency.NAIRA, 3)
        self.assertEqual(InstallmentPlan.objects.filter(user=self.user).count(), 2)

    @mock.patch('backend.apps.payments.rails.card.get_client')
    def test_card_payment(self, get_client):
        get_client.return_value.initialize.side_effect = lambda **kwargs: {
            'reference': kwargs['reference'], 'authorization_url': 'https://checkout.paystack.test/p',
        }

        checkout = engine.start_payment(self.plan.plan_id, self.user, 25000_00)

        self.assertEqual(checkout['plan_id'], self.plan.plan_id)
        self.assertEqual(get_client.return_value.initialize.call_args.kwargs['metadata']['plan_id'],
                         self.plan.plan_id)

        get_client.return_value.verify.return_value = {
            'reference': checkout['reference'], 'status': 'success', 'amount': 25000_00,
        }
        card.process_verification(checkout['reference'])
        self.plan.refresh_from_db()
        self.assertEqual(self.plan.total_paid_minor, 25000_00)

    def test_card_payment_needs_naira_plan(self):
        self.plan.currency = Currency.USDT
        self.plan.save()
        with self.assertRaises(SharePlatformValidationError):
            engine.start_payment(self.plan.plan_id, self.user, 25000_00)


class CofounderPlanTests(TestCase):

    def test_cofounder_plan_completes_into_pool(self):
        configure_inventory()
        user = UserFactory()
        admin = AdminUserFactory()
        plan = engine.create_plan(user, ShareKind.COFOUNDER, Currency.NAIRA, 2)
        self.assertEqual(plan.min_down_payment_minor, 250000_00)

        for amount in (500000_00, 500000_00):
            result = engine.start_payment(plan.plan_id, user, amount, method='manual', proof=PROOF)
            manual.approve(result['transaction_id'], admin)

        plan.refresh_from_db()
        self.assertEqual(plan.status, PlanStatus.COMPLETED)
        self.assertEqual(plan.shares_released, 1)
        from backend.apps.shares.models import CoFounderInventory
        self.assertEqual(CoFounderInventory.load().sold_count, 1)


class ReleaseTargetTests(TestCase):

    def test_proportional_release_across_tiers(self):
        plan = InstallmentPlan(total_shares=10, total_price_minor=1000, tier1_shares=4, tier2_shares=6)

        self.assertEqual(engine.release_targets(plan, 0), (0, {1: 0, 2: 0, 3: 0}))
        # 55% paid earns 5 shares; tier floors give 2 + 3, no shortfall
        self.assertEqual(engine.release_targets(plan, 550), (5, {1: 2, 2: 3, 3: 0}))
        # 65% earns 6; floors give 2 + 3, the missing share goes to tier 1
        self.assertEqual(engine.release_targets(plan, 650), (6, {1: 3, 2: 3, 3: 0}))
        self.assertEqual(engine.release_targets(plan, 1000), (10, {1: 4, 2: 6, 3: 0}))


class ReminderTests(TestCase):

    def test_reminders_for_due_installments(self):
        hundred_thousand_naira_share()
        user = UserFactory()
        now = timezone.now()
        engine.create_plan(user, ShareKind.REGULAR, Currency.NAIRA, 3, start=now - timedelta(days=29))
        other = UserFactory()
        engine.create_plan(other, ShareKind.REGULAR, Currency.NAIRA, 3, start=now)

        result = send_installment_reminders.apply().get()

        self.assertEqual(result, {'status': 'success', 'sent': 1, 'failed': 0})
        self.assertEqual(mail.outbox[0].to, [user.email])
        self.assertIn('Installment 1 of 3', mail.outbox[0].body)
