from datetime import timedelta
from unittest import mock

from django.conf import settings
from django.test import TestCase
from django.utils import timezone

from backend.apps.payments import ledger
from backend.apps.payments.models import PurchaseTransaction, Rail
from backend.apps.payments.rails import card, chain, invoice
from backend.apps.payments.reconciliation import sweep_stuck
from backend.apps.payments.tasks import verify_chain_payment
from backend.apps.shares import inventory
from backend.apps.shares.models import Currency, ShareKind, ShareTier
from backend.core.exceptions import ConflictingStateError, RailError, SharePlatformValidationError
from backend.tests.factories import PurchaseTransactionFactory, UserFactory, configure_inventory

Status = PurchaseTransaction.Status

BUYER_WALLET = '0x' + 'ab' * 20
TX_HASH = '0x' + '1f' * 32


def sold(number):
    return ShareTier.objects.get(number=number).sold_count


def paystack_client():
    client = mock.Mock()
    client.initialize.side_effect = lambda **kwargs: {
        'reference': kwargs['reference'],
        'authorization_url': f"https://checkout.paystack.test/{kwargs['reference']}",
        'access_code': 'access-code',
    }
    return client


def bsc_client(sender=BUYER_WALLET, recipient=None, amount_minor=10_00, status='0x1', block_time=None):
    """Fake node answering with a single USDT transfer."""
    recipient = recipient or settings.COMPANY_WALLET_ADDRESS
    block_time = block_time or timezone.now()
    client = mock.Mock()
    client.get_receipt.return_value = {
        'status': status,
        'blockNumber': '0x2a',
        'logs': [{
            'address': settings.USDT_CONTRACT_ADDRESS,
            'topics': [
                chain.TRANSFER_TOPIC,
                '0x' + '0' * 24 + sender[2:],
                '0x' + '0' * 24 + recipient[2:],
            ],
            'data': hex(amount_minor * 10 ** (settings.USDT_DECIMALS - 2)),
        }],
    }
    client.get_transaction.return_value = {'from': sender, 'to': settings.USDT_CONTRACT_ADDRESS}
    client.get_block.return_value = {'timestamp': hex(int(block_time.timestamp()))}
    return client


# ----------------------------------------------------------------------
# Card
# ----------------------------------------------------------------------

@mock.patch('backend.apps.payments.rails.card.get_client')
class CardRailTests(TestCase):

    def setUp(self):
        configure_inventory()
        self.user = UserFactory()

    def test_card_purchase_is_committed_after_verify(self, get_client):
        client = get_client.return_value = paystack_client()
        quote = inventory.quote(ShareKind.REGULAR, 1200, Currency.NAIRA)

        checkout = card.begin_purchase(self.user, quote)

        self.assertEqual(checkout['reference'], checkout['transaction_id'])
        self.assertEqual(checkout['amount_minor'], 140000_00)
        self.assertEqual(client.initialize.call_args.kwargs['currency'], Currency.NAIRA)
        self.assertEqual(sold(1), 0)

        client.verify.return_value = {
            'reference': checkout['reference'], 'status': 'success', 'amount': 140000_00,
        }
        tx = card.process_verification(checkout['reference'])

        self.assertEqual(tx.status, Status.COMPLETED)
        self.assertEqual((sold(1), sold(2), sold(3)), (1000, 200, 0))

    def test_card_is_naira_only(self, get_client):
        quote = inventory.quote(ShareKind.REGULAR, 1, Currency.USDT)
        with self.assertRaises(SharePlatformValidationError):
            card.begin_purchase(self.user, quote)
        self.assertFalse(PurchaseTransaction.objects.exists())

    def test_amount_mismatch_fails_the_purchase(self, get_client):
        client = get_client.return_value = paystack_client()
        checkout = card.begin_purchase(self.user, inventory.quote(ShareKind.REGULAR, 10, Currency.NAIRA))
        client.verify.return_value = {'reference': checkout['reference'], 'status': 'success', 'amount': 1}

        with self.assertRaises(SharePlatformValidationError):
            card.process_verification(checkout['reference'])

        self.assertEqual(PurchaseTransaction.objects.get().status, Status.FAILED)
        self.assertEqual(sold(1), 0)

    def test_abandoned_checkout_stays_pending(self, get_client):
        client = get_client.return_value = paystack_client()
        checkout = card.begin_purchase(self.user, inventory.quote(ShareKind.REGULAR, 10, Currency.NAIRA))
        client.verify.return_value = {'reference': checkout['reference'], 'status': 'abandoned'}

        self.assertEqual(card.process_verification(checkout['reference']).status, Status.PENDING)

    def test_declined_charge_fails(self, get_client):
        client = get_client.return_value = paystack_client()
        checkout = card.begin_purchase(self.user, inventory.quote(ShareKind.REGULAR, 10, Currency.NAIRA))
        client.verify.return_value = {
            'reference': checkout['reference'], 'status': 'failed', 'gateway_response': 'Declined',
        }

        tx = card.process_verification(checkout['reference'])
        self.assertEqual(tx.status, Status.FAILED)
        self.assertEqual(tx.status_reason, 'Declined')

    def test_terminal_init_error_fails_transaction(self, get_client):
        get_client.return_value.initialize.side_effect = RailError('Invalid key', rail='paystack')

        with self.assertRaises(RailError):
            card.begin_purchase(self.user, inventory.quote(ShareKind.REGULAR, 10, Currency.NAIRA))
        self.assertEqual(PurchaseTransaction.objects.get().status, Status.FAILED)

    def test_transient_init_error_leaves_transaction_pending(self, get_client):
        get_client.return_value.initialize.side_effect = RailError('Timeout', rail='paystack', transient=True)

        with self.assertRaises(RailError):
            card.begin_purchase(self.user, inventory.quote(ShareKind.REGULAR, 10, Currency.NAIRA))
        self.assertEqual(PurchaseTransaction.objects.get().status, Status.PENDING)


# ----------------------------------------------------------------------
# Chain
# ----------------------------------------------------------------------

@mock.patch('backend.apps.payments.rails.chain.get_client')
class ChainRailTests(TestCase):

    def setUp(self):
        configure_inventory()
        self.user = UserFactory(wallet_address=BUYER_WALLET)

    def _purchase(self, user=None, quantity=10):
        quote = inventory.quote(ShareKind.REGULAR, quantity, Currency.USDT)
        return chain.begin_purchase(user or self.user, quote)['transaction_id']

    def test_chain_purchase_settles_from_receipt(self, get_client):
        get_client.return_value = bsc_client()
        txid = self._purchase()

        tx = chain.submit_transaction_hash(txid, self.user, TX_HASH)
        self.assertEqual(tx.status, Status.VERIFYING)

        tx = chain.verify_transaction(txid)
        self.assertEqual(tx.status, Status.COMPLETED)
        self.assertEqual(sold(1), 10)

    def test_reused_hash_fails_second_purchase(self, get_client):
        get_client.return_value = bsc_client()
        other = UserFactory(wallet_address='0x' + 'cd' * 20)
        first = self._purchase()
        second = self._purchase(user=other)

        chain.submit_transaction_hash(first, self.user, TX_HASH)
        with self.assertRaises(ConflictingStateError):
            chain.submit_transaction_hash(second, other, TX_HASH.upper().replace('0X', '0x'))

        self.assertEqual(ledger.get_transaction(second).status, Status.FAILED)
        self.assertEqual(sold(1), 0)

        chain.verify_transaction(first)
        self.assertEqual(ledger.get_transaction(first).status, Status.COMPLETED)
        self.assertEqual(sold(1), 10)

    def test_resubmitting_a_used_hash_leaves_verifying_purchase_alone(self, get_client):
        get_client.return_value = bsc_client()
        other = UserFactory(wallet_address='0x' + 'cd' * 20)
        claimed = self._purchase(user=other)
        chain.submit_transaction_hash(claimed, other, '0x' + '3c' * 32)
        txid = self._purchase()
        chain.submit_transaction_hash(txid, self.user, TX_HASH)

        with self.assertRaises(ConflictingStateError):
            chain.submit_transaction_hash(txid, self.user, '0x' + '3c' * 32)

        tx = ledger.get_transaction(txid)
        self.assertEqual(tx.status, Status.VERIFYING)
        self.assertEqual(tx.chain_tx_hash, TX_HASH)

        chain.verify_transaction(txid)
        self.assertEqual(ledger.get_transaction(txid).status, Status.COMPLETED)
        self.assertEqual(sold(1), 10)

    def test_same_hash_resubmitted_is_a_no_op(self, get_client):
        get_client.return_value = bsc_client()
        txid = self._purchase()
        chain.submit_transaction_hash(txid, self.user, TX_HASH)

        tx = chain.submit_transaction_hash(txid, self.user, TX_HASH)

        self.assertEqual(tx.status, Status.VERIFYING)
        self.assertEqual(tx.status_history.filter(to_status=Status.VERIFYING).count(), 1)

    def test_hash_on_failed_purchase_is_refused(self, get_client):
        txid = self._purchase()
        ledger.fail(txid, reason='Expired')

        with self.assertRaises(ConflictingStateError):
            chain.submit_transaction_hash(txid, self.user, TX_HASH)
        self.assertIsNone(ledger.get_transaction(txid).chain_tx_hash)

    def test_usdt_only(self, get_client):
        with self.assertRaises(SharePlatformValidationError):
            chain.begin_purchase(self.user, inventory.quote(ShareKind.REGULAR, 1, Currency.NAIRA))

    def test_sender_wallet_required(self, get_client):
        user = UserFactory(wallet_address='')
        with self.assertRaises(SharePlatformValidationError):
            chain.begin_purchase(user, inventory.quote(ShareKind.REGULAR, 1, Currency.USDT))

    def test_malformed_hash_rejected(self, get_client):
        txid = self._purchase()
        with self.assertRaises(SharePlatformValidationError):
            chain.submit_transaction_hash(txid, self.user, '0x1234')

    def test_transfer_to_other_wallet_fails(self, get_client):
        get_client.return_value = bsc_client(recipient='0x' + '99' * 20)
        txid = self._purchase()
        chain.submit_transaction_hash(txid, self.user, TX_HASH)

        tx = chain.verify_transaction(txid)
        self.assertEqual(tx.status, Status.FAILED)
        self.assertEqual(sold(1), 0)

    def test_underpayment_fails(self, get_client):
        get_client.return_value = bsc_client(amount_minor=9_99)
        txid = self._purchase()
        chain.submit_transaction_hash(txid, self.user, TX_HASH)
        self.assertEqual(chain.verify_transaction(txid).status, Status.FAILED)

    def test_reverted_transfer_fails(self, get_client):
        get_client.return_value = bsc_client(status='0x0')
        txid = self._purchase()
        chain.submit_transaction_hash(txid, self.user, TX_HASH)
        self.assertEqual(chain.verify_transaction(txid).status, Status.FAILED)

    def test_old_transfer_is_rejected(self, get_client):
        get_client.return_value = bsc_client(block_time=timezone.now() - timedelta(hours=25))
        txid = self._purchase()
        chain.submit_transaction_hash(txid, self.user, TX_HASH)
        self.assertEqual(chain.verify_transaction(txid).status, Status.FAILED)

    def test_unmined_transaction_stays_verifying(self, get_client):
        get_client.return_value.get_receipt.return_value = None
        txid = self._purchase()
        chain.submit_transaction_hash(txid, self.user, TX_HASH)

        with self.assertRaises(chain.TransactionNotMined):
            chain.verify_transaction(txid)
        self.assertEqual(ledger.get_transaction(txid).status, Status.VERIFYING)

    def test_verify_task_is_scheduled_on_commit(self, get_client):
        get_client.return_value = bsc_client()
        txid = self._purchase()

        with mock.patch.object(verify_chain_payment, 'apply_async') as apply_async:
            with self.captureOnCommitCallbacks(execute=True):
                chain.submit_transaction_hash(txid, self.user, TX_HASH)

        apply_async.assert_called_once_with(args=[txid], countdown=15)

    def test_verify_task_reports_terminal_errors(self, get_client):
        get_client.return_value.get_receipt.side_effect = RailError('bad request', rail='bsc')
        txid = self._purchase()
        chain.submit_transaction_hash(txid, self.user, TX_HASH)

        result = verify_chain_payment.apply(args=[txid]).get()
        self.assertEqual(result['status'], 'error')


# ----------------------------------------------------------------------
# Invoice
# ----------------------------------------------------------------------

@mock.patch('backend.apps.payments.rails.invoice.get_client')
class InvoiceRailTests(TestCase):

    def setUp(self):
        configure_inventory()
        self.user = UserFactory()

    def _purchase(self, get_client, order_id='ord_123'):
        get_client.return_value.create_order.return_value = {
            'id': order_id, 'payment_link': f'https://pay.centiiv.test/{order_id}',
        }
        return invoice.begin_purchase(self.user, inventory.quote(ShareKind.REGULAR, 10, Currency.NAIRA))

    def test_order_payload(self, get_client):
        result = self._purchase(get_client)
        payload = get_client.return_value.create_order.call_args.args[0]

        self.assertEqual(result['order_id'], 'ord_123')
        self.assertEqual(payload['amount'], '1000.00')
        self.assertEqual(payload['currency'], 'NGN')
        self.assertEqual(payload['metadata']['transactionId'], result['transaction_id'])

    def test_paid_status_settles(self, get_client):
        self._purchase(get_client)
        tx = invoice.apply_provider_status('ord_123', 'paid', payment_id='pay_9')

        self.assertEqual(tx.status, Status.COMPLETED)
        self.assertEqual(tx.invoice_payment_id, 'pay_9')
        self.assertEqual(sold(1), 10)

    def test_processing_then_expired(self, get_client):
        self._purchase(get_client)
        self.assertEqual(invoice.apply_provider_status('ord_123', 'processing').status, Status.VERIFYING)
        self.assertEqual(invoice.apply_provider_status('ord_123', 'expired').status, Status.FAILED)

    def test_late_failure_does_not_touch_completed_purchase(self, get_client):
        self._purchase(get_client)
        invoice.apply_provider_status('ord_123', 'paid')
        self.assertEqual(invoice.apply_provider_status('ord_123', 'cancelled').status, Status.COMPLETED)

    def test_unknown_status_is_ignored(self, get_client):
        self._purchase(get_client)
        self.assertEqual(invoice.apply_provider_status('ord_123', 'weird').status, Status.PENDING)

    def test_callback_requeries_order(self, get_client):
        self._purchase(get_client)
        get_client.return_value.get_order.return_value = {'status': 'paid', 'paymentId': 'pay_1'}

        tx = invoice.handle_callback('ord_123')

        get_client.return_value.get_order.assert_called_once_with('ord_123')
        self.assertEqual(tx.status, Status.COMPLETED)

    def test_order_creation_failure_fails_transaction(self, get_client):
        get_client.return_value.create_order.side_effect = RailError('No order id', rail='centiiv')
        with self.assertRaises(RailError):
            invoice.begin_purchase(self.user, inventory.quote(ShareKind.REGULAR, 10, Currency.NAIRA))
        self.assertEqual(PurchaseTransaction.objects.get().status, Status.FAILED)


# ----------------------------------------------------------------------
# Stuck transaction sweep
# ----------------------------------------------------------------------

@mock.patch('backend.apps.payments.rails.card.get_client')
class SweepTests(TestCase):

    def setUp(self):
        configure_inventory()
        self.old = timezone.now() - timedelta(hours=3)

    def _card_tx(self, **kwargs):
        tx = PurchaseTransactionFactory(rail=Rail.CARD, created_at=self.old, **kwargs)
        PurchaseTransaction.objects.filter(pk=tx.pk).update(card_reference=tx.transaction_id)
        return tx

    def test_unanswered_purchase_is_flagged(self, get_client):
        tx = self._card_tx()
        get_client.return_value.verify.return_value = {'reference': tx.transaction_id, 'status': 'ongoing'}

        summary = sweep_stuck()

        self.assertEqual(summary, {'checked': 1, 'resolved': 0, 'stuck': 1, 'errors': 0})
        tx.refresh_from_db()
        self.assertEqual(tx.status, Status.PENDING)
        self.assertIsNotNone(tx.stuck_since)

    def test_resolved_purchase_is_not_flagged(self, get_client):
        tx = self._card_tx()
        get_client.return_value.verify.return_value = {
            'reference': tx.transaction_id, 'status': 'success', 'amount': tx.amount_minor,
        }

        summary = sweep_stuck()

        self.assertEqual(summary['resolved'], 1)
        tx.refresh_from_db()
        self.assertEqual(tx.status, Status.COMPLETED)
        self.assertIsNone(tx.stuck_since)

    def test_rail_errors_are_counted(self, get_client):
        self._card_tx()
        get_client.return_value.verify.side_effect = RailError('down', rail='paystack', transient=True)

        summary = sweep_stuck()

        self.assertEqual(summary['errors'], 1)
        self.assertEqual(summary['stuck'], 1)

    def test_recent_purchases_are_skipped(self, get_client):
        PurchaseTransactionFactory(rail=Rail.CARD)
        self.assertEqual(sweep_stuck()['checked'], 0)
        get_client.assert_not_called()

    def test_manual_purchases_are_flagged_without_requery(self, get_client):
        tx = PurchaseTransactionFactory(created_at=self.old)
        summary = sweep_stuck()
        self.assertEqual(summary['stuck'], 1)
        tx.refresh_from_db()
        self.assertIsNotNone(tx.stuck_since)
