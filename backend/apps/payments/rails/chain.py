"""
Chain rail: USDT (BEP-20) transfers to the company wallet on BSC.

The buyer pays from their own wallet and submits the transaction hash.
The hash is stored (globally one-use) and a delayed task reads the
receipt back over JSON-RPC and settles or fails the purchase.
"""
import logging
from datetime import datetime, timedelta, timezone as dt_timezone

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction

from backend.apps.shares.models import Currency
from backend.core.exceptions import ConflictingStateError, NotFoundError, RailError, SharePlatformValidationError
from backend.core.validators import validate_tx_hash, validate_wallet_address

from .. import ledger
from ..evidence import AdminApproval, ChainEvidence, EvidenceMismatch
from ..models import PurchaseTransaction, Rail
from .base import build_session, send

logger = logging.getLogger(__name__)

RAIL = 'bsc'

# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC = '0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef'


class TransactionNotMined(RailError):
    default_detail = 'The transaction is not confirmed yet.'
    default_code = 'not_mined'

    def __init__(self, detail=None, code=None):
        super().__init__(detail=detail, code=code, rail=RAIL, transient=True)


class BscClient:
    """Minimal JSON-RPC client for a BSC node."""

    def __init__(self, rpc_url=None, session=None):
        self.rpc_url = rpc_url or settings.BSC_RPC_URL
        self.session = session or build_session(allowed_methods=("POST",))

    def call(self, method, params):
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        data = send(self.session, "POST", self.rpc_url, RAIL, json=payload)
        if data.get('error'):
            raise RailError(f"BSC node error: {data['error'].get('message')}", rail=RAIL)
        return data.get('result')

    def get_receipt(self, tx_hash):
        return self.call("eth_getTransactionReceipt", [tx_hash])

    def get_transaction(self, tx_hash):
        return self.call("eth_getTransactionByHash", [tx_hash])

    def get_block(self, block_number):
        return self.call("eth_getBlockByNumber", [block_number, False])


def get_client():
    return BscClient()


def _topic_address(topic):
    return '0x' + topic[-40:].lower()


def _minor_from_token_units(value):
    # Token amounts carry USDT_DECIMALS places; ledger amounts carry two
    return value // (10 ** (settings.USDT_DECIMALS - 2))


def read_transfer(tx_hash, client=None):
    """
    Read a transaction back from the chain.

    Returns ``(evidence, block_time)``. Raises ``TransactionNotMined``
    when the node has no receipt yet.
    """
    client = client or get_client()
    receipt = client.get_receipt(tx_hash)
    if not receipt:
        raise TransactionNotMined(f"Transaction {tx_hash} not found or still pending.")
    chain_tx = client.get_transaction(tx_hash) or {}

    token = settings.USDT_CONTRACT_ADDRESS.lower()
    transfer = None
    for log in receipt.get('logs', []):
        topics = log.get('topics') or []
        if (log.get('address', '').lower() == token
                and len(topics) == 3
                and topics[0].lower() == TRANSFER_TOPIC):
            transfer = log
            break

    recipient, amount_minor = '', 0
    if transfer is not None:
        recipient = _topic_address(transfer['topics'][2])
        amount_minor = _minor_from_token_units(int(transfer.get('data') or '0x0', 16))

    block = client.get_block(receipt['blockNumber']) or {}
    block_time = None
    if block.get('timestamp'):
        block_time = datetime.fromtimestamp(int(block['timestamp'], 16), tz=dt_timezone.utc)

    evidence = ChainEvidence(
        tx_hash=tx_hash,
        from_address=(chain_tx.get('from') or '').lower(),
        token_contract=(chain_tx.get('to') or '').lower(),
        recipient=recipient,
        amount_minor=amount_minor,
        confirmed=int(receipt.get('status') or '0x0', 16) == 1,
    )
    return evidence, block_time


# ----------------------------------------------------------------------
# Rail operations
# ----------------------------------------------------------------------

def begin_purchase(user, quote, from_address=None):
    """Record the expected transfer and hand back the wallet to pay into."""
    if quote.currency != Currency.USDT:
        raise SharePlatformValidationError("Crypto payments are only available in USDT.")
    from_address = from_address or user.wallet_address
    if not from_address:
        raise SharePlatformValidationError("A sending wallet address is required.")
    try:
        validate_wallet_address(from_address)
    except DjangoValidationError as e:
        raise SharePlatformValidationError(e.messages[0])

    tx = ledger.create_transaction(
        user, quote, Rail.CHAIN, actor=user,
        chain_from_address=from_address.lower(),
        chain_to_address=settings.COMPANY_WALLET_ADDRESS.lower(),
    )
    return {
        "transaction_id": tx.transaction_id,
        "wallet_address": settings.COMPANY_WALLET_ADDRESS,
        "token_contract": settings.USDT_CONTRACT_ADDRESS,
        "network": "BSC (BEP-20)",
        "amount_minor": tx.amount_minor,
        "currency": tx.currency,
        "from_address": tx.chain_from_address,
    }


def submit_transaction_hash(transaction_id, user, tx_hash):
    """
    Attach the buyer's transaction hash and schedule verification. A hash
    already used by any other purchase fails this one.
    """
    try:
        validate_tx_hash(tx_hash)
    except DjangoValidationError as e:
        raise SharePlatformValidationError(e.messages[0])
    tx_hash = tx_hash.lower()

    tx = ledger.get_transaction(transaction_id, user=user)
    if tx.rail != Rail.CHAIN:
        raise SharePlatformValidationError("This transaction is not a crypto payment.")
    if tx.chain_tx_hash:
        if tx.chain_tx_hash == tx_hash and tx.status == PurchaseTransaction.Status.VERIFYING:
            return tx
        raise ConflictingStateError(
            f"Transaction {tx.transaction_id} already has a transaction hash and is {tx.status}."
        )
    if tx.status != PurchaseTransaction.Status.PENDING:
        raise ConflictingStateError(f"Transaction {tx.transaction_id} is {tx.status}.")

    if PurchaseTransaction.objects.filter(chain_tx_hash=tx_hash).exclude(pk=tx.pk).exists():
        _fail_duplicate(tx, tx_hash)

    try:
        tx = ledger.begin_verification(
            transaction_id, actor=user, reason="Transaction hash submitted", chain_tx_hash=tx_hash,
        )
    except IntegrityError:
        # Another purchase claimed the hash between our check and the write
        _fail_duplicate(tx, tx_hash)

    _schedule_verification(tx.transaction_id)
    return tx


def _fail_duplicate(tx, tx_hash):
    logger.warning(f"Transaction hash {tx_hash} reused for {tx.transaction_id}")
    if tx.is_open:
        ledger.fail(tx.transaction_id, reason=f"Transaction hash {tx_hash} was already used")
    raise ConflictingStateError("This transaction hash has already been used.")


def _schedule_verification(transaction_id):
    from ..tasks import verify_chain_payment

    delay = settings.SHARE_PLATFORM["CHAIN_VERIFY_DELAY_SECONDS"]
    transaction.on_commit(
        lambda: verify_chain_payment.apply_async(args=[transaction_id], countdown=delay)
    )


def _is_stale(tx, block_time):
    if block_time is None:
        return False
    max_age = timedelta(hours=settings.SHARE_PLATFORM["CHAIN_MAX_TX_AGE_HOURS"])
    reference_time = tx.verification_started_at or tx.created_at
    return block_time < reference_time - max_age


def verify_transaction(transaction_id):
    """
    Check the submitted hash on chain and settle or fail the purchase.
    ``TransactionNotMined`` and transient ``RailError`` leave the purchase
    in ``verifying`` for a later attempt.
    """
    try:
        tx = PurchaseTransaction.objects.get(transaction_id=transaction_id)
    except PurchaseTransaction.DoesNotExist:
        raise NotFoundError(f"Transaction {transaction_id} does not exist.")
    if tx.status != PurchaseTransaction.Status.VERIFYING or not tx.chain_tx_hash:
        logger.info(f"Skipping chain verification of {transaction_id}: status {tx.status}")
        return tx

    evidence, block_time = read_transfer(tx.chain_tx_hash)
    if _is_stale(tx, block_time):
        return ledger.fail(transaction_id, reason="Transaction is more than 24 hours old")
    try:
        return ledger.settle(transaction_id, evidence, reason="On-chain transfer verified")
    except EvidenceMismatch as e:
        logger.error(f"Chain evidence rejected for {transaction_id}: {e.detail}")
        return ledger.fail(transaction_id, reason=str(e.detail))


def admin_approve(transaction_id, admin, note=""):
    tx = ledger.settle(transaction_id, AdminApproval(admin=admin, note=note), actor=admin,
                       reason=note or "Approved by admin")
    if note:
        PurchaseTransaction.objects.filter(pk=tx.pk).update(admin_note=note)
        tx.admin_note = note
    return tx


def admin_reject(transaction_id, admin, reason=""):
    return ledger.fail(transaction_id, actor=admin, reason=reason or "Rejected by admin")
