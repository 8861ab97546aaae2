"""
Human-facing identifiers for ledger records.

Format: ``PREFIX-XXXXXXXX-NNNNNN`` where the middle block is 4 random
bytes in upper-case hex and the tail is the last six digits of the
current epoch time in milliseconds.
"""
import secrets
import time

TRANSACTION_PREFIX = 'TXN'
COFOUNDER_PREFIX = 'CFD'
INSTALLMENT_PREFIX = 'INST'
COFOUNDER_INSTALLMENT_PREFIX = 'CFI'


def generate_identifier(prefix):
    entropy = secrets.token_hex(4).upper()
    stamp = str(int(time.time() * 1000))[-6:]
    return f"{prefix}-{entropy}-{stamp}"


def transaction_identifier(kind):
    prefix = COFOUNDER_PREFIX if kind == 'cofounder' else TRANSACTION_PREFIX
    return generate_identifier(prefix)


def plan_identifier(kind):
    prefix = COFOUNDER_INSTALLMENT_PREFIX if kind == 'cofounder' else INSTALLMENT_PREFIX
    return generate_identifier(prefix)
