"""
Money helpers. All ledger amounts are integers in minor units
(kobo for naira, cents for USDT).
"""
from decimal import Decimal, ROUND_HALF_UP

MINOR_PER_MAJOR = 100

CURRENCY_SYMBOLS = {
    'naira': '₦',
    'usdt': '$',
}

# ISO codes used when talking to card processors
ISO_CODES = {
    'naira': 'NGN',
    'usdt': 'USD',
}


def to_major(minor):
    return (Decimal(minor) / MINOR_PER_MAJOR).quantize(Decimal('0.01'))


def percent_of(amount_minor, percent):
    """``percent`` % of ``amount_minor``, rounded half-up to a whole minor unit."""
    value = Decimal(amount_minor) * Decimal(str(percent)) / Decimal(100)
    return int(value.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def split_evenly(amount_minor, parts):
    """
    Split an amount into ``parts`` installments. Every part gets the
    floored share; the remainder lands on the last one.
    """
    if parts <= 0:
        raise ValueError("parts must be positive")
    base = amount_minor // parts
    amounts = [base] * parts
    amounts[-1] += amount_minor - base * parts
    return amounts


def format_amount(amount_minor, currency):
    symbol = CURRENCY_SYMBOLS.get(currency, '')
    return f"{symbol}{to_major(amount_minor):,}"
