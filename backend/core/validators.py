"""
Field validators shared by the share platform apps.
"""
import re

from django.core.exceptions import ValidationError
from django.utils.translation import gettext_lazy as _

WALLET_ADDRESS_RE = re.compile(r'^0x[a-fA-F0-9]{40}$')
TX_HASH_RE = re.compile(r'^0x[a-fA-F0-9]{64}$')


def validate_wallet_address(value):
    """Validate an EVM (BSC) wallet address."""
    if not WALLET_ADDRESS_RE.match(value or ''):
        raise ValidationError(
            _('Enter a valid wallet address (0x followed by 40 hex characters).'),
            code='invalid_wallet_address'
        )
    return value


def validate_tx_hash(value):
    """Validate an EVM transaction hash."""
    if not TX_HASH_RE.match(value or ''):
        raise ValidationError(
            _('Enter a valid transaction hash (0x followed by 64 hex characters).'),
            code='invalid_tx_hash'
        )
    return value


def validate_non_negative_amount(value):
    if value < 0:
        raise ValidationError(
            _('Amount cannot be negative.'),
            code='negative_amount'
        )
    return value


def validate_tier_number(value):
    if value not in (1, 2, 3):
        raise ValidationError(
            _('Tier number must be 1, 2 or 3.'),
            code='invalid_tier'
        )
    return value
