"""Payments module for bounty contributions.

Contributions arrive on one of two rails:

- FIAT: an instant bank transfer charged through the payment processor,
  correlated by the processor transaction id and merchant order id.
- DEPIX, LBTC, USDT: blockchain assets sent to a dedicated deposit address,
  correlated by on-chain transaction id.

Every payment starts pending and moves exactly once to confirmed, expired or
failed.
"""
from enum import Enum
from typing import Optional

from bounties import ValidationError

class PaymentRail(str, Enum):
    """Payment rails accepted for contributions."""
    FIAT = 'FIAT'
    DEPIX = 'DEPIX'
    LBTC = 'LBTC'
    USDT = 'USDT'

class PaymentStatus(str, Enum):
    """Payment states. Everything but PENDING is terminal."""
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    EXPIRED = 'expired'
    FAILED = 'failed'

ASSET_RAILS = (PaymentRail.DEPIX.value, PaymentRail.LBTC.value, PaymentRail.USDT.value)

# Liquid Network asset ids
ASSET_IDS = {
    PaymentRail.LBTC.value: '6f0279e9ed041c3d710a9f57d0c02928416460c4b722ae3457a11eec381c526d',
    PaymentRail.DEPIX.value: '02f22f8d9c76ab41661a2729e4752e2c5d1a263012141b86ea98af5472df5189',
    PaymentRail.USDT.value: 'ce091c998b83c78bb71a632313ba3760f1763d9cfcffae02258ffa9865a37bd2',
}

# Processor vocabulary, matched against both the status and event fields
FIAT_SUCCESS_STATUSES = {'PAID', 'COMPLETED'}
FIAT_EXPIRED_STATUSES = {'EXPIRED'}
FIAT_FAILED_STATUSES = {'FAILED', 'CANCELLED', 'REFUNDED'}
FIAT_SUCCESS_EVENTS = {'transaction.paid', 'transaction.completed'}
FIAT_EXPIRED_EVENTS = {'transaction.expired'}
FIAT_FAILED_EVENTS = {'transaction.failed', 'transaction.cancelled', 'transaction.refunded'}

class PaymentError(Exception):
    """Base class for payment-related errors."""
    pass

class NotFundableError(PaymentError):
    """Raised when paying into a bounty that is not open for funding."""
    def __init__(self, bounty_id: int, status: str):
        self.bounty_id = bounty_id
        self.status = status
        super().__init__(
            f"Bounty {bounty_id} is not open for funding (status '{status}')"
        )

class InvalidAssetError(PaymentError):
    """Raised for an unsupported asset kind."""
    def __init__(self, asset: str):
        self.asset = asset
        super().__init__(
            f"Unsupported asset {asset!r}, expected one of {', '.join(ASSET_RAILS)}"
        )

class InvalidAmountError(PaymentError, ValidationError):
    """Raised when a contribution amount is outside the accepted range."""
    pass

class AllocationError(PaymentError):
    """Raised when a deposit address cannot be derived."""
    pass

def parse_asset(asset: str) -> str:
    """Normalize an asset kind, raising InvalidAssetError if unsupported."""
    normalized = (asset or '').strip().upper()
    if normalized not in ASSET_RAILS:
        raise InvalidAssetError(asset)
    return normalized

def classify_fiat_status(status: Optional[str] = None, event: Optional[str] = None) -> Optional[str]:
    """Map processor status/event vocabulary to a terminal payment status.

    Either field is authoritative when present. Returns None for
    non-terminal notifications such as transaction.created.
    """
    status = (status or '').upper()
    event = (event or '').lower()

    if status in FIAT_SUCCESS_STATUSES or event in FIAT_SUCCESS_EVENTS:
        return PaymentStatus.CONFIRMED.value
    if status in FIAT_EXPIRED_STATUSES or event in FIAT_EXPIRED_EVENTS:
        return PaymentStatus.EXPIRED.value
    if status in FIAT_FAILED_STATUSES or event in FIAT_FAILED_EVENTS:
        return PaymentStatus.FAILED.value
    return None

def short_address(address: Optional[str]) -> str:
    """Truncate a deposit address for log output."""
    if not address:
        return ''
    return f"{address[:12]}..." if len(address) > 12 else address

__all__ = [
    'PaymentRail',
    'PaymentStatus',
    'ASSET_RAILS',
    'ASSET_IDS',
    'PaymentError',
    'NotFundableError',
    'InvalidAssetError',
    'InvalidAmountError',
    'AllocationError',
    'parse_asset',
    'classify_fiat_status',
    'short_address'
]
