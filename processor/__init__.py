"""Clients for the fiat payment processor and the asset price feed.

- ProcessorClient creates instant-transfer charges whose proceeds settle to a
  bounty deposit address, and reports their status.
- PriceOracle converts blockchain asset amounts to the fiat currency used for
  bounty totals.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

import requests

from config import settings_conf

logger = logging.getLogger(__name__)

FIAT_QUANTUM = Decimal('0.01')

WEBHOOK_EVENTS = [
    'transaction.created',
    'transaction.paid',
    'transaction.failed',
    'transaction.expired'
]

class ProcessorError(Exception):
    """Raised when the payment processor rejects or fails a request."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)

class PriceFeedError(Exception):
    """Raised when an asset price cannot be obtained."""
    pass

def quantize_fiat(amount: Decimal) -> Decimal:
    """Round a fiat amount to cents."""
    return Decimal(str(amount)).quantize(FIAT_QUANTUM, rounding=ROUND_HALF_UP)

def _parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into a naive UTC datetime."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        logger.warning(f"Unparseable processor timestamp: {value!r}")
        return None
    if parsed.tzinfo:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed

class ProcessorClient:
    """Payment processor REST client."""

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None,
                 webhook_secret: Optional[str] = None, app_base_url: Optional[str] = None,
                 timeout: int = 30):
        self.base_url = (base_url or settings_conf['processor_api_url']).rstrip('/')
        self.api_key = api_key if api_key is not None else settings_conf['processor_api_key']
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None
            else settings_conf['processor_webhook_secret']
        )
        self.app_base_url = (app_base_url or settings_conf['app_base_url']).rstrip('/')
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers['Content-Type'] = 'application/json'
        if self.api_key:
            self.session.headers['X-API-Key'] = self.api_key

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        logger.info(f"Processor request: {method} {path}")
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as e:
            raise ProcessorError(f"Processor request timed out after {self.timeout} seconds") from e
        except requests.exceptions.RequestException as e:
            raise ProcessorError(f"Processor request failed: {e}") from e

        logger.info(f"Processor response: {response.status_code} for {path}")
        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 400:
            message = data.get('message') if isinstance(data, dict) else None
            logger.error(f"Processor error {response.status_code}: {message or response.text[:200]}")
            raise ProcessorError(
                message or f"Processor returned HTTP {response.status_code}",
                response.status_code
            )
        return data

    def create_charge(
        self,
        amount: Decimal,
        description: str,
        deposit_address: str,
        merchant_order_id: str
    ) -> Dict[str, Any]:
        """Create an instant-transfer charge settling to ``deposit_address``.

        Returns:
            Dict with id, status, amount, qr_payload, qr_image, expires_at and
            merchant_order_id

        Raises:
            ProcessorError: If the processor is not configured, rejects the
                request or returns an incomplete charge
        """
        if not self.api_key:
            raise ProcessorError("Payment processor API key not configured")

        payload = {
            'amount': float(quantize_fiat(amount)),
            'description': description,
            'depixAddress': deposit_address,
            'merchantOrderId': merchant_order_id,
            'webhook': {
                'url': f"{self.app_base_url}/webhooks/fiat",
                'events': WEBHOOK_EVENTS,
                'secret': self.webhook_secret
            }
        }

        data = self._request('POST', '/external/pix/create', json=payload)
        if not data.get('id') or not data.get('qrCode'):
            logger.error(f"Invalid charge response for order {merchant_order_id}")
            raise ProcessorError("Invalid response from payment processor")

        logger.info(f"Charge {data['id']} created for order {merchant_order_id}")
        return {
            'id': data['id'],
            'status': data.get('status'),
            'amount': data.get('amount'),
            'qr_payload': data['qrCode'],
            'qr_image': data.get('qrCodeImage'),
            'expires_at': _parse_timestamp(data.get('expiresAt')),
            'merchant_order_id': data.get('merchantOrderId', merchant_order_id)
        }

    def get_charge_status(self, charge_id: str) -> Dict[str, Any]:
        """Fetch the current status of a charge."""
        if not charge_id:
            raise ProcessorError("Charge id is required")
        data = self._request('GET', f'/external/pix/status/{charge_id}')
        return {
            'id': data.get('id'),
            'status': data.get('status'),
            'amount': data.get('amount'),
            'processed_at': _parse_timestamp(data.get('processedAt')),
            'expires_at': _parse_timestamp(data.get('expiresAt')),
            'merchant_order_id': data.get('merchantOrderId')
        }

class PriceOracle:
    """Converts asset amounts to fiat using a CoinGecko-style price API."""

    # Price feed ids for assets that are not pegged to the fiat currency
    PRICE_IDS = {
        'LBTC': 'bitcoin',
        'USDT': 'tether'
    }
    PEGGED_ASSETS = {'DEPIX', 'FIAT'}

    def __init__(self, base_url: Optional[str] = None, currency: Optional[str] = None,
                 timeout: int = 10):
        self.base_url = (base_url or settings_conf['price_api_url']).rstrip('/')
        self.currency = (currency or settings_conf['fiat_currency']).lower()
        self.timeout = timeout
        self.session = requests.Session()

    def get_price(self, asset: str) -> Decimal:
        """Get the fiat price of one unit of ``asset``.

        Raises:
            PriceFeedError: If the asset is unknown or the feed fails
        """
        asset = asset.upper()
        if asset in self.PEGGED_ASSETS:
            return Decimal('1')

        price_id = self.PRICE_IDS.get(asset)
        if not price_id:
            raise PriceFeedError(f"No price feed for asset {asset}")

        try:
            response = self.session.get(
                f"{self.base_url}/simple/price",
                params={'ids': price_id, 'vs_currencies': self.currency},
                timeout=self.timeout
            )
            response.raise_for_status()
            price = response.json()[price_id][self.currency]
        except requests.exceptions.RequestException as e:
            logger.error(f"Price feed request failed for {asset}: {e}")
            raise PriceFeedError(f"Price feed unavailable for {asset}: {e}") from e
        except (KeyError, TypeError, ValueError) as e:
            raise PriceFeedError(f"Malformed price feed response for {asset}") from e

        price = Decimal(str(price))
        if price <= 0:
            raise PriceFeedError(f"Price feed returned non-positive price for {asset}")
        return price

    def convert_to_fiat(self, asset: str, amount: Decimal) -> Decimal:
        """Convert ``amount`` units of ``asset`` to fiat, rounded to cents."""
        return quantize_fiat(Decimal(str(amount)) * self.get_price(asset))

__all__ = [
    'ProcessorClient',
    'PriceOracle',
    'ProcessorError',
    'PriceFeedError',
    'quantize_fiat'
]
