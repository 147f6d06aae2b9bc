"""Payment creation on both rails.

A payment is only ever created for a bounty open for funding. Fiat payments
get a processor charge (QR code) settling to a fresh deposit address; asset
payments get the bare deposit address, since the amount is whatever the
payer sends.
"""
import asyncio
import logging
import time
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from asyncpg.pool import Pool
from asyncpg.exceptions import PostgresError

from bounties import BountyRegistry, BountyStatus
from config import settings_conf
from database import get_pool
from database.exceptions import DatabaseError
from processor import ProcessorClient, quantize_fiat

from . import (
    ASSET_IDS,
    InvalidAmountError,
    NotFundableError,
    PaymentRail,
    PaymentStatus,
    parse_asset,
    short_address
)
from .allocator import AddressAllocator

logger = logging.getLogger(__name__)

INSERT_PAYMENT = '''
    INSERT INTO bounty_payments (
        bounty_id, payer_id, payer_name, rail,
        amount_native, amount_fiat,
        deposit_address, address_index,
        processor_transaction_id, merchant_order_id,
        qr_payload, qr_image, expires_at, status
    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14)
    RETURNING *
'''

class PaymentGateway:
    """Creates pending payments for bounties."""

    def __init__(
        self,
        pool: Optional[Pool] = None,
        registry: Optional[BountyRegistry] = None,
        allocator: Optional[AddressAllocator] = None,
        processor: Optional[ProcessorClient] = None,
        min_amount: Optional[Decimal] = None,
        max_amount: Optional[Decimal] = None
    ) -> None:
        self.pool = pool
        self.registry = registry or BountyRegistry(pool)
        self.allocator = allocator or AddressAllocator(pool)
        self.processor = processor or ProcessorClient()
        self.min_amount = min_amount if min_amount is not None else settings_conf['min_fiat_amount']
        self.max_amount = max_amount if max_amount is not None else settings_conf['max_fiat_amount']

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def _fundable_bounty(self, bounty_id: int) -> Dict[str, Any]:
        bounty = await self.registry.get_by_id(bounty_id)
        if bounty['status'] != BountyStatus.APPROVED.value:
            raise NotFundableError(bounty_id, bounty['status'])
        return bounty

    def _validate_amount(self, amount: Any) -> Decimal:
        try:
            amount = Decimal(str(amount))
            if not amount.is_finite():
                raise ValueError("amount must be a finite number")
            amount = quantize_fiat(amount)
        except (InvalidOperation, ValueError):
            raise InvalidAmountError(f"Invalid amount: {amount!r}")
        if amount < self.min_amount or amount > self.max_amount:
            raise InvalidAmountError(
                f"Amount must be between {self.min_amount} and {self.max_amount}"
            )
        return amount

    async def _insert_payment(self, *values) -> Dict[str, Any]:
        await self.ensure_pool()
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(INSERT_PAYMENT, *values)
        except PostgresError as e:
            logger.error(f"Database error recording payment: {e}")
            raise DatabaseError(f"Failed to record payment: {e}")
        return dict(row)

    async def create_fiat_payment(
        self,
        bounty_id: int,
        payer_id: int,
        payer_name: Optional[str],
        amount: Any
    ) -> Dict[str, Any]:
        """Create a fiat contribution backed by a processor charge.

        Returns:
            Dict with the pending ``payment`` row and the processor ``charge``
            (QR payload and image, expiry) for display

        Raises:
            InvalidAmountError: If the amount is outside the accepted range
            BountyNotFoundError: If the bounty does not exist
            NotFundableError: If the bounty is not open for funding
            AllocationError: If no deposit address could be derived
            ProcessorError: If the processor refuses the charge
        """
        amount = self._validate_amount(amount)
        bounty = await self._fundable_bounty(bounty_id)
        allocation = await self.allocator.derive_next()

        merchant_order_id = f"bounty_{bounty_id}_{int(time.time() * 1000)}"
        charge = await asyncio.to_thread(
            self.processor.create_charge,
            amount,
            f"Contribution: {bounty['title'][:50]}",
            allocation['address'],
            merchant_order_id
        )

        payment = await self._insert_payment(
            bounty_id,
            payer_id,
            payer_name,
            PaymentRail.FIAT.value,
            amount,
            amount,
            allocation['address'],
            allocation['index'],
            charge['id'],
            charge['merchant_order_id'],
            charge['qr_payload'],
            charge['qr_image'],
            charge['expires_at'],
            PaymentStatus.PENDING.value
        )
        logger.info(
            f"Fiat payment {payment['id']} of {amount} created for bounty {bounty_id} "
            f"(charge {charge['id']})"
        )
        return {'payment': payment, 'charge': charge}

    async def create_asset_payment(
        self,
        bounty_id: int,
        payer_id: int,
        payer_name: Optional[str],
        asset: str
    ) -> Dict[str, Any]:
        """Create a blockchain asset contribution with a fresh deposit address.

        Returns:
            Dict with the pending ``payment`` row and the ``asset_id`` to send

        Raises:
            InvalidAssetError: If the asset kind is unsupported
            BountyNotFoundError: If the bounty does not exist
            NotFundableError: If the bounty is not open for funding
            AllocationError: If no deposit address could be derived
        """
        rail = parse_asset(asset)
        await self._fundable_bounty(bounty_id)
        allocation = await self.allocator.derive_next()

        payment = await self._insert_payment(
            bounty_id,
            payer_id,
            payer_name,
            rail,
            Decimal('0'),
            Decimal('0'),
            allocation['address'],
            allocation['index'],
            None,
            None,
            None,
            None,
            None,
            PaymentStatus.PENDING.value
        )
        logger.info(
            f"{rail} payment {payment['id']} created for bounty {bounty_id} "
            f"at {short_address(allocation['address'])}"
        )
        return {'payment': payment, 'asset_id': ASSET_IDS[rail]}

    async def list_payments_for_payer(self, payer_id: int, limit: int = 20) -> List[Dict[str, Any]]:
        """A payer's most recent contributions with their bounty titles."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT p.*, b.title AS bounty_title
                FROM bounty_payments p
                JOIN bounty_features b ON b.id = p.bounty_id
                WHERE p.payer_id = $1
                ORDER BY p.created_at DESC
                LIMIT $2
                ''',
                payer_id,
                limit
            )
        return [dict(row) for row in rows]

    async def list_pending_asset_payments(
        self,
        min_age_seconds: int,
        max_age_hours: int,
        limit: int
    ) -> List[Dict[str, Any]]:
        """Pending asset payments old enough to scan but not yet abandoned."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT * FROM bounty_payments
                WHERE status = 'pending'
                  AND rail <> 'FIAT'
                  AND created_at < now() - $1::INTERVAL
                  AND created_at > now() - $2::INTERVAL
                ORDER BY created_at ASC
                LIMIT $3
                ''',
                timedelta(seconds=min_age_seconds),
                timedelta(hours=max_age_hours),
                limit
            )
        return [dict(row) for row in rows]
