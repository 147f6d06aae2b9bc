"""Payment reconciliation.

Confirmations reach us asynchronously and at least once: processor webhooks
for the fiat rail, wallet scans for the asset rail. Each entry point moves a
payment out of pending with a guarded UPDATE, so a redelivered event finds
nothing to change and becomes a no-op. Bounty totals are then recomputed
from the confirmed payments rather than incremented.
"""
import asyncio
import logging
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from asyncpg.pool import Pool
from asyncpg.exceptions import PostgresError
from pydantic import BaseModel

from bounties import BountyRegistry, lock_rankings
from config import settings_conf
from database import get_pool
from database.exceptions import DatabaseError
from notifications import NotificationDispatcher
from processor import PriceOracle, quantize_fiat

from . import PaymentRail, PaymentStatus, classify_fiat_status, short_address

logger = logging.getLogger(__name__)

class ReconciliationOutcome(str, Enum):
    CONFIRMED = 'confirmed'
    EXPIRED = 'expired'
    FAILED = 'failed'
    IGNORED = 'ignored'
    ALREADY_PROCESSED = 'already_processed'
    PAYMENT_NOT_FOUND = 'payment_not_found'

class ReconciliationResult(BaseModel):
    """What a reconciliation call did.

    ``success`` is False only when the event referenced an unknown payment.
    Duplicate and non-terminal events are successful no-ops.
    """
    success: bool
    outcome: ReconciliationOutcome
    message: str
    payment: Optional[Dict[str, Any]] = None

def net_amount(gross: Decimal, fee: Decimal) -> Decimal:
    """Gross amount minus the processing fee, never below zero."""
    return max(Decimal('0.00'), quantize_fiat(Decimal(str(gross)) - fee))

class PaymentReconciler:
    """Applies confirmations from both rails exactly once."""

    def __init__(
        self,
        pool: Optional[Pool] = None,
        registry: Optional[BountyRegistry] = None,
        price_oracle: Optional[PriceOracle] = None,
        notifier: Optional[NotificationDispatcher] = None,
        processing_fee: Optional[Decimal] = None,
        large_contribution_threshold: Optional[Decimal] = None
    ) -> None:
        """Initialize payment reconciler.

        Args:
            pool: Optional database connection pool. If not provided, will get from database module.
            registry: Bounty registry used to refresh totals and rankings
            price_oracle: Converts asset amounts to fiat
            notifier: Notification dispatcher for payers and admins
            processing_fee: Fixed fee deducted from fiat contributions
            large_contribution_threshold: Net fiat amount that triggers an admin alert
        """
        self.pool = pool
        self.notifier = notifier or NotificationDispatcher()
        self.registry = registry or BountyRegistry(pool, self.notifier)
        self.price_oracle = price_oracle or PriceOracle()
        self.processing_fee = Decimal(str(
            processing_fee if processing_fee is not None else settings_conf['processing_fee']
        ))
        self.large_contribution_threshold = Decimal(str(
            large_contribution_threshold if large_contribution_threshold is not None
            else settings_conf['large_contribution_threshold']
        ))

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def _confirm(self, conn, payment_id: int, bounty_id: int,
                       assignments: str, *params) -> Optional[Dict[str, Any]]:
        """Confirm a pending payment and refresh its bounty in one transaction.

        Returns:
            Dict with the confirmed ``payment`` and refreshed ``bounty``, or
            None if the payment was no longer pending
        """
        async with conn.transaction():
            await lock_rankings(conn)
            row = await conn.fetchrow(
                f'''
                UPDATE bounty_payments
                SET status = 'confirmed', {assignments},
                    confirmed_at = now(),
                    notification_received_at = now(),
                    updated_at = now()
                WHERE id = $1 AND status = 'pending'
                RETURNING *
                ''',
                payment_id,
                *params
            )
            if not row:
                return None
            bounty = await self.registry.refresh_totals(bounty_id, conn)
            await self.registry.recalculate_rankings(conn)
        return {'payment': dict(row), 'bounty': bounty}

    async def process_fiat_notification(
        self,
        external_id: str,
        status: Optional[str] = None,
        event: Optional[str] = None,
        reported_amount: Optional[Any] = None
    ) -> ReconciliationResult:
        """Apply a processor webhook to the payment it references.

        Args:
            external_id: Processor transaction id
            status: Processor status, e.g. PAID or EXPIRED
            event: Processor event, e.g. transaction.paid
            reported_amount: Gross amount paid; the requested amount when absent

        Returns:
            ReconciliationResult describing what happened
        """
        await self.ensure_pool()
        try:
            async with self.pool.acquire() as conn:
                payment = await conn.fetchrow(
                    'SELECT * FROM bounty_payments WHERE processor_transaction_id = $1',
                    external_id
                )
                if not payment:
                    logger.warning(f"Fiat notification for unknown transaction {external_id}")
                    return ReconciliationResult(
                        success=False,
                        outcome=ReconciliationOutcome.PAYMENT_NOT_FOUND,
                        message=f"No payment for transaction {external_id}"
                    )

                if payment['status'] != PaymentStatus.PENDING.value:
                    logger.info(
                        f"Payment {payment['id']} already {payment['status']}, "
                        f"ignoring duplicate notification"
                    )
                    return ReconciliationResult(
                        success=True,
                        outcome=ReconciliationOutcome.ALREADY_PROCESSED,
                        message=f"Payment already {payment['status']}",
                        payment=dict(payment)
                    )

                target = classify_fiat_status(status, event)
                if target is None:
                    logger.info(
                        f"Non-terminal notification for payment {payment['id']} "
                        f"(status={status}, event={event})"
                    )
                    return ReconciliationResult(
                        success=True,
                        outcome=ReconciliationOutcome.IGNORED,
                        message="Non-terminal notification",
                        payment=dict(payment)
                    )

                if target != PaymentStatus.CONFIRMED.value:
                    row = await conn.fetchrow(
                        '''
                        UPDATE bounty_payments
                        SET status = $2, notification_received_at = now(), updated_at = now()
                        WHERE id = $1 AND status = 'pending'
                        RETURNING *
                        ''',
                        payment['id'],
                        target
                    )
                    if not row:
                        return self._lost_race(payment)
                    logger.info(f"Payment {payment['id']} marked {target}")
                    return ReconciliationResult(
                        success=True,
                        outcome=ReconciliationOutcome(target),
                        message=f"Payment {target}",
                        payment=dict(row)
                    )

                gross = reported_amount if reported_amount is not None else payment['amount_native']
                amount = net_amount(gross, self.processing_fee)
                confirmed = await self._confirm(
                    conn,
                    payment['id'],
                    payment['bounty_id'],
                    'amount_fiat = $2',
                    amount
                )
        except PostgresError as e:
            logger.error(f"Database error reconciling transaction {external_id}: {e}")
            raise DatabaseError(f"Failed to reconcile transaction {external_id}: {e}")

        if confirmed is None:
            return self._lost_race(payment)

        logger.info(
            f"Fiat payment {payment['id']} confirmed: gross {gross}, net {amount} "
            f"for bounty {payment['bounty_id']}"
        )
        data = {
            'bounty': confirmed['bounty'],
            'payment': confirmed['payment'],
            'amount': amount,
            'asset': PaymentRail.FIAT.value
        }
        await self.notifier.notify_user(payment['payer_id'], 'contribution_confirmed', data)
        if amount >= self.large_contribution_threshold:
            await self.notifier.notify_admins('large_contribution', data)

        return ReconciliationResult(
            success=True,
            outcome=ReconciliationOutcome.CONFIRMED,
            message=f"Payment confirmed for {amount}",
            payment=confirmed['payment']
        )

    async def process_asset_detection(
        self,
        address: str,
        txid: str,
        output_index: int,
        native_amount: Any,
        asset: str,
        block_height: Optional[int] = None
    ) -> Optional[ReconciliationResult]:
        """Apply funds detected at a deposit address.

        Returns:
            ReconciliationResult when a payment was confirmed, None when there
            was nothing to do: no pending payment at the address, or a re-scan
            of a transaction already applied

        Raises:
            PriceFeedError: If the amount cannot be priced; the payment stays
                pending and the next scan retries
        """
        await self.ensure_pool()
        try:
            async with self.pool.acquire() as conn:
                payment = await conn.fetchrow(
                    '''
                    SELECT * FROM bounty_payments
                    WHERE deposit_address = $1 AND status = 'pending'
                    ''',
                    address
                )
        except PostgresError as e:
            logger.error(f"Database error looking up {short_address(address)}: {e}")
            raise DatabaseError(f"Failed to look up payment at {short_address(address)}: {e}")

        if not payment:
            logger.debug(f"No pending payment at {short_address(address)}")
            return None

        if payment['onchain_txid'] == txid:
            logger.debug(f"Transaction {txid} already applied to payment {payment['id']}")
            return None

        native_amount = Decimal(str(native_amount))
        if native_amount <= 0:
            logger.warning(f"Ignoring non-positive amount at {short_address(address)}")
            return None

        asset = (asset or payment['rail']).upper()
        if asset != payment['rail']:
            logger.warning(
                f"Payment {payment['id']} expected {payment['rail']} but received {asset}"
            )

        amount = await asyncio.to_thread(self.price_oracle.convert_to_fiat, asset, native_amount)

        try:
            async with self.pool.acquire() as conn:
                confirmed = await self._confirm(
                    conn,
                    payment['id'],
                    payment['bounty_id'],
                    'amount_native = $2, amount_fiat = $3, onchain_txid = $4, '
                    'onchain_vout = $5, block_height = $6',
                    native_amount,
                    amount,
                    txid,
                    output_index,
                    block_height
                )
        except PostgresError as e:
            logger.error(f"Database error confirming payment {payment['id']}: {e}")
            raise DatabaseError(f"Failed to confirm payment {payment['id']}: {e}")

        if confirmed is None:
            logger.info(f"Payment {payment['id']} confirmed concurrently, skipping")
            return None

        logger.info(
            f"{asset} payment {payment['id']} confirmed: {native_amount} {asset} = {amount} "
            f"(tx {txid}:{output_index}) for bounty {payment['bounty_id']}"
        )
        await self.notifier.notify_user(
            payment['payer_id'],
            'contribution_confirmed',
            {
                'bounty': confirmed['bounty'],
                'payment': confirmed['payment'],
                'amount': amount,
                'native_amount': native_amount,
                'asset': asset
            }
        )
        return ReconciliationResult(
            success=True,
            outcome=ReconciliationOutcome.CONFIRMED,
            message=f"Payment confirmed for {amount}",
            payment=confirmed['payment']
        )

    @staticmethod
    def _lost_race(payment) -> ReconciliationResult:
        logger.info(f"Payment {payment['id']} was settled concurrently")
        return ReconciliationResult(
            success=True,
            outcome=ReconciliationOutcome.ALREADY_PROCESSED,
            message="Payment already processed",
            payment=dict(payment)
        )
