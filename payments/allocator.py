"""Deposit address allocation.

Each payment gets its own address, derived by the wallet service from a
strictly increasing index. The index counter lives in the database and is
advanced by a single upsert, so concurrent allocations never share an index.
An index whose derivation fails is simply skipped.
"""
import asyncio
import logging
from typing import Dict, Optional, Union

from asyncpg.pool import Pool
from asyncpg.exceptions import PostgresError

from config import settings_conf
from database import get_pool
from database.exceptions import DatabaseError
from rpc import RPCError, WalletRPC, client as rpc_client

from . import AllocationError, short_address

logger = logging.getLogger(__name__)

COUNTER_NAME = 'deposit_address'

class AddressAllocator:
    """Hands out unique deposit addresses."""

    def __init__(
        self,
        pool: Optional[Pool] = None,
        wallet: Optional[WalletRPC] = None,
        offset: Optional[int] = None,
        counter_name: str = COUNTER_NAME
    ) -> None:
        """Initialize address allocator.

        Args:
            pool: Optional database connection pool. If not provided, will get from database module.
            wallet: Wallet service client, defaults to the shared rpc client
            offset: First index handed out on a fresh counter
            counter_name: Counter row to advance
        """
        self.pool = pool
        self.wallet = wallet or rpc_client
        self.offset = offset if offset is not None else settings_conf['address_index_offset']
        self.counter_name = counter_name

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def next_index(self) -> int:
        """Atomically advance the counter and return the new index."""
        await self.ensure_pool()
        try:
            async with self.pool.acquire() as conn:
                index = await conn.fetchval(
                    '''
                    INSERT INTO address_index_counters (name, last_index)
                    VALUES ($1, $2)
                    ON CONFLICT (name) DO UPDATE
                    SET last_index = address_index_counters.last_index + 1,
                        updated_at = now()
                    RETURNING last_index
                    ''',
                    self.counter_name,
                    self.offset
                )
        except PostgresError as e:
            logger.error(f"Database error advancing address index: {e}")
            raise DatabaseError(f"Failed to advance address index: {e}")
        return int(index)

    async def derive_next(self) -> Dict[str, Union[str, int]]:
        """Allocate the next deposit address.

        Returns:
            Dict with address and index

        Raises:
            AllocationError: If the wallet service cannot derive the address
        """
        index = await self.next_index()
        try:
            address = await asyncio.to_thread(self.wallet.deriveaddress, index)
        except RPCError as e:
            logger.error(f"Address derivation failed for index {index}: {e}")
            raise AllocationError(f"Failed to derive deposit address for index {index}: {e}") from e

        if not address:
            raise AllocationError(f"Wallet service returned no address for index {index}")

        logger.info(f"Allocated deposit address {short_address(address)} at index {index}")
        return {'address': address, 'index': index}
