"""Tests for deposit address allocation."""

from unittest.mock import MagicMock

import pytest

from payments import AllocationError
from payments.allocator import AddressAllocator
from rpc import NodeConnectionError

@pytest.fixture
def wallet():
    wallet = MagicMock()
    wallet.deriveaddress.side_effect = lambda index: f"lq1qaddress{index}"
    return wallet

@pytest.fixture
def allocator(pool, wallet):
    return AddressAllocator(pool, wallet=wallet, offset=10000)

@pytest.mark.asyncio
async def test_derive_next_uses_atomic_counter(allocator, conn, wallet):
    """Test the index comes from a single upsert and feeds derivation."""
    conn.fetchval.return_value = 10000

    allocation = await allocator.derive_next()

    assert allocation == {'address': 'lq1qaddress10000', 'index': 10000}
    query, name, offset = conn.fetchval.call_args.args
    assert 'ON CONFLICT (name) DO UPDATE' in query
    assert 'last_index = address_index_counters.last_index + 1' in query
    assert 'RETURNING last_index' in query
    assert (name, offset) == ('deposit_address', 10000)
    wallet.deriveaddress.assert_called_once_with(10000)

@pytest.mark.asyncio
async def test_derive_next_consecutive_indices(allocator, conn):
    conn.fetchval.side_effect = [10000, 10001]

    first = await allocator.derive_next()
    second = await allocator.derive_next()

    assert first['index'] == 10000
    assert second['index'] == 10001
    assert first['address'] != second['address']

@pytest.mark.asyncio
async def test_wallet_failure_is_allocation_error(allocator, conn, wallet):
    """Test wallet errors surface as AllocationError and the index is not reused."""
    conn.fetchval.side_effect = [10005, 10006]
    wallet.deriveaddress.side_effect = [NodeConnectionError("connection refused"), 'lq1qnext']

    with pytest.raises(AllocationError):
        await allocator.derive_next()

    allocation = await allocator.derive_next()
    assert allocation['index'] == 10006

@pytest.mark.asyncio
async def test_empty_address_is_allocation_error(allocator, conn, wallet):
    conn.fetchval.return_value = 10000
    wallet.deriveaddress.side_effect = None
    wallet.deriveaddress.return_value = ''

    with pytest.raises(AllocationError):
        await allocator.derive_next()
