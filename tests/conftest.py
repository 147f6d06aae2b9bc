"""Shared fixtures.

Unit tests run against ``FakePool``, which hands out a single
``FakeConnection`` whose query methods are AsyncMocks. Tests queue results
with ``side_effect`` in the order the code under test issues its queries.
"""
import os
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

TEST_DB_URL = os.environ.get('BOUNTY_TEST_DB_URL')

requires_db = pytest.mark.skipif(
    not TEST_DB_URL,
    reason="BOUNTY_TEST_DB_URL not set"
)

class FakeTransaction:
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

class FakeConnection:
    """Stands in for an asyncpg connection."""

    def __init__(self):
        self.fetchrow = AsyncMock(return_value=None)
        self.fetch = AsyncMock(return_value=[])
        self.fetchval = AsyncMock(return_value=None)
        self.execute = AsyncMock(return_value='UPDATE 0')

    def transaction(self):
        return FakeTransaction()

class _Acquire:
    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        return self.conn

    async def __aexit__(self, exc_type, exc, tb):
        return False

class FakePool:
    """Stands in for an asyncpg pool."""

    def __init__(self, conn=None):
        self.conn = conn or FakeConnection()

    def acquire(self):
        return _Acquire(self.conn)

def make_bounty(**overrides):
    now = datetime(2025, 1, 1, 12, 0, 0)
    bounty = {
        'id': 1,
        'title': 'Dark mode',
        'description': 'Add a dark theme to the app',
        'creator_id': 1001,
        'creator_name': 'alice',
        'status': 'pending_review',
        'total_fiat': Decimal('0.00'),
        'contribution_count': 0,
        'ranking': None,
        'developer_id': None,
        'developer_name': None,
        'developer_claimed_at': None,
        'developer_approved_at': None,
        'reviewed_by': None,
        'reviewed_at': None,
        'review_notes': None,
        'created_at': now,
        'updated_at': now
    }
    bounty.update(overrides)
    return bounty

def make_payment(**overrides):
    now = datetime(2025, 1, 1, 12, 0, 0)
    payment = {
        'id': 10,
        'bounty_id': 1,
        'payer_id': 2002,
        'payer_name': 'bob',
        'rail': 'FIAT',
        'amount_native': Decimal('50.00'),
        'amount_fiat': Decimal('50.00'),
        'deposit_address': 'lq1qqexampledepositaddress0000',
        'address_index': 10000,
        'processor_transaction_id': 'tx-abc',
        'merchant_order_id': 'bounty_1_1735732800000',
        'qr_payload': '000201010212',
        'qr_image': None,
        'expires_at': now + timedelta(minutes=30),
        'onchain_txid': None,
        'onchain_vout': None,
        'block_height': None,
        'status': 'pending',
        'confirmed_at': None,
        'notification_received_at': None,
        'created_at': now,
        'updated_at': now
    }
    payment.update(overrides)
    return payment

@pytest.fixture
def conn():
    return FakeConnection()

@pytest.fixture
def pool(conn):
    return FakePool(conn)

@pytest.fixture
def notifier():
    notifier = MagicMock()
    notifier.notify_user = AsyncMock(return_value=True)
    notifier.notify_admins = AsyncMock(return_value=1)
    return notifier
