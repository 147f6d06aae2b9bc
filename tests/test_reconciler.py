"""Tests for payment reconciliation on both rails."""

from decimal import Decimal
from unittest.mock import MagicMock

from asyncpg.exceptions import DeadlockDetectedError
import pytest

from bounties import BountyRegistry, RANKING_LOCK_KEY
from database.exceptions import DatabaseError
from payments.reconciler import (
    PaymentReconciler,
    ReconciliationOutcome,
    net_amount
)
from processor import PriceFeedError
from conftest import make_bounty, make_payment

TXID = 'a1b2c3d4' * 8
ADDRESS = 'lq1qdeposit10000'

@pytest.fixture
def price_oracle():
    oracle = MagicMock()
    oracle.convert_to_fiat.return_value = Decimal('512.34')
    return oracle

@pytest.fixture
def reconciler(pool, notifier, price_oracle):
    return PaymentReconciler(
        pool,
        registry=BountyRegistry(pool, notifier),
        price_oracle=price_oracle,
        notifier=notifier,
        processing_fee=Decimal('0.99'),
        large_contribution_threshold=Decimal('100')
    )

def confirmed(payment, **overrides):
    row = dict(payment, status='confirmed')
    row.update(overrides)
    return row

def test_net_amount_never_negative():
    assert net_amount(Decimal('10.00'), Decimal('0.99')) == Decimal('9.01')
    assert net_amount(Decimal('0.50'), Decimal('0.99')) == Decimal('0.00')
    assert net_amount(Decimal('0.99'), Decimal('0.99')) == Decimal('0.00')

""" Fiat rail """
@pytest.mark.asyncio
async def test_fiat_confirmation_deducts_fee(reconciler, conn, notifier):
    """Test a paid notification stores the net amount and refreshes the bounty."""
    payment = make_payment()
    conn.fetchrow.side_effect = [
        payment,
        confirmed(payment, amount_fiat=Decimal('9.01')),
        make_bounty(status='approved', total_fiat=Decimal('9.01'), contribution_count=1)
    ]

    result = await reconciler.process_fiat_notification('tx-abc', 'PAID', None, Decimal('10.00'))

    assert result.success
    assert result.outcome == ReconciliationOutcome.CONFIRMED
    update_query, payment_id, amount = conn.fetchrow.call_args_list[1].args
    assert "WHERE id = $1 AND status = 'pending'" in update_query
    assert payment_id == 10
    assert amount == Decimal('9.01')
    assert "status = 'confirmed'" in conn.fetchrow.call_args_list[2].args[0]

    notifier.notify_user.assert_awaited_once()
    recipient, event, data = notifier.notify_user.call_args.args
    assert (recipient, event) == (2002, 'contribution_confirmed')
    assert data['amount'] == Decimal('9.01')
    assert data['bounty']['total_fiat'] == Decimal('9.01')
    notifier.notify_admins.assert_not_awaited()

@pytest.mark.asyncio
async def test_fiat_confirmation_takes_ranking_lock_first(reconciler, conn):
    """Test the ranking lock precedes the payment and bounty row updates."""
    payment = make_payment()
    conn.fetchrow.side_effect = [payment, confirmed(payment), make_bounty()]

    await reconciler.process_fiat_notification('tx-abc', 'PAID', None, Decimal('10.00'))

    lock_call = conn.execute.call_args_list[0]
    assert lock_call.args == ('SELECT pg_advisory_xact_lock($1)', RANKING_LOCK_KEY)
    assert conn.execute.await_count == 3

@pytest.mark.asyncio
async def test_fiat_small_amount_floors_at_zero(reconciler, conn):
    payment = make_payment()
    conn.fetchrow.side_effect = [payment, confirmed(payment), make_bounty()]

    await reconciler.process_fiat_notification('tx-abc', None, 'transaction.paid', '0.50')

    assert conn.fetchrow.call_args_list[1].args[2] == Decimal('0.00')

@pytest.mark.asyncio
async def test_fiat_duplicate_is_noop(reconciler, conn, notifier):
    """Test a redelivered notification confirms once and notifies once."""
    payment = make_payment()
    settled = confirmed(payment, amount_fiat=Decimal('49.01'))
    conn.fetchrow.side_effect = [payment, settled, make_bounty(), settled]

    first = await reconciler.process_fiat_notification('tx-abc', 'PAID', None, Decimal('50'))
    second = await reconciler.process_fiat_notification('tx-abc', 'PAID', None, Decimal('50'))

    assert first.outcome == ReconciliationOutcome.CONFIRMED
    assert second.success
    assert second.outcome == ReconciliationOutcome.ALREADY_PROCESSED
    assert conn.fetchrow.await_count == 4
    notifier.notify_user.assert_awaited_once()

@pytest.mark.asyncio
async def test_fiat_concurrent_confirmation_loses_race(reconciler, conn, notifier):
    """Test the guarded update matching nothing is a no-op, not an error."""
    conn.fetchrow.side_effect = [make_payment(), None]

    result = await reconciler.process_fiat_notification('tx-abc', 'PAID', None, Decimal('50'))

    assert result.success
    assert result.outcome == ReconciliationOutcome.ALREADY_PROCESSED
    notifier.notify_user.assert_not_awaited()

@pytest.mark.asyncio
async def test_fiat_large_contribution_alerts_admins(reconciler, conn, notifier):
    payment = make_payment()
    conn.fetchrow.side_effect = [payment, confirmed(payment), make_bounty()]

    await reconciler.process_fiat_notification('tx-abc', 'COMPLETED', None, Decimal('150.00'))

    notifier.notify_admins.assert_awaited_once()
    event, data = notifier.notify_admins.call_args.args
    assert event == 'large_contribution'
    assert data['amount'] == Decimal('149.01')

@pytest.mark.asyncio
async def test_fiat_missing_amount_uses_requested(reconciler, conn):
    payment = make_payment(amount_native=Decimal('50.00'))
    conn.fetchrow.side_effect = [payment, confirmed(payment), make_bounty()]

    await reconciler.process_fiat_notification('tx-abc', 'PAID')

    assert conn.fetchrow.call_args_list[1].args[2] == Decimal('49.01')

@pytest.mark.asyncio
@pytest.mark.parametrize('status,event,expected', [
    ('EXPIRED', None, 'expired'),
    (None, 'transaction.expired', 'expired'),
    ('FAILED', None, 'failed'),
    ('CANCELLED', None, 'failed'),
    (None, 'transaction.refunded', 'failed'),
])
async def test_fiat_terminal_failures(reconciler, conn, notifier, status, event, expected):
    payment = make_payment()
    conn.fetchrow.side_effect = [payment, dict(payment, status=expected)]

    result = await reconciler.process_fiat_notification('tx-abc', status, event)

    assert result.outcome.value == expected
    assert conn.fetchrow.call_args_list[1].args[1:] == (10, expected)
    conn.execute.assert_not_awaited()
    notifier.notify_user.assert_not_awaited()

@pytest.mark.asyncio
async def test_fiat_non_terminal_ignored(reconciler, conn):
    conn.fetchrow.return_value = make_payment()

    result = await reconciler.process_fiat_notification('tx-abc', 'PENDING', 'transaction.created')

    assert result.success
    assert result.outcome == ReconciliationOutcome.IGNORED
    assert conn.fetchrow.await_count == 1

@pytest.mark.asyncio
async def test_fiat_unknown_transaction(reconciler, conn, notifier):
    """Test an unknown processor id is reported without side effects."""
    conn.fetchrow.return_value = None

    result = await reconciler.process_fiat_notification('tx-unknown', 'PAID', None, Decimal('10'))

    assert not result.success
    assert result.outcome == ReconciliationOutcome.PAYMENT_NOT_FOUND
    assert conn.fetchrow.await_count == 1
    conn.execute.assert_not_awaited()
    notifier.notify_user.assert_not_awaited()

""" Asset rail """
@pytest.mark.asyncio
async def test_asset_detection_confirms_payment(reconciler, conn, notifier, price_oracle):
    """Test detected funds are priced, stored and the payer notified."""
    payment = make_payment(
        rail='LBTC',
        deposit_address=ADDRESS,
        processor_transaction_id=None,
        amount_native=Decimal('0'),
        amount_fiat=Decimal('0')
    )
    conn.fetchrow.side_effect = [
        payment,
        confirmed(payment, onchain_txid=TXID, amount_fiat=Decimal('512.34')),
        make_bounty(status='approved', total_fiat=Decimal('512.34'))
    ]

    result = await reconciler.process_asset_detection(
        ADDRESS, TXID, 1, Decimal('0.001'), 'LBTC', 3100000
    )

    assert result.outcome == ReconciliationOutcome.CONFIRMED
    price_oracle.convert_to_fiat.assert_called_once_with('LBTC', Decimal('0.001'))
    params = conn.fetchrow.call_args_list[1].args[1:]
    assert params == (10, Decimal('0.001'), Decimal('512.34'), TXID, 1, 3100000)
    recipient, event, data = notifier.notify_user.call_args.args
    assert event == 'contribution_confirmed'
    assert data['native_amount'] == Decimal('0.001')
    notifier.notify_admins.assert_not_awaited()

@pytest.mark.asyncio
async def test_asset_rescan_is_noop(reconciler, conn, notifier, price_oracle):
    """Test a second detection of the same transaction returns None without writes."""
    payment = make_payment(rail='DEPIX', deposit_address=ADDRESS)
    conn.fetchrow.side_effect = [
        payment,
        confirmed(payment, onchain_txid=TXID),
        make_bounty(),
        None
    ]

    first = await reconciler.process_asset_detection(ADDRESS, TXID, 0, '25', 'DEPIX')
    second = await reconciler.process_asset_detection(ADDRESS, TXID, 0, '25', 'DEPIX')

    assert first.outcome == ReconciliationOutcome.CONFIRMED
    assert second is None
    assert conn.fetchrow.await_count == 4
    assert price_oracle.convert_to_fiat.call_count == 1
    notifier.notify_user.assert_awaited_once()

@pytest.mark.asyncio
async def test_asset_same_txid_on_pending_payment(reconciler, conn, price_oracle):
    conn.fetchrow.return_value = make_payment(rail='USDT', deposit_address=ADDRESS, onchain_txid=TXID)

    assert await reconciler.process_asset_detection(ADDRESS, TXID, 0, '5', 'USDT') is None
    price_oracle.convert_to_fiat.assert_not_called()

@pytest.mark.asyncio
async def test_asset_unknown_address(reconciler, conn):
    conn.fetchrow.return_value = None

    assert await reconciler.process_asset_detection('lq1qnotours', TXID, 0, '5', 'USDT') is None
    assert conn.fetchrow.await_count == 1

@pytest.mark.asyncio
async def test_asset_price_failure_leaves_payment_pending(reconciler, conn, price_oracle, notifier):
    conn.fetchrow.return_value = make_payment(rail='LBTC', deposit_address=ADDRESS)
    price_oracle.convert_to_fiat.side_effect = PriceFeedError("feed down")

    with pytest.raises(PriceFeedError):
        await reconciler.process_asset_detection(ADDRESS, TXID, 0, '0.001', 'LBTC')

    assert conn.fetchrow.await_count == 1
    notifier.notify_user.assert_not_awaited()

@pytest.mark.asyncio
async def test_asset_lookup_failure_is_database_error(reconciler, conn, price_oracle):
    conn.fetchrow.side_effect = DeadlockDetectedError("deadlock detected")

    with pytest.raises(DatabaseError):
        await reconciler.process_asset_detection(ADDRESS, TXID, 0, '25', 'DEPIX')

    price_oracle.convert_to_fiat.assert_not_called()
