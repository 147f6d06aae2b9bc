"""Tests for the HTTP API: authentication, routing and error mapping."""

from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from api import app
from api.dependencies import (
    get_claims,
    get_gateway,
    get_moderation,
    get_reconciler,
    get_registry
)
from auth import AuthError, TokenExpiredError, create_token, decode_token
from bounties import BountyNotFoundError, InvalidTransitionError, ValidationError
from config import settings_conf
from payments import NotFundableError
from payments.reconciler import ReconciliationOutcome, ReconciliationResult
from conftest import make_bounty, make_payment

ADMIN_ID = 42
USER_ID = 2002
WEBHOOK_SECRET = 'hook-secret'

@pytest.fixture(autouse=True)
def settings():
    with patch.dict(settings_conf, {
        'jwt_secret': 'test-secret',
        'admin_ids': [ADMIN_ID],
        'processor_webhook_secret': WEBHOOK_SECRET
    }):
        yield

@pytest.fixture
def registry():
    registry = MagicMock()
    registry.list_by_status = AsyncMock(return_value=[make_bounty(status='approved', ranking=1)])
    registry.count_by_status = AsyncMock(return_value=1)
    registry.get_by_id = AsyncMock(return_value=make_bounty(status='approved'))
    registry.create = AsyncMock(return_value=make_bounty())
    registry.stats = AsyncMock(return_value={'approved': {'count': 1}})
    return registry

@pytest.fixture
def moderation():
    moderation = MagicMock()
    moderation.approve = AsyncMock(return_value=make_bounty(status='approved', ranking=1))
    moderation.reject = AsyncMock(return_value=make_bounty(status='rejected'))
    return moderation

@pytest.fixture
def claims():
    claims = MagicMock()
    claims.claim = AsyncMock(return_value=make_bounty(status='taken', developer_id=USER_ID))
    claims.mark_completed = AsyncMock(return_value=make_bounty(status='completed'))
    return claims

@pytest.fixture
def gateway():
    gateway = MagicMock()
    gateway.create_fiat_payment = AsyncMock(return_value={
        'payment': make_payment(amount_native=Decimal('25.00')),
        'charge': {
            'id': 'tx-abc',
            'qr_payload': '000201010212',
            'qr_image': None,
            'expires_at': datetime(2025, 1, 1, 12, 30)
        }
    })
    gateway.list_payments_for_payer = AsyncMock(return_value=[])
    return gateway

@pytest.fixture
def reconciler():
    reconciler = MagicMock()
    reconciler.process_fiat_notification = AsyncMock(return_value=ReconciliationResult(
        success=True,
        outcome=ReconciliationOutcome.ALREADY_PROCESSED,
        message="Payment already confirmed"
    ))
    reconciler.process_asset_detection = AsyncMock(return_value=None)
    return reconciler

@pytest.fixture
def client(registry, moderation, claims, gateway, reconciler):
    app.dependency_overrides = {
        get_registry: lambda: registry,
        get_moderation: lambda: moderation,
        get_claims: lambda: claims,
        get_gateway: lambda: gateway,
        get_reconciler: lambda: reconciler
    }
    yield TestClient(app)
    app.dependency_overrides = {}

def bearer(user_id=USER_ID, role='user', name='bob'):
    return {'Authorization': f"Bearer {create_token(user_id, name, role)}"}

def webhook_auth(secret=WEBHOOK_SECRET):
    return {'Authorization': f"Basic {secret}"}

""" Tokens """
def test_token_round_trip():
    principal = decode_token(create_token(ADMIN_ID, 'mod', 'admin'))

    assert principal.user_id == ADMIN_ID
    assert principal.name == 'mod'
    assert principal.is_admin

def test_admin_role_requires_configured_id():
    assert not decode_token(create_token(7, 'mallory', 'admin')).is_admin

def test_expired_token():
    token = create_token(USER_ID, expires_in=timedelta(seconds=-1))
    with pytest.raises(TokenExpiredError):
        decode_token(token)

def test_tampered_token():
    with pytest.raises(AuthError):
        decode_token(create_token(USER_ID) + 'x')

""" Public endpoints """
def test_list_bounties(client, registry):
    response = client.get('/bounties', params={'status': 'approved', 'limit': 5})

    assert response.status_code == 200
    body = response.json()
    assert body['total_count'] == 1
    assert body['bounties'][0]['ranking'] == 1
    registry.list_by_status.assert_awaited_once_with('approved', 5, 0)

def test_unknown_status_is_bad_request(client, registry):
    registry.list_by_status.side_effect = ValidationError("Unknown bounty status 'open'")

    assert client.get('/bounties', params={'status': 'open'}).status_code == 400

def test_get_missing_bounty(client, registry):
    registry.get_by_id.side_effect = BountyNotFoundError(99)

    assert client.get('/bounties/99').status_code == 404

""" Authenticated endpoints """
def test_create_bounty_requires_token(client):
    response = client.post('/bounties', json={'title': 'Dark mode', 'description': 'Add a dark theme'})
    assert response.status_code in (401, 403)

def test_create_bounty(client, registry):
    response = client.post(
        '/bounties',
        json={'title': 'Dark mode', 'description': 'Add a dark theme'},
        headers=bearer()
    )

    assert response.status_code == 201
    registry.create.assert_awaited_once_with('Dark mode', 'Add a dark theme', USER_ID, 'bob')

def test_create_bounty_short_title(client, registry):
    response = client.post(
        '/bounties',
        json={'title': 'ab', 'description': 'Add a dark theme'},
        headers=bearer()
    )

    assert response.status_code == 422
    registry.create.assert_not_awaited()

def test_approve_requires_admin(client, moderation):
    response = client.post('/bounties/1/approve', headers=bearer())

    assert response.status_code == 403
    moderation.approve.assert_not_awaited()

def test_approve(client, moderation):
    response = client.post('/bounties/1/approve', headers=bearer(ADMIN_ID, 'admin'))

    assert response.status_code == 200
    assert response.json()['status'] == 'approved'
    moderation.approve.assert_awaited_once_with(1, ADMIN_ID)

def test_invalid_transition_is_conflict(client, moderation):
    moderation.approve.side_effect = InvalidTransitionError(
        1, 'approve', ('pending_review',), 'approved'
    )

    response = client.post('/bounties/1/approve', headers=bearer(ADMIN_ID, 'admin'))

    assert response.status_code == 409
    assert 'approved' in response.json()['detail']

def test_reject_with_reason(client, moderation):
    response = client.post(
        '/bounties/1/reject',
        json={'reason': 'duplicate'},
        headers=bearer(ADMIN_ID, 'admin')
    )

    assert response.status_code == 200
    moderation.reject.assert_awaited_once_with(1, ADMIN_ID, 'duplicate')

def test_complete_requires_assigned_developer(client, registry, claims):
    registry.get_by_id.return_value = make_bounty(status='in_development', developer_id=999)

    response = client.post('/bounties/1/complete', headers=bearer())

    assert response.status_code == 403
    claims.mark_completed.assert_not_awaited()

def test_complete_by_developer(client, registry, claims):
    registry.get_by_id.return_value = make_bounty(status='in_development', developer_id=USER_ID)

    assert client.post('/bounties/1/complete', headers=bearer()).status_code == 200
    claims.mark_completed.assert_awaited_once_with(1)

def test_fiat_payment(client, gateway):
    response = client.post(
        '/bounties/1/payments/fiat',
        json={'amount': '25.00'},
        headers=bearer()
    )

    assert response.status_code == 201
    body = response.json()
    assert body['payment_id'] == 10
    assert body['qr_payload'] == '000201010212'
    gateway.create_fiat_payment.assert_awaited_once_with(1, USER_ID, 'bob', Decimal('25.00'))

def test_fiat_payment_on_closed_bounty(client, gateway):
    gateway.create_fiat_payment.side_effect = NotFundableError(1, 'taken')

    response = client.post('/bounties/1/payments/fiat', json={'amount': '25'}, headers=bearer())

    assert response.status_code == 409

""" Webhooks """
def test_webhook_requires_secret(client, reconciler):
    response = client.post('/webhooks/fiat', json={'id': 'tx-abc', 'status': 'PAID'},
                           headers=webhook_auth('wrong'))

    assert response.status_code == 401
    reconciler.process_fiat_notification.assert_not_awaited()

    assert client.post('/webhooks/fiat', json={'id': 'tx-abc'}).status_code == 401

def test_duplicate_fiat_webhook_is_ok(client, reconciler):
    response = client.post(
        '/webhooks/fiat',
        json={'id': 'tx-abc', 'status': 'PAID', 'amount': 10.0},
        headers=webhook_auth()
    )

    assert response.status_code == 200
    assert response.json()['outcome'] == 'already_processed'
    reconciler.process_fiat_notification.assert_awaited_once_with(
        'tx-abc', 'PAID', None, Decimal('10.0')
    )

def test_fiat_webhook_unknown_transaction(client, reconciler):
    reconciler.process_fiat_notification.return_value = ReconciliationResult(
        success=False,
        outcome=ReconciliationOutcome.PAYMENT_NOT_FOUND,
        message="Payment not found for transaction tx-unknown"
    )

    response = client.post('/webhooks/fiat', json={'id': 'tx-unknown', 'status': 'PAID'},
                           headers=webhook_auth())

    assert response.status_code == 404

def test_scanner_webhook_ignored(client, reconciler):
    response = client.post(
        '/webhooks/scanner',
        json={
            'address': 'lq1qunknown',
            'txid': 'ab' * 32,
            'outputIndex': 1,
            'amount': '0.001',
            'assetKind': 'LBTC'
        },
        headers=webhook_auth()
    )

    assert response.status_code == 200
    assert response.json()['outcome'] == 'ignored'
    args = reconciler.process_asset_detection.call_args.args
    assert args[2] == 1
    assert args[4] == 'LBTC'
