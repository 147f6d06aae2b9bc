"""Payments API endpoints."""

from decimal import Decimal

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from auth import Principal, get_current_user
from payments.gateway import PaymentGateway

from ..dependencies import get_gateway
from ..errors import to_http_error

router = APIRouter(tags=["Payments"])

class FiatPaymentRequest(BaseModel):
    """Request model for a fiat contribution."""
    amount: Decimal = Field(..., gt=0)

class AssetPaymentRequest(BaseModel):
    """Request model for a blockchain asset contribution."""
    asset: str

@router.post("/bounties/{bounty_id}/payments/fiat", status_code=status.HTTP_201_CREATED)
async def create_fiat_payment(
    bounty_id: int,
    request: FiatPaymentRequest,
    user: Principal = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_gateway)
):
    """Create a fiat contribution and return the QR code to pay it."""
    try:
        result = await gateway.create_fiat_payment(
            bounty_id, user.user_id, user.name, request.amount
        )
    except Exception as e:
        raise to_http_error(e)

    payment = result['payment']
    charge = result['charge']
    return {
        "payment_id": payment['id'],
        "bounty_id": bounty_id,
        "amount": payment['amount_native'],
        "status": payment['status'],
        "qr_payload": charge['qr_payload'],
        "qr_image": charge['qr_image'],
        "expires_at": charge['expires_at']
    }

@router.post("/bounties/{bounty_id}/payments/asset", status_code=status.HTTP_201_CREATED)
async def create_asset_payment(
    bounty_id: int,
    request: AssetPaymentRequest,
    user: Principal = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_gateway)
):
    """Create an asset contribution and return the deposit address."""
    try:
        result = await gateway.create_asset_payment(
            bounty_id, user.user_id, user.name, request.asset
        )
    except Exception as e:
        raise to_http_error(e)

    payment = result['payment']
    return {
        "payment_id": payment['id'],
        "bounty_id": bounty_id,
        "asset": payment['rail'],
        "asset_id": result['asset_id'],
        "deposit_address": payment['deposit_address'],
        "status": payment['status']
    }

@router.get("/payments/mine")
async def my_payments(
    limit: int = Query(20, ge=1, le=100),
    user: Principal = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_gateway)
):
    """The caller's most recent contributions."""
    try:
        return await gateway.list_payments_for_payer(user.user_id, limit)
    except Exception as e:
        raise to_http_error(e)
