"""Inbound webhooks from the payment processor and the chain watcher.

Both deliver at least once. Duplicates and non-terminal events are answered
with 200 so the sender stops retrying.
"""
import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from auth import require_webhook_secret
from payments.reconciler import PaymentReconciler, ReconciliationOutcome

from ..dependencies import get_reconciler
from ..errors import to_http_error

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/webhooks",
    tags=["Webhooks"],
    dependencies=[Depends(require_webhook_secret)]
)

class FiatNotification(BaseModel):
    """Processor transaction notification."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    status: Optional[str] = None
    event: Optional[str] = None
    merchant_order_id: Optional[str] = Field(None, alias="merchantOrderId")
    amount: Optional[Decimal] = None

class AssetDetection(BaseModel):
    """Funds seen on-chain at a deposit address."""
    model_config = ConfigDict(populate_by_name=True)

    address: str
    txid: str
    output_index: int = Field(0, alias="outputIndex")
    amount: Decimal = Field(..., gt=0)
    asset_kind: str = Field(..., alias="assetKind")
    block_height: Optional[int] = Field(None, alias="blockHeight")

@router.post("/fiat")
async def fiat_webhook(
    notification: FiatNotification,
    reconciler: PaymentReconciler = Depends(get_reconciler)
):
    """Apply a processor notification."""
    logger.info(
        f"Fiat webhook for transaction {notification.id}: "
        f"status={notification.status}, event={notification.event}"
    )
    try:
        result = await reconciler.process_fiat_notification(
            notification.id,
            notification.status,
            notification.event,
            notification.amount
        )
    except Exception as e:
        raise to_http_error(e)

    if result.outcome == ReconciliationOutcome.PAYMENT_NOT_FOUND:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=result.message
        )
    return {"status": "ok", "outcome": result.outcome.value, "message": result.message}

@router.post("/scanner")
async def scanner_webhook(
    detection: AssetDetection,
    reconciler: PaymentReconciler = Depends(get_reconciler)
):
    """Apply funds detected by the chain watcher."""
    try:
        result = await reconciler.process_asset_detection(
            detection.address,
            detection.txid,
            detection.output_index,
            detection.amount,
            detection.asset_kind,
            detection.block_height
        )
    except Exception as e:
        raise to_http_error(e)

    if result is None:
        return {"status": "ok", "outcome": ReconciliationOutcome.IGNORED.value}
    return {"status": "ok", "outcome": result.outcome.value, "message": result.message}
