"""Worker that scans deposit addresses of pending asset payments.

Every round it asks the wallet service which funds arrived at the addresses
of pending DEPIX, LBTC and USDT payments and hands each detection to the
reconciler. Payments are never expired here; a payment nobody funds simply
ages out of the scan window.
"""
import asyncio
import logging
import traceback
from typing import Any, Dict, List, Optional

from config import settings_conf
from database import init_db, close as db_close
from payments import short_address
from payments.gateway import PaymentGateway
from payments.reconciler import PaymentReconciler
from rpc import WalletRPC, client as rpc_client

# Configure logging
logger = logging.getLogger(__name__)

class AssetScanner:
    """Polls the wallet service for funds at pending deposit addresses."""

    def __init__(
        self,
        gateway: Optional[PaymentGateway] = None,
        reconciler: Optional[PaymentReconciler] = None,
        wallet: Optional[WalletRPC] = None,
        interval: Optional[int] = None,
        batch_size: Optional[int] = None,
        min_age_seconds: Optional[int] = None,
        max_age_hours: Optional[int] = None
    ) -> None:
        self.gateway = gateway or PaymentGateway()
        self.reconciler = reconciler or PaymentReconciler()
        self.wallet = wallet or rpc_client
        self.interval = interval or settings_conf['scanner_interval']
        self.batch_size = batch_size or settings_conf['scanner_batch_size']
        self.min_age_seconds = (
            min_age_seconds if min_age_seconds is not None
            else settings_conf['scanner_min_age_seconds']
        )
        self.max_age_hours = max_age_hours or settings_conf['scanner_max_age_hours']
        self._running = False

    async def check_payment(self, payment: Dict[str, Any]) -> int:
        """Reconcile the detections at one payment's address.

        The wallet answers ``checkpayment(index, asset)`` with a list of
        ``{txid, vout, amount, asset, blockheight}`` outputs received at the
        address derived for that index.

        Returns:
            1 if the payment was confirmed, else 0
        """
        detections: List[Dict[str, Any]] = await asyncio.to_thread(
            self.wallet.checkpayment, payment['address_index'], payment['rail']
        )
        confirmed = 0
        for detection in detections or []:
            result = await self.reconciler.process_asset_detection(
                payment['deposit_address'],
                detection['txid'],
                detection.get('vout', 0),
                detection['amount'],
                detection.get('asset') or payment['rail'],
                detection.get('blockheight')
            )
            if result is not None and result.success:
                confirmed += 1
                # A payment is confirmed once; later outputs are ignored
                break
        return confirmed

    async def scan_once(self) -> int:
        """Run one scan round.

        Returns:
            Number of payments confirmed in this round
        """
        payments = await self.gateway.list_pending_asset_payments(
            self.min_age_seconds,
            self.max_age_hours,
            self.batch_size
        )
        if not payments:
            return 0

        logger.info(f"Scanning {len(payments)} pending asset payments")
        confirmed = 0
        for payment in payments:
            try:
                confirmed += await self.check_payment(payment)
            except Exception as e:
                logger.error(
                    f"Error scanning payment {payment['id']} at "
                    f"{short_address(payment['deposit_address'])}: {str(e)}"
                )
                continue

        if confirmed:
            logger.info(f"Confirmed {confirmed} asset payments")
        return confirmed

    async def run(self):
        """Main worker loop."""
        logger.info(f"Asset scanner starting up (every {self.interval}s)")
        self._running = True
        while self._running:
            try:
                await self.scan_once()
            except Exception as e:
                logger.error(f"Error in scanner loop: {str(e)}")
                logger.error(traceback.format_exc())
            await asyncio.sleep(self.interval)

    def stop(self):
        """Stop after the current round."""
        self._running = False

async def run_worker():
    """Run the scanner standalone."""
    await init_db()
    try:
        await AssetScanner().run()
    finally:
        await db_close()

if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        pass
