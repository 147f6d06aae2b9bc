"""Command line interface for running the API server and asset scanner."""
import asyncio
import logging
import signal
from typing import List, Optional

import uvicorn

from config import settings_conf
from database import init_db, close as db_close
from workers.asset_scanner import AssetScanner

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

shutdown_requested = asyncio.Event()

def handle_shutdown(signum, frame):
    logger.info(f"Signal {signum} received, shutting down...")
    shutdown_requested.set()

class UvicornServer:
    """Runs the bounty board app on uvicorn inside our own event loop."""

    def __init__(self, host: Optional[str] = None, port: Optional[int] = None):
        self.config = uvicorn.Config(
            "api:app",
            host=host or settings_conf['api_host'],
            port=port or settings_conf['api_port'],
            log_level="info"
        )
        self.server = uvicorn.Server(self.config)

    async def run(self):
        await self.server.serve()

    def stop(self):
        self.server.should_exit = True

def failed_task(tasks: List[asyncio.Task]) -> Optional[asyncio.Task]:
    """First task that stopped with an exception, if any."""
    for task in tasks:
        if task.done() and not task.cancelled() and task.exception():
            return task
    return None

async def serve():
    """Run the API server and the asset scanner until a signal or a crash."""
    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    logger.info("Initializing database...")
    await init_db()

    scanner = AssetScanner()
    server = UvicornServer()
    tasks = [
        asyncio.create_task(server.run(), name="api"),
        asyncio.create_task(scanner.run(), name="scanner")
    ]
    logger.info(
        f"Serving on {server.config.host}:{server.config.port}, "
        f"scanning every {scanner.interval}s"
    )

    try:
        while not shutdown_requested.is_set():
            await asyncio.sleep(1)
            crashed = failed_task(tasks)
            if crashed:
                logger.error(f"Task {crashed.get_name()} failed: {crashed.exception()}")
                break
    finally:
        scanner.stop()
        server.stop()

        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("Closing database connections...")
        await db_close()
        logger.info("Shutdown complete")

if __name__ == "__main__":
    asyncio.run(serve())
