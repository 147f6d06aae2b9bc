"""REST API module for the bounty board.

This module provides HTTP endpoints for:
- Suggesting, listing and inspecting bounties
- Moderating bounties and developer claims
- Contributing on the fiat and blockchain asset rails
- Receiving processor and chain watcher notifications
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Bounty Board API",
    description="Community-funded feature requests with fiat and blockchain asset contributions",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/")
async def root():
    return {
        "name": "Bounty Board API",
        "version": "1.0.0",
        "status": "running"
    }

# Import and include all routers
from .bounties import router as bounties_router
from .payments import router as payments_router
from .webhooks import router as webhooks_router

app.include_router(bounties_router)
app.include_router(payments_router)
app.include_router(webhooks_router)
