"""Bounties API endpoints."""

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from auth import Principal, get_current_user
from bounties import BountyError, BountyRegistry, BountyStatus

from ..dependencies import get_registry
from ..errors import to_http_error

# Create router without global security
router = APIRouter(
    prefix="/bounties",
    tags=["Bounties"]
)

# Import management endpoints
from .management import router as management_router

# Include management router (protected endpoints)
router.include_router(management_router)

class CreateBountyRequest(BaseModel):
    """Request model for suggesting a bounty."""
    title: str = Field(..., min_length=3, max_length=100)
    description: str = Field(..., min_length=10, max_length=1000)

""" Public Endpoints - No Authentication Required """
@router.get("")
async def list_bounties(
    bounty_status: str = Query(BountyStatus.APPROVED.value, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    registry: BountyRegistry = Depends(get_registry)
):
    """List bounties in a status, best ranked first."""
    try:
        bounties = await registry.list_by_status(bounty_status, limit, offset)
        total = await registry.count_by_status(bounty_status)
    except BountyError as e:
        raise to_http_error(e)
    return {
        "bounties": bounties,
        "total_count": total,
        "limit": limit,
        "offset": offset
    }

@router.get("/stats")
async def bounty_stats(registry: BountyRegistry = Depends(get_registry)):
    """Per-status counts and funding totals."""
    return await registry.stats()

@router.get("/{bounty_id}")
async def get_bounty(bounty_id: int, registry: BountyRegistry = Depends(get_registry)):
    """Get a bounty by id."""
    try:
        return await registry.get_by_id(bounty_id)
    except BountyError as e:
        raise to_http_error(e)

""" Protected Endpoints - Authentication Required """
@router.post("", status_code=status.HTTP_201_CREATED)
async def create_bounty(
    request: CreateBountyRequest,
    user: Principal = Depends(get_current_user),
    registry: BountyRegistry = Depends(get_registry)
):
    """Suggest a new bounty. It stays hidden until a moderator approves it."""
    try:
        return await registry.create(
            request.title,
            request.description,
            user.user_id,
            user.name
        )
    except Exception as e:
        raise to_http_error(e)
