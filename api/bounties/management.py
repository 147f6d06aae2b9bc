"""Bounty lifecycle endpoints for moderators and developers."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from auth import Principal, get_current_user, require_admin
from bounties import BountyRegistry
from bounties.claims import ClaimWorkflow
from bounties.moderation import ModerationWorkflow

from ..dependencies import get_claims, get_moderation, get_registry
from ..errors import to_http_error

router = APIRouter(tags=["Bounty Management"])

class ReviewRequest(BaseModel):
    """Request model for rejecting or removing a bounty."""
    reason: Optional[str] = Field(None, max_length=500)

""" Moderator Endpoints """
@router.post("/{bounty_id}/approve")
async def approve_bounty(
    bounty_id: int,
    moderator: Principal = Depends(require_admin),
    moderation: ModerationWorkflow = Depends(get_moderation)
):
    """Open a pending bounty for funding."""
    try:
        return await moderation.approve(bounty_id, moderator.user_id)
    except Exception as e:
        raise to_http_error(e)

@router.post("/{bounty_id}/reject")
async def reject_bounty(
    bounty_id: int,
    request: Optional[ReviewRequest] = None,
    moderator: Principal = Depends(require_admin),
    moderation: ModerationWorkflow = Depends(get_moderation)
):
    """Reject a pending bounty."""
    try:
        return await moderation.reject(
            bounty_id, moderator.user_id, request.reason if request else None
        )
    except Exception as e:
        raise to_http_error(e)

@router.post("/{bounty_id}/remove")
async def remove_bounty(
    bounty_id: int,
    request: Optional[ReviewRequest] = None,
    moderator: Principal = Depends(require_admin),
    moderation: ModerationWorkflow = Depends(get_moderation)
):
    """Take an open or pending bounty off the board."""
    try:
        return await moderation.remove(
            bounty_id, moderator.user_id, request.reason if request else None
        )
    except Exception as e:
        raise to_http_error(e)

@router.post("/{bounty_id}/claim/approve")
async def approve_claim(
    bounty_id: int,
    moderator: Principal = Depends(require_admin),
    claims: ClaimWorkflow = Depends(get_claims)
):
    """Accept the developer's claim and start development."""
    try:
        return await claims.approve_claim(bounty_id, moderator.user_id)
    except Exception as e:
        raise to_http_error(e)

@router.post("/{bounty_id}/claim/reject")
async def reject_claim(
    bounty_id: int,
    moderator: Principal = Depends(require_admin),
    claims: ClaimWorkflow = Depends(get_claims)
):
    """Refuse the developer's claim and reopen the bounty."""
    try:
        return await claims.reject_claim(bounty_id, moderator.user_id)
    except Exception as e:
        raise to_http_error(e)

@router.post("/{bounty_id}/paid")
async def mark_paid(
    bounty_id: int,
    moderator: Principal = Depends(require_admin),
    claims: ClaimWorkflow = Depends(get_claims)
):
    """Record the developer payout."""
    try:
        return await claims.mark_paid(bounty_id, moderator.user_id)
    except Exception as e:
        raise to_http_error(e)

""" Developer Endpoints """
@router.post("/{bounty_id}/claim")
async def claim_bounty(
    bounty_id: int,
    developer: Principal = Depends(get_current_user),
    claims: ClaimWorkflow = Depends(get_claims)
):
    """Claim an open bounty for development."""
    try:
        return await claims.claim(bounty_id, developer.user_id, developer.name)
    except Exception as e:
        raise to_http_error(e)

@router.post("/{bounty_id}/complete")
async def complete_bounty(
    bounty_id: int,
    developer: Principal = Depends(get_current_user),
    registry: BountyRegistry = Depends(get_registry),
    claims: ClaimWorkflow = Depends(get_claims)
):
    """Report development finished. Only the assigned developer may do this."""
    try:
        bounty = await registry.get_by_id(bounty_id)
    except Exception as e:
        raise to_http_error(e)

    if bounty['developer_id'] != developer.user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the assigned developer can complete this bounty"
        )

    try:
        return await claims.mark_completed(bounty_id)
    except Exception as e:
        raise to_http_error(e)
