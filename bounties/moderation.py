"""Moderator decisions on submitted bounties.

pending_review -> approved     (approve)
pending_review -> rejected     (reject)
approved | pending_review -> rejected   (remove)

Removed bounties are never deleted; they end up rejected. Bounties with a
developer claim cannot be removed.
"""
import logging
from typing import Any, Dict, Optional

from asyncpg.pool import Pool
from asyncpg.exceptions import PostgresError

from database import get_pool
from database.exceptions import DatabaseError
from notifications import NotificationDispatcher

from . import BountyRegistry, BountyStatus, guarded_transition, lock_rankings

logger = logging.getLogger(__name__)

DEFAULT_REMOVAL_REASON = 'removed by moderator'

REVIEW_ASSIGNMENTS = 'reviewed_by = $4, reviewed_at = now(), review_notes = $5'

class ModerationWorkflow:
    """Approves, rejects and removes bounties on behalf of moderators."""

    def __init__(
        self,
        pool: Optional[Pool] = None,
        registry: Optional[BountyRegistry] = None,
        notifier: Optional[NotificationDispatcher] = None
    ) -> None:
        self.pool = pool
        self.notifier = notifier or NotificationDispatcher()
        self.registry = registry or BountyRegistry(pool, self.notifier)

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def approve(self, bounty_id: int, moderator_id: int) -> Dict[str, Any]:
        """Open a pending bounty for funding and re-rank the fundable pool.

        The status change and the re-ranking commit together or not at all.

        Raises:
            InvalidTransitionError: If the bounty is not pending review
            DatabaseError: If the update fails
        """
        await self.ensure_pool()
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    await lock_rankings(conn)
                    bounty = await guarded_transition(
                        conn,
                        bounty_id,
                        'approve',
                        (BountyStatus.PENDING_REVIEW.value,),
                        BountyStatus.APPROVED.value,
                        REVIEW_ASSIGNMENTS,
                        moderator_id,
                        None
                    )
                    await self.registry.recalculate_rankings(conn)
                    bounty['ranking'] = await conn.fetchval(
                        'SELECT ranking FROM bounty_features WHERE id = $1', bounty_id
                    )
        except PostgresError as e:
            logger.error(f"Database error approving bounty {bounty_id}: {e}")
            raise DatabaseError(f"Failed to approve bounty {bounty_id}: {e}")

        logger.info(f"Bounty {bounty_id} approved by {moderator_id}")
        await self.notifier.notify_user(bounty['creator_id'], 'bounty_approved', bounty)
        return bounty

    async def reject(
        self,
        bounty_id: int,
        moderator_id: int,
        reason: Optional[str] = None
    ) -> Dict[str, Any]:
        """Reject a pending bounty, optionally with a reason for the creator.

        Raises:
            InvalidTransitionError: If the bounty is not pending review
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            bounty = await guarded_transition(
                conn,
                bounty_id,
                'reject',
                (BountyStatus.PENDING_REVIEW.value,),
                BountyStatus.REJECTED.value,
                REVIEW_ASSIGNMENTS,
                moderator_id,
                reason
            )

        logger.info(f"Bounty {bounty_id} rejected by {moderator_id}")
        await self.notifier.notify_user(bounty['creator_id'], 'bounty_rejected', bounty)
        return bounty

    async def remove(
        self,
        bounty_id: int,
        moderator_id: int,
        reason: Optional[str] = None
    ) -> Dict[str, Any]:
        """Take an open or pending bounty off the board.

        Raises:
            InvalidTransitionError: If the bounty has already been claimed
            DatabaseError: If the update fails
        """
        await self.ensure_pool()
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    await lock_rankings(conn)
                    bounty = await guarded_transition(
                        conn,
                        bounty_id,
                        'remove',
                        (BountyStatus.APPROVED.value, BountyStatus.PENDING_REVIEW.value),
                        BountyStatus.REJECTED.value,
                        REVIEW_ASSIGNMENTS + ', ranking = NULL',
                        moderator_id,
                        reason or DEFAULT_REMOVAL_REASON
                    )
                    await self.registry.recalculate_rankings(conn)
        except PostgresError as e:
            logger.error(f"Database error removing bounty {bounty_id}: {e}")
            raise DatabaseError(f"Failed to remove bounty {bounty_id}: {e}")

        logger.info(f"Bounty {bounty_id} removed by {moderator_id}: {bounty['review_notes']}")
        return bounty
