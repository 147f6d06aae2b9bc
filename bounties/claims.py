"""Developer claims on funded bounties.

approved -> taken            (claim)
taken -> in_development      (approve_claim)
taken -> approved            (reject_claim, developer fields cleared)
in_development -> completed  (mark_completed)
completed -> paid            (mark_paid)
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

class ClaimWorkflow:
    """Moves bounties through development, from claim to payout."""

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

    async def claim(
        self,
        bounty_id: int,
        developer_id: int,
        developer_name: Optional[str] = None
    ) -> Dict[str, Any]:
        """Claim an open bounty for development.

        Only one developer can win a claim: the second attempt finds the
        bounty already taken.

        Raises:
            InvalidTransitionError: If the bounty is not open for funding
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
                        'claim',
                        (BountyStatus.APPROVED.value,),
                        BountyStatus.TAKEN.value,
                        'developer_id = $4, developer_name = $5, '
                        'developer_claimed_at = now(), developer_approved_at = NULL, ranking = NULL',
                        developer_id,
                        developer_name
                    )
                    await self.registry.recalculate_rankings(conn)
        except PostgresError as e:
            logger.error(f"Database error claiming bounty {bounty_id}: {e}")
            raise DatabaseError(f"Failed to claim bounty {bounty_id}: {e}")

        logger.info(f"Bounty {bounty_id} claimed by developer {developer_id}")
        await self.notifier.notify_admins('developer_claim', bounty)
        return bounty

    async def approve_claim(self, bounty_id: int, moderator_id: int) -> Dict[str, Any]:
        """Confirm the developer's claim and start development.

        Raises:
            InvalidTransitionError: If the bounty has no pending claim
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            bounty = await guarded_transition(
                conn,
                bounty_id,
                'approve claim on',
                (BountyStatus.TAKEN.value,),
                BountyStatus.IN_DEVELOPMENT.value,
                'developer_approved_at = now()'
            )

        logger.info(
            f"Claim on bounty {bounty_id} by developer {bounty['developer_id']} "
            f"approved by {moderator_id}"
        )
        await self.notifier.notify_user(bounty['developer_id'], 'claim_approved', bounty)
        return bounty

    async def reject_claim(self, bounty_id: int, moderator_id: int) -> Dict[str, Any]:
        """Refuse the developer's claim and return the bounty to the fundable pool.

        Raises:
            InvalidTransitionError: If the bounty has no pending claim
            DatabaseError: If the update fails
        """
        await self.ensure_pool()
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    await lock_rankings(conn)
                    developer_id = await conn.fetchval(
                        'SELECT developer_id FROM bounty_features WHERE id = $1 FOR UPDATE',
                        bounty_id
                    )
                    bounty = await guarded_transition(
                        conn,
                        bounty_id,
                        'reject claim on',
                        (BountyStatus.TAKEN.value,),
                        BountyStatus.APPROVED.value,
                        'developer_id = NULL, developer_name = NULL, '
                        'developer_claimed_at = NULL, developer_approved_at = NULL'
                    )
                    await self.registry.recalculate_rankings(conn)
                    bounty['ranking'] = await conn.fetchval(
                        'SELECT ranking FROM bounty_features WHERE id = $1', bounty_id
                    )
        except PostgresError as e:
            logger.error(f"Database error rejecting claim on bounty {bounty_id}: {e}")
            raise DatabaseError(f"Failed to reject claim on bounty {bounty_id}: {e}")

        logger.info(
            f"Claim on bounty {bounty_id} by developer {developer_id} rejected by {moderator_id}"
        )
        await self.notifier.notify_user(developer_id, 'claim_rejected', bounty)
        return bounty

    async def mark_completed(self, bounty_id: int) -> Dict[str, Any]:
        """Record that development is finished and a payout is due.

        Raises:
            InvalidTransitionError: If the bounty is not in development
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            bounty = await guarded_transition(
                conn,
                bounty_id,
                'complete',
                (BountyStatus.IN_DEVELOPMENT.value,),
                BountyStatus.COMPLETED.value
            )

        logger.info(f"Bounty {bounty_id} completed by developer {bounty['developer_id']}")
        await self.notifier.notify_admins('bounty_completed', bounty)
        return bounty

    async def mark_paid(self, bounty_id: int, moderator_id: int) -> Dict[str, Any]:
        """Record the developer payout. Paid is terminal.

        Raises:
            InvalidTransitionError: If the bounty is not completed
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            bounty = await guarded_transition(
                conn,
                bounty_id,
                'mark paid',
                (BountyStatus.COMPLETED.value,),
                BountyStatus.PAID.value
            )

        logger.info(f"Bounty {bounty_id} marked paid by {moderator_id}")
        await self.notifier.notify_user(bounty['developer_id'], 'bounty_paid', bounty)
        return bounty
