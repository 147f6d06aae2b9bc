"""Bounties module for community-funded feature requests.

This module stores bounty records and answers the listing, ranking and
statistics queries over them. Lifecycle transitions live in
``bounties.moderation`` and ``bounties.claims``; funding aggregates are only
ever recomputed from confirmed payments, never incremented in place.
"""
import logging
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from asyncpg.pool import Pool
from asyncpg.exceptions import PostgresError

from database import get_pool
from database.exceptions import DatabaseError
from notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

class BountyStatus(str, Enum):
    """Lifecycle states of a bounty."""
    PENDING_REVIEW = 'pending_review'
    APPROVED = 'approved'
    REJECTED = 'rejected'
    TAKEN = 'taken'
    IN_DEVELOPMENT = 'in_development'
    COMPLETED = 'completed'
    PAID = 'paid'

# Statuses open for funding and included in ranking
FUNDABLE_STATUSES = (BountyStatus.APPROVED.value,)

# Advisory lock serializing every transaction that re-ranks bounties
RANKING_LOCK_KEY = 73201

class BountyError(Exception):
    """Base class for bounty-related errors."""
    pass

class ValidationError(BountyError):
    """Raised when input to a creation call is invalid."""
    pass

class BountyNotFoundError(BountyError):
    """Raised when a bounty id does not exist."""
    def __init__(self, bounty_id: int):
        self.bounty_id = bounty_id
        super().__init__(f"Bounty {bounty_id} not found")

class InvalidTransitionError(BountyError):
    """Raised when a guarded status update matched no row."""
    def __init__(self, bounty_id: int, action: str, expected: tuple,
                 current: Optional[str] = None):
        self.bounty_id = bounty_id
        self.action = action
        self.expected = expected
        self.current = current
        if current is None:
            message = f"Cannot {action} bounty {bounty_id}: bounty not found"
        else:
            message = (
                f"Cannot {action} bounty {bounty_id}: status is '{current}', "
                f"expected {' or '.join(repr(s) for s in expected)}"
            )
        super().__init__(message)

def parse_status(status: str) -> BountyStatus:
    """Parse a status string, raising ValidationError for unknown values."""
    try:
        return BountyStatus(status)
    except ValueError:
        raise ValidationError(f"Unknown bounty status: {status}")

async def lock_rankings(conn) -> None:
    """Take the ranking lock for the rest of the current transaction.

    Re-ranking rewrites every fundable row, so a transaction that re-ranks
    must take this lock before it locks any single bounty row.
    """
    await conn.execute('SELECT pg_advisory_xact_lock($1)', RANKING_LOCK_KEY)

async def guarded_transition(
    conn,
    bounty_id: int,
    action: str,
    expected: tuple,
    target: str,
    assignments: str = '',
    *params: Any
) -> Dict[str, Any]:
    """Move a bounty to ``target`` only if its status is one of ``expected``.

    The prior status is part of the UPDATE predicate, so of two concurrent
    attempts at the same transition exactly one matches a row.

    Args:
        conn: Database connection
        bounty_id: Bounty to update
        action: Verb used in the error message, e.g. 'approve'
        expected: Statuses the bounty must currently be in
        target: New status
        assignments: Extra SET clauses; their placeholders start at $4
        *params: Values for the extra placeholders

    Returns:
        The updated bounty

    Raises:
        InvalidTransitionError: If the bounty is missing or in another status
    """
    extra = f", {assignments}" if assignments else ''
    row = await conn.fetchrow(
        f'''
        UPDATE bounty_features
        SET status = $3{extra}, updated_at = now()
        WHERE id = $1 AND status = ANY($2::TEXT[])
        RETURNING *
        ''',
        bounty_id,
        list(expected),
        target,
        *params
    )
    if not row:
        current = await conn.fetchval(
            'SELECT status FROM bounty_features WHERE id = $1', bounty_id
        )
        logger.warning(
            f"Rejected {action} on bounty {bounty_id}: status {current}, expected {expected}"
        )
        raise InvalidTransitionError(bounty_id, action, expected, current)

    logger.info(f"Bounty {bounty_id} moved to {target} ({action})")
    return dict(row)

class BountyRegistry:
    """Stores bounties and answers listing, ranking and statistics queries."""

    def __init__(self, pool: Optional[Pool] = None, notifier=None) -> None:
        """Initialize bounty registry.

        Args:
            pool: Optional database connection pool. If not provided, will get from database module.
            notifier: Optional notification dispatcher for admin alerts
        """
        self.pool = pool
        self.notifier = notifier or NotificationDispatcher()

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def create(
        self,
        title: str,
        description: str,
        creator_id: int,
        creator_name: Optional[str] = None
    ) -> Dict[str, Any]:
        """Create a bounty awaiting moderation.

        Length limits on title and description are enforced by the caller;
        only blank values are rejected here.

        Raises:
            ValidationError: If title or description is blank
            DatabaseError: If the insert fails
        """
        title = (title or '').strip()
        description = (description or '').strip()
        if not title:
            raise ValidationError("Title is required")
        if not description:
            raise ValidationError("Description is required")

        await self.ensure_pool()
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    '''
                    INSERT INTO bounty_features (
                        title, description, creator_id, creator_name, status
                    ) VALUES ($1, $2, $3, $4, $5)
                    RETURNING *
                    ''',
                    title,
                    description,
                    creator_id,
                    creator_name,
                    BountyStatus.PENDING_REVIEW.value
                )
        except PostgresError as e:
            logger.error(f"Database error creating bounty: {e}")
            raise DatabaseError(f"Failed to create bounty: {e}")

        bounty = dict(row)
        logger.info(f"Bounty {bounty['id']} created by {creator_id}")
        await self.notifier.notify_admins('new_bounty', bounty)
        return bounty

    async def get_by_id(self, bounty_id: int) -> Dict[str, Any]:
        """Get a bounty by id.

        Raises:
            BountyNotFoundError: If the bounty does not exist
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                'SELECT * FROM bounty_features WHERE id = $1',
                bounty_id
            )
        if not row:
            raise BountyNotFoundError(bounty_id)
        return dict(row)

    async def list_by_status(
        self,
        status: str = BountyStatus.APPROVED.value,
        limit: int = 20,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """List bounties in a status, best ranked first."""
        status = parse_status(status).value
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT * FROM bounty_features
                WHERE status = $1
                ORDER BY ranking ASC NULLS LAST, total_fiat DESC, created_at ASC
                LIMIT $2 OFFSET $3
                ''',
                status,
                limit,
                offset
            )
        return [dict(row) for row in rows]

    async def count_by_status(self, status: str) -> int:
        status = parse_status(status).value
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            count = await conn.fetchval(
                'SELECT COUNT(*) FROM bounty_features WHERE status = $1',
                status
            )
        return int(count or 0)

    async def stats(self) -> Dict[str, Dict[str, Any]]:
        """Per-status counts, fiat totals and contribution counts.

        Every status is present in the result, with zeros where no bounty
        is in that status.
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT
                    status,
                    COUNT(*) AS count,
                    COALESCE(SUM(total_fiat), 0) AS total_fiat,
                    COALESCE(SUM(contribution_count), 0) AS contribution_count
                FROM bounty_features
                GROUP BY status
                '''
            )

        result = {
            status.value: {
                'count': 0,
                'total_fiat': Decimal('0'),
                'contribution_count': 0
            }
            for status in BountyStatus
        }
        for row in rows:
            result[row['status']] = {
                'count': int(row['count']),
                'total_fiat': Decimal(str(row['total_fiat'])),
                'contribution_count': int(row['contribution_count'])
            }
        return result

    async def refresh_totals(self, bounty_id: int, conn=None) -> Optional[Dict[str, Any]]:
        """Recompute a bounty's funding aggregates from its confirmed payments.

        Args:
            bounty_id: Bounty to refresh
            conn: Optional connection to run on, e.g. inside a caller's transaction

        Returns:
            The updated bounty, or None if it does not exist
        """
        query = '''
            UPDATE bounty_features AS b
            SET total_fiat = agg.total_fiat,
                contribution_count = agg.contribution_count,
                updated_at = now()
            FROM (
                SELECT
                    COALESCE(SUM(amount_fiat), 0) AS total_fiat,
                    COUNT(*) AS contribution_count
                FROM bounty_payments
                WHERE bounty_id = $1 AND status = 'confirmed'
            ) AS agg
            WHERE b.id = $1
            RETURNING b.*
        '''
        if conn is not None:
            row = await conn.fetchrow(query, bounty_id)
        else:
            await self.ensure_pool()
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(query, bounty_id)

        if not row:
            return None
        logger.info(
            f"Bounty {bounty_id} totals refreshed: {row['total_fiat']} "
            f"from {row['contribution_count']} contributions"
        )
        return dict(row)

    async def recalculate_rankings(self, conn=None) -> int:
        """Recompute ranking over fundable bounties.

        Fundable bounties are ranked 1..N by total funding, oldest first on
        ties. Bounties outside the fundable statuses lose their ranking.

        A caller passing its own connection inside a transaction must have
        taken ``lock_rankings`` before touching any bounty row.

        Returns:
            Number of bounties ranked
        """
        try:
            if conn is None:
                await self.ensure_pool()
                async with self.pool.acquire() as conn:
                    return await self._recalculate_rankings(conn)
            return await self._recalculate_rankings(conn)
        except PostgresError as e:
            logger.error(f"Database error recalculating rankings: {e}")
            raise DatabaseError(f"Failed to recalculate rankings: {e}")

    async def _recalculate_rankings(self, conn) -> int:
        fundable = list(FUNDABLE_STATUSES)
        async with conn.transaction():
            await lock_rankings(conn)
            await conn.execute(
                '''
                UPDATE bounty_features
                SET ranking = NULL
                WHERE ranking IS NOT NULL AND status <> ALL($1::TEXT[])
                ''',
                fundable
            )
            rows = await conn.fetch(
                '''
                UPDATE bounty_features AS b
                SET ranking = r.position
                FROM (
                    SELECT id, ROW_NUMBER() OVER (
                        ORDER BY total_fiat DESC, created_at ASC, id ASC
                    ) AS position
                    FROM bounty_features
                    WHERE status = ANY($1::TEXT[])
                ) AS r
                WHERE b.id = r.id
                RETURNING b.id
                ''',
                fundable
            )
        logger.info(f"Rankings recalculated for {len(rows)} fundable bounties")
        return len(rows)

__all__ = [
    'BountyRegistry',
    'BountyStatus',
    'FUNDABLE_STATUSES',
    'RANKING_LOCK_KEY',
    'BountyError',
    'ValidationError',
    'BountyNotFoundError',
    'InvalidTransitionError',
    'parse_status',
    'guarded_transition',
    'lock_rankings'
]
