"""asyncpg-backed repository for auctions, bids, jobs and notifications.

Every read that feeds a bid validation decision goes through
``PostgresRepository.transaction()`` so it shares a SERIALIZABLE transaction
with the write it guards.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Tuple

import asyncpg
from asyncpg.pool import Pool

from .exceptions import DatabaseError, TransactionConflictError

logger = logging.getLogger(__name__)

# Columns callers may change through update_auction
AUCTION_UPDATE_COLUMNS = ('title', 'description', 'image_url', 'starting_price', 'end_time')

BID_ORDER = 'ORDER BY amount DESC, updated_at ASC, id ASC'

class PostgresTransaction:
    """Reads and writes bound to one open transaction."""

    def __init__(self, conn: asyncpg.Connection) -> None:
        self.conn = conn

    async def fetch_auction(self, auction_id, lock: bool = False) -> Optional[Dict[str, Any]]:
        """Read an auction row, taking a row lock when ``lock`` is set."""
        query = 'SELECT * FROM auctions WHERE id = $1'
        if lock:
            query += ' FOR UPDATE'
        row = await self.conn.fetchrow(query, auction_id)
        return dict(row) if row else None

    async def fetch_bids(self, auction_id) -> List[Dict[str, Any]]:
        rows = await self.conn.fetch(
            f'SELECT * FROM bids WHERE auction_id = $1 {BID_ORDER}',
            auction_id
        )
        return [dict(r) for r in rows]

    async def upsert_bid(
        self,
        auction_id,
        bidder_id: str,
        amount: Decimal,
        placed_at: datetime
    ) -> Dict[str, Any]:
        """Insert the bidder's bid, or overwrite amount and timestamp if one exists."""
        row = await self.conn.fetchrow(
            '''
            INSERT INTO bids (auction_id, bidder_id, amount, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $4)
            ON CONFLICT (auction_id, bidder_id) DO UPDATE
            SET
                amount = EXCLUDED.amount,
                updated_at = EXCLUDED.updated_at
            RETURNING *
            ''',
            auction_id,
            bidder_id,
            amount,
            placed_at
        )
        return dict(row)

class PostgresRepository:
    """Persistence operations used by the auction engine."""

    def __init__(self, pool: Pool) -> None:
        self.pool = pool

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[PostgresTransaction]:
        """Open a SERIALIZABLE transaction.

        Raises:
            TransactionConflictError: If the transaction loses a serialization race
        """
        async with self.pool.acquire() as conn:
            try:
                async with conn.transaction(isolation='serializable'):
                    yield PostgresTransaction(conn)
            except (asyncpg.exceptions.SerializationError,
                    asyncpg.exceptions.DeadlockDetectedError) as e:
                logger.warning(f"Transaction conflict: {e}")
                raise TransactionConflictError(str(e)) from e

    # Auctions

    async def create_auction(self, auction: Dict[str, Any]) -> Dict[str, Any]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                '''
                INSERT INTO auctions (
                    seller_id, title, description, image_url,
                    starting_price, end_time, created_at, updated_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $7)
                RETURNING *
                ''',
                auction['seller_id'],
                auction['title'],
                auction.get('description') or '',
                auction.get('image_url'),
                auction['starting_price'],
                auction['end_time'],
                auction['created_at']
            )
            return dict(row)

    async def get_auction(self, auction_id) -> Optional[Dict[str, Any]]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow('SELECT * FROM auctions WHERE id = $1', auction_id)
            return dict(row) if row else None

    async def update_auction(
        self,
        auction_id,
        fields: Dict[str, Any],
        updated_at: datetime
    ) -> Optional[Dict[str, Any]]:
        unknown = set(fields) - set(AUCTION_UPDATE_COLUMNS)
        if unknown:
            raise DatabaseError(f"Cannot update auction columns: {', '.join(sorted(unknown))}")

        assignments = [f"{name} = ${i}" for i, name in enumerate(fields, start=2)]
        assignments.append(f"updated_at = ${len(fields) + 2}")

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f'''
                UPDATE auctions
                SET {', '.join(assignments)}
                WHERE id = $1
                RETURNING *
                ''',
                auction_id,
                *fields.values(),
                updated_at
            )
            return dict(row) if row else None

    async def delete_auction(self, auction_id) -> bool:
        """Delete an auction; bids and its job go with it."""
        async with self.pool.acquire() as conn:
            result = await conn.execute('DELETE FROM auctions WHERE id = $1', auction_id)
            return result != 'DELETE 0'

    # Bids

    async def get_bids(self, auction_id) -> List[Dict[str, Any]]:
        async with self.pool.acquire() as conn:
            return await PostgresTransaction(conn).fetch_bids(auction_id)

    async def get_bids_by_bidder(
        self,
        bidder_id: str,
        limit: int,
        offset: int
    ) -> Tuple[List[Dict[str, Any]], int]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT
                    b.*,
                    a.title AS auction_title,
                    a.end_time AS auction_end_time
                FROM bids b
                JOIN auctions a ON a.id = b.auction_id
                WHERE b.bidder_id = $1
                ORDER BY b.updated_at DESC
                LIMIT $2 OFFSET $3
                ''',
                bidder_id,
                limit,
                offset
            )
            total = await conn.fetchval(
                'SELECT COUNT(*) FROM bids WHERE bidder_id = $1',
                bidder_id
            )
            return [dict(r) for r in rows], total

    async def get_won_auctions(
        self,
        bidder_id: str,
        now: datetime,
        limit: int,
        offset: int
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Closed auctions whose top-ranked bid belongs to bidder_id."""
        won = f'''
            WITH ranked AS (
                SELECT
                    auction_id,
                    bidder_id,
                    amount,
                    ROW_NUMBER() OVER (PARTITION BY auction_id {BID_ORDER}) AS position
                FROM bids
                WHERE auction_id IN (SELECT auction_id FROM bids WHERE bidder_id = $1)
            )
            SELECT a.*, r.amount AS winning_amount
            FROM ranked r
            JOIN auctions a ON a.id = r.auction_id
            WHERE r.position = 1
            AND r.bidder_id = $1
            AND a.end_time <= $2
        '''
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f'{won} ORDER BY a.end_time DESC, a.id DESC LIMIT $3 OFFSET $4',
                bidder_id,
                now,
                limit,
                offset
            )
            total = await conn.fetchval(
                f'SELECT COUNT(*) FROM ({won}) AS won',
                bidder_id,
                now
            )
            return [dict(r) for r in rows], total

    # Scheduled jobs

    async def upsert_job(self, auction_id, scheduled_at: datetime, now: datetime) -> Dict[str, Any]:
        """Create the auction's job or re-arm it as PENDING at the new time.

        An EXECUTED job is returned untouched.
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                '''
                INSERT INTO scheduled_jobs (auction_id, scheduled_at, status, created_at, updated_at)
                VALUES ($1, $2, 'PENDING', $3, $3)
                ON CONFLICT (auction_id) DO UPDATE
                SET
                    scheduled_at = EXCLUDED.scheduled_at,
                    status = 'PENDING',
                    executed_at = NULL,
                    error = NULL,
                    updated_at = EXCLUDED.updated_at
                WHERE scheduled_jobs.status <> 'EXECUTED'
                RETURNING *
                ''',
                auction_id,
                scheduled_at,
                now
            )
            if row is None:
                row = await conn.fetchrow(
                    'SELECT * FROM scheduled_jobs WHERE auction_id = $1',
                    auction_id
                )
            return dict(row)

    async def get_job(self, auction_id) -> Optional[Dict[str, Any]]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                'SELECT * FROM scheduled_jobs WHERE auction_id = $1',
                auction_id
            )
            return dict(row) if row else None

    async def list_jobs(self, status: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT * FROM scheduled_jobs
                WHERE ($1::TEXT IS NULL OR status = $1)
                ORDER BY scheduled_at ASC
                LIMIT $2
                ''',
                status,
                limit
            )
            return [dict(r) for r in rows]

    async def find_due_jobs(self, now: datetime, limit: int) -> List[Dict[str, Any]]:
        """Pending jobs whose time has come, oldest first."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT * FROM scheduled_jobs
                WHERE status = 'PENDING'
                AND scheduled_at <= $1
                ORDER BY scheduled_at ASC
                LIMIT $2
                ''',
                now,
                limit
            )
            return [dict(r) for r in rows]

    async def transition_job(
        self,
        job_id,
        from_statuses: Iterable[str],
        to_status: str,
        now: datetime,
        expected_scheduled_at: Optional[datetime] = None,
        executed_at: Optional[datetime] = None,
        error: Optional[str] = None
    ) -> bool:
        """Move a job to ``to_status`` only if it is still in one of ``from_statuses``.

        Returns:
            True if this call performed the transition
        """
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                '''
                UPDATE scheduled_jobs
                SET
                    status = $3,
                    executed_at = $4,
                    error = $5,
                    updated_at = $6
                WHERE id = $1
                AND status = ANY($2::TEXT[])
                AND ($7::TIMESTAMPTZ IS NULL OR scheduled_at = $7)
                ''',
                job_id,
                list(from_statuses),
                to_status,
                executed_at,
                error,
                now,
                expected_scheduled_at
            )
            return result != 'UPDATE 0'

    # Notifications

    async def replace_notification(
        self,
        user_id: str,
        auction_id,
        price: Optional[Decimal],
        created_at: datetime
    ) -> Dict[str, Any]:
        """Write the (user, auction) notification, superseding any earlier one."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                '''
                INSERT INTO notifications (id, user_id, auction_id, price, created_at)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (user_id, auction_id) DO UPDATE
                SET
                    id = EXCLUDED.id,
                    price = EXCLUDED.price,
                    created_at = EXCLUDED.created_at
                RETURNING *
                ''',
                uuid.uuid4(),
                user_id,
                auction_id,
                price,
                created_at
            )
            return dict(row)

    async def get_notifications(
        self,
        user_id: str,
        limit: int,
        offset: int
    ) -> Tuple[List[Dict[str, Any]], int]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT
                    n.*,
                    a.title AS auction_title,
                    a.end_time AS auction_end_time
                FROM notifications n
                LEFT JOIN auctions a ON a.id = n.auction_id
                WHERE n.user_id = $1
                ORDER BY n.created_at DESC, n.id DESC
                LIMIT $2 OFFSET $3
                ''',
                user_id,
                limit,
                offset
            )
            total = await conn.fetchval(
                'SELECT COUNT(*) FROM notifications WHERE user_id = $1',
                user_id
            )
            return [dict(r) for r in rows], total

    async def delete_notifications(self, user_id: str) -> int:
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                'DELETE FROM notifications WHERE user_id = $1',
                user_id
            )
            return int(result.split()[-1])
