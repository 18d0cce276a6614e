"""In-process repository with the same contract as PostgresRepository.

Used by the test suite and by single-process development runs
(``storage_backend = memory``). Bid transactions take a per-auction
``asyncio.Lock`` in place of a row lock and stage their writes until commit.
"""

import asyncio
import logging
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Tuple

from .exceptions import DatabaseError

logger = logging.getLogger(__name__)

AUCTION_UPDATE_COLUMNS = ('title', 'description', 'image_url', 'starting_price', 'end_time')

def _as_uuid(value) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))

def _bid_sort_key(bid: Dict[str, Any]):
    return (-bid['amount'], bid['updated_at'], str(bid['id']))

class MemoryTransaction:
    """Staged reads and writes for one MemoryRepository transaction."""

    def __init__(self, repo: 'MemoryRepository') -> None:
        self._repo = repo
        self._held: List[asyncio.Lock] = []
        self._staged: Dict[Tuple[uuid.UUID, str], Dict[str, Any]] = {}

    async def fetch_auction(self, auction_id, lock: bool = False) -> Optional[Dict[str, Any]]:
        auction_id = _as_uuid(auction_id)
        if lock:
            auction_lock = self._repo._auction_locks[auction_id]
            if auction_lock not in self._held:
                await auction_lock.acquire()
                self._held.append(auction_lock)
        row = self._repo._auctions.get(auction_id)
        return dict(row) if row else None

    async def fetch_bids(self, auction_id) -> List[Dict[str, Any]]:
        auction_id = _as_uuid(auction_id)
        rows = {
            (b['auction_id'], b['bidder_id']): b
            for b in self._repo._bids.values()
            if b['auction_id'] == auction_id
        }
        # Reads see this transaction's own writes
        rows.update({k: v for k, v in self._staged.items() if k[0] == auction_id})
        return [dict(b) for b in sorted(rows.values(), key=_bid_sort_key)]

    async def upsert_bid(
        self,
        auction_id,
        bidder_id: str,
        amount: Decimal,
        placed_at: datetime
    ) -> Dict[str, Any]:
        auction_id = _as_uuid(auction_id)
        key = (auction_id, bidder_id)
        existing = self._staged.get(key) or self._repo._find_bid(auction_id, bidder_id)
        if existing:
            row = dict(existing, amount=amount, updated_at=placed_at)
        else:
            row = {
                'id': uuid.uuid4(),
                'auction_id': auction_id,
                'bidder_id': bidder_id,
                'amount': amount,
                'created_at': placed_at,
                'updated_at': placed_at
            }
        self._staged[key] = row
        return dict(row)

    def commit(self) -> None:
        for (auction_id, bidder_id), row in self._staged.items():
            if auction_id not in self._repo._auctions:
                raise DatabaseError(f"Auction {auction_id} no longer exists")
            existing = self._repo._find_bid(auction_id, bidder_id)
            if existing:
                existing.update(amount=row['amount'], updated_at=row['updated_at'])
            else:
                self._repo._bids[row['id']] = dict(row)

    def release(self) -> None:
        while self._held:
            self._held.pop().release()

class MemoryRepository:
    """Dict-backed store for auctions, bids, scheduled jobs and notifications."""

    def __init__(self) -> None:
        self._auctions: Dict[uuid.UUID, Dict[str, Any]] = {}
        self._bids: Dict[uuid.UUID, Dict[str, Any]] = {}
        self._jobs: Dict[uuid.UUID, Dict[str, Any]] = {}
        self._notifications: Dict[Tuple[str, uuid.UUID], Dict[str, Any]] = {}
        self._auction_locks: Dict[uuid.UUID, asyncio.Lock] = defaultdict(asyncio.Lock)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[MemoryTransaction]:
        tx = MemoryTransaction(self)
        try:
            yield tx
            tx.commit()
        finally:
            tx.release()

    def _find_bid(self, auction_id: uuid.UUID, bidder_id: str) -> Optional[Dict[str, Any]]:
        for bid in self._bids.values():
            if bid['auction_id'] == auction_id and bid['bidder_id'] == bidder_id:
                return bid
        return None

    def _auction_summary(self, auction_id: uuid.UUID) -> Dict[str, Any]:
        auction = self._auctions.get(auction_id)
        return {
            'auction_title': auction['title'] if auction else None,
            'auction_end_time': auction['end_time'] if auction else None
        }

    # Auctions

    async def create_auction(self, auction: Dict[str, Any]) -> Dict[str, Any]:
        row = {
            'id': uuid.uuid4(),
            'seller_id': auction['seller_id'],
            'title': auction['title'],
            'description': auction.get('description') or '',
            'image_url': auction.get('image_url'),
            'starting_price': auction['starting_price'],
            'end_time': auction['end_time'],
            'created_at': auction['created_at'],
            'updated_at': auction['created_at']
        }
        self._auctions[row['id']] = row
        return dict(row)

    async def get_auction(self, auction_id) -> Optional[Dict[str, Any]]:
        row = self._auctions.get(_as_uuid(auction_id))
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

        row = self._auctions.get(_as_uuid(auction_id))
        if row is None:
            return None
        row.update(fields)
        row['updated_at'] = updated_at
        return dict(row)

    async def delete_auction(self, auction_id) -> bool:
        auction_id = _as_uuid(auction_id)
        if self._auctions.pop(auction_id, None) is None:
            return False
        for bid_id in [k for k, b in self._bids.items() if b['auction_id'] == auction_id]:
            del self._bids[bid_id]
        for job_id in [k for k, j in self._jobs.items() if j['auction_id'] == auction_id]:
            del self._jobs[job_id]
        self._auction_locks.pop(auction_id, None)
        return True

    # Bids

    async def get_bids(self, auction_id) -> List[Dict[str, Any]]:
        auction_id = _as_uuid(auction_id)
        rows = [b for b in self._bids.values() if b['auction_id'] == auction_id]
        return [dict(b) for b in sorted(rows, key=_bid_sort_key)]

    async def get_bids_by_bidder(
        self,
        bidder_id: str,
        limit: int,
        offset: int
    ) -> Tuple[List[Dict[str, Any]], int]:
        rows = [b for b in self._bids.values() if b['bidder_id'] == bidder_id]
        rows.sort(key=lambda b: b['updated_at'], reverse=True)
        page = [
            dict(b, **self._auction_summary(b['auction_id']))
            for b in rows[offset:offset + limit]
        ]
        return page, len(rows)

    async def get_won_auctions(
        self,
        bidder_id: str,
        now: datetime,
        limit: int,
        offset: int
    ) -> Tuple[List[Dict[str, Any]], int]:
        won = []
        for auction in self._auctions.values():
            if auction['end_time'] > now:
                continue
            bids = [b for b in self._bids.values() if b['auction_id'] == auction['id']]
            if not bids:
                continue
            top = min(bids, key=_bid_sort_key)
            if top['bidder_id'] == bidder_id:
                won.append(dict(auction, winning_amount=top['amount']))
        won.sort(key=lambda a: (a['end_time'], str(a['id'])), reverse=True)
        return won[offset:offset + limit], len(won)

    # Scheduled jobs

    async def upsert_job(self, auction_id, scheduled_at: datetime, now: datetime) -> Dict[str, Any]:
        auction_id = _as_uuid(auction_id)
        job = next((j for j in self._jobs.values() if j['auction_id'] == auction_id), None)
        if job is None:
            job = {
                'id': uuid.uuid4(),
                'auction_id': auction_id,
                'scheduled_at': scheduled_at,
                'status': 'PENDING',
                'executed_at': None,
                'error': None,
                'created_at': now,
                'updated_at': now
            }
            self._jobs[job['id']] = job
        elif job['status'] != 'EXECUTED':
            job.update(
                scheduled_at=scheduled_at,
                status='PENDING',
                executed_at=None,
                error=None,
                updated_at=now
            )
        return dict(job)

    async def get_job(self, auction_id) -> Optional[Dict[str, Any]]:
        auction_id = _as_uuid(auction_id)
        for job in self._jobs.values():
            if job['auction_id'] == auction_id:
                return dict(job)
        return None

    async def list_jobs(self, status: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        rows = [j for j in self._jobs.values() if status is None or j['status'] == status]
        rows.sort(key=lambda j: j['scheduled_at'])
        return [dict(j) for j in rows[:limit]]

    async def find_due_jobs(self, now: datetime, limit: int) -> List[Dict[str, Any]]:
        rows = [
            j for j in self._jobs.values()
            if j['status'] == 'PENDING' and j['scheduled_at'] <= now
        ]
        rows.sort(key=lambda j: j['scheduled_at'])
        return [dict(j) for j in rows[:limit]]

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
        job = self._jobs.get(_as_uuid(job_id))
        if job is None or job['status'] not in set(from_statuses):
            return False
        if expected_scheduled_at is not None and job['scheduled_at'] != expected_scheduled_at:
            return False
        job.update(status=to_status, executed_at=executed_at, error=error, updated_at=now)
        return True

    # Notifications

    async def replace_notification(
        self,
        user_id: str,
        auction_id,
        price: Optional[Decimal],
        created_at: datetime
    ) -> Dict[str, Any]:
        auction_id = _as_uuid(auction_id)
        row = {
            'id': uuid.uuid4(),
            'user_id': user_id,
            'auction_id': auction_id,
            'price': price,
            'created_at': created_at
        }
        self._notifications[(user_id, auction_id)] = row
        return dict(row)

    async def get_notifications(
        self,
        user_id: str,
        limit: int,
        offset: int
    ) -> Tuple[List[Dict[str, Any]], int]:
        rows = [n for n in self._notifications.values() if n['user_id'] == user_id]
        rows.sort(key=lambda n: (n['created_at'], str(n['id'])), reverse=True)
        page = [
            dict(n, **self._auction_summary(n['auction_id']))
            for n in rows[offset:offset + limit]
        ]
        return page, len(rows)

    async def delete_notifications(self, user_id: str) -> int:
        keys = [k for k in self._notifications if k[0] == user_id]
        for key in keys:
            del self._notifications[key]
        return len(keys)
