"""Durable settlement scheduling.

Every auction owns one job row whose ``scheduled_at`` tracks the auction's
end time. A periodic sweep settles the jobs that have come due and records
the outcome with a conditional status update, so each job leaves PENDING at
most once even with several schedulers sweeping the same store. A crash
before that update leaves the job PENDING for the next sweep.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from auctions.clock import SystemClock
from .exceptions import JobNotFoundError, JobStateError, SchedulerError
from .loop import SweepLoop

logger = logging.getLogger(__name__)

PENDING = 'PENDING'
EXECUTED = 'EXECUTED'
FAILED = 'FAILED'
CANCELLED = 'CANCELLED'

JOB_STATUSES = (PENDING, EXECUTED, FAILED, CANCELLED)

DEFAULT_BATCH_SIZE = 100

@dataclass
class SweepResult:
    """Auction ids grouped by what a sweep did with their jobs."""
    executed: List[Any] = field(default_factory=list)
    failed: List[Any] = field(default_factory=list)
    skipped: List[Any] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.executed) + len(self.failed)

class SettlementScheduler:
    """Owns scheduled jobs and runs due settlements."""

    def __init__(self, repository, processor, clock=None, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        """Initialize the scheduler.

        Args:
            repository: Store for jobs, auctions and bids
            processor: SettlementProcessor invoked for each due job
            clock: Time source, defaults to the system clock
            batch_size: Maximum jobs handled per sweep
        """
        self.repository = repository
        self.processor = processor
        self.clock = clock or SystemClock()
        self.batch_size = batch_size

    async def schedule_auction_end(self, auction_id, end_time: datetime) -> Dict[str, Any]:
        """Create or re-arm the auction's job for ``end_time``."""
        job = await self.repository.upsert_job(auction_id, end_time, self.clock.now())
        if job['status'] == EXECUTED:
            logger.warning(f"Auction {auction_id} is already settled; job left as EXECUTED")
        else:
            logger.info(f"Scheduled settlement of auction {auction_id} at {end_time.isoformat()}")
        return job

    async def cancel_auction_end(self, auction_id) -> bool:
        """Cancel the auction's job if it has not run yet.

        Returns:
            True if a job was cancelled
        """
        job = await self.repository.get_job(auction_id)
        if job is None:
            return False
        cancelled = await self.repository.transition_job(
            job['id'], (PENDING, FAILED), CANCELLED, now=self.clock.now()
        )
        if cancelled:
            logger.info(f"Cancelled settlement of auction {auction_id}")
        return cancelled

    async def get_job(self, auction_id) -> Dict[str, Any]:
        job = await self.repository.get_job(auction_id)
        if job is None:
            raise JobNotFoundError(auction_id)
        return job

    async def list_jobs(self, status: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        if status is not None and status not in JOB_STATUSES:
            raise SchedulerError(f"Unknown job status: {status}")
        return await self.repository.list_jobs(status, limit)

    async def sweep(self) -> SweepResult:
        """Settle every PENDING job whose time has come, oldest first."""
        result = SweepResult()
        now = self.clock.now()

        try:
            jobs = await self.repository.find_due_jobs(now, self.batch_size)
        except Exception as e:
            logger.error(f"Failed to query due jobs: {e}")
            return result

        if jobs:
            logger.info(f"Found {len(jobs)} due settlement job(s)")

        for job in jobs:
            await self._execute(job, result)

        if jobs:
            logger.info(
                f"Sweep done: {len(result.executed)} executed, {len(result.failed)} failed, "
                f"{len(result.skipped)} skipped"
            )
        return result

    async def reprocess_job(self, auction_id) -> SweepResult:
        """Run a FAILED job again right away.

        Raises:
            JobNotFoundError: If the auction has no job
            JobStateError: If the job is not FAILED
        """
        job = await self.get_job(auction_id)
        if job['status'] != FAILED:
            raise JobStateError(
                f"Only FAILED jobs can be reprocessed; auction {auction_id} is {job['status']}"
            )

        reset = await self.repository.transition_job(
            job['id'], (FAILED,), PENDING, now=self.clock.now(),
            expected_scheduled_at=job['scheduled_at']
        )
        if not reset:
            raise JobStateError(f"Job for auction {auction_id} changed state before reprocessing")

        logger.info(f"Reprocessing settlement of auction {auction_id}")
        job['status'] = PENDING
        result = SweepResult()
        await self._execute(job, result)
        return result

    async def _execute(self, job: Dict[str, Any], result: SweepResult) -> None:
        auction_id = job['auction_id']
        try:
            auction = await self.repository.get_auction(auction_id)
            if auction is None:
                raise SchedulerError(f"Auction {auction_id} no longer exists")
            bids = await self.repository.get_bids(auction_id)
            await self.processor.settle(auction, bids)
        except Exception as e:
            logger.error(f"Settlement of auction {auction_id} failed: {e}")
            await self._finish(job, FAILED, result.failed, result, error=str(e) or type(e).__name__)
            return

        await self._finish(job, EXECUTED, result.executed, result, executed_at=self.clock.now())

    async def _finish(self, job: Dict[str, Any], status: str, bucket: List[Any],
                      result: SweepResult, **fields) -> None:
        auction_id = job['auction_id']
        try:
            moved = await self.repository.transition_job(
                job['id'], (PENDING,), status, now=self.clock.now(),
                expected_scheduled_at=job['scheduled_at'], **fields
            )
        except Exception as e:
            # Job stays PENDING and is picked up by the next sweep
            logger.error(f"Failed to record {status} for auction {auction_id}: {e}")
            result.skipped.append(auction_id)
            return

        if moved:
            logger.info(f"Job for auction {auction_id} marked {status}")
            bucket.append(auction_id)
        else:
            logger.info(f"Job for auction {auction_id} changed concurrently; left as is")
            result.skipped.append(auction_id)

__all__ = [
    'SettlementScheduler', 'SweepResult', 'SweepLoop',
    'SchedulerError', 'JobNotFoundError', 'JobStateError',
    'PENDING', 'EXECUTED', 'FAILED', 'CANCELLED', 'JOB_STATUSES'
]
