"""Tests for settlement scheduling and the sweep loop."""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from config import DEFAULTS, validate_settings
from engine import build_engine
from scheduler import (
    JobNotFoundError,
    JobStateError,
    SchedulerError,
    SettlementScheduler,
    SweepLoop,
)
from settlement import SettlementProcessor
from tests.conftest import SELLER

async def place_bids(engine, auction, *bids):
    for bidder_id, amount in bids:
        await engine.bids.place_bid(auction["id"], bidder_id, amount)

async def stored_outcomes(engine, user_id):
    notifications = await engine.notifications.get_recent_notifications(user_id)
    return [(n["id"], n["price"], n["created_at"]) for n in notifications]

class YieldingProcessor(SettlementProcessor):
    """Settlement that yields to the event loop first, like a real database round trip."""

    async def settle(self, auction, bids):
        await asyncio.sleep(0)
        return await super().settle(auction, bids)

@pytest.mark.asyncio
async def test_sweep_ignores_jobs_not_yet_due(engine, auction, clock):
    clock.set(auction["end_time"] - timedelta(milliseconds=1))
    result = await engine.scheduler.sweep()

    assert result.processed == 0
    assert (await engine.scheduler.get_job(auction["id"]))["status"] == "PENDING"

@pytest.mark.asyncio
async def test_auction_without_bids_settles_empty(engine, auction, clock):
    """Test a zero-bid auction's job is EXECUTED with no notifications."""
    clock.set(auction["end_time"])
    result = await engine.scheduler.sweep()

    assert result.executed == [auction["id"]]
    job = await engine.scheduler.get_job(auction["id"])
    assert job["status"] == "EXECUTED"
    assert job["executed_at"] == clock.now()
    assert job["error"] is None
    assert await engine.scheduler.list_jobs(status="PENDING") == []

@pytest.mark.asyncio
async def test_sweep_settles_winner_and_losers(engine, auction, clock):
    await place_bids(engine, auction, ("u1", "105"), ("u3", "115"), ("u2", "120"))

    clock.set(auction["end_time"] + timedelta(seconds=30))
    result = await engine.scheduler.sweep()

    assert result.executed == [auction["id"]]
    won = await engine.notifications.get_recent_notifications("u2")
    assert [n["price"] for n in won] == [Decimal("120.00")]
    for loser in ("u1", "u3"):
        lost = await engine.notifications.get_recent_notifications(loser)
        assert [n["price"] for n in lost] == [None]

@pytest.mark.asyncio
async def test_executed_job_is_not_run_again(engine, auction, clock):
    await place_bids(engine, auction, ("u1", "105"))
    clock.set(auction["end_time"])
    await engine.scheduler.sweep()

    clock.advance(minutes=5)
    result = await engine.scheduler.sweep()
    assert result.processed == 0

    # Re-scheduling a settled auction leaves it settled
    job = await engine.scheduler.schedule_auction_end(auction["id"], clock.now() + timedelta(hours=1))
    assert job["status"] == "EXECUTED"

    with pytest.raises(JobStateError):
        await engine.scheduler.reprocess_job(auction["id"])

@pytest.mark.asyncio
async def test_due_jobs_run_oldest_first_within_batch(repository, clock):
    settings = validate_settings(dict(DEFAULTS, sweep_batch_size="2"))
    engine = build_engine(repository, settings, clock=clock)

    created = []
    for minutes in (30, 10, 20):
        created.append(await engine.auctions.create_auction(
            seller_id="s", title=f"Item {minutes}", starting_price="5",
            end_time=clock.now() + timedelta(minutes=minutes)
        ))

    clock.advance(hours=1)
    first = await engine.scheduler.sweep()
    second = await engine.scheduler.sweep()

    assert first.executed == [created[1]["id"], created[2]["id"]]
    assert second.executed == [created[0]["id"]]

@pytest.mark.asyncio
async def test_recipient_write_failure_still_executes_job(engine, auction, clock, repository, monkeypatch):
    """Test one recipient's write failure is logged and the job is still EXECUTED."""
    await place_bids(engine, auction, ("u1", "105"), ("u3", "115"), ("u2", "120"))
    original = repository.replace_notification

    async def flaky_replace(user_id, auction_id, price, created_at):
        if user_id == "u3":
            raise ConnectionError("write timed out")
        return await original(user_id, auction_id, price, created_at)

    monkeypatch.setattr(repository, "replace_notification", flaky_replace)
    clock.set(auction["end_time"] + timedelta(hours=2))
    result = await engine.scheduler.sweep()

    assert result.executed == [auction["id"]]
    assert result.failed == []
    job = await engine.scheduler.get_job(auction["id"])
    assert job["status"] == "EXECUTED"
    assert job["error"] is None
    won = await engine.notifications.get_recent_notifications("u2")
    assert [n["price"] for n in won] == [Decimal("120.00")]
    lost = await engine.notifications.get_recent_notifications("u1")
    assert [n["price"] for n in lost] == [None]
    assert await engine.notifications.get_recent_notifications("u3") == []

@pytest.mark.asyncio
async def test_failed_settlement_is_isolated_and_reprocessable(engine, auction, clock, repository, monkeypatch):
    """Test a bid set that cannot be read marks the job FAILED until reprocessed."""
    await place_bids(engine, auction, ("u1", "105"), ("u3", "115"), ("u2", "120"))
    original = repository.get_bids

    async def unreadable(auction_id):
        raise ConnectionError("read timed out")

    monkeypatch.setattr(repository, "get_bids", unreadable)
    clock.set(auction["end_time"])
    result = await engine.scheduler.sweep()

    assert result.failed == [auction["id"]]
    job = await engine.scheduler.get_job(auction["id"])
    assert job["status"] == "FAILED"
    assert "read timed out" in job["error"]
    for user_id in ("u1", "u2", "u3"):
        assert await engine.notifications.get_recent_notifications(user_id) == []

    # FAILED jobs wait for an operator
    clock.advance(minutes=5)
    assert (await engine.scheduler.sweep()).processed == 0

    monkeypatch.setattr(repository, "get_bids", original)
    result = await engine.scheduler.reprocess_job(auction["id"])

    assert result.executed == [auction["id"]]
    job = await engine.scheduler.get_job(auction["id"])
    assert job["status"] == "EXECUTED"
    assert job["error"] is None
    winners = []
    for user_id in ("u1", "u2", "u3"):
        notifications = await engine.notifications.get_recent_notifications(user_id)
        assert len(notifications) == 1
        if notifications[0]["price"] is not None:
            winners.append(user_id)
    assert winners == ["u2"]

@pytest.mark.asyncio
async def test_deleting_settled_auction_keeps_notifications(engine, auction, clock, repository):
    """Test deleting an auction after settlement neither reschedules nor renotifies."""
    await place_bids(engine, auction, ("u1", "105"), ("u2", "120"))
    clock.set(auction["end_time"])
    assert (await engine.scheduler.sweep()).executed == [auction["id"]]
    before = {
        user_id: await stored_outcomes(engine, user_id) for user_id in ("u1", "u2")
    }

    clock.advance(minutes=1)
    await engine.auctions.delete_auction(auction["id"], SELLER)
    clock.advance(minutes=1)
    result = await engine.scheduler.sweep()

    assert result.processed == 0
    assert await repository.get_job(auction["id"]) is None
    assert await engine.scheduler.list_jobs() == []
    for user_id, outcomes in before.items():
        assert await stored_outcomes(engine, user_id) == outcomes

@pytest.mark.asyncio
async def test_reprocess_requires_failed_job(engine, auction):
    with pytest.raises(JobStateError):
        await engine.scheduler.reprocess_job(auction["id"])
    with pytest.raises(JobNotFoundError):
        await engine.scheduler.reprocess_job("00000000-0000-0000-0000-000000000000")

@pytest.mark.asyncio
async def test_crash_before_recording_leaves_job_pending(engine, auction, clock, repository, monkeypatch):
    """Test a settlement whose outcome was never recorded runs again next sweep."""
    await place_bids(engine, auction, ("u1", "105"), ("u2", "120"))
    original = repository.transition_job

    async def unavailable(*args, **kwargs):
        raise ConnectionError("connection lost")

    monkeypatch.setattr(repository, "transition_job", unavailable)
    clock.set(auction["end_time"])
    result = await engine.scheduler.sweep()

    assert result.skipped == [auction["id"]]
    assert (await engine.scheduler.get_job(auction["id"]))["status"] == "PENDING"

    monkeypatch.setattr(repository, "transition_job", original)
    clock.advance(minutes=1)
    result = await engine.scheduler.sweep()

    assert result.executed == [auction["id"]]
    # Settling twice left one notification per bidder
    assert len(await engine.notifications.get_recent_notifications("u1")) == 1
    assert len(await engine.notifications.get_recent_notifications("u2")) == 1

@pytest.mark.asyncio
async def test_concurrent_schedulers_execute_job_once(engine, auction, clock, repository):
    """Test two schedulers racing on the same job record one execution."""
    await place_bids(engine, auction, ("u1", "105"), ("u2", "120"))
    first = SettlementScheduler(repository, YieldingProcessor(engine.notifications), clock)
    second = SettlementScheduler(repository, YieldingProcessor(engine.notifications), clock)

    clock.set(auction["end_time"])
    results = await asyncio.gather(first.sweep(), second.sweep())

    assert sum(len(r.executed) for r in results) == 1
    assert sum(len(r.skipped) for r in results) == 1
    assert sum(len(r.failed) for r in results) == 0
    won = await engine.notifications.get_recent_notifications("u2")
    assert [n["price"] for n in won] == [Decimal("120.00")]

@pytest.mark.asyncio
async def test_job_rearmed_during_settlement_is_left_pending(engine, auction, clock, repository):
    """Test a job moved while its old run was settling keeps its new schedule."""
    new_end = auction["end_time"] + timedelta(hours=1)

    class RearmingProcessor(SettlementProcessor):
        async def settle(self, auction_row, bids):
            await repository.upsert_job(auction_row["id"], new_end, clock.now())
            return await super().settle(auction_row, bids)

    scheduler = SettlementScheduler(repository, RearmingProcessor(engine.notifications), clock)
    clock.set(auction["end_time"])
    result = await scheduler.sweep()

    assert result.skipped == [auction["id"]]
    job = await scheduler.get_job(auction["id"])
    assert job["status"] == "PENDING"
    assert job["scheduled_at"] == new_end

@pytest.mark.asyncio
async def test_cancel_auction_end(engine, auction, clock):
    assert await engine.scheduler.cancel_auction_end(auction["id"]) is True
    assert (await engine.scheduler.get_job(auction["id"]))["status"] == "CANCELLED"
    assert await engine.scheduler.cancel_auction_end(auction["id"]) is False

    clock.set(auction["end_time"])
    assert (await engine.scheduler.sweep()).processed == 0

@pytest.mark.asyncio
async def test_cancel_without_job(engine):
    assert await engine.scheduler.cancel_auction_end("00000000-0000-0000-0000-000000000000") is False

@pytest.mark.asyncio
async def test_sweep_survives_query_failure(engine, repository, monkeypatch):
    async def broken(now, limit):
        raise ConnectionError("database unavailable")

    monkeypatch.setattr(repository, "find_due_jobs", broken)
    result = await engine.scheduler.sweep()
    assert result.processed == 0

@pytest.mark.asyncio
async def test_list_jobs_rejects_unknown_status(engine):
    with pytest.raises(SchedulerError):
        await engine.scheduler.list_jobs(status="DONE")

@pytest.mark.asyncio
async def test_sweep_loop_runs_until_limit():
    """Test the loop sweeps, then sleeps the interval, between sweeps."""
    class CountingScheduler:
        sweeps = 0

        async def sweep(self):
            self.sweeps += 1

    slept = []

    async def fake_sleep(seconds):
        slept.append(seconds)

    scheduler = CountingScheduler()
    loop = SweepLoop(scheduler, interval=60, sleep=fake_sleep)
    await loop.run(max_sweeps=3)

    assert scheduler.sweeps == 3
    assert slept == [60, 60]

@pytest.mark.asyncio
async def test_sweep_loop_stop_and_error_handling():
    class FlakyScheduler:
        calls = 0

        async def sweep(self):
            self.calls += 1
            if self.calls == 1:
                raise RuntimeError("boom")

    scheduler = FlakyScheduler()

    async def stop_after_second(seconds):
        if scheduler.calls >= 2:
            loop.stop()

    loop = SweepLoop(scheduler, interval=5, sleep=stop_after_second)
    await loop.run()

    assert scheduler.calls == 2
    assert loop.sweeps == 2

@pytest.mark.asyncio
async def test_sweep_loop_drives_engine(engine, auction, clock):
    """Test an engine's loop settles an auction once the clock passes its end."""
    async def advance_clock(seconds):
        clock.advance(seconds=seconds)

    loop = engine.sweep_loop(sleep=advance_clock)
    await loop.run(max_sweeps=62)

    job = await engine.scheduler.get_job(auction["id"])
    assert job["status"] == "EXECUTED"
    assert job["executed_at"] == auction["end_time"]
