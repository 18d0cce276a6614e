"""Tests for bid placement."""

import asyncio
import random
from contextlib import asynccontextmanager
from datetime import timedelta
from decimal import Decimal

import pytest

from auctions import (
    AuctionEndedError,
    AuctionNotFoundError,
    BidConflictError,
    BidManager,
    BidTooLowError,
    InvalidBidAmountError,
    SelfBidError,
)
from database import MemoryRepository, TransactionConflictError
from database.memory import MemoryTransaction
from engine import build_engine
from tests.conftest import SELLER

class ConflictingRepository(MemoryRepository):
    """Memory repository whose first ``conflicts`` transactions lose a race."""

    def __init__(self, conflicts):
        super().__init__()
        self.conflicts = conflicts
        self.attempts = 0

    @asynccontextmanager
    async def transaction(self):
        self.attempts += 1
        if self.attempts <= self.conflicts:
            raise TransactionConflictError("could not serialize access")
        async with super().transaction() as tx:
            yield tx

@pytest.fixture
def slow_reads(monkeypatch):
    """Make bid reads yield to the event loop so concurrent bids interleave."""
    original_get_bids = MemoryRepository.get_bids
    original_fetch_bids = MemoryTransaction.fetch_bids

    async def get_bids(self, auction_id):
        await asyncio.sleep(0)
        return await original_get_bids(self, auction_id)

    async def fetch_bids(self, auction_id):
        await asyncio.sleep(0)
        return await original_fetch_bids(self, auction_id)

    monkeypatch.setattr(MemoryRepository, "get_bids", get_bids)
    monkeypatch.setattr(MemoryTransaction, "fetch_bids", fetch_bids)

@pytest.mark.asyncio
async def test_place_bid(engine, auction):
    """Test placing a first bid."""
    bid = await engine.bids.place_bid(auction["id"], "u1", "110")

    assert bid["auction_id"] == auction["id"]
    assert bid["bidder_id"] == "u1"
    assert bid["amount"] == Decimal("110.00")

    refreshed = await engine.auctions.get_auction(auction["id"])
    assert refreshed["current_price"] == Decimal("110.00")
    assert refreshed["bid_count"] == 1

@pytest.mark.asyncio
async def test_repeat_bid_overwrites_single_row(engine, auction, clock):
    """Test a bidder raising their own bid keeps one row with the new amount."""
    first = await engine.bids.place_bid(auction["id"], "u1", "110")
    clock.advance(seconds=30)
    second = await engine.bids.place_bid(auction["id"], "u1", "130")

    bids = await engine.bids.get_bid_history(auction["id"])
    assert len(bids) == 1
    assert bids[0]["amount"] == Decimal("130.00")
    assert second["id"] == first["id"]
    assert second["updated_at"] == clock.now()
    assert second["created_at"] == first["created_at"]

@pytest.mark.asyncio
async def test_bid_must_clear_increment(engine, auction):
    """Test bids at or just above the current price are rejected."""
    with pytest.raises(BidTooLowError) as exc:
        await engine.bids.place_bid(auction["id"], "u1", "100.50")

    assert exc.value.reason == "PRICE_TOO_LOW"
    assert exc.value.current_price == Decimal("100.00")
    assert exc.value.minimum_bid == Decimal("101.00")

    bid = await engine.bids.place_bid(auction["id"], "u1", "101.00")
    assert bid["amount"] == Decimal("101.00")

@pytest.mark.asyncio
async def test_bid_must_beat_own_previous_bid(engine, auction):
    await engine.bids.place_bid(auction["id"], "u1", "120")
    with pytest.raises(BidTooLowError):
        await engine.bids.place_bid(auction["id"], "u1", "115")

@pytest.mark.asyncio
async def test_bid_after_end_time_is_rejected(engine, auction, clock):
    """Test a bid one millisecond after close is rejected whatever the amount."""
    clock.set(auction["end_time"] + timedelta(milliseconds=1))

    with pytest.raises(AuctionEndedError) as exc:
        await engine.bids.place_bid(auction["id"], "u1", "1000000")

    assert exc.value.reason == "AUCTION_ENDED"
    assert exc.value.current_price == Decimal("100.00")
    assert await engine.bids.get_bid_history(auction["id"]) == []

@pytest.mark.asyncio
async def test_bid_at_end_time_is_rejected(engine, auction, clock):
    clock.set(auction["end_time"])
    with pytest.raises(AuctionEndedError):
        await engine.bids.place_bid(auction["id"], "u1", "150")

@pytest.mark.asyncio
async def test_seller_cannot_bid(engine, auction):
    with pytest.raises(SelfBidError) as exc:
        await engine.bids.place_bid(auction["id"], SELLER, "150")
    assert exc.value.reason == "SELF_BID"

@pytest.mark.asyncio
async def test_bid_on_missing_auction(engine):
    with pytest.raises(AuctionNotFoundError):
        await engine.bids.place_bid("00000000-0000-0000-0000-000000000000", "u1", "150")

@pytest.mark.asyncio
@pytest.mark.parametrize("amount", ["0", "-10", "150.123", "lots"])
async def test_invalid_amounts(engine, auction, amount):
    with pytest.raises(InvalidBidAmountError):
        await engine.bids.place_bid(auction["id"], "u1", amount)

@pytest.mark.asyncio
async def test_concurrent_equal_bids_commit_once(engine, auction, slow_reads):
    """Test two concurrent 150 bids against a 140 price: one wins, one sees 150."""
    await engine.bids.place_bid(auction["id"], "u0", "140")

    results = await asyncio.gather(
        engine.bids.place_bid(auction["id"], "u1", "150"),
        engine.bids.place_bid(auction["id"], "u2", "150"),
        return_exceptions=True
    )

    accepted = [r for r in results if isinstance(r, dict)]
    rejected = [r for r in results if isinstance(r, Exception)]
    assert len(accepted) == 1
    assert len(rejected) == 1
    assert isinstance(rejected[0], (BidTooLowError, BidConflictError))
    if isinstance(rejected[0], BidTooLowError):
        assert rejected[0].current_price == Decimal("150.00")

    bids = await engine.bids.get_bid_history(auction["id"])
    assert [b["amount"] for b in bids] == [Decimal("150.00"), Decimal("140.00")]

@pytest.mark.asyncio
async def test_concurrent_bidding_keeps_price_consistent(engine, auction, clock, slow_reads):
    """Test the final price equals the highest accepted bid under contention."""
    rng = random.Random(7)
    bidders = [f"u{i}" for i in range(8)]

    async def bidder(user_id):
        accepted = []
        for _ in range(10):
            amount = Decimal(rng.randrange(101, 400))
            try:
                bid = await engine.bids.place_bid(auction["id"], user_id, amount)
                accepted.append(bid["amount"])
            except (BidTooLowError, BidConflictError):
                pass
        return accepted

    accepted = [a for batch in await asyncio.gather(*(bidder(u) for u in bidders)) for a in batch]
    bids = await engine.bids.get_bid_history(auction["id"])
    refreshed = await engine.auctions.get_auction(auction["id"])

    assert accepted
    assert refreshed["current_price"] == max(accepted)
    # One row per bidder
    assert len({b["bidder_id"] for b in bids}) == len(bids)
    # Each accepted bid beat the price before it, so no amount repeats
    assert len(set(accepted)) == len(accepted)

@pytest.mark.asyncio
async def test_conflicts_are_retried(clock):
    repository = ConflictingRepository(conflicts=2)
    engine = build_engine(repository, clock=clock)
    auction = await engine.auctions.create_auction(
        seller_id=SELLER,
        title="Lamp",
        starting_price="10",
        end_time=clock.now() + timedelta(hours=1)
    )

    bid = await engine.bids.place_bid(auction["id"], "u1", "20")

    assert bid["amount"] == Decimal("20.00")
    assert repository.attempts == 3

@pytest.mark.asyncio
async def test_persistent_conflict_raises_bid_conflict(clock):
    repository = ConflictingRepository(conflicts=100)
    bids = BidManager(repository, clock)
    auction = await repository.create_auction({
        "seller_id": SELLER,
        "title": "Lamp",
        "starting_price": Decimal("10.00"),
        "end_time": clock.now() + timedelta(hours=1),
        "created_at": clock.now()
    })

    with pytest.raises(BidConflictError):
        await bids.place_bid(auction["id"], "u1", "20")

    assert repository.attempts == 3
    assert await repository.get_bids(auction["id"]) == []

@pytest.mark.asyncio
async def test_get_user_bids_paginates(engine, clock):
    auctions = []
    for i in range(3):
        auctions.append(await engine.auctions.create_auction(
            seller_id=SELLER,
            title=f"Item {i}",
            starting_price="10",
            end_time=clock.now() + timedelta(hours=1)
        ))
    for a in auctions:
        clock.advance(seconds=1)
        await engine.bids.place_bid(a["id"], "u1", "20")

    first = await engine.bids.get_user_bids("u1", page=1, limit=2)
    second = await engine.bids.get_user_bids("u1", page=2, limit=2)

    assert [b["auction_id"] for b in first["bids"]] == [auctions[2]["id"], auctions[1]["id"]]
    assert first["bids"][0]["auction_title"] == "Item 2"
    assert first["pagination"] == {
        "page": 1, "limit": 2, "total": 3, "total_pages": 2,
        "has_next": True, "has_previous": False
    }
    assert [b["auction_id"] for b in second["bids"]] == [auctions[0]["id"]]
    assert second["pagination"]["has_next"] is False
    assert second["pagination"]["has_previous"] is True
