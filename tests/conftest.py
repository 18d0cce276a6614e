"""Shared fixtures: an engine over in-memory storage with a fixed clock."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio

from auctions import FixedClock
from database import MemoryRepository
from engine import build_engine

START = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
SELLER = "seller-1"

class RecordingChannel:
    """Hub channel that keeps every message it is sent."""

    def __init__(self):
        self.messages = []

    async def send(self, message):
        self.messages.append(message)

class BrokenChannel:
    """Hub channel whose connection has gone away."""

    async def send(self, message):
        raise ConnectionResetError("peer closed")

@pytest.fixture
def clock():
    return FixedClock(START)

@pytest.fixture
def repository():
    return MemoryRepository()

@pytest.fixture
def engine(repository, clock):
    return build_engine(repository, clock=clock)

@pytest_asyncio.fixture
async def auction(engine, clock):
    """An auction starting at 100.00 that closes in one hour."""
    return await engine.auctions.create_auction(
        seller_id=SELLER,
        title="Vintage camera",
        description="Working condition",
        starting_price=Decimal("100.00"),
        end_time=clock.now() + timedelta(hours=1)
    )
