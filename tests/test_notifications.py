"""Tests for notification storage and live delivery."""

import uuid
from decimal import Decimal

import pytest

from notifications import NotificationError, NotificationHub, NotificationManager
from tests.conftest import BrokenChannel, RecordingChannel

AUCTION_ID = uuid.UUID("22222222-2222-2222-2222-222222222222")

@pytest.fixture
def hub(clock):
    return NotificationHub(clock)

@pytest.fixture
def manager(repository, hub, clock):
    return NotificationManager(repository, hub, clock, page_size=2, recent_limit=3)

@pytest.mark.asyncio
async def test_broadcast_reaches_every_channel_of_user(hub, clock):
    phone, laptop, other = RecordingChannel(), RecordingChannel(), RecordingChannel()
    hub.connect("u1", phone)
    hub.connect("u1", laptop)
    hub.connect("u2", other)

    delivered = await hub.broadcast("u1", {"id": 1, "price": Decimal("120")})

    assert delivered == 2
    assert other.messages == []
    assert phone.messages == laptop.messages == [{
        "type": "notification",
        "event_type": "auction_won",
        "user_id": "u1",
        "notification": {"id": 1, "price": Decimal("120")},
        "timestamp": clock.now().isoformat()
    }]

@pytest.mark.asyncio
async def test_broadcast_without_channels(hub):
    assert await hub.broadcast("nobody", {"price": None}) == 0

@pytest.mark.asyncio
async def test_broken_channel_is_dropped(hub):
    good, broken = RecordingChannel(), BrokenChannel()
    hub.connect("u1", good)
    hub.connect("u1", broken)

    assert await hub.broadcast("u1", {"price": None}) == 1
    assert hub.connection_count("u1") == 1
    assert good.messages[0]["event_type"] == "outbid"

def test_connect_and_disconnect(hub):
    a, b = RecordingChannel(), RecordingChannel()
    hub.connect("u1", a)
    hub.connect("u2", b)
    assert hub.total_connections() == 2

    hub.disconnect("u1", a)
    hub.disconnect("u1", a)
    assert hub.connection_count("u1") == 0
    assert hub.total_connections() == 1

def test_hubs_are_independent(clock):
    first, second = NotificationHub(clock), NotificationHub(clock)
    first.connect("u1", RecordingChannel())
    assert second.total_connections() == 0

@pytest.mark.asyncio
async def test_create_notification_stores_and_pushes(manager, hub):
    channel = RecordingChannel()
    hub.connect("u1", channel)

    notification = await manager.create_notification("u1", AUCTION_ID, Decimal("120.00"))

    assert notification["user_id"] == "u1"
    assert notification["auction_id"] == AUCTION_ID
    assert notification["price"] == Decimal("120.00")
    assert channel.messages[0]["notification"] == notification

@pytest.mark.asyncio
async def test_new_notification_supersedes_old(manager, clock):
    first = await manager.create_notification("u1", AUCTION_ID, None)
    clock.advance(seconds=10)
    second = await manager.create_notification("u1", AUCTION_ID, Decimal("130.00"))

    page = await manager.get_user_notifications("u1")
    assert page["total"] == 1
    assert page["notifications"][0]["id"] == second["id"] != first["id"]
    assert page["notifications"][0]["price"] == Decimal("130.00")

@pytest.mark.asyncio
async def test_push_failure_does_not_fail_write(manager, hub, monkeypatch):
    async def broken_broadcast(user_id, notification):
        raise RuntimeError("hub down")

    monkeypatch.setattr(hub, "broadcast", broken_broadcast)
    notification = await manager.create_notification("u1", AUCTION_ID, None)

    assert notification["price"] is None
    assert (await manager.get_user_notifications("u1"))["total"] == 1

@pytest.mark.asyncio
async def test_storage_failure_raises(manager, repository, monkeypatch):
    async def broken_replace(*args):
        raise ConnectionError("database unavailable")

    monkeypatch.setattr(repository, "replace_notification", broken_replace)
    with pytest.raises(NotificationError):
        await manager.create_notification("u1", AUCTION_ID, None)

@pytest.mark.asyncio
async def test_pagination_and_recent(manager, clock):
    auction_ids = [uuid.uuid4() for _ in range(5)]
    for auction_id in auction_ids:
        clock.advance(seconds=1)
        await manager.create_notification("u1", auction_id, None)

    page1 = await manager.get_user_notifications("u1")
    page3 = await manager.get_user_notifications("u1", page=3)

    assert page1["total"] == 5
    assert page1["limit"] == 2
    assert [n["auction_id"] for n in page1["notifications"]] == auction_ids[:-3:-1]
    assert [n["auction_id"] for n in page3["notifications"]] == [auction_ids[0]]

    recent = await manager.get_recent_notifications("u1")
    assert [n["auction_id"] for n in recent] == auction_ids[:-4:-1]

@pytest.mark.asyncio
async def test_clear_all(manager):
    await manager.create_notification("u1", uuid.uuid4(), None)
    await manager.create_notification("u1", uuid.uuid4(), None)
    await manager.create_notification("u2", uuid.uuid4(), None)

    assert await manager.clear_all_notifications("u1") == 2
    assert (await manager.get_user_notifications("u1"))["total"] == 0
    assert (await manager.get_user_notifications("u2"))["total"] == 1
