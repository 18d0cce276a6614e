"""Wiring for one process's auction engine.

``build_engine`` constructs every component once and hands each its
collaborators, so a process (or a test) owns exactly one hub, one scheduler
and one set of managers.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from auctions import AuctionManager, BidManager, SystemClock
from config import DEFAULTS, validate_settings
from notifications import NotificationHub, NotificationManager
from scheduler import SettlementScheduler, SweepLoop
from settlement import SettlementProcessor

logger = logging.getLogger(__name__)

@dataclass
class Engine:
    settings: Dict[str, Any]
    repository: Any
    clock: Any
    hub: NotificationHub
    notifications: NotificationManager
    processor: SettlementProcessor
    scheduler: SettlementScheduler
    auctions: AuctionManager
    bids: BidManager

    def sweep_loop(self, sleep=None) -> SweepLoop:
        """A SweepLoop over this engine's scheduler at the configured interval."""
        kwargs = {'sleep': sleep} if sleep is not None else {}
        return SweepLoop(self.scheduler, self.settings['sweep_interval_seconds'], **kwargs)

def build_engine(
    repository,
    settings: Optional[Dict[str, Any]] = None,
    clock=None,
    hub: Optional[NotificationHub] = None
) -> Engine:
    """Assemble the engine over ``repository``.

    Args:
        repository: MemoryRepository or PostgresRepository
        settings: Validated settings; built-in defaults when omitted
        clock: Time source shared by every component
        hub: Notification hub; a fresh one when omitted
    """
    if settings is None:
        settings = validate_settings(dict(DEFAULTS))
    clock = clock or SystemClock()
    hub = hub or NotificationHub(clock)

    notifications = NotificationManager(
        repository,
        hub,
        clock,
        page_size=settings['notifications_page_size'],
        recent_limit=settings['recent_notifications_limit']
    )
    processor = SettlementProcessor(notifications)
    scheduler = SettlementScheduler(
        repository, processor, clock, batch_size=settings['sweep_batch_size']
    )
    auctions = AuctionManager(
        repository, scheduler, clock, decimal_places=settings['bid_decimal_places']
    )
    bids = BidManager(
        repository,
        clock,
        min_increment=Decimal(settings['min_bid_increment']),
        decimal_places=settings['bid_decimal_places']
    )

    return Engine(
        settings=settings,
        repository=repository,
        clock=clock,
        hub=hub,
        notifications=notifications,
        processor=processor,
        scheduler=scheduler,
        auctions=auctions,
        bids=bids
    )

__all__ = ['Engine', 'build_engine']
