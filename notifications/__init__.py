"""Notifications module for auction outcomes.

This module provides functionality for:
- Recording win/loss notifications, one per user and auction
- Pushing new notifications to connected sessions
- Paging through and clearing a user's notifications
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from auctions.clock import SystemClock
from .hub import NotificationHub, event_type_for

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
DEFAULT_RECENT_LIMIT = 10

class NotificationError(Exception):
    """Raised when a notification cannot be persisted."""
    pass

class NotificationManager:
    """Manager class for storing and delivering notifications."""

    def __init__(
        self,
        repository,
        hub: Optional[NotificationHub] = None,
        clock=None,
        page_size: int = DEFAULT_PAGE_SIZE,
        recent_limit: int = DEFAULT_RECENT_LIMIT
    ) -> None:
        self.repository = repository
        self.clock = clock or SystemClock()
        self.hub = hub or NotificationHub(self.clock)
        self.page_size = page_size
        self.recent_limit = recent_limit

    async def create_notification(
        self,
        user_id: str,
        auction_id,
        price: Optional[Decimal]
    ) -> Dict[str, Any]:
        """Write a user's notification for an auction, replacing any earlier one.

        The stored notification is then pushed to the user's open channels.
        Delivery problems are logged; the stored row is the source of truth.

        Raises:
            NotificationError: If the notification cannot be stored
        """
        try:
            notification = await self.repository.replace_notification(
                user_id, auction_id, price, self.clock.now()
            )
        except Exception as e:
            logger.error(f"Failed to store notification for {user_id} on auction {auction_id}: {e}")
            raise NotificationError(
                f"Failed to store notification for {user_id} on auction {auction_id}: {e}"
            ) from e

        logger.info(
            f"Stored {event_type_for(notification)} notification for {user_id} "
            f"on auction {auction_id}"
        )

        try:
            delivered = await self.hub.broadcast(user_id, notification)
            if delivered:
                logger.info(f"Pushed notification to {delivered} channel(s) of {user_id}")
        except Exception as e:
            logger.warning(f"Push to {user_id} failed: {e}")

        return notification

    async def get_user_notifications(
        self,
        user_id: str,
        page: int = 1,
        limit: Optional[int] = None
    ) -> Dict[str, Any]:
        """A page of a user's notifications, most recent first."""
        page = max(page, 1)
        limit = max(limit or self.page_size, 1)
        notifications, total = await self.repository.get_notifications(
            user_id, limit, (page - 1) * limit
        )
        return {
            'notifications': notifications,
            'total': total,
            'page': page,
            'limit': limit
        }

    async def get_recent_notifications(self, user_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Catch-up batch for a client that just (re)connected."""
        notifications, _ = await self.repository.get_notifications(
            user_id, limit or self.recent_limit, 0
        )
        return notifications

    async def clear_all_notifications(self, user_id: str) -> int:
        deleted = await self.repository.delete_notifications(user_id)
        logger.info(f"Cleared {deleted} notification(s) for {user_id}")
        return deleted

__all__ = [
    'NotificationManager', 'NotificationHub', 'NotificationError', 'event_type_for'
]
