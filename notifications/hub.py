"""In-process fan-out of notifications to live channels.

A channel is any object with ``async send(message: dict)``; the API wraps
each WebSocket in one. The registry lives only in memory, so clients
reconnect after a restart and catch up through the notification store.
"""

import logging
from typing import Any, Dict, Set

from auctions.clock import SystemClock

logger = logging.getLogger(__name__)

def event_type_for(notification: Dict[str, Any]) -> str:
    """``auction_won`` for notifications with a price, ``outbid`` otherwise."""
    return 'auction_won' if notification.get('price') is not None else 'outbid'

class NotificationHub:
    """Registry of open channels keyed by user id."""

    def __init__(self, clock=None) -> None:
        self.clock = clock or SystemClock()
        self.active_connections: Dict[str, Set[Any]] = {}

    def connect(self, user_id: str, channel) -> None:
        self.active_connections.setdefault(user_id, set()).add(channel)
        logger.info(f"Channel opened for user {user_id} ({self.connection_count(user_id)} open)")

    def disconnect(self, user_id: str, channel) -> None:
        channels = self.active_connections.get(user_id)
        if not channels or channel not in channels:
            return
        channels.discard(channel)
        if not channels:
            del self.active_connections[user_id]
        logger.info(f"Channel closed for user {user_id}")

    def connection_count(self, user_id: str) -> int:
        return len(self.active_connections.get(user_id, ()))

    def total_connections(self) -> int:
        return sum(len(c) for c in self.active_connections.values())

    async def broadcast(self, user_id: str, notification: Dict[str, Any]) -> int:
        """Send a notification event to every open channel of ``user_id``.

        Returns:
            Number of channels the event was delivered to
        """
        channels = list(self.active_connections.get(user_id, ()))
        if not channels:
            return 0

        message = {
            'type': 'notification',
            'event_type': event_type_for(notification),
            'user_id': user_id,
            'notification': notification,
            'timestamp': self.clock.now().isoformat()
        }

        delivered = 0
        dead_connections = []
        for channel in channels:
            try:
                await channel.send(message)
                delivered += 1
            except Exception as e:
                logger.error(f"Failed to push notification to user {user_id}: {e}")
                dead_connections.append(channel)

        for dead in dead_connections:
            self.disconnect(user_id, dead)
        return delivered
