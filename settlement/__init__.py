"""Settlement of ended auctions.

Given an auction's frozen bid set, the highest bid wins and every other
bidder is told they lost. Each write supersedes the earlier notification for
the same user and auction, so settling the same auction twice leaves the
same notifications behind.
"""

import logging
from typing import Any, Dict, List

from notifications import NotificationError

logger = logging.getLogger(__name__)

class SettlementError(Exception):
    """Raised when an auction's bid set could not be ranked."""
    def __init__(self, auction_id, message: str):
        self.auction_id = auction_id
        super().__init__(f"Settlement of auction {auction_id} failed: {message}")

def rank_bids(bids: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Highest amount first; ties go to the earliest bid, then the lowest id."""
    return sorted(bids, key=lambda b: (-b['amount'], b['updated_at'], str(b['id'])))

class SettlementProcessor:
    """Computes winner and losers and records their notifications."""

    def __init__(self, notification_manager) -> None:
        self.notifications = notification_manager

    async def settle(self, auction: Dict[str, Any], bids: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Write one notification per bidder of an ended auction.

        A bidder whose notification cannot be stored is logged and skipped;
        the rest are still notified.

        Args:
            auction: The auction row
            bids: Every bid on the auction

        Returns:
            The notifications that were written

        Raises:
            SettlementError: If the bid set could not be ranked
        """
        auction_id = auction['id']
        if not bids:
            logger.info(f"Auction {auction_id} ended without bids")
            return []

        try:
            ranked = rank_bids(bids)
        except (KeyError, TypeError) as e:
            raise SettlementError(auction_id, f"malformed bid set ({e!r})") from e

        winner = ranked[0]
        outcomes = [(winner['bidder_id'], winner['amount'])]
        outcomes.extend((bid['bidder_id'], None) for bid in ranked[1:])

        written = []
        failed_users = []
        for user_id, price in outcomes:
            try:
                written.append(
                    await self.notifications.create_notification(user_id, auction_id, price)
                )
            except NotificationError as e:
                logger.error(f"Could not notify {user_id} for auction {auction_id}: {e}")
                failed_users.append(user_id)

        if failed_users:
            logger.warning(
                f"Auction {auction_id} settled without notifying: {', '.join(failed_users)}"
            )

        logger.info(
            f"Settled auction {auction_id}: winner {winner['bidder_id']} at {winner['amount']}, "
            f"{len(ranked) - 1} other bidder(s)"
        )
        return written

__all__ = ['SettlementProcessor', 'SettlementError', 'rank_bids']
