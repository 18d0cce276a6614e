"""Auction lifecycle: create, edit, delete and read.

Creating an auction or moving its end time arms the settlement job through
the scheduler; deleting one cancels the job first.
"""

import logging
import math
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from . import pricing
from .clock import SystemClock
from .exceptions import (
    AuctionForbiddenError,
    AuctionNotFoundError,
    InvalidAuctionError,
    InvalidBidAmountError,
)

logger = logging.getLogger(__name__)

# User-mutable fields for auctions
MUTABLE_FIELDS = {
    'title',
    'description',
    'image_url',
    'starting_price',
    'end_time'
}

def _as_utc(value: datetime) -> datetime:
    if not isinstance(value, datetime):
        raise InvalidAuctionError(f"end_time must be a datetime, got {value!r}")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

class AuctionManager:
    """Manager class for handling auction operations."""

    def __init__(self, repository, scheduler, clock=None, decimal_places: int = 2) -> None:
        """Initialize the auction manager.

        Args:
            repository: Store for auctions and bids
            scheduler: SettlementScheduler that owns the auction's job
            clock: Time source, defaults to the system clock
            decimal_places: Allowed decimals in prices
        """
        self.repository = repository
        self.scheduler = scheduler
        self.clock = clock or SystemClock()
        self.decimal_places = decimal_places

    def _parse_price(self, value) -> Decimal:
        try:
            return pricing.parse_amount(value, self.decimal_places)
        except InvalidBidAmountError as e:
            raise InvalidAuctionError(f"Invalid starting price: {e}")

    def _future_end_time(self, value) -> datetime:
        end_time = _as_utc(value)
        if end_time <= self.clock.now():
            raise InvalidAuctionError("end_time must be in the future")
        return end_time

    async def _load_owned(self, auction_id, seller_id: str) -> Dict[str, Any]:
        auction = await self.repository.get_auction(auction_id)
        if auction is None:
            raise AuctionNotFoundError(auction_id)
        if auction['seller_id'] != seller_id:
            raise AuctionForbiddenError(
                f"User {seller_id} does not own auction {auction_id}"
            )
        return auction

    async def create_auction(
        self,
        seller_id: str,
        title: str,
        starting_price,
        end_time: datetime,
        description: Optional[str] = None,
        image_url: Optional[str] = None
    ) -> Dict[str, Any]:
        """Create an auction and schedule its settlement.

        Raises:
            InvalidAuctionError: If the title, price or end time is invalid
        """
        if not title or not title.strip():
            raise InvalidAuctionError("title is required")

        auction = await self.repository.create_auction({
            'seller_id': seller_id,
            'title': title.strip(),
            'description': description,
            'image_url': image_url,
            'starting_price': self._parse_price(starting_price),
            'end_time': self._future_end_time(end_time),
            'created_at': self.clock.now()
        })
        logger.info(f"Created auction {auction['id']} for seller {seller_id}")

        await self.scheduler.schedule_auction_end(auction['id'], auction['end_time'])
        return await self.get_auction(auction['id'])

    async def update_auction(self, auction_id, seller_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Edit an open auction.

        Edits are allowed while bids exist, except the starting price, which
        is frozen once the first bid lands. A new end time re-arms the job.

        Raises:
            AuctionNotFoundError: If the auction does not exist
            AuctionForbiddenError: If seller_id does not own the auction
            InvalidAuctionError: If the auction has ended or an update is invalid
        """
        auction = await self._load_owned(auction_id, seller_id)

        unknown = set(updates) - MUTABLE_FIELDS
        if unknown:
            raise InvalidAuctionError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        if not pricing.is_auction_active(auction['end_time'], self.clock.now()):
            raise InvalidAuctionError(f"Auction {auction_id} has ended and can no longer be edited")

        fields: Dict[str, Any] = {}
        for name, value in updates.items():
            if name == 'title':
                if not value or not str(value).strip():
                    raise InvalidAuctionError("title is required")
                value = str(value).strip()
            elif name == 'description':
                value = value or ''
            elif name == 'starting_price':
                value = self._parse_price(value)
                if value != auction['starting_price'] and await self.repository.get_bids(auction_id):
                    raise InvalidAuctionError("starting_price cannot change once bids exist")
            elif name == 'end_time':
                value = self._future_end_time(value)
            if auction.get(name) != value:
                fields[name] = value

        if not fields:
            return await self.get_auction(auction_id)

        # Re-arm before writing the new end time; a job that already ran stays settled
        if 'end_time' in fields:
            job = await self.scheduler.schedule_auction_end(auction['id'], fields['end_time'])
            if job['status'] == 'EXECUTED':
                raise InvalidAuctionError(f"Auction {auction_id} has already been settled")

        updated = await self.repository.update_auction(auction_id, fields, self.clock.now())
        if updated is None:
            raise AuctionNotFoundError(auction_id)
        logger.info(f"Updated auction {auction_id}: {', '.join(sorted(fields))}")
        return await self.get_auction(auction_id)

    async def delete_auction(self, auction_id, seller_id: str) -> None:
        """Cancel the auction's job, then delete the auction with its bids.

        Notifications already written for the auction are kept.
        """
        auction = await self._load_owned(auction_id, seller_id)
        await self.scheduler.cancel_auction_end(auction['id'])
        if not await self.repository.delete_auction(auction['id']):
            raise AuctionNotFoundError(auction_id)
        logger.info(f"Deleted auction {auction_id}")

    async def get_auction(self, auction_id, user_id: Optional[str] = None) -> Dict[str, Any]:
        """Auction with its bids, highest first, and derived current price.

        ``status`` and ``my_bid`` describe the auction from user_id's side;
        without a user the status is IN_PROGRESS or DONE.
        """
        auction = await self.repository.get_auction(auction_id)
        if auction is None:
            raise AuctionNotFoundError(auction_id)
        bids = await self.repository.get_bids(auction_id)
        now = self.clock.now()
        auction['bids'] = bids
        auction['bid_count'] = len(bids)
        auction['current_price'] = pricing.current_price(auction['starting_price'], bids)
        auction['is_active'] = pricing.is_auction_active(auction['end_time'], now)
        auction['status'] = pricing.auction_status(auction, bids, user_id, now)
        auction['my_bid'] = pricing.user_bid_amount(bids, user_id) if user_id else None
        return auction

    async def get_won_auctions(self, user_id: str, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        """Closed auctions whose top bid is user_id's, most recently ended first."""
        page = max(page, 1)
        limit = max(limit, 1)
        auctions, total = await self.repository.get_won_auctions(
            user_id, self.clock.now(), limit, (page - 1) * limit
        )
        total_pages = math.ceil(total / limit) if total else 0
        return {
            'auctions': auctions,
            'pagination': {
                'page': page,
                'limit': limit,
                'total': total,
                'total_pages': total_pages,
                'has_next': page < total_pages,
                'has_previous': page > 1
            }
        }
