"""Bid placement and bid history.

A bid is judged against the freshest price: every acceptance re-reads the
auction and its bid set inside one SERIALIZABLE transaction holding the
auction's row lock, and writes the bidder's single bid row before commit.
"""

import logging
import math
from decimal import Decimal
from typing import Any, Dict, List

import backoff

from database.exceptions import TransactionConflictError
from . import pricing
from .clock import SystemClock
from .exceptions import (
    AuctionEndedError,
    AuctionNotFoundError,
    BidConflictError,
    BidTooLowError,
    SelfBidError,
)

logger = logging.getLogger(__name__)

# Attempts for the read-validate-write transaction before giving up
MAX_BID_ATTEMPTS = 3

class BidManager:
    """Manager class for placing bids and reading bid history."""

    def __init__(
        self,
        repository,
        clock=None,
        min_increment: Decimal = pricing.DEFAULT_MIN_INCREMENT,
        decimal_places: int = 2
    ) -> None:
        self.repository = repository
        self.clock = clock or SystemClock()
        self.min_increment = Decimal(min_increment)
        self.decimal_places = decimal_places

    def _check_bid(self, auction: Dict[str, Any], bids: List[Dict[str, Any]],
                   bidder_id: str, amount: Decimal) -> Decimal:
        """Apply the bid rules to one snapshot of an auction; returns its current price."""
        price = pricing.current_price(auction['starting_price'], bids)

        if not pricing.is_auction_active(auction['end_time'], self.clock.now()):
            raise AuctionEndedError(f"Auction {auction['id']} has ended", price)
        if bidder_id == auction['seller_id']:
            raise SelfBidError("Sellers cannot bid on their own auction", price)
        if not pricing.is_valid_bid_amount(amount, price, self.min_increment):
            raise BidTooLowError(amount, price, pricing.minimum_bid(price, self.min_increment))
        return price

    async def place_bid(self, auction_id, bidder_id: str, amount) -> Dict[str, Any]:
        """Place or raise ``bidder_id``'s bid on an auction.

        Args:
            auction_id: Auction to bid on
            bidder_id: Identity of the bidder
            amount: Bid amount; numeric or string

        Returns:
            The bidder's bid row after the write

        Raises:
            AuctionNotFoundError: If the auction does not exist
            BidRejectedError: If the bid breaks a pricing rule
            BidConflictError: If the transaction kept conflicting with other bids
        """
        amount = pricing.parse_amount(amount, self.decimal_places)

        # Cheap rejection before opening a transaction
        auction = await self.repository.get_auction(auction_id)
        if auction is None:
            raise AuctionNotFoundError(auction_id)
        self._check_bid(auction, await self.repository.get_bids(auction_id), bidder_id, amount)

        try:
            bid = await self._commit_bid(auction_id, bidder_id, amount)
        except TransactionConflictError as e:
            logger.warning(f"Bid by {bidder_id} on auction {auction_id} kept conflicting: {e}")
            raise BidConflictError(
                f"Bid on auction {auction_id} could not be committed, please retry"
            ) from e

        logger.info(f"Accepted bid of {amount} by {bidder_id} on auction {auction_id}")
        return bid

    @backoff.on_exception(
        backoff.expo,
        TransactionConflictError,
        max_tries=MAX_BID_ATTEMPTS,
        factor=0.05
    )
    async def _commit_bid(self, auction_id, bidder_id: str, amount: Decimal) -> Dict[str, Any]:
        async with self.repository.transaction() as tx:
            auction = await tx.fetch_auction(auction_id, lock=True)
            if auction is None:
                raise AuctionNotFoundError(auction_id)
            bids = await tx.fetch_bids(auction_id)
            self._check_bid(auction, bids, bidder_id, amount)
            return await tx.upsert_bid(auction_id, bidder_id, amount, self.clock.now())

    async def get_bid_history(self, auction_id) -> List[Dict[str, Any]]:
        """All bids on an auction, highest first."""
        if await self.repository.get_auction(auction_id) is None:
            raise AuctionNotFoundError(auction_id)
        return await self.repository.get_bids(auction_id)

    async def get_user_bids(self, bidder_id: str, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        """A bidder's bids, most recently updated first, with pagination metadata."""
        page = max(page, 1)
        limit = max(limit, 1)
        bids, total = await self.repository.get_bids_by_bidder(
            bidder_id, limit, (page - 1) * limit
        )
        total_pages = math.ceil(total / limit) if total else 0
        return {
            'bids': bids,
            'pagination': {
                'page': page,
                'limit': limit,
                'total': total,
                'total_pages': total_pages,
                'has_next': page < total_pages,
                'has_previous': page > 1
            }
        }
