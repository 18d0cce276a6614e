"""Auctions module for listing items and taking bids.

This module provides functionality for:
- Creating, editing and deleting auctions
- Placing bids against the live current price
- Reading bid history per auction and per bidder
"""

from .bids import BidManager
from .clock import FixedClock, SystemClock
from .exceptions import (
    AuctionEndedError,
    AuctionError,
    AuctionForbiddenError,
    AuctionNotFoundError,
    BidConflictError,
    BidRejectedError,
    BidTooLowError,
    InvalidAuctionError,
    InvalidBidAmountError,
    SelfBidError,
)
from .management import AuctionManager

__all__ = [
    'AuctionManager', 'BidManager', 'SystemClock', 'FixedClock',
    'AuctionError', 'AuctionNotFoundError', 'InvalidAuctionError',
    'AuctionForbiddenError', 'BidRejectedError', 'AuctionEndedError',
    'SelfBidError', 'BidTooLowError', 'InvalidBidAmountError', 'BidConflictError'
]
