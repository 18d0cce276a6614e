"""Auction and bid exceptions."""

from decimal import Decimal
from typing import Optional

class AuctionError(Exception):
    """Base exception for auction operations."""
    pass

class AuctionNotFoundError(AuctionError):
    """Raised when an auction is not found."""
    def __init__(self, auction_id):
        self.auction_id = auction_id
        super().__init__(f"Auction {auction_id} not found")

class InvalidAuctionError(AuctionError):
    """Raised when auction fields fail validation."""
    pass

class AuctionForbiddenError(AuctionError):
    """Raised when a user changes an auction they do not own."""
    pass

class BidRejectedError(AuctionError):
    """Base class for bids refused by the pricing rules.

    Attributes:
        reason: Machine-readable rejection code
        current_price: Price the bid was judged against
    """
    reason = 'REJECTED'

    def __init__(self, message: str, current_price: Optional[Decimal] = None):
        self.current_price = current_price
        super().__init__(message)

class AuctionEndedError(BidRejectedError):
    """Raised when a bid arrives at or after the auction's end time."""
    reason = 'AUCTION_ENDED'

class SelfBidError(BidRejectedError):
    """Raised when a seller bids on their own auction."""
    reason = 'SELF_BID'

class BidTooLowError(BidRejectedError):
    """Raised when a bid does not clear the current price plus increment."""
    reason = 'PRICE_TOO_LOW'

    def __init__(self, amount: Decimal, current_price: Decimal, minimum_bid: Decimal):
        self.amount = amount
        self.minimum_bid = minimum_bid
        super().__init__(
            f"Bid {amount} is too low: current price {current_price}, "
            f"minimum bid {minimum_bid}",
            current_price
        )

class InvalidBidAmountError(BidRejectedError):
    """Raised when a bid amount is not a positive value at the allowed precision."""
    reason = 'INVALID_AMOUNT'

class BidConflictError(AuctionError):
    """Raised when a bid keeps losing transaction races; safe to retry."""
    pass
