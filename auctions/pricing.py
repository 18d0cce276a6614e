"""Price derivation and bid validity rules.

The current price of an auction is never stored; it is recomputed from the
bid set every time a decision depends on it.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, Optional

from .exceptions import InvalidBidAmountError

DEFAULT_MIN_INCREMENT = Decimal('1.00')

# Auction status as seen by one user
IN_PROGRESS = 'IN_PROGRESS'
WINNING = 'WINNING'
OUTBID = 'OUTBID'
DONE = 'DONE'

def current_price(starting_price: Decimal, bids: Iterable[Dict[str, Any]]) -> Decimal:
    """Highest bid amount, or the starting price when there are no bids."""
    amounts = [Decimal(b['amount']) for b in bids]
    return max(amounts) if amounts else Decimal(starting_price)

def minimum_bid(price: Decimal, increment: Decimal = DEFAULT_MIN_INCREMENT) -> Decimal:
    return price + increment

def is_valid_bid_amount(
    amount: Decimal,
    price: Decimal,
    increment: Decimal = DEFAULT_MIN_INCREMENT
) -> bool:
    """A bid must strictly exceed the price and clear it by the increment."""
    return amount > price and amount >= price + increment

def is_auction_active(end_time: datetime, now: datetime) -> bool:
    return end_time > now

def user_bid_amount(bids: Iterable[Dict[str, Any]], user_id: Optional[str]) -> Optional[Decimal]:
    for bid in bids:
        if bid['bidder_id'] == user_id:
            return Decimal(bid['amount'])
    return None

def auction_status(
    auction: Dict[str, Any],
    bids: Iterable[Dict[str, Any]],
    user_id: Optional[str],
    now: datetime
) -> str:
    """DONE once the auction has closed; otherwise WINNING or OUTBID for a
    user holding a bid, and IN_PROGRESS for everyone else."""
    if not is_auction_active(auction['end_time'], now):
        return DONE
    bids = list(bids)
    mine = user_bid_amount(bids, user_id) if user_id else None
    if mine is None:
        return IN_PROGRESS
    if mine >= current_price(auction['starting_price'], bids):
        return WINNING
    return OUTBID

def parse_amount(value: Any, decimal_places: int = 2) -> Decimal:
    """Convert ``value`` to a positive Decimal with at most ``decimal_places`` decimals.

    Raises:
        InvalidBidAmountError: If the value is not numeric, not positive, or too precise
    """
    if isinstance(value, bool):
        raise InvalidBidAmountError(f"Invalid amount: {value!r}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidBidAmountError(f"Invalid amount: {value!r}")

    if not amount.is_finite() or amount <= 0:
        raise InvalidBidAmountError(f"Amount must be positive, got {value}")
    try:
        quantized = amount.quantize(Decimal(1).scaleb(-decimal_places))
    except InvalidOperation:
        raise InvalidBidAmountError(f"Invalid amount: {value!r}")
    if quantized != amount:
        raise InvalidBidAmountError(
            f"Amount {value} has more than {decimal_places} decimal places"
        )
    return quantized
