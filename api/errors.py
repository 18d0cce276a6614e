"""Translation of engine exceptions into HTTP errors."""

from fastapi import HTTPException, status
from fastapi.encoders import jsonable_encoder

from auctions import (
    AuctionForbiddenError,
    AuctionNotFoundError,
    BidConflictError,
    BidRejectedError,
    BidTooLowError,
    InvalidAuctionError,
    SelfBidError,
)

def bid_rejected(e: BidRejectedError) -> HTTPException:
    detail = {
        "reason": e.reason,
        "message": str(e),
        "current_price": e.current_price
    }
    if isinstance(e, BidTooLowError):
        detail["minimum_bid"] = e.minimum_bid
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN if isinstance(e, SelfBidError)
        else status.HTTP_400_BAD_REQUEST,
        detail=jsonable_encoder(detail)
    )

def auction_error(e: Exception) -> HTTPException:
    """Map an auctions exception to its HTTP status."""
    if isinstance(e, BidRejectedError):
        return bid_rejected(e)
    if isinstance(e, AuctionNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, AuctionForbiddenError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    if isinstance(e, InvalidAuctionError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if isinstance(e, BidConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
