"""Bid API endpoints."""

from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from auctions import AuctionError
from ..dependencies import get_current_user, get_engine
from ..errors import auction_error

router = APIRouter(tags=["Bids"])

class PlaceBidRequest(BaseModel):
    """Request model for placing a bid."""
    amount: Decimal

@router.post("/auctions/{auction_id}/bids", status_code=status.HTTP_201_CREATED)
async def place_bid(
    auction_id: UUID,
    request: PlaceBidRequest,
    user_id: str = Depends(get_current_user),
    engine=Depends(get_engine)
):
    """Place or raise the calling user's bid.

    Rejections return ``{reason, message, current_price}`` in ``detail``;
    a 409 means the bid lost too many races and can be retried.
    """
    try:
        return await engine.bids.place_bid(auction_id, user_id, request.amount)
    except AuctionError as e:
        raise auction_error(e)

@router.get("/auctions/{auction_id}/bids")
async def get_bid_history(auction_id: UUID, engine=Depends(get_engine)):
    """All bids on an auction, highest first."""
    try:
        bids = await engine.bids.get_bid_history(auction_id)
    except AuctionError as e:
        raise auction_error(e)
    return {"auction_id": auction_id, "bids": bids}

@router.get("/bids/me")
async def get_my_bids(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user_id: str = Depends(get_current_user),
    engine=Depends(get_engine)
):
    """The calling user's bids, most recent first."""
    return await engine.bids.get_user_bids(user_id, page=page, limit=limit)
