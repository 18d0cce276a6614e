"""Auction API endpoints."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from auctions import AuctionError
from ..dependencies import get_current_user, get_engine, get_optional_user
from ..errors import auction_error

router = APIRouter(
    prefix="/auctions",
    tags=["Auctions"]
)

class CreateAuctionRequest(BaseModel):
    """Request model for creating an auction."""
    title: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    starting_price: Decimal
    end_time: datetime

class UpdateAuctionRequest(BaseModel):
    """Request model for editing an auction. Omitted fields are left alone."""
    title: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    starting_price: Optional[Decimal] = None
    end_time: Optional[datetime] = None

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_auction(
    request: CreateAuctionRequest,
    user_id: str = Depends(get_current_user),
    engine=Depends(get_engine)
):
    """Create an auction owned by the calling user."""
    try:
        return await engine.auctions.create_auction(
            seller_id=user_id,
            title=request.title,
            description=request.description,
            image_url=request.image_url,
            starting_price=request.starting_price,
            end_time=request.end_time
        )
    except AuctionError as e:
        raise auction_error(e)

@router.get("/won")
async def get_won_auctions(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user_id: str = Depends(get_current_user),
    engine=Depends(get_engine)
):
    """Closed auctions the calling user won."""
    return await engine.auctions.get_won_auctions(user_id, page=page, limit=limit)

@router.get("/{auction_id}")
async def get_auction(
    auction_id: UUID,
    user_id: Optional[str] = Depends(get_optional_user),
    engine=Depends(get_engine)
):
    """Get an auction with its bids, current price and the caller's status."""
    try:
        return await engine.auctions.get_auction(auction_id, user_id=user_id)
    except AuctionError as e:
        raise auction_error(e)

@router.patch("/{auction_id}")
async def update_auction(
    auction_id: UUID,
    request: UpdateAuctionRequest,
    user_id: str = Depends(get_current_user),
    engine=Depends(get_engine)
):
    """Edit an open auction. Only the seller may edit."""
    updates = request.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No fields to update"
        )
    try:
        return await engine.auctions.update_auction(auction_id, user_id, updates)
    except AuctionError as e:
        raise auction_error(e)

@router.delete("/{auction_id}")
async def delete_auction(
    auction_id: UUID,
    user_id: str = Depends(get_current_user),
    engine=Depends(get_engine)
):
    """Delete an auction and cancel its settlement. Only the seller may delete."""
    try:
        await engine.auctions.delete_auction(auction_id, user_id)
    except AuctionError as e:
        raise auction_error(e)
    return {"auction_id": auction_id, "deleted": True}
