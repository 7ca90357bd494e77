"""
Pydantic schemas for Auction resources
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class ScheduleAuctionRequest(BaseModel):
    """Schedule a listing for auction"""
    listing_id: str = Field(..., max_length=64, description="Catalog listing ID")
    seller_id: str = Field(..., max_length=64, description="Seller (listing owner)")
    start_time: datetime = Field(..., description="When bidding opens (UTC if no offset)")
    end_time: datetime = Field(..., description="When bidding closes")
    starting_bid: Decimal = Field(..., description="Minimum first bid")
    min_bid_increment: Decimal = Field(Decimal("1.00"), description="Minimum raise over the current bid")
    scheduled_by: Optional[str] = Field(None, max_length=64, description="Admin who scheduled it")


class RescheduleAuctionRequest(BaseModel):
    """Move a scheduled auction's window"""
    start_time: datetime
    end_time: datetime
    starting_bid: Optional[Decimal] = None
    min_bid_increment: Optional[Decimal] = None
