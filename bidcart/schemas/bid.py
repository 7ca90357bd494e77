"""
Pydantic schemas for Bid resources
"""
from decimal import Decimal

from pydantic import BaseModel, Field


class PlaceBidRequest(BaseModel):
    """Request model for placing a bid"""
    bidder_id: str = Field(..., max_length=64, description="Authenticated bidder")
    amount: Decimal = Field(..., description="Bid amount, at most two decimal places")
