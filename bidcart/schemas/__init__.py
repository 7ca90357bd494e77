"""
Pydantic schemas for API request validation
"""
from bidcart.schemas.auction import ScheduleAuctionRequest, RescheduleAuctionRequest
from bidcart.schemas.bid import PlaceBidRequest

__all__ = [
    "ScheduleAuctionRequest",
    "RescheduleAuctionRequest",
    "PlaceBidRequest",
]
