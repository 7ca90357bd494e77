"""
Business Logic Services
"""
from bidcart.services.notifier import AuctionEvent, AuctionNotifier
from bidcart.services.auction_service import AuctionService
from bidcart.services.bid_service import BidResult, BidService
from bidcart.services.query_service import QueryService
from bidcart.services.auction_scheduler import AuctionScheduler, SweepResult, get_auction_scheduler

__all__ = [
    "AuctionEvent",
    "AuctionNotifier",
    "AuctionService",
    "BidResult",
    "BidService",
    "QueryService",
    "AuctionScheduler",
    "SweepResult",
    "get_auction_scheduler",
]
