"""
Database Models
"""
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Import models after Base is defined
from bidcart.models.auction import Auction, AuctionStatus, OPEN_STATUSES, TERMINAL_STATUSES  # noqa: E402
from bidcart.models.bid import Bid  # noqa: E402

__all__ = ["Base", "Auction", "AuctionStatus", "OPEN_STATUSES", "TERMINAL_STATUSES", "Bid"]
