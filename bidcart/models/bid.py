"""
Bid Model

Append-only: rows are inserted by the ledger and never updated or deleted.
Whether a bid is "winning" or "outbid" is derived at read time.
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, Index, UniqueConstraint

from bidcart.models import Base


class Bid(Base):
    """Bid database model"""

    __tablename__ = "bids"
    __table_args__ = (
        # Two racing accepts can never both become bid #n of an auction
        UniqueConstraint("auction_id", "sequence", name="uq_bids_auction_sequence"),
        Index("ix_bids_bidder_placed", "bidder_id", "placed_at"),
    )

    bid_id = Column(Integer, primary_key=True, index=True)
    auction_id = Column(Integer, ForeignKey("auctions.auction_id"), nullable=False, index=True)
    bidder_id = Column(String(64), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    previous_bid = Column(Numeric(12, 2), nullable=False)
    sequence = Column(Integer, nullable=False)
    placed_at = Column(DateTime, nullable=False)

    def to_dict(self):
        """Convert to dictionary"""
        return {
            "bid_id": self.bid_id,
            "auction_id": self.auction_id,
            "bidder_id": self.bidder_id,
            "amount": float(self.amount),
            "previous_bid": float(self.previous_bid),
            "sequence": self.sequence,
            "placed_at": self.placed_at.isoformat() if self.placed_at else None,
        }
