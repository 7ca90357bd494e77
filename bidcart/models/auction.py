"""
Auction Model
"""
import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Index, CheckConstraint, Enum as SQLEnum,
    and_, text,
)

from bidcart.models import Base


class AuctionStatus(str, enum.Enum):
    """Auction lifecycle states"""
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    ENDED = "ended"
    CANCELLED = "cancelled"


OPEN_STATUSES = (AuctionStatus.SCHEDULED, AuctionStatus.ACTIVE)
TERMINAL_STATUSES = (AuctionStatus.ENDED, AuctionStatus.CANCELLED)

# SQLEnum persists member names
_OPEN_STATUS_SQL = text("status IN ('SCHEDULED', 'ACTIVE')")


def _money(value) -> float:
    return float(value) if value is not None else None


def _iso(value: datetime):
    return value.isoformat() if value else None


class Auction(Base):
    """One time-boxed auction attached to a catalog listing"""

    __tablename__ = "auctions"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_auctions_window"),
        CheckConstraint("starting_bid > 0", name="ck_auctions_starting_bid"),
        # A listing has at most one scheduled/active auction
        Index(
            "uq_auctions_open_listing",
            "listing_id",
            unique=True,
            sqlite_where=_OPEN_STATUS_SQL,
            postgresql_where=_OPEN_STATUS_SQL,
        ),
        Index("ix_auctions_status_start", "status", "start_time"),
        Index("ix_auctions_status_end", "status", "end_time"),
    )

    auction_id = Column(Integer, primary_key=True, index=True)
    listing_id = Column(String(64), nullable=False, index=True)
    seller_id = Column(String(64), nullable=False, index=True)

    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    starting_bid = Column(Numeric(12, 2), nullable=False)
    min_bid_increment = Column(Numeric(12, 2), nullable=False, default=Decimal("1.00"))

    status = Column(SQLEnum(AuctionStatus), nullable=False, default=AuctionStatus.SCHEDULED)

    # Running summary of the bid ledger
    current_bid = Column(Numeric(12, 2), nullable=False)
    current_winner_id = Column(String(64), nullable=True, index=True)
    total_bids = Column(Integer, nullable=False, default=0)

    winner_id = Column(String(64), nullable=True)

    # Bumped by every mutation; compare-and-swap guard and event sequence
    version = Column(Integer, nullable=False, default=1)

    scheduled_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    started_at = Column(DateTime, nullable=True)
    ended_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    def is_biddable(self, at: datetime) -> bool:
        """Active and ``start_time <= at < end_time``"""
        return (
            self.status == AuctionStatus.ACTIVE
            and self.start_time <= at < self.end_time
        )

    @classmethod
    def biddable_clause(cls, at: datetime):
        """SQL form of ``is_biddable`` for queries and guarded updates"""
        return and_(
            cls.status == AuctionStatus.ACTIVE,
            cls.start_time <= at,
            cls.end_time > at,
        )

    @property
    def min_next_bid(self) -> Decimal:
        """Smallest amount the ledger would accept right now"""
        if not self.total_bids:
            return Decimal(self.starting_bid)
        return Decimal(self.current_bid) + Decimal(self.min_bid_increment)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self):
        """Convert to dictionary"""
        return {
            "auction_id": self.auction_id,
            "listing_id": self.listing_id,
            "seller_id": self.seller_id,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "starting_bid": _money(self.starting_bid),
            "min_bid_increment": _money(self.min_bid_increment),
            "status": self.status.value if isinstance(self.status, AuctionStatus) else self.status,
            "current_bid": _money(self.current_bid),
            "current_winner_id": self.current_winner_id,
            "total_bids": self.total_bids,
            "min_next_bid": _money(self.min_next_bid),
            "winner_id": self.winner_id,
            "version": self.version,
            "scheduled_by": self.scheduled_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "started_at": _iso(self.started_at),
            "ended_at": _iso(self.ended_at),
            "cancelled_at": _iso(self.cancelled_at),
        }

    def __repr__(self):
        return (f"<Auction(id={self.auction_id}, listing={self.listing_id}, "
                f"status='{self.status.value}', current_bid={self.current_bid})>")
