"""
Query Service - read-only projections over auctions and the bid ledger

Nothing here decides business rules: "active" comes from
``Auction.biddable_clause``, the minimum next bid from
``Auction.min_next_bid``, and labels from the ledger order.
"""
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from bidcart.core.clock import Clock, system_clock
from bidcart.core.exceptions import AuctionNotFoundError
from bidcart.models import Auction, AuctionStatus, Bid, TERMINAL_STATUSES


class BidLabel:
    WINNING = "winning"
    OUTBID = "outbid"


class QueryService:
    """Answers list/detail/history questions for API and WebSocket snapshots"""

    def __init__(self, db: Session, clock: Clock = system_clock):
        self.db = db
        self.clock = clock

    def _get_auction(self, auction_id: int) -> Auction:
        auction = self.db.query(Auction).filter(
            Auction.auction_id == auction_id
        ).populate_existing().first()

        if auction is None:
            raise AuctionNotFoundError(f"Auction {auction_id} not found", auction_id=auction_id)
        return auction

    # ========================================================================
    # AUCTION LISTS
    # ========================================================================

    def list_active(self, now: Optional[datetime] = None) -> List[Auction]:
        """Auctions accepting bids right now, soonest-ending first"""
        now = now or self.clock.now()
        return self.db.query(Auction).filter(
            Auction.biddable_clause(now)
        ).order_by(Auction.end_time.asc()).all()

    def list_upcoming(self, now: Optional[datetime] = None, within_hours: Optional[float] = None) -> List[Auction]:
        """Scheduled auctions that have not started yet, optionally within a window"""
        now = now or self.clock.now()
        query = self.db.query(Auction).filter(
            Auction.status == AuctionStatus.SCHEDULED,
            Auction.start_time > now,
        )
        if within_hours is not None:
            query = query.filter(Auction.start_time <= now + timedelta(hours=within_hours))

        return query.order_by(Auction.start_time.asc()).all()

    def list_scheduled(self) -> List[Auction]:
        """Every scheduled auction, including ones the next sweep will start"""
        return self.db.query(Auction).filter(
            Auction.status == AuctionStatus.SCHEDULED
        ).order_by(Auction.start_time.asc()).all()

    def list_history(self, limit: Optional[int] = None) -> List[Auction]:
        """Ended and cancelled auctions, most recent first"""
        query = self.db.query(Auction).filter(
            Auction.status.in_(TERMINAL_STATUSES)
        ).order_by(Auction.end_time.desc(), Auction.auction_id.desc())

        if limit:
            query = query.limit(limit)
        return query.all()

    def get_auction_detail(self, auction_id: int, recent_bids: int = 10) -> Dict:
        """Auction summary plus the fields a bidding screen needs"""
        auction = self._get_auction(auction_id)
        now = self.clock.now()

        detail = auction.to_dict()
        detail["is_biddable"] = auction.is_biddable(now)
        detail["seconds_to_start"] = max(0, int((auction.start_time - now).total_seconds()))
        detail["seconds_to_end"] = max(0, int((auction.end_time - now).total_seconds()))
        detail["recent_bids"] = self.get_bid_history(auction_id, limit=recent_bids)
        return detail

    # ========================================================================
    # BID LEDGER VIEWS
    # ========================================================================

    def get_bid_history(self, auction_id: int, limit: Optional[int] = None) -> List[Dict]:
        """
        Bids most-recent-first

        Each accepted bid strictly exceeds the previous one, so the latest bid
        is the single highest: it is labelled ``winning``, the rest ``outbid``.
        """
        auction = self._get_auction(auction_id)

        query = self.db.query(Bid).filter(
            Bid.auction_id == auction_id
        ).order_by(Bid.sequence.desc())

        if limit:
            query = query.limit(limit)

        history = []
        for bid in query.all():
            entry = bid.to_dict()
            is_winning = bid.sequence == auction.total_bids
            entry["is_winning"] = is_winning
            entry["label"] = BidLabel.WINNING if is_winning else BidLabel.OUTBID
            history.append(entry)
        return history

    def get_participants(self, auction_id: int) -> List[Dict]:
        """Distinct bidders with their bid count and personal highest bid"""
        auction = self._get_auction(auction_id)

        rows = self.db.query(
            Bid.bidder_id,
            func.count(Bid.bid_id),
            func.max(Bid.amount),
            func.max(Bid.placed_at),
        ).filter(
            Bid.auction_id == auction_id
        ).group_by(Bid.bidder_id).all()

        participants = [
            {
                "bidder_id": bidder_id,
                "bid_count": bid_count,
                "highest_bid": float(highest),
                "last_bid_at": last_bid_at.isoformat() if last_bid_at else None,
                "is_leading": bidder_id == auction.current_winner_id,
            }
            for bidder_id, bid_count, highest, last_bid_at in rows
        ]
        participants.sort(key=lambda p: p["highest_bid"], reverse=True)
        return participants

    def get_bidder_bids(self, bidder_id: str, limit: int = 50) -> List[Dict]:
        """All bids by one bidder across auctions, newest first"""
        bids = self.db.query(Bid).filter(
            Bid.bidder_id == bidder_id
        ).order_by(Bid.placed_at.desc(), Bid.bid_id.desc()).limit(limit).all()

        return [bid.to_dict() for bid in bids]

    def get_bidder_winning(self, bidder_id: str) -> List[Auction]:
        """Active auctions where this bidder currently holds the high bid"""
        return self.db.query(Auction).filter(
            Auction.current_winner_id == bidder_id,
            Auction.status == AuctionStatus.ACTIVE,
        ).order_by(Auction.end_time.asc()).all()

    # ========================================================================
    # STATISTICS & AUDIT
    # ========================================================================

    def get_statistics(self, auction_id: int) -> Dict:
        """Price movement and participation for one auction"""
        auction = self._get_auction(auction_id)

        unique_bidders, average_bid = self.db.query(
            func.count(func.distinct(Bid.bidder_id)),
            func.avg(Bid.amount),
        ).filter(Bid.auction_id == auction_id).one()

        starting_bid = Decimal(auction.starting_bid)
        price_increase = Decimal(auction.current_bid) - starting_bid if auction.total_bids else Decimal("0")
        price_increase_pct = (price_increase / starting_bid) * 100

        now = self.clock.now()
        return {
            "auction_id": auction_id,
            "status": auction.status.value,
            "total_bids": auction.total_bids,
            "unique_bidders": unique_bidders,
            "starting_bid": float(starting_bid),
            "current_bid": float(auction.current_bid),
            "price_increase": float(price_increase),
            "price_increase_percent": round(float(price_increase_pct), 2),
            "average_bid": round(float(average_bid), 2) if average_bid is not None else 0,
            "seconds_remaining": (
                max(0, int((auction.end_time - now).total_seconds()))
                if auction.status == AuctionStatus.ACTIVE else 0
            ),
        }

    def get_analytics(self, top: int = 10) -> Dict:
        """Marketplace-wide auction figures for the admin dashboard"""
        by_status = dict(
            self.db.query(Auction.status, func.count(Auction.auction_id))
            .group_by(Auction.status).all()
        )

        total_bids, average_bid = self.db.query(func.count(Bid.bid_id), func.avg(Bid.amount)).one()

        top_rows = self.db.query(
            Bid.bidder_id,
            func.count(Bid.bid_id).label("bid_count"),
            func.sum(Bid.amount).label("total_amount"),
        ).group_by(Bid.bidder_id).order_by(func.sum(Bid.amount).desc()).limit(top).all()

        return {
            "auctions_by_status": {
                status.value: by_status.get(status, 0) for status in AuctionStatus
            },
            "total_bids": total_bids,
            "average_bid_amount": round(float(average_bid), 2) if average_bid is not None else 0,
            "top_bidders": [
                {
                    "bidder_id": bidder_id,
                    "bid_count": bid_count,
                    "total_amount": float(total_amount),
                }
                for bidder_id, bid_count, total_amount in top_rows
            ],
        }

    def replay_summary(self, auction_id: int) -> Dict:
        """
        Rebuild current_bid / current_winner_id / total_bids from the ledger
        and compare with what the auction row holds
        """
        auction = self._get_auction(auction_id)
        bids = self.db.query(Bid).filter(
            Bid.auction_id == auction_id
        ).order_by(Bid.sequence.asc()).all()

        current_bid = Decimal(auction.starting_bid)
        current_winner_id = None
        ordering_ok = True

        for index, bid in enumerate(bids, start=1):
            minimum = (
                Decimal(auction.starting_bid) if index == 1
                else current_bid + Decimal(auction.min_bid_increment)
            )
            if bid.sequence != index or Decimal(bid.amount) < minimum:
                ordering_ok = False
            current_bid = Decimal(bid.amount)
            current_winner_id = bid.bidder_id

        replayed = {
            "current_bid": float(current_bid),
            "current_winner_id": current_winner_id,
            "total_bids": len(bids),
        }
        stored = {
            "current_bid": float(auction.current_bid),
            "current_winner_id": auction.current_winner_id,
            "total_bids": auction.total_bids,
        }

        return {
            "auction_id": auction_id,
            "stored": stored,
            "replayed": replayed,
            "ledger_ordered": ordering_ok,
            "consistent": ordering_ok and stored == replayed,
        }
