"""
Projection tests
"""
from datetime import timedelta

import pytest

from bidcart.core.exceptions import AuctionNotFoundError
from bidcart.models import Auction


class TestAuctionLists:

    def test_active_uses_biddable_window(self, make_auction, auction_service, query_service, clock):
        first = make_auction(starts_in=timedelta(minutes=1), lasts=timedelta(hours=3))
        second = make_auction(starts_in=timedelta(minutes=1), lasts=timedelta(hours=1))
        auction_service.start(first.auction_id, override=True)
        auction_service.start(second.auction_id, override=True)

        assert [a.auction_id for a in query_service.list_active()] == [second.auction_id, first.auction_id]

        # Past end_time but not yet swept: no longer listed as active
        clock.advance(hours=2)
        assert [a.auction_id for a in query_service.list_active()] == [first.auction_id]

    def test_upcoming_with_window(self, make_auction, query_service):
        soon = make_auction(starts_in=timedelta(hours=1))
        later = make_auction(starts_in=timedelta(hours=30))

        assert [a.auction_id for a in query_service.list_upcoming()] == [soon.auction_id, later.auction_id]
        assert [a.auction_id for a in query_service.list_upcoming(within_hours=24)] == [soon.auction_id]

    def test_scheduled_includes_overdue(self, make_auction, query_service, clock):
        auction = make_auction(starts_in=timedelta(minutes=5))
        clock.advance(minutes=10)

        assert query_service.list_upcoming() == []
        assert [a.auction_id for a in query_service.list_scheduled()] == [auction.auction_id]

    def test_history(self, make_auction, auction_service, query_service):
        cancelled = make_auction()
        auction_service.cancel(cancelled.auction_id)
        ended = make_auction()
        auction_service.start(ended.auction_id, override=True)
        auction_service.end(ended.auction_id)
        make_auction()

        assert {a.auction_id for a in query_service.list_history()} == {cancelled.auction_id, ended.auction_id}

    def test_detail(self, active_auction, bid_service, query_service):
        bid_service.place_bid(active_auction.auction_id, "bidder-a", "100")
        detail = query_service.get_auction_detail(active_auction.auction_id)

        assert detail["is_biddable"] is True
        assert detail["min_next_bid"] == 105.0
        assert detail["seconds_to_end"] == 3600
        assert len(detail["recent_bids"]) == 1

    def test_missing_auction(self, query_service):
        with pytest.raises(AuctionNotFoundError):
            query_service.get_auction_detail(123)


class TestBidViews:

    @pytest.fixture
    def contested(self, active_auction, bid_service):
        for bidder, amount in [("a", "100"), ("b", "105"), ("a", "120"), ("c", "125")]:
            bid_service.place_bid(active_auction.auction_id, f"bidder-{bidder}", amount)
        return active_auction

    def test_history_labels_single_winner(self, contested, query_service):
        history = query_service.get_bid_history(contested.auction_id)

        assert [b["amount"] for b in history] == [125.0, 120.0, 105.0, 100.0]
        assert [b["label"] for b in history] == ["winning", "outbid", "outbid", "outbid"]
        assert sum(b["is_winning"] for b in history) == 1

    def test_history_limit_keeps_labels(self, contested, query_service):
        history = query_service.get_bid_history(contested.auction_id, limit=2)

        assert [b["label"] for b in history] == ["winning", "outbid"]

    def test_participants(self, contested, query_service):
        participants = {p["bidder_id"]: p for p in query_service.get_participants(contested.auction_id)}

        assert set(participants) == {"bidder-a", "bidder-b", "bidder-c"}
        assert participants["bidder-a"]["bid_count"] == 2
        assert participants["bidder-a"]["highest_bid"] == 120.0
        assert participants["bidder-c"]["is_leading"] is True
        assert participants["bidder-b"]["is_leading"] is False

    def test_bidder_views(self, contested, query_service):
        assert len(query_service.get_bidder_bids("bidder-a")) == 2
        assert [a.auction_id for a in query_service.get_bidder_winning("bidder-c")] == [contested.auction_id]
        assert query_service.get_bidder_winning("bidder-a") == []

    def test_statistics(self, contested, query_service):
        stats = query_service.get_statistics(contested.auction_id)

        assert stats["total_bids"] == 4
        assert stats["unique_bidders"] == 3
        assert stats["price_increase"] == 25.0
        assert stats["price_increase_percent"] == 25.0
        assert stats["average_bid"] == 112.5

    def test_analytics(self, contested, make_auction, query_service):
        make_auction()
        analytics = query_service.get_analytics()

        assert analytics["auctions_by_status"] == {"scheduled": 1, "active": 1, "ended": 0, "cancelled": 0}
        assert analytics["total_bids"] == 4
        assert analytics["top_bidders"][0]["bidder_id"] == "bidder-a"
        assert analytics["top_bidders"][0]["total_amount"] == 220.0

    def test_replay_detects_drift(self, contested, db, query_service):
        db.query(Auction).filter(Auction.auction_id == contested.auction_id).update(
            {Auction.current_winner_id: "bidder-z"}, synchronize_session=False
        )
        db.commit()

        audit = query_service.replay_summary(contested.auction_id)

        assert audit["consistent"] is False
        assert audit["replayed"]["current_winner_id"] == "bidder-c"
        assert audit["stored"]["current_winner_id"] == "bidder-z"
