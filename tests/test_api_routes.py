"""
API Routes Tests

Tests all endpoints:
- Auctions (schedule, lists, detail, transitions, statistics)
- Bids (place, history, bidder views)
- Admin (analytics, audit, scheduler, health, metrics)
"""
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from bidcart.core.dependencies import get_clock, get_notifier, get_scheduler
from bidcart.infrastructure.database import get_db
from bidcart.main import app


@pytest.fixture
def client(session_factory, clock, notifier, scheduler):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_scheduler] = lambda: scheduler

    # Not used as a context manager: the lifespan (pub/sub, scheduler loop) stays off
    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def schedule(client, clock):
    def _schedule(listing_id="listing-1", seller_id="seller-1", starts_in=timedelta(hours=1), **overrides):
        start = clock.now() + starts_in
        body = {
            "listing_id": listing_id,
            "seller_id": seller_id,
            "start_time": start.isoformat(),
            "end_time": (start + timedelta(hours=1)).isoformat(),
            "starting_bid": 100,
            "min_bid_increment": 5,
        }
        body.update(overrides)
        return client.post("/auctions/schedule", json=body)

    return _schedule


@pytest.fixture
def live_auction_id(client, schedule):
    auction_id = schedule().json()["auction"]["auction_id"]
    assert client.post(f"/auctions/{auction_id}/start").status_code == 200
    return auction_id


# ============================================================================
# AUCTION TESTS
# ============================================================================
class TestAuctionRoutes:

    def test_schedule_auction(self, schedule):
        response = schedule(scheduled_by="admin-1")

        assert response.status_code == 201
        data = response.json()
        assert data["success"] is True
        assert data["auction"]["status"] == "scheduled"
        assert data["auction"]["starting_bid"] == 100.0
        assert data["auction"]["current_bid"] == 100.0
        assert data["auction"]["scheduled_by"] == "admin-1"

    def test_schedule_in_past_rejected(self, schedule):
        response = schedule(starts_in=timedelta(hours=-1))

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    def test_schedule_duplicate_listing_rejected(self, schedule):
        schedule(listing_id="dup")
        response = schedule(listing_id="dup")

        assert response.status_code == 400
        assert response.json()["field"] == "listing_id"

    def test_schedule_missing_field_is_422(self, client):
        response = client.post("/auctions/schedule", json={"listing_id": "x"})

        assert response.status_code == 422

    def test_lists(self, client, schedule, live_auction_id):
        schedule(listing_id="listing-2")

        active = client.get("/auctions/active").json()
        upcoming = client.get("/auctions/upcoming").json()
        scheduled = client.get("/auctions/scheduled").json()
        history = client.get("/auctions/history").json()

        assert [a["auction_id"] for a in active["auctions"]] == [live_auction_id]
        assert upcoming["total"] == 1
        assert scheduled["total"] == 1
        assert history["total"] == 0

    def test_upcoming_within_hours(self, client, schedule):
        schedule(listing_id="soon", starts_in=timedelta(hours=2))
        schedule(listing_id="later", starts_in=timedelta(hours=48))

        response = client.get("/auctions/upcoming", params={"within_hours": 24})

        assert [a["listing_id"] for a in response.json()["auctions"]] == ["soon"]

    def test_get_auction(self, client, live_auction_id):
        response = client.get(f"/auctions/{live_auction_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["auction_id"] == live_auction_id
        assert data["is_biddable"] is True
        assert data["recent_bids"] == []

    def test_get_auction_not_found(self, client):
        response = client.get("/auctions/99999")

        assert response.status_code == 404
        assert response.json()["error"] == "auction_not_found"

    def test_reschedule(self, client, schedule, clock):
        auction_id = schedule().json()["auction"]["auction_id"]
        start = clock.now() + timedelta(days=1)

        response = client.post(f"/auctions/{auction_id}/reschedule", json={
            "start_time": start.isoformat(),
            "end_time": (start + timedelta(hours=2)).isoformat(),
            "starting_bid": 75,
        })

        assert response.status_code == 200
        assert response.json()["auction"]["starting_bid"] == 75.0

    def test_cancel_then_cancel_again(self, client, schedule):
        auction_id = schedule().json()["auction"]["auction_id"]

        assert client.post(f"/auctions/{auction_id}/cancel").status_code == 200
        response = client.post(f"/auctions/{auction_id}/cancel")

        assert response.status_code == 409
        assert response.json()["current_status"] == "cancelled"

    def test_cancel_active_rejected(self, client, live_auction_id):
        response = client.post(f"/auctions/{live_auction_id}/cancel")

        assert response.status_code == 409
        assert response.json()["error"] == "invalid_state"

    def test_end_twice(self, client, live_auction_id, transport):
        first = client.post(f"/auctions/{live_auction_id}/end")
        second = client.post(f"/auctions/{live_auction_id}/end")

        assert first.status_code == 200
        assert first.json()["auction"]["status"] == "ended"
        assert second.status_code == 409
        assert second.json()["current_status"] == "ended"
        assert len(transport.payloads("auction-ended", f"auction:{live_auction_id}")) == 1


# ============================================================================
# BID TESTS
# ============================================================================
class TestBidRoutes:

    def test_place_bid(self, client, live_auction_id):
        response = client.post(f"/auctions/{live_auction_id}/bids", json={"bidder_id": "bidder-a", "amount": 100})

        assert response.status_code == 201
        data = response.json()
        assert data["bid"]["amount"] == 100.0
        assert data["bid"]["sequence"] == 1
        assert data["auction"]["current_winner_id"] == "bidder-a"
        assert data["auction"]["min_next_bid"] == 105.0

    def test_bid_too_low(self, client, live_auction_id):
        client.post(f"/auctions/{live_auction_id}/bids", json={"bidder_id": "bidder-a", "amount": 100})
        response = client.post(f"/auctions/{live_auction_id}/bids", json={"bidder_id": "bidder-b", "amount": 103})

        assert response.status_code == 400
        assert response.json() == {
            "error": "bid_too_low",
            "message": "Bid must be at least $105.00",
            "retryable": True,
            "min_next_bid": 105.0,
        }

    def test_huge_amount_is_validation_error(self, client, live_auction_id):
        response = client.post(f"/auctions/{live_auction_id}/bids", json={"bidder_id": "bidder-a", "amount": 1e30})

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"
        assert response.json()["field"] == "amount"

    def test_self_bid(self, client, live_auction_id):
        response = client.post(f"/auctions/{live_auction_id}/bids", json={"bidder_id": "seller-1", "amount": 500})

        assert response.status_code == 403
        assert response.json()["error"] == "self_bid"

    def test_bid_on_scheduled_auction(self, client, schedule):
        auction_id = schedule().json()["auction"]["auction_id"]
        response = client.post(f"/auctions/{auction_id}/bids", json={"bidder_id": "bidder-a", "amount": 100})

        assert response.status_code == 409
        assert response.json()["error"] == "auction_not_active"

    def test_bid_history_and_bidder_views(self, client, live_auction_id):
        client.post(f"/auctions/{live_auction_id}/bids", json={"bidder_id": "bidder-a", "amount": 100})
        client.post(f"/auctions/{live_auction_id}/bids", json={"bidder_id": "bidder-b", "amount": 110})

        history = client.get(f"/auctions/{live_auction_id}/bids").json()
        assert [b["label"] for b in history["bids"]] == ["winning", "outbid"]

        participants = client.get(f"/auctions/{live_auction_id}/participants").json()
        assert participants["total"] == 2

        stats = client.get(f"/auctions/{live_auction_id}/statistics").json()
        assert stats["current_bid"] == 110.0

        assert client.get("/bidders/bidder-a/bids").json()["total"] == 1
        assert client.get("/bidders/bidder-b/winning").json()["total"] == 1
        assert client.get("/bidders/bidder-a/winning").json()["total"] == 0


# ============================================================================
# ADMIN TESTS
# ============================================================================
class TestAdminRoutes:

    def test_manual_sweep(self, client, schedule, clock):
        auction_id = schedule(starts_in=timedelta(minutes=1)).json()["auction"]["auction_id"]
        clock.advance(minutes=2)

        response = client.post("/admin/scheduler/sweep")

        assert response.status_code == 200
        assert response.json()["started"] == [auction_id]
        assert client.get("/admin/scheduler").json()["sweep_count"] == 1

    def test_audit(self, client, live_auction_id):
        client.post(f"/auctions/{live_auction_id}/bids", json={"bidder_id": "bidder-a", "amount": 100})

        audit = client.get(f"/admin/auctions/{live_auction_id}/audit").json()

        assert audit["consistent"] is True

    def test_analytics(self, client, live_auction_id):
        analytics = client.get("/admin/analytics").json()

        assert analytics["auctions_by_status"]["active"] == 1

    def test_health_reports_database(self, client):
        response = client.get("/admin/health")

        assert response.status_code == 200
        assert response.json()["components"]["database"] == "healthy"

    def test_metrics(self, client, live_auction_id):
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "bidcart_auction_transitions_total" in response.text

    def test_trace_id_header(self, client):
        response = client.get("/auctions/active", headers={"X-Trace-ID": "trace-123"})

        assert response.headers["X-Trace-ID"] == "trace-123"


# ============================================================================
# WEBSOCKET TESTS
# ============================================================================
class TestWebSocketRoutes:

    def test_connect_sends_snapshot_and_pong(self, client, live_auction_id):
        with client.websocket_connect(f"/ws/auctions/{live_auction_id}") as websocket:
            welcome = websocket.receive_json()
            assert welcome["type"] == "CONNECTED"
            assert welcome["auction"]["auction_id"] == live_auction_id
            assert welcome["auction"]["status"] == "active"

            websocket.send_text("ping")
            assert websocket.receive_json()["type"] == "PONG"

    def test_unknown_auction(self, client):
        with client.websocket_connect("/ws/auctions/424242") as websocket:
            assert websocket.receive_json()["error"] == "auction_not_found"

    def test_admin_feed_snapshot(self, client, live_auction_id):
        with client.websocket_connect("/ws/admin") as websocket:
            welcome = websocket.receive_json()

        assert [a["auction_id"] for a in welcome["active"]] == [live_auction_id]
        assert welcome["scheduled"] == []
