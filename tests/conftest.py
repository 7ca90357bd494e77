"""
Shared fixtures: one SQLite file per test, a hand-driven clock and a
transport that records what would have been published
"""
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from bidcart.core.clock import Clock
from bidcart.infrastructure.database import create_db_engine, init_db
from bidcart.services import (
    AuctionNotifier,
    AuctionScheduler,
    AuctionService,
    BidService,
    QueryService,
)

T0 = datetime(2026, 3, 1, 12, 0, 0)


class ManualClock(Clock):
    """Clock that only moves when a test moves it"""

    def __init__(self, start: datetime = T0):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)
        return self.current

    def set(self, value: datetime):
        self.current = value


class RecordingTransport:
    """Stands in for PubSubManager; keeps (channel, message) pairs in order"""

    def __init__(self):
        self.messages = []

    @staticmethod
    def auction_channel(auction_id: int) -> str:
        return f"auction:{auction_id}"

    def publish_nowait(self, channel, message):
        self.messages.append((channel, dict(message)))
        return True

    def events(self, channel=None):
        return [m["type"] for c, m in self.messages if channel is None or c == channel]

    def payloads(self, event_type, channel=None):
        return [
            m for c, m in self.messages
            if m["type"] == event_type and (channel is None or c == channel)
        ]


@pytest.fixture
def engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'bidcart-test.db'}")
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def notifier(transport):
    return AuctionNotifier(transport, admin_channel="auction:admin")


@pytest.fixture
def auction_service(db, clock, notifier):
    return AuctionService(db, clock=clock, notifier=notifier)


@pytest.fixture
def bid_service(db, clock, notifier):
    return BidService(db, clock=clock, notifier=notifier, max_retries=5, backoff_ms=0)


@pytest.fixture
def query_service(db, clock):
    return QueryService(db, clock=clock)


@pytest.fixture
def scheduler(session_factory, clock, notifier):
    return AuctionScheduler(session_factory=session_factory, clock=clock, notifier=notifier, interval=0.01)


@pytest.fixture
def make_auction(auction_service, clock):
    """Schedule an auction starting in 1h and ending in 2h (100 / +5 by default)"""
    counter = {"n": 0}

    def _make(listing_id=None, seller_id="seller-1", starting_bid="100.00",
              min_bid_increment="5.00", starts_in=timedelta(hours=1), lasts=timedelta(hours=1)):
        counter["n"] += 1
        start_time = clock.now() + starts_in
        return auction_service.schedule(
            listing_id=listing_id or f"listing-{counter['n']}",
            seller_id=seller_id,
            start_time=start_time,
            end_time=start_time + lasts,
            starting_bid=Decimal(starting_bid),
            min_bid_increment=Decimal(min_bid_increment),
        )

    return _make


@pytest.fixture
def active_auction(make_auction, auction_service, clock):
    """An auction that has been started by reaching its start time"""
    auction = make_auction()
    clock.set(auction.start_time)
    started = auction_service.start_if_due(auction.auction_id, clock.now())
    assert started is not None
    return started
