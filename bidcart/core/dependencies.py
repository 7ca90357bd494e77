"""
FastAPI dependencies

Routes never build services themselves; tests swap any of these through
``app.dependency_overrides``.
"""
from fastapi import Depends
from sqlalchemy.orm import Session

from bidcart.core.clock import Clock, system_clock
from bidcart.core.config import get_settings
from bidcart.infrastructure.database import get_db
from bidcart.infrastructure.lock import AuctionLock
from bidcart.infrastructure.pubsub import get_pubsub_manager
from bidcart.infrastructure.redis_client import get_redis_client
from bidcart.services import (
    AuctionNotifier,
    AuctionScheduler,
    AuctionService,
    BidService,
    QueryService,
    get_auction_scheduler,
)


def get_clock() -> Clock:
    return system_clock


def get_notifier() -> AuctionNotifier:
    return AuctionNotifier(get_pubsub_manager(), get_settings().ADMIN_CHANNEL)


def get_auction_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    notifier: AuctionNotifier = Depends(get_notifier),
) -> AuctionService:
    return AuctionService(db, clock=clock, notifier=notifier)


def get_bid_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    notifier: AuctionNotifier = Depends(get_notifier),
) -> BidService:
    lock = AuctionLock(get_redis_client()) if get_settings().BID_LOCK_ENABLED else None
    return BidService(db, clock=clock, notifier=notifier, lock=lock)


def get_query_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> QueryService:
    return QueryService(db, clock=clock)


def get_scheduler() -> AuctionScheduler:
    return get_auction_scheduler()
