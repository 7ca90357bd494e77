"""
Bid Service - the bid ledger

Accepting a bid is one optimistic compare-and-swap on the auction row:

    UPDATE auctions
       SET current_bid = :amount, current_winner_id = :bidder,
           total_bids = total_bids + 1, version = version + 1
     WHERE auction_id = :id AND version = :seen_version
       AND status = 'active' AND start_time <= :at AND end_time > :at

followed by the Bid insert in the same transaction. If another bid committed
in between, the swap matches no row; the attempt backs off, re-reads and is
validated again against the new price, so a loser is told the *current*
minimum rather than the one it originally saw.
"""
import time
import logging
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, NamedTuple, Optional

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from bidcart.core.clock import Clock, system_clock, to_utc_naive
from bidcart.core.config import get_settings
from bidcart.core.exceptions import (
    AuctionError,
    AuctionNotActiveError,
    AuctionNotFoundError,
    BidTooLowError,
    ConcurrencyConflictError,
    SelfBidError,
    ValidationError,
)
from bidcart.core.metrics import bids_total, bid_acceptance_duration_seconds, bid_cas_retries_total
from bidcart.infrastructure.lock import AuctionLock
from bidcart.models import Auction, Bid
from bidcart.services.auction_service import parse_money
from bidcart.services.notifier import AuctionNotifier

logger = logging.getLogger(__name__)


class BidResult(NamedTuple):
    bid: Bid
    auction: Auction


def validate_bid(auction: Auction, bidder_id: str, amount: Decimal, at: datetime):
    """
    Ledger acceptance rules, in order

    Raises:
        AuctionNotActiveError: outside the biddable window
        SelfBidError: the seller bidding on their own auction
        BidTooLowError: under ``auction.min_next_bid``
    """
    if not auction.is_biddable(at):
        raise AuctionNotActiveError(
            f"Auction {auction.auction_id} is not accepting bids",
            auction_id=auction.auction_id,
            status=auction.status.value,
        )

    if bidder_id == auction.seller_id:
        raise SelfBidError(
            "Sellers cannot bid on their own auction",
            auction_id=auction.auction_id,
        )

    minimum = auction.min_next_bid
    if amount < minimum:
        raise BidTooLowError(minimum)


class BidService:
    """
    Places bids and keeps the auction summary in step with the ledger

    Args:
        db: Database session
        clock: Source of "now"; ``placed_at`` always comes from here
        notifier: Receives ``bid-update`` after commit
        lock: Optional per-auction Redis lock taken around the attempt
    """

    def __init__(
        self,
        db: Session,
        clock: Clock = system_clock,
        notifier: Optional[AuctionNotifier] = None,
        lock: Optional[AuctionLock] = None,
        max_retries: Optional[int] = None,
        backoff_ms: Optional[int] = None,
    ):
        settings = get_settings()
        self.db = db
        self.clock = clock
        self.notifier = notifier
        self.lock = lock
        self.max_retries = settings.BID_CAS_MAX_RETRIES if max_retries is None else max_retries
        self.backoff_ms = settings.BID_CAS_BACKOFF_MS if backoff_ms is None else backoff_ms

    def place_bid(
        self,
        auction_id: int,
        bidder_id: str,
        amount: Any,
        request_time: Optional[datetime] = None,
    ) -> BidResult:
        """
        Validate and atomically accept a bid

        Args:
            auction_id: Auction ID
            bidder_id: Authenticated bidder (trusted as given)
            amount: Bid amount, two decimal places at most
            request_time: Time to check the window against; defaults to the
                server clock at the moment of acceptance

        Returns:
            BidResult with the stored Bid and the updated Auction
        """
        started = time.perf_counter()

        try:
            amount = parse_money(amount, "amount")
            if not bidder_id:
                raise ValidationError("bidder_id is required", field="bidder_id")

            with self._auction_lock(auction_id):
                result = self._place_with_retry(auction_id, bidder_id, amount, request_time)

        except AuctionError as e:
            bids_total.labels(result=e.kind).inc()
            logger.info(
                f"❌ Bid rejected on auction {auction_id}: {e.message}",
                extra={'auction_id': auction_id, 'bidder_id': bidder_id}
            )
            raise

        bids_total.labels(result="accepted").inc()
        bid_acceptance_duration_seconds.observe(time.perf_counter() - started)

        logger.info(
            f"💰 Bid accepted on auction {auction_id}: "
            f"${result.bid.amount} by {bidder_id} (#{result.bid.sequence})",
            extra={'auction_id': auction_id, 'bidder_id': bidder_id}
        )

        if self.notifier:
            self.notifier.bid_accepted(result.auction, result.bid)

        return result

    @contextmanager
    def _auction_lock(self, auction_id: int):
        if self.lock is None:
            yield
            return

        try:
            with self.lock.lock(auction_id) as retry_count:
                if retry_count:
                    logger.debug(f"🔒 Lock on auction {auction_id} after {retry_count} retries")
                yield
        except TimeoutError:
            raise ConcurrencyConflictError(
                f"Auction {auction_id} is busy; retry shortly",
                auction_id=auction_id,
            )

    def _load_auction(self, auction_id: int) -> Auction:
        auction = self.db.query(Auction).filter(
            Auction.auction_id == auction_id
        ).populate_existing().first()

        if auction is None:
            raise AuctionNotFoundError(f"Auction {auction_id} not found", auction_id=auction_id)
        return auction

    def _place_with_retry(
        self,
        auction_id: int,
        bidder_id: str,
        amount: Decimal,
        request_time: Optional[datetime],
    ) -> BidResult:
        backoff_ms = self.backoff_ms

        for attempt in range(self.max_retries + 1):
            auction = self._load_auction(auction_id)
            at = to_utc_naive(request_time) if request_time else self.clock.now()

            validate_bid(auction, bidder_id, amount, at)

            result = self._try_accept(auction, bidder_id, amount, at)
            if result is not None:
                return result

            bid_cas_retries_total.inc()
            logger.debug(f"🔁 Lost bid race on auction {auction_id} (attempt {attempt + 1})")

            if attempt < self.max_retries:
                time.sleep(backoff_ms / 1000)
                backoff_ms *= 2

        raise ConcurrencyConflictError(
            f"Auction {auction_id} is under heavy contention; retry with fresh state",
            auction_id=auction_id,
        )

    def _try_accept(self, auction: Auction, bidder_id: str, amount: Decimal, at: datetime) -> Optional[BidResult]:
        """One compare-and-swap attempt; None when the auction moved underneath us"""
        auction_id = auction.auction_id
        seen_version = auction.version
        previous_bid = auction.current_bid
        sequence = auction.total_bids + 1
        now = self.clock.now()

        try:
            updated = self.db.query(Auction).filter(
                Auction.auction_id == auction_id,
                Auction.version == seen_version,
                Auction.biddable_clause(at),
            ).update({
                Auction.current_bid: amount,
                Auction.current_winner_id: bidder_id,
                Auction.total_bids: Auction.total_bids + 1,
                Auction.version: Auction.version + 1,
                Auction.updated_at: now,
            }, synchronize_session=False)

            if updated != 1:
                self.db.rollback()
                return None

            bid = Bid(
                auction_id=auction_id,
                bidder_id=bidder_id,
                amount=amount,
                previous_bid=previous_bid,
                sequence=sequence,
                placed_at=now,
            )
            self.db.add(bid)
            self.db.flush()

            # Read back before commit: the row still holds exactly what this swap wrote
            accepted = self._load_auction(auction_id)
            self.db.expunge(accepted)
            self.db.expunge(bid)
            self.db.commit()

        except IntegrityError:
            self.db.rollback()
            return None

        except OperationalError as e:
            # Write lock contention (e.g. SQLite "database is locked"); treat as a lost swap
            self.db.rollback()
            logger.warning(f"⚠️  Write contention on auction {auction_id}: {e.orig}")
            return None

        return BidResult(bid=bid, auction=accepted)
