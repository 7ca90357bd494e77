"""
Auction Service - lifecycle state machine

    scheduled ──start──▶ active ──end──▶ ended
        │
        └──cancel──▶ cancelled

Every transition is a compare-and-swap on the auction row
(``UPDATE ... WHERE status = <expected>``). Only the caller whose swap
applies commits and publishes, so racing scheduler ticks, replicas or admin
overrides can never fire the same transition twice.
"""
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from bidcart.core.clock import Clock, system_clock, to_utc_naive
from bidcart.core.config import get_settings
from bidcart.core.exceptions import (
    AuctionNotFoundError,
    ConcurrencyConflictError,
    InvalidStateError,
    ValidationError,
)
from bidcart.core.metrics import auction_transitions_total
from bidcart.models import Auction, AuctionStatus, OPEN_STATUSES
from bidcart.services.notifier import AuctionNotifier

logger = logging.getLogger(__name__)


# Largest value a Numeric(12, 2) money column holds
MAX_MONEY = Decimal("9999999999.99")


def parse_money(value: Any, field: str) -> Decimal:
    """Positive amount with at most two decimal places, no larger than MAX_MONEY"""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"{field} must be a number", field=field)

    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f"{field} must be positive", field=field)

    if amount > MAX_MONEY:
        raise ValidationError(f"{field} must not exceed {MAX_MONEY}", field=field)

    try:
        quantized = amount.quantize(Decimal("0.01"))
    except InvalidOperation:
        raise ValidationError(f"{field} must have at most two decimal places", field=field)

    if amount != quantized:
        raise ValidationError(f"{field} must have at most two decimal places", field=field)

    return quantized


class AuctionService:
    """
    Owns auction status transitions

    Args:
        db: Database session
        clock: Source of "now"
        notifier: Receives an event after every committed transition
    """

    def __init__(
        self,
        db: Session,
        clock: Clock = system_clock,
        notifier: Optional[AuctionNotifier] = None,
    ):
        self.db = db
        self.clock = clock
        self.notifier = notifier
        self.settings = get_settings()

    # ========================================================================
    # READS
    # ========================================================================

    def get(self, auction_id: int, fresh: bool = False) -> Auction:
        """Get auction by ID or raise AuctionNotFoundError"""
        query = self.db.query(Auction).filter(Auction.auction_id == auction_id)
        if fresh:
            query = query.populate_existing()

        auction = query.first()
        if auction is None:
            raise AuctionNotFoundError(f"Auction {auction_id} not found", auction_id=auction_id)
        return auction

    def is_biddable(self, auction_id: int, at: Optional[datetime] = None) -> bool:
        """True iff the auction is active and ``start_time <= at < end_time``"""
        auction = self.get(auction_id, fresh=True)
        return auction.is_biddable(to_utc_naive(at) if at else self.clock.now())

    def due_to_start(self, now: datetime) -> List[int]:
        rows = self.db.query(Auction.auction_id).filter(
            Auction.status == AuctionStatus.SCHEDULED,
            Auction.start_time <= now,
        ).order_by(Auction.start_time.asc()).all()
        return [row[0] for row in rows]

    def due_to_end(self, now: datetime) -> List[int]:
        rows = self.db.query(Auction.auction_id).filter(
            Auction.status == AuctionStatus.ACTIVE,
            Auction.end_time <= now,
        ).order_by(Auction.end_time.asc()).all()
        return [row[0] for row in rows]

    # ========================================================================
    # VALIDATION
    # ========================================================================

    def _validate_terms(
        self,
        start_time: datetime,
        end_time: datetime,
        starting_bid: Any,
        min_bid_increment: Any,
        now: datetime,
    ) -> Dict[str, Any]:
        if start_time is None or end_time is None:
            raise ValidationError("start_time and end_time are required")

        start_time = to_utc_naive(start_time)
        end_time = to_utc_naive(end_time)

        if start_time <= now:
            raise ValidationError("Start time must be in the future", field="start_time")

        if end_time <= start_time:
            raise ValidationError("End time must be after start time", field="end_time")

        starting_bid = parse_money(starting_bid, "starting_bid")
        min_bid_increment = parse_money(min_bid_increment, "min_bid_increment")

        floor = Decimal(str(self.settings.MIN_BID_INCREMENT_FLOOR))
        if min_bid_increment < floor:
            raise ValidationError(
                f"min_bid_increment must be at least {floor}", field="min_bid_increment"
            )

        return {
            "start_time": start_time,
            "end_time": end_time,
            "starting_bid": starting_bid,
            "min_bid_increment": min_bid_increment,
        }

    def _has_open_auction(self, listing_id: str) -> bool:
        return self.db.query(Auction.auction_id).filter(
            Auction.listing_id == listing_id,
            Auction.status.in_(OPEN_STATUSES),
        ).first() is not None

    # ========================================================================
    # TRANSITIONS
    # ========================================================================

    def _compare_and_set(self, auction_id: int, expected: AuctionStatus, values: Dict, *criteria) -> Optional[Auction]:
        """
        Apply ``values`` only if the auction is still in ``expected``

        Returns the auction as this swap left it, detached from the session,
        or None when another caller got there first (nothing is written in
        that case).
        """
        values = dict(values)
        values[Auction.version] = Auction.version + 1
        values[Auction.updated_at] = self.clock.now()

        updated = self.db.query(Auction).filter(
            Auction.auction_id == auction_id,
            Auction.status == expected,
            *criteria
        ).update(values, synchronize_session=False)

        if updated != 1:
            self.db.rollback()
            return None

        # Read back before commit so later writers cannot leak into the event
        auction = self.get(auction_id, fresh=True)
        self.db.expunge(auction)
        self.db.commit()
        return auction

    def _raise_wrong_state(self, auction_id: int, action: str, expected: AuctionStatus):
        current = self.get(auction_id, fresh=True)
        if current.status == expected:
            # Right state, but the row moved under us
            raise ConcurrencyConflictError(
                f"Auction {auction_id} changed concurrently; retry with fresh state",
                auction_id=auction_id,
            )
        raise InvalidStateError(
            f"Cannot {action} auction {auction_id}: it is {current.status.value}, "
            f"expected {expected.value}",
            current_status=current.status.value,
            auction_id=auction_id,
        )

    def _record(self, auction: Auction, transition: str):
        auction_transitions_total.labels(transition=transition).inc()
        logger.info(
            f"🔁 Auction {auction.auction_id} {transition}",
            extra={'auction_id': auction.auction_id, 'listing_id': auction.listing_id}
        )

    def schedule(
        self,
        listing_id: str,
        seller_id: str,
        start_time: datetime,
        end_time: datetime,
        starting_bid: Any,
        min_bid_increment: Any = Decimal("1.00"),
        scheduled_by: Optional[str] = None,
    ) -> Auction:
        """
        Create a new auction in ``scheduled``

        Raises:
            ValidationError: bad window or amounts, or the listing already
                has a scheduled/active auction
        """
        if not listing_id or not seller_id:
            raise ValidationError("listing_id and seller_id are required")

        now = self.clock.now()
        terms = self._validate_terms(start_time, end_time, starting_bid, min_bid_increment, now)

        if self._has_open_auction(listing_id):
            raise ValidationError(
                f"Listing {listing_id} already has a scheduled or active auction",
                field="listing_id",
            )

        auction = Auction(
            listing_id=listing_id,
            seller_id=seller_id,
            status=AuctionStatus.SCHEDULED,
            current_bid=terms["starting_bid"],
            current_winner_id=None,
            total_bids=0,
            version=1,
            scheduled_by=scheduled_by,
            created_at=now,
            updated_at=now,
            **terms
        )
        self.db.add(auction)

        try:
            self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent schedule for the same listing
            self.db.rollback()
            raise ValidationError(
                f"Listing {listing_id} already has a scheduled or active auction",
                field="listing_id",
            )

        self.db.refresh(auction)
        self._record(auction, "scheduled")
        if self.notifier:
            self.notifier.auction_scheduled(auction)
        return auction

    def reschedule(
        self,
        auction_id: int,
        start_time: datetime,
        end_time: datetime,
        starting_bid: Any = None,
        min_bid_increment: Any = None,
    ) -> Auction:
        """Move the window (and optionally the opening terms) of a scheduled auction"""
        auction = self.get(auction_id, fresh=True)
        if auction.status != AuctionStatus.SCHEDULED:
            self._raise_wrong_state(auction_id, "reschedule", AuctionStatus.SCHEDULED)

        terms = self._validate_terms(
            start_time,
            end_time,
            starting_bid if starting_bid is not None else auction.starting_bid,
            min_bid_increment if min_bid_increment is not None else auction.min_bid_increment,
            self.clock.now(),
        )

        # No bids can exist while scheduled, so the summary follows the opening bid
        values = {getattr(Auction, key): value for key, value in terms.items()}
        values[Auction.current_bid] = terms["starting_bid"]

        updated = self._compare_and_set(
            auction_id, AuctionStatus.SCHEDULED, values,
            Auction.version == auction.version,
        )
        if updated is None:
            self._raise_wrong_state(auction_id, "reschedule", AuctionStatus.SCHEDULED)

        self._record(updated, "rescheduled")
        if self.notifier:
            self.notifier.auction_scheduled(updated)
        return updated

    def start(self, auction_id: int, override: bool = False) -> Auction:
        """
        scheduled -> active

        Without ``override`` the auction must be due (``now >= start_time``).
        An admin override starting early moves ``start_time`` to now.
        """
        auction = self.get(auction_id, fresh=True)
        if auction.status != AuctionStatus.SCHEDULED:
            self._raise_wrong_state(auction_id, "start", AuctionStatus.SCHEDULED)

        now = self.clock.now()
        values = {Auction.status: AuctionStatus.ACTIVE, Auction.started_at: now}

        if now < auction.start_time:
            if not override:
                raise InvalidStateError(
                    f"Auction {auction_id} is not due to start until {auction.start_time.isoformat()}",
                    current_status=auction.status.value,
                    auction_id=auction_id,
                )
            values[Auction.start_time] = now

        if override and now >= auction.end_time:
            raise ValidationError(
                f"Auction {auction_id} window has already elapsed; reschedule it instead",
                field="end_time",
            )

        started = self._compare_and_set(auction_id, AuctionStatus.SCHEDULED, values)
        if started is None:
            self._raise_wrong_state(auction_id, "start", AuctionStatus.SCHEDULED)

        self._record(started, "started")
        if self.notifier:
            self.notifier.auction_started(started)
        return started

    def end(self, auction_id: int) -> Auction:
        """
        active -> ended; the current high bidder becomes the winner

        A second call on an ended auction raises InvalidStateError with
        ``current_status == "ended"`` and publishes nothing.
        """
        ended = self._end(auction_id)
        if ended is None:
            self._raise_wrong_state(auction_id, "end", AuctionStatus.ACTIVE)
        return ended

    def _end(self, auction_id: int, *criteria) -> Optional[Auction]:
        values = {
            Auction.status: AuctionStatus.ENDED,
            Auction.ended_at: self.clock.now(),
            # Taken from the row inside the UPDATE so a bid that committed
            # just before is never lost
            Auction.winner_id: Auction.current_winner_id,
        }
        ended = self._compare_and_set(auction_id, AuctionStatus.ACTIVE, values, *criteria)
        if ended is None:
            return None

        self._record(ended, "ended")
        logger.info(
            f"🏁 Auction {auction_id} ended "
            f"(winner: {ended.winner_id or 'none'}, bids: {ended.total_bids})",
            extra={'auction_id': auction_id}
        )
        if self.notifier:
            self.notifier.auction_ended(ended)
        return ended

    def cancel(self, auction_id: int) -> Auction:
        """scheduled -> cancelled; never once bidding could have opened"""
        auction = self.get(auction_id, fresh=True)
        if auction.status != AuctionStatus.SCHEDULED:
            self._raise_wrong_state(auction_id, "cancel", AuctionStatus.SCHEDULED)

        values = {Auction.status: AuctionStatus.CANCELLED, Auction.cancelled_at: self.clock.now()}
        cancelled = self._compare_and_set(auction_id, AuctionStatus.SCHEDULED, values)
        if cancelled is None:
            self._raise_wrong_state(auction_id, "cancel", AuctionStatus.SCHEDULED)

        self._record(cancelled, "cancelled")
        if self.notifier:
            self.notifier.auction_cancelled(cancelled)
        return cancelled

    # ========================================================================
    # SCHEDULER ENTRY POINTS
    # ========================================================================

    def start_if_due(self, auction_id: int, now: datetime) -> Optional[Auction]:
        """Start a due auction; None if it was not due or someone else started it"""
        values = {Auction.status: AuctionStatus.ACTIVE, Auction.started_at: now}
        started = self._compare_and_set(
            auction_id, AuctionStatus.SCHEDULED, values, Auction.start_time <= now
        )
        if started is None:
            return None

        self._record(started, "started")
        if self.notifier:
            self.notifier.auction_started(started)
        return started

    def end_if_due(self, auction_id: int, now: datetime) -> Optional[Auction]:
        """End an expired auction; None if it was not due or already ended"""
        return self._end(auction_id, Auction.end_time <= now)
