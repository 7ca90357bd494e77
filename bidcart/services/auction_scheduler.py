"""
Auction Scheduler - drives time-based transitions

Every tick: start scheduled auctions whose start_time has passed, then end
active auctions whose end_time has passed. Each transition goes through the
state machine's compare-and-swap, so several replicas can sweep at once.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from bidcart.core.clock import Clock, system_clock
from bidcart.core.config import get_settings
from bidcart.core.metrics import scheduler_sweep_duration_seconds, scheduler_sweep_failures_total
from bidcart.infrastructure.database import SessionLocal
from bidcart.infrastructure.pubsub import get_pubsub_manager
from bidcart.services.auction_service import AuctionService
from bidcart.services.notifier import AuctionNotifier

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Auction IDs touched by one sweep"""
    started: List[int] = field(default_factory=list)
    ended: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)

    def to_dict(self):
        return {"started": self.started, "ended": self.ended, "failed": self.failed}


class AuctionScheduler:
    """
    Periodic sweep over due auctions

    Args:
        session_factory: Callable returning a new Session per sweep
        clock: Source of "now"
        notifier: Passed to the state machine for transition events
        interval: Seconds between sweeps
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        clock: Clock = system_clock,
        notifier: Optional[AuctionNotifier] = None,
        interval: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.notifier = notifier
        self.interval = get_settings().SCHEDULER_INTERVAL_SECONDS if interval is None else interval

        self.running = False
        self.task = None

        self.sweep_count = 0
        self.last_sweep_at: Optional[datetime] = None
        self.total_started = 0
        self.total_ended = 0
        self.total_failed = 0

    def sweep(self) -> SweepResult:
        """Run one pass: starts first, then ends"""
        started_at = time.perf_counter()
        now = self.clock.now()
        result = SweepResult()

        db = self.session_factory()
        try:
            service = AuctionService(db, clock=self.clock, notifier=self.notifier)

            for auction_id in service.due_to_start(now):
                self._apply(db, auction_id, "start", lambda: service.start_if_due(auction_id, now),
                            result.started, result.failed)

            for auction_id in service.due_to_end(now):
                self._apply(db, auction_id, "end", lambda: service.end_if_due(auction_id, now),
                            result.ended, result.failed)
        finally:
            db.close()

        self.sweep_count += 1
        self.last_sweep_at = now
        self.total_started += len(result.started)
        self.total_ended += len(result.ended)
        self.total_failed += len(result.failed)
        scheduler_sweep_duration_seconds.observe(time.perf_counter() - started_at)

        if result.started or result.ended or result.failed:
            logger.info(
                f"⏰ Sweep: {len(result.started)} started, {len(result.ended)} ended, "
                f"{len(result.failed)} failed"
            )
        return result

    def _apply(self, db: Session, auction_id: int, action: str, transition, done: List[int], failed: List[int]):
        try:
            # None means another sweeper or an admin got there first
            if transition() is not None:
                done.append(auction_id)
        except Exception as e:
            db.rollback()
            failed.append(auction_id)
            scheduler_sweep_failures_total.inc()
            logger.error(
                f"❌ Scheduler could not {action} auction {auction_id}: {e}",
                extra={'auction_id': auction_id}
            )

    # ========================================================================
    # BACKGROUND LOOP
    # ========================================================================

    async def start(self):
        """Start the background sweep loop"""
        if self.running:
            logger.warning("⚠️  Auction scheduler already running")
            return

        self.running = True
        self.task = asyncio.create_task(self._run())
        logger.info(f"✅ Auction scheduler started (interval: {self.interval}s)")

    async def stop(self):
        """Stop the background sweep loop"""
        if not self.running:
            return

        self.running = False
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
        logger.info("🛑 Auction scheduler stopped")

    async def _run(self):
        while self.running:
            try:
                await asyncio.to_thread(self.sweep)
            except asyncio.CancelledError:
                break
            except Exception as e:
                scheduler_sweep_failures_total.inc()
                logger.error(f"❌ Error in auction scheduler: {e}")

            try:
                await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                break

    def stats(self):
        return {
            "running": self.running,
            "interval_seconds": self.interval,
            "sweep_count": self.sweep_count,
            "last_sweep_at": self.last_sweep_at.isoformat() if self.last_sweep_at else None,
            "total_started": self.total_started,
            "total_ended": self.total_ended,
            "total_failed": self.total_failed,
        }


# Global scheduler instance
_scheduler: Optional[AuctionScheduler] = None


def get_auction_scheduler() -> AuctionScheduler:
    """Get or create the process-wide scheduler"""
    global _scheduler
    if _scheduler is None:
        settings = get_settings()
        _scheduler = AuctionScheduler(
            notifier=AuctionNotifier(get_pubsub_manager(), settings.ADMIN_CHANNEL),
        )
    return _scheduler
