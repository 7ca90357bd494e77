"""
Real-time Notifier

Turns auction state changes into named events and hands them to the
real-time transport. Publishing is fire-and-forget: it is only called after
the database commit and never raises into the caller.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from bidcart.core.metrics import events_published_total
from bidcart.models import Auction, Bid

logger = logging.getLogger(__name__)


class AuctionEvent:
    """Event names published to viewers"""
    BID_UPDATE = "bid-update"
    SCHEDULED = "auction:scheduled"
    STARTED = "auction:started"
    ENDED = "auction-ended"
    CANCELLED = "auction:cancelled"


def _money(value) -> Optional[float]:
    return float(value) if isinstance(value, Decimal) else value


class AuctionNotifier:
    """
    Builds event payloads and publishes each one to the auction's channel
    and to the admin channel

    ``transport`` is anything with ``publish_nowait(channel, message)`` and
    ``auction_channel(auction_id)``; in production the PubSubManager.
    """

    def __init__(self, transport, admin_channel: str = "auction:admin"):
        self.transport = transport
        self.admin_channel = admin_channel

    def _base_payload(self, event: str, auction: Auction) -> Dict[str, Any]:
        return {
            "type": event,
            "auctionId": auction.auction_id,
            "listingId": auction.listing_id,
            "status": auction.status.value,
            "totalBids": auction.total_bids,
            "sequence": auction.version,
        }

    def publish(self, event: str, payload: Dict[str, Any]):
        """Send to the auction channel and the admin channel; never raises"""
        channels = (self.transport.auction_channel(payload["auctionId"]), self.admin_channel)
        for channel in channels:
            try:
                self.transport.publish_nowait(channel, payload)
            except Exception as e:
                logger.warning(
                    f"⚠️  Event {event} for auction {payload['auctionId']} not published: {e}",
                    extra={'auction_id': payload['auctionId'], 'event': event}
                )
        events_published_total.labels(event=event).inc()

    # ========================================================================
    # LIFECYCLE EVENTS
    # ========================================================================

    def auction_scheduled(self, auction: Auction):
        payload = self._base_payload(AuctionEvent.SCHEDULED, auction)
        payload.update({
            "startTime": auction.start_time.isoformat(),
            "endTime": auction.end_time.isoformat(),
            "startingBid": _money(auction.starting_bid),
            "minBidIncrement": _money(auction.min_bid_increment),
        })
        self.publish(AuctionEvent.SCHEDULED, payload)

    def auction_started(self, auction: Auction):
        payload = self._base_payload(AuctionEvent.STARTED, auction)
        payload.update({
            "startTime": auction.start_time.isoformat(),
            "endTime": auction.end_time.isoformat(),
        })
        self.publish(AuctionEvent.STARTED, payload)

    def auction_ended(self, auction: Auction):
        payload = self._base_payload(AuctionEvent.ENDED, auction)
        payload.update({
            "winnerId": auction.winner_id,
            "finalBid": _money(auction.current_bid) if auction.total_bids else None,
        })
        self.publish(AuctionEvent.ENDED, payload)

    def auction_cancelled(self, auction: Auction):
        self.publish(AuctionEvent.CANCELLED, self._base_payload(AuctionEvent.CANCELLED, auction))

    # ========================================================================
    # BID EVENTS
    # ========================================================================

    def bid_accepted(self, auction: Auction, bid: Bid):
        payload = self._base_payload(AuctionEvent.BID_UPDATE, auction)
        payload.update({
            "amount": _money(bid.amount),
            "bidderId": bid.bidder_id,
            "previousBid": _money(bid.previous_bid),
            "minNextBid": _money(auction.min_next_bid),
            "placedAt": bid.placed_at.isoformat() if isinstance(bid.placed_at, datetime) else None,
        })
        self.publish(AuctionEvent.BID_UPDATE, payload)
