"""
Pub/Sub Manager for real-time auction fan-out

Channels:
   - "auction:{auction_id}"  viewers of one auction
   - "auction:admin"         every admin dashboard

Backends:
   - "local": events are delivered straight to the WebSockets held by this
     process. Enough for a single API process.
   - "redis": events are PUBLISHed to Redis; every server subscribed to the
     channel receives them in its listen loop and delivers to its own
     WebSockets.

Architecture:
┌──────────────┐
│  Services    │ (bid accepted, auction started/ended, ...)
└──────┬───────┘
       │ publish_nowait(channel, message)   never blocks the caller
       ↓
┌──────────────┐
│   Outbox     │ one FIFO queue per process, drained by one task
└──────┬───────┘
       │ local: deliver()    redis: PUBLISH
       ↓
┌──────────────────────────────────────┐
│ deliver(): drop stale sequences,     │
│ send to local WebSockets             │
└──────────────────────────────────────┘

Delivery is at-most-once. Each auction event carries the auction's
``sequence``; an event whose sequence is not newer than the last one
delivered for that auction on that channel is dropped, so viewers never see
an auction's events out of order. A terminal event (auction-ended,
auction:cancelled) retires the auction's entry; only a bounded tail of
closed auctions is remembered. Viewers that missed events reconcile from
the snapshot they get on (re)connect.
"""
import asyncio
import json
import logging
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Set, Tuple

import redis.asyncio as aioredis
from fastapi import WebSocket

from bidcart.core.config import get_settings
from bidcart.core.metrics import websocket_connections

logger = logging.getLogger(__name__)

# Nothing follows these for an auction
TERMINAL_EVENTS = frozenset({"auction-ended", "auction:cancelled"})


class PubSubManager:
    """
    Manages event fan-out to WebSocket viewers

    Usage:
        manager = PubSubManager(backend="local")
        await manager.connect()
        await manager.add_connection(websocket, manager.auction_channel(123))

        # Anywhere on the event loop or in a worker thread:
        manager.publish_nowait("auction:123", {"type": "bid-update", ...})
    """

    def __init__(
        self,
        backend: str = "local",
        redis_url: Optional[str] = None,
        admin_channel: str = "auction:admin",
        closed_history: int = 1024,
    ):
        self.backend = backend
        self.redis_url = redis_url
        self.admin_channel = admin_channel

        self.redis = None           # Redis client for publishing
        self.pubsub = None          # Redis Pub/Sub client for subscribing

        # channel -> Set[WebSocket] (this process only)
        self.active_connections: Dict[str, Set[WebSocket]] = {}

        # Subscribed Redis channels (this process only)
        self.subscriptions: Set[str] = set()

        # (channel, auction_id) -> last delivered sequence
        self._last_sequence: Dict[Tuple[str, int], int] = {}

        # Terminal sequences of recently closed auctions, oldest first
        self._closed: "OrderedDict[Tuple[str, int], int]" = OrderedDict()
        self.closed_history = closed_history

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._outbox: Optional[asyncio.Queue] = None
        self._tasks: List[asyncio.Task] = []
        self.is_connected = False

        # Statistics
        self.messages_published = 0
        self.messages_received = 0
        self.messages_dropped = 0
        self.stale_dropped = 0

    @staticmethod
    def auction_channel(auction_id: int) -> str:
        return f"auction:{auction_id}"

    async def connect(self):
        """Start the outbox dispatcher (and the Redis listener for the redis backend)"""
        if self.is_connected:
            return

        self._loop = asyncio.get_running_loop()
        self._outbox = asyncio.Queue()

        if self.backend == "redis":
            logger.info("🔌 [PubSub] Connecting to Redis...")
            self.redis = aioredis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True
            )
            self.pubsub = self.redis.pubsub()

            # The admin channel keeps the listen loop alive even with no viewers
            await self._subscribe(self.admin_channel)
            self._tasks.append(asyncio.create_task(self._listen_loop()))

        self._tasks.append(asyncio.create_task(self._dispatch_loop()))
        self.is_connected = True

        logger.info(f"✅ [PubSub] Ready (backend: {self.backend})")

    async def disconnect(self):
        """Clean shutdown"""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        if self.pubsub:
            await self.pubsub.unsubscribe()
            await self.pubsub.aclose()
            self.pubsub = None

        if self.redis:
            await self.redis.aclose()
            self.redis = None

        self.subscriptions.clear()
        self._outbox = None
        self.is_connected = False
        logger.info("🔌 [PubSub] Disconnected")

    # ========================================================================
    # PUBLISHING
    # ========================================================================

    def publish_nowait(self, channel: str, message: Dict[str, Any]) -> bool:
        """
        Queue a message for delivery without blocking

        Safe to call from the event loop or from a worker thread. Returns
        False (and drops the message) when the manager is not connected.
        """
        if self._outbox is None or self._loop is None or self._loop.is_closed():
            self.messages_dropped += 1
            logger.debug(f"[PubSub] Not connected, dropped message for {channel}")
            return False

        item = (channel, message)
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self._loop:
            self._outbox.put_nowait(item)
        else:
            self._loop.call_soon_threadsafe(self._outbox.put_nowait, item)
        return True

    async def flush(self):
        """Wait until every queued message has been handled"""
        if self._outbox is not None:
            await self._outbox.join()

    async def _dispatch_loop(self):
        """Drain the outbox in FIFO order"""
        while True:
            channel, message = await self._outbox.get()
            try:
                if self.backend == "redis":
                    await self.redis.publish(channel, json.dumps(message, default=str))
                else:
                    await self.deliver(channel, message)
                self.messages_published += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.messages_dropped += 1
                logger.warning(f"⚠️  [PubSub] Publish to {channel} failed: {e}")
            finally:
                self._outbox.task_done()

    # ========================================================================
    # REDIS SUBSCRIPTIONS
    # ========================================================================

    async def _subscribe(self, channel: str):
        if self.pubsub is not None and channel not in self.subscriptions:
            await self.pubsub.subscribe(channel)
            self.subscriptions.add(channel)
            logger.debug(f"📡 [PubSub] Subscribed to {channel}")

    async def _unsubscribe(self, channel: str):
        if self.pubsub is not None and channel in self.subscriptions and channel != self.admin_channel:
            await self.pubsub.unsubscribe(channel)
            self.subscriptions.discard(channel)
            logger.debug(f"📡 [PubSub] Unsubscribed from {channel}")

    async def _listen_loop(self):
        """Receive Redis messages and deliver them to local WebSockets"""
        async for message in self.pubsub.listen():
            if message['type'] != 'message':
                continue

            try:
                data = json.loads(message['data'])
            except (TypeError, ValueError) as e:
                logger.warning(f"⚠️  [PubSub] Bad payload on {message.get('channel')}: {e}")
                continue

            self.messages_received += 1
            await self.deliver(message['channel'], data)

    # ========================================================================
    # LOCAL DELIVERY
    # ========================================================================

    def _is_stale(self, channel: str, message: Dict[str, Any]) -> bool:
        auction_id = message.get("auctionId")
        sequence = message.get("sequence")
        if auction_id is None or sequence is None:
            return False

        key = (channel, auction_id)
        last = self._last_sequence.get(key, self._closed.get(key))
        if last is not None and sequence <= last:
            return True

        if message.get("type") in TERMINAL_EVENTS:
            self._last_sequence.pop(key, None)
            self._closed[key] = sequence
            while len(self._closed) > self.closed_history:
                self._closed.popitem(last=False)
        else:
            self._last_sequence[key] = sequence
        return False

    async def deliver(self, channel: str, message: Dict[str, Any]):
        """Send a message to every WebSocket on this process subscribed to channel"""
        if self._is_stale(channel, message):
            self.stale_dropped += 1
            logger.debug(
                f"[PubSub] Dropped stale {message.get('type')} on {channel} "
                f"(sequence {message.get('sequence')})"
            )
            return

        connections = self.active_connections.get(channel)
        if not connections:
            return

        disconnected = set()
        for websocket in list(connections):
            try:
                await websocket.send_json(message)
            except Exception as e:
                logger.warning(f"⚠️  [PubSub] WebSocket send error: {e}")
                disconnected.add(websocket)

        for websocket in disconnected:
            self.remove_connection(websocket, channel)

    async def add_connection(self, websocket: WebSocket, channel: str):
        """Accept a WebSocket and register it on a channel"""
        await websocket.accept()

        self.active_connections.setdefault(channel, set()).add(websocket)
        websocket_connections.labels(channel_kind=self._channel_kind(channel)).inc()

        await self._subscribe(channel)

        logger.info(
            f"🔌 [PubSub] WebSocket connected to {channel} "
            f"(local: {len(self.active_connections[channel])})"
        )

    def remove_connection(self, websocket: WebSocket, channel: str):
        """Forget a WebSocket; unsubscribe once a channel has no local viewers"""
        connections = self.active_connections.get(channel)
        if not connections or websocket not in connections:
            return

        connections.discard(websocket)
        websocket_connections.labels(channel_kind=self._channel_kind(channel)).dec()

        if not connections:
            del self.active_connections[channel]
            if self.pubsub is not None and self._loop is not None:
                self._loop.create_task(self._unsubscribe(channel))

        logger.info(f"🔌 [PubSub] WebSocket disconnected from {channel}")

    async def send_personal_message(self, websocket: WebSocket, message: dict):
        """Send to one client only (welcome, pong)"""
        try:
            await websocket.send_json(message)
        except Exception as e:
            logger.warning(f"⚠️  [PubSub] Personal message error: {e}")

    def _channel_kind(self, channel: str) -> str:
        return "admin" if channel == self.admin_channel else "auction"

    def get_connection_count(self, channel: str) -> int:
        """Number of WebSockets on this process for a channel"""
        return len(self.active_connections.get(channel, ()))

    def get_stats(self) -> dict:
        return {
            "backend": self.backend,
            "is_connected": self.is_connected,
            "subscriptions": len(self.subscriptions),
            "messages_published": self.messages_published,
            "messages_received": self.messages_received,
            "messages_dropped": self.messages_dropped,
            "stale_dropped": self.stale_dropped,
            "tracked_auctions": len(self._last_sequence),
            "channels": len(self.active_connections),
            "total_connections": sum(
                len(conns) for conns in self.active_connections.values()
            ),
        }


# ============================================================================
# Global instance (singleton)
# ============================================================================
_pubsub_instance = None


def get_pubsub_manager() -> PubSubManager:
    """Get global Pub/Sub manager instance"""
    global _pubsub_instance

    if _pubsub_instance is None:
        settings = get_settings()
        _pubsub_instance = PubSubManager(
            backend=settings.PUBSUB_BACKEND,
            redis_url=settings.REDIS_URL,
            admin_channel=settings.ADMIN_CHANNEL,
        )

    return _pubsub_instance
