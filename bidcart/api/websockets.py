"""
WebSocket API Route

Handles:
- Real-time updates for one auction
- Real-time feed of every auction for admin dashboards

Delivery is at-most-once with no replay, so each connection starts with a
snapshot of current state; clients reconcile by comparing ``sequence``.
"""
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from bidcart.core.dependencies import get_query_service
from bidcart.core.exceptions import AuctionNotFoundError
from bidcart.infrastructure.pubsub import get_pubsub_manager
from bidcart.services import QueryService

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(tags=["websockets"])


async def _keep_alive(websocket: WebSocket, channel: str):
    """Answer every client message with PONG until the client goes away"""
    pubsub = get_pubsub_manager()
    try:
        while True:
            await websocket.receive_text()
            await pubsub.send_personal_message(websocket, {
                "type": "PONG",
                "message": "Connection alive"
            })

    except WebSocketDisconnect:
        pubsub.remove_connection(websocket, channel)
        logger.info(f"🔌 Client disconnected from {channel}")

    except Exception as e:
        logger.warning(f"❌ WebSocket error on {channel}: {e}")
        pubsub.remove_connection(websocket, channel)


@router.websocket("/ws/auctions/{auction_id}")
async def auction_websocket(
    websocket: WebSocket,
    auction_id: int,
    queries: QueryService = Depends(get_query_service),
):
    """
    WebSocket endpoint for real-time auction updates

    Args:
        websocket: WebSocket connection
        auction_id: Auction to subscribe to
    """
    pubsub = get_pubsub_manager()
    channel = pubsub.auction_channel(auction_id)

    try:
        snapshot = queries.get_auction_detail(auction_id)
    except AuctionNotFoundError as e:
        await websocket.accept()
        await websocket.send_json(e.to_dict())
        await websocket.close(code=4404)
        return

    await pubsub.add_connection(websocket, channel)

    await pubsub.send_personal_message(websocket, {
        "type": "CONNECTED",
        "auction_id": auction_id,
        "message": f"Connected to auction {auction_id}",
        "viewers": pubsub.get_connection_count(channel),
        "auction": snapshot
    })

    await _keep_alive(websocket, channel)


@router.websocket("/ws/admin")
async def admin_websocket(
    websocket: WebSocket,
    queries: QueryService = Depends(get_query_service),
):
    """Every auction event, plus the active/scheduled lists on connect"""
    pubsub = get_pubsub_manager()
    channel = pubsub.admin_channel

    await pubsub.add_connection(websocket, channel)

    await pubsub.send_personal_message(websocket, {
        "type": "CONNECTED",
        "message": "Connected to admin feed",
        "active": [auction.to_dict() for auction in queries.list_active()],
        "scheduled": [auction.to_dict() for auction in queries.list_scheduled()]
    })

    await _keep_alive(websocket, channel)
