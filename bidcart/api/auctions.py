"""
Auction API Routes

Handles:
- Auction lists (upcoming, active, scheduled, history)
- Scheduling and admin transitions (start now, end, cancel, reschedule)
- Auction detail, participants and statistics
"""
from typing import Optional

from fastapi import APIRouter, Depends

from bidcart.core.dependencies import get_auction_service, get_query_service
from bidcart.schemas import ScheduleAuctionRequest, RescheduleAuctionRequest
from bidcart.services import AuctionService, QueryService

router = APIRouter(prefix="/auctions", tags=["auctions"])


def _listing(auctions):
    return {
        "total": len(auctions),
        "auctions": [auction.to_dict() for auction in auctions],
    }


# ============================================================================
# LISTS (declared before /{auction_id})
# ============================================================================
@router.get("/upcoming")
async def list_upcoming(
    within_hours: Optional[float] = None,
    queries: QueryService = Depends(get_query_service),
):
    """Scheduled auctions that have not started yet"""
    return _listing(queries.list_upcoming(within_hours=within_hours))


@router.get("/active")
async def list_active(queries: QueryService = Depends(get_query_service)):
    """Auctions accepting bids right now"""
    return _listing(queries.list_active())


@router.get("/scheduled")
async def list_scheduled(queries: QueryService = Depends(get_query_service)):
    """All scheduled auctions"""
    return _listing(queries.list_scheduled())


@router.get("/history")
async def list_history(limit: int = 50, queries: QueryService = Depends(get_query_service)):
    """Ended and cancelled auctions"""
    return _listing(queries.list_history(limit=limit))


# ============================================================================
# SCHEDULING & TRANSITIONS
# ============================================================================
@router.post("/schedule", status_code=201)
def schedule_auction(
    request: ScheduleAuctionRequest,
    auctions: AuctionService = Depends(get_auction_service),
):
    """Schedule a listing for auction"""
    auction = auctions.schedule(
        listing_id=request.listing_id,
        seller_id=request.seller_id,
        start_time=request.start_time,
        end_time=request.end_time,
        starting_bid=request.starting_bid,
        min_bid_increment=request.min_bid_increment,
        scheduled_by=request.scheduled_by,
    )

    return {
        "success": True,
        "message": "Auction scheduled successfully",
        "auction": auction.to_dict()
    }


@router.get("/{auction_id}")
async def get_auction(auction_id: int, queries: QueryService = Depends(get_query_service)):
    """Auction summary with minimum next bid and recent bids"""
    return queries.get_auction_detail(auction_id)


@router.post("/{auction_id}/reschedule")
def reschedule_auction(
    auction_id: int,
    request: RescheduleAuctionRequest,
    auctions: AuctionService = Depends(get_auction_service),
):
    """Move a scheduled auction's window"""
    auction = auctions.reschedule(
        auction_id,
        start_time=request.start_time,
        end_time=request.end_time,
        starting_bid=request.starting_bid,
        min_bid_increment=request.min_bid_increment,
    )
    return {"success": True, "message": "Auction rescheduled", "auction": auction.to_dict()}


@router.post("/{auction_id}/start")
def start_auction(auction_id: int, auctions: AuctionService = Depends(get_auction_service)):
    """Admin override: open bidding now"""
    auction = auctions.start(auction_id, override=True)
    return {"success": True, "message": "Auction started", "auction": auction.to_dict()}


@router.post("/{auction_id}/end")
def end_auction(auction_id: int, auctions: AuctionService = Depends(get_auction_service)):
    """Close bidding and fix the winner"""
    auction = auctions.end(auction_id)
    return {"success": True, "message": "Auction ended", "auction": auction.to_dict()}


@router.post("/{auction_id}/cancel")
def cancel_auction(auction_id: int, auctions: AuctionService = Depends(get_auction_service)):
    """Cancel a scheduled auction"""
    auction = auctions.cancel(auction_id)
    return {"success": True, "message": "Auction cancelled", "auction": auction.to_dict()}


# ============================================================================
# PROJECTIONS
# ============================================================================
@router.get("/{auction_id}/participants")
async def get_participants(auction_id: int, queries: QueryService = Depends(get_query_service)):
    """Distinct bidders on an auction"""
    participants = queries.get_participants(auction_id)
    return {
        "auction_id": auction_id,
        "total": len(participants),
        "participants": participants
    }


@router.get("/{auction_id}/statistics")
async def get_auction_statistics(auction_id: int, queries: QueryService = Depends(get_query_service)):
    """Get auction statistics"""
    return queries.get_statistics(auction_id)
