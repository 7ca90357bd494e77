"""
Bid API Routes

Handles:
- Placing bids
- Bid history per auction
- Per-bidder views
"""
from fastapi import APIRouter, Depends

from bidcart.core.dependencies import get_bid_service, get_query_service
from bidcart.schemas import PlaceBidRequest
from bidcart.services import BidService, QueryService

router = APIRouter(tags=["bids"])


@router.post("/auctions/{auction_id}/bids", status_code=201)
def place_bid(
    auction_id: int,
    request: PlaceBidRequest,
    bids: BidService = Depends(get_bid_service),
):
    """
    Place a bid

    Runs in the threadpool: acceptance may back off and retry when it loses
    a race with a concurrent bid.
    """
    result = bids.place_bid(auction_id, request.bidder_id, request.amount)

    return {
        "success": True,
        "message": "Bid accepted",
        "bid": result.bid.to_dict(),
        "auction": result.auction.to_dict()
    }


@router.get("/auctions/{auction_id}/bids")
async def get_bid_history(
    auction_id: int,
    limit: int = 50,
    queries: QueryService = Depends(get_query_service),
):
    """Bids most-recent-first, labelled winning/outbid"""
    history = queries.get_bid_history(auction_id, limit=limit)
    return {
        "auction_id": auction_id,
        "total": len(history),
        "bids": history
    }


@router.get("/bidders/{bidder_id}/bids")
async def get_bidder_bids(
    bidder_id: str,
    limit: int = 50,
    queries: QueryService = Depends(get_query_service),
):
    """All bids placed by one bidder"""
    bids = queries.get_bidder_bids(bidder_id, limit=limit)
    return {"bidder_id": bidder_id, "total": len(bids), "bids": bids}


@router.get("/bidders/{bidder_id}/winning")
async def get_bidder_winning(bidder_id: str, queries: QueryService = Depends(get_query_service)):
    """Active auctions where the bidder holds the high bid"""
    auctions = queries.get_bidder_winning(bidder_id)
    return {
        "bidder_id": bidder_id,
        "total": len(auctions),
        "auctions": [auction.to_dict() for auction in auctions]
    }
