"""
Admin API Routes - Monitoring and Management
"""
from fastapi import APIRouter, Depends, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bidcart.core.config import get_settings
from bidcart.core.dependencies import get_query_service, get_scheduler
from bidcart.core.metrics import get_metrics, CONTENT_TYPE_LATEST
from bidcart.infrastructure.database import get_db
from bidcart.infrastructure.pubsub import get_pubsub_manager
from bidcart.infrastructure.redis_client import test_redis_connection
from bidcart.services import AuctionScheduler, QueryService

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/analytics")
async def get_analytics(queries: QueryService = Depends(get_query_service)):
    """Counts by status, bid totals and top bidders"""
    return queries.get_analytics()


@router.get("/auctions/{auction_id}/audit")
async def audit_auction(auction_id: int, queries: QueryService = Depends(get_query_service)):
    """Replay the bid ledger and compare it with the stored summary"""
    return queries.replay_summary(auction_id)


@router.get("/scheduler")
async def get_scheduler_stats(scheduler: AuctionScheduler = Depends(get_scheduler)):
    """Scheduler loop statistics"""
    return scheduler.stats()


@router.post("/scheduler/sweep")
def run_sweep(scheduler: AuctionScheduler = Depends(get_scheduler)):
    """Run one sweep right now"""
    result = scheduler.sweep()
    return {"success": True, **result.to_dict()}


@router.get("/pubsub-stats")
async def get_pubsub_stats():
    """Get Pub/Sub statistics"""
    pubsub = get_pubsub_manager()
    return pubsub.get_stats()


@router.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """System health check"""
    settings = get_settings()

    # Check database
    try:
        db.execute(text("SELECT 1"))
        db_status = "healthy"
    except SQLAlchemyError as e:
        db_status = f"unhealthy: {str(e)}"

    # Redis only matters when something is configured to use it
    if settings.PUBSUB_BACKEND == "redis" or settings.BID_LOCK_ENABLED:
        redis_status = "healthy" if test_redis_connection() else "unhealthy"
    else:
        redis_status = "not_used"

    # Check Pub/Sub
    pubsub_stats = get_pubsub_manager().get_stats()
    pubsub_status = "healthy" if pubsub_stats["is_connected"] else "unhealthy"

    overall = "healthy" if (
        db_status == "healthy" and
        redis_status in ("healthy", "not_used") and
        pubsub_status == "healthy"
    ) else "degraded"

    return {
        "status": overall,
        "components": {
            "database": db_status,
            "redis": redis_status,
            "pubsub": pubsub_status
        },
        "details": {
            "pubsub_stats": pubsub_stats
        }
    }


# Mounted without the /admin prefix in main
metrics_router = APIRouter(tags=["metrics"])


@metrics_router.get("/metrics")
async def metrics():
    """Prometheus scrape endpoint"""
    return Response(content=get_metrics(), media_type=CONTENT_TYPE_LATEST)
