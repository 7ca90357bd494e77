"""
Main FastAPI Application
BidCart auction lifecycle and bidding engine
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from bidcart.core.config import get_settings
from bidcart.core.exceptions import AuctionError
from bidcart.core.logging_config import setup_logging
from bidcart.infrastructure.database import get_db, init_db
from bidcart.infrastructure.pubsub import get_pubsub_manager
from bidcart.middleware.tracing import TracingMiddleware
from bidcart.models import Auction, AuctionStatus, Bid
from bidcart.services import get_auction_scheduler

# Import routers
from bidcart.api import admin, auctions, bids, websockets

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan events for startup and shutdown"""
    setup_logging()
    logger.info(f"🚀 Starting {settings.APP_NAME} v{settings.APP_VERSION}...")

    logger.info("📊 Initializing database...")
    init_db()

    logger.info(f"📡 Initializing Pub/Sub ({settings.PUBSUB_BACKEND})...")
    pubsub = get_pubsub_manager()
    await pubsub.connect()

    scheduler = get_auction_scheduler()
    if settings.SCHEDULER_ENABLED:
        logger.info("⏰ Starting auction scheduler...")
        await scheduler.start()
    else:
        logger.info("⏸️  Auction scheduler disabled on this replica")

    logger.info("✅ Startup complete")

    yield

    # Shutdown
    logger.info("🛑 Shutting down...")
    await scheduler.stop()
    await pubsub.disconnect()
    logger.info("✅ Cleanup complete")


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Auction lifecycle and bidding engine for the BidCart marketplace",
    debug=settings.DEBUG,
    lifespan=lifespan,
)


@app.exception_handler(AuctionError)
async def auction_error_handler(request: Request, exc: AuctionError):
    """Turn domain errors into {"error": kind, "message": ..., **details}"""
    log = logger.warning if exc.status_code >= 409 else logger.info
    log(f"⚠️  {request.method} {request.url.path} -> {exc.kind}: {exc.message}")

    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(TracingMiddleware)


# ============================================================================
# INCLUDE ROUTERS
# ============================================================================
app.include_router(auctions.router)
app.include_router(bids.router)
app.include_router(admin.router)
app.include_router(admin.metrics_router)
app.include_router(websockets.router)


# ============================================================================
# ROOT ENDPOINT
# ============================================================================
@app.get("/", tags=["root"])
async def root(db: Session = Depends(get_db)):
    """Server status and statistics"""
    return {
        "message": f"{settings.APP_NAME} v{settings.APP_VERSION}",
        "status": "running",
        "total_auctions": db.query(Auction).count(),
        "active_auctions": db.query(Auction).filter(Auction.status == AuctionStatus.ACTIVE).count(),
        "scheduled_auctions": db.query(Auction).filter(Auction.status == AuctionStatus.SCHEDULED).count(),
        "total_bids": db.query(Bid).count(),
        "pubsub_backend": settings.PUBSUB_BACKEND,
        "docs": "/docs",
        "websocket": "/ws/auctions/{auction_id}",
    }
