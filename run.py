"""
Application Entry Point
"""
import uvicorn

from bidcart.core.config import get_settings

settings = get_settings()

if __name__ == "__main__":
    print("=" * 70)
    print(f"🎯 {settings.APP_NAME} v{settings.APP_VERSION}")
    print("=" * 70)
    print(f"   Pub/Sub backend: {settings.PUBSUB_BACKEND}")
    print(f"   Scheduler: {'✅ every %ss' % settings.SCHEDULER_INTERVAL_SECONDS if settings.SCHEDULER_ENABLED else '⏸️  disabled'}")
    print(f"   Bid lock: {'✅' if settings.BID_LOCK_ENABLED else 'off (CAS only)'}")
    print("\n🌐 Server:")
    print(f"   URL: http://{settings.HOST}:{settings.PORT}")
    print(f"   Docs: http://{settings.HOST}:{settings.PORT}/docs")
    print("=" * 70)
    print("\n🚀 Starting server...\n")

    uvicorn.run(
        "bidcart.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG
    )
