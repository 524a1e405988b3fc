"""
Main FastAPI application (entrypoint).

Responsibilities:
- Wire API routers (notifications, selections/orders)
- Register centralized exception handlers
- Provide request-id logging middleware
- Add health endpoint
- On startup: create DB tables (if a database is configured) and start the reminder ticker
- On shutdown: stop the ticker (an active run ends with a partial report) and close Redis
"""
from datetime import datetime, timezone

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import uvicorn

from api import routes_notifications, routes_selections
from config.settings import settings
from core.exception_handlers import register_exception_handlers
from core.logging import configure_logging, request_logging_middleware
from core.response import ok
from core.singleton import get_reminder_scheduler, get_subscriber_service, reminder_scheduler
from models.schemas import StoreStats
from infra.redis_client import close_redis
from workers.reminder_ticker import ReminderTicker

# DB scaffolding (async SQLAlchemy)
from core.db import engine, Base
from models import db_models  # noqa: F401 ensure models are imported so tables are registered

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.API_TITLE, version=settings.API_VERSION)

# CORS - adjust origins for production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(routes_notifications.router, prefix="/api/notifications", tags=["notifications"])
app.include_router(routes_selections.router, prefix="/api", tags=["selections"])

register_exception_handlers(app)

# Add request logging middleware (adds X-Request-ID header and logs)
app.middleware("http")(request_logging_middleware)

ticker = ReminderTicker(reminder_scheduler, settings.REMINDER_TICK_SECONDS)

@app.get("/health")
async def health(
    subscribers=Depends(get_subscriber_service),
    scheduler=Depends(get_reminder_scheduler),
):
    """
    Health endpoint used by load balancers and orchestrators.
    Store counts fall back to zeros when the store cannot be read; the API is still up.
    """
    try:
        stats = await subscribers.stats()
    except Exception as e:
        logger.warning("Health stats unavailable: %s", e)
        stats = StoreStats()
    return ok({
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "reminder_state": scheduler.state.value,
        **stats.model_dump(),
    })

@app.on_event("startup")
async def on_startup():
    """
    On startup:
    - Create DB tables (development convenience). In production use Alembic migrations instead.
    - Start the reminder ticker unless REMINDER_ENABLED=false.
    """
    if engine is not None:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except Exception as e:
            # Do not crash the process for missing DB during local dev; log for ops
            logger.warning("DB initialization failed on startup: %s", e)
    if settings.REMINDER_ENABLED:
        ticker.start()
    else:
        logger.info("Reminder ticker disabled (REMINDER_ENABLED=false)")

@app.on_event("shutdown")
async def on_shutdown():
    await ticker.stop()
    await close_redis()

if __name__ == "__main__":
    # Run with: python main.py for local dev. For production use uvicorn/gunicorn with workers.
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
