import asyncio
import contextlib
import logging
from typing import Optional

from fastapi import FastAPI

from .api import health, telegram
from .config import settings
from .core.topup.orchestrator import get_topup_orchestrator
from .core.topup.store import InMemorySessionStore
from .logging_config import setup_logging
from .middleware import RequestLoggingMiddleware

SESSION_PURGE_INTERVAL_SECONDS = 300

setup_logging()
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Gas Top-up Bot",
    description="Telegram bot that tops up native gas through SideShift",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestLoggingMiddleware)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(telegram.router, tags=["Telegram"])

_purge_task: Optional[asyncio.Task] = None


async def _purge_expired_sessions(store: InMemorySessionStore) -> None:
    while True:
        await asyncio.sleep(SESSION_PURGE_INTERVAL_SECONDS)
        try:
            await store.purge_expired()
        except Exception as e:
            logger.error(f"Session purge failed: {e}", exc_info=True)


@app.on_event("startup")
async def start_session_purge() -> None:
    global _purge_task
    if not settings.has_webhook_secret:
        logger.warning("TELEGRAM_WEBHOOK_SECRET not set, webhook deliveries will be rejected")
    store = get_topup_orchestrator().store
    if isinstance(store, InMemorySessionStore) and store.ttl_seconds:
        _purge_task = asyncio.create_task(_purge_expired_sessions(store))


@app.on_event("shutdown")
async def stop_session_purge() -> None:
    global _purge_task
    if _purge_task is not None:
        _purge_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _purge_task
        _purge_task = None


@app.get("/")
async def root():
    """Root endpoint with basic info"""
    return {
        "name": "Gas Top-up Bot",
        "version": "0.1.0",
        "description": "Telegram bot that tops up native gas through SideShift",
        "webhook": "/webhook/telegram/{secret}",
        "health": "/healthz"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
        log_level=settings.log_level.lower()
    )
