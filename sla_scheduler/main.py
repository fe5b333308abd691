"""
FastAPI Main Application Entry Point for the SLA Scheduler.

The host process owns the scheduler lifecycle:
- Starts the job roster on startup (when enabled)
- Stops it on shutdown, letting in-flight jobs finish
- Serves the role-keyed WebSocket push channel
- Exposes scheduler health
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from sla_scheduler.core.config import settings
from sla_scheduler.core.exceptions import SchedulerException
from sla_scheduler.services.push import get_push_channel
from sla_scheduler.services.scheduler import get_scheduler


# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Start background scheduler with the push channel attached

    Shutdown:
    - Stop scheduler (pending timers cancelled, running jobs finish)
    - Close the lock store connection
    """
    logger.info(f"🚀 Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Scheduler enabled: {settings.enable_scheduler}")
    logger.info(f"Run scheduler (this instance): {settings.run_scheduler}")
    logger.info(f"Lock store configured: {settings.lock_store_enabled}")

    app.state.scheduler = None

    if settings.enable_scheduler and settings.run_scheduler:
        app.state.scheduler = get_scheduler()
        app.state.scheduler.start(get_push_channel())
        logger.info("✅ Background scheduler started")

    yield

    if app.state.scheduler:
        await app.state.scheduler.close()
        logger.info("✅ Scheduler stopped")

    logger.info("👋 Shutting down...")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    # SLA Scheduler

    Periodically scans workflow documents for SLA breaches and upcoming
    deadlines, notifies the responsible roles and runs housekeeping jobs.

    ## Jobs
    - **sla_breach**: every 5 minutes
    - **sla_warning**: every 5 minutes
    - **expired_lots**: hourly
    - **token_cleanup**: every 6 hours

    Jobs are coordinated across instances with expiring Redis locks.
    """,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


# Global exception handler for SchedulerExceptions
@app.exception_handler(SchedulerException)
async def scheduler_exception_handler(request, exc: SchedulerException):
    """Handle all SchedulerException subclasses."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
    )


# Health check endpoint
@app.get("/health", tags=["System"])
async def health_check():
    """
    Health check endpoint for monitoring.

    Returns service status and scheduler health.
    """
    scheduler = getattr(app.state, "scheduler", None) or get_scheduler()
    health = scheduler.get_health_status()

    return {
        "status": health.status,
        "service": settings.app_name,
        "version": settings.app_version,
        "scheduler": health.to_dict(),
        "push_connections": get_push_channel().connection_count,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


# Root endpoint
@app.get("/", tags=["System"])
async def root():
    """Root endpoint with API information."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "docs": "/docs" if settings.debug else "Docs disabled in production",
        "health": "/health",
    }


# Push channel
@app.websocket("/ws/{role}")
async def push_socket(websocket: WebSocket, role: str, user_id: Optional[str] = None):
    """Subscribe to SLA broadcasts for a role (and notifications for a user)."""
    channel = get_push_channel()
    await channel.connect(websocket, role, user_id)
    try:
        while True:
            # Clients only listen; inbound frames are ignored
            await websocket.receive_text()
    except WebSocketDisconnect:
        channel.disconnect(websocket)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "sla_scheduler.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
