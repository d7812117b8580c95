import logging

from fastapi import APIRouter, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request):
    """Basic health check"""
    scheduler = getattr(request.app.state, "scheduler", None)
    return {
        "status": "healthy",
        "service": "channel-sync",
        "scheduler_running": bool(scheduler and scheduler.running),
    }


@router.get("/health/db")
async def database_health():
    """Check database connectivity"""
    from channel_sync.database import async_session

    try:
        async with async_session() as session:
            await session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return {"status": "unhealthy", "database": "error", "error": str(e)}
    return {"status": "healthy", "database": "connected"}
