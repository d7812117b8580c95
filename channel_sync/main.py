# channel_sync/main.py

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI

from channel_sync import __version__
from channel_sync.core.logging_config import configure_logging
from channel_sync.core.security import get_current_username
from channel_sync.integrations.setup import setup_sync_engine
from channel_sync.routes import credentials, health, sync
from channel_sync.scheduler import get_scheduler_status, start_scheduler, stop_scheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()

    app.state.sync_orchestrator = setup_sync_engine()
    app.state.scheduler = await start_scheduler(app.state.sync_orchestrator)
    try:
        yield  # This is where the app runs
    finally:
        await stop_scheduler()
        app.state.scheduler = None
        logger.info("Sync engine stopped")


app = FastAPI(
    title="Channel Sync",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(sync.router, dependencies=[Depends(get_current_username)])
app.include_router(credentials.router, dependencies=[Depends(get_current_username)])
app.include_router(health.router)  # Health check should be accessible without auth


@app.get("/api/scheduler/status", dependencies=[Depends(get_current_username)])
async def scheduler_status():
    return get_scheduler_status()
