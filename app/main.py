import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI

from app.api.routes_api import router as api_router
from app.clients.kuryana import KuryanaClient
from app.clients.tvmaze import TVMazeClient
from app.core.config import get_settings
from app.core.database import Database
from app.services.activity import ActivityService
from app.services.mdl import MdlService
from app.services.schedule import ScheduleService
from app.services.stats import StatsService
from app.services.sync import SyncService
from app.services.watchlist import WatchlistService

load_dotenv()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    """Build the database handle, HTTP clients and services; tear them down after."""
    settings = get_settings()

    db = Database(settings.database_url, echo=settings.debug)
    db.create_all()

    kuryana = KuryanaClient(settings.kuryana_url, timeout=settings.kuryana_timeout)
    tvmaze = TVMazeClient(
        settings.tvmaze_url,
        api_key=settings.tvmaze_api_key,
        timeout=settings.tvmaze_timeout,
    )

    activity = ActivityService(db)
    app.state.db = db
    app.state.mdl_service = MdlService(db, kuryana)
    app.state.schedule_service = ScheduleService(
        db, tvmaze, settings.schedule_countries
    )
    app.state.activity_service = activity
    app.state.watchlist_service = WatchlistService(db, activity)
    app.state.stats_service = StatsService(db)
    app.state.sync_service = SyncService(db)

    try:
        yield
    finally:
        await app.state.mdl_service.drain()
        for client in (kuryana, tvmaze):
            try:
                await client.aclose()
            except Exception as e:
                logger.error(f"Error closing {client.name} client: {e}")
        db.dispose()


app = FastAPI(
    title="dramalog",
    description="Personal drama and TV watchlist with MyDramaList enrichment",
    version="0.1.0",
    lifespan=app_lifespan,
)

app.include_router(api_router, prefix="/api")
