"""Service dependencies, resolved from the instances built at startup."""

from fastapi import Request

from app.services.activity import ActivityService
from app.services.mdl import MdlService
from app.services.schedule import ScheduleService
from app.services.stats import StatsService
from app.services.sync import SyncService
from app.services.watchlist import WatchlistService


def get_mdl_service(request: Request) -> MdlService:
    return request.app.state.mdl_service


def get_schedule_service(request: Request) -> ScheduleService:
    return request.app.state.schedule_service


def get_activity_service(request: Request) -> ActivityService:
    return request.app.state.activity_service


def get_watchlist_service(request: Request) -> WatchlistService:
    return request.app.state.watchlist_service


def get_stats_service(request: Request) -> StatsService:
    return request.app.state.stats_service


def get_sync_service(request: Request) -> SyncService:
    return request.app.state.sync_service
