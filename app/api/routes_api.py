"""API routes returning JSON for the web front end."""

from typing import Any, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from app.api.deps import (
    get_activity_service,
    get_mdl_service,
    get_schedule_service,
    get_stats_service,
    get_sync_service,
    get_watchlist_service,
)
from app.core.auth import get_current_user_id, verify_cron_secret
from app.models.media import (
    ActivityPage,
    ContinueWatchingItem,
    DashboardStats,
    ImportResult,
    KuryanaDrama,
    MdlData,
    NextEpisode,
    ScheduleEntry,
    SyncInfo,
    SyncReport,
    WatchlistItemIn,
    WatchlistItemUpdate,
)
from app.models.tables import ActivityAction, UserMedia
from app.services.activity import ActivityService
from app.services.mdl import MdlService
from app.services.schedule import ScheduleService
from app.services.stats import StatsService
from app.services.sync import SyncService
from app.services.tmdb import MediaType, TMDBSearchResult, search_tmdb
from app.services.watchlist import WatchlistService

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "service": "dramalog"}


@router.get("/search", response_model=List[TMDBSearchResult])
async def api_search(
    q: str = Query(..., description="Search query"),
    media_type: str = Query("all", description="Media type: movie, tv, or all"),
):
    """Search TMDB for content."""
    if media_type == "movie":
        mt = MediaType.MOVIE
    elif media_type == "tv":
        mt = MediaType.SERIES
    else:
        mt = MediaType.ALL

    return await search_tmdb(q, mt)


# --- MyDramaList data ---


class MdlCacheRequest(BaseModel):
    """Request body naming a cached title."""

    model_config = ConfigDict(populate_by_name=True)

    tmdb_external_id: Optional[str] = Field(default=None, alias="tmdbExternalId")


class MdlSlugRequest(BaseModel):
    slug: str
    season: Optional[int] = None


@router.get("/mdl/search", response_model=List[KuryanaDrama])
async def mdl_search(
    q: str = Query(..., description="Search query"),
    mdl: MdlService = Depends(get_mdl_service),
):
    """Search MyDramaList for the manual link editor."""
    return await mdl.search_dramas(q)


@router.get("/mdl/native-title")
async def mdl_native_title(
    slug: str = Query(..., min_length=1),
    mdl: MdlService = Depends(get_mdl_service),
):
    """Native title for a MyDramaList slug, used as a second search query."""
    return {"slug": slug, "native_title": await mdl.get_native_title(slug)}


@router.post("/mdl/reset")
async def mdl_reset(
    request: MdlCacheRequest,
    mdl: MdlService = Depends(get_mdl_service),
):
    """Forget cached MyDramaList data so the next read searches again."""
    if not request.tmdb_external_id:
        raise HTTPException(status_code=400, detail="Missing tmdbExternalId")
    deleted = await mdl.reset(request.tmdb_external_id)
    return {"ok": True, "deleted": deleted}


@router.post("/mdl/refetch")
async def mdl_refetch(
    request: MdlCacheRequest,
    mdl: MdlService = Depends(get_mdl_service),
):
    """Refresh cached MyDramaList data using its known slug."""
    if not request.tmdb_external_id:
        raise HTTPException(status_code=400, detail="Missing tmdbExternalId")
    outcome = await mdl.refetch(request.tmdb_external_id)
    return {"ok": True, "result": outcome}


@router.get("/mdl/{tmdb_external_id}", response_model=Optional[MdlData])
async def mdl_data(
    tmdb_external_id: str,
    title: str = Query(...),
    year: str = Query(""),
    season: int = Query(1),
    native_title: Optional[str] = Query(None),
    mdl: MdlService = Depends(get_mdl_service),
):
    """MyDramaList rating, rank, tags and cast for a title, or null."""
    return await mdl.get_mdl_season_data(
        tmdb_external_id, title, year, season, native_title
    )


@router.put("/mdl/{tmdb_external_id}/slug")
async def mdl_set_slug(
    tmdb_external_id: str,
    request: MdlSlugRequest,
    mdl: MdlService = Depends(get_mdl_service),
):
    """Pin a MyDramaList entry to a title (or one of its seasons)."""
    try:
        await mdl.set_mdl_slug(tmdb_external_id, request.slug, request.season)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"ok": True}


# --- Schedule ---


@router.get("/schedule", response_model=List[ScheduleEntry])
async def schedule(
    user_id: str = Depends(get_current_user_id),
    service: ScheduleService = Depends(get_schedule_service),
):
    """Episodes of the user's tracked shows, sorted by air date."""
    return await service.get_schedule_entries(user_id)


@router.post("/schedule/refresh")
async def schedule_refresh(
    user_id: str = Depends(get_current_user_id),
    service: ScheduleService = Depends(get_schedule_service),
):
    """Refetch the episode cache for shows being watched or planned."""
    count = await service.refresh_schedule(user_id)
    return {"ok": True, "count": count}


@router.get("/schedule/next/{tmdb_id}", response_model=Optional[NextEpisode])
async def next_episode(
    tmdb_id: str,
    title: Optional[str] = Query(None),
    service: ScheduleService = Depends(get_schedule_service),
):
    """Next episode to air for a show."""
    return await service.get_next_episode(tmdb_id, title)


# --- Activity history ---


@router.get("/history", response_model=ActivityPage)
def history(
    cursor: Optional[str] = Query(None),
    action: Optional[List[ActivityAction]] = Query(None),
    user_id: str = Depends(get_current_user_id),
    activity: ActivityService = Depends(get_activity_service),
):
    """One page of the user's activity, newest first."""
    try:
        return activity.get_activity_log(
            user_id, cursor, [a.value for a in action] if action else None
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/history/{log_id}")
def delete_history(
    log_id: str,
    user_id: str = Depends(get_current_user_id),
    activity: ActivityService = Depends(get_activity_service),
):
    try:
        activity.delete_activity_log(user_id, log_id)
    except LookupError:
        raise HTTPException(status_code=404, detail="Activity not found")
    return {"ok": True}


@router.post("/history/backfill")
def backfill_history(
    user_id: str = Depends(get_current_user_id),
    activity: ActivityService = Depends(get_activity_service),
):
    """Regenerate synthesized history from the current watchlist."""
    count = activity.backfill_activity_log(user_id)
    return {"success": True, "count": count}


# --- Watchlist ---


@router.get("/watchlist", response_model=List[UserMedia])
def watchlist(
    user_id: str = Depends(get_current_user_id),
    service: WatchlistService = Depends(get_watchlist_service),
):
    return service.get_watchlist(user_id)


@router.post("/watchlist", response_model=UserMedia)
def add_to_watchlist(
    item: WatchlistItemIn,
    user_id: str = Depends(get_current_user_id),
    service: WatchlistService = Depends(get_watchlist_service),
):
    try:
        return service.add_to_watchlist(user_id, item)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.patch("/watchlist/{entry_id}", response_model=UserMedia)
def update_watchlist_entry(
    entry_id: str,
    update: WatchlistItemUpdate,
    user_id: str = Depends(get_current_user_id),
    service: WatchlistService = Depends(get_watchlist_service),
):
    try:
        return service.update_entry(
            user_id, entry_id, update.model_dump(exclude_unset=True)
        )
    except LookupError:
        raise HTTPException(status_code=404, detail="Watchlist entry not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


class ProgressUpdate(BaseModel):
    progress: int


@router.post("/watchlist/{entry_id}/progress", response_model=UserMedia)
def update_watchlist_progress(
    entry_id: str,
    update: ProgressUpdate,
    user_id: str = Depends(get_current_user_id),
    service: WatchlistService = Depends(get_watchlist_service),
):
    """Set the episode count reached, logging a PROGRESS event."""
    try:
        return service.update_progress(user_id, entry_id, update.progress)
    except LookupError:
        raise HTTPException(status_code=404, detail="Watchlist entry not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/watchlist/{entry_id}")
def delete_watchlist_entry(
    entry_id: str,
    user_id: str = Depends(get_current_user_id),
    service: WatchlistService = Depends(get_watchlist_service),
):
    try:
        service.delete_entry(user_id, entry_id)
    except LookupError:
        raise HTTPException(status_code=404, detail="Watchlist entry not found")
    return {"ok": True}


@router.post("/watchlist/import", response_model=ImportResult)
def import_watchlist(
    items: Any = Body(...),
    user_id: str = Depends(get_current_user_id),
    service: WatchlistService = Depends(get_watchlist_service),
):
    """Import an exported watchlist (a JSON array of records)."""
    return service.import_watchlist(user_id, items)


# --- Stats ---


@router.get("/stats", response_model=DashboardStats)
def dashboard_stats(
    user_id: str = Depends(get_current_user_id),
    service: StatsService = Depends(get_stats_service),
):
    """Counts, watch time, genres and ratings over the whole watchlist."""
    return service.get_dashboard_stats(user_id)


@router.get("/stats/continue-watching", response_model=List[ContinueWatchingItem])
def continue_watching(
    user_id: str = Depends(get_current_user_id),
    service: StatsService = Depends(get_stats_service),
):
    return service.get_continue_watching(user_id)


@router.post("/stats/backfill-genres")
async def backfill_genres(
    user_id: str = Depends(get_current_user_id),
    service: StatsService = Depends(get_stats_service),
):
    """Fill in missing genres from TMDB."""
    count = await service.backfill_genres(user_id)
    return {"success": True, "count": count}


# --- Daily sync ---


@router.post(
    "/sync", response_model=SyncReport, dependencies=[Depends(verify_cron_secret)]
)
async def run_sync(service: SyncService = Depends(get_sync_service)):
    """Run the daily artwork and airing-status sync (called by the scheduler)."""
    return await service.run_daily_sync()


@router.get("/sync", response_model=Optional[SyncInfo])
def last_sync(service: SyncService = Depends(get_sync_service)):
    return service.get_last_sync_info()
