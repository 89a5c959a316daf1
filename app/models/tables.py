"""SQLModel tables for the watchlist, activity log and third-party caches."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import JSON, Column, Index, UniqueConstraint
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to a naive timestamp read back from SQLite."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def new_id() -> str:
    return uuid.uuid4().hex


class WatchStatus(str, Enum):
    WATCHING = "Watching"
    COMPLETED = "Completed"
    PLAN_TO_WATCH = "Plan to Watch"
    ON_HOLD = "On Hold"
    DROPPED = "Dropped"


class ActivityAction(str, Enum):
    ADDED = "ADDED"
    REMOVED = "REMOVED"
    PROGRESS = "PROGRESS"
    STATUS_CHANGED = "STATUS_CHANGED"
    SCORED = "SCORED"
    NOTED = "NOTED"


class UserMedia(SQLModel, table=True):
    """One watchlist entry per (user, external id, source, season)."""

    __table_args__ = (
        UniqueConstraint(
            "user_id", "external_id", "source", "season", name="unique_user_media"
        ),
    )

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True)
    external_id: str = Field(index=True)
    source: str = "TMDB"
    media_type: str = "TV"  # "TV" or "Movie"
    status: str = WatchStatus.PLAN_TO_WATCH.value
    season: int = 1
    progress: int = Field(default=0, ge=0)
    total_ep: Optional[int] = None
    score: Optional[float] = None  # 0 means unrated
    mdl_rating: Optional[float] = None

    # Cached catalog metadata for list rendering
    title: Optional[str] = None
    poster: Optional[str] = None
    backdrop: Optional[str] = None
    year: Optional[int] = None
    origin_country: Optional[str] = None
    genres: Optional[str] = None  # Comma-joined names
    notes: Optional[str] = None
    airing_status: Optional[str] = None

    # Only explicit user actions touch this; background jobs never do
    last_watched_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def show_key(self) -> str:
        return f"{self.source.lower()}-{self.external_id}"


class ActivityLog(SQLModel, table=True):
    """Append-only event log of watchlist mutations."""

    __table_args__ = (Index("ix_activitylog_user_created", "user_id", "created_at"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True)
    # No foreign key: REMOVED events outlive their entry
    user_media_id: Optional[str] = None
    external_id: str
    source: str
    media_type: str
    title: str = ""
    poster: Optional[str] = None
    action: str
    payload: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    is_backfill: bool = Field(default=False, index=True)
    created_at: datetime = Field(default_factory=utcnow)


class CachedMdlData(SQLModel, table=True):
    """Show-level MyDramaList data fetched through Kuryana."""

    tmdb_external_id: str = Field(primary_key=True)
    mdl_slug: str
    mdl_rating: Optional[float] = None
    mdl_ranking: Optional[int] = None
    mdl_popularity: Optional[int] = None
    tags: Optional[list[str]] = Field(default=None, sa_column=Column(JSON))
    cast_json: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    # Slug pinned by the user; stale rows refetch by slug instead of searching
    is_manual: bool = False
    cached_at: Optional[datetime] = None  # None: slug known, data never fetched


class MdlSeasonLink(SQLModel, table=True):
    """Season-specific MyDramaList link (season 2+), always user-assigned."""

    tmdb_external_id: str = Field(primary_key=True)
    season: int = Field(primary_key=True)
    mdl_slug: str
    mdl_rating: Optional[float] = None
    mdl_ranking: Optional[int] = None
    mdl_popularity: Optional[int] = None
    tags: Optional[list[str]] = Field(default=None, sa_column=Column(JSON))
    cast_json: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    cached_at: Optional[datetime] = None


class CachedEpisode(SQLModel, table=True):
    """Local projection of a show's TVmaze episode list."""

    __table_args__ = (
        UniqueConstraint(
            "show_key", "season_number", "episode_number", name="unique_cached_episode"
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    show_key: str = Field(index=True)  # "<source>-<external id>", e.g. "tmdb-1396"
    season_number: int
    episode_number: int
    name: str = ""
    air_date: Optional[str] = None  # YYYY-MM-DD
    airstamp: Optional[str] = None
    runtime: Optional[int] = None
    cached_at: datetime = Field(default_factory=utcnow)


class SyncLog(SQLModel, table=True):
    """Outcome of the most recent run of a scheduled job, one row per job."""

    id: str = Field(primary_key=True)  # e.g. "daily-sync"
    last_sync: datetime = Field(default_factory=utcnow)
    results: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
