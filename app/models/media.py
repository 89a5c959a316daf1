"""Pydantic models for third-party metadata and API payloads."""

from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


RoleType = Literal["Main Role", "Support Role", "Guest Role"]


class KuryanaDrama(BaseModel):
    """A drama from a Kuryana search."""

    slug: str
    title: str = ""
    year: Optional[int] = None
    thumb: str = ""
    mdl_id: str = ""
    ranking: str = ""
    type: str = ""
    series: str = ""

    @field_validator("year", mode="before")
    @classmethod
    def parse_year(cls, v: Any) -> Optional[int]:
        # Upcoming titles report "TBA"
        try:
            return int(v)
        except (TypeError, ValueError):
            return None


class MdlCastMember(BaseModel):
    """A cast member as shown in the drama-database section."""

    name: str
    profile_image: str = ""
    slug: str
    character_name: str = ""
    role_type: RoleType = "Support Role"


class MdlCast(BaseModel):
    """Cast grouped by role tier."""

    main: List[MdlCastMember] = []
    support: List[MdlCastMember] = []
    guest: List[MdlCastMember] = []

    @property
    def is_empty(self) -> bool:
        return not (self.main or self.support or self.guest)


class MdlData(BaseModel):
    """Enriched drama-database metadata for one title."""

    mdl_slug: str
    mdl_rating: Optional[float] = None
    mdl_ranking: Optional[int] = None
    mdl_popularity: Optional[int] = None
    tags: List[str] = []
    cast: Optional[MdlCast] = None


class EpisodeInfo(BaseModel):
    """An episode from the episode-schedule provider."""

    season_number: int
    episode_number: int
    name: str = ""
    air_date: Optional[str] = None  # YYYY-MM-DD
    airstamp: Optional[str] = None
    runtime: Optional[int] = None


class NextEpisode(BaseModel):
    """The next episode to air, with the size of its season when known."""

    air_date: str
    season_number: int
    episode_number: int
    name: str = ""
    season_episode_count: Optional[int] = None


class ScheduleEntry(BaseModel):
    """One dated line on the user's episode schedule."""

    title: str
    poster: Optional[str] = None
    season_number: int
    episode_number: int
    episode_name: Optional[str] = None
    air_date: str  # YYYY-MM-DD
    media_id: str  # "<source>-<external id>"


class ImportItem(BaseModel):
    """A loosely-typed watchlist record from an export file."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    source: str = Field(min_length=1)
    external_id: str = Field(alias="externalId", min_length=1)
    title: Optional[str] = None
    type: Optional[str] = None
    status: Optional[str] = None
    season: Optional[int] = None
    progress: Optional[int] = Field(default=None, ge=0)
    total_episodes: Optional[int] = Field(default=None, alias="totalEpisodes")
    score: Optional[float] = None
    mdl_rating: Optional[float] = Field(default=None, alias="mdlRating")
    country: Optional[str] = None
    year: Optional[int] = None
    genres: Optional[str] = None
    notes: Optional[str] = None
    airing_status: Optional[str] = Field(default=None, alias="airingStatus")

    @field_validator("external_id", mode="before")
    @classmethod
    def coerce_external_id(cls, v: Any) -> Any:
        # Exports written by hand often carry TMDB ids as numbers
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class ImportResult(BaseModel):
    imported: int = 0
    skipped: int = 0
    errors: List[str] = []


class WatchlistItemIn(BaseModel):
    """Request body for adding a title to the watchlist."""

    external_id: str = Field(min_length=1)
    source: str = "TMDB"
    media_type: Literal["TV", "Movie"] = "TV"
    status: str = "Plan to Watch"
    season: int = Field(default=1, ge=0)
    progress: int = Field(default=0, ge=0)
    total_ep: Optional[int] = None
    score: Optional[float] = Field(default=None, ge=0, le=10)
    notes: Optional[str] = None
    title: Optional[str] = None
    poster: Optional[str] = None
    backdrop: Optional[str] = None
    year: Optional[int] = None
    origin_country: Optional[str] = None
    genres: List[str] = []


class WatchlistItemUpdate(BaseModel):
    """Partial update of a watchlist entry."""

    status: Optional[str] = None
    progress: Optional[int] = Field(default=None, ge=0)
    score: Optional[float] = Field(default=None, ge=0, le=10)
    notes: Optional[str] = None


class ActivityItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_media_id: Optional[str] = None
    external_id: str
    source: str
    media_type: str
    title: str
    poster: Optional[str] = None
    action: str
    payload: Optional[dict[str, Any]] = None
    is_backfill: bool
    created_at: datetime


class ActivityPage(BaseModel):
    items: List[ActivityItem]
    next_cursor: Optional[str] = None


class GenreCount(BaseModel):
    name: str
    value: int


class TopGenre(BaseModel):
    name: str
    count: int
    percentage: float


class RatingBucket(BaseModel):
    rating: int
    count: int = 0


class DashboardStats(BaseModel):
    """Aggregates over a user's whole watchlist."""

    total_movies: int = 0
    total_tv: int = 0
    total_episodes: int = 0
    watch_time_minutes: int = 0
    completion_rate: float = 0.0  # percent of started entries
    genre_breakdown: List[GenreCount] = []
    top_genres: List[TopGenre] = []
    rating_distribution: List[RatingBucket] = []


class ContinueWatchingItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    external_id: str
    source: str
    title: Optional[str] = None
    poster: Optional[str] = None
    backdrop: Optional[str] = None
    progress: int
    total_ep: int = 1


class SyncTaskResult(BaseModel):
    task: str
    success: bool
    count: int = 0
    error: Optional[str] = None
    duration: float = 0.0  # seconds


class SyncReport(BaseModel):
    """Outcome of one daily sync run, also stored as the last sync record."""

    tasks: List[SyncTaskResult] = []
    total_duration: float = 0.0
    error: Optional[str] = None
    timestamp: datetime


class SyncInfo(BaseModel):
    last_sync: datetime
    results: Optional[SyncReport] = None
