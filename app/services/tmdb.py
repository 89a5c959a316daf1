"""TMDB service for searching titles and resolving cross-provider ids."""

import asyncio
from cachetools import cached
from cachetools import TTLCache
from typing import List, Optional
from enum import Enum

import tmdbsimple as tmdb
from pydantic import BaseModel

from app.core.config import get_settings
import logging
import requests

logger = logging.getLogger(__name__)


class TMDBError(Exception):
    """Domain exception for TMDB failures."""

    def __init__(self, message: str, original_exception: Exception = None):
        super().__init__(message)
        self.original_exception = original_exception


external_ids_cache = TTLCache(maxsize=500, ttl=3600)
original_title_cache = TTLCache(maxsize=500, ttl=3600)
details_cache = TTLCache(maxsize=500, ttl=3600)

POSTER_BASE = "https://image.tmdb.org/t/p/w342"
BACKDROP_BASE = "https://image.tmdb.org/t/p/w1280"

# Initialize TMDB
settings = get_settings()
tmdb.API_KEY = settings.tmdb_api_key


class MediaType(str, Enum):
    """Media type for search."""

    MOVIE = "movie"
    SERIES = "tv"
    ALL = "all"


class TMDBSearchResult(BaseModel):
    """A search result from TMDB, shaped for the watchlist and link editor."""

    external_id: str
    title: str
    year: str
    poster: Optional[str]
    type: str  # "TV" or "Movie"
    country: str
    rating: float = 0.0


class TMDBExternalIds(BaseModel):
    """Ids of a TMDB title in other catalogs."""

    imdb_id: Optional[str] = None
    tvdb_id: Optional[int] = None


class TMDBDetails(BaseModel):
    """The parts of a TMDB title the background jobs copy onto watchlist entries."""

    title: Optional[str] = None
    poster: Optional[str] = None
    backdrop: Optional[str] = None
    backdrops: List[str] = []
    status: Optional[str] = None  # e.g. "Returning Series", "Ended"
    genres: List[str] = []


def _parse_search_result(item: dict) -> TMDBSearchResult:
    """Parse a movie or TV search result from TMDB."""
    poster_path = item.get("poster_path")
    date = item.get("release_date") or item.get("first_air_date") or ""
    countries = item.get("origin_country") or []

    return TMDBSearchResult(
        external_id=str(item["id"]),
        title=item.get("title") or item.get("name") or "Unknown",
        year=date[:4],
        poster=f"{POSTER_BASE}{poster_path}" if poster_path else None,
        type="TV" if item.get("media_type", "tv") == "tv" else "Movie",
        country=countries[0] if countries else "",
        rating=item.get("vote_average") or 0.0,
    )


def _search_sync(query: str, media_type: MediaType) -> List[TMDBSearchResult]:
    """Search TMDB (synchronous)."""
    search = tmdb.Search()
    try:
        if media_type == MediaType.MOVIE:
            search.movie(query=query)
            items = [{**m, "media_type": "movie"} for m in search.results]
        elif media_type == MediaType.SERIES:
            search.tv(query=query)
            items = [{**s, "media_type": "tv"} for s in search.results]
        else:
            search.multi(query=query)
            # Skip "person" results
            items = [i for i in search.results if i.get("media_type") in ("movie", "tv")]
        return [_parse_search_result(i) for i in items[:12]]
    except (requests.exceptions.RequestException, tmdb.APIError) as exc:
        logger.error("Error searching TMDB for '%s': %s", query, exc)
        return []
    except Exception as exc:
        logger.exception("Unexpected error searching TMDB for '%s': %s", query, exc)
        return []


async def search_tmdb(
    query: str, media_type: MediaType = MediaType.ALL
) -> List[TMDBSearchResult]:
    """Search TMDB based on media type."""
    if not query.strip():
        return []
    return await asyncio.to_thread(_search_sync, query, media_type)


def _api_for(media_type: str, tmdb_id: str):
    if media_type in ("movie", "Movie"):
        return tmdb.Movies(tmdb_id)
    return tmdb.TV(tmdb_id)


@cached(external_ids_cache)
def _get_external_ids_sync(media_type: str, tmdb_id: str) -> TMDBExternalIds:
    """Fetch IMDb/TVDB ids for a TMDB title (synchronous, cached)."""
    try:
        info = _api_for(media_type, tmdb_id).external_ids()
    except Exception as exc:
        logger.error("Failed to fetch external ids for %s %s: %s", media_type, tmdb_id, exc)
        raise TMDBError(f"Failed to fetch external ids for {media_type} {tmdb_id}", exc)

    return TMDBExternalIds(
        imdb_id=info.get("imdb_id") or None,
        tvdb_id=info.get("tvdb_id") or None,
    )


async def get_external_ids(media_type: str, tmdb_id: str) -> TMDBExternalIds:
    """Fetch IMDb/TVDB ids for a TMDB title (async)."""
    return await asyncio.to_thread(_get_external_ids_sync, media_type, str(tmdb_id))


@cached(original_title_cache)
def _get_original_title_sync(media_type: str, tmdb_id: str) -> Optional[str]:
    """Fetch the original-language title of a TMDB title (synchronous, cached)."""
    try:
        info = _api_for(media_type, tmdb_id).info()
    except Exception as exc:
        logger.error("Failed to fetch details for %s %s: %s", media_type, tmdb_id, exc)
        raise TMDBError(f"Failed to fetch details for {media_type} {tmdb_id}", exc)

    return info.get("original_title") or info.get("original_name") or None


async def get_original_title(media_type: str, tmdb_id: str) -> Optional[str]:
    """Fetch the original-language title of a TMDB title (async)."""
    return await asyncio.to_thread(_get_original_title_sync, media_type, str(tmdb_id))


def _parse_details(info: dict) -> TMDBDetails:
    poster_path = info.get("poster_path")
    backdrop_path = info.get("backdrop_path")
    images = (info.get("images") or {}).get("backdrops") or []
    return TMDBDetails(
        title=info.get("title") or info.get("name") or None,
        poster=f"{POSTER_BASE}{poster_path}" if poster_path else None,
        backdrop=f"{BACKDROP_BASE}{backdrop_path}" if backdrop_path else None,
        backdrops=[
            f"{BACKDROP_BASE}{image['file_path']}"
            for image in images
            if image.get("file_path")
        ],
        status=info.get("status") or None,
        genres=[g["name"] for g in info.get("genres") or [] if g.get("name")],
    )


@cached(details_cache)
def _get_details_sync(media_type: str, tmdb_id: str) -> TMDBDetails:
    """Fetch artwork, airing status and genres of a TMDB title (synchronous, cached)."""
    try:
        info = _api_for(media_type, tmdb_id).info(append_to_response="images")
    except Exception as exc:
        logger.error("Failed to fetch details for %s %s: %s", media_type, tmdb_id, exc)
        raise TMDBError(f"Failed to fetch details for {media_type} {tmdb_id}", exc)

    return _parse_details(info)


async def get_details(media_type: str, tmdb_id: str) -> TMDBDetails:
    """Fetch artwork, airing status and genres of a TMDB title (async)."""
    return await asyncio.to_thread(_get_details_sync, media_type, str(tmdb_id))
