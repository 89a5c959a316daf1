"""MyDramaList enrichment backed by a database cache.

Reads go through ``MdlService.get_mdl_data``:

* fresh row with cast      -> served from the database, no outbound call
* fresh row, cast missing  -> cast refetched by the stored slug (no search)
* stale row pinned by user -> details and cast refetched by the pinned slug
* otherwise                -> Kuryana title search, year match, full fetch, upsert

Rows are fresh for seven days after their last successful fetch. Upstream
failures degrade to partial data or ``None``; database errors propagate.
"""

import asyncio
import logging
import re
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import delete
from sqlmodel import select

from app.clients.kuryana import KuryanaClient, parse_details
from app.core.batching import run_in_batches
from app.core.database import Database
from app.models.media import KuryanaDrama, MdlCast, MdlData
from app.models.tables import CachedMdlData, MdlSeasonLink, UserMedia, as_utc, utcnow
from app.services.tmdb import TMDBError, get_original_title

logger = logging.getLogger(__name__)

CACHE_TTL = timedelta(days=7)
WARM_BATCH_SIZE = 3
WARM_BATCH_DELAY = 0.9  # seconds between warm-up batches


def normalize_title(s: str) -> str:
    """Lowercase and keep only letters, digits and non-latin characters."""
    return re.sub(r"[^a-z0-9\u0080-\uffff]", "", s.lower())


def sanitize_for_search(s: str) -> str:
    """Drop leading symbols Kuryana cannot search on ("#Alive" -> "Alive")."""
    return re.sub(r"^[^a-zA-Z0-9\u0080-\uffff]+", "", s).strip()


def best_year_match(
    dramas: list[KuryanaDrama], target_year: int, queries: list[str]
) -> Optional[KuryanaDrama]:
    """Pick the drama released in ``target_year``, or within a year of it.

    Exact-year candidates always win over off-by-one candidates. Among
    several candidates the title closest to one of ``queries`` is chosen,
    falling back to the first candidate.
    """
    by_year = [d for d in dramas if d.year == target_year]
    by_year_fuzzy = [
        d for d in dramas if d.year is not None and abs(d.year - target_year) <= 1
    ]
    candidates = by_year or by_year_fuzzy
    if not candidates:
        return None
    if len(candidates) == 1:
        return candidates[0]

    norm_queries = [q for q in (normalize_title(q) for q in queries) if q]
    for q in norm_queries:
        for d in candidates:
            if normalize_title(d.title) == q:
                return d
    for q in norm_queries:
        for d in candidates:
            dt = normalize_title(d.title)
            if dt and (q in dt or dt in q):
                return d
    return candidates[0]


def is_fresh(cached_at, now=None) -> bool:
    if cached_at is None:
        return False
    return as_utc(now or utcnow()) - as_utc(cached_at) < CACHE_TTL


def parse_cast_json(raw: Any) -> Optional[MdlCast]:
    if not raw or not isinstance(raw, dict):
        return None
    try:
        return MdlCast.model_validate(raw)
    except ValueError:
        logger.warning("Discarding malformed cached cast payload")
        return None


def _row_to_data(row: CachedMdlData | MdlSeasonLink, cast: Optional[MdlCast]) -> MdlData:
    return MdlData(
        mdl_slug=row.mdl_slug,
        mdl_rating=row.mdl_rating,
        mdl_ranking=row.mdl_ranking,
        mdl_popularity=row.mdl_popularity,
        tags=list(row.tags or []),
        cast=cast,
    )


def _apply_data(row: CachedMdlData | MdlSeasonLink, data: MdlData) -> None:
    row.mdl_slug = data.mdl_slug
    row.mdl_rating = data.mdl_rating
    row.mdl_ranking = data.mdl_ranking
    row.mdl_popularity = data.mdl_popularity
    row.tags = list(data.tags)
    row.cast_json = data.cast.model_dump() if data.cast else None
    row.cached_at = utcnow()


class MdlService:
    """Cache-merge logic for drama-database metadata."""

    def __init__(self, db: Database, kuryana: KuryanaClient):
        self.db = db
        self.kuryana = kuryana
        self._background: set[asyncio.Task] = set()

    # --- Reads ---

    async def get_mdl_data(
        self,
        tmdb_external_id: str,
        title: str,
        year: str | int | None,
        native_title: str | None = None,
    ) -> Optional[MdlData]:
        """Return enriched drama-database data for a title, or None."""
        with self.db.session() as session:
            cached = session.get(CachedMdlData, tmdb_external_id)

        if cached is not None and is_fresh(cached.cached_at):
            cast = parse_cast_json(cached.cast_json)
            if cast is not None and not cast.is_empty:
                return _row_to_data(cached, cast)
            return await self._refresh_cast(cached)

        if cached is not None and cached.is_manual:
            return await self._refetch_pinned(cached)

        return await self._search_and_cache(tmdb_external_id, title, year, native_title)

    async def get_mdl_season_data(
        self,
        tmdb_external_id: str,
        title: str,
        year: str | int | None,
        season: int,
        native_title: str | None = None,
    ) -> Optional[MdlData]:
        """Season-specific data when a season link exists, show-level otherwise."""
        if season > 1:
            data = await self._get_season_link_data(tmdb_external_id, season)
            if data is not None:
                return data
        return await self.get_mdl_data(tmdb_external_id, title, year, native_title)

    async def search_dramas(self, query: str) -> list[KuryanaDrama]:
        """Kuryana search for the manual link editor."""
        return await self.kuryana.search(query)

    async def get_native_title(self, mdl_slug: str) -> Optional[str]:
        """Native-script title of a MyDramaList entry, or None."""
        return await self.kuryana.get_native_title(mdl_slug)

    # --- Writes ---

    async def set_mdl_slug(
        self, tmdb_external_id: str, mdl_slug: str, season: int | None = None
    ) -> None:
        """Pin a user-chosen slug, then refetch its data in the background.

        The slug is stored before any network call. If the refetch fails the
        pin stays and the data is fetched on the next read.
        """
        mdl_slug = (mdl_slug or "").strip()
        if not tmdb_external_id or not mdl_slug:
            raise ValueError("Invalid MDL slug")

        with self.db.session() as session:
            if season is not None and season > 1:
                row = session.get(MdlSeasonLink, (tmdb_external_id, season))
                if row is None:
                    row = MdlSeasonLink(
                        tmdb_external_id=tmdb_external_id,
                        season=season,
                        mdl_slug=mdl_slug,
                    )
            else:
                row = session.get(CachedMdlData, tmdb_external_id)
                if row is None:
                    row = CachedMdlData(
                        tmdb_external_id=tmdb_external_id, mdl_slug=mdl_slug
                    )
                row.is_manual = True
            row.mdl_slug = mdl_slug
            row.mdl_rating = None
            row.mdl_ranking = None
            row.mdl_popularity = None
            row.tags = None
            row.cast_json = None
            row.cached_at = None
            session.add(row)
            session.commit()

        self._spawn(self._refresh_pinned(tmdb_external_id, mdl_slug, season))

    async def reset(self, tmdb_external_id: str) -> int:
        """Delete every cached row for a title so the next read searches again."""
        with self.db.session() as session:
            deleted = session.execute(
                delete(CachedMdlData).where(
                    CachedMdlData.tmdb_external_id == tmdb_external_id
                )
            ).rowcount
            deleted += session.execute(
                delete(MdlSeasonLink).where(
                    MdlSeasonLink.tmdb_external_id == tmdb_external_id
                )
            ).rowcount
            session.commit()

        logger.info("Reset MDL cache for %s (%s rows)", tmdb_external_id, deleted)
        return deleted

    async def refetch(self, tmdb_external_id: str) -> str:
        """Refresh a cached row by its known slug.

        Returns "refetched", "unchanged" (upstream had no data) or "cleared"
        (no slug known, or the fetch raised; the next read searches again).
        """
        with self.db.session() as session:
            row = session.get(CachedMdlData, tmdb_external_id)

        if row is None or not row.mdl_slug:
            await self.reset(tmdb_external_id)
            return "cleared"

        try:
            data = await self._fetch_by_slug(row.mdl_slug)
        except Exception as e:
            logger.error(f"MDL refetch failed for {tmdb_external_id}, clearing cache: {e}")
            with self.db.session() as session:
                session.execute(
                    delete(CachedMdlData).where(
                        CachedMdlData.tmdb_external_id == tmdb_external_id
                    )
                )
                session.commit()
            return "cleared"

        if data is None:
            return "unchanged"
        self._store_show(tmdb_external_id, data)
        return "refetched"

    async def warm_cache(self, title_lookup: bool = True) -> dict[str, int]:
        """Fill the cache for every TMDB watchlist title lacking fresh data.

        With ``title_lookup`` the TMDB original title is searched alongside
        the English one.
        """
        with self.db.session() as session:
            items = session.exec(
                select(UserMedia).where(UserMedia.source.in_(["TMDB", "tmdb"]))
            ).all()
            fresh_ids = {
                row.tmdb_external_id
                for row in session.exec(select(CachedMdlData)).all()
                if is_fresh(row.cached_at)
            }

        seen: set[str] = set()
        to_fetch = []
        for item in items:
            if item.external_id in seen or item.external_id in fresh_ids:
                continue
            seen.add(item.external_id)
            to_fetch.append(item)

        logger.info(
            "Warming MDL cache: %s fresh, %s to fetch", len(fresh_ids), len(to_fetch)
        )

        async def warm(item: UserMedia) -> bool:
            native_title = None
            if title_lookup:
                native_title = await self._original_title(item)
            data = await self.get_mdl_data(
                item.external_id, item.title or "", item.year, native_title
            )
            if data is None:
                logger.info("No MDL match for %s (%s)", item.title, item.year)
                return False
            return True

        results = await run_in_batches(
            to_fetch, WARM_BATCH_SIZE, warm, delay=WARM_BATCH_DELAY
        )
        for item, result in zip(to_fetch, results):
            if isinstance(result, Exception):
                logger.error(f"Error warming {item.title}: {result}", exc_info=result)
        cached = sum(1 for r in results if r is True)
        return {"cached": cached, "failed": len(results) - cached}

    # --- Background tasks ---

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait for pending background refetches."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # --- Internals ---

    @staticmethod
    async def _original_title(item: UserMedia) -> Optional[str]:
        try:
            return await get_original_title(
                "movie" if item.media_type == "Movie" else "tv", item.external_id
            )
        except TMDBError as e:
            logger.warning(f"No original title for {item.external_id}: {e}")
            return None

    async def _fetch_by_slug(self, mdl_slug: str) -> Optional[MdlData]:
        details, cast = await asyncio.gather(
            self.kuryana.get_details(mdl_slug),
            self.kuryana.get_cast(mdl_slug),
        )
        if not details:
            return None
        return MdlData(mdl_slug=mdl_slug, cast=cast, **parse_details(details))

    async def _find_match(
        self, title: str, target_year: int, native_title: str | None
    ) -> Optional[KuryanaDrama]:
        queries = [q for q in (native_title, title) if q]
        search_native = sanitize_for_search(native_title) if native_title else ""
        search_english = sanitize_for_search(title) or title

        async def no_results() -> list[KuryanaDrama]:
            return []

        native_results, english_results = await asyncio.gather(
            self.kuryana.search(search_native) if search_native else no_results(),
            self.kuryana.search(search_english),
        )

        # Native results first so they win ties
        seen: set[str] = set()
        dramas = []
        for d in [*native_results, *english_results]:
            if d.slug not in seen:
                seen.add(d.slug)
                dramas.append(d)

        return best_year_match(dramas, target_year, queries)

    async def _search_and_cache(
        self,
        tmdb_external_id: str,
        title: str,
        year: str | int | None,
        native_title: str | None,
    ) -> Optional[MdlData]:
        try:
            target_year = int(str(year)[:4])
        except (TypeError, ValueError):
            return None

        try:
            match = await self._find_match(title, target_year, native_title)
            if match is None:
                return None
            data = await self._fetch_by_slug(match.slug)
        except Exception as e:
            logger.error(f"Failed to fetch MDL data for {title}: {e}", exc_info=e)
            return None

        if data is None:
            return None
        self._store_show(tmdb_external_id, data)
        return data

    async def _refresh_cast(self, cached: CachedMdlData) -> MdlData:
        """Partial hit: metadata is fresh, only the cast is refetched."""
        try:
            cast = await self.kuryana.get_cast(cached.mdl_slug)
        except Exception as e:
            logger.warning(f"Cast refetch failed for {cached.mdl_slug}: {e}")
            return _row_to_data(cached, None)

        if cast is not None and not cast.is_empty:
            with self.db.session() as session:
                row = session.get(CachedMdlData, cached.tmdb_external_id)
                if row is not None:
                    row.cast_json = cast.model_dump()
                    session.add(row)
                    session.commit()
        return _row_to_data(cached, cast)

    async def _refetch_pinned(self, cached: CachedMdlData) -> MdlData:
        try:
            data = await self._fetch_by_slug(cached.mdl_slug)
        except Exception as e:
            logger.warning(f"Refetch of pinned slug {cached.mdl_slug} failed: {e}")
            data = None

        if data is None:
            return _row_to_data(cached, parse_cast_json(cached.cast_json))
        self._store_show(cached.tmdb_external_id, data)
        return data

    async def _get_season_link_data(
        self, tmdb_external_id: str, season: int
    ) -> Optional[MdlData]:
        with self.db.session() as session:
            row = session.get(MdlSeasonLink, (tmdb_external_id, season))
        if row is None:
            return None

        cast = parse_cast_json(row.cast_json)
        has_data = bool(
            row.mdl_rating or row.mdl_ranking or (cast is not None and not cast.is_empty)
        )
        if has_data and is_fresh(row.cached_at):
            return _row_to_data(row, cast)

        try:
            data = await self._fetch_by_slug(row.mdl_slug)
        except Exception as e:
            logger.warning(f"Season {season} refetch failed for {row.mdl_slug}: {e}")
            data = None

        if data is None:
            return None
        self._store_season(tmdb_external_id, season, data)
        return data

    async def _refresh_pinned(
        self, tmdb_external_id: str, mdl_slug: str, season: int | None
    ) -> None:
        try:
            data = await self._fetch_by_slug(mdl_slug)
        except Exception as e:
            logger.warning(f"Background MDL fetch failed for {mdl_slug}: {e}")
            return
        if data is None:
            logger.info("No MDL data yet for pinned slug %s", mdl_slug)
            return

        if season is not None and season > 1:
            self._store_season(tmdb_external_id, season, data)
        else:
            self._store_show(tmdb_external_id, data, only_if_slug=mdl_slug)

    def _store_show(
        self,
        tmdb_external_id: str,
        data: MdlData,
        only_if_slug: str | None = None,
    ) -> None:
        with self.db.session() as session:
            row = session.get(CachedMdlData, tmdb_external_id)
            if only_if_slug is not None and (
                row is None or row.mdl_slug != only_if_slug
            ):
                # Reset or re-pinned while this fetch was in flight
                return
            if row is None:
                row = CachedMdlData(
                    tmdb_external_id=tmdb_external_id, mdl_slug=data.mdl_slug
                )
            _apply_data(row, data)
            session.add(row)
            session.commit()

    def _store_season(self, tmdb_external_id: str, season: int, data: MdlData) -> None:
        with self.db.session() as session:
            row = session.get(MdlSeasonLink, (tmdb_external_id, season))
            if row is None or row.mdl_slug != data.mdl_slug:
                return
            _apply_data(row, data)
            session.add(row)
            session.commit()
