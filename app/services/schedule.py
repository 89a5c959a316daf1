"""Episode schedule built from the user's tracked shows.

Cached episodes are loaded in one query. Shows with nothing cached are
fetched from TVmaze in batches of three so the provider's limit of 20
requests per 10 seconds is never hit, and each batch settles before the next
one starts.
"""

import logging
from collections import defaultdict
from typing import Iterable

from sqlalchemy import delete
from sqlmodel import select

from app.clients.tvmaze import TVMazeClient
from app.core.batching import run_in_batches
from app.core.database import Database
from app.models.media import EpisodeInfo, NextEpisode, ScheduleEntry
from app.models.tables import CachedEpisode, UserMedia, WatchStatus
from app.services.tmdb import TMDBError, get_external_ids

logger = logging.getLogger(__name__)

BATCH_SIZE = 3

SCHEDULE_STATUSES = [
    WatchStatus.WATCHING.value,
    WatchStatus.PLAN_TO_WATCH.value,
    WatchStatus.COMPLETED.value,
]
REFRESH_STATUSES = [WatchStatus.WATCHING.value, WatchStatus.PLAN_TO_WATCH.value]


def _to_entry(show: UserMedia, ep: EpisodeInfo | CachedEpisode) -> ScheduleEntry:
    return ScheduleEntry(
        title=show.title or "Unknown",
        poster=show.poster,
        season_number=ep.season_number,
        episode_number=ep.episode_number,
        episode_name=ep.name or None,
        air_date=ep.air_date,
        media_id=show.show_key,
    )


class ScheduleService:
    def __init__(self, db: Database, tvmaze: TVMazeClient, countries: Iterable[str]):
        self.db = db
        self.tvmaze = tvmaze
        self.countries = list(countries)

    def tracked_shows(self, user_id: str, statuses: list[str]) -> list[UserMedia]:
        """The user's TV entries in ``statuses``, one per show."""
        with self.db.session() as session:
            items = session.exec(
                select(UserMedia)
                .where(UserMedia.user_id == user_id)
                .where(UserMedia.status.in_(statuses))
                .where(UserMedia.media_type == "TV")
                .where(UserMedia.origin_country.in_(self.countries))
                .order_by(UserMedia.season)
            ).all()

        shows: dict[str, UserMedia] = {}
        for item in items:
            shows.setdefault(item.show_key, item)
        return list(shows.values())

    async def get_schedule_entries(self, user_id: str) -> list[ScheduleEntry]:
        """All known episodes of the user's tracked shows, oldest air date first."""
        shows = self.tracked_shows(user_id, SCHEDULE_STATUSES)
        if not shows:
            return []

        with self.db.session() as session:
            cached_rows = session.exec(
                select(CachedEpisode).where(
                    CachedEpisode.show_key.in_([s.show_key for s in shows])
                )
            ).all()

        cached: dict[str, list[CachedEpisode]] = defaultdict(list)
        for row in cached_rows:
            cached[row.show_key].append(row)

        entries: list[ScheduleEntry] = []
        misses = []
        for show in shows:
            if cached.get(show.show_key):
                entries.extend(
                    _to_entry(show, ep) for ep in cached[show.show_key] if ep.air_date
                )
            else:
                misses.append(show)

        if misses:
            logger.info(
                "Schedule for %s: %s cached shows, fetching %s",
                user_id,
                len(shows) - len(misses),
                len(misses),
            )
            results = await run_in_batches(misses, BATCH_SIZE, self._fetch_and_store)
            for show, result in zip(misses, results):
                if isinstance(result, Exception):
                    logger.error(
                        f"Failed to get schedule for {show.title}: {result}",
                        exc_info=result,
                    )
                    continue
                entries.extend(_to_entry(show, ep) for ep in result if ep.air_date)

        # ISO dates sort correctly as strings
        return sorted(entries, key=lambda e: e.air_date)

    async def refresh_schedule(self, user_id: str) -> int:
        """Drop and refetch cached episodes for Watching/Plan to Watch shows."""
        shows = self.tracked_shows(user_id, REFRESH_STATUSES)
        if not shows:
            return 0

        with self.db.session() as session:
            session.execute(
                delete(CachedEpisode).where(
                    CachedEpisode.show_key.in_([s.show_key for s in shows])
                )
            )
            session.commit()

        results = await run_in_batches(shows, BATCH_SIZE, self._fetch_and_store)
        stored = 0
        for show, result in zip(shows, results):
            if isinstance(result, Exception):
                logger.error(f"Failed to refresh schedule for {show.title}: {result}")
                continue
            stored += len(result)
        return stored

    async def get_next_episode(self, tmdb_id: str, title: str | None = None) -> NextEpisode | None:
        """Next episode to air for a TMDB show."""
        imdb_id, tvdb_id = await self._resolve_ids("TMDB", tmdb_id)
        return await self.tvmaze.get_next_episode(
            imdb_id=imdb_id, tvdb_id=tvdb_id, name=title
        )

    async def _resolve_ids(self, source: str, external_id: str) -> tuple[str | None, int | None]:
        if source.upper() != "TMDB":
            return None, None
        try:
            ids = await get_external_ids("tv", external_id)
        except TMDBError as e:
            # TVmaze can still be searched by name
            logger.warning(f"Could not resolve external ids for {external_id}: {e}")
            return None, None
        return ids.imdb_id, ids.tvdb_id

    async def _fetch_and_store(self, show: UserMedia) -> list[EpisodeInfo]:
        imdb_id, tvdb_id = await self._resolve_ids(show.source, show.external_id)
        episodes = await self.tvmaze.get_all_episodes(
            imdb_id=imdb_id, tvdb_id=tvdb_id, name=show.title
        )
        self._store_episodes(show.show_key, episodes)
        return episodes

    def _store_episodes(self, show_key: str, episodes: list[EpisodeInfo]) -> int:
        """Insert episodes not cached yet; existing (season, episode) pairs are skipped."""
        if not episodes:
            return 0

        with self.db.session() as session:
            existing = {
                (season, number)
                for season, number in session.exec(
                    select(CachedEpisode.season_number, CachedEpisode.episode_number).where(
                        CachedEpisode.show_key == show_key
                    )
                ).all()
            }
            new_rows = []
            for ep in episodes:
                key = (ep.season_number, ep.episode_number)
                if key in existing:
                    continue
                existing.add(key)
                new_rows.append(
                    CachedEpisode(
                        show_key=show_key,
                        season_number=ep.season_number,
                        episode_number=ep.episode_number,
                        name=ep.name,
                        air_date=ep.air_date,
                        airstamp=ep.airstamp,
                        runtime=ep.runtime,
                    )
                )
            session.add_all(new_rows)
            session.commit()
        return len(new_rows)
