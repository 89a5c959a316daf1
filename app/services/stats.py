"""Dashboard aggregates over a user's watchlist, and the genre backfill feeding them."""

import asyncio
import logging
import math
from collections import Counter

from sqlmodel import col, select

from app.core.database import Database
from app.models.media import (
    ContinueWatchingItem,
    DashboardStats,
    GenreCount,
    RatingBucket,
    TopGenre,
)
from app.models.tables import UserMedia, WatchStatus
from app.services.tmdb import TMDBError, get_details

logger = logging.getLogger(__name__)

# Runtime estimates, in minutes
MOVIE_MINUTES = 120
EPISODE_MINUTES = 45

TOP_GENRES = 5
CONTINUE_WATCHING_LIMIT = 6
GENRE_BACKFILL_DELAY = 0.1  # seconds between TMDB lookups


def split_genres(genres: str | None) -> list[str]:
    return [g.strip() for g in (genres or "").split(",") if g.strip()]


def round_half_up(score: float) -> int:
    return math.floor(score + 0.5)


class StatsService:
    def __init__(self, db: Database):
        self.db = db

    def get_dashboard_stats(self, user_id: str) -> DashboardStats:
        with self.db.session() as session:
            items = session.exec(
                select(UserMedia).where(UserMedia.user_id == user_id)
            ).all()

        if not items:
            return DashboardStats()

        movies = [i for i in items if i.media_type == "Movie"]
        tv = [i for i in items if i.media_type == "TV"]

        # A movie counts as watched once it is completed or has any progress
        movie_minutes = sum(
            MOVIE_MINUTES
            for m in movies
            if m.status == WatchStatus.COMPLETED.value or m.progress > 0
        )
        total_episodes = sum(t.progress for t in tv)

        completed = sum(1 for i in items if i.status == WatchStatus.COMPLETED.value)
        started = sum(1 for i in items if i.status != WatchStatus.PLAN_TO_WATCH.value)
        completion_rate = completed / started * 100 if started else 0.0

        genre_counts = Counter(g for i in items for g in split_genres(i.genres))
        breakdown = [
            GenreCount(name=name, value=value)
            for name, value in genre_counts.most_common()
        ]
        top_genres = [
            TopGenre(name=g.name, count=g.value, percentage=g.value / len(items) * 100)
            for g in breakdown[:TOP_GENRES]
        ]

        ratings = [RatingBucket(rating=r) for r in range(11)]
        for i in items:
            if i.score is None:
                continue
            bucket = round_half_up(i.score)
            if 0 <= bucket <= 10:
                ratings[bucket].count += 1

        return DashboardStats(
            total_movies=len(movies),
            total_tv=len(tv),
            total_episodes=total_episodes,
            watch_time_minutes=movie_minutes + total_episodes * EPISODE_MINUTES,
            completion_rate=completion_rate,
            genre_breakdown=breakdown,
            top_genres=top_genres,
            rating_distribution=ratings,
        )

    def get_continue_watching(self, user_id: str) -> list[ContinueWatchingItem]:
        """Shows in progress, most recently updated first."""
        with self.db.session() as session:
            items = session.exec(
                select(UserMedia)
                .where(
                    UserMedia.user_id == user_id,
                    UserMedia.media_type == "TV",
                    UserMedia.status == WatchStatus.WATCHING.value,
                    UserMedia.progress > 0,
                )
                .order_by(col(UserMedia.updated_at).desc())
                .limit(CONTINUE_WATCHING_LIMIT)
            ).all()

        return [
            ContinueWatchingItem(
                id=item.id,
                external_id=item.external_id,
                source=item.source,
                title=item.title,
                poster=item.poster or "",
                backdrop=item.backdrop,
                progress=item.progress,
                total_ep=item.total_ep or 1,
            )
            for item in items
        ]

    async def backfill_genres(self, user_id: str) -> int:
        """Copy TMDB genres onto the user's entries that have none.

        Lookups run one at a time; a failed lookup skips that entry.
        Returns the number of entries updated.
        """
        with self.db.session() as session:
            items = session.exec(
                select(UserMedia).where(
                    UserMedia.user_id == user_id, col(UserMedia.genres).is_(None)
                )
            ).all()

        count = 0
        for item in items:
            try:
                details = await get_details(item.media_type, item.external_id)
            except TMDBError as e:
                logger.error(f"Failed to backfill genres for {item.title}: {e}")
                continue

            if details.genres:
                with self.db.session() as session:
                    row = session.get(UserMedia, item.id)
                    if row is not None:
                        row.genres = ",".join(details.genres)
                        session.add(row)
                        session.commit()
                        count += 1
            await asyncio.sleep(GENRE_BACKFILL_DELAY)

        logger.info(f"Backfilled genres for {count} of {len(items)} entries")
        return count
