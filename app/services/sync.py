"""Daily background sync: fill in artwork and airing status from TMDB.

Tasks run one after another, with a pause between them and between TMDB
lookups. A failed lookup skips that show; a failed task is reported in the
run's results without stopping the next task. The outcome of the latest run
is kept in the ``SyncLog`` row ``daily-sync``.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Optional

from sqlmodel import col, select

from app.core.database import Database
from app.models.media import SyncInfo, SyncReport, SyncTaskResult
from app.models.tables import SyncLog, UserMedia, utcnow
from app.services.tmdb import TMDBDetails, TMDBError, get_details

logger = logging.getLogger(__name__)

SYNC_LOG_ID = "daily-sync"
TASK_DELAY = 2.0  # seconds between tasks
LOOKUP_DELAY = 0.15  # seconds after each TMDB lookup


def group_by_show(items: list[UserMedia]) -> dict[str, list[UserMedia]]:
    groups: dict[str, list[UserMedia]] = {}
    for item in items:
        groups.setdefault(item.show_key, []).append(item)
    return groups


def pick_backdrops(details: TMDBDetails, count: int) -> list[Optional[str]]:
    """Backdrops for ``count`` seasons of one show, in season order.

    The first season gets the main backdrop (or the poster); later seasons
    cycle through the alternate backdrops so they look different.
    """
    main = details.backdrop or details.poster
    alternates = [b for b in details.backdrops if b != main]
    picks = []
    for i in range(count):
        if i == 0 or not alternates:
            picks.append(main)
        else:
            picks.append(alternates[(i - 1) % len(alternates)])
    return picks


class SyncService:
    def __init__(self, db: Database):
        self.db = db

    async def run_daily_sync(self) -> SyncReport:
        start = time.monotonic()
        tasks = [await self._run_task("backfill-backdrops", self.backfill_backdrops)]
        await asyncio.sleep(TASK_DELAY)
        tasks.append(await self._run_task("backfill-airing", self.backfill_airing_status))

        report = SyncReport(
            tasks=tasks,
            total_duration=time.monotonic() - start,
            timestamp=utcnow(),
        )
        self._save_report(report)
        logger.info(
            "Daily sync finished in %.2fs: %s",
            report.total_duration,
            ", ".join(f"{t.task}={t.count}" for t in tasks),
        )
        return report

    def get_last_sync_info(self) -> Optional[SyncInfo]:
        with self.db.session() as session:
            row = session.get(SyncLog, SYNC_LOG_ID)
        if row is None:
            return None
        results = SyncReport.model_validate(row.results) if row.results else None
        return SyncInfo(last_sync=row.last_sync, results=results)

    async def backfill_backdrops(self) -> int:
        """Give every entry without a backdrop one from its show's artwork."""
        with self.db.session() as session:
            items = session.exec(
                select(UserMedia).where(col(UserMedia.backdrop).is_(None))
            ).all()

        count = 0
        for key, group in group_by_show(items).items():
            details = await self._lookup(group[0], key)
            if details is None:
                continue

            group.sort(key=lambda item: item.season)
            picks = pick_backdrops(details, len(group))
            with self.db.session() as session:
                for item, backdrop in zip(group, picks):
                    row = session.get(UserMedia, item.id)
                    if row is None:
                        continue
                    row.backdrop = backdrop
                    row.title = row.title or details.title
                    row.poster = row.poster or details.poster
                    session.add(row)
                    count += 1
                session.commit()
        return count

    async def backfill_airing_status(self) -> int:
        """Copy TMDB's airing status onto TV entries that have none."""
        with self.db.session() as session:
            items = session.exec(
                select(UserMedia).where(
                    UserMedia.media_type == "TV",
                    col(UserMedia.airing_status).is_(None),
                )
            ).all()

        count = 0
        for key, group in group_by_show(items).items():
            details = await self._lookup(group[0], key)
            if details is None or not details.status:
                continue

            with self.db.session() as session:
                for item in group:
                    row = session.get(UserMedia, item.id)
                    if row is None:
                        continue
                    row.airing_status = details.status
                    session.add(row)
                    count += 1
                session.commit()
        return count

    async def _lookup(self, item: UserMedia, key: str) -> Optional[TMDBDetails]:
        try:
            return await get_details(item.media_type, item.external_id)
        except TMDBError as e:
            logger.error(f"Failed to fetch TMDB details for show {key}: {e}")
            return None
        finally:
            await asyncio.sleep(LOOKUP_DELAY)

    @staticmethod
    async def _run_task(name: str, task: Callable[[], Awaitable[int]]) -> SyncTaskResult:
        start = time.monotonic()
        try:
            count = await task()
        except Exception as e:
            logger.error(f"Sync task {name} failed: {e}", exc_info=True)
            return SyncTaskResult(
                task=name,
                success=False,
                error=str(e) or type(e).__name__,
                duration=time.monotonic() - start,
            )
        return SyncTaskResult(
            task=name, success=True, count=count, duration=time.monotonic() - start
        )

    def _save_report(self, report: SyncReport) -> None:
        with self.db.session() as session:
            row = session.get(SyncLog, SYNC_LOG_ID) or SyncLog(id=SYNC_LOG_ID)
            row.last_sync = utcnow()
            row.results = report.model_dump(mode="json")
            session.add(row)
            session.commit()
