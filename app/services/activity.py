"""Activity log: live events, cursor pagination and backfill."""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import and_, delete, or_
from sqlmodel import Session, col, select

from app.core.database import Database
from app.models.media import ActivityItem, ActivityPage
from app.models.tables import ActivityAction, ActivityLog, UserMedia, WatchStatus, utcnow

logger = logging.getLogger(__name__)

PAGE_SIZE = 30

TERMINAL_STATUSES = {WatchStatus.COMPLETED.value, WatchStatus.DROPPED.value}

# The real status before a terminal change is not stored anywhere. Backfilled
# STATUS_CHANGED events use this value, the one earlier exports contain.
BACKFILL_PRIOR_STATUS = WatchStatus.WATCHING.value


def build_log(
    entry: UserMedia,
    action: ActivityAction,
    payload: dict[str, Any] | None = None,
    created_at: datetime | None = None,
    is_backfill: bool = False,
) -> ActivityLog:
    """An activity row describing ``entry``, not yet added to a session."""
    return ActivityLog(
        user_id=entry.user_id,
        user_media_id=entry.id,
        external_id=entry.external_id,
        source=entry.source,
        media_type=entry.media_type,
        title=entry.title or "",
        poster=entry.poster,
        action=action.value,
        payload=payload,
        is_backfill=is_backfill,
        created_at=created_at or utcnow(),
    )


class ActivityService:
    def __init__(self, db: Database):
        self.db = db

    @staticmethod
    def record(
        session: Session,
        entry: UserMedia,
        action: ActivityAction,
        payload: dict[str, Any] | None = None,
    ) -> ActivityLog:
        """Append a live event in the caller's transaction."""
        log = build_log(entry, action, payload)
        session.add(log)
        return log

    def get_activity_log(
        self,
        user_id: str,
        cursor: str | None = None,
        actions: list[str] | None = None,
    ) -> ActivityPage:
        """Newest-first page of the user's activity.

        ``cursor`` is the id of the last item of the previous page; the page
        starts right after it.
        """
        with self.db.session() as session:
            query = select(ActivityLog).where(ActivityLog.user_id == user_id)
            if actions:
                query = query.where(col(ActivityLog.action).in_(actions))

            if cursor:
                anchor = session.get(ActivityLog, cursor)
                if anchor is None or anchor.user_id != user_id:
                    raise ValueError(f"Unknown cursor: {cursor}")
                query = query.where(
                    or_(
                        col(ActivityLog.created_at) < anchor.created_at,
                        and_(
                            col(ActivityLog.created_at) == anchor.created_at,
                            col(ActivityLog.id) < anchor.id,
                        ),
                    )
                )

            logs = session.exec(
                query.order_by(
                    col(ActivityLog.created_at).desc(), col(ActivityLog.id).desc()
                ).limit(PAGE_SIZE + 1)
            ).all()

        has_more = len(logs) > PAGE_SIZE
        items = logs[:PAGE_SIZE]
        return ActivityPage(
            items=[ActivityItem.model_validate(log) for log in items],
            next_cursor=items[-1].id if has_more else None,
        )

    def delete_activity_log(self, user_id: str, log_id: str) -> None:
        with self.db.session() as session:
            log = session.get(ActivityLog, log_id)
            if log is None or log.user_id != user_id:
                raise LookupError(f"Activity {log_id} not found")
            session.delete(log)
            session.commit()

    def backfill_activity_log(self, user_id: str) -> int:
        """Regenerate the user's synthesized history from the watchlist.

        Earlier backfill rows are replaced in the same transaction; live rows
        are left alone. Entries never touched by the user (no
        ``last_watched_at``) are skipped, since sync jobs rewrite every other
        timestamp.
        """
        with self.db.session() as session:
            session.execute(
                delete(ActivityLog).where(
                    col(ActivityLog.user_id) == user_id,
                    col(ActivityLog.is_backfill).is_(True),
                )
            )

            entries = session.exec(
                select(UserMedia).where(UserMedia.user_id == user_id)
            ).all()

            logs: list[ActivityLog] = []
            for entry in entries:
                timestamp = entry.last_watched_at
                if timestamp is None:
                    continue

                def add(action: ActivityAction, payload: dict[str, Any] | None = None):
                    logs.append(
                        build_log(entry, action, payload, timestamp, is_backfill=True)
                    )

                add(ActivityAction.ADDED, {"status": entry.status, "season": entry.season})
                if entry.progress > 0:
                    add(ActivityAction.PROGRESS, {"from": 0, "to": entry.progress})
                # 0 means unrated
                if entry.score is not None and entry.score > 0:
                    add(ActivityAction.SCORED, {"from": None, "to": entry.score})
                if entry.notes and entry.notes.strip():
                    add(ActivityAction.NOTED)
                if entry.status in TERMINAL_STATUSES:
                    add(
                        ActivityAction.STATUS_CHANGED,
                        {"from": BACKFILL_PRIOR_STATUS, "to": entry.status},
                    )

            session.add_all(logs)
            session.commit()

        logger.info("Backfilled %s activity rows for %s", len(logs), user_id)
        return len(logs)
