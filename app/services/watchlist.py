"""Watchlist CRUD and import."""

import json
import logging
from typing import Any

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from app.core.database import Database
from app.models.media import ImportItem, ImportResult, WatchlistItemIn
from app.models.tables import ActivityAction, UserMedia, WatchStatus, utcnow
from app.services.activity import ActivityService

logger = logging.getLogger(__name__)

VALID_STATUSES = {s.value for s in WatchStatus}

STATUS_WEIGHT = {
    WatchStatus.WATCHING.value: 1,
    WatchStatus.COMPLETED.value: 2,
    WatchStatus.PLAN_TO_WATCH.value: 3,
    WatchStatus.ON_HOLD.value: 4,
    WatchStatus.DROPPED.value: 5,
}

METADATA_FIELDS = (
    "title",
    "poster",
    "backdrop",
    "year",
    "origin_country",
    "total_ep",
)


def _normalize_media_type(value: str | None) -> str:
    if value and value.lower() == "movie":
        return "Movie"
    return "TV"


def _find_entry(
    session: Session, user_id: str, external_id: str, source: str, season: int
) -> UserMedia | None:
    return session.exec(
        select(UserMedia).where(
            UserMedia.user_id == user_id,
            UserMedia.external_id == external_id,
            UserMedia.source == source,
            UserMedia.season == season,
        )
    ).first()


class WatchlistService:
    def __init__(self, db: Database, activity: ActivityService):
        self.db = db
        self.activity = activity

    def get_watchlist(self, user_id: str) -> list[UserMedia]:
        """Entries ordered by status, then title, then season."""
        with self.db.session() as session:
            items = session.exec(
                select(UserMedia).where(UserMedia.user_id == user_id)
            ).all()

        return sorted(
            items,
            key=lambda i: (STATUS_WEIGHT.get(i.status, 99), i.title or "", i.season or 1),
        )

    def add_to_watchlist(self, user_id: str, item: WatchlistItemIn) -> UserMedia:
        """Create an entry, or update the existing one for the same key."""
        if not user_id:
            raise ValueError("Unauthorized")
        if item.status not in VALID_STATUSES:
            raise ValueError(f"Invalid status: {item.status}")

        with self.db.session() as session:
            entry = _find_entry(
                session, user_id, item.external_id, item.source, item.season
            )
            is_new = False
            if entry is not None:
                # Only values the caller actually sent overwrite user data
                changes = item.model_dump(
                    include={"status", "progress", "score", "notes"},
                    exclude_unset=True,
                )
                changes.setdefault("status", item.status)
                self._apply_changes(session, entry, changes)
            else:
                entry = UserMedia(
                    user_id=user_id,
                    external_id=item.external_id,
                    source=item.source,
                    media_type=item.media_type,
                    status=item.status,
                    season=item.season,
                    progress=item.progress,
                    score=item.score,
                    notes=item.notes,
                    last_watched_at=utcnow(),
                )
                is_new = True

            for field in METADATA_FIELDS:
                value = getattr(item, field)
                if value is not None:
                    setattr(entry, field, value)
            if item.genres:
                entry.genres = ",".join(item.genres)
            entry.updated_at = utcnow()

            if is_new:
                # Logged after the metadata copy so the event carries the title
                self.activity.record(
                    session,
                    entry,
                    ActivityAction.ADDED,
                    {"status": entry.status, "season": entry.season},
                )

            session.add(entry)
            session.commit()
            return entry

    def update_progress(self, user_id: str, entry_id: str, progress: int) -> UserMedia:
        if progress < 0:
            raise ValueError("Progress cannot be negative")
        return self.update_entry(user_id, entry_id, {"progress": progress})

    def update_entry(
        self, user_id: str, entry_id: str, changes: dict[str, Any]
    ) -> UserMedia:
        """Apply a partial edit and log one event per changed field."""
        status = changes.get("status")
        if status is not None and status not in VALID_STATUSES:
            raise ValueError(f"Invalid status: {status}")

        with self.db.session() as session:
            entry = self._get_owned(session, user_id, entry_id)
            if self._apply_changes(session, entry, changes):
                session.add(entry)
                session.commit()
            return entry

    def delete_entry(self, user_id: str, entry_id: str) -> None:
        with self.db.session() as session:
            entry = self._get_owned(session, user_id, entry_id)
            self.activity.record(
                session,
                entry,
                ActivityAction.REMOVED,
                {"status": entry.status, "season": entry.season},
            )
            session.delete(entry)
            session.commit()

    def import_watchlist(self, user_id: str, raw_items: Any) -> ImportResult:
        """Import exported watchlist rows.

        Rows missing their identifying fields are reported and skipped, rows
        already on the watchlist are skipped silently. One bad row never
        aborts the rest of the import.
        """
        if not isinstance(raw_items, list) or not raw_items:
            return ImportResult(errors=["File contains no items."])

        result = ImportResult()
        for raw in raw_items:
            try:
                item = ImportItem.model_validate(raw)
            except ValidationError as e:
                snippet = json.dumps(raw, default=str)[:80]
                if not isinstance(raw, dict) or not raw.get("source") or not raw.get(
                    "externalId"
                ):
                    result.errors.append(
                        f"Skipped item missing source/externalId: {snippet}"
                    )
                else:
                    result.errors.append(
                        f"Skipped invalid item {snippet}: {e.errors()[0]['msg']}"
                    )
                result.skipped += 1
                continue

            season = item.season if item.season is not None else 1
            status = item.status if item.status in VALID_STATUSES else (
                WatchStatus.PLAN_TO_WATCH.value
            )

            with self.db.session() as session:
                try:
                    if _find_entry(session, user_id, item.external_id, item.source, season):
                        result.skipped += 1
                        continue

                    session.add(
                        UserMedia(
                            user_id=user_id,
                            external_id=item.external_id,
                            source=item.source,
                            media_type=_normalize_media_type(item.type),
                            status=status,
                            season=season,
                            progress=item.progress or 0,
                            total_ep=item.total_episodes,
                            score=item.score,
                            mdl_rating=item.mdl_rating,
                            title=item.title,
                            year=item.year,
                            origin_country=item.country,
                            genres=item.genres,
                            notes=item.notes,
                            airing_status=item.airing_status,
                        )
                    )
                    session.commit()
                    result.imported += 1
                except SQLAlchemyError as e:
                    session.rollback()
                    logger.error(f"Failed to import {item.external_id}: {e}")
                    result.errors.append(f'"{item.title or item.external_id}": {e}')
                    result.skipped += 1

        logger.info(
            "Imported %s items for %s (%s skipped)",
            result.imported,
            user_id,
            result.skipped,
        )
        return result

    # --- Internals ---

    @staticmethod
    def _get_owned(session: Session, user_id: str, entry_id: str) -> UserMedia:
        entry = session.get(UserMedia, entry_id)
        if entry is None or entry.user_id != user_id:
            raise LookupError(f"Watchlist entry {entry_id} not found")
        return entry

    def _apply_changes(
        self, session: Session, entry: UserMedia, changes: dict[str, Any]
    ) -> bool:
        changed = False

        status = changes.get("status")
        if status is not None and status != entry.status:
            self.activity.record(
                session,
                entry,
                ActivityAction.STATUS_CHANGED,
                {"from": entry.status, "to": status},
            )
            entry.status = status
            changed = True

        progress = changes.get("progress")
        if progress is not None and progress != entry.progress:
            self.activity.record(
                session,
                entry,
                ActivityAction.PROGRESS,
                {"from": entry.progress, "to": progress},
            )
            entry.progress = progress
            changed = True

        if "score" in changes and changes["score"] != entry.score:
            self.activity.record(
                session,
                entry,
                ActivityAction.SCORED,
                {"from": entry.score, "to": changes["score"]},
            )
            entry.score = changes["score"]
            changed = True

        if "notes" in changes and (changes["notes"] or None) != (entry.notes or None):
            self.activity.record(session, entry, ActivityAction.NOTED)
            entry.notes = changes["notes"]
            changed = True

        if changed:
            entry.last_watched_at = utcnow()
            entry.updated_at = utcnow()
        return changed
