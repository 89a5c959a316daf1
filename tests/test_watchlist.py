import pytest

from app.models.media import WatchlistItemIn
from app.services.activity import ActivityService
from app.services.watchlist import WatchlistService


@pytest.fixture
def activity(db):
    return ActivityService(db)


@pytest.fixture
def watchlist(db, activity):
    return WatchlistService(db, activity)


def actions(activity, user_id="u1"):
    return [i.action for i in activity.get_activity_log(user_id).items]


def test_import_reports_items_missing_ids(watchlist):
    result = watchlist.import_watchlist(
        "u1",
        [
            {"source": "TMDB", "externalId": "94796", "title": "Crash Landing on You"},
            {"source": "TMDB", "title": "No id"},
            {"externalId": "123"},
        ],
    )

    assert result.imported == 1
    assert result.skipped == 2
    assert len(result.errors) == 2
    assert all(
        e.startswith("Skipped item missing source/externalId") for e in result.errors
    )


def test_import_skips_duplicates_silently(watchlist):
    items = [
        {
            "source": "TMDB",
            "externalId": 94796,
            "title": "Crash Landing on You",
            "type": "tv",
            "status": "Completed",
            "progress": 16,
            "totalEpisodes": 16,
            "score": 9.5,
            "country": "KR",
        }
    ]

    first = watchlist.import_watchlist("u1", items)
    second = watchlist.import_watchlist("u1", items)

    assert first.imported == 1
    assert second.imported == 0
    assert second.skipped == 1
    assert second.errors == []

    [entry] = watchlist.get_watchlist("u1")
    assert entry.external_id == "94796"
    assert entry.status == "Completed"
    assert entry.total_ep == 16
    assert entry.media_type == "TV"


def test_import_rejects_empty_file(watchlist):
    assert watchlist.import_watchlist("u1", []).errors == ["File contains no items."]
    assert watchlist.import_watchlist("u1", {"items": []}).errors == [
        "File contains no items."
    ]


def test_import_defaults_unknown_status(watchlist):
    watchlist.import_watchlist(
        "u1", [{"source": "TMDB", "externalId": "1", "status": "Binging"}]
    )
    assert watchlist.get_watchlist("u1")[0].status == "Plan to Watch"


def test_import_does_not_log_activity(watchlist, activity):
    watchlist.import_watchlist("u1", [{"source": "TMDB", "externalId": "1"}])
    assert actions(activity) == []


def test_add_logs_added_event(watchlist, activity):
    entry = watchlist.add_to_watchlist(
        "u1",
        WatchlistItemIn(
            external_id="94796",
            title="Crash Landing on You",
            poster="/p.jpg",
            status="Watching",
        ),
    )

    assert entry.last_watched_at is not None
    [log] = activity.get_activity_log("u1").items
    assert log.action == "ADDED"
    assert log.title == "Crash Landing on You"
    assert log.poster == "/p.jpg"


def test_add_existing_entry_updates_it(watchlist, activity):
    watchlist.add_to_watchlist("u1", WatchlistItemIn(external_id="1", status="Watching"))
    watchlist.add_to_watchlist(
        "u1", WatchlistItemIn(external_id="1", status="Completed", progress=16)
    )

    [entry] = watchlist.get_watchlist("u1")
    assert entry.status == "Completed"
    assert entry.progress == 16
    assert sorted(actions(activity)) == ["ADDED", "PROGRESS", "STATUS_CHANGED"]


def test_add_rejects_invalid_status(watchlist):
    with pytest.raises(ValueError):
        watchlist.add_to_watchlist(
            "u1", WatchlistItemIn(external_id="1", status="Binging")
        )


def test_update_logs_one_event_per_change(watchlist, activity):
    entry = watchlist.add_to_watchlist("u1", WatchlistItemIn(external_id="1"))

    updated = watchlist.update_entry(
        "u1", entry.id, {"status": "Watching", "score": 8.0, "notes": "Great OST"}
    )

    assert updated.status == "Watching"
    assert updated.score == 8.0
    assert sorted(actions(activity)) == ["ADDED", "NOTED", "SCORED", "STATUS_CHANGED"]


def test_unchanged_update_logs_nothing(watchlist, activity):
    entry = watchlist.add_to_watchlist("u1", WatchlistItemIn(external_id="1"))
    watchlist.update_entry("u1", entry.id, {"status": entry.status})
    assert actions(activity) == ["ADDED"]


def test_update_progress(watchlist):
    entry = watchlist.add_to_watchlist("u1", WatchlistItemIn(external_id="1"))
    assert watchlist.update_progress("u1", entry.id, 4).progress == 4
    with pytest.raises(ValueError):
        watchlist.update_progress("u1", entry.id, -1)


def test_other_users_entries_are_not_found(watchlist):
    entry = watchlist.add_to_watchlist("u1", WatchlistItemIn(external_id="1"))
    with pytest.raises(LookupError):
        watchlist.update_entry("u2", entry.id, {"progress": 3})
    with pytest.raises(LookupError):
        watchlist.delete_entry("u2", entry.id)


def test_delete_logs_removed_event(watchlist, activity):
    entry = watchlist.add_to_watchlist("u1", WatchlistItemIn(external_id="1"))
    watchlist.delete_entry("u1", entry.id)

    assert watchlist.get_watchlist("u1") == []
    assert sorted(actions(activity)) == ["ADDED", "REMOVED"]


def test_watchlist_ordered_by_status(watchlist):
    watchlist.add_to_watchlist(
        "u1", WatchlistItemIn(external_id="1", title="B", status="Plan to Watch")
    )
    watchlist.add_to_watchlist(
        "u1", WatchlistItemIn(external_id="2", title="A", status="Watching")
    )
    watchlist.add_to_watchlist(
        "u1", WatchlistItemIn(external_id="3", title="C", status="Watching")
    )

    assert [e.title for e in watchlist.get_watchlist("u1")] == ["A", "C", "B"]
