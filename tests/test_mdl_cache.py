from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from app.models.media import KuryanaDrama, MdlCast, MdlCastMember
from app.models.tables import CachedMdlData, MdlSeasonLink, UserMedia, as_utc, utcnow
from app.services.mdl import (
    MdlService,
    best_year_match,
    is_fresh,
    normalize_title,
    sanitize_for_search,
)


def days_ago(days: int):
    return utcnow() - timedelta(days=days)


DETAILS = {
    "title": "Alchemy of Souls",
    "rating": 9.1,
    "details": {"ranked": "#12", "popularity": "#1,024"},
    "others": {"tags": ["Fantasy", "Magic"]},
}

CAST = MdlCast(
    main=[
        MdlCastMember(
            name="Lee Jae Wook",
            slug="5012-lee-jae-wook",
            character_name="Jang Uk",
            role_type="Main Role",
        )
    ]
)


def seed_show(db, tmdb_id="100", **kwargs):
    kwargs.setdefault("mdl_slug", "690045-alchemy-of-souls")
    kwargs.setdefault("mdl_rating", 9.1)
    kwargs.setdefault("mdl_ranking", 12)
    kwargs.setdefault("tags", ["Fantasy"])
    kwargs.setdefault("cached_at", utcnow())
    row = CachedMdlData(tmdb_external_id=tmdb_id, **kwargs)
    with db.session() as session:
        session.add(row)
        session.commit()
    return row


def get_row(db, tmdb_id="100"):
    with db.session() as session:
        return session.get(CachedMdlData, tmdb_id)


def test_best_year_match_prefers_exact_year():
    dramas = [
        KuryanaDrama(slug="a", title="Alchemy of Souls", year=2021),
        KuryanaDrama(slug="b", title="Alchemy of Souls", year=2022),
    ]
    assert best_year_match(dramas, 2022, ["Alchemy of Souls"]).slug == "b"


def test_best_year_match_accepts_adjacent_years():
    dramas = [
        KuryanaDrama(slug="early", title="Hometown Cha-Cha-Cha", year=2019),
        KuryanaDrama(slug="late", title="Hometown", year=2021),
    ]
    match = best_year_match(dramas, 2020, ["Hometown"])
    assert match is not None
    assert match.slug == "late"


def test_best_year_match_rejects_distant_years():
    dramas = [
        KuryanaDrama(slug="a", title="Signal", year=2016),
        KuryanaDrama(slug="b", title="Signal", year=2024),
    ]
    assert best_year_match(dramas, 2020, ["Signal"]) is None


def test_best_year_match_tie_without_title_match_keeps_first():
    dramas = [
        KuryanaDrama(slug="first", title="Alchemy of Souls", year=2019),
        KuryanaDrama(slug="second", title="Signal", year=2021),
    ]
    assert best_year_match(dramas, 2020, ["Unrelated"]).slug == "first"


def test_timestamps_round_trip_through_database(db):
    seed_show(db)
    with db.session() as session:
        session.add(UserMedia(user_id="u1", external_id="100", last_watched_at=utcnow()))
        session.commit()

    row = get_row(db)
    assert is_fresh(row.cached_at)
    assert not is_fresh(days_ago(8))
    naive = utcnow().replace(tzinfo=None)
    assert as_utc(naive).tzinfo is not None
    assert is_fresh(naive)


def test_title_helpers():
    assert normalize_title("Crash Landing on You!") == "crashlandingonyou"
    assert normalize_title("사랑의 불시착") == "사랑의불시착"
    assert sanitize_for_search("#Alive") == "Alive"


@pytest.mark.asyncio
async def test_fresh_row_with_cast_makes_no_outbound_calls(db, kuryana):
    seed_show(db, cast_json=CAST.model_dump())
    service = MdlService(db, kuryana)

    data = await service.get_mdl_data("100", "Alchemy of Souls", "2022")

    assert data.mdl_slug == "690045-alchemy-of-souls"
    assert data.mdl_rating == 9.1
    assert data.cast.main[0].name == "Lee Jae Wook"
    kuryana.search.assert_not_awaited()
    kuryana.get_details.assert_not_awaited()
    kuryana.get_cast.assert_not_awaited()


@pytest.mark.asyncio
async def test_fresh_row_without_cast_refetches_cast_only(db, kuryana):
    seed_show(db, cast_json=None)
    kuryana.get_cast.return_value = CAST
    service = MdlService(db, kuryana)

    data = await service.get_mdl_data("100", "Alchemy of Souls", "2022")

    kuryana.get_cast.assert_awaited_once_with("690045-alchemy-of-souls")
    kuryana.search.assert_not_awaited()
    kuryana.get_details.assert_not_awaited()
    assert data.mdl_rating == 9.1
    assert data.cast.main[0].slug == "5012-lee-jae-wook"
    assert get_row(db).cast_json["main"][0]["name"] == "Lee Jae Wook"


@pytest.mark.asyncio
async def test_failed_cast_refetch_still_serves_metadata(db, kuryana):
    seed_show(db, cast_json=None)
    kuryana.get_cast.side_effect = RuntimeError("kuryana down")
    service = MdlService(db, kuryana)

    data = await service.get_mdl_data("100", "Alchemy of Souls", "2022")

    assert data.mdl_slug == "690045-alchemy-of-souls"
    assert data.mdl_rating == 9.1
    assert data.cast is None
    kuryana.search.assert_not_awaited()
    assert get_row(db).cast_json is None


@pytest.mark.asyncio
async def test_empty_cast_refetch_is_not_persisted(db, kuryana):
    seed_show(db, cast_json=None)
    kuryana.get_cast.return_value = MdlCast()
    service = MdlService(db, kuryana)

    data = await service.get_mdl_data("100", "Alchemy of Souls", "2022")

    assert data.mdl_slug == "690045-alchemy-of-souls"
    assert get_row(db).cast_json is None


@pytest.mark.asyncio
async def test_cache_miss_searches_and_stores(db, kuryana):
    kuryana.search.return_value = [
        KuryanaDrama(slug="690045-alchemy-of-souls", title="Alchemy of Souls", year=2022),
        KuryanaDrama(slug="1-other", title="Alchemy", year=2010),
    ]
    kuryana.get_details.return_value = DETAILS
    kuryana.get_cast.return_value = CAST
    service = MdlService(db, kuryana)

    data = await service.get_mdl_data("100", "Alchemy of Souls", "2022-06-18")

    kuryana.search.assert_awaited_once_with("Alchemy of Souls")
    assert data.mdl_slug == "690045-alchemy-of-souls"
    assert data.mdl_rating == 9.1
    assert data.mdl_ranking == 12
    assert data.mdl_popularity == 1024
    assert data.tags == ["Fantasy", "Magic"]

    row = get_row(db)
    assert row.mdl_slug == "690045-alchemy-of-souls"
    assert row.cached_at is not None
    assert row.is_manual is False


@pytest.mark.asyncio
async def test_native_title_is_searched_too(db, kuryana):
    async def search(query):
        if query == "환혼":
            return [KuryanaDrama(slug="690045-alchemy-of-souls", title="환혼", year=2022)]
        return [KuryanaDrama(slug="690045-alchemy-of-souls", title="Alchemy of Souls", year=2022)]

    kuryana.search.side_effect = search
    kuryana.get_details.return_value = DETAILS
    service = MdlService(db, kuryana)

    data = await service.get_mdl_data("100", "Alchemy of Souls", 2022, native_title="환혼")

    assert kuryana.search.await_count == 2
    assert data.mdl_slug == "690045-alchemy-of-souls"


@pytest.mark.asyncio
async def test_no_year_match_returns_none(db, kuryana):
    kuryana.search.return_value = [
        KuryanaDrama(slug="a", title="Signal", year=2016),
    ]
    service = MdlService(db, kuryana)

    assert await service.get_mdl_data("100", "Signal", "2020") is None
    kuryana.get_details.assert_not_awaited()
    assert get_row(db) is None


@pytest.mark.asyncio
async def test_upstream_failure_returns_none(db, kuryana):
    kuryana.search.side_effect = RuntimeError("connection reset")
    service = MdlService(db, kuryana)

    assert await service.get_mdl_data("100", "Signal", "2016") is None
    assert get_row(db) is None


@pytest.mark.asyncio
async def test_stale_row_searches_again(db, kuryana):
    seed_show(db, cached_at=days_ago(8), cast_json=CAST.model_dump())
    kuryana.search.return_value = [
        KuryanaDrama(slug="690045-alchemy-of-souls", title="Alchemy of Souls", year=2022)
    ]
    kuryana.get_details.return_value = {**DETAILS, "rating": 9.3}
    kuryana.get_cast.return_value = CAST
    service = MdlService(db, kuryana)

    data = await service.get_mdl_data("100", "Alchemy of Souls", "2022")

    kuryana.search.assert_awaited()
    assert data.mdl_rating == 9.3
    assert get_row(db).mdl_rating == 9.3


@pytest.mark.asyncio
async def test_stale_manual_row_refetches_by_slug(db, kuryana):
    seed_show(db, mdl_slug="pinned-slug", is_manual=True, cached_at=days_ago(30))
    kuryana.get_details.return_value = DETAILS
    kuryana.get_cast.return_value = CAST
    service = MdlService(db, kuryana)

    data = await service.get_mdl_data("100", "Alchemy of Souls", "2022")

    kuryana.search.assert_not_awaited()
    kuryana.get_details.assert_awaited_once_with("pinned-slug")
    assert data.mdl_slug == "pinned-slug"
    row = get_row(db)
    assert row.is_manual is True
    assert row.mdl_ranking == 12


@pytest.mark.asyncio
async def test_reset_forces_search_path(db, kuryana):
    seed_show(db, cast_json=CAST.model_dump())
    with db.session() as session:
        session.add(
            MdlSeasonLink(tmdb_external_id="100", season=2, mdl_slug="season-two")
        )
        session.commit()
    service = MdlService(db, kuryana)

    assert await service.reset("100") == 2
    assert get_row(db) is None

    await service.get_mdl_data("100", "Alchemy of Souls", "2022")
    kuryana.search.assert_awaited()


@pytest.mark.asyncio
async def test_season_without_link_falls_back_to_show(db, kuryana):
    seed_show(db, cast_json=CAST.model_dump())
    service = MdlService(db, kuryana)

    data = await service.get_mdl_season_data("100", "Alchemy of Souls", "2022", 2)

    assert data.mdl_slug == "690045-alchemy-of-souls"
    kuryana.get_details.assert_not_awaited()


@pytest.mark.asyncio
async def test_season_link_is_used_for_later_seasons(db, kuryana):
    seed_show(db, cast_json=CAST.model_dump())
    with db.session() as session:
        session.add(
            MdlSeasonLink(
                tmdb_external_id="100",
                season=2,
                mdl_slug="735043-alchemy-of-souls-2",
                mdl_rating=8.9,
                cast_json=CAST.model_dump(),
                cached_at=utcnow(),
            )
        )
        session.commit()
    service = MdlService(db, kuryana)

    data = await service.get_mdl_season_data("100", "Alchemy of Souls", "2022", 2)

    assert data.mdl_slug == "735043-alchemy-of-souls-2"
    assert data.mdl_rating == 8.9
    kuryana.get_details.assert_not_awaited()


@pytest.mark.asyncio
async def test_set_slug_stores_pin_then_fetches_in_background(db, kuryana):
    kuryana.get_details.return_value = DETAILS
    kuryana.get_cast.return_value = CAST
    service = MdlService(db, kuryana)

    await service.set_mdl_slug("100", "690045-alchemy-of-souls")

    row = get_row(db)
    assert row.mdl_slug == "690045-alchemy-of-souls"
    assert row.is_manual is True

    await service.drain()

    row = get_row(db)
    assert row.mdl_rating == 9.1
    assert row.cached_at is not None
    kuryana.search.assert_not_awaited()


@pytest.mark.asyncio
async def test_set_slug_keeps_pin_when_fetch_fails(db, kuryana):
    kuryana.get_details.side_effect = RuntimeError("timeout")
    service = MdlService(db, kuryana)

    await service.set_mdl_slug("100", "pinned-slug")
    await service.drain()

    row = get_row(db)
    assert row.mdl_slug == "pinned-slug"
    assert row.cached_at is None


@pytest.mark.asyncio
async def test_set_slug_rejects_empty_slug(db, kuryana):
    service = MdlService(db, kuryana)
    with pytest.raises(ValueError):
        await service.set_mdl_slug("100", "   ")


@pytest.mark.asyncio
async def test_refetch_without_slug_clears(db, kuryana):
    service = MdlService(db, kuryana)
    assert await service.refetch("100") == "cleared"


@pytest.mark.asyncio
async def test_refetch_updates_known_slug(db, kuryana):
    seed_show(db, mdl_rating=7.0, cast_json=CAST.model_dump())
    kuryana.get_details.return_value = DETAILS
    kuryana.get_cast.return_value = CAST
    service = MdlService(db, kuryana)

    assert await service.refetch("100") == "refetched"
    assert get_row(db).mdl_rating == 9.1


@pytest.mark.asyncio
async def test_failed_season_refetch_falls_back_to_show(db, kuryana):
    seed_show(db, cast_json=CAST.model_dump())
    with db.session() as session:
        session.add(
            MdlSeasonLink(tmdb_external_id="100", season=2, mdl_slug="season-two")
        )
        session.commit()
    kuryana.get_details.side_effect = RuntimeError("timeout")
    service = MdlService(db, kuryana)

    data = await service.get_mdl_season_data("100", "Alchemy of Souls", "2022", 2)

    kuryana.get_details.assert_awaited_once_with("season-two")
    assert data.mdl_slug == "690045-alchemy-of-souls"


@pytest.mark.asyncio
async def test_warm_cache_fills_missing_titles(db, kuryana, add_media):
    add_media(external_id="100", title="Alchemy of Souls", year=2022)
    add_media(external_id="100", title="Alchemy of Souls", year=2022, season=2)
    add_media(external_id="200", title="Signal", year=2016, user_id="u2")
    add_media(external_id="300", title="Already cached", year=2020)
    seed_show(db, tmdb_id="300", cast_json=CAST.model_dump())

    async def search(query):
        if query in ("환혼", "Alchemy of Souls"):
            return [
                KuryanaDrama(slug="690045-alchemy-of-souls", title="Alchemy of Souls", year=2022)
            ]
        return []

    kuryana.search.side_effect = search
    kuryana.get_details.return_value = DETAILS
    kuryana.get_cast.return_value = CAST
    service = MdlService(db, kuryana)

    with patch("app.services.mdl.WARM_BATCH_DELAY", 0), patch(
        "app.services.mdl.get_original_title", AsyncMock(return_value="환혼")
    ) as mock_title:
        result = await service.warm_cache()

    assert result == {"cached": 1, "failed": 1}
    assert mock_title.await_count == 2
    assert get_row(db, "100").mdl_slug == "690045-alchemy-of-souls"
    assert get_row(db, "200") is None
