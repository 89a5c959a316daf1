import os

# Settings are read at import time by the TMDB service
os.environ.setdefault("TMDB_API_KEY", "test-key")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SKIP_AUTH"] = "false"

from unittest.mock import AsyncMock  # noqa: E402

import pytest  # noqa: E402

from app.core.database import Database  # noqa: E402
from app.models.tables import UserMedia  # noqa: E402


@pytest.fixture
def db():
    """A fresh in-memory database per test."""
    database = Database("sqlite://")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def kuryana():
    """Kuryana client double; every lookup is an AsyncMock."""
    client = AsyncMock()
    client.search.return_value = []
    client.get_details.return_value = None
    client.get_cast.return_value = None
    return client


@pytest.fixture
def add_media(db):
    """Insert a watchlist entry and return it."""

    def _add(user_id="u1", external_id="100", **kwargs):
        kwargs.setdefault("title", f"Show {external_id}")
        kwargs.setdefault("origin_country", "KR")
        kwargs.setdefault("status", "Watching")
        entry = UserMedia(user_id=user_id, external_id=external_id, **kwargs)
        with db.session() as session:
            session.add(entry)
            session.commit()
        return entry

    return _add
