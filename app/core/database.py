"""Database setup for dramalog using SQLModel.

The engine is owned by a ``Database`` instance that the application builds at
startup and disposes at shutdown. Services receive it through their constructor.
"""

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

# Import table definitions so they are registered on SQLModel.metadata
from app.models import tables  # noqa: F401


class Database:
    """Owns the SQLAlchemy engine and hands out sessions."""

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        kwargs = {"echo": echo}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}  # Needed for SQLite
            if url in ("sqlite://", "sqlite:///:memory:"):
                # Every session must see the same in-memory database
                kwargs["poolclass"] = StaticPool
        self.engine = create_engine(url, **kwargs)

    def create_all(self) -> None:
        """Create all database tables."""
        SQLModel.metadata.create_all(self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Open a session; rolled back on error, always closed."""
        with Session(self.engine, expire_on_commit=False) as session:
            try:
                yield session
            except Exception:
                session.rollback()
                raise

    def dispose(self) -> None:
        """Release all pooled connections."""
        self.engine.dispose()
