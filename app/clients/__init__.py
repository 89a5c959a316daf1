"""HTTP clients for third-party metadata providers."""

from app.clients.base import CatalogClient
from app.clients.kuryana import KuryanaClient
from app.clients.tvmaze import TVMazeClient

__all__ = ["CatalogClient", "KuryanaClient", "TVMazeClient"]
