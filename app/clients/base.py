"""Base class for third-party metadata HTTP clients."""

import logging
from typing import Any

import niquests
from cachetools import TTLCache
from urllib3.util import Retry

from app.core.config import get_settings

logger = logging.getLogger(__name__)


class CatalogClient:
    """Thin JSON-over-HTTP client for one metadata provider.

    Failures never raise: a non-success status or a transport error yields
    ``None`` so callers can degrade to partial data. Successful responses are
    kept in a short-lived revalidation cache.
    """

    name: str = "catalog"
    cache_ttl: int = 0  # seconds; 0 disables the revalidation cache
    cache_size: int = 256

    def __init__(
        self,
        base_url: str,
        timeout: float = 10,
        retry_config: Retry | None = None,
    ):
        settings = get_settings()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        if retry_config is None:
            # Upstream failures are reported as "no data", never retried
            retry_config = Retry(total=0, raise_on_status=False)
        self.session = niquests.AsyncSession(retries=retry_config)
        if settings.proxy:
            self.session.proxies = {"http": settings.proxy, "https": settings.proxy}
        self._cache: TTLCache | None = (
            TTLCache(maxsize=self.cache_size, ttl=self.cache_ttl)
            if self.cache_ttl
            else None
        )

    async def aclose(self) -> None:
        """Properly close the internal HTTP session."""
        if hasattr(self, "session") and self.session:
            await self.session.close()

    def default_params(self) -> dict[str, str]:
        """Query parameters added to every request."""
        return {}

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET ``path`` and decode JSON, or return None on any failure."""
        query = {**self.default_params(), **(params or {})}
        cache_key = f"{path}?{sorted(query.items())}"
        if self._cache is not None and cache_key in self._cache:
            return self._cache[cache_key]

        url = f"{self.base_url}{path}"
        try:
            response = await self.session.get(
                url, params=query or None, timeout=self.timeout
            )
        except Exception as e:
            logger.error(f"{self.name} request to {path} failed: {e}")
            return None

        if response.status_code == 404:
            return None
        if not response.ok:
            logger.error(
                "%s API error on %s: %s %s",
                self.name,
                path,
                response.status_code,
                response.reason,
            )
            return None

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"{self.name} returned invalid JSON for {path}: {e}")
            return None

        if self._cache is not None:
            self._cache[cache_key] = data
        return data
