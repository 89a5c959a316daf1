"""TVmaze client for episode lists and next-episode lookups."""

import logging
from typing import Any, List, Optional

from aiolimiter import AsyncLimiter

from app.clients.base import CatalogClient
from app.models.media import EpisodeInfo, NextEpisode

logger = logging.getLogger(__name__)


def _parse_episode(ep: dict[str, Any]) -> EpisodeInfo | None:
    season = ep.get("season")
    number = ep.get("number")
    # Specials have no episode number
    if season is None or number is None:
        return None
    return EpisodeInfo(
        season_number=season,
        episode_number=number,
        name=ep.get("name") or "",
        air_date=ep.get("airdate") or None,
        airstamp=ep.get("airstamp") or None,
        runtime=ep.get("runtime"),
    )


class TVMazeClient(CatalogClient):
    """TVmaze lookups, rate limited to 20 requests per 10 seconds."""

    name = "TVmaze"
    cache_ttl = 3600

    def __init__(self, base_url: str, api_key: str | None = None, timeout: float = 10):
        super().__init__(base_url, timeout=timeout)
        self.api_key = api_key
        self.rate_limiter = AsyncLimiter(20, 10.0)

    def default_params(self) -> dict[str, str]:
        return {"apikey": self.api_key} if self.api_key else {}

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        async with self.rate_limiter:
            return await super()._get_json(path, params)

    async def lookup_show(
        self,
        imdb_id: str | None = None,
        tvdb_id: int | None = None,
        name: str | None = None,
    ) -> Optional[dict[str, Any]]:
        """Find a show by IMDb id, then TVDB id, then by name."""
        if imdb_id:
            show = await self._get_json("/lookup/shows", {"imdb": imdb_id})
            if show:
                return show
        if tvdb_id:
            show = await self._get_json("/lookup/shows", {"thetvdb": str(tvdb_id)})
            if show:
                return show
        if name:
            results = await self._get_json("/search/shows", {"q": name})
            if results:
                return results[0].get("show")
        return None

    async def get_episodes(self, show_id: int) -> List[EpisodeInfo]:
        """Return every numbered episode of a show."""
        data = await self._get_json(f"/shows/{show_id}/episodes")
        if not data:
            return []
        return [e for e in (_parse_episode(ep) for ep in data) if e is not None]

    async def get_all_episodes(
        self,
        imdb_id: str | None = None,
        tvdb_id: int | None = None,
        name: str | None = None,
    ) -> List[EpisodeInfo]:
        """Resolve a show and return its full episode list."""
        show = await self.lookup_show(imdb_id=imdb_id, tvdb_id=tvdb_id, name=name)
        if not show or "id" not in show:
            return []
        return await self.get_episodes(show["id"])

    async def get_next_episode(
        self,
        imdb_id: str | None = None,
        tvdb_id: int | None = None,
        name: str | None = None,
    ) -> Optional[NextEpisode]:
        """Return the next episode to air and its season's episode count."""
        show = await self.lookup_show(imdb_id=imdb_id, tvdb_id=tvdb_id, name=name)
        if not show or "id" not in show:
            return None

        show_id = show["id"]
        detail = await self._get_json(f"/shows/{show_id}", {"embed": "nextepisode"})
        next_ep = ((detail or {}).get("_embedded") or {}).get("nextepisode")
        if not next_ep or not next_ep.get("airdate"):
            return None

        season_number = next_ep["season"]
        return NextEpisode(
            air_date=next_ep["airdate"],
            season_number=season_number,
            episode_number=next_ep["number"],
            name=next_ep.get("name") or "",
            season_episode_count=await self._season_episode_count(
                show_id, season_number
            ),
        )

    async def _season_episode_count(self, show_id: int, season_number: int) -> int | None:
        seasons = await self._get_json(f"/shows/{show_id}/seasons") or []
        for season in seasons:
            if season.get("number") == season_number and season.get("episodeOrder"):
                return season["episodeOrder"]

        # episodeOrder is often null for ongoing seasons; count what is announced
        episodes = await self.get_episodes(show_id)
        numbers = [e.episode_number for e in episodes if e.season_number == season_number]
        return max(numbers) if numbers else None
