"""Kuryana client: a scraper API in front of MyDramaList."""

import logging
from typing import Any, List, Optional
from urllib.parse import quote

from app.clients.base import CatalogClient
from app.models.media import KuryanaDrama, MdlCast, MdlCastMember

logger = logging.getLogger(__name__)

ROLE_TIERS = {
    "Main Role": "main",
    "Support Role": "support",
    "Guest Role": "guest",
}


def _parse_rank(value: Any) -> Optional[int]:
    """Parse "#1,234" style rank strings."""
    if value is None:
        return None
    try:
        return int(str(value).replace("#", "").replace(",", "").strip())
    except ValueError:
        return None


def _parse_rating(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        rating = float(value)
    except (TypeError, ValueError):
        return None
    # Kuryana reports unrated titles as 0
    return rating or None


def normalize_cast(casts: dict[str, Any] | None) -> MdlCast | None:
    """Group a Kuryana cast payload by role tier."""
    if not isinstance(casts, dict):
        return None

    cast = MdlCast()
    for role_type, tier in ROLE_TIERS.items():
        members = []
        for m in casts.get(role_type) or []:
            if not m.get("slug") or not m.get("name"):
                continue
            role = m.get("role") or {}
            members.append(
                MdlCastMember(
                    name=m["name"],
                    profile_image=m.get("profile_image") or "",
                    slug=m["slug"],
                    character_name=role.get("name") or "",
                    role_type=role.get("type") or role_type,
                )
            )
        setattr(cast, tier, members)
    return cast


class KuryanaClient(CatalogClient):
    """Kuryana search, details and cast lookups."""

    name = "Kuryana"
    cache_ttl = 60

    async def search(self, query: str) -> List[KuryanaDrama]:
        """Search dramas by title."""
        if not query.strip():
            return []
        data = await self._get_json(f"/search/q/{quote(query, safe='')}")
        if not data:
            return []
        dramas = (data.get("results") or {}).get("dramas") or []
        results = []
        for d in dramas:
            if not d.get("slug"):
                continue
            results.append(KuryanaDrama.model_validate(d))
        return results

    async def get_details(self, slug: str) -> Optional[dict[str, Any]]:
        """Return the ``data`` block of a drama's details, or None."""
        data = await self._get_json(f"/id/{slug}")
        if not data:
            return None
        return data.get("data")

    async def get_cast(self, slug: str) -> Optional[MdlCast]:
        """Return the drama's cast grouped by tier, or None."""
        data = await self._get_json(f"/id/{slug}/cast")
        if not data:
            return None
        return normalize_cast((data.get("data") or {}).get("casts"))

    async def get_native_title(self, slug: str) -> Optional[str]:
        """Extract the native title from ``sub_title`` (e.g. "환혼 ‧ Drama ‧ 2022")."""
        details = await self.get_details(slug)
        sub_title = (details or {}).get("sub_title")
        if not sub_title:
            return None
        return sub_title.split("‧")[0].strip() or None


def parse_details(details: dict[str, Any]) -> dict[str, Any]:
    """Map a Kuryana details block to rating, ranking, popularity and tags."""
    info = details.get("details") or {}
    others = details.get("others") or {}
    return {
        "mdl_rating": _parse_rating(details.get("rating")),
        "mdl_ranking": _parse_rank(info.get("ranked")),
        "mdl_popularity": _parse_rank(info.get("popularity")),
        "tags": list(others.get("tags") or []),
    }
