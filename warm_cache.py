"""Fill the MyDramaList cache for every TMDB title on any watchlist.

Run once after importing a large watchlist:

    python warm_cache.py
"""

import asyncio
import logging

from dotenv import load_dotenv

load_dotenv()

from app.clients.kuryana import KuryanaClient  # noqa: E402
from app.core.config import get_settings  # noqa: E402
from app.core.database import Database  # noqa: E402
from app.services.mdl import MdlService  # noqa: E402

logger = logging.getLogger("warm_cache")


async def warm() -> dict[str, int]:
    settings = get_settings()
    db = Database(settings.database_url)
    db.create_all()
    kuryana = KuryanaClient(settings.kuryana_url, timeout=settings.kuryana_timeout)
    service = MdlService(db, kuryana)
    try:
        return await service.warm_cache()
    finally:
        await kuryana.aclose()
        db.dispose()


def main():
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    result = asyncio.run(warm())
    logger.info("Done: %s cached, %s failed", result["cached"], result["failed"])


if __name__ == "__main__":
    main()
