"""Current-user resolution.

The session provider in front of the service authenticates the browser and
forwards the user id in the ``X-User-Id`` header. In development, with
SKIP_AUTH enabled, requests without the header act as DEV_USER_ID.
"""

from fastapi import Header, HTTPException

from app.core.config import get_settings


async def get_current_user_id(
    x_user_id: str | None = Header(default=None),
) -> str:
    """Return the id of the user making the request."""
    if x_user_id:
        return x_user_id

    settings = get_settings()
    if settings.skip_auth:
        return settings.dev_user_id

    raise HTTPException(status_code=401, detail="Unauthorized")


async def verify_cron_secret(
    authorization: str | None = Header(default=None),
) -> None:
    """Reject scheduler calls without ``Bearer <CRON_SECRET>`` when a secret is set."""
    secret = get_settings().cron_secret
    if secret and authorization != f"Bearer {secret}":
        raise HTTPException(status_code=401, detail="Unauthorized")
