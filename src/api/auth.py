"""Bearer-token authentication against a single development token."""

import re

from fastapi import Header, HTTPException

from utils.config import load_config

DEV_USER_ID = "dev-user"

_BEARER_RE = re.compile(r"^Bearer\s+(.+)$", re.IGNORECASE)


def get_user_id_from_auth(authorization: str | None, dev_token: str) -> str | None:
    """Map an Authorization header to a user id, or None if unauthenticated."""
    match = _BEARER_RE.match(authorization or "")
    if not match:
        return None
    token = match.group(1).strip()
    if dev_token and token == dev_token:
        return DEV_USER_ID
    return None


async def require_user(authorization: str | None = Header(default=None)) -> str:
    """FastAPI dependency: the caller's user id, or 401."""
    user_id = get_user_id_from_auth(authorization, load_config()["dev_token"])
    if user_id is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user_id
