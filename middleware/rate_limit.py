# middleware/rate_limit.py
"""
Rate limiting for the write-heavy ledger endpoints (staging release, broker sync).

Usage in route files:
    from middleware.rate_limit import limiter

    @router.post("/release")
    @limiter.limit("30/minute")
    def release(request: Request, ...):
        ...
"""
import logging
import os

from fastapi import Request
from jose import JWTError, jwt
from slowapi import Limiter
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)


def _get_rate_limit_key(request: Request) -> str:
    """
    Bucket by token subject when a bearer token is present, else by client IP.
    The token is not verified here; the auth dependency does that.
    """
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        token = auth.split(" ", 1)[1].strip()
        try:
            sub = jwt.get_unverified_claims(token).get("sub")
        except JWTError:
            sub = None
        if sub:
            return f"user:{sub}"

    return get_remote_address(request)


DEFAULT_RATE_LIMIT = os.getenv("RATE_LIMIT_DEFAULT", "120/minute")

limiter = Limiter(
    key_func=_get_rate_limit_key,
    default_limits=[DEFAULT_RATE_LIMIT],
    storage_uri=os.getenv("REDIS_URL", "memory://"),
    strategy="fixed-window",
    enabled=os.getenv("RATE_LIMIT_ENABLED", "1").lower() not in ("0", "false", "no"),
)
