"""
rate_limit.py — Global rate limiter instance.

Uses slowapi (a Starlette-compatible wrapper around the `limits` library).
Requests are keyed by client IP address. The cron trigger and the quality
scoring endpoint opt in; overlapping cron fires beyond the limit get a 429
instead of a second concurrent run.

Usage in routes:
    from fastapi import Request
    from paradocs.core.rate_limit import limiter

    @router.post("/some-endpoint")
    @limiter.limit("6/minute")
    async def my_endpoint(request: Request):
        ...
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)
