"""Rate limit dependency

Usage:
    @router.post("/sync", dependencies=[Depends(rate_limit("sync"))])
"""

from fastapi import Depends, Request

from src.app.services.rate_limiter import RATE_LIMITS, RateLimiter
from src.api.error import RateLimitExceeded
from src.depends import get_rate_limiter


def client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, then the socket peer"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client:
        return request.client.host
    return "unknown"


def rate_limit(name: str = "standard", prefix: str = "billing"):
    config = RATE_LIMITS[name]

    async def dependency(
        request: Request, limiter: RateLimiter = Depends(get_rate_limiter)
    ) -> None:
        result = await limiter.check_rate_limit(f"{prefix}:{client_ip(request)}", config)
        if not result.allowed:
            raise RateLimitExceeded(config, result)

    return dependency
