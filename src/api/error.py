"""API error handling

Use cases return Result; routes turn an Err into ClientError and the
handlers below render the common error body:

    {"error": {"code": ..., "message": ..., "request_id": ...}}

Error.reason never leaves the server.
"""

import logging
from typing import Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from libs.result import Error
from src.app.services.rate_limiter import RateLimitConfig, RateLimitResult

logger = logging.getLogger(__name__)

ERROR_STATUS: Dict[str, int] = {
    "VALIDATION_ERROR": status.HTTP_400_BAD_REQUEST,
    "INVALID_PLAN": status.HTTP_400_BAD_REQUEST,
    "PROVIDER_NOT_CONNECTED": status.HTTP_400_BAD_REQUEST,
    "UNAUTHENTICATED": status.HTTP_401_UNAUTHORIZED,
    "CHARGE_REJECTED": status.HTTP_402_PAYMENT_REQUIRED,
    "CHARGE_NOT_CONFIRMED": status.HTTP_402_PAYMENT_REQUIRED,
    "SUBSCRIPTION_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "PROVIDER_LOCK_VIOLATION": status.HTTP_409_CONFLICT,
    "PROVIDER_MISMATCH": status.HTTP_409_CONFLICT,
    "ALREADY_CANCELLED": status.HTTP_409_CONFLICT,
    "SUBSCRIPTION_ACTIVE": status.HTTP_409_CONFLICT,
    "CONCURRENT_UPDATE": status.HTTP_409_CONFLICT,
    "INTERNAL_ERROR": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "PROVIDER_ERROR": status.HTTP_502_BAD_GATEWAY,
    "PROVIDER_UNAVAILABLE": status.HTTP_503_SERVICE_UNAVAILABLE,
}


class ClientError(Exception):
    """
    Use-case error surfaced to the HTTP client

    Args:
        error: Error from a failed Result
        status_code: Explicit status; defaults to the ERROR_STATUS mapping
    """

    def __init__(self, error: Error, status_code: Optional[int] = None):
        super().__init__(error.message)
        self.error = error
        self.status_code = status_code or ERROR_STATUS.get(
            error.code, status.HTTP_400_BAD_REQUEST
        )


class RateLimitExceeded(Exception):
    def __init__(self, config: RateLimitConfig, result: RateLimitResult):
        super().__init__("Too many requests")
        self.config = config
        self.result = result


def request_id_of(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


def rate_limit_headers(config: RateLimitConfig, result: RateLimitResult) -> Dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(config.max_requests),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(int(result.reset_at)),
    }
    if result.retry_after_seconds is not None:
        headers["Retry-After"] = str(result.retry_after_seconds)
    return headers


async def client_error_handler(request: Request, exc: ClientError) -> JSONResponse:
    request_id = request_id_of(request)
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        f"[{request_id}] {request.method} {request.url.path} -> {exc.status_code} "
        f"{exc.error.code}: {exc.error.reason or exc.error.message}"
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "code": exc.error.code,
                "message": exc.error.message,
                "request_id": request_id,
            }
        },
    )


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning(f"[{request_id_of(request)}] Rate limit exceeded on {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "error": {"code": "RATE_LIMITED", "message": "Too many requests"},
            "retry_after": exc.result.retry_after_seconds,
        },
        headers=rate_limit_headers(exc.config, exc.result),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = request_id_of(request)
    logger.exception(f"[{request_id}] Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "Internal server error",
                "request_id": request_id,
            }
        },
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ClientError, client_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
