"""Exception handlers for API Gateway."""

from __future__ import annotations

import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from libs.common import get_settings

from .exceptions import (
    AdminRequired,
    BonusAccountNotFound,
    BonusAlreadyCredited,
    BonusCreditFailed,
    InsufficientBalance,
    NotFound,
    RateLimited,
    SessionRequired,
    StorefrontError,
    UpstreamFailure,
    ValidationError,
    VerificationExpired,
    VerificationNotFound,
)

logger = logging.getLogger(__name__)


async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


async def session_required_handler(request: Request, exc: SessionRequired) -> JSONResponse:
    """Reject the request and drop whatever stale session cookie came with it."""
    response = JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"detail": str(exc) or "Not authenticated"},
    )
    response.delete_cookie(get_settings().session_cookie_name, path="/")
    return response


async def admin_required_handler(request: Request, exc: AdminRequired) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"detail": str(exc) or "Unauthorized"},
    )


async def rate_limited_handler(request: Request, exc: RateLimited) -> JSONResponse:
    logger.info(f"Rate limited {request.url.path}: retry_after={exc.retry_after}")
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"detail": str(exc), "retry_after": exc.retry_after},
        headers={"Retry-After": str(exc.retry_after)},
    )


async def verification_expired_handler(request: Request, exc: VerificationExpired) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_410_GONE,
        content={"detail": str(exc), "status": "EXPIRED", "check_id": exc.check_id},
    )


async def not_found_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


async def insufficient_balance_handler(request: Request, exc: InsufficientBalance) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": str(exc), "requested": exc.requested, "available": exc.available},
    )


async def already_credited_handler(request: Request, exc: BonusAlreadyCredited) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": str(exc), "order_id": exc.order_id},
    )


async def upstream_failure_handler(request: Request, exc: UpstreamFailure) -> JSONResponse:
    logger.error(f"Upstream failure on {request.url.path}: {exc}", exc_info=exc)
    content: dict = {"detail": str(exc)}
    if isinstance(exc, BonusCreditFailed):
        content["order_id"] = exc.order_id
    return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content=content)


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle database errors."""
    error_msg = str(exc)
    error_type = type(exc).__name__

    logger.error(
        f"Database error: error_type={error_type}, error={error_msg}",
        exc_info=True,
    )

    if isinstance(exc, IntegrityError):
        if "unique" in error_msg.lower() or "duplicate" in error_msg.lower():
            return JSONResponse(
                status_code=status.HTTP_409_CONFLICT,
                content={"detail": "Resource already exists"},
            )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": "Database constraint violation"},
        )

    if "connection" in error_msg.lower() or "connect" in error_msg.lower():
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Database connection issue"},
        )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": f"Database error occurred: {error_type}"},
    )


EXCEPTION_HANDLERS = {
    ValidationError: validation_error_handler,
    SessionRequired: session_required_handler,
    AdminRequired: admin_required_handler,
    RateLimited: rate_limited_handler,
    VerificationExpired: verification_expired_handler,
    VerificationNotFound: not_found_handler,
    BonusAccountNotFound: not_found_handler,
    NotFound: not_found_handler,
    InsufficientBalance: insufficient_balance_handler,
    BonusAlreadyCredited: already_credited_handler,
    UpstreamFailure: upstream_failure_handler,
    SQLAlchemyError: database_error_handler,
}
