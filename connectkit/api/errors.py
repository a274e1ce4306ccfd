"""Exception handlers that render every error in one JSON envelope."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from connectkit.errors import AppError, RateLimitExceededError

logger = logging.getLogger(__name__)


def error_response(
    status_code: int,
    message: str,
    code: str,
    details: dict | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": message, "code": code, "details": jsonable_encoder(details or {})},
        headers=headers,
    )


def register_exception_handlers(app: FastAPI, hide_internal_errors: bool) -> None:
    """Install handlers; ``hide_internal_errors`` masks non-operational failures."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        headers: dict[str, str] = {}
        if exc.status_code == status.HTTP_401_UNAUTHORIZED:
            headers["WWW-Authenticate"] = "Bearer"
        if isinstance(exc, RateLimitExceededError):
            headers["Retry-After"] = str(exc.retry_after)
            headers["X-RateLimit-Limit"] = str(exc.limit)
            headers["X-RateLimit-Remaining"] = "0"

        if not exc.is_operational:
            logger.error(f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}", exc_info=exc)
            if hide_internal_errors:
                return error_response(exc.status_code, "Internal server error", exc.error_code)

        return error_response(exc.status_code, exc.message, exc.error_code, exc.details, headers or None)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {
                "field": ".".join(str(part) for part in error["loc"] if part != "body"),
                "message": error["msg"],
            }
            for error in exc.errors()
        ]
        return error_response(
            status.HTTP_400_BAD_REQUEST, "Validation failed", "VALIDATION_ERROR", {"errors": errors}
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return error_response(exc.status_code, str(exc.detail), "HTTP_ERROR", headers=exc.headers)

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error(f"Database error on {request.method} {request.url.path}", exc_info=exc)
        message = "A database error occurred" if hide_internal_errors else str(exc)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, message, "DATABASE_ERROR")

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", "INTERNAL_ERROR")
