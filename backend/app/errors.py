"""Typed application errors and the single handler that renders them."""

import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base error carrying an HTTP status and an optional machine-readable code."""

    status_code = 500

    def __init__(self, message: str, code: str | None = None, data: dict | None = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.data = data


class ValidationError(AppError):
    status_code = 400


class UnauthorizedError(AppError):
    status_code = 401


class ForbiddenError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class RateLimitedError(AppError):
    status_code = 429


class ConflictError(AppError):
    status_code = 400


class UpstreamError(AppError):
    status_code = 500


class InternalError(AppError):
    status_code = 500


def error_body(message: str, code: str | None = None, data: dict | None = None) -> dict:
    body = {"success": False, "error": message}
    if code:
        body["code"] = code
    if data:
        body["data"] = data
    return body


def register_error_handlers(app: FastAPI):
    """Install handlers so every failure leaves as {success: false, error}."""

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.message, exc.code, exc.data),
        )

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(part) for part in first.get("loc", ())[1:])
        message = first.get("msg", "Invalid request")
        if field:
            message = f"{field}: {message}"
        return JSONResponse(status_code=400, content=error_body(message, "VALIDATION_ERROR"))

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=error_body("Internal server error", "INTERNAL_ERROR"))
