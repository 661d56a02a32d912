"""Error taxonomy for the storefront API.

Services raise these; the handlers registered in ``main`` turn them into
``{"detail": ...}`` JSON bodies with the matching status code.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base exception for all storefront errors."""

    status_code = 500
    default_message = "Internal Server Error"

    def __init__(self, message: Optional[str] = None, errors: Any = None):
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)


class Unauthorized(StoreError):
    """Raised when the request carries no valid session."""

    status_code = 401
    default_message = "Unauthorized"


class Forbidden(StoreError):
    """Raised when the caller lacks a permission or the transition is not allowed."""

    status_code = 403
    default_message = "Forbidden"


class NotFound(StoreError):
    """Raised when an entity is absent or not owned by the requester."""

    status_code = 404
    default_message = "Not found"


class ValidationError(StoreError):
    """Raised for malformed input that passed schema parsing."""

    status_code = 400
    default_message = "Invalid request"


class InternalError(StoreError):
    status_code = 500


async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    if isinstance(exc, InternalError):
        logger.error("Internal error on %s %s: %s", request.method, request.url.path, exc.message)
        body = {"detail": StoreError.default_message}
    else:
        body = {"detail": exc.message}
        if exc.errors is not None:
            body["errors"] = exc.errors
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
    return JSONResponse(status_code=exc.status_code, content=body, headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(err.get("loc", [])), "msg": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"detail": "Invalid request", "errors": errors})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": StoreError.default_message})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StoreError, store_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
