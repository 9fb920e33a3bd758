"""
Exception handlers that render every failure as one JSON shape:

    {"error": <name>, "message": <text>, "status_code": <int>, "details": <obj|null>}

Lifecycle errors (state conflicts, missing prerequisites, ownership) carry
their own status codes on the exception class; the handlers only render
them and decide how loudly to log.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.exceptions import AppException, BusinessRuleViolation

logger = logging.getLogger(__name__)


def error_response(error: str, message: Any, status_code: int, details: Optional[Any] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            "status_code": status_code,
            "details": details,
        },
    )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Render a domain exception; details pass through the sensitive-key filter."""
    name = exc.__class__.__name__
    if exc.status_code >= 500:
        logger.error(f"{name} on {request.method} {request.url.path}: {exc.message}")
    elif isinstance(exc, BusinessRuleViolation):
        logger.info(f"Rejected {request.method} {request.url.path}: {name}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies and params are input errors (400), same as service-level validation."""
    errors = [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    return error_response("ValidationError", "Request validation failed", 400, {"errors": errors})


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # unknown routes, wrong methods and missing bearer headers land here
    return error_response("HTTPException", exc.detail, exc.status_code)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return error_response("InternalServerError", "An unexpected error occurred", 500)


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
