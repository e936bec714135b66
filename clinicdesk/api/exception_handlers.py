# FILE: clinicdesk/api/exception_handlers.py
from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from clinicdesk.api.response import err
from clinicdesk.core.config import settings
from clinicdesk.core.errors import AppError

logger = logging.getLogger(__name__)

_HIDDEN = "Something went wrong"

_HTTP_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
}


def _log_server_error(request: Request, exc: Exception) -> None:
    logger.error(
        "%s %s failed at %s",
        request.method,
        request.url.path,
        datetime.now(timezone.utc).isoformat(),
        exc_info=exc,
    )


def _server_message(message: str) -> str:
    return _HIDDEN if settings.is_production else message


def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        message = exc.message
        if exc.status_code >= 500:
            _log_server_error(request, exc)
            message = _server_message(message)
        else:
            logger.info("%s %s -> %s %s", request.method, request.url.path,
                        exc.status_code, exc.code)
        return err(message,
                   status_code=exc.status_code,
                   code=exc.code,
                   details=exc.details if exc.status_code < 500 else None)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
            request: Request, exc: StarletteHTTPException) -> JSONResponse:
        # exc.detail can be str/dict/list
        msg = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return err(msg,
                   status_code=exc.status_code,
                   code=_HTTP_CODES.get(exc.status_code, "HTTP_ERROR"))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
            request: Request, exc: RequestValidationError) -> JSONResponse:
        details = [{
            "field": ".".join(str(p) for p in e.get("loc", ())),
            "message": e.get("msg"),
        } for e in exc.errors()]
        return err("Validation error",
                   status_code=400,
                   code="VALIDATION_ERROR",
                   details=details)

    @app.exception_handler(SQLAlchemyError)
    async def db_exception_handler(request: Request,
                                   exc: SQLAlchemyError) -> JSONResponse:
        _log_server_error(request, exc)
        return err(_server_message("Database error"),
                   status_code=500,
                   code="UPSTREAM_ERROR")

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request,
                                          exc: Exception) -> JSONResponse:
        _log_server_error(request, exc)
        return err(_server_message("Internal server error"),
                   status_code=500,
                   code="INTERNAL_ERROR")
