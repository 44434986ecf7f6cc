"""Translate every failure into the error taxonomy and the error envelope.

``classify`` is a pure mapping from an exception to an AppError;
``register_exception_handlers`` wires it into FastAPI so that each response
leaving the app, success or failure, uses the same envelope.
"""

import logging
import traceback
from typing import Optional

import pydantic
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, NoResultFound, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import schemas
from .errors import (
    AppError,
    AuthenticationError,
    ConflictError,
    DatabaseError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from .validation import field_errors

logger = logging.getLogger(__name__)

_HTTP_CODES = {
    404: ("ROUTE_NOT_FOUND", "Route not found"),
    405: ("METHOD_NOT_ALLOWED", "Method not allowed"),
}

# SQLSTATE classes reported by PostgreSQL drivers
_PG_UNIQUE = "23505"
_PG_FOREIGN_KEY = "23503"
_PG_NOT_NULL = "23502"
_PG_CHECK = "23514"


def constraint_kind(exc: IntegrityError) -> str:
    """Name the constraint an IntegrityError tripped: unique, foreign_key, not_null, check or other."""
    orig = exc.orig
    state = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    text = str(orig).lower()
    if state == _PG_UNIQUE or "unique" in text or "duplicate" in text:
        return "unique"
    if state == _PG_FOREIGN_KEY or "foreign key" in text:
        return "foreign_key"
    if state == _PG_NOT_NULL or "not null" in text:
        return "not_null"
    if state == _PG_CHECK or "check constraint" in text:
        return "check"
    return "other"


def _validation(errors) -> ValidationError:
    return ValidationError(details=[e.as_dict() for e in field_errors(errors)])


def classify(exc: BaseException) -> AppError:
    if isinstance(exc, AppError):
        return exc
    if isinstance(exc, (RequestValidationError, pydantic.ValidationError)):
        return _validation(exc.errors())
    if isinstance(exc, IntegrityError):
        kind = constraint_kind(exc)
        if kind == "unique":
            return ConflictError("A record with this information already exists", code="DUPLICATE_RECORD")
        if kind == "foreign_key":
            return ValidationError("Foreign key constraint failed", code="FOREIGN_KEY_CONSTRAINT")
        if kind in ("not_null", "check"):
            return ValidationError("Constraint violation", code="CONSTRAINT_VIOLATION")
        return DatabaseError()
    if isinstance(exc, NoResultFound):
        return NotFoundError("Record", code="RECORD_NOT_FOUND")
    if isinstance(exc, SQLAlchemyError):
        return DatabaseError()
    if isinstance(exc, StarletteHTTPException):
        code, message = _HTTP_CODES.get(exc.status_code, ("HTTP_ERROR", str(exc.detail)))
        return AppError(message, code=code, status_code=exc.status_code)
    return InternalError()


def _stack(exc: BaseException) -> str:
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


def _is_production(request: Request) -> bool:
    settings = getattr(request.app.state, "settings", None)
    # without settings we cannot prove it is safe to leak detail
    return settings is None or settings.is_production


def error_response(request: Request, exc: BaseException) -> JSONResponse:
    err = classify(exc)
    production = _is_production(request)

    message = err.message
    if isinstance(err, InternalError) and err is not exc and not production:
        message = str(exc) or err.message

    if err.status_code >= 500:
        logger.error("%s %s -> %s", request.method, request.url.path, err.code, exc_info=exc)
    else:
        logger.warning("%s %s -> %s %s", request.method, request.url.path, err.status_code, err.code)

    body = schemas.ErrorEnvelope(
        error=message,
        code=err.code,
        details=err.details,
        path=request.url.path,
        method=request.method,
        stack=None if production else _stack(exc),
    )
    headers: Optional[dict] = None
    if isinstance(exc, StarletteHTTPException) and exc.headers:
        headers = dict(exc.headers)
    elif isinstance(err, AuthenticationError):
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=err.status_code,
        content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
        headers=headers,
    )


async def _handle(request: Request, exc: Exception) -> JSONResponse:
    return error_response(request, exc)


def register_exception_handlers(app: FastAPI) -> None:
    for exc_class in (
        AppError,
        RequestValidationError,
        pydantic.ValidationError,
        StarletteHTTPException,
        SQLAlchemyError,
        Exception,
    ):
        app.add_exception_handler(exc_class, _handle)
