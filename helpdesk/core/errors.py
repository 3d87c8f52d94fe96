# helpdesk/core/errors.py
from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy import exc as sa_exc
from starlette.exceptions import HTTPException as StarletteHTTPException


class TicketError(Exception):
    """Base class for errors that map onto an ``{error, details}`` response."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: list[str] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(TicketError):
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(TicketError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(TicketError):
    status_code = status.HTTP_409_CONFLICT


class UnavailableError(TicketError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class InternalError(TicketError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, debug_details: list[str] | None = None):
        super().__init__(message)
        # only shown outside production
        self.debug_details = debug_details


UNIQUE_VIOLATION = "23505"
CONNECTION_EXCEPTION_CLASS = "08"


def _sqlstate(error: sa_exc.DBAPIError) -> str | None:
    orig = error.orig
    # psycopg exposes ``sqlstate``, psycopg2 ``pgcode``
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def classify_db_error(error: Exception, failure_message: str) -> TicketError:
    """Map a persistence exception onto the error taxonomy."""
    if isinstance(error, TicketError):
        return error

    if isinstance(error, sa_exc.TimeoutError):
        return UnavailableError(
            "Database connection failed", ["Service temporarily unavailable"]
        )

    if isinstance(error, sa_exc.DBAPIError):
        code = _sqlstate(error)
        if isinstance(error, sa_exc.IntegrityError) and (
            code == UNIQUE_VIOLATION or "UNIQUE constraint failed" in str(error.orig)
        ):
            return ConflictError("Ticket with similar data already exists")
        # no statement means the driver failed while opening the connection
        connect_failed = isinstance(error, sa_exc.OperationalError) and error.statement is None
        if (
            connect_failed
            or error.connection_invalidated
            or (code or "").startswith(CONNECTION_EXCEPTION_CLASS)
        ):
            return UnavailableError(
                "Database connection failed", ["Service temporarily unavailable"]
            )

    if isinstance(error, sa_exc.DisconnectionError):
        return UnavailableError("Database connection failed", ["Service temporarily unavailable"])

    return InternalError(failure_message, [str(error)])


@contextmanager
def store_errors(action: str) -> Generator[None, None, None]:
    """Re-raise persistence failures inside the block as ``TicketError``.

    ``action`` completes the user facing message, e.g. "create ticket" gives
    "Failed to create ticket. Please try again later."
    """
    try:
        yield
    except TicketError:
        raise
    except sa_exc.SQLAlchemyError as exc:
        logger.exception("Error while trying to {}", action)
        raise classify_db_error(exc, f"Failed to {action}. Please try again later.") from exc


def error_body(message: str, details: list[str] | None = None) -> dict:
    body: dict = {"error": message}
    if details:
        body["details"] = details
    return body


def request_too_large_response() -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
        content=error_body("Request too large", ["Maximum request body size exceeded"]),
    )


def _expose_internals(request: Request) -> bool:
    return not request.app.state.settings.is_production


async def ticket_error_handler(request: Request, exc: TicketError) -> JSONResponse:
    details = exc.details
    if isinstance(exc, InternalError) and _expose_internals(request):
        details = exc.debug_details
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, details))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if any(err.get("type") == "json_invalid" for err in errors) or any(
        err.get("loc", ())[:1] == ("body",) for err in errors
    ):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_body(
                "Invalid JSON format in request body", ["Please check your request format"]
            ),
        )

    details = []
    for err in errors:
        field = ".".join(str(part) for part in err.get("loc", ())[1:])
        details.append(f"{field}: {err.get('msg')}" if field else str(err.get("msg")))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body("Validation failed", details),
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    unmatched = (exc.status_code == status.HTTP_404_NOT_FOUND and exc.detail == "Not Found") or (
        exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED
    )
    if unmatched:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content=error_body(
                "Route not found",
                [f"The requested endpoint {request.method} {request.url.path} does not exist"],
            ),
        )
    if exc.status_code == status.HTTP_413_REQUEST_ENTITY_TOO_LARGE:
        return request_too_large_response()
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error("Error occurred on {} {}", request.method, request.url.path)
    details = [str(exc)] if _expose_internals(request) else ["Something went wrong on our end"]
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("Internal server error", details),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TicketError, ticket_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
