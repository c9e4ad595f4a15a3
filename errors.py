import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class BookingSystemError(Exception):
    kind = "internal_failure"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details
        super().__init__(message)


class InvalidInputError(BookingSystemError):
    kind = "invalid_input"
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(BookingSystemError):
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(BookingSystemError):
    kind = "conflict"
    status_code = status.HTTP_409_CONFLICT


class InternalFailureError(BookingSystemError):
    pass


def _error_body(kind: str, message: str, details: Optional[Dict[str, Any]] = None) -> dict:
    body: Dict[str, Any] = {"error": kind, "message": message}
    if details:
        body["details"] = details
    return body


async def booking_error_handler(request: Request, exc: BookingSystemError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.kind, exc.message, exc.details),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body(InvalidInputError.kind, "Request validation failed.", {"errors": errors}),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(InternalFailureError.kind, "Internal server error."),
    )


EXCEPTION_HANDLERS = {
    BookingSystemError: booking_error_handler,
    RequestValidationError: validation_error_handler,
    Exception: unhandled_error_handler,
}


def register_exception_handlers(app: FastAPI) -> None:
    for exception_class, handler in EXCEPTION_HANDLERS.items():
        app.add_exception_handler(exception_class, handler)
