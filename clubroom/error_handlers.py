import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.exceptions import (
    DataInconsistency,
    QuotaExceeded,
    SlotConflict,
    UpstreamWriteFailure,
    ValidationError,
)

logger = logging.getLogger(__name__)


def _error(request: Request, status_code: int, error: str, detail, **extra) -> JSONResponse:
    content = {"error": error, "detail": detail, "path": str(request.url.path)}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


def register_exception_handlers(app):
    """
    Register global exception handlers for standardized error responses.
    """

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return _error(request, 422, "Validation error", "Invalid request data", errors=exc.errors())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _error(request, exc.status_code, "HTTP error", exc.detail)

    @app.exception_handler(QuotaExceeded)
    async def quota_exception_handler(request: Request, exc: QuotaExceeded):
        return _error(request, 400, "Quota exceeded", str(exc), quota=exc.kind)

    @app.exception_handler(SlotConflict)
    async def slot_conflict_handler(request: Request, exc: SlotConflict):
        return _error(request, 409, "Slot conflict", str(exc))

    @app.exception_handler(ValidationError)
    async def booking_rule_handler(request: Request, exc: ValidationError):
        return _error(request, 400, "Booking rule violated", str(exc))

    @app.exception_handler(DataInconsistency)
    async def inconsistency_handler(request: Request, exc: DataInconsistency):
        logger.error("Data inconsistency on %s: %s", request.url.path, exc)
        return _error(request, 500, "Internal server error", "Stored bookings are inconsistent")

    @app.exception_handler(UpstreamWriteFailure)
    async def upstream_handler(request: Request, exc: UpstreamWriteFailure):
        return _error(request, 503, "Service unavailable", str(exc))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s", request.url.path)
        return _error(request, 500, "Internal server error", "An unexpected error occurred")
