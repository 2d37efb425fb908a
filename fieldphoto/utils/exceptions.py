import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fieldphoto.utils.response import error_response

logger = logging.getLogger(__name__)


class AppException(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ValidationError(AppException):
    """Malformed request; reported to the caller and never retried."""

    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class SelectionMismatch(ValidationError):
    """Pin target does not belong to the requested (job, category) slot."""


class UnsupportedMediaType(AppException):
    def __init__(self, message: str, peek: str = ""):
        super().__init__(message, status_code=415)
        self.peek = peek


class PayloadTooLarge(AppException):
    def __init__(self, message: str):
        super().__init__(message, status_code=413)


class StorageUnavailable(Exception):
    """The device-local durable queue cannot be opened or written."""


class NetworkFailure(Exception):
    """Transient delivery failure; the job stays queued for the next drain."""


class Aborted(Exception):
    """Serial-number recognition was cancelled by the caller."""


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
        extra = {"peek": exc.peek} if isinstance(exc, UnsupportedMediaType) else {}
        return JSONResponse(
            status_code=exc.status_code,
            content=error_response(exc.message, **extra),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=error_response("Internal server error"),
        )
