"""Custom exception classes and error handling utilities."""
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from loguru import logger


class TradyfiException(Exception):
    """Base exception for the application."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(TradyfiException):
    """Missing or malformed subscription/token data."""

    status_code = status.HTTP_400_BAD_REQUEST


class PermissionDeniedError(TradyfiException):
    """Authenticated caller lacks the required role."""

    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(TradyfiException):
    """Requested resource does not exist."""

    status_code = status.HTTP_404_NOT_FOUND


class ChannelStoreError(TradyfiException):
    """Persisting or reading notification channels failed."""

    pass


class ProviderError(TradyfiException):
    """A push provider rejected or failed a delivery attempt."""

    def __init__(
        self,
        message: str,
        *,
        invalid: bool = False,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.invalid = invalid
        self.code = code


async def handle_tradyfi_exception(request: Request, exc: TradyfiException) -> JSONResponse:
    """Render an application exception as a JSON error response."""

    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__}: {exc.message}", path=request.url.path)
        content: Dict[str, Any] = {"message": "Internal server error"}
    else:
        logger.warning(f"{type(exc).__name__}: {exc.message}", path=request.url.path)
        content = {"message": exc.message}
        if exc.details:
            content["details"] = exc.details

    return JSONResponse(status_code=exc.status_code, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the application exception handlers to a FastAPI instance."""

    app.add_exception_handler(TradyfiException, handle_tradyfi_exception)  # type: ignore[arg-type]
