"""
Error taxonomy and global exception handlers.

Every failure reaches the client as {"error": "<message>"} with the status
code of its class. Unexpected exceptions are logged with their traceback
and answered with a generic 500 message.
"""
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class MarketplaceError(Exception):
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_response(self) -> dict:
        return {"error": self.message}


class ValidationError(MarketplaceError):
    http_status = status.HTTP_400_BAD_REQUEST


class AuthenticationError(MarketplaceError):
    """Missing, invalid or expired bearer token."""
    http_status = status.HTTP_401_UNAUTHORIZED


class AuthorizationError(MarketplaceError):
    http_status = status.HTTP_403_FORBIDDEN


class NotFoundError(MarketplaceError):
    http_status = status.HTTP_404_NOT_FOUND


class InternalError(MarketplaceError):
    pass


class DatabaseError(InternalError):
    def __init__(self, message: str, operation: str):
        super().__init__(f"Database {operation} failed: {message}")
        self.operation = operation


def register_error_handlers(app: FastAPI) -> None:
    """Register all global error handlers on the FastAPI app."""

    @app.exception_handler(MarketplaceError)
    async def marketplace_error_handler(request: Request, exc: MarketplaceError):
        if exc.http_status >= 500:
            logger.error(f"{type(exc).__name__}: {exc.message}", extra={"path": request.url.path})
            content = {"error": "Internal server error"}
        else:
            logger.warning(f"{type(exc).__name__}: {exc.message}", extra={"path": request.url.path})
            content = exc.to_response()
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
        return JSONResponse(status_code=exc.http_status, content=content, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": _format_validation_errors(exc)},
        )

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )


def _format_validation_errors(exc: RequestValidationError) -> str:
    parts = []
    for e in exc.errors():
        field = ".".join(str(loc) for loc in e["loc"] if loc != "body")
        parts.append(f"{field}: {e['msg']}" if field else e["msg"])
    return "; ".join(parts) or "Invalid request data"
