"""
Exception handlers that turn AppError subclasses into JSON responses.

Upstream detail and unexpected tracebacks stay in the server log; clients
only ever see the safe message.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.exceptions import AppError, AuthenticationError, UpstreamError

logger = logging.getLogger(__name__)

GENERIC_MESSAGE = "Something went wrong"


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message}, headers=headers)


async def upstream_error_handler(request: Request, exc: UpstreamError) -> JSONResponse:
    logger.error(
        "Upstream failure on %s %s: %s",
        request.method,
        request.url.path,
        exc.message,
        extra={f"error.ctx.{k}": v for k, v in exc.context.items()},
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.public_message})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": GENERIC_MESSAGE})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(UpstreamError, upstream_error_handler)
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
