import logging
import os
import sys
import time
import uuid
from pathlib import Path
from typing import Callable

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from app.config import settings

REQUEST_ID_HEADER = "X-Request-ID"

# Devices post a fix every few seconds; these only show up at DEBUG
QUIET_PATHS = ("/api/location-tracking/update-location",)


def setup_logging():
    """Configure application logging from settings."""
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stdout)]
    if settings.LOG_FILE:
        os.makedirs(Path(settings.LOG_FILE).parent, exist_ok=True)
        handlers.append(logging.FileHandler(settings.LOG_FILE))

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )

    for noisy in ("uvicorn", "sqlalchemy", "alembic", "aiosqlite", "asyncpg"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger = logging.getLogger("app")
    logger.setLevel(log_level)
    return logger


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs one line per request and tags the response with a request id."""

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.logger = logging.getLogger("app.request")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Reuse the id the mobile client sent so both sides can be correlated
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        start_time = time.time()
        path = request.url.path

        try:
            response = await call_next(request)
        except Exception as e:
            self.logger.error(
                f"{request.method} {path} failed after {time.time() - start_time:.3f}s: {e} "
                f"[request_id: {request_id}]",
                exc_info=True
            )
            raise

        if response.status_code >= 500:
            level = logging.WARNING
        elif path in QUIET_PATHS:
            level = logging.DEBUG
        else:
            level = logging.INFO
        self.logger.log(
            level,
            f"{request.method} {path} -> {response.status_code} in {time.time() - start_time:.3f}s "
            f"[client: {request.client.host if request.client else 'unknown'}] [request_id: {request_id}]"
        )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def add_logging_middleware(app: FastAPI):
    """Add request logging middleware to the FastAPI app."""
    app.add_middleware(RequestLoggingMiddleware)
