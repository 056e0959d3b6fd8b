"""Middleware registration."""

from fastapi import FastAPI

from unic.config import Settings
from unic.middleware.error_handler import setup_error_handlers
from unic.middleware.logging import setup_logging
from unic.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure logging, error handlers and request tracing."""
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
