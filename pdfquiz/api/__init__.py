"""pdfquiz API layer -- routes, schemas, WebSocket and middleware."""

from pdfquiz.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from pdfquiz.api.routes import router
from pdfquiz.api.websocket import websocket_progress

__all__ = [
    "ErrorHandlingMiddleware",
    "RequestLoggingMiddleware",
    "configure_cors",
    "router",
    "websocket_progress",
]
