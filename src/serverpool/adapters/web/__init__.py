"""Web adapter for REST and WebSocket endpoints.

This module provides FastAPI-based endpoints for player placement,
server management, health checks and metrics.
"""

from serverpool.adapters.web.server import (
    ErrorResponse,
    PlacementRequest,
    PlacementResponse,
    ServerListResponse,
    WebAdapter,
    create_app,
    create_web_adapter,
)

__all__ = [
    "ErrorResponse",
    "PlacementRequest",
    "PlacementResponse",
    "ServerListResponse",
    "WebAdapter",
    "create_app",
    "create_web_adapter",
]
