"""API module for HTTP routes and the SSE event stream.

This module exposes the FastAPI routers for the Pluribots engine.
"""

from api.routes import router
from api.stream import stream_router

__all__ = ["router", "stream_router"]
