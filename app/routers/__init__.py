"""API routers for KUBECHAOS."""

from app.routers.chaos import router as chaos_router
from app.routers.ws import router as ws_router

__all__ = ["chaos_router", "ws_router"]
