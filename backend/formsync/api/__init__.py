from .collaboration import router as collaboration_router
from .health import router as health_router

__all__ = ["collaboration_router", "health_router"]
