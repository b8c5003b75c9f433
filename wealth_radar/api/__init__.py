# HTTP API routers
from .health import router as health_router
from .pipeline import router as pipeline_router

__all__ = ["health_router", "pipeline_router"]
