"""API routers."""
from .monitors import router as monitors_router
from .notify import router as notify_router
from .settings import router as settings_router

__all__ = ["monitors_router", "notify_router", "settings_router"]
