"""API routers."""
from .scans import router as scans_router
from .issues import router as issues_router

__all__ = ["scans_router", "issues_router"]
