# aeo_api/routes/__init__.py
"""
API route handlers organized by domain.
"""

from aeo_api.routes.auth import router as auth_router
from aeo_api.routes.health import router as health_router

__all__ = [
    "auth_router",
    "health_router",
]
