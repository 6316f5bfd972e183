"""
Routers Package
===============

Routers are like the reception desk - they direct incoming requests
to the right place.
"""

from .imports import router as imports_router
from .trees import router as trees_router
from .auth import router as auth_router
from .dependencies import set_services, get_services

__all__ = [
    "imports_router",
    "trees_router",
    "auth_router",
    "set_services",
    "get_services",
]
