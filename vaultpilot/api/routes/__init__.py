"""
API route modules
"""
from .status import router as status_router
from .pools import router as pools_router
from .automation import router as automation_router

__all__ = [
    "status_router",
    "pools_router",
    "automation_router",
]
