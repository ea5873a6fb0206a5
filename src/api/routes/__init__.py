"""
API Routes for GATEKEEPER.
"""
from .health import router as health_router
from .twofa import router as twofa_router

__all__ = [
    "health_router",
    "twofa_router",
]
