"""
GATEKEEPER REST API.

FastAPI-based HTTP adapter for the two-factor authentication service.
"""
from .main import app, create_app

__all__ = ["app", "create_app"]
