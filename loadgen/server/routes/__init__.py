"""
Load Generation Controller - API Routes

This package contains all FastAPI route handlers.
"""

from . import generators, health, metrics

__all__ = ["generators", "health", "metrics"]
