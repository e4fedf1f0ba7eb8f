"""
Load Generation Controller - FastAPI Server

This package provides the HTTP admin surface for the controller.
It exposes health, metrics, and generator management endpoints.
"""

__version__ = "1.0.0"
