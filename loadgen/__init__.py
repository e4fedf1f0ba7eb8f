"""
Load Generation Controller

This package contains the components of the load generation controller:
- runtime: Generator policies, registry, reconciliation controller, host
- observability: Structured logging and Prometheus metrics
- server: FastAPI admin surface
"""

__version__ = "1.0.0"
