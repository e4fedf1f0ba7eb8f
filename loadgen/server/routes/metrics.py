"""
Load Generation Controller - Metrics Endpoint

Exposes Prometheus-compatible metrics for monitoring.
"""

from fastapi import APIRouter, HTTPException, Response, status
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from loadgen.observability.metrics import metrics_registry
from loadgen.server.config import get_config

router = APIRouter()


@router.get("", tags=["metrics"])
async def get_metrics():
    """
    Get Prometheus metrics.

    Returns:
        Metrics in Prometheus text format
    """
    if not get_config().metrics_enabled:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Metrics disabled"
        )
    metrics_data = generate_latest(metrics_registry)
    return Response(content=metrics_data, media_type=CONTENT_TYPE_LATEST)
