"""
Prometheus metrics endpoint for monitoring infrastructure.

Public (no authentication) following standard Prometheus practice. Exposes
the metrics collected by ``@BaseService.measure_operation`` and the payment
domain counters.
"""

from fastapi import APIRouter, Response

from ...monitoring.prometheus_metrics import prometheus_metrics

router = APIRouter(tags=["monitoring"])


@router.get("/metrics", include_in_schema=False)
def get_metrics() -> Response:
    return Response(
        content=prometheus_metrics.get_metrics(),
        media_type=prometheus_metrics.get_content_type(),
    )
