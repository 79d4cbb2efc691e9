"""
Prometheus Metrics Endpoint.

GET /metrics — job runs, durations, points credited, redemptions, anomalies.
"""

from fastapi import APIRouter, Response

from ecobin.observability import render_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", summary="Prometheus metrics")
async def prometheus_metrics():
    payload, content_type = render_latest()
    return Response(content=payload, media_type=content_type)
