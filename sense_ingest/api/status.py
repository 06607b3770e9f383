"""Health, métricas Prometheus y estado de colas."""

from __future__ import annotations

from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ..metrics import flatten_queue_metrics

router = APIRouter(tags=["status"])


@router.get("/health")
def health():
    """Comprobación de vida."""
    return {"status": "ok"}


@router.get("/metrics")
def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get("/api/v1/queues")
def queues(request: Request):
    """Snapshot de todas las colas (no reinicia contadores)."""
    registered = getattr(request.app.state, "queues", {}) or {}
    return {name: flatten_queue_metrics(queue.get_metrics()) for name, queue in registered.items()}
