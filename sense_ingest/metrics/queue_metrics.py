"""Reporte periódico de métricas de colas.

Cada ``writeFrequency`` ms: lee ``get_metrics()``, publica en Prometheus,
loguea ``get_status()`` y llama a ``clear_metrics()``.

Acepta tanto ``UdpQueueHandler`` (snapshot anidado) como
``UdpQueueManager`` (snapshot plano).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from .prometheus import (
    UDP_BACKPRESSURE_ACTIVE,
    UDP_MESSAGES,
    UDP_QUEUE_SIZE,
    UDP_QUEUE_UTILIZATION,
)

logger = logging.getLogger(__name__)

_COUNTER_KEYS = {
    "received": "messages_received",
    "processed": "messages_processed",
    "failed": "messages_failed",
    "dropped_rate_limit": "messages_dropped_rate_limit",
    "dropped_queue_full": "messages_dropped_queue_full",
    "dropped_size": "messages_dropped_size",
}


def flatten_queue_metrics(metrics: Dict[str, Any]) -> Dict[str, Any]:
    """Lleva el snapshot anidado de ``UdpQueueHandler`` al formato plano."""
    if not isinstance(metrics.get("queue"), dict):
        return dict(metrics)

    q = metrics["queue"]
    msgs = metrics["messages"]
    dropped = metrics["dropped"]
    pt = metrics["processing_time"]
    return {
        "queue_size": q["current_size"],
        "queue_max_size": q["max_size"],
        "queue_utilization_pct": q["utilization_percent"],
        "queue_pending": q["pending_count"],
        "messages_received": msgs["received"],
        "messages_queued": msgs["queued"],
        "messages_processed": msgs["processed"],
        "messages_failed": msgs["failed"],
        "messages_dropped_total": dropped["total"],
        "messages_dropped_rate_limit": dropped["rate_limit"],
        "messages_dropped_queue_full": dropped["queue_full"],
        "messages_dropped_size": dropped["message_size"],
        "processing_time_avg_ms": pt["avg_ms"],
        "processing_time_p95_ms": pt["p95_ms"],
        "processing_time_max_ms": pt["max_ms"],
        "rate_limit_current": metrics["rate_limit"]["current_rate"],
        "backpressure_active": 1 if metrics["backpressure"] else 0,
    }


class QueueMetricsReporter:
    """Publica periódicamente las métricas de una cola.

    Los contadores de Prometheus son monótonos; como las colas pueden
    reiniciar sus contadores en ``clear_metrics``, se publica el delta
    respecto a la última lectura.
    """

    def __init__(self, name: str, queue: Any, interval_seconds: float):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.name = name
        self.queue = queue
        self.interval_seconds = interval_seconds
        self._last_counts: Dict[str, int] = {}
        self._task: Optional[asyncio.Task] = None

    def report_once(self) -> Dict[str, Any]:
        flat = flatten_queue_metrics(self.queue.get_metrics())

        UDP_QUEUE_SIZE.labels(queue=self.name).set(flat["queue_size"])
        UDP_QUEUE_UTILIZATION.labels(queue=self.name).set(flat["queue_utilization_pct"])
        UDP_BACKPRESSURE_ACTIVE.labels(queue=self.name).set(flat["backpressure_active"])

        for status, key in _COUNTER_KEYS.items():
            current = int(flat[key])
            previous = self._last_counts.get(status, 0)
            # Contador reiniciado por clear_metrics
            delta = current - previous if current >= previous else current
            if delta:
                UDP_MESSAGES.labels(queue=self.name, status=status).inc(delta)
            self._last_counts[status] = current

        logger.info("QUEUE METRICS [%s]: %s", self.name, self.queue.get_status())

        self.queue.clear_metrics()
        # Tras clear_metrics la próxima lectura parte del estado reiniciado
        cleared = flatten_queue_metrics(self.queue.get_metrics())
        for status, key in _COUNTER_KEYS.items():
            self._last_counts[status] = int(cleared[key])

        return flat

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                self.report_once()
            except Exception as e:
                logger.error("QUEUE METRICS [%s]: Error reporting metrics: %s", self.name, e)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._loop())
            logger.info(
                "QUEUE METRICS [%s]: Reporting every %.1fs", self.name, self.interval_seconds
            )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
