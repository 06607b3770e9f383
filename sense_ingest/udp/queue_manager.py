"""Gestor de cola para trabajos ya empaquetados (closures).

Lo usa la API de auditoría: cada evento HTTP se convierte en una corrutina
sin argumentos que pasa por rate limit → cola llena → ejecución acotada.
Los buffers de destino también pueden enrutar sus flush por aquí.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Any, Awaitable, Callable, Optional

from .queue_config import QueueConfig
from .queue_handler import QueueMetrics, processing_time_stats
from .rate_limiter import SlidingWindowRateLimiter
from .task_pool import BoundedTaskPool

DROPPED_LOG_INTERVAL_SECONDS = 60

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def sanitize_field(value: Any, max_length: int = 500) -> str:
    """Elimina caracteres de control y limita la longitud."""
    if not isinstance(value, str):
        return str(value)[:max_length]
    return _CONTROL_CHARS.sub("", value)[:max_length]


class UdpQueueManager:
    """Cola acotada + rate limit para closures asíncronas.

    Uso:
        manager = UdpQueueManager(QueueConfig(name="audit_events"))
        accepted = await manager.add_to_queue(lambda: process(envelope))
    """

    def __init__(self, config: QueueConfig, logger: Optional[logging.Logger] = None):
        self.config = config
        self.queue_type = config.name
        self.logger = logger or logging.getLogger(__name__)

        self.queue = BoundedTaskPool(
            concurrency=config.max_concurrent,
            timeout=config.task_timeout_seconds,
        )
        self.rate_limiter: Optional[SlidingWindowRateLimiter] = None
        if config.rate_limit_enable:
            self.rate_limiter = SlidingWindowRateLimiter(
                config.name,
                config.max_messages_per_minute,
                violation_log_throttle_seconds=config.violation_log_throttle_seconds,
                logger=self.logger,
            )

        self.metrics = QueueMetrics()
        self.backpressure_active = False
        self.dropped_since_last_log = 0
        self.last_drop_log = time.monotonic()

        self.logger.info(
            "[QUEUE_MANAGER] %s initialized: max_concurrent=%d max_size=%d rate_limit=%s",
            self.queue_type,
            config.max_concurrent,
            config.max_size,
            f"{config.max_messages_per_minute}/min" if self.rate_limiter else "disabled",
        )

    def validate_message_size(self, message: Any) -> bool:
        if isinstance(message, str):
            size = len(message.encode("utf-8"))
        else:
            size = len(message)
        return size <= self.config.max_message_size_bytes

    def check_rate_limit(self) -> bool:
        """True si el mensaje puede pasar."""
        if self.rate_limiter is None:
            return True
        return self.rate_limiter.try_acquire()

    def _note_drop(self) -> None:
        self.dropped_since_last_log += 1
        self.log_dropped_messages()

    def handle_rate_limit_drop(self) -> None:
        self.metrics.messages_dropped_rate_limit += 1
        self._note_drop()

    def handle_size_drop(self) -> None:
        self.metrics.messages_dropped_size += 1
        self._note_drop()

    def handle_queue_full_drop(self) -> None:
        self.metrics.messages_dropped_queue_full += 1
        self._note_drop()

    def log_dropped_messages(self) -> None:
        """Resumen de descartes, como mucho una vez por minuto."""
        if self.dropped_since_last_log == 0:
            return
        now = time.monotonic()
        if now - self.last_drop_log < DROPPED_LOG_INTERVAL_SECONDS:
            return
        self.logger.warning(
            "[QUEUE_MANAGER] %s: Dropped %d messages in the last %ds (queue %d/%d)",
            self.queue_type,
            self.dropped_since_last_log,
            int(now - self.last_drop_log),
            self.queue.size,
            self.config.max_size,
        )
        self.dropped_since_last_log = 0
        self.last_drop_log = now

    def check_backpressure(self) -> None:
        utilization = self.queue.size / self.config.max_size * 100
        threshold = self.config.backpressure_threshold_percent

        if utilization >= threshold and not self.backpressure_active:
            self.backpressure_active = True
            self.logger.warning(
                "[QUEUE_MANAGER] %s: Backpressure detected - queue at %.1f%% (%d/%d)",
                self.queue_type, utilization, self.queue.size, self.config.max_size,
            )
        elif utilization < threshold and self.backpressure_active:
            self.backpressure_active = False
            self.logger.info(
                "[QUEUE_MANAGER] %s: Backpressure cleared - queue at %.1f%%",
                self.queue_type, utilization,
            )

    async def add_to_queue(
        self,
        process_fn: Callable[[], Awaitable[Any]],
        message: Optional[Any] = None,
    ) -> bool:
        """Encola ``process_fn`` (corrutina sin argumentos).

        Si se pasa ``message`` (bytes o str), se valida su tamaño antes del
        rate limit.

        Returns:
            True si se encoló, False si se descartó (tamaño, rate limit o cola llena)
        """
        self.metrics.messages_received += 1

        if message is not None and not self.validate_message_size(message):
            self.handle_size_drop()
            return False

        if not self.check_rate_limit():
            self.handle_rate_limit_drop()
            return False

        if self.queue.size >= self.config.max_size:
            self.handle_queue_full_drop()
            return False

        self.metrics.messages_queued += 1
        future = self.queue.add(lambda: self._run(process_fn))
        future.add_done_callback(self._on_done)
        self.check_backpressure()
        return True

    async def _run(self, process_fn: Callable[[], Awaitable[Any]]) -> None:
        start = time.perf_counter()
        try:
            await process_fn()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.metrics.messages_failed += 1
            self.logger.error("[QUEUE_MANAGER] %s: Error processing message: %s", self.queue_type, e)
            return
        elapsed_ms = (time.perf_counter() - start) * 1000
        self.metrics.messages_processed += 1
        self.metrics.record_processing_time(elapsed_ms)

    def _on_done(self, future: "asyncio.Future[Any]") -> None:
        if not future.cancelled():
            err = future.exception()
            if err is not None:
                self.metrics.messages_failed += 1
                self.logger.error(
                    "[QUEUE_MANAGER] %s: Queue error: %s %s", self.queue_type, type(err).__name__, err
                )
        self.check_backpressure()

    def get_metrics(self) -> dict:
        m = self.metrics
        avg, p95 = processing_time_stats(m.processing_times)
        return {
            "queue_size": self.queue.size,
            "queue_max_size": self.config.max_size,
            "queue_utilization_pct": self.queue.size / self.config.max_size * 100,
            "queue_pending": self.queue.pending,
            "messages_received": m.messages_received,
            "messages_queued": m.messages_queued,
            "messages_processed": m.messages_processed,
            "messages_failed": m.messages_failed,
            "messages_dropped_total": m.messages_dropped_total,
            "messages_dropped_rate_limit": m.messages_dropped_rate_limit,
            "messages_dropped_queue_full": m.messages_dropped_queue_full,
            "messages_dropped_size": m.messages_dropped_size,
            "processing_time_avg_ms": round(avg, 2),
            "processing_time_p95_ms": round(p95, 2),
            "processing_time_max_ms": round(m.max_processing_time_ms, 2),
            "rate_limit_current": self.rate_limiter.current_rate if self.rate_limiter else 0,
            "backpressure_active": 1 if self.backpressure_active else 0,
        }

    def clear_metrics(self) -> None:
        """Reinicia todos los contadores (tras reportarlos)."""
        self.metrics = QueueMetrics()

    async def wait_for_empty(self) -> None:
        await self.queue.on_empty()
        await self.queue.on_idle()

    def get_status(self) -> str:
        m = self.get_metrics()
        return (
            f"Queue: {m['queue_size']}/{m['queue_max_size']} ({m['queue_utilization_pct']:.1f}%), "
            f"Processed: {m['messages_processed']}, Dropped: {m['messages_dropped_total']}, "
            f"Rate: {m['rate_limit_current']}/min"
        )
