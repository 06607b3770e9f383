"""Cola UDP con rate limiting y backpressure.

Por cada socket UDP hay un ``UdpQueueHandler`` que decide si un datagrama
entra o se descarta, y ejecuta el handler del llamador con concurrencia
acotada.

Orden estricto de admisión (la primera regla que aplica gana):
1. Tamaño del mensaje (bytes)
2. Rate limit (ventana deslizante de 60s)
3. Cola llena (drop newest, o desalojo del más antiguo en espera)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Optional

from .queue_config import DropStrategy, QueueConfig
from .rate_limiter import SlidingWindowRateLimiter
from .task_pool import BoundedTaskPool

MessageHandler = Callable[[bytes, Any], Awaitable[None]]

PROCESSING_SAMPLES = 1000


@dataclass
class QueueMetrics:
    """Contadores de una cola. Solo ``clear_metrics`` reinicia los tiempos."""
    messages_received: int = 0
    messages_queued: int = 0
    messages_processed: int = 0
    messages_failed: int = 0
    messages_dropped_rate_limit: int = 0
    messages_dropped_queue_full: int = 0
    messages_dropped_size: int = 0
    processing_times: Deque[float] = field(
        default_factory=lambda: deque(maxlen=PROCESSING_SAMPLES)
    )
    max_processing_time_ms: float = 0

    @property
    def messages_dropped_total(self) -> int:
        return (
            self.messages_dropped_rate_limit
            + self.messages_dropped_queue_full
            + self.messages_dropped_size
        )

    def record_processing_time(self, elapsed_ms: float) -> None:
        self.processing_times.append(elapsed_ms)
        if elapsed_ms > self.max_processing_time_ms:
            self.max_processing_time_ms = elapsed_ms


def processing_time_stats(samples) -> tuple[float, float]:
    """(media, p95) de las muestras; (0, 0) sin muestras."""
    if not samples:
        return 0.0, 0.0
    ordered = sorted(samples)
    avg = sum(ordered) / len(ordered)
    p95 = ordered[min(int(len(ordered) * 0.95), len(ordered) - 1)]
    return avg, p95


class UdpQueueHandler:
    """Gobernador de admisión y ejecución para los mensajes de un socket UDP.

    Uso:
        handler = UdpQueueHandler(QueueConfig(name="user_events"))

        # datagram_received
        accepted = handler.add_message(data, addr, process_user_event)

    ``add_message`` devuelve True en cuanto el mensaje queda ACEPTADO para
    procesarse, no cuando se ha procesado.
    """

    def __init__(self, config: QueueConfig, logger: Optional[logging.Logger] = None):
        self.name = config.name
        self.config = config
        self.logger = logger or logging.getLogger(__name__)

        self.pool = BoundedTaskPool(
            concurrency=config.max_concurrent,
            timeout=config.task_timeout_seconds,
        )
        self.rate_limiter = SlidingWindowRateLimiter(
            config.name,
            config.max_messages_per_minute,
            enabled=config.rate_limit_enable,
            violation_log_throttle_seconds=config.violation_log_throttle_seconds,
            logger=self.logger,
        )
        self.metrics = QueueMetrics()
        self.backpressure_active = False
        self._last_queue_full_log: float = 0

        self.logger.info(
            "UDP QUEUE [%s]: Initialized with maxConcurrent=%d, maxSize=%d, dropStrategy=%s, rateLimit=%s",
            self.name,
            config.max_concurrent,
            config.max_size,
            config.drop_strategy.value,
            f"{config.max_messages_per_minute}/min" if config.rate_limit_enable else "disabled",
        )

    @property
    def queue_size(self) -> int:
        return self.pool.size

    def check_backpressure(self) -> None:
        """Detección por flanco: solo loguea al cruzar el umbral en cada sentido."""
        utilization = self.pool.size / self.config.max_size * 100
        threshold = self.config.backpressure_threshold_percent

        if utilization >= threshold and not self.backpressure_active:
            self.backpressure_active = True
            self.logger.warning(
                "UDP QUEUE [%s]: Backpressure detected - queue at %.1f%% (%d/%d)",
                self.name, utilization, self.pool.size, self.config.max_size,
            )
        elif utilization < threshold and self.backpressure_active:
            self.backpressure_active = False
            self.logger.info(
                "UDP QUEUE [%s]: Backpressure relieved - queue at %.1f%%",
                self.name, utilization,
            )

    def _log_queue_full(self) -> None:
        now = time.monotonic()
        if (
            self._last_queue_full_log == 0
            or now - self._last_queue_full_log > self.config.queue_full_log_throttle_seconds
        ):
            self.logger.warning(
                "UDP QUEUE [%s]: Queue full (%d/%d), dropping %s message",
                self.name, self.pool.size, self.config.max_size,
                self.config.drop_strategy.value,
            )
            self._last_queue_full_log = now

    def add_message(self, message: bytes, remote: Any, handler: MessageHandler) -> bool:
        """Agrega un mensaje a la cola.

        Args:
            message: Datagrama (bytes; un ``str`` se mide en UTF-8)
            remote: Información del emisor, se pasa tal cual al handler
            handler: Corrutina ``handler(message, remote)`` que procesa el mensaje

        Returns:
            True si se aceptó para procesar, False si se descartó
        """
        self.metrics.messages_received += 1

        size = len(message.encode("utf-8")) if isinstance(message, str) else len(message)
        if size > self.config.max_message_size_bytes:
            self.metrics.messages_dropped_size += 1
            self.logger.warning(
                "UDP QUEUE [%s]: Message size %d exceeds limit %d, dropping",
                self.name, size, self.config.max_message_size_bytes,
            )
            return False

        if not self.rate_limiter.try_acquire():
            self.metrics.messages_dropped_rate_limit += 1
            return False

        if self.pool.size >= self.config.max_size:
            self.metrics.messages_dropped_queue_full += 1
            self._log_queue_full()
            if self.config.drop_strategy is not DropStrategy.OLDEST or not self.pool.evict_oldest():
                return False

        self.metrics.messages_queued += 1
        self.check_backpressure()

        future = self.pool.add(lambda: self._process(message, remote, handler))
        future.add_done_callback(self._on_task_done)
        return True

    async def _process(self, message: bytes, remote: Any, handler: MessageHandler) -> None:
        start = time.perf_counter()
        try:
            await handler(message, remote)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.metrics.messages_failed += 1
            self.logger.error("UDP QUEUE [%s]: Error processing message: %s", self.name, e)
            return

        elapsed_ms = (time.perf_counter() - start) * 1000
        self.metrics.messages_processed += 1
        self.metrics.record_processing_time(elapsed_ms)
        self.logger.debug(
            "UDP QUEUE [%s]: Message processed in %.1fms (queue: %d/%d)",
            self.name, elapsed_ms, self.pool.size, self.config.max_size,
        )

    def _on_task_done(self, future: "asyncio.Future[Any]") -> None:
        # Desalojada por drop oldest: ya contada como queueFull
        if future.cancelled():
            return
        err = future.exception()
        if err is not None:
            # Timeout u otro error del pool
            self.metrics.messages_failed += 1
            self.logger.error(
                "UDP QUEUE [%s]: Queue error: %s %s", self.name, type(err).__name__, err
            )
        self.check_backpressure()

    def get_metrics(self) -> dict:
        """Snapshot de métricas (lectura pura, sin efectos)."""
        m = self.metrics
        avg, p95 = processing_time_stats(m.processing_times)
        size = self.pool.size
        return {
            "name": self.name,
            "queue": {
                "current_size": size,
                "max_size": self.config.max_size,
                "utilization_percent": size / self.config.max_size * 100,
                "pending_count": self.pool.pending,
                "max_concurrent": self.config.max_concurrent,
            },
            "messages": {
                "received": m.messages_received,
                "queued": m.messages_queued,
                "processed": m.messages_processed,
                "failed": m.messages_failed,
            },
            "dropped": {
                "total": m.messages_dropped_total,
                "rate_limit": m.messages_dropped_rate_limit,
                "queue_full": m.messages_dropped_queue_full,
                "message_size": m.messages_dropped_size,
            },
            "processing_time": {
                "avg_ms": round(avg),
                "p95_ms": round(p95),
                "max_ms": round(m.max_processing_time_ms),
            },
            "rate_limit": {
                "enabled": self.config.rate_limit_enable,
                "max_per_minute": self.config.max_messages_per_minute,
                "current_rate": self.rate_limiter.current_rate,
            },
            "backpressure": self.backpressure_active,
        }

    def clear_metrics(self) -> None:
        """Reinicia muestras de tiempo y el máximo; los contadores son acumulativos."""
        self.metrics.processing_times.clear()
        self.metrics.max_processing_time_ms = 0

    async def wait_for_empty(self) -> None:
        """Espera a que no haya mensajes en espera ni en proceso."""
        await self.pool.on_empty()
        await self.pool.on_idle()

    def get_status(self) -> str:
        metrics = self.get_metrics()
        return (
            f"Queue: {metrics['queue']['current_size']}/{metrics['queue']['max_size']} "
            f"({metrics['queue']['utilization_percent']:.1f}%), "
            f"Processed: {metrics['messages']['processed']}, "
            f"Dropped: {metrics['dropped']['total']}, "
            f"Rate: {metrics['rate_limit']['current_rate']}/min"
        )
