"""Buffer en memoria para destinos de auditoría.

Cada destino acumula registros ya mapeados y los escribe:
- cada ``writeFrequency`` ms (timer), o
- en cuanto el buffer llega a ``maxBatchSize``, o
- por evento si ``writeFrequency <= 0``.

Un flush desacopla atómicamente el buffer y lo escribe con tamaños de
lote progresivos. Si falla del todo, los registros vuelven al PRINCIPIO
del buffer para el siguiente intento.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Protocol

import orjson

from common.config import AppConfig, get_config

from ..metrics.prometheus import AUDIT_BUFFER_SIZE, AUDIT_FLUSH
from .batching import write_progressively

DEFAULT_MAX_BATCH_SIZE = 1000


class FlushExecutor(Protocol):
    """Cola a través de la que se enrutan los flush (p.ej. ``UdpQueueManager``)."""

    async def add_to_queue(self, process_fn: Callable[[], Awaitable[Any]]) -> bool: ...


def make_config_key(values: Mapping[str, Any]) -> str:
    """Huella determinista de la configuración de un destino."""
    return orjson.dumps(dict(values), option=orjson.OPT_SORT_KEYS).decode()


class BufferedAuditDestination(ABC):
    """Base de los destinos con buffer + flush progresivo.

    Las subclases definen dónde vive su configuración, cómo se mapea un
    sobre de auditoría a registro y cómo se escribe un chunk.
    """

    name: str = "audit"
    log_tag: str = "AUDIT BUFFER"

    def __init__(
        self,
        config_provider: Callable[[], AppConfig] = get_config,
        flush_executor: Optional[FlushExecutor] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._config_provider = config_provider
        self.flush_executor = flush_executor
        self.logger = logger or logging.getLogger(type(self).__module__)

        self._buffer: List[Any] = []
        self._config_key: Optional[str] = None
        self._flush_timer: Optional[asyncio.Task] = None
        self._flush_queued = False
        self._pending: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Hooks de la subclase
    # ------------------------------------------------------------------

    @property
    @abstractmethod
    def config_path(self) -> str:
        """Ruta con puntos del subárbol de configuración del destino."""

    @abstractmethod
    def config_key(self, cfg: Mapping[str, Any]) -> str:
        """Huella de los ajustes de conexión/formato."""

    @abstractmethod
    def map_record(self, envelope: Any, extras: Dict[str, Any], cfg: Mapping[str, Any]) -> Optional[Any]:
        """Sobre de auditoría → registro listo para el destino (None = descartar)."""

    @abstractmethod
    async def write_chunk(self, chunk: List[Any], cfg: Mapping[str, Any], context: str) -> None:
        """Escribe un chunk. Debe lanzar si falla."""

    async def prepare_write(self, cfg: Mapping[str, Any]) -> None:
        """Se ejecuta una vez por flush, antes de escribir."""

    # ------------------------------------------------------------------

    @property
    def config(self) -> AppConfig:
        return self._config_provider()

    @property
    def buffer_size(self) -> int:
        return len(self._buffer)

    def destination_enabled(self) -> bool:
        return self.config.is_true("auditEvents.destination.enable")

    def get_destination_config(self) -> Optional[Mapping[str, Any]]:
        return self.config.get(self.config_path, None)

    @staticmethod
    def max_batch_size(cfg: Mapping[str, Any]) -> int:
        return int(cfg.get("maxBatchSize") or DEFAULT_MAX_BATCH_SIZE)

    @staticmethod
    def write_frequency(cfg: Mapping[str, Any]) -> int:
        return int(cfg.get("writeFrequency") or 0)

    def _set_buffer_gauge(self) -> None:
        AUDIT_BUFFER_SIZE.labels(destination=self.name).set(len(self._buffer))

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------

    def stop_flush_timer(self) -> None:
        if self._flush_timer is not None:
            self._flush_timer.cancel()
            self._flush_timer = None

    def _ensure_flush_timer(self, cfg: Mapping[str, Any]) -> None:
        interval_ms = self.write_frequency(cfg)
        if interval_ms <= 0:
            self.stop_flush_timer()
            return
        if self._flush_timer is not None:
            return
        self._flush_timer = asyncio.get_running_loop().create_task(
            self._timer_loop(interval_ms / 1000.0)
        )

    async def _timer_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            self.request_flush("interval")

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    def buffer_event(self, envelope: Any, extras: Optional[Dict[str, Any]] = None) -> None:
        """Mapea y añade un evento al buffer. Síncrono; no hace I/O."""
        if not self.destination_enabled():
            # Destino deshabilitado: reset completo
            self._buffer = []
            self.stop_flush_timer()
            self._set_buffer_gauge()
            return

        cfg = self.get_destination_config()
        if not cfg:
            return

        key = self.config_key(cfg)
        if self._config_key is not None and self._config_key != key:
            self.logger.warning(
                "%s: Destination config changed; clearing %d buffered record(s) to avoid mixing configs.",
                self.log_tag, len(self._buffer),
            )
            self._buffer = []
            self.stop_flush_timer()
        self._config_key = key

        self._ensure_flush_timer(cfg)

        record = self.map_record(envelope, extras or {}, cfg)
        if record is None:
            return

        self._buffer.append(record)
        self._set_buffer_gauge()

        if len(self._buffer) >= self.max_batch_size(cfg):
            self.request_flush("maxBatchSize")
        elif self.write_frequency(cfg) <= 0:
            self.request_flush("immediate")

    # ------------------------------------------------------------------
    # Flush
    # ------------------------------------------------------------------

    def _track(self, task: asyncio.Task) -> None:
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def request_flush(self, reason: str) -> None:
        """Programa un flush. No-op si ya hay uno pendiente o en curso."""
        if self._flush_queued:
            return
        self._flush_queued = True

        async def run() -> None:
            try:
                await self.flush_now(reason)
            finally:
                self._flush_queued = False

        loop = asyncio.get_running_loop()
        if self.flush_executor is not None:
            self._track(loop.create_task(self._enqueue_flush(run)))
        else:
            self._track(loop.create_task(run()))

    async def _enqueue_flush(self, run: Callable[[], Awaitable[None]]) -> None:
        try:
            accepted = await self.flush_executor.add_to_queue(run)
        except Exception as e:
            self._flush_queued = False
            self.logger.error("%s: Failed to enqueue flush: %s", self.log_tag, e)
            return
        if not accepted:
            self._flush_queued = False
            self.logger.warning("%s: Flush rejected by queue; will retry on next trigger", self.log_tag)

    async def write_records(self, records: List[Any], cfg: Mapping[str, Any]) -> None:
        await self.prepare_write(cfg)

        async def write(chunk: List[Any], context: str) -> None:
            await self.write_chunk(chunk, cfg, context)

        await write_progressively(
            records,
            write,
            max_batch_size=self.max_batch_size(cfg),
            context=f"{self.log_tag}: Audit events",
            log=self.logger,
        )

    async def flush_now(self, reason: str = "manual") -> None:
        """Escribe todo el buffer. Nunca lanza: los fallos se loguean."""
        if not self.destination_enabled():
            return
        cfg = self.get_destination_config()
        if not cfg or not self._buffer:
            return

        records = self._buffer
        detached_key = self._config_key
        self._buffer = []
        self.logger.debug(
            "%s: Flushing %d record(s) (reason=%s)", self.log_tag, len(records), reason
        )

        try:
            await self.write_records(records, cfg)
        except Exception as e:
            if self._config_key != detached_key:
                # Config cambiada durante el flush: no se mezclan con el buffer nuevo
                self.logger.warning(
                    "%s: Destination config changed during flush; dropping %d record(s)",
                    self.log_tag, len(records),
                )
            else:
                # Vuelven al principio para conservar el orden
                self._buffer[:0] = records
            self._set_buffer_gauge()
            AUDIT_FLUSH.labels(destination=self.name, status="error").inc()
            self.logger.error("%s: Flush failed; will retry later: %s", self.log_tag, e)
            return

        self._set_buffer_gauge()
        AUDIT_FLUSH.labels(destination=self.name, status="success").inc()
        self.logger.info("%s: Flushed %d record(s)", self.log_tag, len(records))

    async def wait_for_pending(self) -> None:
        """Espera a los flush ya programados."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def shutdown(self) -> None:
        """Detiene el timer y hace un último flush."""
        self.stop_flush_timer()
        await self.wait_for_pending()
        await self.flush_now("shutdown")
