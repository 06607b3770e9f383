"""Punto de entrada: servidores UDP + API de auditoría + métricas.

Uso:
    SENSE_CONFIG_FILE=config/production.yaml python -m sense_ingest.main
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from common.config import AppConfig, set_config

from . import __version__
from .api import AuditEventService, audit_router, build_cors_options, status_router
from .audit.destinations import AuditDestinationRouter, build_audit_destinations
from .audit.influxdb import InfluxAuditDestination, init_audit_influx_destination
from .metrics import QueueMetricsReporter
from .udp.events import (
    EventCounter,
    EventDispatcher,
    log_event_sink,
    parse_log_event,
    parse_user_event,
)
from .udp.queue_config import QueueConfig
from .udp.queue_handler import UdpQueueHandler
from .udp.queue_manager import UdpQueueManager
from .udp.server import start_udp_server

logger = logging.getLogger(__name__)

SHUTDOWN_DRAIN_TIMEOUT_SECONDS = 10

UDP_SOURCES = (
    # (sección de config, clave del puerto, nombre de cola, parser)
    ("userEvents", "portUserActivityEvents", "user_events", parse_user_event),
    ("logEvents", "portLogEvents", "log_events", parse_log_event),
)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )


def _reporter_for(config: AppConfig, prefix: str, name: str, queue: Any) -> Optional[QueueMetricsReporter]:
    if not config.is_true(f"{prefix}.queueMetrics.enable"):
        return None
    interval_ms = int(config.get(f"{prefix}.queueMetrics.writeFrequency", 20000))
    return QueueMetricsReporter(name, queue, interval_ms / 1000.0)


def create_app(config: AppConfig, *, start_udp: bool = True) -> FastAPI:
    """Construye colas, destinos y rutas una sola vez.

    Los sockets UDP, el provisionado de InfluxDB y los reporters arrancan
    en el lifespan de la app.
    """
    config_provider = lambda: config  # noqa: E731

    queues: Dict[str, Any] = {}
    reporters: List[QueueMetricsReporter] = []
    udp_listeners = []
    count_events = config.is_true("qlikSenseEvents.eventCount.enable")
    count_rejected = config.is_true("qlikSenseEvents.rejectedEventCount.enable")

    for section, port_key, name, parser in UDP_SOURCES:
        if not config.is_true(f"{section}.enable"):
            continue
        prefix = f"{section}.udpServerConfig"
        handler = UdpQueueHandler(QueueConfig.from_config(config, prefix, name))
        dispatcher = EventDispatcher(
            parser,
            sinks=[log_event_sink],
            exclude_users=config.get(f"{section}.excludeUser", None) or [],
            counter=EventCounter(name, count_events, count_rejected)
            if count_events or count_rejected else None,
        )
        queues[name] = handler
        udp_listeners.append((
            name,
            config.get(f"{prefix}.serverHost", "0.0.0.0"),
            int(config.get(f"{prefix}.{port_key}")),
            handler,
            dispatcher,
        ))
        reporter = _reporter_for(config, prefix, name, handler)
        if reporter is not None:
            reporters.append(reporter)

    audit_service: Optional[AuditEventService] = None
    destination_router: Optional[AuditDestinationRouter] = None
    audit_queue: Optional[UdpQueueManager] = None

    if config.is_true("auditEvents.enable"):
        if config.has("auditEvents.queue"):
            audit_queue = UdpQueueManager(QueueConfig.from_config(config, "auditEvents.queue", "audit_events"))
            queues["audit_events"] = audit_queue
            reporter = _reporter_for(config, "auditEvents.queue", "audit_events", audit_queue)
            if reporter is not None:
                reporters.append(reporter)

        destinations = build_audit_destinations(config_provider, flush_executor=audit_queue)
        destination_router = AuditDestinationRouter(destinations, config_provider)
        audit_service = AuditEventService(
            destination_router,
            queue_manager=audit_queue,
            api_token=config.get("auditEvents.apiToken", None),
        )
        if not audit_service.api_token:
            logger.warning(
                "[AUDIT_API] No apiToken configured. This is not recommended; set auditEvents.apiToken."
            )
    else:
        logger.info("[AUDIT_API] Audit events API is disabled.")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        transports = []
        if start_udp:
            for name, host, port, handler, dispatcher in udp_listeners:
                transport, _ = await start_udp_server(name, host, port, handler, dispatcher)
                transports.append(transport)

        if destination_router is not None:
            influx = destination_router.destinations.get("influxdb")
            factory = influx.client_factory if isinstance(influx, InfluxAuditDestination) else None
            await init_audit_influx_destination(config, factory)

        for reporter in reporters:
            reporter.start()

        logger.info("SENSE INGEST: Started v%s (%d queue(s))", __version__, len(queues))
        try:
            yield
        finally:
            for transport in transports:
                transport.close()
            for reporter in reporters:
                await reporter.stop()
            if audit_queue is not None:
                try:
                    await asyncio.wait_for(audit_queue.wait_for_empty(), SHUTDOWN_DRAIN_TIMEOUT_SECONDS)
                except asyncio.TimeoutError:
                    logger.warning("SENSE INGEST: Audit queue not drained before shutdown")
            if destination_router is not None:
                await destination_router.shutdown()
            logger.info("SENSE INGEST: Stopped")

    app = FastAPI(title="Sense Telemetry Bridge", version=__version__, lifespan=lifespan)
    app.state.config = config
    app.state.queues = queues
    app.state.udp_dispatchers = {listener[0]: listener[4] for listener in udp_listeners}
    app.state.audit_service = audit_service
    app.state.destination_router = destination_router

    cors = build_cors_options(config.get("auditEvents.cors.allowedOrigins", None))
    if cors is not None:
        app.add_middleware(CORSMiddleware, **cors)

    app.include_router(status_router)
    app.include_router(audit_router)
    return app


def main() -> None:
    config = AppConfig.load()
    configure_logging(config.get("logging.level", "INFO"))
    set_config(config)

    app = create_app(config)
    uvicorn.run(
        app,
        host=config.get("auditEvents.host", "0.0.0.0"),
        port=int(config.get("auditEvents.port", 8081)),
        log_level=str(config.get("logging.level", "INFO")).lower(),
    )


if __name__ == "__main__":
    main()
