"""Enrutado de eventos de auditoría a los destinos configurados.

``auditEvents.destination.type`` admite varios destinos separados por
comas, p.ej. ``"influxdb, parquet"``.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Type

from common.config import AppConfig, get_config

from .buffer import BufferedAuditDestination, FlushExecutor
from .influxdb import InfluxAuditDestination
from .parquet import ParquetAuditDestination
from .qvd import QvdAuditDestination

logger = logging.getLogger(__name__)

DESTINATION_CLASSES: Mapping[str, Type[BufferedAuditDestination]] = {
    "influxdb": InfluxAuditDestination,
    "parquet": ParquetAuditDestination,
    "qvd": QvdAuditDestination,
}


def parse_destination_types(config: AppConfig) -> List[str]:
    raw = config.get("auditEvents.destination.type", "") or ""
    return [d.strip().lower() for d in str(raw).split(",") if d.strip()]


def build_audit_destinations(
    config_provider: Callable[[], AppConfig] = get_config,
    flush_executor: Optional[FlushExecutor] = None,
) -> Dict[str, BufferedAuditDestination]:
    """Crea (una vez, al arrancar) los destinos listados en la configuración."""
    config = config_provider()
    destinations: Dict[str, BufferedAuditDestination] = {}

    for dest_type in parse_destination_types(config):
        cls = DESTINATION_CLASSES.get(dest_type)
        if cls is None or dest_type in destinations:
            continue
        if config.get(f"auditEvents.destination.{dest_type}", None) is None:
            logger.warning(
                "AUDIT DESTINATION: type='%s' listed but auditEvents.destination.%s is not configured",
                dest_type, dest_type,
            )
            continue
        destinations[dest_type] = cls(config_provider=config_provider, flush_executor=flush_executor)
        logger.info("AUDIT DESTINATION: %s destination ready", dest_type)

    return destinations


class AuditDestinationRouter:
    """Escribe cada evento en todos los destinos activos. Nunca lanza."""

    def __init__(
        self,
        destinations: Mapping[str, BufferedAuditDestination],
        config_provider: Callable[[], AppConfig] = get_config,
    ):
        self.destinations = dict(destinations)
        self._config_provider = config_provider

    async def write(self, envelope: Any, extras: Optional[Dict[str, Any]] = None) -> None:
        try:
            config = self._config_provider()
            if not config.is_true("auditEvents.destination.enable"):
                return

            for dest_type in parse_destination_types(config):
                destination = self.destinations.get(dest_type)
                if destination is None:
                    logger.warning(
                        "AUDIT DESTINATION: Unknown destination type='%s'. Event not stored.", dest_type
                    )
                    continue
                destination.buffer_event(envelope, extras or {})
        except Exception as e:
            logger.error("AUDIT DESTINATION: Error writing audit event to destination(s): %s", e)

    async def shutdown(self) -> None:
        for name, destination in self.destinations.items():
            try:
                await destination.shutdown()
            except Exception as e:
                logger.error("AUDIT DESTINATION: Error shutting down %s: %s", name, e)
