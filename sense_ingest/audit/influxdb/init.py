"""Provisionado de InfluxDB al arrancar.

- v1: crea la base de datos (y su retention policy) si no existe
- v2: crea el bucket si no existe
- v3: la base de datos no se crea automáticamente

Los errores se loguean; el arranque continúa.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Optional

from common.config import AppConfig

from ...errors import DestinationProvisioningError
from .client import AuditInfluxClientFactory, ensure_bucket_v2

logger = logging.getLogger(__name__)


def _destination_types(config: AppConfig) -> list[str]:
    raw = config.get("auditEvents.destination.type", "") or ""
    return [d.strip().lower() for d in str(raw).split(",") if d.strip()]


def ensure_v1_database(client: Any, cfg: Mapping[str, Any]) -> None:
    v1 = cfg.get("v1Config") or {}
    db_name = v1.get("dbName")
    if not db_name or not isinstance(db_name, str):
        logger.warning("AUDIT INFLUX INIT: No v1 dbName configured; skipping init.")
        return

    try:
        names = [db.get("name") for db in client.get_list_database()]
    except Exception as e:
        logger.error("AUDIT INFLUX INIT: Error getting list of InfluxDB v1 databases. %s", e)
        return

    if db_name in names:
        logger.info("AUDIT INFLUX INIT: Found InfluxDB v1 database: %s", db_name)
        return

    try:
        client.create_database(db_name)
    except Exception as e:
        logger.error('AUDIT INFLUX INIT: Error creating InfluxDB v1 database "%s"! %s', db_name, e)
        return
    logger.info("AUDIT INFLUX INIT: Created new InfluxDB v1 database: %s", db_name)

    policy = v1.get("retentionPolicy") or {}
    if not policy.get("name") or not policy.get("duration"):
        logger.warning(
            "AUDIT INFLUX INIT: Missing v1 retentionPolicy config for db=%s; skipping policy creation.",
            db_name,
        )
        return

    try:
        client.create_retention_policy(
            policy["name"], policy["duration"], 1, database=db_name, default=True
        )
        logger.info("AUDIT INFLUX INIT: Created new InfluxDB v1 retention policy: %s", policy["name"])
    except Exception as e:
        logger.error(
            'AUDIT INFLUX INIT: Error creating InfluxDB v1 retention policy "%s"! %s',
            policy["name"], e,
        )


def provision(factory: AuditInfluxClientFactory, cfg: Mapping[str, Any]) -> None:
    version = cfg.get("version")
    if version == 3:
        logger.info("AUDIT INFLUX INIT: InfluxDB v3 database is not auto-created; skipping.")
        return
    if version not in (1, 2):
        logger.warning("AUDIT INFLUX INIT: Unsupported InfluxDB version v%s", version)
        return

    info = factory.get(cfg)
    if info.client is None:
        logger.warning("AUDIT INFLUX INIT: No v%s client available; skipping init.", version)
        return

    if version == 1:
        ensure_v1_database(info.client, cfg)
        return

    v2 = cfg.get("v2Config") or {}
    if not v2.get("org") or not v2.get("bucket"):
        logger.warning("AUDIT INFLUX INIT: Missing v2 org/bucket; skipping init.")
        return
    try:
        bucket_id = ensure_bucket_v2(info.client, v2)
        logger.info('AUDIT INFLUX INIT: Bucket "%s" ready, ID="%s"', v2["bucket"], bucket_id)
    except DestinationProvisioningError as e:
        logger.error("AUDIT INFLUX INIT: %s", e)


async def init_audit_influx_destination(
    config: AppConfig,
    factory: Optional[AuditInfluxClientFactory] = None,
) -> None:
    """Provisiona el destino InfluxDB si la API y el destino están activos."""
    if not config.is_true("auditEvents.enable"):
        return
    if not config.is_true("auditEvents.destination.enable"):
        return
    if "influxdb" not in _destination_types(config):
        return

    cfg = config.get("auditEvents.destination.influxdb", None)
    if not isinstance(cfg, Mapping):
        return

    factory = factory or AuditInfluxClientFactory()
    await asyncio.get_running_loop().run_in_executor(None, lambda: provision(factory, cfg))
