"""Clientes InfluxDB (v1/v2/v3) para el destino de auditoría.

El cliente se cachea por clave de conexión y se recrea si la
configuración cambia.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import influxdb
import influxdb_client
from influxdb_client.domain.bucket_retention_rules import BucketRetentionRules
from influxdb_client_3 import InfluxDBClient3

from ..buffer import make_config_key
from ...errors import DestinationProvisioningError

logger = logging.getLogger(__name__)

_DURATION_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}
_DURATION_RE = re.compile(r"(\d+)([smhdw])")


@dataclass
class AuditInfluxClient:
    version: int
    client: Any
    org: Optional[str] = None
    bucket: Optional[str] = None
    database: Optional[str] = None


def connection_key(cfg: Mapping[str, Any]) -> str:
    return make_config_key({
        "host": cfg.get("host"),
        "port": cfg.get("port"),
        "version": cfg.get("version"),
        "v1": cfg.get("v1Config"),
        "v2": cfg.get("v2Config"),
        "v3": cfg.get("v3Config"),
    })


def parse_duration_seconds(value: Any) -> int:
    """``"30d"``, ``"1w2d"``, ``"12h"`` → segundos. 0 = retención infinita."""
    if value is None:
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).strip().lower()
    if text in ("", "0", "inf", "infinite"):
        return 0
    parts = _DURATION_RE.findall(text)
    if not parts or "".join(n + u for n, u in parts) != text:
        raise ValueError(f"Invalid retention duration: {value!r}")
    return sum(int(n) * _DURATION_UNITS[u] for n, u in parts)


def create_client(cfg: Mapping[str, Any]) -> AuditInfluxClient:
    version = cfg.get("version")
    host = cfg.get("host")
    port = cfg.get("port")

    if version == 1:
        v1 = cfg.get("v1Config") or {}
        auth = v1.get("auth") or {}
        auth_enabled = auth.get("enable") is True
        client = influxdb.InfluxDBClient(
            host=host,
            port=port,
            username=auth.get("username", "") if auth_enabled else "",
            password=auth.get("password", "") if auth_enabled else "",
            database=v1.get("dbName"),
        )
        return AuditInfluxClient(version=1, client=client, database=v1.get("dbName"))

    if version == 2:
        v2 = cfg.get("v2Config") or {}
        client = influxdb_client.InfluxDBClient(
            url=f"http://{host}:{port}",
            token=v2.get("token"),
            org=v2.get("org"),
        )
        return AuditInfluxClient(version=2, client=client, org=v2.get("org"), bucket=v2.get("bucket"))

    if version == 3:
        v3 = cfg.get("v3Config") or {}
        client = InfluxDBClient3(
            host=f"http://{host}:{port}",
            token=v3.get("token"),
            database=v3.get("database"),
            timeout=int(v3.get("writeTimeout") or 10000),
        )
        return AuditInfluxClient(version=3, client=client, database=v3.get("database"))

    logger.warning("AUDIT INFLUX CLIENT: Unsupported InfluxDB version v%s", version)
    return AuditInfluxClient(version=version or 0, client=None)


class AuditInfluxClientFactory:
    """Cache de un cliente por configuración de conexión."""

    def __init__(self, create=create_client):
        self._create = create
        self._cached: Optional[AuditInfluxClient] = None
        self._cached_key: Optional[str] = None

    def get(self, cfg: Mapping[str, Any]) -> AuditInfluxClient:
        key = connection_key(cfg)
        if self._cached is not None and self._cached_key == key:
            return self._cached

        if self._cached is not None:
            logger.info("AUDIT INFLUX CLIENT: Connection settings changed, recreating client")
            self.close()

        self._cached = self._create(cfg)
        self._cached_key = key
        return self._cached

    def close(self) -> None:
        if self._cached is None or self._cached.client is None:
            self._cached = None
            return
        close = getattr(self._cached.client, "close", None)
        if callable(close):
            try:
                close()
            except Exception as e:
                logger.debug("AUDIT INFLUX CLIENT: Error closing client: %s", e)
        self._cached = None
        self._cached_key = None


def ensure_bucket_v2(client: Any, v2_config: Mapping[str, Any]) -> str:
    """Crea el bucket v2 si no existe. Bloqueante.

    Returns:
        ID del bucket

    Raises:
        DestinationProvisioningError: org inexistente, config incompleta o error de API
    """
    org = v2_config.get("org")
    bucket_name = v2_config.get("bucket")
    retention = v2_config.get("retentionDuration")
    if not org or not bucket_name or not retention:
        raise DestinationProvisioningError(
            "Missing required audit InfluxDB v2 config (org/bucket/retentionDuration)"
        )

    try:
        orgs = client.organizations_api().find_organizations(org=org)
    except Exception as e:
        raise DestinationProvisioningError(f"Failed to resolve audit InfluxDB v2 org: {e}") from e
    if not orgs:
        raise DestinationProvisioningError(f'No organization named "{org}" found')
    org_id = orgs[0].id
    logger.debug('AUDIT INFLUX V2: Using organization "%s" identified by "%s"', org, org_id)

    try:
        buckets_api = client.buckets_api()
        existing = buckets_api.find_bucket_by_name(bucket_name)
        if existing is not None:
            logger.debug('AUDIT INFLUX V2: Bucket "%s" already exists, ID="%s"', bucket_name, existing.id)
            return existing.id

        logger.info('AUDIT INFLUX V2: Bucket "%s" not found, creating it...', bucket_name)
        rules = BucketRetentionRules(type="expire", every_seconds=parse_duration_seconds(retention))
        created = buckets_api.create_bucket(
            bucket_name=bucket_name,
            org_id=org_id,
            description=v2_config.get("description"),
            retention_rules=rules,
        )
        logger.info('AUDIT INFLUX V2: Created bucket "%s"', bucket_name)
        return created.id
    except Exception as e:
        raise DestinationProvisioningError(f"Failed to ensure audit InfluxDB v2 bucket: {e}") from e
