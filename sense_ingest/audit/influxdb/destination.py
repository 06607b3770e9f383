"""Destino de auditoría InfluxDB con buffer."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional

from influxdb_client.client.write_api import SYNCHRONOUS

from ..buffer import BufferedAuditDestination, make_config_key
from ..mapping import build_audit_point_model
from ..retry import RetryConfig, write_with_retry
from .client import AuditInfluxClient, AuditInfluxClientFactory, ensure_bucket_v2
from .points import build_point_for_version

logger = logging.getLogger(__name__)


class InfluxAuditDestination(BufferedAuditDestination):
    """Buffer de puntos para InfluxDB v1, v2 o v3.

    En v2 el bucket se verifica (y se crea si falta) una vez por
    configuración; si falla, el siguiente flush lo vuelve a intentar.
    """

    name = "influxdb"
    log_tag = "AUDIT INFLUX BUFFER"

    def __init__(
        self,
        *args,
        client_factory: Optional[AuditInfluxClientFactory] = None,
        retry_config: Optional[RetryConfig] = None,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.client_factory = client_factory or AuditInfluxClientFactory()
        self.retry_config = retry_config
        self._ensured_bucket_key: Optional[str] = None
        self._client_info: Optional[AuditInfluxClient] = None

    @property
    def config_path(self) -> str:
        return "auditEvents.destination.influxdb"

    def config_key(self, cfg: Mapping[str, Any]) -> str:
        return make_config_key({
            "host": cfg.get("host"),
            "port": cfg.get("port"),
            "version": cfg.get("version"),
            "maxBatchSize": cfg.get("maxBatchSize"),
            "writeFrequency": cfg.get("writeFrequency"),
            "measurementName": cfg.get("measurementName"),
            "staticTags": cfg.get("staticTags"),
            "v1": cfg.get("v1Config"),
            "v2": cfg.get("v2Config"),
            "v3": cfg.get("v3Config"),
        })

    def map_record(self, envelope: Any, extras: Dict[str, Any], cfg: Mapping[str, Any]) -> Optional[Any]:
        model = build_audit_point_model(
            envelope,
            extras,
            measurement_name=cfg.get("measurementName"),
            schema_version=cfg.get("auditEventSchemaVersion"),
            static_tags=cfg.get("staticTags"),
        )
        point = build_point_for_version(model, cfg.get("version"))
        if point is None:
            self.logger.warning("%s: Unsupported InfluxDB version v%s", self.log_tag, cfg.get("version"))
        return point

    async def prepare_write(self, cfg: Mapping[str, Any]) -> None:
        self._client_info = self.client_factory.get(cfg)
        if self._client_info.client is None:
            raise RuntimeError(f"Unsupported InfluxDB version v{cfg.get('version')}")
        if self._client_info.version == 2:
            await self.ensure_bucket(cfg)

    async def ensure_bucket(self, cfg: Mapping[str, Any]) -> None:
        key = self.config_key(cfg)
        if self._ensured_bucket_key == key:
            return
        client = self._client_info.client
        v2_config = cfg.get("v2Config") or {}
        await asyncio.get_running_loop().run_in_executor(
            None, lambda: ensure_bucket_v2(client, v2_config)
        )
        # Solo tras éxito: un fallo no marca la config como verificada
        self._ensured_bucket_key = key

    def _write_fn(self, chunk: List[Any]):
        info = self._client_info
        loop = asyncio.get_running_loop()

        if info.version == 1:
            return lambda: loop.run_in_executor(
                None, lambda: info.client.write_points(chunk, time_precision="ms")
            )

        if info.version == 2:
            def write_v2() -> None:
                with info.client.write_api(write_options=SYNCHRONOUS) as write_api:
                    write_api.write(bucket=info.bucket, org=info.org, record=chunk)

            return lambda: loop.run_in_executor(None, write_v2)

        return lambda: loop.run_in_executor(
            None, lambda: info.client.write(record=chunk, database=info.database)
        )

    async def write_chunk(self, chunk: List[Any], cfg: Mapping[str, Any], context: str) -> None:
        await write_with_retry(
            self._write_fn(chunk),
            context,
            f"influxdb v{self._client_info.version}",
            self.retry_config,
        )

    async def shutdown(self) -> None:
        await super().shutdown()
        self.client_factory.close()
