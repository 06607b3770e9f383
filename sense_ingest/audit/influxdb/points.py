"""PointModel → representación de cada versión de InfluxDB."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

import influxdb_client
import influxdb_client_3

from ..mapping import PointModel


def _typed_field(value: Any) -> Any:
    # Números siempre como float, igual para todas las versiones
    if isinstance(value, bool) or isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return float(value)
    return None


def _v1_point(model: PointModel) -> dict:
    point = {
        "measurement": model.measurement_name,
        "tags": dict(model.tags),
        "fields": {k: v for k, v in ((k, _typed_field(v)) for k, v in model.fields.items()) if v is not None},
    }
    if model.timestamp_ms:
        point["time"] = datetime.fromtimestamp(model.timestamp_ms / 1000, tz=timezone.utc).isoformat()
    return point


def _fill_point(point: Any, model: PointModel, write_precision: Any) -> Any:
    for key, value in model.tags.items():
        if value is not None:
            point.tag(key, str(value))
    for key, value in model.fields.items():
        value = _typed_field(value)
        if value is not None:
            point.field(key, value)
    if model.timestamp_ms:
        point.time(model.timestamp_ms, write_precision=write_precision)
    return point


def build_point_for_version(model: PointModel, version: int) -> Optional[Any]:
    """v1: dict para ``write_points``; v2/v3: ``Point``. None si la versión no existe."""
    if version == 1:
        return _v1_point(model)
    if version == 2:
        return _fill_point(
            influxdb_client.Point(model.measurement_name), model, influxdb_client.WritePrecision.MS
        )
    if version == 3:
        return _fill_point(
            influxdb_client_3.Point(model.measurement_name), model, influxdb_client_3.WritePrecision.MS
        )
    return None
