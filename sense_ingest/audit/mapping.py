"""Mapeo de sobres de auditoría a registros de destino.

- ``build_audit_point_model``: modelo independiente de versión para InfluxDB
- ``build_audit_row``: fila plana para Parquet/QVD
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional, Union

import orjson

DEFAULT_MEASUREMENT = "audit_event"

FieldValue = Union[str, float, int, bool]


@dataclass
class PointModel:
    measurement_name: str
    tags: Dict[str, str] = field(default_factory=dict)
    fields: Dict[str, FieldValue] = field(default_factory=dict)
    timestamp_ms: Optional[int] = None


def read_string(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def read_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value if math.isfinite(value) else None


def read_bool(value: Any) -> Optional[bool]:
    return value if isinstance(value, bool) else None


def as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def parse_timestamp_ms(value: Any) -> Optional[int]:
    """ISO-8601 → epoch ms. Sin zona horaria se asume UTC."""
    ts = read_string(value)
    if ts is None:
        return None
    try:
        parsed = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def static_tags_to_dict(static_tags: Optional[Iterable[Any]]) -> Dict[str, str]:
    """``[{name, value}, ...]`` → dict; entradas incompletas se ignoran."""
    tags: Dict[str, str] = {}
    if not isinstance(static_tags, list):
        return tags
    for item in static_tags:
        item = as_mapping(item)
        if item.get("name") and item.get("value"):
            tags[str(item["name"])] = str(item["value"])
    return tags


def _saved_paths(extras: Mapping[str, Any]) -> Optional[str]:
    paths = as_mapping(extras.get("screenshot")).get("savedPaths")
    if isinstance(paths, list) and paths:
        return orjson.dumps(paths).decode()
    return None


def _parts(envelope: Any):
    env = as_mapping(envelope)
    payload = as_mapping(env.get("payload"))
    return env, as_mapping(payload.get("context")), as_mapping(payload.get("event"))


def build_audit_point_model(
    envelope: Any,
    extras: Optional[Mapping[str, Any]] = None,
    *,
    measurement_name: Optional[str] = None,
    schema_version: Any = None,
    static_tags: Optional[Iterable[Any]] = None,
) -> PointModel:
    extras = extras or {}
    env, context, event = _parts(envelope)

    tags: Dict[str, str] = {
        "eventType": read_string(env.get("type")) or "unknown",
        "auditEventSchemaVersion": str(schema_version if schema_version is not None else "1"),
    }
    for tag, value in (
        ("eventId", env.get("eventId")),
        ("correlationId", env.get("correlationId")),
        ("selectionTxnId", event.get("selectionTxnId")),
        ("userId", context.get("user")),
        ("appId", context.get("appId")),
        ("appName", context.get("appName")),
    ):
        value = read_string(value)
        if value:
            tags[tag] = value
    tags.update(static_tags_to_dict(static_tags))

    fields: Dict[str, FieldValue] = {}
    for name, value in (
        ("sheetId", context.get("sheetId")),
        ("sheetName", context.get("sheetName")),
        ("objectId", event.get("objectId")),
    ):
        value = read_string(value)
        if value:
            fields[name] = value

    duration = read_number(event.get("duration"))
    if duration is not None:
        fields["durationMs"] = duration

    visible = read_bool(event.get("visible"))
    if visible is not None:
        fields["visible"] = visible

    for name in ("enteredAt", "leftAt", "enterSelectionTxnId", "leaveSelectionTxnId", "screenshotUrl"):
        value = read_string(event.get(name))
        if value:
            fields[name] = value

    saved_paths = _saved_paths(extras)
    if saved_paths:
        fields["screenshotSavedPaths"] = saved_paths

    return PointModel(
        measurement_name=read_string(measurement_name) or DEFAULT_MEASUREMENT,
        tags=tags,
        fields=fields,
        timestamp_ms=parse_timestamp_ms(env.get("timestamp")),
    )


def _as_int(value: Optional[float]) -> Optional[int]:
    return int(value) if value is not None else None


def build_audit_row(
    envelope: Any,
    extras: Optional[Mapping[str, Any]] = None,
    *,
    static_tags: Optional[Iterable[Any]] = None,
) -> Dict[str, Any]:
    """Fila con el esquema común de los destinos de fichero."""
    extras = extras or {}
    env, context, event = _parts(envelope)

    data_state_id = read_number(event.get("dataStateId"))
    if data_state_id is None:
        data_state_id = read_number(extras.get("dataStateId"))

    selection_details = extras.get("selectionDetails")
    timestamp_ms = parse_timestamp_ms(env.get("timestamp"))
    tags = static_tags_to_dict(static_tags)

    return {
        "timestamp": timestamp_ms,
        "date": (
            datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime("%Y%m%d")
            if timestamp_ms is not None
            else None
        ),
        "eventId": read_string(env.get("eventId")),
        "correlationId": read_string(env.get("correlationId")),
        "eventType": read_string(env.get("type")) or "unknown",
        "userId": read_string(context.get("user")),
        "appId": read_string(context.get("appId")),
        "appName": read_string(context.get("appName")),
        "sheetId": read_string(context.get("sheetId")),
        "sheetName": read_string(context.get("sheetName")),
        "objectId": read_string(event.get("objectId")),
        "selectionTxnId": read_string(event.get("selectionTxnId")),
        "durationMs": _as_int(read_number(event.get("duration"))),
        "visible": read_bool(event.get("visible")),
        "enteredAt": read_string(event.get("enteredAt")),
        "leftAt": read_string(event.get("leftAt")),
        "dataStateId": _as_int(data_state_id),
        "selectionDetails": (
            orjson.dumps(selection_details).decode()
            if isinstance(selection_details, list) and selection_details
            else None
        ),
        "screenshotUrl": read_string(event.get("screenshotUrl")),
        "screenshotSavedPaths": _saved_paths(extras),
        "tags": orjson.dumps(tags).decode() if tags else None,
    }


# Orden y tipos de columna de los ficheros de auditoría
AUDIT_ROW_COLUMNS = (
    ("timestamp", "int64"),
    ("date", "string"),
    ("eventId", "string"),
    ("correlationId", "string"),
    ("eventType", "string"),
    ("userId", "string"),
    ("appId", "string"),
    ("appName", "string"),
    ("sheetId", "string"),
    ("sheetName", "string"),
    ("objectId", "string"),
    ("selectionTxnId", "string"),
    ("durationMs", "int64"),
    ("visible", "bool"),
    ("enteredAt", "string"),
    ("leftAt", "string"),
    ("dataStateId", "int64"),
    ("selectionDetails", "string"),
    ("screenshotUrl", "string"),
    ("screenshotSavedPaths", "string"),
    ("tags", "string"),
)
