"""Fixtures compartidos."""

import asyncio
import copy
from typing import Any, Dict

import pytest


BASE_AUDIT_CONFIG: Dict[str, Any] = {
    "auditEvents": {
        "enable": True,
        "destination": {
            "enable": True,
            "type": "influxdb",
            "influxdb": {
                "version": 1,
                "host": "influx-a",
                "port": 8086,
                "measurementName": "audit_event",
                "auditEventSchemaVersion": 1,
                "maxBatchSize": 1000,
                "writeFrequency": 60000,
                "v1Config": {
                    "dbName": "senseops",
                    "auth": {"enable": False},
                    "retentionPolicy": {"name": "10d", "duration": "10d"},
                },
            },
        },
    }
}


@pytest.fixture
def audit_config_data() -> Dict[str, Any]:
    """Copia editable de la configuración de auditoría base."""
    return copy.deepcopy(BASE_AUDIT_CONFIG)


@pytest.fixture
def envelope() -> Dict[str, Any]:
    """Sobre de auditoría típico (object view)."""
    return {
        "schemaVersion": 1,
        "eventId": "evt-001",
        "correlationId": "corr-9",
        "timestamp": "2026-03-01T12:00:00.000Z",
        "type": "object.view",
        "source": {"extension": "audit"},
        "payload": {
            "context": {
                "user": "LAB\\anna",
                "appId": "app-1",
                "appName": "Sales",
                "sheetId": "sheet-1",
                "sheetName": "Overview",
            },
            "event": {
                "objectId": "obj-7",
                "duration": 1500,
                "visible": True,
                "enteredAt": "2026-03-01T11:59:58.500Z",
                "leftAt": "2026-03-01T12:00:00.000Z",
                "selectionTxnId": "txn-3",
            },
        },
    }


async def _wait_until(predicate, timeout: float = 1.0, interval: float = 0.005) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def wait_until():
    """Espera activa hasta que ``predicate()`` sea True."""
    return _wait_until
