"""Destino de auditoría Parquet (pyarrow)."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

import pyarrow as pa
import pyarrow.parquet as pq

from .files import FileAuditDestination
from .mapping import AUDIT_ROW_COLUMNS

_ARROW_TYPES = {"int64": pa.int64(), "string": pa.string(), "bool": pa.bool_()}

AUDIT_PARQUET_SCHEMA = pa.schema(
    [pa.field(name, _ARROW_TYPES[kind]) for name, kind in AUDIT_ROW_COLUMNS]
)


class ParquetAuditDestination(FileAuditDestination):
    name = "parquet"
    log_tag = "AUDIT PARQUET"
    extension = "parquet"

    @property
    def config_path(self) -> str:
        return "auditEvents.destination.parquet"

    def write_file(self, rows: List[Dict[str, Any]], path: Path) -> None:
        table = pa.Table.from_pylist(rows, schema=AUDIT_PARQUET_SCHEMA)
        pq.write_table(table, str(path))
