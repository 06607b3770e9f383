"""Destino de auditoría QVD (formato nativo de Qlik)."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

import pandas as pd
from pyqvd import QvdTable

from .files import FileAuditDestination
from .mapping import AUDIT_ROW_COLUMNS

QVD_COLUMNS = [name for name, _ in AUDIT_ROW_COLUMNS]


def _qvd_value(column: str, value: Any) -> Any:
    # Qlik representa True como -1
    if column == "visible" and value is not None:
        return -1 if value else 0
    return value


def rows_to_frame(rows: List[Dict[str, Any]]) -> pd.DataFrame:
    data = [[_qvd_value(col, row.get(col)) for col in QVD_COLUMNS] for row in rows]
    return pd.DataFrame(data, columns=QVD_COLUMNS, dtype=object)


class QvdAuditDestination(FileAuditDestination):
    name = "qvd"
    log_tag = "AUDIT QVD"
    extension = "qvd"

    @property
    def config_path(self) -> str:
        return "auditEvents.destination.qvd"

    def write_file(self, rows: List[Dict[str, Any]], path: Path) -> None:
        QvdTable.from_pandas(rows_to_frame(rows)).to_qvd(str(path))
