"""Base de los destinos de auditoría que escriben ficheros.

Cada chunk se escribe en un fichero nuevo ``YYYYMMDD_partN.<ext>`` (fecha
UTC, primer N libre) dentro de ``exportDirectory``.
"""

from __future__ import annotations

import asyncio
from abc import abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .buffer import BufferedAuditDestination, make_config_key
from .mapping import build_audit_row


def next_part_path(export_dir: Path, extension: str, now: Optional[datetime] = None) -> Path:
    date_str = (now or datetime.now(timezone.utc)).strftime("%Y%m%d")
    part = 1
    while True:
        candidate = export_dir / f"{date_str}_part{part}.{extension}"
        if not candidate.exists():
            return candidate
        part += 1


class FileAuditDestination(BufferedAuditDestination):
    extension: str = ""

    def config_key(self, cfg: Mapping[str, Any]) -> str:
        return make_config_key({
            "exportDirectory": cfg.get("exportDirectory"),
            "maxBatchSize": cfg.get("maxBatchSize"),
            "writeFrequency": cfg.get("writeFrequency"),
            "staticTags": cfg.get("staticTags"),
        })

    def map_record(self, envelope: Any, extras: Dict[str, Any], cfg: Mapping[str, Any]) -> Dict[str, Any]:
        return build_audit_row(envelope, extras, static_tags=cfg.get("staticTags"))

    @abstractmethod
    def write_file(self, rows: List[Dict[str, Any]], path: Path) -> None:
        """Escribe las filas en ``path``. Bloqueante."""

    def _write_chunk_sync(self, rows: List[Dict[str, Any]], export_dir: Path) -> Path:
        export_dir.mkdir(parents=True, exist_ok=True)
        path = next_part_path(export_dir, self.extension)
        self.write_file(rows, path)
        return path

    async def write_chunk(self, chunk: List[Any], cfg: Mapping[str, Any], context: str) -> None:
        export_dir = Path(cfg.get("exportDirectory") or ".").resolve()
        path = await asyncio.get_running_loop().run_in_executor(
            None, lambda: self._write_chunk_sync(chunk, export_dir)
        )
        self.logger.info("%s: Wrote %d events to %s", self.log_tag, len(chunk), path)
