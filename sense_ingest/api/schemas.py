from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class AuditEventEnvelope(BaseModel):
    # El payload es abierto; campos extra del sobre se conservan
    model_config = ConfigDict(extra="allow")

    schemaVersion: int = Field(..., ge=1)
    eventId: str = Field(..., min_length=1)
    correlationId: Optional[str] = None
    timestamp: datetime
    type: str = Field(..., min_length=1)
    source: Optional[Dict[str, Any]] = None
    payload: Dict[str, Any]


class AuditEventAccepted(BaseModel):
    status: str = "accepted"
    receivedAt: datetime
