"""Destinos de eventos de auditoría (InfluxDB, Parquet, QVD)."""

from .buffer import BufferedAuditDestination
from .destinations import AuditDestinationRouter, build_audit_destinations

__all__ = ["AuditDestinationRouter", "BufferedAuditDestination", "build_audit_destinations"]
