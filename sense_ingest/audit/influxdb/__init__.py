from .client import AuditInfluxClient, AuditInfluxClientFactory, ensure_bucket_v2
from .destination import InfluxAuditDestination
from .init import init_audit_influx_destination
from .points import build_point_for_version

__all__ = [
    "AuditInfluxClient",
    "AuditInfluxClientFactory",
    "InfluxAuditDestination",
    "build_point_for_version",
    "ensure_bucket_v2",
    "init_audit_influx_destination",
]
