from .audit_events import AuditEventService, build_cors_options
from .audit_events import router as audit_router
from .status import router as status_router

__all__ = ["AuditEventService", "audit_router", "build_cors_options", "status_router"]
