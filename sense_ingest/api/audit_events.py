"""Endpoint HTTP de eventos de auditoría.

POST /api/v1/audit-event
- Auth: ``Authorization: Bearer <auditEvents.apiToken>`` (si hay token configurado)
- 202 en cuanto el evento se acepta, independientemente del destino
- 429 si la cola de auditoría lo rechaza (tamaño, rate limit o cola llena)
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import orjson
from fastapi import APIRouter, Depends, Header, HTTPException, Request

from ..audit.destinations import AuditDestinationRouter
from ..udp.queue_manager import UdpQueueManager, sanitize_field
from .schemas import AuditEventAccepted, AuditEventEnvelope

logger = logging.getLogger(__name__)

router = APIRouter(tags=["audit"])

TypeHandler = Callable[[Dict[str, Any], str], Awaitable[Optional[Dict[str, Any]]]]

_BEARER_RE = re.compile(r"^Bearer\s+(.+)$", re.IGNORECASE)


def get_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not isinstance(authorization, str):
        return None
    match = _BEARER_RE.match(authorization)
    return match.group(1) if match else None


def build_cors_options(allowed_origins: Any) -> Optional[Dict[str, Any]]:
    """Opciones de ``CORSMiddleware``. None = sin CORS."""
    origins = allowed_origins if isinstance(allowed_origins, list) else []
    if not origins:
        return None
    return {
        "allow_origins": ["*"] if "*" in origins else list(origins),
        "allow_credentials": False,
        "allow_methods": ["POST", "OPTIONS"],
        "allow_headers": ["Content-Type", "Authorization"],
    }


async def handle_screenshot_url_received(envelope: Dict[str, Any], client_ip: str) -> Optional[Dict[str, Any]]:
    event = (envelope.get("payload") or {}).get("event") or {}
    logger.info(
        "[AUDIT_API] screenshot.url.received eventId=%s objectId=%s url=%s ip=%s",
        sanitize_field(envelope.get("eventId")),
        sanitize_field(event.get("objectId")),
        sanitize_field(event.get("screenshotUrl")),
        client_ip,
    )
    return {}


DEFAULT_TYPE_HANDLERS: Mapping[str, TypeHandler] = {
    "screenshot.url.received": handle_screenshot_url_received,
}


class AuditEventService:
    """Procesa sobres aceptados: handler por tipo + escritura a destinos."""

    def __init__(
        self,
        destination_router: AuditDestinationRouter,
        queue_manager: Optional[UdpQueueManager] = None,
        api_token: Optional[str] = None,
        type_handlers: Optional[Mapping[str, TypeHandler]] = None,
    ):
        self.destination_router = destination_router
        self.queue_manager = queue_manager
        self.api_token = api_token or None
        self.type_handlers = dict(DEFAULT_TYPE_HANDLERS if type_handlers is None else type_handlers)

    async def handle_type(self, envelope: Dict[str, Any], client_ip: str) -> Dict[str, Any]:
        event_type = envelope.get("type")
        try:
            handler = self.type_handlers.get(event_type)
            if handler is not None:
                return await handler(envelope, client_ip) or {}
            logger.info(
                "[AUDIT_API] Received audit event type=%s eventId=%s ip=%s",
                sanitize_field(event_type), sanitize_field(envelope.get("eventId")), client_ip,
            )
            logger.debug("[AUDIT_API] Full envelope: %s", envelope)
        except Exception as e:
            logger.error("[AUDIT_API] Error while handling audit event: %s", e)
        return {}

    async def process(self, envelope: Dict[str, Any], client_ip: str) -> None:
        extras = await self.handle_type(envelope, client_ip)
        await self.destination_router.write(envelope, extras)

    async def submit(self, envelope: Dict[str, Any], client_ip: str) -> bool:
        """False si la cola rechazó el evento."""
        if self.queue_manager is None:
            await self.process(envelope, client_ip)
            return True
        return await self.queue_manager.add_to_queue(
            lambda: self.process(envelope, client_ip),
            message=orjson.dumps(envelope),
        )


def get_audit_service(request: Request) -> AuditEventService:
    service = getattr(request.app.state, "audit_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Audit events API is disabled")
    return service


def require_bearer_token(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    service: AuditEventService = Depends(get_audit_service),
) -> None:
    if not service.api_token:
        return
    token = get_bearer_token(authorization)
    if token is None or token != service.api_token:
        logger.warning(
            "[AUDIT_API] Unauthorized request ip=%s method=%s url=%s",
            _client_ip(request), request.method, request.url.path,
        )
        raise HTTPException(status_code=401, detail="Unauthorized")


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@router.post(
    "/api/v1/audit-event",
    status_code=202,
    response_model=AuditEventAccepted,
    dependencies=[Depends(require_bearer_token)],
)
async def post_audit_event(
    envelope: AuditEventEnvelope,
    request: Request,
    service: AuditEventService = Depends(get_audit_service),
) -> AuditEventAccepted:
    accepted = await service.submit(envelope.model_dump(mode="json"), _client_ip(request))
    if not accepted:
        raise HTTPException(status_code=429, detail="Audit event queue is full or rate limited")
    return AuditEventAccepted(receivedAt=datetime.now(timezone.utc))
