"""Parsing de los datagramas de Qlik Sense (user events y log events).

Formato: campos separados por ``;``. El primer campo es la fuente entre
barras (``/qseow-proxy-session/``).
"""

from __future__ import annotations

import logging
import re
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from ..metrics.prometheus import UDP_EVENTS, UDP_EVENTS_REJECTED
from .queue_manager import sanitize_field

logger = logging.getLogger(__name__)

USER_EVENT_SOURCES = ("qseow-proxy-connection", "qseow-proxy-session")
LOG_EVENT_SOURCES = (
    "qseow-engine",
    "qseow-proxy",
    "qseow-scheduler",
    "qseow-repository",
    "qseow-qix-perf",
)

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}.\d{3}\+\d{4}$")

EventSink = Callable[[Dict[str, Any]], Awaitable[None]]


def _decode(message: Any) -> str:
    if isinstance(message, (bytes, bytearray)):
        return message.decode("utf-8", errors="replace")
    return str(message)


def _clean_source(field: str) -> str:
    return field.lower().replace("/", "")


def parse_user_event(message: Any) -> Optional[Dict[str, Any]]:
    """Datagrama de actividad de usuario → dict. None si la fuente no es conocida.

    Campos 0-6 separados por ``;``; el campo 7 es el resto del mensaje
    (puede contener ``;``).
    """
    text = _decode(message)
    parts = text.split(";")
    fields = parts[:7] + [";".join(parts[7:])]
    fields += [""] * (8 - len(fields))

    source = _clean_source(fields[0])
    if source not in USER_EVENT_SOURCES:
        logger.warning(
            "USER EVENT: Received message that is not a recognised user event: %s", text[:512]
        )
        return None

    event = {
        "messageType": source,
        "host": sanitize_field(fields[1]),
        "command": sanitize_field(fields[2]),
        "user_directory": sanitize_field(fields[3]),
        "user_id": sanitize_field(fields[4]),
        "origin": sanitize_field(fields[5]),
        "context": sanitize_field(fields[6]),
        "message": sanitize_field(fields[7], max_length=4000),
    }
    if event["user_directory"] and event["user_id"]:
        event["user_full"] = f"{event['user_directory']}\\{event['user_id']}"
    else:
        event["user_full"] = ""

    logger.debug("USER EVENT: %s - %s - %s", source, event["user_id"], event["context"])
    return event


def _int_or(value: str, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_log_event(message: Any) -> Optional[Dict[str, Any]]:
    """Datagrama de log → registro genérico. None si la fuente no es conocida."""
    parts = _decode(message).split(";")
    parts += [""] * (9 - len(parts))

    source = _clean_source(parts[0])
    if source not in LOG_EVENT_SOURCES:
        logger.warning("LOG EVENT: Unknown source: %s", sanitize_field(parts[0], max_length=100))
        return None

    return {
        "source": source,
        "log_row": _int_or(parts[1], -1),
        "ts_iso": parts[2] if ISO_DATE_RE.match(parts[2]) else "",
        "ts_local": parts[3] if ISO_DATE_RE.match(parts[3]) else "",
        "level": sanitize_field(parts[4]),
        "host": sanitize_field(parts[5]),
        "subsystem": sanitize_field(parts[6]),
        "windows_user": sanitize_field(parts[7]),
        "message": sanitize_field(parts[8], max_length=4000),
    }


UNKNOWN = "Unknown"

# Campo que hace de "subsystem" en el contador, según el tipo de evento
_SUBSYSTEM_FIELD = {"user_events": "origin", "log_events": "subsystem"}


class EventCounter:
    """Cuenta eventos aceptados (por source/host/subsystem) y rechazados.

    Se activa con ``qlikSenseEvents.eventCount.enable`` y
    ``qlikSenseEvents.rejectedEventCount.enable``.
    """

    def __init__(self, kind: str, count_accepted: bool = True, count_rejected: bool = True):
        self.kind = kind
        self.count_accepted = count_accepted
        self.count_rejected = count_rejected

    def accepted(self, event: Dict[str, Any]) -> None:
        if not self.count_accepted:
            return
        source = event.get("source") or event.get("messageType") or UNKNOWN
        host = event.get("host") or UNKNOWN
        subsystem = event.get(_SUBSYSTEM_FIELD.get(self.kind, "subsystem")) or UNKNOWN
        UDP_EVENTS.labels(kind=self.kind, source=source, host=host, subsystem=subsystem).inc()

    def rejected(self, message: Any) -> None:
        if not self.count_rejected:
            return
        UDP_EVENTS_REJECTED.labels(kind=self.kind).inc()


class EventDispatcher:
    """Handler asíncrono para ``UdpQueueHandler.add_message``.

    Parsea el datagrama y lo entrega a cada sink registrado. Los errores
    de un sink se propagan para que la cola cuente el mensaje como fallido.
    Los eventos se cuentan antes del filtro de usuarios excluidos.
    """

    def __init__(
        self,
        parser: Callable[[Any], Optional[Dict[str, Any]]],
        sinks: Optional[Iterable[EventSink]] = None,
        exclude_users: Optional[List[Dict[str, str]]] = None,
        counter: Optional[EventCounter] = None,
    ):
        self.parser = parser
        self.sinks: List[EventSink] = list(sinks or [])
        self.exclude_users = exclude_users or []
        self.counter = counter

    def add_sink(self, sink: EventSink) -> None:
        self.sinks.append(sink)

    def is_excluded(self, event: Dict[str, Any]) -> bool:
        directory = event.get("user_directory")
        user_id = event.get("user_id")
        return any(
            u.get("directory") == directory and u.get("userId") == user_id
            for u in self.exclude_users
        )

    async def __call__(self, message: Any, remote: Any) -> None:
        event = self.parser(message)
        if event is None:
            if self.counter is not None:
                self.counter.rejected(message)
            return
        if self.counter is not None:
            self.counter.accepted(event)
        if self.is_excluded(event):
            return
        for sink in self.sinks:
            await sink(event)


async def log_event_sink(event: Dict[str, Any]) -> None:
    """Sink por defecto: deja el evento parseado en el log."""
    logger.debug("UDP EVENT: %s", event)
