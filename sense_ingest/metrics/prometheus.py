"""Métricas Prometheus del puente de telemetría.

Colas UDP / audit queue manager, eventos UDP y buffers de destinos de auditoría.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge

UDP_QUEUE_SIZE = Gauge(
    "sense_udp_queue_size",
    "Messages waiting in the queue",
    ["queue"],
)
UDP_QUEUE_UTILIZATION = Gauge(
    "sense_udp_queue_utilization_percent",
    "Queue utilization (waiting / max size)",
    ["queue"],
)
UDP_MESSAGES = Counter(
    "sense_udp_messages_total",
    "Messages seen by the queue",
    ["queue", "status"],  # received, processed, failed, dropped_rate_limit, dropped_queue_full, dropped_size
)
UDP_BACKPRESSURE_ACTIVE = Gauge(
    "sense_udp_backpressure_active",
    "1 while the queue is above its backpressure threshold",
    ["queue"],
)

AUDIT_FLUSH = Counter(
    "sense_audit_flush_total",
    "Audit buffer flush attempts",
    ["destination", "status"],  # success, error
)
AUDIT_BUFFER_SIZE = Gauge(
    "sense_audit_buffer_size",
    "Records waiting in the audit destination buffer",
    ["destination"],
)

UDP_EVENTS = Counter(
    "sense_udp_events_total",
    "Qlik Sense events accepted by the UDP parsers",
    ["kind", "source", "host", "subsystem"],
)
UDP_EVENTS_REJECTED = Counter(
    "sense_udp_events_rejected_total",
    "UDP datagrams rejected by the parsers (unknown source)",
    ["kind"],
)
