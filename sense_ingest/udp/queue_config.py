"""Configuración de las colas UDP.

Separado de queue_handler.py; se construye desde el subárbol
``*.udpServerConfig`` (o ``auditEvents.queue``) del fichero de configuración.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from common.config import AppConfig

UDP_MAX_DATAGRAM_SIZE = 65507


class DropStrategy(str, Enum):
    OLDEST = "oldest"
    NEWEST = "newest"


@dataclass
class QueueConfig:
    """Límites de una cola de mensajes."""
    name: str
    max_concurrent: int = 10
    max_size: int = 200
    drop_strategy: DropStrategy = DropStrategy.OLDEST
    rate_limit_enable: bool = False
    max_messages_per_minute: int = 600
    violation_log_throttle_seconds: int = 60
    max_message_size_bytes: int = UDP_MAX_DATAGRAM_SIZE
    backpressure_threshold_percent: float = 80.0
    task_timeout_seconds: float = 30.0
    queue_full_log_throttle_seconds: float = 10.0

    def __post_init__(self) -> None:
        self.drop_strategy = DropStrategy(self.drop_strategy)
        if self.max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1 (queue {self.name})")
        if self.max_size < 1:
            raise ValueError(f"max_size must be >= 1 (queue {self.name})")
        if not 0 <= self.backpressure_threshold_percent <= 100:
            raise ValueError(
                f"backpressure_threshold_percent must be within 0-100 (queue {self.name})"
            )

    @classmethod
    def from_config(cls, config: AppConfig, prefix: str, name: str) -> "QueueConfig":
        """Lee ``<prefix>.messageQueue``, ``<prefix>.rateLimit`` y ``<prefix>.maxMessageSize``."""
        mq = config.get(f"{prefix}.messageQueue", None) or {}
        rl = config.get(f"{prefix}.rateLimit", None) or {}
        return cls(
            name=name,
            max_concurrent=int(mq.get("maxConcurrent", 10)),
            max_size=int(mq.get("maxSize", 200)),
            drop_strategy=DropStrategy(str(mq.get("dropStrategy", "oldest")).lower()),
            rate_limit_enable=rl.get("enable", False) is True,
            max_messages_per_minute=int(rl.get("maxMessagesPerMinute", 600)),
            violation_log_throttle_seconds=int(rl.get("violationLogThrottle", 60)),
            max_message_size_bytes=int(
                config.get(f"{prefix}.maxMessageSize", UDP_MAX_DATAGRAM_SIZE)
            ),
            backpressure_threshold_percent=float(mq.get("backpressureThreshold", 80)),
            # taskTimeout en ms, como writeFrequency
            task_timeout_seconds=float(mq.get("taskTimeout", 30000)) / 1000.0,
            queue_full_log_throttle_seconds=float(mq.get("queueFullLogThrottle", 10)),
        )
