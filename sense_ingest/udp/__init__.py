"""Ingesta UDP: colas con rate limit, backpressure y concurrencia acotada."""

from .queue_config import DropStrategy, QueueConfig
from .queue_handler import UdpQueueHandler
from .queue_manager import UdpQueueManager, sanitize_field

__all__ = [
    "DropStrategy",
    "QueueConfig",
    "UdpQueueHandler",
    "UdpQueueManager",
    "sanitize_field",
]
