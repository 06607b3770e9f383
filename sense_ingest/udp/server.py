"""Servidores UDP: cada datagrama entra por la cola de su socket."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Tuple

from .queue_handler import MessageHandler, UdpQueueHandler

logger = logging.getLogger(__name__)


class QueuedDatagramProtocol(asyncio.DatagramProtocol):
    def __init__(self, name: str, queue: UdpQueueHandler, handler: MessageHandler):
        self.name = name
        self.queue = queue
        self.handler = handler
        self.transport: Optional[asyncio.DatagramTransport] = None

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = transport  # type: ignore[assignment]
        sockname = transport.get_extra_info("sockname")
        logger.info("UDP SERVER [%s]: Listening on %s", self.name, sockname)

    def datagram_received(self, data: bytes, addr: Tuple[str, int]) -> None:
        remote = {"address": addr[0], "port": addr[1]} if addr else {}
        if not self.queue.add_message(data, remote, self.handler):
            logger.debug("UDP SERVER [%s]: Message from %s dropped", self.name, addr)

    def error_received(self, exc: Exception) -> None:
        logger.error("UDP SERVER [%s]: Socket error: %s", self.name, exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if exc is not None:
            logger.warning("UDP SERVER [%s]: Closed with error: %s", self.name, exc)
        else:
            logger.info("UDP SERVER [%s]: Closed", self.name)


async def start_udp_server(
    name: str,
    host: str,
    port: int,
    queue: UdpQueueHandler,
    handler: MessageHandler,
) -> Tuple[asyncio.DatagramTransport, Any]:
    """Abre el socket UDP. Retorna ``(transport, protocol)``."""
    loop = asyncio.get_running_loop()
    return await loop.create_datagram_endpoint(
        lambda: QueuedDatagramProtocol(name, queue, handler),
        local_addr=(host, port),
    )
