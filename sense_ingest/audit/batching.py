"""Escritura por lotes con tamaño progresivo.

Si algún chunk falla al tamaño actual, se reintenta el conjunto COMPLETO
con el siguiente tamaño de la escalera ``[max, 500, 250, 100, 10, 1]``.
Los chunks que ya se escribieron se vuelven a escribir (at-least-once).
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from ..errors import FlushError

logger = logging.getLogger(__name__)

LADDER_TAIL = (500, 250, 100, 10, 1)

ChunkWriter = Callable[[List[Any], str], Awaitable[None]]


def chunk_list(items: Sequence[Any], chunk_size: int) -> List[List[Any]]:
    if not items:
        return []
    if not chunk_size or chunk_size <= 0:
        return [list(items)]
    return [list(items[i:i + chunk_size]) for i in range(0, len(items), chunk_size)]


def progressive_sizes(max_batch_size: int) -> List[int]:
    """Escalera de tamaños, descendente y sin repetidos."""
    sizes: List[int] = []
    for size in (max_batch_size, *LADDER_TAIL):
        if size <= max_batch_size and size not in sizes:
            sizes.append(size)
    return sizes or [1]


async def write_progressively(
    records: Sequence[Any],
    write_chunk: ChunkWriter,
    *,
    max_batch_size: int,
    context: str,
    log: Optional[logging.Logger] = None,
) -> None:
    """Escribe ``records`` con ``write_chunk(chunk, label)``.

    Raises:
        FlushError: si falla incluso al tamaño mínimo
    """
    log = log or logger
    if not records:
        return

    sizes = progressive_sizes(max_batch_size)
    for batch_size in sizes:
        chunks = chunk_list(records, batch_size)
        failed_chunks = 0

        for i, chunk in enumerate(chunks):
            start = i * batch_size
            end = start + len(chunk) - 1
            label = f"{context} (chunk {i + 1}/{len(chunks)}, records {start}-{end})"
            try:
                await write_chunk(chunk, label)
            except Exception as e:
                failed_chunks += 1
                log.error(
                    "%s - Chunk %d/%d failed: %s", context, i + 1, len(chunks), e
                )

        if failed_chunks == 0:
            return

        if batch_size != sizes[-1]:
            log.warning(
                "%s - %d chunk(s) failed with batch size %d, retrying with smaller batches",
                context, failed_chunks, batch_size,
            )

    raise FlushError(
        f"{context}: failed to write batch after trying all progressive sizes"
    )
