"""Retry con backoff exponencial para escrituras de auditoría.

Solo se reintentan errores transitorios (timeouts y problemas de red);
cualquier otro error se propaga en el primer intento.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

_RETRYABLE_MARKERS = (
    "timeout",
    "timed out",
    "ETIMEDOUT",
    "ECONNREFUSED",
    "ENOTFOUND",
    "ECONNRESET",
)


@dataclass
class RetryConfig:
    """Configuración para retry con backoff."""

    max_retries: int = 3
    initial_delay: float = 1.0  # segundos
    max_delay: float = 10.0  # segundos
    backoff_multiplier: float = 2.0

    def calculate_delay(self, attempt: int) -> float:
        """Delay antes del reintento ``attempt`` (1-indexed)."""
        delay = self.initial_delay * (self.backoff_multiplier ** (attempt - 1))
        return min(delay, self.max_delay)


def is_retryable_error(err: BaseException) -> bool:
    """True para timeouts y errores de conexión."""
    if isinstance(err, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    name = type(err).__name__
    if name in ("RequestTimedOutError", "ReadTimeout", "ConnectTimeout", "ConnectTimeoutError"):
        return True
    message = str(err)
    return any(marker in message for marker in _RETRYABLE_MARKERS)


async def write_with_retry(
    write_fn: Callable[[], Awaitable[Any]],
    context: str,
    version: str,
    config: Optional[RetryConfig] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> None:
    """Ejecuta ``write_fn`` reintentando errores transitorios.

    Args:
        write_fn: Corrutina sin argumentos que hace la escritura
        context: Texto para los logs (p.ej. "Audit events (chunk 1/3)")
        version: Etiqueta de destino/versión ("v1", "v2", "parquet"...)
        config: Parámetros de backoff
        sleep: Inyectable para tests

    Raises:
        La última excepción si se agotan los reintentos, o la primera no reintentable
    """
    config = config or RetryConfig()
    tag = version.upper()
    attempt = 0

    while True:
        try:
            await write_fn()
            if attempt > 0:
                logger.info(
                    "AUDIT %s RETRY: %s - Write succeeded on attempt %d/%d",
                    tag, context, attempt + 1, config.max_retries + 1,
                )
            return
        except Exception as e:
            attempt += 1
            retryable = is_retryable_error(e)
            logger.debug(
                "AUDIT %s RETRY: %s - Error caught: %s, message: %s, retryable: %s",
                tag, context, type(e).__name__, e, retryable,
            )

            if not retryable:
                logger.warning(
                    "AUDIT %s WRITE: %s - Non-retryable error (%s), not retrying: %s",
                    tag, context, type(e).__name__, e,
                )
                raise

            if attempt > config.max_retries:
                logger.error(
                    "AUDIT %s RETRY: %s - All %d attempts failed: %s",
                    tag, context, config.max_retries + 1, e,
                )
                raise

            delay = config.calculate_delay(attempt)
            logger.warning(
                "AUDIT %s RETRY: %s - Attempt %d/%d failed, retrying in %.1fs: %s",
                tag, context, attempt, config.max_retries + 1, delay, e,
            )
            await sleep(delay)
