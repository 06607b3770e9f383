"""Rate limiter de ventana deslizante para las colas UDP.

Estrategia:
- Lista de timestamps (ms) de mensajes ACEPTADOS en los últimos 60 segundos
- Poda perezosa en cada comprobación (O(n), aceptable a las tasas esperadas)
- Admisión todo-o-nada por mensaje
- Los intentos rechazados NO se registran en la ventana
- El warning de violación tiene su propio throttle, independiente de la admisión
"""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional

WINDOW_MS = 60_000


def _now_ms() -> float:
    return time.time() * 1000


class SlidingWindowRateLimiter:
    """Ventana deslizante exacta sobre los últimos ``window_ms`` milisegundos."""

    def __init__(
        self,
        name: str,
        max_per_window: int,
        *,
        enabled: bool = True,
        violation_log_throttle_seconds: float = 60,
        window_ms: int = WINDOW_MS,
        clock: Callable[[], float] = _now_ms,
        logger: Optional[logging.Logger] = None,
    ):
        self.name = name
        self.enabled = enabled
        self.max_per_window = max_per_window
        self._violation_log_throttle_ms = violation_log_throttle_seconds * 1000
        self._window_ms = window_ms
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)

        self._timestamps: List[float] = []
        self._last_violation_log: float = 0

    def _prune(self, now: float) -> None:
        cutoff = now - self._window_ms
        # Invariante: solo quedan timestamps >= now - ventana
        self._timestamps = [ts for ts in self._timestamps if ts >= cutoff]

    def try_acquire(self) -> bool:
        """Intenta admitir un mensaje.

        Returns:
            True si se admite (y se registra en la ventana), False si se supera el límite
        """
        if not self.enabled:
            return True

        now = self._clock()
        self._prune(now)

        if len(self._timestamps) >= self.max_per_window:
            if now - self._last_violation_log > self._violation_log_throttle_ms:
                self._logger.warning(
                    "UDP QUEUE [%s]: Rate limit exceeded (%d messages in last minute, max %d)",
                    self.name, len(self._timestamps), self.max_per_window,
                )
                self._last_violation_log = now
            return False

        self._timestamps.append(now)
        return True

    @property
    def current_rate(self) -> int:
        """Mensajes aceptados en la ventana actual (sin podar)."""
        return len(self._timestamps)

    def reset(self) -> None:
        self._timestamps = []
        self._last_violation_log = 0
