"""Pool de tareas asyncio con concurrencia acotada.

Equivalente cooperativo de un worker pool: ``concurrency`` limita cuántas
corrutinas están en vuelo a la vez; el resto espera en una cola FIFO.

- ``size``: tareas esperando (aún no iniciadas)
- ``pending``: tareas en ejecución
- Timeout opcional por tarea (la tarea se cancela y su future recibe TimeoutError)
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Optional


@dataclass
class _PoolItem:
    factory: Callable[[], Awaitable[Any]]
    future: "asyncio.Future[Any]"


class BoundedTaskPool:
    def __init__(self, concurrency: int, timeout: Optional[float] = None):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._concurrency = concurrency
        self._timeout = timeout
        self._waiting: Deque[_PoolItem] = deque()
        self._running = 0
        self._tasks: set[asyncio.Task] = set()

        self._empty = asyncio.Event()
        self._idle = asyncio.Event()
        self._empty.set()
        self._idle.set()

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def size(self) -> int:
        return len(self._waiting)

    @property
    def pending(self) -> int:
        return self._running

    def add(self, factory: Callable[[], Awaitable[Any]]) -> "asyncio.Future[Any]":
        """Encola ``factory`` (callable que devuelve un awaitable).

        Debe llamarse con un event loop en marcha. Devuelve un future con el
        resultado; TimeoutError si se supera el timeout, CancelledError si la
        tarea fue desalojada antes de empezar.
        """
        loop = asyncio.get_running_loop()
        item = _PoolItem(factory=factory, future=loop.create_future())
        self._waiting.append(item)
        self._empty.clear()
        self._idle.clear()
        self._dispatch()
        return item.future

    def evict_oldest(self) -> bool:
        """Descarta la tarea en espera más antigua. False si no hay ninguna esperando."""
        if not self._waiting:
            return False
        item = self._waiting.popleft()
        item.future.cancel()
        self._update_events()
        return True

    def _dispatch(self) -> None:
        while self._waiting and self._running < self._concurrency:
            item = self._waiting.popleft()
            self._running += 1
            task = asyncio.get_running_loop().create_task(self._run(item))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        self._update_events()

    async def _run(self, item: _PoolItem) -> None:
        try:
            if self._timeout is not None:
                result = await asyncio.wait_for(item.factory(), timeout=self._timeout)
            else:
                result = await item.factory()
            if not item.future.done():
                item.future.set_result(result)
        except asyncio.CancelledError:
            if not item.future.done():
                item.future.cancel()
            raise
        except Exception as e:
            if not item.future.done():
                item.future.set_exception(e)
        finally:
            self._running -= 1
            self._dispatch()

    def _update_events(self) -> None:
        if not self._waiting:
            self._empty.set()
            if self._running == 0:
                self._idle.set()

    async def on_empty(self) -> None:
        """Espera a que no quede nada en espera."""
        await self._empty.wait()

    async def on_idle(self) -> None:
        """Espera a que no quede nada en espera NI en ejecución."""
        while self._waiting or self._running:
            await self._idle.wait()
            # Re-check: una tarea nueva pudo entrar tras el set()
            if self._waiting or self._running:
                self._idle.clear()

    def clear(self) -> int:
        """Cancela todas las tareas en espera. Retorna cuántas se descartaron."""
        count = 0
        while self.evict_oldest():
            count += 1
        return count
