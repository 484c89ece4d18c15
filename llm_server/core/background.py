from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Set

from llm_server.core.metrics import metrics

logger = logging.getLogger(__name__)


class DetachedTaskRunner:
    """Fire-and-forget writes that outlive the request that spawned them.

    Every job gets its own timeout. Failures are logged and counted, never
    raised back to the caller. The runner holds references to in-flight tasks
    so they are not garbage collected mid-flight, and ``drain`` waits for them
    on shutdown.
    """

    def __init__(self, default_timeout_ms: int = 5000) -> None:
        self._default_timeout_ms = max(1, int(default_timeout_ms))
        self._tasks: Set[asyncio.Task] = set()

    @property
    def default_timeout_ms(self) -> int:
        return self._default_timeout_ms

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(
        self,
        name: str,
        factory: Callable[[], Awaitable[Any]],
        timeout_ms: Optional[int] = None,
    ) -> asyncio.Task:
        timeout_sec = (timeout_ms or self._default_timeout_ms) / 1000.0
        task = asyncio.create_task(self._run(name, factory, timeout_sec), name=f"detached:{name}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, name: str, factory: Callable[[], Awaitable[Any]], timeout_sec: float) -> None:
        try:
            await asyncio.wait_for(factory(), timeout=timeout_sec)
            metrics.inc("detached_task_total", {"task": name, "result": "ok"})
        except asyncio.TimeoutError:
            metrics.inc("detached_task_total", {"task": name, "result": "timeout"})
            logger.warning("detached task %s timed out after %.2fs", name, timeout_sec)
        except asyncio.CancelledError:
            metrics.inc("detached_task_total", {"task": name, "result": "cancelled"})
            raise
        except Exception as exc:
            metrics.inc("detached_task_total", {"task": name, "result": "error"})
            logger.warning("detached task %s failed: %s", name, exc)

    async def drain(self, timeout: Optional[float] = None) -> None:
        if not self._tasks:
            return
        pending = list(self._tasks)
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            logger.warning("cancelled %d detached tasks on shutdown", len(still_running))
