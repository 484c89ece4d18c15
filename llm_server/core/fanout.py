"""Concurrent fan-out/fan-in of independent upstream lookups.

Each lookup runs in its own task. The coordinator always waits for every task
(or the deadline) before composing the result, so arrival order never matters.
Optional lookups degrade to their default; a failed required lookup raises
``RequiredLookupError`` once all tasks have settled.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence

from llm_server.core.errors import RequiredLookupError
from llm_server.core.metrics import metrics

logger = logging.getLogger(__name__)


class LookupTimeout(Exception):
    pass


@dataclass
class Lookup:
    name: str
    call: Callable[[], Awaitable[Any]]
    required: bool = False
    default: Any = None


@dataclass
class FanOutResult:
    values: Dict[str, Any] = field(default_factory=dict)
    errors: Dict[str, BaseException] = field(default_factory=dict)
    took_ms: int = 0

    def get(self, name: str, default: Any = None) -> Any:
        return self.values.get(name, default)

    def failed(self, name: str) -> bool:
        return name in self.errors


class FanOutCoordinator:
    def __init__(self, default_timeout_sec: Optional[float] = None) -> None:
        self._default_timeout = default_timeout_sec

    async def gather(self, lookups: Sequence[Lookup], timeout: Optional[float] = None) -> FanOutResult:
        names = [lookup.name for lookup in lookups]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate lookup names: {names}")

        deadline = timeout if timeout is not None else self._default_timeout
        started = time.perf_counter()
        tasks = {lookup.name: asyncio.create_task(lookup.call()) for lookup in lookups}
        result = FanOutResult()
        if tasks:
            try:
                _, pending = await asyncio.wait(tasks.values(), timeout=deadline)
            except asyncio.CancelledError:
                for task in tasks.values():
                    task.cancel()
                raise
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        for lookup in lookups:
            task = tasks[lookup.name]
            error = _task_error(task, deadline)
            if error is None:
                result.values[lookup.name] = task.result()
                metrics.inc("fanout_lookup_total", {"lookup": lookup.name, "result": "ok"})
                continue
            result.errors[lookup.name] = error
            result.values[lookup.name] = copy.copy(lookup.default)
            outcome = "timeout" if isinstance(error, LookupTimeout) else "error"
            metrics.inc("fanout_lookup_total", {"lookup": lookup.name, "result": outcome})
            if lookup.required:
                logger.error("required lookup %s failed: %s", lookup.name, error)
            else:
                logger.warning("optional lookup %s failed, using default: %s", lookup.name, error)

        result.took_ms = int((time.perf_counter() - started) * 1000)
        metrics.observe_ms("fanout_latency_ms", result.took_ms)

        for lookup in lookups:
            if lookup.required and lookup.name in result.errors:
                raise RequiredLookupError(lookup.name, result.errors[lookup.name])
        return result


def _task_error(task: asyncio.Task, deadline: Optional[float]) -> Optional[BaseException]:
    if task.cancelled():
        return LookupTimeout(f"lookup did not finish within {deadline}s")
    return task.exception()
