from __future__ import annotations

import asyncio
import logging
import time
from contextlib import contextmanager
from dataclasses import replace
from threading import Condition, Lock
from typing import Callable, Iterator, Optional

from llm_server.core.metrics import metrics
from llm_server.core.models import StoredQuestion

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """Many concurrent readers or one writer; waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = Condition(Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class QuestionCache:
    def __init__(
        self,
        ttl_sec: float,
        reap_interval_sec: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ttl = float(ttl_sec)
        self._reap_interval = max(0.01, float(reap_interval_sec))
        self._clock = clock
        self._entries: dict[str, StoredQuestion] = {}
        self._lock = ReadWriteLock()
        self._task: Optional[asyncio.Task] = None

    @property
    def ttl_sec(self) -> float:
        return self._ttl

    def now(self) -> float:
        return self._clock()

    def put(self, question: StoredQuestion) -> StoredQuestion:
        now = self._clock()
        entry = replace(question, created_at=now, expires_at=now + self._ttl)
        with self._lock.write():
            self._entries[entry.question_id] = entry
            size = len(self._entries)
        metrics.set("question_cache_entries", value=size)
        return entry

    def get(self, question_id: str) -> Optional[StoredQuestion]:
        now = self._clock()
        with self._lock.read():
            entry = self._entries.get(question_id)
        if entry is None or now >= entry.expires_at:
            metrics.inc("question_cache_lookup_total", {"result": "miss"})
            return None
        metrics.inc("question_cache_lookup_total", {"result": "hit"})
        return entry

    def reap(self) -> int:
        now = self._clock()
        with self._lock.write():
            expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
            for key in expired:
                del self._entries[key]
            size = len(self._entries)
        metrics.set("question_cache_entries", value=size)
        if expired:
            metrics.inc("question_cache_reaped_total", value=len(expired))
            logger.debug("question cache reaped %d expired entries", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._entries)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._reap_loop())

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _reap_loop(self) -> None:
        while True:
            await asyncio.sleep(self._reap_interval)
            try:
                self.reap()
            except Exception as exc:
                logger.exception("question cache reap failed: %s", exc)
