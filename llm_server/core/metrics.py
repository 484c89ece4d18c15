from __future__ import annotations

from collections import defaultdict
from threading import Lock
from typing import Mapping


class MetricRegistry:
    def __init__(self) -> None:
        self._counters: dict[str, int] = defaultdict(int)
        self._gauges: dict[str, float] = {}
        self._latency_ms: dict[str, list[int]] = defaultdict(list)
        self._lock = Lock()

    def inc(self, name: str, labels: Mapping[str, str] | None = None, value: int = 1) -> None:
        key = self._format_key(name, labels)
        with self._lock:
            self._counters[key] += value

    def set(self, name: str, labels: Mapping[str, str] | None = None, value: float = 0.0) -> None:
        key = self._format_key(name, labels)
        with self._lock:
            self._gauges[key] = float(value)

    def observe_ms(self, name: str, took_ms: int, labels: Mapping[str, str] | None = None) -> None:
        key = self._format_key(name, labels)
        with self._lock:
            samples = self._latency_ms[key]
            samples.append(max(0, int(took_ms)))
            # keep a bounded window per key
            if len(samples) > 512:
                del samples[: len(samples) - 512]

    def snapshot(self) -> dict[str, float | int]:
        with self._lock:
            merged: dict[str, float | int] = dict(self._counters)
            merged.update(self._gauges)
            for key, samples in self._latency_ms.items():
                if not samples:
                    continue
                ordered = sorted(samples)
                merged[f"{key}:count"] = len(ordered)
                merged[f"{key}:p50"] = ordered[len(ordered) // 2]
                merged[f"{key}:max"] = ordered[-1]
            return merged

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._latency_ms.clear()

    @staticmethod
    def _format_key(name: str, labels: Mapping[str, str] | None) -> str:
        if not labels:
            return name
        parts = [f"{k}={labels[k]}" for k in sorted(labels.keys())]
        return f"{name}{{{','.join(parts)}}}"


metrics = MetricRegistry()
