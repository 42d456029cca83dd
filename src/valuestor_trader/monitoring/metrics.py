"""Process-local counters and sample windows for the issuance pipeline.

Counters track outcomes (``decisions.buy``, ``executions.failed``), gauges hold
the latest value of a level (``holders.active``) and sample windows keep the
most recent observations of a distribution (``risk_score``, latencies). All
three are keyed by dotted names and rendered as Prometheus text on demand.
"""

from __future__ import annotations

import math
import re
import threading
import time
from collections import defaultdict, deque
from contextlib import contextmanager
from statistics import mean
from typing import Deque, Dict, Iterator, List, MutableMapping, Sequence

PROMETHEUS_PREFIX = "valuestor_"
SUMMARY_PERCENTILES = (50, 90, 99)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_]")


def prometheus_name(name: str) -> str:
    """``decisions.fail_closed`` -> ``valuestor_decisions_fail_closed``."""

    return PROMETHEUS_PREFIX + _UNSAFE_CHARS.sub("_", name)


def summarize(samples: Sequence[float]) -> Dict[str, float]:
    if not samples:
        return {}
    ordered = sorted(samples)
    summary = {"count": float(len(ordered)), "avg": mean(ordered)}
    for percentile in SUMMARY_PERCENTILES:
        rank = max(math.ceil(percentile * len(ordered) / 100) - 1, 0)
        summary[f"p{percentile}"] = float(ordered[rank])
    return summary


class PipelineMetrics:
    """Thread-safe metrics shared by the monitor, engine, executor and orchestrator."""

    def __init__(self, *, window: int = 1024) -> None:
        self._lock = threading.RLock()
        self._counters: MutableMapping[str, float] = defaultdict(float)
        self._gauges: Dict[str, float] = {}
        self._samples: MutableMapping[str, Deque[float]] = defaultdict(lambda: deque(maxlen=window))

    def increment(self, name: str, amount: float = 1.0) -> None:
        with self._lock:
            self._counters[name] += amount

    def get(self, name: str) -> float:
        with self._lock:
            return self._counters.get(name, 0.0)

    def gauge(self, name: str, value: float) -> None:
        with self._lock:
            self._gauges[name] = float(value)

    def observe(self, name: str, value: float) -> None:
        with self._lock:
            self._samples[name].append(float(value))

    @contextmanager
    def timer(self, name: str) -> Iterator[None]:
        """Record how long the block took, in seconds, even when it raises."""

        started = time.perf_counter()
        try:
            yield
        finally:
            self.observe(name, time.perf_counter() - started)

    def snapshot(self) -> Dict[str, Dict]:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "histograms": {name: summarize(list(window)) for name, window in self._samples.items()},
            }

    def export_prometheus(self) -> str:
        snap = self.snapshot()
        lines: List[str] = []
        for kind in ("counters", "gauges"):
            metric_type = kind[:-1]
            for name, value in sorted(snap[kind].items()):
                exported = prometheus_name(name)
                lines.append(f"# TYPE {exported} {metric_type}")
                lines.append(f"{exported} {value}")
        for name, summary in sorted(snap["histograms"].items()):
            if not summary:
                continue
            exported = prometheus_name(name)
            lines.append(f"# TYPE {exported} summary")
            for percentile in SUMMARY_PERCENTILES:
                lines.append(f'{exported}{{quantile="{percentile / 100}"}} {summary[f"p{percentile}"]}')
            lines.append(f"{exported}_count {summary['count']}")
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._samples.clear()


METRICS = PipelineMetrics()


__all__ = ["METRICS", "PipelineMetrics", "prometheus_name", "summarize"]
