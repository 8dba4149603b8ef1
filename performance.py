"""performance.py

Optional memory compaction and metrics sampling for long evaluation runs.

Counters the host interpreter does not expose (peak RSS without ``resource``,
GC statistics without ``gc.get_stats``) are left out of the sample.
"""

from __future__ import annotations

import gc
import sys
import time
from dataclasses import dataclass, field
from typing import Any, Optional

try:
    import resource
except ImportError:  # not available on Windows
    resource = None


@dataclass
class PerformanceSample:
    uptime_s: float
    peak_rss_kb: Optional[int] = None
    gc_counts: Optional[tuple[int, ...]] = None
    gc_collections: Optional[int] = None
    trace_entries: Optional[int] = None


def _peak_rss_kb() -> Optional[int]:
    if resource is None:
        return None
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # macOS reports bytes, Linux kilobytes
    return peak // 1024 if sys.platform == "darwin" else peak


class PerformanceMonitor:
    def __init__(self, max_samples: int = 1000) -> None:
        self.max_samples = max_samples
        self.samples: list[PerformanceSample] = []
        self.compactions = 0
        self.objects_collected = 0
        self._started: Optional[float] = None

    def start(self) -> None:
        self._started = time.monotonic()
        self.samples.clear()

    def sample(self, trace_entries: Optional[int] = None) -> PerformanceSample:
        if self._started is None:
            self.start()
        s = PerformanceSample(
            uptime_s=time.monotonic() - self._started,
            peak_rss_kb=_peak_rss_kb(),
            trace_entries=trace_entries,
        )
        get_stats = getattr(gc, "get_stats", None)
        if get_stats is not None:
            s.gc_counts = tuple(gc.get_count())
            s.gc_collections = sum(gen.get("collections", 0) for gen in get_stats())
        self.samples.append(s)
        if len(self.samples) > self.max_samples:
            del self.samples[: len(self.samples) - self.max_samples]
        return s

    def compact(self) -> int:
        """Run a full collection; returns the number of unreachable objects found."""
        collected = gc.collect()
        self.compactions += 1
        self.objects_collected += collected
        return collected

    def report(self) -> dict[str, Any]:
        latest = self.samples[-1] if self.samples else None
        peaks = [s.peak_rss_kb for s in self.samples if s.peak_rss_kb is not None]
        out: dict[str, Any] = {
            "samples": len(self.samples),
            "uptime_s": latest.uptime_s if latest else 0.0,
            "compactions": self.compactions,
            "objects_collected": self.objects_collected,
        }
        if peaks:
            out["peak_rss_kb"] = max(peaks)
        if latest is not None and latest.gc_collections is not None:
            out["gc_collections"] = latest.gc_collections
        return out
