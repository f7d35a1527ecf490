"""Metrics collector for vector store caching operations.

Provides observability into:
- Cache hit/miss rates and absorbed cache errors
- Cache warming success/failure rates
- Query duration distributions per store
- Document counts by source

All mutation happens under a lock; one instance is shared by every
request-handling thread.
"""

import bisect
import statistics
import threading
from collections import Counter, deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Sequence

# Millisecond bucket bounds for query duration histograms
DEFAULT_BUCKETS_MS = (1, 2.5, 5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000)

STORES = ("cache", "primary", "warming")


class DurationHistogram:
    """Cumulative bucket histogram with a sliding window for percentiles."""

    def __init__(self, name: str, buckets: Sequence[float] = DEFAULT_BUCKETS_MS, window_size: int = 1000):
        self.name = name
        self.buckets = tuple(sorted(buckets))
        self._bucket_counts = [0] * (len(self.buckets) + 1)  # last slot is +Inf
        self._window: Deque[float] = deque(maxlen=window_size)
        self._count = 0
        self._sum = 0.0
        self._max = 0.0
        self._lock = threading.Lock()

    def record(self, value_ms: float) -> None:
        """Record a new duration."""
        value_ms = max(0.0, float(value_ms))
        with self._lock:
            self._bucket_counts[bisect.bisect_left(self.buckets, value_ms)] += 1
            self._window.append(value_ms)
            self._count += 1
            self._sum += value_ms
            self._max = max(self._max, value_ms)

    def reset(self) -> None:
        """Clear recorded durations in place."""
        with self._lock:
            self._bucket_counts = [0] * (len(self.buckets) + 1)
            self._window.clear()
            self._count = 0
            self._sum = 0.0
            self._max = 0.0

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    def mean(self) -> float:
        with self._lock:
            return self._sum / self._count if self._count else 0.0

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics for this histogram."""
        with self._lock:
            values = sorted(self._window)
            count, total, maximum = self._count, self._sum, self._max
            bucket_counts = list(self._bucket_counts)

        if not values:
            return {"count": 0, "sum": 0.0, "mean": 0.0, "max": 0.0, "p50": 0.0, "p95": 0.0, "p99": 0.0,
                    "buckets": self._cumulative(bucket_counts)}

        last_index = len(values) - 1

        def percentile(ratio: float) -> float:
            return values[min(int(len(values) * ratio), last_index)]

        return {
            "count": count,
            "sum": total,
            "mean": total / count,
            "max": maximum,
            "p50": percentile(0.5),
            "p95": percentile(0.95),
            "p99": percentile(0.99),
            "window_mean": statistics.mean(values),
            "buckets": self._cumulative(bucket_counts),
        }

    def _cumulative(self, bucket_counts: List[int]) -> Dict[str, int]:
        cumulative: Dict[str, int] = {}
        running = 0
        for bound, bucket_count in zip(list(self.buckets) + ["+Inf"], bucket_counts):
            running += bucket_count
            cumulative[str(bound)] = running
        return cumulative


class VectorCacheMetrics:
    """Thread-safe MetricsSink implementation."""

    def __init__(self, buckets: Sequence[float] = DEFAULT_BUCKETS_MS):
        self._lock = threading.Lock()
        self._counters: Counter = Counter()
        self._errors_by_category: Counter = Counter()
        self._timers: Dict[str, DurationHistogram] = {
            store: DurationHistogram(f"{store}_query_duration_ms", buckets) for store in STORES
        }
        self.start_time = datetime.now(timezone.utc)

    def _increment(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self._counters[name] += amount

    def _get(self, name: str) -> int:
        with self._lock:
            return self._counters[name]

    # MetricsSink

    def record_cache_hit(self, document_count: int) -> None:
        with self._lock:
            self._counters["cache_hits"] += 1
            self._counters["documents_from_cache"] += document_count

    def record_cache_miss(self) -> None:
        self._increment("cache_misses")

    def record_cache_error(self, category: str) -> None:
        with self._lock:
            self._counters["cache_errors"] += 1
            self._errors_by_category[category] += 1

    def record_primary_retrieval(self, document_count: int) -> None:
        self._increment("documents_from_primary", document_count)

    def record_warming_success(self, document_count: int) -> None:
        with self._lock:
            self._counters["warming_success"] += 1
            self._counters["documents_cached"] += document_count

    def record_warming_failure(self) -> None:
        self._increment("warming_failures")

    def record_metadata_fallback(self) -> None:
        self._increment("metadata_fallbacks")

    def record_query_time(self, store: str, duration_ms: float) -> None:
        timer = self._timers.get(store)
        if timer is None:
            raise ValueError(f"Unknown store for timing: {store}")
        timer.record(duration_ms)

    # Read side

    @property
    def cache_hits(self) -> int:
        return self._get("cache_hits")

    @property
    def cache_misses(self) -> int:
        return self._get("cache_misses")

    @property
    def cache_errors(self) -> int:
        return self._get("cache_errors")

    @property
    def warming_successes(self) -> int:
        return self._get("warming_success")

    @property
    def warming_failures(self) -> int:
        return self._get("warming_failures")

    @property
    def documents_cached(self) -> int:
        return self._get("documents_cached")

    @property
    def metadata_fallbacks(self) -> int:
        return self._get("metadata_fallbacks")

    @property
    def hit_rate(self) -> float:
        """Cache hits over hits plus misses."""
        with self._lock:
            hits = self._counters["cache_hits"]
            total = hits + self._counters["cache_misses"]
        return hits / total if total > 0 else 0.0

    def timer(self, store: str) -> DurationHistogram:
        return self._timers[store]

    def snapshot(self) -> Dict[str, Any]:
        """Point-in-time copy of all counters and timer stats."""
        with self._lock:
            counters = dict(self._counters)
            errors = dict(self._errors_by_category)
        return {
            "counters": counters,
            "cache_errors_by_category": errors,
            "timers": {store: timer.get_stats() for store, timer in self._timers.items()},
            "hit_rate": self.hit_rate,
            "uptime_seconds": (datetime.now(timezone.utc) - self.start_time).total_seconds(),
        }

    def summary(self, cache_enabled: Optional[bool] = None) -> Dict[str, Any]:
        """Human-oriented cache stats view."""
        summary = {
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "cache_errors": self.cache_errors,
            "warming_success": self.warming_successes,
            "warming_failures": self.warming_failures,
            "documents_cached": self.documents_cached,
            "cache_hit_rate": f"{self.hit_rate * 100:.1f}%",
            "cache_query_avg": f"{self._timers['cache'].mean():.1f}ms",
            "primary_query_avg": f"{self._timers['primary'].mean():.1f}ms",
        }
        if cache_enabled is not None:
            summary["cache_enabled"] = cache_enabled
        return summary

    def export_prometheus(self, prefix: str = "vectorstore") -> str:
        """Export metrics in Prometheus text format."""
        lines = []

        with self._lock:
            counters = dict(self._counters)
            errors = dict(self._errors_by_category)

        for name in sorted(counters):
            lines.append(f"# HELP {prefix}_{name}_total Counter for {name}")
            lines.append(f"# TYPE {prefix}_{name}_total counter")
            lines.append(f"{prefix}_{name}_total {counters[name]}")

        if errors:
            lines.append(f"# HELP {prefix}_cache_errors_by_category_total Absorbed cache errors by category")
            lines.append(f"# TYPE {prefix}_cache_errors_by_category_total counter")
            for category in sorted(errors):
                lines.append(f'{prefix}_cache_errors_by_category_total{{category="{category}"}} {errors[category]}')

        lines.append(f"# HELP {prefix}_query_duration_ms Query duration by store")
        lines.append(f"# TYPE {prefix}_query_duration_ms histogram")
        for store, timer in self._timers.items():
            stats = timer.get_stats()
            for bound, cumulative in stats["buckets"].items():
                lines.append(f'{prefix}_query_duration_ms_bucket{{store="{store}",le="{bound}"}} {cumulative}')
            lines.append(f'{prefix}_query_duration_ms_count{{store="{store}"}} {stats["count"]}')
            lines.append(f'{prefix}_query_duration_ms_sum{{store="{store}"}} {stats["sum"]}')

        return "\n".join(lines)

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._counters.clear()
            self._errors_by_category.clear()
            # Timers are cleared in place; callers may hold a reference
            for timer in self._timers.values():
                timer.reset()
            self.start_time = datetime.now(timezone.utc)
