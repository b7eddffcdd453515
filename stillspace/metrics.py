"""
Observability metrics for the offline layer.

Tracks:
- Request counts and latency percentiles (p50, p95, p99) per route class
- Cache hits, misses and offline fallbacks per route class
- Error responses (status >= 500 or synthesized 408)
"""

import statistics
from collections import defaultdict, deque
from datetime import datetime
from typing import Dict, Optional


class MetricsCollector:
    """
    In-memory metrics collector.

    One instance per gateway; the executor feeds it every served response.
    """

    def __init__(self, window_size: int = 1000):
        """
        Args:
            window_size: Number of recent samples to keep for percentiles
        """
        self.window_size = window_size

        # Latency tracking (sliding window)
        self.latencies: Dict[str, deque] = defaultdict(lambda: deque(maxlen=window_size))

        self.request_counts: Dict[str, int] = defaultdict(int)
        self.error_counts: Dict[str, int] = defaultdict(int)
        self.source_counts: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))

        self.start_time = datetime.now()
        self.last_reset = datetime.now()

    def record_request(self, route_class: str, source: str, status: int, latency_ms: float):
        """Record one served response."""
        self.latencies[route_class].append(latency_ms)
        self.request_counts[route_class] += 1
        self.source_counts[route_class][source] += 1
        if status >= 500 or status == 408:
            self.error_counts[route_class] += 1

    @property
    def cache_hits(self) -> int:
        return sum(counts["cache"] for counts in self.source_counts.values())

    @property
    def cache_misses(self) -> int:
        return sum(
            counts["network"] + counts["fallback"] for counts in self.source_counts.values()
        )

    @property
    def fallbacks(self) -> int:
        return sum(counts["fallback"] for counts in self.source_counts.values())

    def get_percentile(self, route_class: str, percentile: float) -> Optional[float]:
        """
        Get a latency percentile for a route class.

        Returns:
            Latency in ms, or None if insufficient data
        """
        values = sorted(self.latencies.get(route_class, ()))
        if len(values) < 10:  # Need at least 10 samples for meaningful percentiles
            return None

        index = int(len(values) * (percentile / 100.0))
        index = min(index, len(values) - 1)
        return values[index]

    def get_cache_hit_rate(self) -> float:
        """Get the cache hit rate as a percentage."""
        total = self.cache_hits + self.cache_misses
        if total == 0:
            return 0.0
        return (self.cache_hits / total) * 100.0

    def get_summary(self) -> Dict:
        uptime_seconds = (datetime.now() - self.start_time).total_seconds()

        summary = {
            "uptime_seconds": uptime_seconds,
            "cache": {
                "hit_rate_pct": round(self.get_cache_hit_rate(), 2),
                "total_hits": self.cache_hits,
                "total_misses": self.cache_misses,
                "total_fallbacks": self.fallbacks,
            },
            "routes": {},
        }

        for route_class, total in self.request_counts.items():
            sources = self.source_counts[route_class]
            route_metrics = {
                "total_requests": total,
                "total_errors": self.error_counts[route_class],
                "cache": sources["cache"],
                "network": sources["network"],
                "fallback": sources["fallback"],
            }
            for pct in (50, 95, 99):
                value = self.get_percentile(route_class, pct)
                if value is not None:
                    route_metrics[f"latency_p{pct}_ms"] = round(value, 2)
            if self.latencies[route_class]:
                route_metrics["latency_avg_ms"] = round(statistics.mean(self.latencies[route_class]), 2)

            summary["routes"][route_class] = route_metrics

        return summary

    def reset(self):
        """Reset all metrics (useful for testing)."""
        self.latencies.clear()
        self.request_counts.clear()
        self.error_counts.clear()
        self.source_counts.clear()
        self.last_reset = datetime.now()
