"""
Store Metrics

Counters and timers for store/search/promotion activity.
"""

import time
from contextlib import contextmanager
from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterator, List


@dataclass
class BankMetrics:
    """Activity counters for one store instance"""
    patterns_stored: int = 0
    patterns_updated: int = 0
    patterns_retrieved: int = 0
    search_count: int = 0
    total_search_time_ms: float = 0.0
    promotions: int = 0
    patterns_pruned: int = 0
    patterns_evicted: int = 0
    outcomes_recorded: int = 0
    persistence_errors: int = 0

    @property
    def avg_search_time_ms(self) -> float:
        if self.search_count == 0:
            return 0.0
        return self.total_search_time_ms / self.search_count

    def record_search(self, duration_ms: float, results: int) -> None:
        self.search_count += 1
        self.total_search_time_ms += duration_ms
        self.patterns_retrieved += results

    def snapshot(self) -> Dict[str, Any]:
        """Copy of all counters (safe to mutate)"""
        data = asdict(self)
        data["avg_search_time_ms"] = self.avg_search_time_ms
        return data

    def reset(self) -> None:
        for name, value in asdict(BankMetrics()).items():
            setattr(self, name, value)


@contextmanager
def timed() -> Iterator[List[float]]:
    """
    Measure elapsed milliseconds.

    Usage:
        with timed() as elapsed:
            ...
        duration_ms = elapsed[0]
    """
    elapsed = [0.0]
    start = time.perf_counter()
    try:
        yield elapsed
    finally:
        elapsed[0] = (time.perf_counter() - start) * 1000.0
