"""
In-process timing and counters for materialization, recognition and reconciliation.
"""
import logging
import threading
import time
from collections import defaultdict, deque
from typing import Dict, Optional

logger = logging.getLogger(__name__)

class MetricsCollector:
    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if not hasattr(self, 'initialized'):
            self._update_lock = threading.Lock()
            self.counters = defaultdict(int)
            self.timers = {}
            self.recent_times = defaultdict(lambda: deque(maxlen=100))
            self.initialized = True

    @staticmethod
    def _key(operation: str, request_id: Optional[str]) -> str:
        return f"{operation}:{request_id}" if request_id else operation

    def start_timer(self, operation: str, request_id: str = None):
        with self._update_lock:
            self.timers[self._key(operation, request_id)] = time.monotonic()

    def end_timer(self, operation: str, request_id: str = None) -> float:
        """Stop a timer and return its duration in seconds (0 if it was never started)."""
        with self._update_lock:
            started = self.timers.pop(self._key(operation, request_id), None)
            if started is None:
                return 0.0
            duration = time.monotonic() - started
            self.recent_times[operation].append(duration)
            return duration

    def increment_counter(self, metric: str, amount: int = 1):
        with self._update_lock:
            self.counters[metric] += amount

    def get_stats(self) -> Dict:
        with self._update_lock:
            stats = {}
            for operation, times in self.recent_times.items():
                if times:
                    stats[operation] = {
                        'avg_time': sum(times) / len(times),
                        'min_time': min(times),
                        'max_time': max(times),
                        'count': len(times)
                    }
            stats['counters'] = dict(self.counters)
            stats['in_flight'] = len(self.timers)
            return stats

    def reset(self):
        with self._update_lock:
            self.counters.clear()
            self.timers.clear()
            self.recent_times.clear()

# Global metrics instance
metrics = MetricsCollector()
