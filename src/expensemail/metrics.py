"""Step timing for pipeline runs - latency focused."""

import time


class MetricsCollector:
    """Collects per-step latencies for a single pipeline run."""

    def __init__(self):
        self.timings: dict[str, float] = {}
        self._start_times: dict[str, float] = {}

    def start_timer(self, name: str) -> None:
        """Start a named timer."""
        self._start_times[name] = time.perf_counter()

    def stop_timer(self, name: str) -> float:
        """Stop a named timer, record and return elapsed time."""
        if name not in self._start_times:
            return 0.0
        elapsed = time.perf_counter() - self._start_times.pop(name)
        self.timings[name] = self.timings.get(name, 0.0) + elapsed
        return elapsed

    @property
    def total_time(self) -> float:
        return sum(self.timings.values())
