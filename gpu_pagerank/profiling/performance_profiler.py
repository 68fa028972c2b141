import json
import time
from typing import Dict, Any, Optional, List, Tuple
from dataclasses import dataclass, field
from contextlib import contextmanager

from ..data_structures.device import Device


@dataclass
class StageStats:
    """Timings of every execution of one solver stage."""
    name: str
    calls: List[Tuple[float, float]] = field(default_factory=list)  # (wall-clock start, seconds)
    max_memory: int = 0

    @property
    def num_calls(self) -> int:
        return len(self.calls)

    @property
    def total_time(self) -> float:
        return sum(duration for _, duration in self.calls)

    @property
    def avg_time(self) -> float:
        return self.total_time / self.num_calls if self.calls else 0.0

    def record(self, started_at: float, duration: float, memory_delta: int) -> None:
        self.calls.append((started_at, duration))
        self.max_memory = max(self.max_memory, memory_delta)


class PerformanceProfiler:
    """
    Per-stage profiler for the PageRank solver.

    Pass one to ``PageRank(..., profiler=...)`` and every stage of every
    pass is timed after a device synchronisation.
    """

    def __init__(self, device: Device):
        """
        Args:
            device: Device whose work is synchronised and whose memory is sampled
        """
        self.device = device
        self.stage_stats: Dict[str, StageStats] = {}
        self.peak_memory = 0
        self.start_time: Optional[float] = None

    @contextmanager
    def profile_kernel(self, name: str):
        """Time one stage execution."""
        started_at = time.time()
        start = time.perf_counter()
        initial_memory = self.device.used_bytes()

        yield

        # Kernel launches are asynchronous on the GPU
        self.device.synchronize()
        duration = time.perf_counter() - start
        final_memory = self.device.used_bytes()

        stats = self.stage_stats.setdefault(name, StageStats(name))
        stats.record(started_at, duration, final_memory - initial_memory)
        self.peak_memory = max(self.peak_memory, final_memory)

    def start_session(self):
        """Drop earlier results and start timing from now."""
        self.stage_stats.clear()
        self.peak_memory = 0
        self.start_time = time.time()

    def end_session(self) -> Dict[str, Any]:
        """
        Close the session.

        Returns:
            Dictionary with the session length, peak memory and per-stage totals
        """
        if self.start_time is None:
            raise RuntimeError("No active profiling session")

        report = {
            "total_time": time.time() - self.start_time,
            "peak_memory": self.peak_memory,
            "stages": {
                name: {"num_calls": s.num_calls, "total_time": s.total_time, "avg_time": s.avg_time}
                for name, s in self.stage_stats.items()
            },
        }
        self.start_time = None
        return report

    def print_summary(self):
        if not self.stage_stats:
            print("No profiling data available")
            return

        rows = [(s.name, s.num_calls, s.avg_time * 1e3, s.total_time * 1e3) for s in self.stage_stats.values()]
        total = sum(row[3] for row in rows)
        print(f"\n{'Stage':<24} {'Calls':>6} {'Avg (ms)':>10} {'Total (ms)':>11} {'Share':>7}")
        for name, calls, avg_ms, total_ms in rows:
            share = total_ms / total if total else 0.0
            print(f"{name:<24} {calls:>6} {avg_ms:>10.3f} {total_ms:>11.3f} {share:>7.1%}")
        print(f"Peak Memory Usage ({self.device.name}): {self.peak_memory / 2**20:.2f} MB")

    def export_chrome_trace(self, filename: str):
        """
        Write every stage execution as a Chrome trace "complete" event.

        Args:
            filename: Output JSON file path
        """
        origin = self.start_time
        if origin is None:
            origin = min((start for s in self.stage_stats.values() for start, _ in s.calls), default=0.0)

        events = [
            {
                "name": name,
                "cat": "stage",
                "ph": "X",
                "pid": 1,
                "tid": tid,
                "ts": (start - origin) * 1e6,  # Microseconds
                "dur": duration * 1e6,
            }
            for tid, (name, stats) in enumerate(self.stage_stats.items(), 1)
            for start, duration in stats.calls
        ]
        with open(filename, 'w') as f:
            json.dump({"traceEvents": events, "displayTimeUnit": "ms"}, f)
