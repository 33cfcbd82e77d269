"""
加载器性能统计

记录 add / remove / reload 的次数、错误数和耗时，供 ModuleLoader.stats() 使用。
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from hotplug.utils.time_utils import now_iso


class Timer:
    """基于 perf_counter 的计时器，可作为上下文管理器使用"""

    def __init__(self) -> None:
        self._start: Optional[float] = None
        self._end: Optional[float] = None

    def start(self) -> "Timer":
        self._start = time.perf_counter()
        self._end = None
        return self

    def stop(self) -> float:
        if self._start is None:
            return 0.0
        self._end = time.perf_counter()
        return self.elapsed

    @property
    def elapsed(self) -> float:
        """已经过的秒数，未停止时返回当前值"""
        if self._start is None:
            return 0.0
        end = self._end if self._end is not None else time.perf_counter()
        return end - self._start

    def __enter__(self) -> "Timer":
        return self.start()

    def __exit__(self, *exc: Any) -> None:
        self.stop()


@dataclass
class OperationStats:
    count: int = 0
    errors: int = 0
    total_time: float = 0.0
    max_time: float = 0.0
    last_time: float = 0.0

    @property
    def avg_time(self) -> float:
        return self.total_time / self.count if self.count else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "errors": self.errors,
            "total_time": round(self.total_time, 6),
            "avg_time": round(self.avg_time, 6),
            "max_time": round(self.max_time, 6),
            "last_time": round(self.last_time, 6),
        }


@dataclass
class PerformanceMonitor:
    started_at: str = field(default_factory=now_iso)
    operations: Dict[str, OperationStats] = field(default_factory=dict)

    def _op(self, name: str) -> OperationStats:
        stats = self.operations.get(name)
        if stats is None:
            stats = self.operations[name] = OperationStats()
        return stats

    def record(self, operation: str, duration: float, *, ok: bool = True) -> None:
        stats = self._op(operation)
        stats.count += 1
        stats.total_time += duration
        stats.last_time = duration
        if duration > stats.max_time:
            stats.max_time = duration
        if not ok:
            stats.errors += 1

    def record_error(self, operation: str) -> None:
        self._op(operation).errors += 1

    def count(self, operation: str) -> int:
        stats = self.operations.get(operation)
        return stats.count if stats else 0

    @property
    def total_errors(self) -> int:
        return sum(s.errors for s in self.operations.values())

    def reset(self) -> None:
        self.operations.clear()
        self.started_at = now_iso()

    def snapshot(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at,
            "errors": self.total_errors,
            "operations": {name: s.to_dict() for name, s in self.operations.items()},
        }


__all__ = ["Timer", "OperationStats", "PerformanceMonitor"]
