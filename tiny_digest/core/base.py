"""
Base classes and interfaces for tiny-digest summaries.

This module defines the abstract base classes shared by the quantile
summaries and the recorders that feed them, so that every structure in the
library exposes the same query, inspection and benchmarking hooks.
"""

import abc
import sys
import time
from collections import deque
from typing import Any, Deque, Dict, Generic, Iterable, Optional, TypeVar

S = TypeVar("S")  # Type of the snapshot handed out by a recorder


class QuantileSummary(abc.ABC):
    """
    Abstract base class for summaries that answer quantile queries.

    Implementations are expected to be value-like: a query never changes
    the state of the summary.
    """

    # Quantiles reported by the inspection hooks
    REPORTED_QUANTILES = (
        0.001, 0.01, 0.05, 0.1, 0.25, 0.5, 0.75, 0.9, 0.95, 0.99, 0.999
    )

    @abc.abstractmethod
    def estimate_quantile(self, q: float) -> float:
        """
        Estimate the value located at quantile ``q``.

        Args:
            q: Target quantile. Values at or below 0 map to the minimum and
               values at or above 1 map to the maximum.

        Returns:
            The estimated value.
        """
        pass

    @property
    @abc.abstractmethod
    def count(self) -> float:
        """Total weight (number of observations) represented by the summary."""
        pass

    def percentile(self, p: float) -> float:
        """
        Estimate the value at percentile ``p``.

        Args:
            p: Percentile between 0 and 100.

        Returns:
            The estimated value.

        Raises:
            ValueError: If p is outside [0, 100].
        """
        if not (0.0 <= p <= 100.0):
            raise ValueError(f"Percentile must be between 0 and 100, got {p}")
        return self.estimate_quantile(p / 100.0)

    def quantiles(self, qs: Iterable[float]) -> Dict[float, float]:
        """Estimate several quantiles at once, keyed by quantile."""
        return {q: self.estimate_quantile(q) for q in qs}

    def estimate_size(self) -> int:
        """
        Estimate the current memory usage of this summary in bytes.

        Derived classes should add the size of their own containers.
        """
        size = sys.getsizeof(self)
        if hasattr(self, "__dict__"):
            size += sys.getsizeof(self.__dict__)
        return size

    def error_bounds(self) -> Dict[str, Any]:
        """
        Get the theoretical error bounds for this summary.

        The base implementation returns an empty dictionary.
        """
        return {}

    def get_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the current state of the summary.

        Derived classes extend this with their own structure statistics.
        """
        stats: Dict[str, Any] = {
            "type": self.__class__.__name__,
            "count": self.count,
            "memory_bytes": self.estimate_size(),
        }

        if self.count > 0:
            stats["quantiles"] = {
                f"q{q:.3f}": self.estimate_quantile(q)
                for q in self.REPORTED_QUANTILES
            }

        stats.update(self.error_bounds())
        return stats


class StreamRecorder(Generic[S], abc.ABC):
    """
    Abstract base class for recorders fed one observation at a time.

    A recorder accumulates observations and hands out snapshots of type
    ``S`` on request. It also carries the optional latency tracking used
    when benchmarking the recording path.
    """

    def __init__(self) -> None:
        self._items_observed = 0

        # Performance tracking attributes
        self._track_recent_updates: bool = False
        self._recent_update_times: Optional[Deque[float]] = None
        self._max_update_history: int = 100
        self._last_update_time: float = 0.0
        self._total_update_time: float = 0.0
        self._update_count: int = 0

    @abc.abstractmethod
    def observe(self, value: Any) -> None:
        """
        Record one occurrence of a value.

        Args:
            value: The observation.
        """
        pass

    @abc.abstractmethod
    def get(self) -> S:
        """Return a snapshot of everything recorded so far."""
        pass

    @abc.abstractmethod
    def reset(self) -> S:
        """Return a snapshot of everything recorded so far and start over."""
        pass

    @property
    def items_observed(self) -> int:
        """Number of observations accepted by this recorder."""
        return self._items_observed

    def _record_update_time(self, elapsed: float) -> None:
        """Store the duration of one observe call, in seconds."""
        self._last_update_time = elapsed
        self._total_update_time += elapsed
        self._update_count += 1
        if self._recent_update_times is not None:
            self._recent_update_times.append(elapsed)

    def enable_performance_tracking(
        self, track_recent_updates: bool = True, max_history: int = 100
    ) -> None:
        """
        Enable timing of the recording path.

        Tracking adds overhead to every observation, so it should only be
        enabled when benchmarking.

        Args:
            track_recent_updates: Whether to keep individual recent timings.
            max_history: Maximum number of recent timings to keep.
        """
        self._track_recent_updates = True
        self._max_update_history = max(1, max_history)
        if track_recent_updates:
            self._recent_update_times = deque(maxlen=self._max_update_history)
        else:
            self._recent_update_times = None

    def disable_performance_tracking(self) -> None:
        """Disable performance tracking to reduce overhead."""
        self._track_recent_updates = False
        self._recent_update_times = None

    def get_performance_stats(self) -> Dict[str, Any]:
        """
        Get timing statistics for the recording path.

        Returns:
            A dictionary with the number of observations and, when tracking
            was enabled, the average, last, min and max observe time in
            nanoseconds.
        """
        stats: Dict[str, Any] = {"items_observed": self._items_observed}

        if self._update_count > 0:
            stats["avg_update_time_ns"] = (
                self._total_update_time / self._update_count
            ) * 1e9
            stats["last_update_time_ns"] = self._last_update_time * 1e9

        if self._recent_update_times:
            recent_times_ns = [t * 1e9 for t in self._recent_update_times]
            stats["recent_update_times_ns"] = recent_times_ns
            stats["min_update_time_ns"] = min(recent_times_ns)
            stats["max_update_time_ns"] = max(recent_times_ns)

        return stats

    def get_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the recorder.

        Derived classes extend this with their own state.
        """
        stats = {"type": self.__class__.__name__}
        stats.update(self.get_performance_stats())
        return stats

    @staticmethod
    def _now() -> float:
        return time.perf_counter()
