"""
Online (amortized) recording into a T-Digest.

Merging a single value into a digest costs a full pass over its centroids.
``OnlineTDigest`` collects observations in a small fixed-size buffer and
merges them in batches, so the cost of a merge is spread over many cheap
observations. Use it instead of a bare ``TDigest`` when values arrive one
at a time and the digest is only read occasionally (for example to emit
p50/p99 to a metrics backend every few seconds).
"""

import array
import logging
import math
import numbers
import threading
from contextlib import contextmanager, nullcontext
from decimal import Decimal
from typing import Any, ContextManager, Dict, Iterator, Optional

from tiny_digest.algorithms.tdigest import TDigest
from tiny_digest.core.base import StreamRecorder

logger = logging.getLogger(__name__)


class LockPoisonedError(RuntimeError):
    """The recorder state was left inconsistent by an earlier failure."""


class ConcurrentAccessError(RuntimeError):
    """An exclusive-access method ran while another caller held the lock."""


class _State:
    """Digest, amortization buffer and buffer length, guarded as one unit."""

    __slots__ = ["current", "buffer", "length"]

    def __init__(self, current: TDigest, capacity: int):
        self.current = current
        self.buffer = array.array("d", [0.0] * capacity)
        self.length = 0


class OnlineTDigest(StreamRecorder[TDigest]):
    """
    Thread-safe T-Digest recorder that amortizes merges.

    Observations are appended to a 32-slot buffer; when the buffer fills,
    or when a snapshot is requested, the buffered values are merged into
    the held digest. All state sits behind a single lock.

    The ``*_exclusive`` methods run the same logic without taking the lock.
    They are only safe when the caller is the sole user of the recorder,
    e.g. a recorder owned by one thread. They refuse to run while the lock
    is held, but cannot detect a concurrent exclusive caller.

    Non-finite observations (NaN, +/-Inf) are dropped and counted in
    ``dropped_observations``.

    Example:
        recorder = OnlineTDigest()
        for latency in latencies:
            recorder.observe(latency)

        digest = recorder.reset()
        p99 = digest.estimate_quantile(0.99)
    """

    AMORTIZATION_SIZE: int = 32

    def __init__(self, max_size: int = TDigest.DEFAULT_MAX_SIZE):
        """
        Initialize an empty recorder.

        Args:
            max_size: Target number of centroids of the held digest.

        Raises:
            ValueError: If max_size is negative or not an integer.
        """
        super().__init__()
        self._state = _State(TDigest(max_size=max_size), self.AMORTIZATION_SIZE)
        self._max_size = max_size
        self._lock = threading.Lock()
        self._poisoned = False
        self._dropped = 0

    #
    # Locked operations
    #
    def observe(self, value: Any) -> None:
        """
        Record one occurrence of a value, to be merged into the digest later.

        Args:
            value: A real number (int, float, Decimal, Fraction, numpy scalar).

        Raises:
            TypeError: If value is not a real number.
            LockPoisonedError: If an earlier operation failed mid-update.
        """
        observation = self._coerce(value)
        with self._critical_section(self._lock) as state:
            self._record_observation(state, observation)

    def get(self) -> TDigest:
        """Merge any outstanding observations and return the current digest."""
        with self._critical_section(self._lock) as state:
            return self._snapshot(state)

    def reset(self) -> TDigest:
        """Merge any outstanding observations, return the digest and start over."""
        with self._critical_section(self._lock) as state:
            return self._snapshot_and_reset(state)

    #
    # Exclusive-access operations
    #
    def observe_exclusive(self, value: Any) -> None:
        """Same as ``observe`` without taking the lock."""
        observation = self._coerce(value)
        with self._exclusive_section() as state:
            self._record_observation(state, observation)

    def get_exclusive(self) -> TDigest:
        """Same as ``get`` without taking the lock."""
        with self._exclusive_section() as state:
            return self._snapshot(state)

    def reset_exclusive(self) -> TDigest:
        """Same as ``reset`` without taking the lock."""
        with self._exclusive_section() as state:
            return self._snapshot_and_reset(state)

    #
    # Internals
    #
    @contextmanager
    def _critical_section(self, guard: ContextManager[Any]) -> Iterator[_State]:
        with guard:
            if self._poisoned:
                raise LockPoisonedError(
                    "OnlineTDigest state was left inconsistent by an earlier failure"
                )
            try:
                yield self._state
            except BaseException:
                self._poisoned = True
                logger.error(
                    "Exception inside OnlineTDigest critical section, "
                    "recorder is no longer usable"
                )
                raise

    def _exclusive_section(self) -> ContextManager[_State]:
        if self._lock.locked():
            raise ConcurrentAccessError(
                "Exclusive access requested while the lock is held"
            )
        return self._critical_section(nullcontext())

    @staticmethod
    def _coerce(value: Any) -> Optional[float]:
        """Convert an observation to float, None for non-finite values."""
        if not isinstance(value, (numbers.Real, Decimal)):
            raise TypeError(
                f"Observation must be a real number, got {type(value).__name__}"
            )
        observation = float(value)
        if not math.isfinite(observation):
            return None
        return observation

    def _record_observation(self, state: _State, observation: Optional[float]) -> None:
        if observation is None:
            self._dropped += 1
            logger.debug("Dropped non-finite observation")
            return

        start = self._now() if self._track_recent_updates else 0.0

        state.buffer[state.length] = observation
        state.length += 1
        self._items_observed += 1
        if state.length == len(state.buffer):
            self._flush(state)

        if self._track_recent_updates:
            self._record_update_time(self._now() - start)

    def _flush(self, state: _State) -> None:
        if state.length < 1:
            return

        pending = state.length
        state.current = state.current.merge_unsorted(state.buffer[:pending])
        state.length = 0
        logger.debug(
            "Merged %d buffered observations, digest holds %d centroids",
            pending,
            len(state.current),
        )

    def _snapshot(self, state: _State) -> TDigest:
        self._flush(state)
        return state.current.copy()

    def _snapshot_and_reset(self, state: _State) -> TDigest:
        snapshot = self._snapshot(state)
        state.current = TDigest(max_size=self._max_size)
        logger.debug("Reset OnlineTDigest after %.0f observations", snapshot.count)
        return snapshot

    #
    # Inspection
    #
    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def buffered(self) -> int:
        """Number of observations waiting to be merged."""
        with self._lock:
            return self._state.length

    @property
    def dropped_observations(self) -> int:
        """Number of non-finite observations that were ignored."""
        return self._dropped

    @property
    def is_poisoned(self) -> bool:
        return self._poisoned

    def get_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the recorder and its held digest.

        Buffered observations are not merged by this call.

        Returns:
            A dictionary with recording statistics, buffer state and the
            statistics of the held digest under "digest".
        """
        with self._critical_section(self._lock) as state:
            stats = super().get_stats()
            stats.update(
                {
                    "max_size": self._max_size,
                    "amortization_size": len(state.buffer),
                    "buffered": state.length,
                    "dropped_observations": self._dropped,
                    "digest": state.current.get_stats(),
                }
            )
        return stats
