# tests/unit/test_online.py

import threading
import unittest
from decimal import Decimal
from fractions import Fraction
from unittest import mock

from tiny_digest.algorithms.online import (
    ConcurrentAccessError,
    LockPoisonedError,
    OnlineTDigest,
)
from tiny_digest.algorithms.tdigest import TDigest


class TestOnlineTDigest(unittest.TestCase):
    """Tests for the amortizing, lock-guarded recorder."""

    def test_initialization_defaults(self):
        recorder = OnlineTDigest()
        self.assertEqual(recorder.max_size, TDigest.DEFAULT_MAX_SIZE)
        self.assertEqual(OnlineTDigest.AMORTIZATION_SIZE, 32)
        self.assertEqual(recorder.buffered, 0)
        self.assertEqual(recorder.items_observed, 0)
        self.assertEqual(recorder.dropped_observations, 0)
        self.assertFalse(recorder.is_poisoned)
        self.assertEqual(recorder.get(), TDigest())

    def test_initialization_invalid_max_size(self):
        with self.assertRaises(ValueError):
            OnlineTDigest(max_size=-5)

    def test_p999(self):
        recorder = OnlineTDigest()
        for i in range(10_001):
            recorder.observe(float(i))

        digest = recorder.reset()
        self.assertEqual(digest.min, 0.0)
        self.assertEqual(digest.max, 10_000.0)
        self.assertEqual(digest.count, 10_001.0)
        error = 9_990.0 - digest.estimate_quantile(0.999)
        self.assertTrue(-1.0 < error < 1.0, f"p999 error {error} out of range")

    def test_reset_twice(self):
        recorder = OnlineTDigest()
        recorder.observe(1.23)
        first = recorder.reset()
        self.assertEqual(first.count, 1.0)

        second = recorder.reset()
        self.assertEqual(second.count, 0.0)
        self.assertTrue(second.is_empty)
        self.assertEqual(recorder.reset().count, 0.0)

    def test_directly_observable_types(self):
        recorder = OnlineTDigest()
        recorder.observe(1.23)
        recorder.observe(1)
        recorder.observe(True)
        recorder.observe(Decimal("2.5"))
        recorder.observe(Fraction(1, 4))
        for i in range(1, 100):
            recorder.observe(i)

        digest = recorder.get()
        self.assertEqual(digest.count, 104.0)
        self.assertEqual(digest.min, 0.25)
        self.assertEqual(digest.max, 99.0)

    def test_non_numeric_observation(self):
        recorder = OnlineTDigest()
        with self.assertRaises(TypeError):
            recorder.observe("1.5")
        with self.assertRaises(TypeError):
            recorder.observe(None)
        with self.assertRaises(TypeError):
            recorder.observe_exclusive([1.0])

        # Rejected input does not damage the recorder
        self.assertFalse(recorder.is_poisoned)
        recorder.observe(2.0)
        self.assertEqual(recorder.get().count, 1.0)

    def test_non_finite_observations_dropped(self):
        recorder = OnlineTDigest()
        recorder.observe(float("nan"))
        recorder.observe(float("inf"))
        recorder.observe_exclusive(float("-inf"))
        recorder.observe(3.0)

        self.assertEqual(recorder.dropped_observations, 3)
        self.assertEqual(recorder.items_observed, 1)
        digest = recorder.get()
        self.assertEqual(digest.count, 1.0)
        self.assertEqual((digest.min, digest.max), (3.0, 3.0))

    def test_buffer_flushes_when_full(self):
        recorder = OnlineTDigest()
        for i in range(31):
            recorder.observe(i)
        self.assertEqual(recorder.buffered, 31)

        recorder.observe(31)
        self.assertEqual(recorder.buffered, 0)

        recorder.observe(32)
        self.assertEqual(recorder.buffered, 1)

    def test_flush_merges_unsorted_buffer(self):
        recorder = OnlineTDigest()
        values = [float((i * 17) % 32) for i in range(32)]
        for value in values:
            recorder.observe(value)

        self.assertEqual(recorder.get(), TDigest().merge_unsorted(values))

    def test_get_does_not_reset(self):
        recorder = OnlineTDigest()
        for i in range(40):
            recorder.observe(i)

        first = recorder.get()
        self.assertEqual(recorder.buffered, 0)
        second = recorder.get()
        self.assertEqual(first.count, 40.0)
        self.assertEqual(first, second)

        recorder.observe(100)
        third = recorder.get()
        self.assertEqual(third.count, 41.0)
        # Earlier snapshots are unaffected by later observations
        self.assertEqual(first.count, 40.0)

    def test_get_returns_independent_copy(self):
        recorder = OnlineTDigest()
        for i in range(40):
            recorder.observe(i)

        snapshot = recorder.get()
        self.assertIsNot(snapshot, recorder.get())

        # Tampering with a snapshot leaves the held digest alone
        snapshot._centroids[0].absorb(1000.0, 5.0)
        snapshot._centroids.clear()
        held = recorder.get()
        self.assertEqual(held.count, 40.0)
        self.assertEqual(sum(w for _, w in held.get_centroids()), 40.0)
        self.assertEqual(held.min, 0.0)

    def test_reset_keeps_max_size(self):
        recorder = OnlineTDigest(max_size=50)
        for i in range(100):
            recorder.observe(i)

        snapshot = recorder.reset()
        self.assertEqual(snapshot.max_size, 50)
        self.assertLessEqual(len(snapshot), 50)

        after = recorder.get()
        self.assertEqual(after, TDigest(max_size=50))

    def test_concurrent_observe(self):
        recorder = OnlineTDigest()
        num_threads = 8
        per_thread = 1000
        start = threading.Barrier(num_threads)

        def worker(offset):
            start.wait()
            for i in range(per_thread):
                recorder.observe(offset * per_thread + i)

        threads = [
            threading.Thread(target=worker, args=(n,)) for n in range(num_threads)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        digest = recorder.get()
        self.assertEqual(digest.count, float(num_threads * per_thread))
        self.assertEqual(digest.min, 0.0)
        self.assertEqual(digest.max, float(num_threads * per_thread - 1))
        self.assertEqual(recorder.items_observed, num_threads * per_thread)
        weights = sum(weight for _, weight in digest.get_centroids())
        self.assertEqual(weights, digest.count)

    def test_concurrent_observe_and_reset(self):
        recorder = OnlineTDigest()
        snapshots = []
        done = threading.Event()

        def producer():
            for i in range(5000):
                recorder.observe(i)

        def consumer():
            while not done.is_set():
                snapshots.append(recorder.reset())

        producers = [threading.Thread(target=producer) for _ in range(4)]
        reporter = threading.Thread(target=consumer)
        reporter.start()
        for thread in producers:
            thread.start()
        for thread in producers:
            thread.join()
        done.set()
        reporter.join()
        snapshots.append(recorder.reset())

        # Every observation ends up in exactly one snapshot
        self.assertEqual(sum(s.count for s in snapshots), 20000.0)


class TestOnlineTDigestExclusive(unittest.TestCase):
    """Tests for the lock-free exclusive-access variants."""

    def test_exclusive_operations(self):
        recorder = OnlineTDigest()
        for i in range(100):
            recorder.observe_exclusive(i)

        self.assertEqual(recorder.get_exclusive().count, 100.0)
        snapshot = recorder.reset_exclusive()
        self.assertEqual(snapshot.count, 100.0)
        self.assertEqual(recorder.reset_exclusive().count, 0.0)

    def test_exclusive_matches_locked(self):
        locked = OnlineTDigest()
        exclusive = OnlineTDigest()
        for i in range(1000):
            locked.observe((i * 7919) % 1000)
            exclusive.observe_exclusive((i * 7919) % 1000)

        self.assertEqual(locked.get(), exclusive.get_exclusive())

    def test_mixed_access(self):
        recorder = OnlineTDigest()
        recorder.observe(1.0)
        recorder.observe_exclusive(2.0)
        self.assertEqual(recorder.get().count, 2.0)
        self.assertEqual(recorder.reset_exclusive().count, 2.0)
        self.assertEqual(recorder.get().count, 0.0)

    def test_exclusive_refused_while_locked(self):
        recorder = OnlineTDigest()
        recorder._lock.acquire()
        try:
            with self.assertRaises(ConcurrentAccessError):
                recorder.observe_exclusive(1.0)
            with self.assertRaises(ConcurrentAccessError):
                recorder.get_exclusive()
            with self.assertRaises(ConcurrentAccessError):
                recorder.reset_exclusive()
        finally:
            recorder._lock.release()

        self.assertFalse(recorder.is_poisoned)
        self.assertEqual(recorder.get().count, 0.0)


class TestOnlineTDigestPoisoning(unittest.TestCase):
    """Tests for the handling of failures inside the critical section."""

    def _poison(self, recorder):
        with mock.patch.object(
            TDigest, "merge_unsorted", side_effect=RuntimeError("boom")
        ):
            with self.assertRaises(RuntimeError):
                recorder.get()

    def test_failure_poisons_recorder(self):
        recorder = OnlineTDigest()
        recorder.observe(1.0)
        self._poison(recorder)

        self.assertTrue(recorder.is_poisoned)
        with self.assertRaises(LockPoisonedError):
            recorder.observe(2.0)
        with self.assertRaises(LockPoisonedError):
            recorder.get()
        with self.assertRaises(LockPoisonedError):
            recorder.reset()
        with self.assertRaises(LockPoisonedError):
            recorder.observe_exclusive(2.0)

    def test_lock_released_after_failure(self):
        recorder = OnlineTDigest()
        recorder.observe(1.0)
        self._poison(recorder)
        self.assertFalse(recorder._lock.locked())

    def test_failure_during_observe_flush(self):
        recorder = OnlineTDigest()
        for i in range(31):
            recorder.observe(i)

        with mock.patch.object(
            TDigest, "merge_unsorted", side_effect=RuntimeError("boom")
        ):
            with self.assertRaises(RuntimeError):
                recorder.observe(31)

        self.assertTrue(recorder.is_poisoned)
        with self.assertRaises(LockPoisonedError):
            recorder.get()

    def test_poisoning_is_logged(self):
        recorder = OnlineTDigest()
        recorder.observe(1.0)
        with self.assertLogs("tiny_digest.algorithms.online", level="ERROR"):
            self._poison(recorder)


class TestOnlineTDigestLogging(unittest.TestCase):
    """Tests for the debug records emitted by the recorder."""

    def test_flush_logged(self):
        recorder = OnlineTDigest()
        with self.assertLogs("tiny_digest.algorithms.online", level="DEBUG") as logs:
            for i in range(32):
                recorder.observe(i)
        self.assertTrue(
            any("Merged 32 buffered observations" in line for line in logs.output)
        )

    def test_reset_logged(self):
        recorder = OnlineTDigest()
        recorder.observe(1.0)
        with self.assertLogs("tiny_digest.algorithms.online", level="DEBUG") as logs:
            recorder.reset()
        self.assertTrue(any("Reset OnlineTDigest" in line for line in logs.output))

    def test_dropped_logged(self):
        recorder = OnlineTDigest()
        with self.assertLogs("tiny_digest.algorithms.online", level="DEBUG") as logs:
            recorder.observe(float("nan"))
        self.assertTrue(any("non-finite" in line for line in logs.output))


if __name__ == "__main__":
    unittest.main()
