"""
Unit tests for the shared base classes.
"""

import unittest

from tiny_digest.core.base import QuantileSummary, StreamRecorder
from tiny_digest.algorithms.online import OnlineTDigest
from tiny_digest.algorithms.tdigest import TDigest


class _ListRecorder(StreamRecorder[list]):
    """Minimal recorder keeping every observation."""

    def __init__(self):
        super().__init__()
        self._values = []

    def observe(self, value):
        self._values.append(value)
        self._items_observed += 1

    def get(self):
        return list(self._values)

    def reset(self):
        values, self._values = self._values, []
        return values


class TestQuantileSummary(unittest.TestCase):
    """Tests for the QuantileSummary helpers."""

    def test_cannot_instantiate(self):
        with self.assertRaises(TypeError):
            QuantileSummary()

    def test_tdigest_is_quantile_summary(self):
        self.assertIsInstance(TDigest(), QuantileSummary)

    def test_percentile(self):
        td = TDigest().merge_sorted(range(1, 101))
        self.assertEqual(td.percentile(50), td.estimate_quantile(0.5))
        self.assertEqual(td.percentile(0), 1.0)
        self.assertEqual(td.percentile(100), 100.0)

    def test_percentile_out_of_range(self):
        td = TDigest().merge_sorted([1.0])
        with self.assertRaises(ValueError):
            td.percentile(-1)
        with self.assertRaises(ValueError):
            td.percentile(100.5)

    def test_quantiles(self):
        td = TDigest().merge_sorted(range(1000))
        result = td.quantiles([0.5, 0.99])
        self.assertEqual(set(result), {0.5, 0.99})
        self.assertEqual(result[0.99], td.estimate_quantile(0.99))


class TestStreamRecorder(unittest.TestCase):
    """Tests for the StreamRecorder base."""

    def test_cannot_instantiate(self):
        with self.assertRaises(TypeError):
            StreamRecorder()

    def test_online_tdigest_is_recorder(self):
        self.assertIsInstance(OnlineTDigest(), StreamRecorder)

    def test_minimal_recorder(self):
        recorder = _ListRecorder()
        recorder.observe(1)
        recorder.observe(2)
        self.assertEqual(recorder.items_observed, 2)
        self.assertEqual(recorder.reset(), [1, 2])
        self.assertEqual(recorder.get(), [])

        stats = recorder.get_stats()
        self.assertEqual(stats["type"], "_ListRecorder")
        self.assertEqual(stats["items_observed"], 2)

    def test_max_history_lower_bound(self):
        recorder = _ListRecorder()
        recorder.enable_performance_tracking(max_history=0)
        recorder._record_update_time(1e-6)
        recorder._record_update_time(2e-6)

        stats = recorder.get_performance_stats()
        self.assertEqual(len(stats["recent_update_times_ns"]), 1)
        self.assertAlmostEqual(stats["last_update_time_ns"], 2000.0)
        self.assertAlmostEqual(stats["avg_update_time_ns"], 1500.0)


if __name__ == "__main__":
    unittest.main()
