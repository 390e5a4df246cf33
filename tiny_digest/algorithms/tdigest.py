# tiny_digest/algorithms/tdigest.py

import math
import sys
from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Optional,
    Sequence,
    Tuple,
    Type,
    TypeVar,
    Union,
)

from tiny_digest.core.base import QuantileSummary

# Type variable for the class itself (for from_state)
TDigestType = TypeVar("TDigestType", bound="TDigest")

CentroidLike = Union["Centroid", Tuple[float, float]]


class Centroid:
    """A weighted point summarizing a cluster of observations."""

    __slots__ = ["mean", "weight"]

    def __init__(self, mean: float, weight: float = 1.0):
        """Initialize a centroid with a mean value and weight."""
        if weight < 0:
            raise ValueError("Centroid weight cannot be negative")
        self.mean = float(mean)
        self.weight = float(weight)

    def __lt__(self, other: "Centroid") -> bool:
        """Allow centroids to be sorted by mean value."""
        return self.mean < other.mean

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Centroid):
            return NotImplemented
        return self.mean == other.mean and self.weight == other.weight

    def __repr__(self) -> str:
        """Provide a readable representation of the centroid."""
        return f"Centroid(mean={self.mean:.4g}, weight={self.weight:.4g})"

    def copy(self) -> "Centroid":
        return Centroid(self.mean, self.weight)

    def absorb(self, extra_weighted_sum: float, extra_weight: float) -> float:
        """
        Fold additional weighted mass into this centroid.

        Args:
            extra_weighted_sum: Sum of mean * weight over the absorbed items.
            extra_weight: Total weight of the absorbed items.

        Returns:
            The weighted sum of the centroid after absorbing, so callers can
            keep a running total across a chain of absorbs.
        """
        total_sum = extra_weighted_sum + self.weight * self.mean
        self.weight += extra_weight
        self.mean = total_sum / self.weight
        return total_sum


class TDigest(QuantileSummary):
    """
    T-Digest for quantile estimation over data streams.

    The digest keeps an ordered list of centroids plus exact aggregates
    (count, sum, min, max). New values are folded in with ``merge_sorted``
    or ``merge_unsorted``, which return a new digest and leave the original
    untouched:

        digest = TDigest(max_size=100)
        digest = digest.merge_unsorted(latencies)
        p99 = digest.estimate_quantile(0.99)

    Key properties:

    1. Memory usage is bounded by ``max_size`` centroids, not by data size
    2. Accuracy is non-uniform: the scale function keeps centroids near the
       tails small, so extreme quantiles are resolved more precisely
    3. Values are immutable: every merge produces a new digest
    """

    DEFAULT_MAX_SIZE: int = 100

    def __init__(self, max_size: int = DEFAULT_MAX_SIZE):
        """
        Initialize an empty digest.

        Args:
            max_size: Target number of centroids. Higher values improve
                accuracy at the cost of memory. Zero collapses every merge
                into a single centroid. Default: 100.

        Raises:
            ValueError: If max_size is negative or not an integer.
        """
        if (
            isinstance(max_size, bool)
            or not isinstance(max_size, int)
            or max_size < 0
        ):
            raise ValueError("max_size must be a non-negative integer")

        self._max_size: int = max_size
        self._centroids: List[Centroid] = []
        self._sum: float = 0.0
        self._count: float = 0.0
        self._min: Optional[float] = None
        self._max: Optional[float] = None

    @classmethod
    def from_state(
        cls: Type[TDigestType],
        centroids: Sequence[CentroidLike],
        total: float,
        count: float,
        max_value: Optional[float],
        min_value: Optional[float],
        max_size: int = DEFAULT_MAX_SIZE,
    ) -> TDigestType:
        """
        Build a digest from explicit state.

        Args:
            centroids: Centroids or (mean, weight) pairs. They are copied and
                sorted by mean.
            total: Sum of all observations.
            count: Number of observations.
            max_value: Largest observation, None for an empty digest.
            min_value: Smallest observation, None for an empty digest.
            max_size: Target number of centroids.

        Returns:
            A new TDigest holding the given state.

        Raises:
            ValueError: If more centroids than max_size are supplied, or if
                centroids are supplied without min/max.
        """
        instance = cls(max_size=max_size)

        if len(centroids) > max_size:
            raise ValueError(
                f"Cannot build a digest with {len(centroids)} centroids "
                f"when max_size is {max_size}"
            )

        restored: List[Centroid] = []
        for entry in centroids:
            if isinstance(entry, Centroid):
                restored.append(entry.copy())
            else:
                mean, weight = entry
                restored.append(Centroid(mean=mean, weight=weight))

        if restored and (min_value is None or max_value is None):
            raise ValueError("min_value and max_value are required with centroids")

        restored.sort()
        instance._centroids = restored
        instance._sum = float(total)
        instance._count = float(count)
        instance._min = None if min_value is None else float(min_value)
        instance._max = None if max_value is None else float(max_value)
        return instance

    #
    # Accessors
    #
    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def sum(self) -> float:
        return self._sum

    @property
    def count(self) -> float:
        return self._count

    @property
    def min(self) -> Optional[float]:
        """Smallest value merged so far, or None if nothing was merged."""
        return self._min

    @property
    def max(self) -> Optional[float]:
        """Largest value merged so far, or None if nothing was merged."""
        return self._max

    @property
    def mean(self) -> float:
        """Exact mean of the merged values, 0.0 for an empty digest."""
        if self._count > 0:
            return self._sum / self._count
        return 0.0

    @property
    def is_empty(self) -> bool:
        return not self._centroids

    @property
    def centroids(self) -> Tuple[Centroid, ...]:
        """Copies of the centroids, ascending by mean."""
        return tuple(c.copy() for c in self._centroids)

    def get_centroids(self) -> List[Tuple[float, float]]:
        """Return the centroids as (mean, weight) tuples, sorted by mean."""
        return [(c.mean, c.weight) for c in self._centroids]

    def __len__(self) -> int:
        """Return the number of centroids."""
        return len(self._centroids)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TDigest):
            return NotImplemented
        return (
            self._max_size == other._max_size
            and self._sum == other._sum
            and self._count == other._count
            and self._min == other._min
            and self._max == other._max
            and self._centroids == other._centroids
        )

    def __repr__(self) -> str:
        return (
            f"TDigest(max_size={self._max_size}, count={self._count:.6g}, "
            f"centroids={len(self._centroids)})"
        )

    def copy(self: TDigestType) -> TDigestType:
        """Return an independent digest with the same state."""
        duplicate = self.__class__(max_size=self._max_size)
        duplicate._centroids = [c.copy() for c in self._centroids]
        duplicate._sum = self._sum
        duplicate._count = self._count
        duplicate._min = self._min
        duplicate._max = self._max
        return duplicate

    #
    # Merge
    #
    @staticmethod
    def _k_to_q(k: float, d: float) -> float:
        """
        Scale function: cumulative weight fraction allowed up to slot k of d.

        Quadratic near both tails so that edge centroids stay small.
        """
        if d == 0:
            return 1.0

        k_div_d = k / d
        if k_div_d >= 0.5:
            base = 1.0 - k_div_d
            return 1.0 - 2.0 * base * base
        return 2.0 * k_div_d * k_div_d

    @staticmethod
    def _to_batch(values: Iterable[float]) -> List[float]:
        batch = [float(v) for v in values]
        for value in batch:
            if not math.isfinite(value):
                raise ValueError(f"Cannot merge non-finite value {value!r}")
        return batch

    def merge_unsorted(self: TDigestType, unsorted_values: Iterable[float]) -> TDigestType:
        """
        Merge a batch of values in any order.

        Args:
            unsorted_values: Finite numeric values.

        Returns:
            A new digest; this one is left unchanged.

        Raises:
            ValueError: If the batch contains NaN or infinite values.
        """
        batch = self._to_batch(unsorted_values)
        batch.sort()
        return self._merge_batch(batch)

    def merge_sorted(self: TDigestType, sorted_values: Iterable[float]) -> TDigestType:
        """
        Merge a batch of values already sorted in ascending order.

        The ordering is not verified; an unsorted batch yields a digest with
        distorted centroids.

        Args:
            sorted_values: Finite numeric values in ascending order.

        Returns:
            A new digest, or this digest itself if the batch is empty.

        Raises:
            ValueError: If the batch contains NaN or infinite values.
        """
        return self._merge_batch(self._to_batch(sorted_values))

    def _merge_batch(self: TDigestType, values: List[float]) -> TDigestType:
        if not values:
            return self

        result = self.__class__(max_size=self._max_size)
        result._count = self._count + len(values)

        maybe_min = values[0]
        maybe_max = values[-1]
        if self._count > 0 and self._min is not None and self._max is not None:
            result._min = min(self._min, maybe_min)
            result._max = max(self._max, maybe_max)
        else:
            result._min = maybe_min
            result._max = maybe_max

        d = float(self._max_size)
        total_count = result._count
        compressed: List[Centroid] = []

        k_limit = 1.0
        q_limit_times_count = self._k_to_q(k_limit, d) * total_count
        k_limit += 1.0

        centroids = self._centroids
        num_centroids = len(centroids)
        num_values = len(values)
        i = 0
        j = 0

        # Centroids of this digest are copied, never absorbed into in place
        if num_centroids and centroids[0].mean < values[0]:
            curr = centroids[0].copy()
            i = 1
        else:
            curr = Centroid(values[0])
            j = 1

        weight_so_far = curr.weight
        sums_to_merge = 0.0
        weights_to_merge = 0.0
        running_sum = 0.0

        while i < num_centroids or j < num_values:
            if i < num_centroids and (j >= num_values or centroids[i].mean < values[j]):
                next_mean = centroids[i].mean
                next_weight = centroids[i].weight
                i += 1
            else:
                next_mean = values[j]
                next_weight = 1.0
                j += 1

            weight_so_far += next_weight

            if weight_so_far <= q_limit_times_count:
                sums_to_merge += next_mean * next_weight
                weights_to_merge += next_weight
            else:
                running_sum += curr.absorb(sums_to_merge, weights_to_merge)
                sums_to_merge = 0.0
                weights_to_merge = 0.0

                compressed.append(curr)
                q_limit_times_count = self._k_to_q(k_limit, d) * total_count
                k_limit += 1.0
                curr = Centroid(next_mean, next_weight)

        running_sum += curr.absorb(sums_to_merge, weights_to_merge)
        compressed.append(curr)
        compressed.sort()

        result._centroids = compressed
        result._sum = running_sum
        return result

    #
    # Queries
    #
    def estimate_quantile(self, q: float) -> float:
        """
        Estimate the value located at quantile ``q``.

        Estimates grow with q inside a centroid window. Where two windows meet
        an estimate can drop slightly, but never below the mean of the
        centroid on the left of the boundary.

        Args:
            q: Target quantile. q <= 0 returns the minimum, q >= 1 returns
               the maximum.

        Returns:
            Interpolated estimate, 0.0 if the digest is empty.

        Raises:
            ValueError: If q is NaN.
        """
        if math.isnan(q):
            raise ValueError("Quantile must not be NaN")

        centroids = self._centroids
        if not centroids:
            return 0.0

        lower = self._min if self._min is not None else centroids[0].mean
        upper = self._max if self._max is not None else centroids[-1].mean

        count = self._count
        rank = q * count

        if q > 0.5:
            if q >= 1.0:
                return upper

            # Scan from the top so ties go to the upper centroid
            pos = 0
            t = count
            for k in range(len(centroids) - 1, -1, -1):
                t -= centroids[k].weight
                if rank >= t:
                    pos = k
                    break
        else:
            if q <= 0.0:
                return lower

            pos = len(centroids) - 1
            t = 0.0
            for k, centroid in enumerate(centroids):
                if rank < t + centroid.weight:
                    pos = k
                    break
                t += centroid.weight

        delta = 0.0
        if len(centroids) > 1:
            if pos == 0:
                delta = centroids[pos + 1].mean - centroids[pos].mean
                upper = centroids[pos + 1].mean
            elif pos == len(centroids) - 1:
                delta = centroids[pos].mean - centroids[pos - 1].mean
                lower = centroids[pos - 1].mean
            else:
                delta = (centroids[pos + 1].mean - centroids[pos - 1].mean) / 2.0
                lower = centroids[pos - 1].mean
                upper = centroids[pos + 1].mean

        value = centroids[pos].mean + (
            (rank - t) / centroids[pos].weight - 0.5
        ) * delta
        return max(lower, min(upper, value))

    #
    # Benchmarking and inspection hooks
    #
    def estimate_size(self) -> int:
        """
        Estimate the memory footprint of the digest in bytes.

        Returns:
            Estimated size in bytes.
        """
        size = super().estimate_size()
        size += sys.getsizeof(self._centroids)
        size += sum(
            sys.getsizeof(c) + sys.getsizeof(c.mean) + sys.getsizeof(c.weight)
            for c in self._centroids
        )
        return size

    def error_bounds(self) -> Dict[str, Any]:
        """
        Describe the error characteristics of this digest.

        The error at quantile q is roughly proportional to q(1-q)/max_size,
        so it shrinks towards the tails.

        Returns:
            A dictionary with error estimates at standard quantiles.
        """
        if not self._centroids:
            return {"state": "empty"}

        d = max(1, self._max_size)
        bounds: Dict[str, Any] = {
            "accuracy_model": "non-uniform (higher at tails)",
            "theoretical_max_centroids": self._max_size,
            "actual_centroids": len(self._centroids),
            "compression_efficiency": len(self._centroids) / d,
            "error_bounds": {
                f"q{q:.3f}": q * (1 - q) / d for q in self.REPORTED_QUANTILES
            },
        }

        if len(self._centroids) > 1:
            value_range = self._centroids[-1].mean - self._centroids[0].mean
            bounds["avg_centroid_spacing"] = value_range / (len(self._centroids) - 1)

        return bounds

    def get_stats(self) -> Dict[str, Any]:
        """
        Get detailed statistics about the digest structure.

        Returns:
            A dictionary with aggregates, centroid weight statistics and
            centroid spacing statistics.
        """
        stats = super().get_stats()
        stats.update(
            {
                "max_size": self._max_size,
                "num_centroids": len(self._centroids),
                "compression_ratio": len(self._centroids) / max(1, self._max_size),
                "sum": self._sum,
                "mean": self.mean,
            }
        )

        if self._min is not None:
            stats["min_value"] = self._min
        if self._max is not None:
            stats["max_value"] = self._max

        if self._centroids:
            weights = [c.weight for c in self._centroids]
            stats.update(
                {
                    "min_weight": min(weights),
                    "max_weight": max(weights),
                    "avg_weight": sum(weights) / len(weights),
                    "total_centroid_weight": sum(weights),
                }
            )

        if len(self._centroids) > 1:
            means = [c.mean for c in self._centroids]
            spacings = [b - a for a, b in zip(means, means[1:])]
            stats.update(
                {
                    "centroid_span": means[-1] - means[0],
                    "min_spacing": min(spacings),
                    "max_spacing": max(spacings),
                    "median_spacing": sorted(spacings)[len(spacings) // 2],
                }
            )

            # Centroid counts in the outer 10% of the value range on each side
            span = means[-1] - means[0]
            lower_tail = sum(1 for m in means if m < means[0] + 0.1 * span)
            upper_tail = sum(1 for m in means if m > means[-1] - 0.1 * span)
            middle = len(means) - lower_tail - upper_tail
            stats.update(
                {
                    "centroids_lower_10pct": lower_tail,
                    "centroids_middle_80pct": middle,
                    "centroids_upper_10pct": upper_tail,
                }
            )

        return stats

    def analyze_quantile_accuracy(
        self, reference_data: Optional[List[float]] = None
    ) -> Dict[str, Any]:
        """
        Compare quantile estimates against exact quantiles of reference data.

        Args:
            reference_data: Values to compare against. If None, theoretical
                error bounds are reported instead.

        Returns:
            A dictionary containing the accuracy analysis.
        """
        analysis: Dict[str, Any] = {
            "algorithm": "T-Digest",
            "max_size": self._max_size,
            "num_centroids": len(self._centroids),
            "count": self._count,
        }

        quantiles = self.REPORTED_QUANTILES

        if reference_data is None:
            d = max(1, self._max_size)
            analysis["theoretical_relative_errors"] = {
                f"q{q:.3f}": q * (1 - q) / d for q in quantiles
            }
            analysis["expected_median_error"] = 0.25 / d
            return analysis

        sorted_data = sorted(reference_data)
        data_len = len(sorted_data)
        if data_len == 0:
            return {"error": "Reference data is empty"}

        exact_quantiles = {}
        estimates = {}
        abs_errors = {}
        rel_errors = {}
        for q in quantiles:
            key = f"q{q:.3f}"
            exact = sorted_data[min(int(q * data_len), data_len - 1)]
            estimate = self.estimate_quantile(q)
            exact_quantiles[key] = exact
            estimates[key] = estimate
            abs_errors[key] = abs(estimate - exact)
            # Absolute error stands in when the exact value is ~0
            if abs(exact) > 1e-10:
                rel_errors[key] = abs_errors[key] / abs(exact)
            else:
                rel_errors[key] = abs_errors[key]

        analysis.update(
            {
                "reference_data_size": data_len,
                "exact_quantiles": exact_quantiles,
                "tdigest_estimates": estimates,
                "absolute_errors": abs_errors,
                "relative_errors": rel_errors,
                "max_relative_error": max(rel_errors.values()),
                "avg_relative_error": sum(rel_errors.values()) / len(rel_errors),
            }
        )
        return analysis
