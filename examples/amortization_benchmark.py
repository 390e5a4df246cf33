"""
Benchmark of the per-observation cost of recording into a T-Digest.

Compares three ways of recording one value at a time:

1. merging each value into a TDigest directly
2. OnlineTDigest.observe (buffered, with locking)
3. OnlineTDigest.observe_exclusive (buffered, no locking)
"""

import time

from tiny_digest import OnlineTDigest, TDigest


def time_per_observation(record, iterations):
    start = time.perf_counter()
    for i in range(iterations):
        record(float(i))
    elapsed = time.perf_counter() - start
    return elapsed / iterations * 1e9


def benchmark_direct_merge(iterations):
    state = {"digest": TDigest()}

    def record(value):
        state["digest"] = state["digest"].merge_sorted([value])

    return time_per_observation(record, iterations)


def benchmark_online(iterations):
    recorder = OnlineTDigest()
    return time_per_observation(recorder.observe, iterations)


def benchmark_online_exclusive(iterations):
    recorder = OnlineTDigest()
    return time_per_observation(recorder.observe_exclusive, iterations)


def run_benchmarks(iterations=50_000):
    print("\n=== Recording Cost per Observation ===")
    print(f"{iterations} observations each\n")

    results = {
        "merge per observation": benchmark_direct_merge(iterations // 10),
        "online wrapper": benchmark_online(iterations),
        "online wrapper (exclusive)": benchmark_online_exclusive(iterations),
    }

    baseline = results["merge per observation"]
    for name, ns in results.items():
        print(f"  {name:<28} {ns:>10.0f} ns/obs  ({baseline / ns:5.1f}x)")

    recorder = OnlineTDigest()
    recorder.enable_performance_tracking(max_history=1000)
    for i in range(iterations):
        recorder.observe(float(i))
    stats = recorder.get_performance_stats()
    print(
        f"\n  tracked observe: avg={stats['avg_update_time_ns']:.0f}ns "
        f"min={stats['min_update_time_ns']:.0f}ns "
        f"max={stats['max_update_time_ns']:.0f}ns (last 1000)"
    )


if __name__ == "__main__":
    run_benchmarks()
