"""
Example of recording request latencies from several threads.

Worker threads record simulated request latencies into a shared
OnlineTDigest while a reporter thread periodically resets it and prints
the p50/p95/p99 of each reporting interval, the way a metrics exporter
would.
"""

import logging
import random
import threading
import time

from tiny_digest import OnlineTDigest


def simulate_requests(recorder, stop, seed):
    """Record log-normally distributed latencies until told to stop."""
    rng = random.Random(seed)
    while not stop.is_set():
        latency_ms = rng.lognormvariate(3.0, 0.6)
        # One request in a hundred hits a slow path
        if rng.random() < 0.01:
            latency_ms *= 10
        recorder.observe(latency_ms)


def report(recorder, stop, interval):
    """Print distribution statistics for each reporting interval."""
    while not stop.wait(interval):
        digest = recorder.reset()
        if digest.is_empty:
            print("  no requests in this interval")
            continue

        print(
            f"  requests={digest.count:>8.0f}  "
            f"p50={digest.estimate_quantile(0.50):7.2f}ms  "
            f"p95={digest.estimate_quantile(0.95):7.2f}ms  "
            f"p99={digest.estimate_quantile(0.99):7.2f}ms  "
            f"max={digest.max:8.2f}ms  "
            f"centroids={len(digest)}"
        )


def demonstrate_latency_monitoring(num_workers=4, duration=3.0, interval=0.5):
    print("\n=== Multi-threaded Latency Monitoring Demo ===")
    print(f"{num_workers} workers, reporting every {interval}s for {duration}s")

    recorder = OnlineTDigest(max_size=100)
    stop = threading.Event()

    workers = [
        threading.Thread(target=simulate_requests, args=(recorder, stop, seed))
        for seed in range(num_workers)
    ]
    reporter = threading.Thread(target=report, args=(recorder, stop, interval))

    for worker in workers:
        worker.start()
    reporter.start()

    time.sleep(duration)
    stop.set()

    for worker in workers:
        worker.join()
    reporter.join()

    leftover = recorder.reset()
    print(f"\nObservations recorded after the last report: {leftover.count:.0f}")
    print(f"Total observations accepted: {recorder.items_observed}")


def demonstrate_single_owner():
    """A recorder used by one thread can skip locking."""
    print("\n=== Single-owner Recording Demo ===")

    recorder = OnlineTDigest()
    rng = random.Random(7)
    for _ in range(100_000):
        recorder.observe_exclusive(rng.expovariate(1 / 20.0))

    digest = recorder.get_exclusive()
    for q in (0.5, 0.9, 0.99, 0.999):
        print(f"  q={q:<6} -> {digest.estimate_quantile(q):8.3f}")
    print(f"  exact mean: {digest.mean:.3f}  (expected ~20)")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    demonstrate_latency_monitoring()
    demonstrate_single_owner()
