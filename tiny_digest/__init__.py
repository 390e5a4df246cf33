"""
tiny-digest - Lightweight Streaming Quantile Estimation

tiny-digest is a Python library for approximating the distribution of numeric
data streams with a compact, mergeable t-digest, and for recording single
observations into it from many threads with amortized merge cost.
"""

import logging

__version__ = "0.1.0"

# Import main classes to make them available at the top level
from tiny_digest.algorithms.online import (
    ConcurrentAccessError,
    LockPoisonedError,
    OnlineTDigest,
)
from tiny_digest.algorithms.tdigest import Centroid, TDigest
from tiny_digest.core.base import QuantileSummary, StreamRecorder

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Core base classes
    "QuantileSummary",
    "StreamRecorder",
    # Algorithm implementations
    "Centroid",
    "TDigest",
    "OnlineTDigest",
    # Errors
    "LockPoisonedError",
    "ConcurrentAccessError",
]
