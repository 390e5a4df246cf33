"""
Algorithm implementations for tiny-digest.
"""

from tiny_digest.algorithms.online import OnlineTDigest
from tiny_digest.algorithms.tdigest import Centroid, TDigest

__all__ = [
    "Centroid",
    "TDigest",
    "OnlineTDigest",
]
