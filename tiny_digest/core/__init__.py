"""
Core functionality for tiny-digest.
"""

from tiny_digest.core.base import QuantileSummary, StreamRecorder

__all__ = [
    # Base classes
    "QuantileSummary",
    "StreamRecorder",
]
