"""
qntp Core Types

Samples, chosen reference and the clock correction primitive.
"""

from qntp.core.types import Response, OffsetPeer
from qntp.core.clock import SystemClock

__all__ = [
    "Response",
    "OffsetPeer",
    "SystemClock",
]
