"""
qntp Consensus

Reference selection and the adaptive poll interval.
"""

from qntp.consensus.selection import find, eligible_samples, pick_median
from qntp.consensus.poll_control import PollController

__all__ = [
    "find",
    "eligible_samples",
    "pick_median",
    "PollController",
]
