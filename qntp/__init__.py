"""
qntp - Quorum NTP Daemon

Polls a set of NTP servers concurrently, picks the median offset of the
trustworthy answers, corrects the local clock and backs off the poll
interval while the peers keep agreeing.
"""

__version__ = "0.3.0"
__author__ = "qntp developers"

from qntp.constants import MIN_POLL, MAX_POLL, POLL_TABLE

__all__ = [
    "MIN_POLL",
    "MAX_POLL",
    "POLL_TABLE",
    "__version__",
]
