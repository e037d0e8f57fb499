"""
qntp API

Prometheus metrics sink and the HTTP status server.
"""

from qntp.api.stats import NTPStat
from qntp.api.server import StatusServer

__all__ = [
    "NTPStat",
    "StatusServer",
]
