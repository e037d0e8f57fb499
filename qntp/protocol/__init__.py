"""
qntp Protocol

Response template served to NTP clients.
"""

from qntp.protocol.template import ResponseTemplate, reference_id, poll_exponent

__all__ = [
    "ResponseTemplate",
    "reference_id",
    "poll_exponent",
]
