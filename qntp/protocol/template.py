"""
qntp Response Template

Immutable snapshot of what this host tells its own NTP clients. The
controller builds a new template after every successful cycle and swaps
the reference; the responder only ever reads whole templates.
"""

from __future__ import annotations
import hashlib
import ipaddress
import math
import time
from dataclasses import dataclass
from typing import Optional

import ntplib

from qntp.constants import (
    INVALID_STRATUM,
    LEAP_ALARM,
    MAX_SERVED_STRATUM,
    MODE_SERVER,
    NTP_VERSION,
    POLL_EXPONENT_BASE,
    SERVER_PRECISION,
)
from qntp.core.types import OffsetPeer

# Timestamp fields within the 48-byte header
ORIG_TIMESTAMP_SLICE = slice(24, 32)
TX_TIMESTAMP_SLICE = slice(40, 48)


def reference_id(address: str) -> int:
    """
    Reference identifier for an upstream address.

    IPv4: the address itself. IPv6: first four bytes of its MD5 digest.
    """
    ip = ipaddress.ip_address(address.split("%", 1)[0])
    if ip.version == 4:
        return int(ip)
    return int.from_bytes(hashlib.md5(ip.packed).digest()[:4], "big")


def poll_exponent(sleep: float) -> int:
    """log2 of the poll interval, as carried in the NTP poll field."""
    if sleep <= 0:
        return POLL_EXPONENT_BASE
    return max(0, min(17, int(round(math.log2(sleep)))))


@dataclass(frozen=True)
class ResponseTemplate:
    """Header fields served to clients, fixed for one cycle."""
    leap: int = LEAP_ALARM
    stratum: int = INVALID_STRATUM
    poll: int = POLL_EXPONENT_BASE
    precision: int = SERVER_PRECISION
    root_delay: float = 0.0
    root_dispersion: float = 0.0
    ref_id: int = 0
    ref_timestamp: float = 0.0

    @property
    def synchronized(self) -> bool:
        return self.leap != LEAP_ALARM and self.stratum < INVALID_STRATUM

    @classmethod
    def unsynchronized(cls) -> "ResponseTemplate":
        return cls()

    @classmethod
    def from_reference(
        cls,
        chosen: OffsetPeer,
        sleep: float,
        dispersion: float = 0.0,
        now: Optional[float] = None,
    ) -> "ResponseTemplate":
        """Build the template for a freshly chosen reference."""
        resp = chosen.resp
        now = time.time() if now is None else now
        return cls(
            leap=resp.leap,
            stratum=min(resp.stratum + 1, MAX_SERVED_STRATUM),
            poll=poll_exponent(sleep),
            precision=SERVER_PRECISION,
            root_delay=resp.root_delay + resp.delay,
            root_dispersion=resp.root_dispersion + dispersion,
            ref_id=reference_id(chosen.peer.address),
            ref_timestamp=ntplib.system_to_ntp_time(now),
        )

    def build_response(
        self,
        request: ntplib.NTPPacket,
        recv_time: float,
        tx_time: Optional[float] = None,
        request_data: Optional[bytes] = None,
    ) -> bytes:
        """
        Encode a server reply to a parsed client request.

        Args:
            request: Parsed client packet
            recv_time: System time the request arrived
            tx_time: System time of transmission (now if omitted)
            request_data: Raw request; when given, its transmit timestamp is
                echoed bit for bit instead of through a float

        Returns:
            48-byte NTP packet
        """
        tx_time = time.time() if tx_time is None else tx_time

        packet = ntplib.NTPPacket(
            version=request.version or NTP_VERSION,
            mode=MODE_SERVER,
            tx_timestamp=ntplib.system_to_ntp_time(tx_time),
        )
        packet.leap = self.leap
        packet.stratum = self.stratum
        packet.poll = self.poll
        packet.precision = self.precision
        packet.root_delay = self.root_delay
        packet.root_dispersion = self.root_dispersion
        packet.ref_id = self.ref_id
        packet.ref_timestamp = self.ref_timestamp
        packet.orig_timestamp = request.tx_timestamp
        packet.recv_timestamp = ntplib.system_to_ntp_time(recv_time)

        data = packet.to_data()
        if request_data is not None:
            reply = bytearray(data)
            reply[ORIG_TIMESTAMP_SLICE] = request_data[TX_TIMESTAMP_SLICE]
            data = bytes(reply)
        return data

    def to_dict(self) -> dict:
        return {
            "leap": self.leap,
            "stratum": self.stratum,
            "poll": self.poll,
            "precision": self.precision,
            "root_delay": self.root_delay,
            "root_dispersion": self.root_dispersion,
            "ref_id": f"{self.ref_id:08x}",
            "ref_timestamp": self.ref_timestamp,
            "synchronized": self.synchronized,
        }
