"""
qntp Core Types

One NTP sample and the reference chosen from a polling round.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from qntp.network.peer import Peer


@dataclass(frozen=True)
class Response:
    """
    One sample obtained from a peer.

    Offsets follow the ntplib convention: a positive clock_offset means
    the local clock is behind the reference and must be advanced.
    All durations are in seconds.
    """
    clock_offset: float
    stratum: int
    leap: int = 0
    delay: float = 0.0
    root_delay: float = 0.0
    root_dispersion: float = 0.0
    ref_id: int = 0
    tx_time: float = 0.0

    @classmethod
    def from_stats(cls, stats) -> "Response":
        """Build a sample from an ntplib.NTPStats result."""
        return cls(
            clock_offset=stats.offset,
            stratum=stats.stratum,
            leap=stats.leap,
            delay=stats.delay,
            root_delay=stats.root_delay,
            root_dispersion=stats.root_dispersion,
            ref_id=stats.ref_id,
            tx_time=stats.tx_time,
        )


@dataclass(frozen=True)
class OffsetPeer:
    """The reference chosen for one cycle: the peer and the sample used."""
    peer: "Peer"
    resp: Response

    @property
    def offset(self) -> float:
        return self.resp.clock_offset

    def __repr__(self) -> str:
        return f"OffsetPeer({self.peer.address}, offset={self.resp.clock_offset:+.6f}s)"
