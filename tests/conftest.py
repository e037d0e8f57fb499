"""
qntp Test Fixtures
"""

import pytest
from typing import Dict, List, Optional
from unittest.mock import Mock

import ntplib

from qntp.core.clock import SystemClock
from qntp.core.types import Response
from qntp.network.peer import Peer
from qntp.node.config import Config


def sample(offset: float, stratum: int = 2, leap: int = 0, delay: float = 0.004) -> Response:
    """Build one sample with sensible defaults."""
    return Response(
        clock_offset=offset,
        stratum=stratum,
        leap=leap,
        delay=delay,
        root_delay=0.010,
        root_dispersion=0.002,
        ref_id=0x7F7F0101,
        tx_time=1700000000.0,
    )


class ScriptedPeer(Peer):
    """
    Peer whose queries are answered from a script instead of the network.

    Each query pops the next script item; when the script is empty the
    default is used. None means "no answer", an exception is raised as is.
    """

    def __init__(self, *args, script=None, default=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.script = list(script or [])
        self.default = default
        self.queries = 0

    async def query(self) -> Response:
        self.queries += 1
        item = self.script.pop(0) if self.script else self.default
        if item is None:
            raise ntplib.NTPException(f"No response received from {self.address}.")
        if isinstance(item, BaseException):
            raise item
        return item


def set_offsets(peers: List[Peer], offsets: List[Optional[float]], stratum: int = 2) -> None:
    """Give each scripted peer a steady answer; None makes it unreachable."""
    for peer, offset in zip(peers, offsets):
        peer.default = None if offset is None else sample(offset, stratum=stratum)


# Five configured names, one address each
PEER_ADDRESSES: Dict[str, List[str]] = {
    f"ntp{i}.example.net": [f"192.0.2.{i + 1}"] for i in range(5)
}


def fake_resolver(name: str) -> List[str]:
    return list(PEER_ADDRESSES.get(name, []))


def scripted_factory(origin: str, address: str, **kwargs):
    return ScriptedPeer(origin=origin, address=address, **kwargs), None


@pytest.fixture
def config() -> Config:
    """Configuration for five scripted peers, one sample per poll."""
    return Config(
        peers=list(PEER_ADDRESSES),
        min_poll=1,
        max_poll=7,
        max_samples=1,
        good_filter=3,
    )


@pytest.fixture
def fake_clock() -> Mock:
    """Clock stand-in that records corrections."""
    return Mock(spec=SystemClock)


@pytest.fixture
def make_peers():
    """Factory for scripted peers with the given offsets."""
    def factory(offsets: List[Optional[float]], stratum: int = 2) -> List[ScriptedPeer]:
        peers = [
            ScriptedPeer(origin=f"ntp{i}.example.net", address=f"192.0.2.{i + 1}", max_samples=1)
            for i in range(len(offsets))
        ]
        set_offsets(peers, offsets, stratum=stratum)
        return peers
    return factory
