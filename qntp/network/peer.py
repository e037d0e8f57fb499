"""
qntp Peer Management

One Peer per resolved address of a configured time source. A Peer is
written only by its own update() during a polling round and read by the
controller after the round has been joined.
"""

from __future__ import annotations
import asyncio
import errno
import logging
import socket
import statistics
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import ntplib

from qntp.constants import (
    NTP_PORT,
    NTP_VERSION,
    INVALID_STRATUM,
    LEAP_ALARM,
    MIN_POLL,
    DEFAULT_QUERY_TIMEOUT_SEC,
    DEFAULT_MAX_SAMPLES,
)
from qntp.core.types import Response
from qntp.errors import PeerUnhealthyError

logger = logging.getLogger(__name__)

# Errors that prove an address can never be reached from this host
UNREACHABLE_ERRNOS = frozenset({
    errno.ENETUNREACH,
    errno.EHOSTUNREACH,
    errno.EAFNOSUPPORT,
})


@dataclass(eq=False)
class Peer:
    """
    A configured time source at one resolved address.

    trust_level stays within [MIN_POLL, max_poll]; only the poll
    controller changes it.
    """
    origin: str
    address: str
    port: int = NTP_PORT

    enabled: bool = True
    healthy: bool = False
    trust_level: int = MIN_POLL
    responses: List[Response] = field(default_factory=list)

    timeout: float = DEFAULT_QUERY_TIMEOUT_SEC
    max_samples: int = DEFAULT_MAX_SAMPLES

    # Last failure seen by update(), for status reporting
    last_error: Optional[str] = None

    _client: ntplib.NTPClient = field(default_factory=ntplib.NTPClient, repr=False)

    @property
    def peer_id(self) -> str:
        return f"{self.origin}->{self.address}"

    async def update(self, max_std: float, setup: bool = False) -> None:
        """
        Run one polling round against this peer.

        Never raises for network failures: they surface only as
        healthy = False. During setup a route-level failure disables the
        peer for good.

        Args:
            max_std: Maximum standard deviation (seconds) of the samples
            setup: True during first sync
        """
        samples: List[Response] = []
        self.last_error = None

        for _ in range(self.max_samples):
            try:
                resp = await self.query()
            except OSError as e:
                self.last_error = str(e)
                if setup and e.errno in UNREACHABLE_ERRNOS:
                    self.enabled = False
                    logger.warning(f"peer {self.peer_id} unreachable, disabled: {e}")
                    break
                logger.debug(f"peer {self.peer_id} query failed: {e}")
                continue
            except (ntplib.NTPException, asyncio.TimeoutError) as e:
                self.last_error = str(e) or type(e).__name__
                logger.debug(f"peer {self.peer_id} query failed: {self.last_error}")
                continue

            reason = reject_reason(resp)
            if reason:
                self.last_error = reason
                logger.debug(f"peer {self.peer_id} sample rejected: {reason}")
                continue

            samples.append(resp)

        self.responses = samples
        try:
            check_samples(self.address, samples, max_std)
        except PeerUnhealthyError as e:
            self.healthy = False
            self.last_error = e.details["reason"]
            logger.debug(e.message)
        else:
            self.healthy = True

    async def query(self) -> Response:
        """Take one sample. Blocking socket I/O runs in the default executor."""
        loop = asyncio.get_running_loop()
        stats = await loop.run_in_executor(
            None,
            lambda: self._client.request(
                self.address,
                version=NTP_VERSION,
                port=self.port,
                timeout=self.timeout,
            )
        )
        return Response.from_stats(stats)

    def to_dict(self) -> dict:
        return {
            "origin": self.origin,
            "address": self.address,
            "enabled": self.enabled,
            "healthy": self.healthy,
            "trust_level": self.trust_level,
            "samples": len(self.responses),
            "offsets": [r.clock_offset for r in self.responses],
            "last_error": self.last_error,
        }


def reject_reason(resp: Response) -> Optional[str]:
    """Return why a sample is unusable, or None if it may be kept."""
    if resp.stratum == 0:
        return "kiss-of-death"
    if resp.stratum >= INVALID_STRATUM:
        return f"stratum {resp.stratum}"
    if resp.leap == LEAP_ALARM:
        return "server unsynchronized"
    return None


def check_samples(address: str, samples: List[Response], max_std: float) -> None:
    """
    Raise PeerUnhealthyError unless the samples are usable.

    Needs at least one sample; with two or more, their offsets must not
    spread by more than max_std (population standard deviation).
    """
    if not samples:
        raise PeerUnhealthyError(address, "no valid samples")

    if len(samples) > 1:
        std = statistics.pstdev(s.clock_offset for s in samples)
        if std > max_std:
            raise PeerUnhealthyError(
                address,
                f"sample deviation {std:.6f}s > {max_std:.6f}s"
            )


# =============================================================================
# Construction
# =============================================================================

def resolve(name: str, port: int = NTP_PORT) -> List[str]:
    """
    Resolve a host name to its addresses, in resolver order.

    Failures are logged and yield an empty list.
    """
    try:
        infos = socket.getaddrinfo(name, port, type=socket.SOCK_DGRAM)
    except (socket.gaierror, UnicodeError) as e:
        logger.error(f"resolve {name} failed: {e}")
        return []

    addresses: List[str] = []
    for info in infos:
        address = info[4][0]
        if address not in addresses:
            addresses.append(address)
    return addresses


def new_peer(origin: str, address: str, **kwargs) -> Tuple[Optional[Peer], Optional[str]]:
    """
    Construct a Peer for one resolved address.

    Returns:
        (peer, None) on success, (None, reason) on failure
    """
    try:
        socket.getaddrinfo(address, NTP_PORT, type=socket.SOCK_DGRAM,
                           flags=socket.AI_NUMERICHOST)
    except (socket.gaierror, UnicodeError) as e:
        return None, f"invalid address {address!r}: {e}"

    return Peer(origin=origin, address=address, **kwargs), None


def build_peer_list(
    names: List[str],
    resolver=resolve,
    factory=new_peer,
) -> List[Peer]:
    """
    Resolve every configured name and build one Peer per address.

    An address shared by several names yields one peer (first name wins).
    Addresses the factory rejects are logged and skipped.
    """
    pool: Dict[str, List[str]] = {}
    for name in names:
        addresses = resolver(name)
        if addresses:
            pool[name] = addresses

    peers: List[Peer] = []
    seen = set()
    for origin, addresses in pool.items():
        for address in addresses:
            if address in seen:
                continue
            peer, reason = factory(origin, address)
            if peer is None:
                logger.error(f"peer:{origin}->{address} init failed: {reason}")
                continue
            seen.add(address)
            peers.append(peer)

    return peers
