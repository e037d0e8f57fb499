"""
qntp Inbound Request Filter

Decides whether a client request may be answered. Two rules:

1. Requesters inside a configured CIDR network are always dropped.
2. Each address gets at most one answer per rate_interval seconds. The
   table remembers rate_size addresses, least recently seen evicted first.
"""

from __future__ import annotations
import ipaddress
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import List, Optional, Union

from qntp.constants import DEFAULT_RATE_SIZE, DEFAULT_RATE_INTERVAL_SEC
from qntp.errors import ConfigError

logger = logging.getLogger(__name__)

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


def parse_networks(cidrs: List[str]) -> List[IPNetwork]:
    """Parse CIDR strings, raising ConfigError on the first bad one."""
    networks: List[IPNetwork] = []
    for cidr in cidrs:
        try:
            networks.append(ipaddress.ip_network(cidr.strip(), strict=False))
        except ValueError as e:
            raise ConfigError(f"invalid drop CIDR {cidr!r}: {e}", {"cidr": cidr}) from e
    return networks


@dataclass
class DropTable:
    """CIDR drop list plus per-client rate limit."""
    cidrs: List[str] = field(default_factory=list)
    rate_size: int = DEFAULT_RATE_SIZE
    rate_interval: float = DEFAULT_RATE_INTERVAL_SEC

    # Statistics
    dropped_cidr: int = 0
    dropped_rate: int = 0

    def __post_init__(self):
        self._networks = parse_networks(self.cidrs)
        self._last_seen: "OrderedDict[str, float]" = OrderedDict()
        if self.rate_size < 0:
            self.rate_size = 0

    def allow(self, address: str, now: Optional[float] = None) -> bool:
        """
        Check a requester address.

        Args:
            address: Client IP address as a string
            now: Monotonic timestamp (time.monotonic() if omitted)

        Returns:
            True if the request may be answered
        """
        try:
            ip = ipaddress.ip_address(address.split("%", 1)[0])
        except ValueError:
            logger.debug(f"dropping request from unparsable address {address!r}")
            return False

        if ip.version == 6 and ip.ipv4_mapped is not None:
            ip = ip.ipv4_mapped

        if any(ip in net for net in self._networks):
            self.dropped_cidr += 1
            return False

        if self.rate_size == 0:
            return True

        now = time.monotonic() if now is None else now
        key = str(ip)
        last = self._last_seen.get(key)
        if last is not None and now - last < self.rate_interval:
            self.dropped_rate += 1
            return False

        self._last_seen[key] = now
        self._last_seen.move_to_end(key)
        while len(self._last_seen) > self.rate_size:
            self._last_seen.popitem(last=False)
        return True

    @property
    def tracked(self) -> int:
        return len(self._last_seen)

    def to_dict(self) -> dict:
        return {
            "networks": [str(n) for n in self._networks],
            "rate_size": self.rate_size,
            "rate_interval": self.rate_interval,
            "tracked": self.tracked,
            "dropped_cidr": self.dropped_cidr,
            "dropped_rate": self.dropped_rate,
        }
