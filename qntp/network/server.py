"""
qntp NTP Responder

Answers NTP client requests from the current response template. Runs on
the same event loop as the synchronization loop but never waits on it:
each reply reads the template reference once and uses that snapshot.
"""

from __future__ import annotations
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Tuple

import ntplib

from qntp.constants import NTP_PACKET_SIZE, MODE_CLIENT, NTP_PORT
from qntp.errors import ConfigError
from qntp.network.droptable import DropTable
from qntp.protocol.template import ResponseTemplate

logger = logging.getLogger(__name__)


def parse_listen(listen: str, default_port: int = NTP_PORT) -> Tuple[str, int]:
    """Split 'host:port' (or '[v6]:port') into its parts."""
    host, sep, port = listen.rpartition(":")
    if not sep:
        return listen, default_port
    host = host.strip("[]") or "0.0.0.0"
    try:
        return host, int(port)
    except ValueError as e:
        raise ConfigError(f"invalid listen address {listen!r}") from e


@dataclass
class ServerStats:
    """Counters for the responder."""
    received: int = 0
    answered: int = 0
    dropped: int = 0
    malformed: int = 0


class _NTPProtocol(asyncio.DatagramProtocol):
    def __init__(self, server: "NTPServer"):
        self.server = server
        self.transport: Optional[asyncio.DatagramTransport] = None

    def connection_made(self, transport):
        self.transport = transport

    def datagram_received(self, data: bytes, addr):
        recv_time = time.time()
        reply = self.server.handle(data, addr[0], recv_time)
        if reply is not None and self.transport is not None:
            self.transport.sendto(reply, addr)

    def error_received(self, exc):
        logger.debug(f"responder socket error: {exc}")


@dataclass
class NTPServer:
    """
    UDP NTP responder.

    template_source is called once per request and must return the
    current immutable ResponseTemplate.
    """
    template_source: Callable[[], ResponseTemplate]
    drop_table: DropTable = field(default_factory=DropTable)
    host: str = "0.0.0.0"
    port: int = NTP_PORT

    stats: ServerStats = field(default_factory=ServerStats)
    _transport: Any = None

    def handle(self, data: bytes, address: str, recv_time: float) -> Optional[bytes]:
        """
        Build the reply to one datagram, or None to stay silent.
        """
        self.stats.received += 1

        if not self.drop_table.allow(address):
            self.stats.dropped += 1
            return None

        if len(data) < NTP_PACKET_SIZE:
            self.stats.malformed += 1
            return None

        request = ntplib.NTPPacket()
        try:
            request.from_data(data[:NTP_PACKET_SIZE])
        except ntplib.NTPException:
            self.stats.malformed += 1
            return None

        if request.mode != MODE_CLIENT:
            self.stats.malformed += 1
            return None

        template = self.template_source()
        self.stats.answered += 1
        return template.build_response(request, recv_time, request_data=data[:NTP_PACKET_SIZE])

    async def start(self) -> None:
        """Bind the UDP socket."""
        loop = asyncio.get_running_loop()
        self._transport, _ = await loop.create_datagram_endpoint(
            lambda: _NTPProtocol(self),
            local_addr=(self.host, self.port),
        )
        logger.info(f"NTP responder listening on {self.host}:{self.port}")

    async def stop(self) -> None:
        if self._transport is not None:
            self._transport.close()
            self._transport = None
            logger.info("NTP responder stopped")

    @property
    def running(self) -> bool:
        return self._transport is not None

    def to_dict(self) -> dict:
        return {
            "listen": f"{self.host}:{self.port}",
            "running": self.running,
            "received": self.stats.received,
            "answered": self.stats.answered,
            "dropped": self.stats.dropped,
            "malformed": self.stats.malformed,
            "drop_table": self.drop_table.to_dict(),
        }
