"""
qntp Synchronization Controller

Owns the peer set and drives the daemon through its lifecycle:

    INITIALIZING -> FIRST_SYNC -> STEADY_STATE (until stopped or a clock
    write fails)

Each cycle polls every enabled peer, selects the median reference,
corrects the clock, adapts the poll interval, swaps the response
template and exports metrics, in that order.
"""

from __future__ import annotations
import argparse
import asyncio
import functools
import logging
import signal
import statistics
import sys
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

from qntp import __version__
from qntp.api.server import StatusServer
from qntp.api.stats import NTPStat
from qntp.consensus.poll_control import PollController
from qntp.consensus.selection import find, eligible_samples
from qntp.constants import LEAP_NONE
from qntp.core.clock import SystemClock
from qntp.core.types import OffsetPeer
from qntp.errors import (
    QNTPError,
    ConfigError,
    StartupFailure,
    NoPeersError,
    NoQuorumError,
    FirstSyncNoQuorumError,
    ClockWriteError,
)
from qntp.network.droptable import DropTable
from qntp.network.peer import Peer, build_peer_list, new_peer, resolve
from qntp.network.poller import poll_peers
from qntp.network.server import NTPServer, parse_listen
from qntp.node.config import Config, setup_logging
from qntp.protocol.template import ResponseTemplate

logger = logging.getLogger(__name__)


class Phase(Enum):
    """Controller lifecycle phase."""
    INITIALIZING = "initializing"
    FIRST_SYNC = "first_sync"
    STEADY_STATE = "steady_state"
    STOPPED = "stopped"


@dataclass
class NTPd:
    """
    Synchronization controller.

    All mutable daemon state lives on this instance. Collaborators that
    touch the outside world (resolver, peer factory, clock, metrics) are
    fields so they can be replaced.
    """
    config: Config

    clock: Optional[SystemClock] = None
    stat: Optional[NTPStat] = None
    resolver: Callable[[str], List[str]] = resolve
    peer_factory: Callable[..., Any] = new_peer

    # State
    peer_list: List[Peer] = field(default_factory=list)
    sleep: float = 0.0
    delay: float = 0.0
    disp: float = 0.0
    offset: Optional[float] = None
    template: ResponseTemplate = field(default_factory=ResponseTemplate.unsynchronized)
    phase: Phase = Phase.INITIALIZING
    cycles: int = 0
    last_sync: Optional[float] = None

    # Serving
    server: Optional[NTPServer] = None
    status_server: Optional[StatusServer] = None

    _stop_event: asyncio.Event = field(default_factory=asyncio.Event)

    def __post_init__(self):
        self.config.clamp()
        self.poll_control = PollController(
            min_poll=self.config.min_poll,
            max_poll=self.config.max_poll,
        )
        if self.clock is None:
            self.clock = SystemClock(dry_run=self.config.dry_run)
        if self.stat is None and self.config.metric:
            self.stat = NTPStat()
        self.sleep = self.poll_control.min_interval

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def run(self) -> None:
        """
        Start the daemon and run the synchronization loop.

        Returns when stop() is called.

        Raises:
            NoPeersError: No configured name produced a usable peer
            StartupFailure: A listening socket could not be bound
            FirstSyncNoQuorumError: First sync found no trustworthy reference
            ClockWriteError: A clock correction failed
        """
        try:
            await self.init()
            await self.first_sync()
            await self._start_serving()

            self.phase = Phase.STEADY_STATE
            while not self._stop_event.is_set():
                if not await self._wait(self.sleep):
                    break
                await self.run_cycle()
        finally:
            await self._stop_serving()
            self.phase = Phase.STOPPED

    def stop(self) -> None:
        """Ask the loop to exit; a polling round in flight completes first."""
        logger.info("Stopping synchronization loop...")
        self._stop_event.set()

    async def init(self) -> None:
        """Resolve the configured peers into the fixed peer list."""
        self.phase = Phase.INITIALIZING

        loop = asyncio.get_running_loop()
        factory = functools.partial(
            self.peer_factory,
            timeout=self.config.query_timeout,
            max_samples=self.config.max_samples,
        )
        self.peer_list = await loop.run_in_executor(
            None,
            functools.partial(
                build_peer_list,
                self.config.peers,
                resolver=self.resolver,
                factory=factory,
            )
        )

        if not self.peer_list:
            raise NoPeersError(self.config.peers)

        self.sleep = self.poll_control.min_interval
        logger.info(f"init with {len(self.peer_list)} peers")

    async def first_sync(self) -> OffsetPeer:
        """
        Poll once and correct the clock unconditionally.

        Leap handling is deferred to steady state, so leap 0 is applied.
        """
        self.phase = Phase.FIRST_SYNC

        await poll_peers(self.peer_list, self.config.max_std, setup=True)
        median = find(self.peer_list, self.config.good_filter)
        if median is None:
            raise FirstSyncNoQuorumError(
                len(eligible_samples(self.peer_list)),
                self.config.good_filter,
            )

        try:
            self.clock.apply_offset(
                median.resp.clock_offset, LEAP_NONE, self.config.force_update
            )
        except ClockWriteError as e:
            logger.error(f"sync err: {e} offset: {median.resp.clock_offset:+.6f}s")
            raise

        self._record(median)
        self.update_state(median)
        logger.info(
            f"first sync from {median.peer.peer_id}: "
            f"offset {median.resp.clock_offset:+.6f}s"
        )
        return median

    async def run_cycle(self) -> Optional[OffsetPeer]:
        """
        One steady-state cycle.

        Returns:
            The chosen reference, or None when no quorum was reached

        Raises:
            ClockWriteError: Correction failed; the loop must end
        """
        await poll_peers(self.peer_list, self.config.max_std)
        median = find(self.peer_list, self.config.good_filter)
        self.cycles += 1

        if median is None:
            logger.warning(NoQuorumError(
                len(eligible_samples(self.peer_list)),
                self.config.good_filter,
            ).message)
            self.sleep = self.poll_control.next_interval(self.peer_list, None)
            return None

        try:
            self.clock.apply_offset(
                median.resp.clock_offset, median.resp.leap, self.config.force_update
            )
        except ClockWriteError as e:
            logger.error(f"sync err: {e}")
            raise

        self.sleep = self.poll_control.next_interval(self.peer_list, median)
        self._record(median)
        self.update_state(median)

        logger.info(
            f"synced to {median.peer.peer_id}: offset "
            f"{median.resp.clock_offset:+.6f}s, next poll in {self.sleep:.0f}s"
        )
        return median

    # =========================================================================
    # State
    # =========================================================================

    def _record(self, median: OffsetPeer) -> None:
        self.offset = median.resp.clock_offset
        self.delay = median.resp.delay
        offsets = [r.clock_offset for r in median.peer.responses]
        self.disp = statistics.pstdev(offsets) if len(offsets) > 1 else 0.0
        self.last_sync = time.time()
        # Replace the whole template: the responder never sees a partial one
        self.template = ResponseTemplate.from_reference(
            median, self.sleep, self.disp, now=self.last_sync
        )

    def update_state(self, median: OffsetPeer) -> None:
        """Export the cycle's result to the metrics sink, if any."""
        if self.stat is None:
            return
        self.stat.set_poll(self.sleep)
        self.stat.set_delay(self.delay)
        self.stat.set_offset(median.resp.clock_offset)
        self.stat.set_dispersion(self.disp)

    def current_template(self) -> ResponseTemplate:
        return self.template

    def get_status(self) -> dict:
        """Get daemon status."""
        return {
            "version": __version__,
            "phase": self.phase.value,
            "sleep": self.sleep,
            "offset": self.offset,
            "delay": self.delay,
            "dispersion": self.disp,
            "cycles": self.cycles,
            "last_sync": self.last_sync,
            "template": self.template.to_dict(),
            "peers": [p.to_dict() for p in self.peer_list],
            "server": self.server.to_dict() if self.server else None,
        }

    # =========================================================================
    # Serving
    # =========================================================================

    async def _wait(self, seconds: float) -> bool:
        """Sleep for seconds; False if stop() was called meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return True
        return False

    async def _start_serving(self) -> None:
        """
        Start the NTP responder and the status server, if configured.

        Raises:
            StartupFailure: A listening socket could not be bound
        """
        try:
            await self._bind()
        except OSError as e:
            raise StartupFailure(
                f"cannot bind listener: {e}",
                {"listen": self.config.listen, "metric": self.config.metric},
            ) from e

    async def _bind(self) -> None:
        if self.config.listen:
            host, port = parse_listen(self.config.listen)
            self.server = NTPServer(
                template_source=self.current_template,
                drop_table=DropTable(
                    cidrs=self.config.drop_cidr,
                    rate_size=self.config.rate_size,
                    rate_interval=self.config.rate_interval,
                ),
                host=host,
                port=port,
            )
            await self.server.start()

        if self.config.metric:
            host, port = parse_listen(self.config.metric, default_port=9123)
            self.status_server = StatusServer(self, host=host, port=port)
            await self.status_server.start()

    async def _stop_serving(self) -> None:
        if self.server:
            await self.server.stop()
        if self.status_server:
            await self.status_server.stop()


# =============================================================================
# Entry point
# =============================================================================

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Quorum NTP synchronization daemon")
    parser.add_argument("-c", "--config", help="JSON configuration file")
    parser.add_argument("-p", "--peer", action="append", dest="peers",
                        help="NTP server host name (repeatable, replaces configured peers)")
    parser.add_argument("--listen", help="Serve NTP on host:port")
    parser.add_argument("--metric", help="Serve metrics and status on host:port")
    parser.add_argument("--force", action="store_true", help="Allow arbitrarily large clock steps")
    parser.add_argument("--dry-run", action="store_true", help="Never touch the system clock")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> Config:
    """Load the configuration file and apply command line overrides."""
    config = Config.load(args.config) if args.config else Config()

    if args.peers:
        config.peers = args.peers
    if args.listen is not None:
        config.listen = args.listen
    if args.metric is not None:
        config.metric = args.metric
    if args.force:
        config.force_update = True
    if args.dry_run:
        config.dry_run = True
    if args.log_level:
        config.log.level = args.log_level

    config.clamp()
    errors = config.validate()
    if errors:
        raise ConfigError("; ".join(errors), {"errors": errors})
    return config


async def _serve(daemon: NTPd) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, daemon.stop)
    await daemon.run()


def main(argv: Optional[List[str]] = None) -> int:
    """Run the daemon; returns the process exit code."""
    args = parse_args(argv)

    try:
        config = build_config(args)
    except ConfigError as e:
        print(f"configuration error: {e.message}", file=sys.stderr)
        return 2

    setup_logging(config.log)
    logger.info(f"qntp {__version__} starting with peers {config.peers}")

    daemon = NTPd(config)
    try:
        asyncio.run(_serve(daemon))
    except QNTPError as e:
        logger.error(f"daemon exited: {e}")
        return 1

    logger.info("daemon stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
