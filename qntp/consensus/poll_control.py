"""
qntp Adaptive Poll Interval

Grows the wait between polling rounds while the chosen offset stays
small, collapses it after any large offset and retries quickly when no
reference was found.

    no reference        -> sleep = NO_QUORUM_RETRY_SEC, trust untouched
    |offset| <  20 ms   -> sleep = table[clamp(winner.trust) - MIN_POLL],
                           every healthy peer below max_poll gains 1 trust
    |offset| >= 20 ms   -> sleep = table[0], every peer's trust = 1
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from qntp.constants import (
    MIN_POLL,
    MAX_POLL,
    POLL_TABLE,
    STABLE_OFFSET_SEC,
    NO_QUORUM_RETRY_SEC,
)
from qntp.core.types import OffsetPeer
from qntp.errors import ConfigError
from qntp.network.peer import Peer

logger = logging.getLogger(__name__)


@dataclass
class PollController:
    """Poll interval state machine over the peer set's trust levels."""
    min_poll: int = MIN_POLL
    max_poll: int = MAX_POLL
    poll_table: Tuple[float, ...] = POLL_TABLE
    stable_offset: float = STABLE_OFFSET_SEC
    retry_interval: float = NO_QUORUM_RETRY_SEC

    def __post_init__(self):
        if not MIN_POLL <= self.min_poll <= self.max_poll:
            raise ConfigError(
                f"poll bounds out of range: {self.min_poll}..{self.max_poll}"
            )
        if self.max_poll - MIN_POLL >= len(self.poll_table):
            raise ConfigError(
                f"max_poll {self.max_poll} has no poll table entry"
            )

    @property
    def min_interval(self) -> float:
        return self.poll_table[0]

    def clamp(self, trust_level: int) -> int:
        return max(self.min_poll, min(trust_level, self.max_poll))

    def interval_for(self, trust_level: int) -> float:
        """Poll table entry for a trust level, clamped to the poll bounds."""
        return self.poll_table[self.clamp(trust_level) - MIN_POLL]

    def is_stable(self, offset: float) -> bool:
        return abs(offset) < self.stable_offset

    def next_interval(
        self,
        peers: Sequence[Peer],
        chosen: Optional[OffsetPeer],
    ) -> float:
        """
        Apply one cycle's outcome to the peers' trust levels.

        Returns:
            Seconds to wait before the next polling round
        """
        if chosen is None:
            return self.retry_interval

        if self.is_stable(chosen.resp.clock_offset):
            sleep = self.interval_for(chosen.peer.trust_level)
            for peer in peers:
                if peer.healthy and peer.trust_level < self.max_poll:
                    peer.trust_level += 1
            return sleep

        logger.info(
            f"offset {chosen.resp.clock_offset:+.6f}s above "
            f"{self.stable_offset}s, resetting trust"
        )
        for peer in peers:
            peer.trust_level = MIN_POLL
        return self.min_interval
