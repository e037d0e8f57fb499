"""
qntp Quorum Selector

Picks one reference sample from the latest polling round.

POLICY: the reference is the element at index len/2 of the eligible
samples sorted by offset, i.e. the upper median on even counts. Samples
are not weighted by stratum or dispersion and the rule is not Byzantine
fault tolerant: a simple majority of agreeing samples decides. Both are
known limitations kept on purpose; change the policy only deliberately.
"""

from __future__ import annotations
import logging
from typing import List, Optional, Sequence

from qntp.constants import INVALID_STRATUM, DEFAULT_GOOD_FILTER
from qntp.core.types import OffsetPeer
from qntp.network.peer import Peer

logger = logging.getLogger(__name__)


def eligible_samples(peers: Sequence[Peer]) -> List[OffsetPeer]:
    """
    Collect (peer, response) pairs from healthy peers whose stratum is
    below INVALID_STRATUM, in peer order.
    """
    candidates: List[OffsetPeer] = []
    for peer in peers:
        if not peer.healthy:
            continue
        for resp in peer.responses:
            if resp.stratum >= INVALID_STRATUM:
                continue
            candidates.append(OffsetPeer(peer, resp))
    return candidates


def sort_by_offset(candidates: Sequence[OffsetPeer]) -> List[OffsetPeer]:
    """Stable ascending sort by clock offset; ties keep peer order."""
    return sorted(candidates, key=lambda op: op.resp.clock_offset)


def pick_median(
    candidates: Sequence[OffsetPeer],
    good_filter: int = DEFAULT_GOOD_FILTER,
) -> Optional[OffsetPeer]:
    """
    Return the element at sorted index len/2, or None when fewer than
    good_filter candidates exist.
    """
    if not candidates:
        return None

    ordered = sort_by_offset(candidates)
    logger.debug(
        "candidates: " + ",".join(
            f"{op.peer.address}:{op.resp.clock_offset:+.6f}" for op in ordered
        )
    )

    if len(ordered) < good_filter:
        logger.debug(f"only {len(ordered)} candidates, need {good_filter}")
        return None

    return ordered[len(ordered) // 2]


def find(
    peers: Sequence[Peer],
    good_filter: int = DEFAULT_GOOD_FILTER,
) -> Optional[OffsetPeer]:
    """
    Select the reference for this cycle.

    Args:
        peers: Peer list, read after the polling round was joined
        good_filter: Minimum number of eligible samples

    Returns:
        The chosen OffsetPeer, or None when no quorum was reached
    """
    return pick_median(eligible_samples(peers), good_filter)
