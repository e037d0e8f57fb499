"""
qntp Peer Poller

Fans one polling round out to every enabled peer and joins them all
before any peer state is read.
"""

from __future__ import annotations
import asyncio
import logging
from typing import List, Sequence

from qntp.constants import MIN_HEALTHY_PEERS
from qntp.network.peer import Peer

logger = logging.getLogger(__name__)


async def poll_peers(
    peers: Sequence[Peer],
    max_std: float,
    setup: bool = False,
) -> int:
    """
    Query every enabled peer concurrently and wait for all of them.

    Each peer's update() writes only that peer's state, so no locking is
    needed; aggregation happens after the join.

    Args:
        peers: Peer list (not resized while polling)
        max_std: Maximum sample deviation passed to each query
        setup: True during first sync

    Returns:
        Number of healthy peers after the round
    """
    active: List[Peer] = [p for p in peers if p.enabled]

    results = await asyncio.gather(
        *[p.update(max_std, setup=setup) for p in active],
        return_exceptions=True,
    )

    for peer, result in zip(active, results):
        if isinstance(result, BaseException):
            if isinstance(result, asyncio.CancelledError):
                raise result
            # update() is not supposed to raise; keep the round going anyway
            peer.healthy = False
            peer.responses = []
            peer.last_error = str(result)
            logger.error(f"peer {peer.peer_id} update raised: {result!r}")

    good_count = sum(1 for p in peers if p.healthy)
    if good_count < MIN_HEALTHY_PEERS:
        logger.warning(
            f"not enough good peers ({good_count} < {MIN_HEALTHY_PEERS}), but continue"
        )
    else:
        logger.debug(f"poll round done: {good_count}/{len(active)} healthy")

    return good_count
