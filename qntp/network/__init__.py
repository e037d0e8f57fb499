"""
qntp Network Layer

Peers, the concurrent poller, the inbound drop table and the NTP responder.
"""

from qntp.network.peer import Peer, resolve, new_peer, build_peer_list
from qntp.network.poller import poll_peers
from qntp.network.droptable import DropTable
from qntp.network.server import NTPServer

__all__ = [
    "Peer",
    "resolve",
    "new_peer",
    "build_peer_list",
    "poll_peers",
    "DropTable",
    "NTPServer",
]
