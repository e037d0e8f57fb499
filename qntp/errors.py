"""
qntp Error Handling

All error codes and exception classes.

StartupFailure (including FirstSyncNoQuorumError) and ClockWriteError
are fatal to the daemon. NoQuorumError and PeerUnhealthyError are
recoverable and never leave the control loop.
"""

from enum import IntEnum
from typing import Optional, Any, List


class ErrorCode(IntEnum):
    """Daemon error codes."""

    # 1xxx - General errors
    UNKNOWN_ERROR = 1000
    INVALID_CONFIG = 1001

    # 2xxx - Startup errors
    STARTUP_FAILURE = 2000
    NO_PEERS = 2001

    # 3xxx - Selection errors
    NO_QUORUM = 3001

    # 4xxx - Peer errors
    PEER_UNHEALTHY = 4001

    # 5xxx - Clock errors
    CLOCK_WRITE_FAILURE = 5001


class QNTPError(Exception):
    """Base exception for all daemon errors."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Any] = None
    ):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict for API responses."""
        result = {
            "code": self.code.value,
            "name": self.code.name,
            "message": self.message,
        }
        if self.details is not None:
            result["details"] = self.details
        return result


class ConfigError(QNTPError):
    def __init__(self, message: str, details: Any = None):
        super().__init__(ErrorCode.INVALID_CONFIG, message, details)


# ==============================================================================
# Startup and selection
# ==============================================================================

class StartupFailure(QNTPError):
    """The daemon could not reach a usable state and will not serve."""

    def __init__(
        self,
        message: str,
        details: Any = None,
        code: ErrorCode = ErrorCode.STARTUP_FAILURE,
    ):
        super().__init__(code, message, details)


class NoPeersError(StartupFailure):
    def __init__(self, tried: List[str]):
        super().__init__(
            f"no available peer, tried: {tried}",
            {"tried": list(tried)},
            code=ErrorCode.NO_PEERS,
        )


class FirstSyncNoQuorumError(StartupFailure):
    """First sync found no trustworthy reference; nothing will be served."""

    def __init__(self, eligible: int = 0, required: int = 0):
        super().__init__(
            f"first sync failed: {eligible} eligible samples, {required} required",
            {"eligible": eligible, "required": required},
            code=ErrorCode.NO_QUORUM,
        )


class NoQuorumError(QNTPError):
    """
    No trustworthy reference could be selected.

    Logged by the steady-state loop, which falls back to the fast retry
    interval. First sync raises FirstSyncNoQuorumError instead.
    """

    def __init__(self, eligible: int = 0, required: int = 0):
        super().__init__(
            ErrorCode.NO_QUORUM,
            f"no median found: {eligible} eligible samples, {required} required",
            {"eligible": eligible, "required": required},
        )


# ==============================================================================
# Peer (recoverable)
# ==============================================================================

class PeerUnhealthyError(QNTPError):
    def __init__(self, address: str, reason: str):
        super().__init__(
            ErrorCode.PEER_UNHEALTHY,
            f"peer {address} unhealthy: {reason}",
            {"address": address, "reason": reason},
        )


# ==============================================================================
# Clock (fatal)
# ==============================================================================

class ClockWriteError(QNTPError):
    def __init__(self, offset: float, reason: str):
        super().__init__(
            ErrorCode.CLOCK_WRITE_FAILURE,
            f"clock correction of {offset:+.6f}s failed: {reason}",
            {"offset": offset, "reason": reason},
        )
