"""
qntp Constants

All daemon constants defined here for single source of truth.
"""

from typing import Final, Tuple

# ==============================================================================
# POLL INTERVAL CONTROL
# ==============================================================================

MIN_POLL: Final[int] = 1                        # Lowest trust level / poll bucket
MAX_POLL: Final[int] = 10                       # Highest trust level / poll bucket

# Wait between polling rounds, indexed by (trust_level - MIN_POLL).
# 2^4 s .. 2^13 s, strictly increasing.
POLL_TABLE: Final[Tuple[float, ...]] = tuple(
    float(2 ** (exponent + 4)) for exponent in range(MAX_POLL - MIN_POLL + 1)
)

POLL_EXPONENT_BASE: Final[int] = 4              # log2(POLL_TABLE[0])

STABLE_OFFSET_SEC: Final[float] = 0.020         # |offset| below this is stable
NO_QUORUM_RETRY_SEC: Final[float] = 10.0        # Fast retry when no reference

# ==============================================================================
# SELECTION
# ==============================================================================

INVALID_STRATUM: Final[int] = 16                # Unsynchronized server
DEFAULT_GOOD_FILTER: Final[int] = 3             # Minimum eligible samples
MIN_HEALTHY_PEERS: Final[int] = 3               # Below this, warn but continue

# ==============================================================================
# PEER QUERY
# ==============================================================================

NTP_PORT: Final[int] = 123
NTP_VERSION: Final[int] = 4
DEFAULT_QUERY_TIMEOUT_SEC: Final[float] = 2.0
DEFAULT_MAX_SAMPLES: Final[int] = 3
DEFAULT_MAX_STD_SEC: Final[float] = 0.050       # Max spread of one peer's samples

LEAP_NONE: Final[int] = 0
LEAP_INSERT: Final[int] = 1
LEAP_DELETE: Final[int] = 2
LEAP_ALARM: Final[int] = 3

# ==============================================================================
# CLOCK
# ==============================================================================

PANIC_THRESHOLD_SEC: Final[float] = 1000.0      # Refuse larger steps unless forced

# ==============================================================================
# SERVING
# ==============================================================================

NTP_PACKET_SIZE: Final[int] = 48
MODE_CLIENT: Final[int] = 3
MODE_SERVER: Final[int] = 4
MAX_SERVED_STRATUM: Final[int] = 15
SERVER_PRECISION: Final[int] = -20              # ~1 microsecond

DEFAULT_RATE_SIZE: Final[int] = 4096
DEFAULT_RATE_INTERVAL_SEC: Final[float] = 2.0
