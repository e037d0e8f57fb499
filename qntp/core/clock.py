"""
qntp Clock Correction

Steps the system realtime clock by a measured offset.

Slewing and kernel clock discipline are left to the operating system;
this module only performs bounded, logged steps.
"""

from __future__ import annotations
import logging
import time
from dataclasses import dataclass
from typing import Optional

from qntp.constants import (
    PANIC_THRESHOLD_SEC,
    LEAP_NONE,
    LEAP_INSERT,
    LEAP_DELETE,
    LEAP_ALARM,
)
from qntp.errors import ClockWriteError

logger = logging.getLogger(__name__)

LEAP_NAMES = {
    LEAP_NONE: "none",
    LEAP_INSERT: "insert",
    LEAP_DELETE: "delete",
    LEAP_ALARM: "alarm",
}


@dataclass
class SystemClock:
    """
    Clock correction primitive.

    apply_offset() raises ClockWriteError on any failure; the caller treats
    that as fatal.
    """
    panic_threshold: float = PANIC_THRESHOLD_SEC
    dry_run: bool = False

    # Last applied state
    pending_leap: int = LEAP_NONE
    last_offset: Optional[float] = None
    corrections: int = 0

    def apply_offset(self, offset: float, leap: int = LEAP_NONE, force: bool = False) -> None:
        """
        Step the clock by offset seconds.

        Args:
            offset: Seconds to add to the local clock
            leap: Leap indicator of the reference sample
            force: Bypass the panic threshold (first sync bootstrapping)

        Raises:
            ClockWriteError: If the step is refused or the OS rejects it
        """
        if leap == LEAP_ALARM:
            raise ClockWriteError(offset, "reference clock is unsynchronized")

        if not force and abs(offset) > self.panic_threshold:
            raise ClockWriteError(
                offset,
                f"offset exceeds panic threshold of {self.panic_threshold}s"
            )

        self._set_leap(leap)

        if self.dry_run:
            logger.info(f"dry-run: would step clock by {offset:+.6f}s")
        else:
            self._step(offset)

        self.last_offset = offset
        self.corrections += 1

    def _set_leap(self, leap: int) -> None:
        if leap == self.pending_leap:
            return
        if leap in (LEAP_INSERT, LEAP_DELETE):
            logger.warning(f"Leap second pending: {LEAP_NAMES[leap]}")
        elif self.pending_leap != LEAP_NONE:
            logger.info("Leap second warning cleared")
        self.pending_leap = leap

    def _step(self, offset: float) -> None:
        try:
            now = time.clock_gettime(time.CLOCK_REALTIME)
            time.clock_settime(time.CLOCK_REALTIME, now + offset)
        except (OSError, AttributeError) as e:
            raise ClockWriteError(offset, str(e)) from e

        logger.info(f"Clock stepped by {offset:+.6f}s")
