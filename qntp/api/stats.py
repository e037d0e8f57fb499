"""
qntp Metrics

Prometheus gauges for the synchronization loop. Each NTPStat owns its
registry so several daemons (or tests) can coexist in one process.
"""

from __future__ import annotations
import logging
from typing import Optional

from prometheus_client import CollectorRegistry, Gauge, generate_latest

logger = logging.getLogger(__name__)

NAMESPACE = "ntpd"


class NTPStat:
    """Metrics sink: poll interval, delay, offset and dispersion in seconds."""

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry or CollectorRegistry()

        self.poll_gauge = Gauge(
            "poll_interval_seconds", "Wait before the next polling round",
            namespace=NAMESPACE, registry=self.registry,
        )
        self.delay_gauge = Gauge(
            "delay_seconds", "Round-trip delay to the chosen reference",
            namespace=NAMESPACE, registry=self.registry,
        )
        self.offset_gauge = Gauge(
            "offset_seconds", "Clock offset of the chosen reference",
            namespace=NAMESPACE, registry=self.registry,
        )
        self.disp_gauge = Gauge(
            "dispersion_seconds", "Dispersion of the chosen reference",
            namespace=NAMESPACE, registry=self.registry,
        )

    def set_poll(self, seconds: float) -> None:
        self.poll_gauge.set(seconds)

    def set_delay(self, seconds: float) -> None:
        self.delay_gauge.set(seconds)

    def set_offset(self, seconds: float) -> None:
        self.offset_gauge.set(seconds)

    def set_dispersion(self, seconds: float) -> None:
        self.disp_gauge.set(seconds)

    def render(self) -> bytes:
        """Prometheus text exposition of this registry."""
        return generate_latest(self.registry)
