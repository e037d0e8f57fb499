"""
qntp Node

Configuration and the synchronization controller.
"""

from qntp.node.config import Config, LogConfig, setup_logging
from qntp.node.daemon import NTPd, Phase, main

__all__ = [
    "Config",
    "LogConfig",
    "setup_logging",
    "NTPd",
    "Phase",
    "main",
]
