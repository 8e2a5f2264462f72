"""
Desist - Process Control
Per-platform strategy for the final step of panic mode.

Android lets an app close itself. iOS does not, so there the app is left
on its signed-out state.
"""

import logging
import os
import signal
from typing import Callable, Optional

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

SUPPORTED_PLATFORMS = ("android", "ios")


class TerminatingProcessController:
    """Ends the current process with SIGTERM so the daemon shuts down cleanly."""

    supported = True

    def __init__(self, kill: Optional[Callable[[int, int], None]] = None):
        self._kill = kill or os.kill

    def terminate(self) -> None:
        logger.info("Terminating process %d", os.getpid())
        self._kill(os.getpid(), signal.SIGTERM)


class NoopProcessController:
    """Process termination is not available on this platform."""

    supported = False

    def terminate(self) -> None:
        logger.debug("Process termination not supported on this platform")


def select_process_controller(platform: str):
    """Pick the process controller for a platform name."""
    platform = platform.lower()
    if platform not in SUPPORTED_PLATFORMS:
        raise ConfigurationError(
            f"Unknown platform '{platform}' (expected one of {', '.join(SUPPORTED_PLATFORMS)})"
        )
    if platform == "android":
        return TerminatingProcessController()
    return NoopProcessController()
