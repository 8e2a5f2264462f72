"""
Desist - Gesture Trigger Detector
Turns a burst of clicks/taps into a single panic activation.

A burst is `required_count` events where no two consecutive events are
more than `window_ms` apart. Partial bursts expire on their own after
`window_ms` of silence.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .errors import ConfigurationError
from .interfaces import Scheduler, TimerHandle

logger = logging.getLogger(__name__)


@dataclass
class TriggerWindowState:
    """Counting state for the current burst."""
    required_count: int
    window_ms: int
    count: int = 0
    window_start_time: float = 0.0
    last_event_time: float = 0.0


class GestureTriggerDetector:
    """
    Counts qualifying input events and fires a callback once per burst.

    Usage:
        detector = GestureTriggerDetector()
        detector.configure(5, 1000, on_panic)
        detector.record_event()   # on every tap
    """

    def __init__(self, scheduler: Optional[Scheduler] = None):
        self._scheduler = scheduler
        self._state: Optional[TriggerWindowState] = None
        self._on_triggered: Optional[Callable[[], None]] = None
        self._reset_handle: Optional[TimerHandle] = None

    @property
    def scheduler(self) -> Scheduler:
        if self._scheduler is None:
            self._scheduler = asyncio.get_running_loop()
        return self._scheduler

    @property
    def state(self) -> Optional[TriggerWindowState]:
        return self._state

    @property
    def enabled(self) -> bool:
        return self._state is not None

    def configure(
        self,
        required_count: int,
        window_ms: int,
        on_triggered: Callable[[], None]
    ) -> None:
        """
        (Re)initialize the detector.

        Raises:
            ConfigurationError: required_count < 2 or window_ms <= 0
        """
        if required_count < 2:
            raise ConfigurationError(f"required_count must be >= 2, got {required_count}")
        if window_ms <= 0:
            raise ConfigurationError(f"window_ms must be > 0, got {window_ms}")

        self._cancel_pending_reset()
        self._state = TriggerWindowState(required_count=required_count, window_ms=window_ms)
        self._on_triggered = on_triggered
        logger.debug("Gesture detector armed: %d events within %dms", required_count, window_ms)

    def disable(self) -> None:
        """Turn the detector off. Pending resets are cancelled."""
        self._cancel_pending_reset()
        self._state = None
        self._on_triggered = None

    def record_event(self, timestamp: Optional[float] = None) -> bool:
        """
        Feed one qualifying input event.

        Args:
            timestamp: Event time in milliseconds (non-decreasing).
                Defaults to the scheduler clock.

        Returns:
            True if this event completed a burst and fired the callback.
        """
        state = self._state
        if state is None:
            return False

        if timestamp is None:
            timestamp = self.scheduler.time() * 1000

        # Stale window: the previous event is too far back
        if state.count == 0 or timestamp - state.last_event_time > state.window_ms:
            state.count = 0
            state.window_start_time = timestamp

        state.count += 1
        state.last_event_time = timestamp

        if state.count >= state.required_count:
            state.count = 0
            self._cancel_pending_reset()
            logger.info("Gesture burst completed (%d events)", state.required_count)
            self._on_triggered()
            return True

        self._schedule_reset(state.window_ms)
        return False

    def _schedule_reset(self, window_ms: int) -> None:
        self._cancel_pending_reset()
        self._reset_handle = self.scheduler.call_later(window_ms / 1000, self._expire_window)

    def _cancel_pending_reset(self) -> None:
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None

    def _expire_window(self) -> None:
        self._reset_handle = None
        if self._state is not None and self._state.count:
            logger.debug("Partial gesture expired at %d events", self._state.count)
            self._state.count = 0
