"""
Desist - Stealth Mode
The disguise mode and its inactivity auto-timeout.

Stealth mode hides the app behind a cover screen. If nobody touches the
device for `stealth_timeout_minutes`, stealth mode turns itself off.
The idle clock does not run while the app is in the background; coming
back to the foreground re-arms a full timeout rather than computing how
long the app was away.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, List, Optional

from .errors import ConfigurationError
from .interfaces import AppLifecycleObserver, AppState, Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class StealthMode:
    """
    Tracks whether stealth mode is on.

    Listeners get (is_active, trigger) on every change. `trigger` records
    why the change happened: 'manual', 'auto_timeout', 'panic', ...
    """

    def __init__(self, cover_screen: str = "calculator"):
        self.cover_screen = cover_screen
        self.is_active = False
        self.last_trigger: Optional[str] = None
        self._listeners: List[Callable[[bool, str], None]] = []

    def add_listener(self, listener: Callable[[bool, str], None]) -> None:
        self._listeners.append(listener)

    def activate(self, trigger: str = "manual") -> None:
        if self.is_active:
            return
        self.is_active = True
        self._changed(trigger)

    def deactivate(self, trigger: str = "manual") -> None:
        if not self.is_active:
            return
        self.is_active = False
        self._changed(trigger)

    def toggle(self, trigger: str = "manual") -> None:
        if self.is_active:
            self.deactivate(trigger)
        else:
            self.activate(trigger)

    def _changed(self, trigger: str) -> None:
        self.last_trigger = trigger
        logger.info(
            "Stealth mode %s (%s)",
            "activated" if self.is_active else "deactivated",
            trigger
        )
        for listener in list(self._listeners):
            listener(self.is_active, trigger)


class TimeoutState(Enum):
    INACTIVE = "inactive"
    ARMED = "armed"
    SUSPENDED = "suspended"


class StealthAutoTimeout:
    """
    Calls `on_timeout` after a period with no user activity.

    The host calls `reset_timeout()` on every interaction. Only one timer
    is ever live: re-arming cancels the previous handle first.
    """

    def __init__(
        self,
        lifecycle: AppLifecycleObserver,
        is_mode_active: Callable[[], bool] = lambda: True,
        scheduler: Optional[Scheduler] = None,
    ):
        self._lifecycle = lifecycle
        self._is_mode_active = is_mode_active
        self._scheduler = scheduler

        self.state = TimeoutState.INACTIVE
        self.timeout_seconds: float = 0.0
        self.last_activity_time: Optional[float] = None

        self._on_timeout: Optional[Callable[[], None]] = None
        self._handle: Optional[TimerHandle] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def scheduler(self) -> Scheduler:
        if self._scheduler is None:
            self._scheduler = asyncio.get_running_loop()
        return self._scheduler

    @property
    def is_armed(self) -> bool:
        return self.state == TimeoutState.ARMED

    def start(self, timeout_minutes: float, on_timeout: Callable[[], None]) -> None:
        """
        Arm the timer.

        Does nothing if the owning mode is not active.

        Raises:
            ConfigurationError: timeout_minutes <= 0
        """
        if timeout_minutes <= 0:
            raise ConfigurationError(f"timeout_minutes must be > 0, got {timeout_minutes}")
        if not self._is_mode_active():
            return

        self.timeout_seconds = timeout_minutes * 60
        self._on_timeout = on_timeout

        if self._unsubscribe is None:
            self._unsubscribe = self._lifecycle.subscribe(self._on_app_state)

        self._arm()
        logger.debug("Stealth auto-timeout armed for %.1f minutes", timeout_minutes)

    def reset_timeout(self) -> None:
        """Push the deadline out by a full timeout. Only while armed."""
        if self.state != TimeoutState.ARMED:
            return
        self._arm()

    def stop(self) -> None:
        """Cancel any pending timer and stop following app state."""
        self._cancel()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.state = TimeoutState.INACTIVE
        self._on_timeout = None

    def _arm(self) -> None:
        self._cancel()
        self.last_activity_time = self.scheduler.time()
        self._handle = self.scheduler.call_later(self.timeout_seconds, self._fire)
        self.state = TimeoutState.ARMED

    def _cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _on_app_state(self, app_state: AppState) -> None:
        if app_state == AppState.BACKGROUND and self.state == TimeoutState.ARMED:
            self._cancel()
            self.state = TimeoutState.SUSPENDED
            logger.debug("Stealth auto-timeout suspended")
        elif app_state == AppState.FOREGROUND and self.state == TimeoutState.SUSPENDED:
            self._arm()
            logger.debug("Stealth auto-timeout re-armed")

    def _fire(self) -> None:
        self._handle = None
        callback = self._on_timeout
        self.stop()
        logger.info("Stealth mode idle for %.0fs, timing out", self.timeout_seconds)
        if callback is not None:
            callback()


def bind_auto_timeout(
    mode: StealthMode,
    auto_timeout: StealthAutoTimeout,
    timeout_minutes: float
) -> None:
    """
    Wire an auto-timeout to a stealth mode.

    Activation arms the timer; deactivation by any means tears it down;
    the timer firing deactivates the mode with trigger 'auto_timeout'.
    """
    def on_change(is_active: bool, trigger: str) -> None:
        if is_active:
            auto_timeout.start(
                timeout_minutes,
                lambda: mode.deactivate("auto_timeout")
            )
        else:
            auto_timeout.stop()

    mode.add_listener(on_change)
    if mode.is_active:
        on_change(True, mode.last_trigger or "manual")
