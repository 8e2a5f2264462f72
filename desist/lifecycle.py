"""
Desist - App Lifecycle
Foreground/background transitions as an in-process event bus.

The daemon maps SIGUSR1 to background and SIGUSR2 to foreground.
"""

import logging
from typing import Callable, List

from .interfaces import AppState

logger = logging.getLogger(__name__)


class AppLifecycle:
    """Broadcasts app state transitions to subscribers."""

    def __init__(self, initial: AppState = AppState.FOREGROUND):
        self.current: AppState = initial
        self._handlers: List[Callable[[AppState], None]] = []

    def subscribe(self, handler: Callable[[AppState], None]) -> Callable[[], None]:
        """Register a handler. Returns a function that unsubscribes it."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def emit(self, state: AppState) -> None:
        """Record a transition and notify subscribers (repeats are dropped)."""
        if state == self.current:
            return
        self.current = state
        logger.debug("App moved to %s", state.value)
        for handler in list(self._handlers):
            handler(state)

    def background(self) -> None:
        self.emit(AppState.BACKGROUND)

    def foreground(self) -> None:
        self.emit(AppState.FOREGROUND)

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)
