"""
Desist - Input Collector
Watches mouse and keyboard for the panic gesture and for stealth activity.

PRIVACY:
- Clicks are reported as bare events: no coordinates, no button
- Key presses are reported as "activity": the key itself is discarded
- Nothing is stored

pynput delivers events on its own listener threads. Every callback is
handed to the asyncio loop with call_soon_threadsafe, so the gesture
detector and stealth timeout only ever run on the loop thread.
"""

import asyncio
import logging
from typing import Callable, Optional

from pynput import keyboard, mouse

logger = logging.getLogger(__name__)


class InputCollector:
    """
    Bridges pynput listeners to the event loop.

    Args:
        loop: The loop that owns the detector/timeout
        on_click: Called on every mouse press (a "tap")
        on_activity: Called on any input at all
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        on_click: Optional[Callable[[], None]] = None,
        on_activity: Optional[Callable[[], None]] = None,
    ):
        self.loop = loop
        self.on_click = on_click
        self.on_activity = on_activity

        self._keyboard_listener: Optional[keyboard.Listener] = None
        self._mouse_listener: Optional[mouse.Listener] = None
        self._running = False

    def _dispatch(self, callback: Optional[Callable[[], None]]) -> None:
        if callback is not None:
            self.loop.call_soon_threadsafe(callback)

    def _on_key_press(self, key) -> None:
        # The key is never looked at
        self._dispatch(self.on_activity)

    def _on_mouse_click(self, x: int, y: int, button, pressed: bool) -> None:
        if not pressed:
            return
        self._dispatch(self.on_click)
        self._dispatch(self.on_activity)

    def _on_mouse_move(self, x: int, y: int) -> None:
        self._dispatch(self.on_activity)

    def _on_mouse_scroll(self, x: int, y: int, dx: int, dy: int) -> None:
        self._dispatch(self.on_activity)

    def start(self) -> None:
        """Start listening."""
        if self._running:
            return

        self._running = True

        self._keyboard_listener = keyboard.Listener(on_press=self._on_key_press)
        self._keyboard_listener.start()

        self._mouse_listener = mouse.Listener(
            on_click=self._on_mouse_click,
            on_move=self._on_mouse_move,
            on_scroll=self._on_mouse_scroll
        )
        self._mouse_listener.start()

        logger.info("Input collector started")

    def stop(self) -> None:
        """Stop listening."""
        self._running = False

        if self._keyboard_listener:
            self._keyboard_listener.stop()
            self._keyboard_listener = None

        if self._mouse_listener:
            self._mouse_listener.stop()
            self._mouse_listener = None

        logger.info("Input collector stopped")
