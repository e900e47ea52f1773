"""Keyboard stand-in for the wake-word detector."""

import sys
import time
import asyncio
import logging
import threading
from typing import Optional, Callable

from ..bus import EventBus, WAKE_DETECTED, WAKE_STATUS
from ..models.events import WakeEvent, WakeStatusEvent

logger = logging.getLogger(__name__)

WAKE_KEYS = ("w", " ")
QUIT_KEY = "q"


class KeyboardWakeTrigger:
    """Publishes a wake trigger when the wake key is pressed.

    Keys are read on a daemon thread; every event is handed to the event
    loop with call_soon_threadsafe.
    """

    def __init__(self, bus: EventBus, on_quit: Optional[Callable[[], None]] = None):
        """Initialize keyboard trigger.

        Args:
            bus: Event bus receiving wake and wake status events
            on_quit: Called on the event loop when the quit key is pressed
        """
        self.bus = bus
        self.on_quit = on_quit
        self.running = False
        self.thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def start(self) -> None:
        """Start reading keys. Must be called from the event loop thread."""
        if self.running:
            return

        self._loop = asyncio.get_running_loop()
        self.running = True
        self.thread = threading.Thread(target=self._input_loop, daemon=True)
        self.thread.start()
        self.bus.publish(WAKE_STATUS, WakeStatusEvent(is_loaded=True, is_listening=True))
        logger.info("Keyboard wake trigger started")

    def stop(self) -> None:
        if not self.running:
            return
        self.running = False
        if self.thread:
            self.thread.join(timeout=1.0)
        self.bus.publish(WAKE_STATUS, WakeStatusEvent(is_loaded=True, is_listening=False))
        logger.info("Keyboard wake trigger stopped")

    def handle_key(self, key: str) -> bool:
        """Dispatch one key on the event loop; returns False on quit."""
        if key in WAKE_KEYS:
            logger.info("Wake key pressed")
            self.bus.publish(WAKE_DETECTED, WakeEvent(source="keyboard"))
        elif key == QUIT_KEY:
            logger.info("Quit key pressed")
            if self.on_quit:
                self.on_quit()
            return False
        return True

    def _input_loop(self) -> None:
        logger.debug("Starting keyboard input loop")
        while self.running:
            try:
                key = self._get_key()
            except (OSError, ValueError) as e:
                logger.error(f"Keyboard input unavailable: {e}")
                break
            if key:
                logger.debug(f"Key detected: '{key}' (ord: {ord(key)})")
                try:
                    self._loop.call_soon_threadsafe(self.handle_key, key)
                except RuntimeError:
                    # Event loop already closed
                    break
                if key == QUIT_KEY:
                    break
            time.sleep(0.05)
        logger.debug("Keyboard input loop ended")

    def _get_key(self) -> Optional[str]:
        if sys.platform == "win32":
            return self._get_key_windows()
        return self._get_key_unix()

    def _get_key_windows(self) -> Optional[str]:
        import msvcrt
        if msvcrt.kbhit():
            return msvcrt.getch().decode('utf-8', errors='ignore').lower()
        return None

    def _get_key_unix(self) -> Optional[str]:
        import select
        import termios
        import tty

        if not sys.stdin.isatty():
            return None
        if select.select([sys.stdin], [], [], 0.1)[0]:
            # Raw mode to get single characters
            old_settings = termios.tcgetattr(sys.stdin)
            try:
                tty.setraw(sys.stdin.fileno())
                return sys.stdin.read(1).lower()
            finally:
                termios.tcsetattr(sys.stdin, termios.TCSADRAIN, old_settings)
        return None
