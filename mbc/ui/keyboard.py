import sys
import threading
import termios
import tty
import select
from typing import Optional
from mbc.infrastructure.event_bus import EventBus
from mbc.domain.events import RequestStop

class KeyboardListener:
    """Listens for keyboard input in a background thread."""

    def __init__(self, event_bus: EventBus):
        self.event_bus = event_bus
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _get_key(self) -> Optional[str]:
        """Reads a single key from stdin in raw mode."""
        fd = sys.stdin.fileno()
        old_settings = termios.tcgetattr(fd)
        try:
            tty.setraw(fd)
            rlist, _, _ = select.select([sys.stdin], [], [], 0.1)
            if rlist:
                return sys.stdin.read(1)
        finally:
            termios.tcsetattr(fd, termios.TCSADRAIN, old_settings)
        return None

    def _handle_key(self, key: str) -> bool:
        """Publishes the event bound to key. Returns False when listening should end."""
        if key == '\x03':  # Ctrl+C
            self.event_bus.publish(RequestStop(force=True))
            return False
        if key.upper() == 'S':
            self.event_bus.publish(RequestStop())
        return True

    def _run(self):
        """Main loop for the listener thread."""
        while not self._stop_event.is_set():
            key = self._get_key()
            if key and not self._handle_key(key):
                break

    def start(self):
        """Starts the listener thread when stdin is a terminal."""
        if not sys.stdin.isatty():
            return
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self):
        """Stops the listener thread."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=1.0)
