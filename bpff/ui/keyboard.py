import os
import sys
import threading
import termios
import tty
import select
from typing import Optional
from bpff.infrastructure.event_bus import EventBus
from bpff.domain.events import (
    EditSettings,
    InterruptRequested,
    OpenWorkspace,
    PauseToggled,
    RequestShutdown,
    RescanRequested,
    ThreadControlEvent,
)


class KeyboardListener:
    """Listens for single-key shortcuts in a background thread."""

    def __init__(self, event_bus: EventBus):
        self.event_bus = event_bus
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def handle_key(self, key: str) -> bool:
        """Publishes the event bound to `key`. Returns False when the listener should stop."""
        if key == '\x03':  # Ctrl+C
            self.event_bus.publish(InterruptRequested())
            return False
        if key in ('P', 'p', '\x10'):  # Ctrl+P works too
            self.event_bus.publish(PauseToggled())
        elif key in ('S', 's'):
            self.event_bus.publish(RequestShutdown())
        elif key in ('R', 'r'):
            self.event_bus.publish(RescanRequested())
        elif key in ('.', '>'):
            self.event_bus.publish(ThreadControlEvent(change=1))
        elif key in (',', '<'):
            self.event_bus.publish(ThreadControlEvent(change=-1))
        elif key in ('O', 'o', '\x0f'):
            self.event_bus.publish(OpenWorkspace())
        elif key in ('E', 'e'):
            self.event_bus.publish(EditSettings())
        return True

    def _run(self):
        """Main loop for the listener thread."""
        if not sys.stdin.isatty():
            return

        fd = sys.stdin.fileno()
        old_settings = termios.tcgetattr(fd)
        try:
            tty.setcbreak(fd)

            while not self._stop_event.is_set():
                if fd in select.select([fd], [], [], 0.1)[0]:
                    try:
                        raw = os.read(fd, 1)
                    except OSError:
                        continue
                    if not raw:
                        continue
                    key = raw.decode('utf-8', errors='replace')
                    if not self.handle_key(key):
                        break
        finally:
            termios.tcsetattr(fd, termios.TCSADRAIN, old_settings)

    def start(self):
        """Starts the listener thread."""
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self):
        """Stops the listener thread."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=1.0)
