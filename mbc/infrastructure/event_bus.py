import logging
import queue
import threading
from typing import Type, Callable, List, Dict, Any, Optional
from mbc.domain.events import Event

class EventBus:
    """A simple event bus for decoupled communication.

    Synchronous by default. After start() events are handed to a single
    dispatch thread, so publishers never wait on slow subscribers and
    events from one publisher keep their order.
    """

    def __init__(self):
        self._subscribers: Dict[Type[Event], List[Callable[[Any], None]]] = {}
        self._queue: "queue.Queue[Optional[Event]]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self.logger = logging.getLogger(__name__)

    def subscribe(self, event_type: Type[Event], callback: Callable[[Any], None]):
        """Subscribes a callback to a specific event type."""
        if event_type not in self._subscribers:
            self._subscribers[event_type] = []
        self._subscribers[event_type].append(callback)

    def publish(self, event: Event):
        """Publishes an event to all interested subscribers."""
        if self._thread is not None:
            self._queue.put(event)
        else:
            self._dispatch(event)

    def _dispatch(self, event: Event):
        event_type = type(event)
        if event_type in self._subscribers:
            for callback in self._subscribers[event_type]:
                callback(event)

    def _run(self):
        while True:
            event = self._queue.get()
            if event is None:
                break
            try:
                self._dispatch(event)
            except Exception as e:
                self.logger.error(f"Subscriber failed for {type(event).__name__}: {e}")

    def start(self):
        """Switches to asynchronous delivery on a dispatch thread."""
        if self._thread is None:
            self._thread = threading.Thread(target=self._run, daemon=True)
            self._thread.start()

    def stop(self, timeout: float = 2.0):
        """Drains pending events and returns to synchronous delivery."""
        if self._thread is not None:
            self._queue.put(None)
            self._thread.join(timeout=timeout)
            self._thread = None
