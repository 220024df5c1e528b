"""Thread-safe watched value shared between background tasks and the UI."""

import logging
import threading
from typing import Callable, Generic, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Observable(Generic[T]):
    """
    Latest-value holder with change notification.
    
    Writers call set(); readers poll `value` or subscribe. Subscribers are
    called on the writer's thread, outside the lock.
    """

    def __init__(self, initial: T, always_notify: bool = False):
        """
        Args:
            initial: Starting value
            always_notify: Notify on every set(), even when the value is
                unchanged (used for last-write-wins frame slots).
        """
        self._value = initial
        self._always_notify = always_notify
        self._subscribers: List[Callable[[T], None]] = []
        self._lock = threading.Lock()

    @property
    def value(self) -> T:
        with self._lock:
            return self._value

    def set(self, value: T) -> bool:
        """Store a new value. Returns True if subscribers were notified."""
        with self._lock:
            changed = self._always_notify or value != self._value
            self._value = value
            subscribers = list(self._subscribers)

        if not changed:
            return False

        for callback in subscribers:
            try:
                callback(value)
            except Exception as e:
                logger.warning(f"Subscriber {callback!r} failed: {e}")
        return True

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Register a callback; returns a function that unregisters it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def __repr__(self) -> str:
        return f"Observable({self.value!r})"
