import logging
import threading
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)


class SubscriptionBus:
    """Synchronous publish/subscribe fan-out.

    Subscribers run in registration order on the publishing thread. No
    coalescing is done, so a burst of mutations produces a burst of calls.
    A subscriber that raises is logged and skipped; the rest still run.
    """

    def __init__(self, name: str = "bus") -> None:
        self.name = name
        self._subscribers: List[Callable[..., Any]] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[..., Any]) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, *args: Any) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(*args)
            except Exception:
                logger.exception("Subscriber of %s failed", self.name)

    def __len__(self) -> int:
        return len(self._subscribers)


class SingleSlotCallback:
    """Holds at most one callback for a role.

    Registering replaces whatever was there before. Used where exactly one
    consumer (the workout form) needs to hear about an event.
    """

    def __init__(self) -> None:
        self._callback: Optional[Callable[..., Any]] = None

    def register(self, callback: Callable[..., Any]) -> None:
        self._callback = callback

    def clear(self) -> None:
        self._callback = None

    @property
    def registered(self) -> bool:
        return self._callback is not None

    def fire(self, *args: Any) -> bool:
        callback = self._callback
        if callback is None:
            return False
        try:
            callback(*args)
        except Exception:
            logger.exception("Single-slot callback failed")
        return True


class LoggingNotifier:
    """Transient user notifications, written to the log."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self.log = log or logger

    def success(self, title: str, message: str = "") -> None:
        self.log.info("%s: %s", title, message)

    def failure(self, title: str, message: str = "") -> None:
        self.log.error("%s: %s", title, message)

    def info(self, title: str, message: str = "") -> None:
        self.log.info("%s: %s", title, message)


class RecordingNotifier(LoggingNotifier):
    """Notifier that also keeps every notification, for tests and the CLI."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        super().__init__(log)
        self.messages: List[tuple[str, str, str]] = []

    def success(self, title: str, message: str = "") -> None:
        self.messages.append(("success", title, message))
        super().success(title, message)

    def failure(self, title: str, message: str = "") -> None:
        self.messages.append(("failure", title, message))
        super().failure(title, message)

    def info(self, title: str, message: str = "") -> None:
        self.messages.append(("info", title, message))
        super().info(title, message)

    def kinds(self) -> List[str]:
        return [m[0] for m in self.messages]
