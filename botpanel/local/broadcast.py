import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Union

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class LogEvent:
    """A single tagged line of bot output or a lifecycle notice."""
    unit: str
    text: str
    is_error: bool = False


class _RegistryChanged:
    """Payload-less signal telling observers to re-fetch the bot list."""

    def __repr__(self) -> str:
        return "REGISTRY_CHANGED"


REGISTRY_CHANGED = _RegistryChanged()

Event = Union[LogEvent, _RegistryChanged]
Observer = Callable[[Event], None]


class Subscription:
    """Handle returned by `LogBroadcaster.subscribe`; closing it unsubscribes."""

    def __init__(self, broadcaster: "LogBroadcaster", callback: Observer) -> None:
        self._broadcaster = broadcaster
        self.callback = callback

    def close(self) -> None:
        self._broadcaster.unsubscribe(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class LogBroadcaster:
    """
    Fan-out channel delivering bot output and lifecycle events to every
    currently connected observer.

    There is no history: an observer only sees events published after it
    subscribed. Observer callbacks run on the publishing thread and must hand
    the event off without blocking. A failing observer is logged and skipped;
    `publish` never raises.
    """

    def __init__(self) -> None:
        self._subscribers: List[Subscription] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Observer) -> Subscription:
        subscription = Subscription(self, callback)
        with self._lock:
            self._subscribers.append(subscription)
        log.debug(f"Observer subscribed ({len(self._subscribers)} connected).")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            try:
                self._subscribers.remove(subscription)
            except ValueError:
                return
        log.debug(f"Observer unsubscribed ({len(self._subscribers)} connected).")

    @property
    def observer_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def _deliver(self, event: Event) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for subscription in subscribers:
            try:
                subscription.callback(event)
            except Exception as e:
                log.warning(f"Observer failed to accept {event!r}: {e}")

    def publish(self, unit: str, text: str, is_error: bool = False) -> None:
        """
        Delivers a tagged line to all observers and mirrors it to the `proc.<unit>` logger.

        :param unit: The bot the line belongs to.
        :param text: The line itself, without trailing newline.
        :param is_error: True for stderr output and failure notices.
        """
        logging.getLogger(f"proc.{unit}").log(
            logging.ERROR if is_error else logging.INFO, f"[{unit}]: {text}"
        )
        self._deliver(LogEvent(unit, text, is_error))

    def notify_registry_changed(self) -> None:
        self._deliver(REGISTRY_CHANGED)
