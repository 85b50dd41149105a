"""Observer protocol and EventBus for typed synchronous event dispatch.

Observers react to synchronization events (statistics, progress output,
logging) without touching engine state.

- Delivery is synchronous: ``emit`` returns after every matching observer
  has run. An observer that needs non-blocking behaviour manages its own
  queue.
- Subscription is typed: an observer subscribes to a specific ``Event``
  subclass, or to ``Event`` itself to receive everything.
- Dispatch is fault-tolerant: an observer that raises is logged and the
  remaining observers still receive the event.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Protocol, runtime_checkable

from rigsync.engine.events import Event

logger = logging.getLogger(__name__)


@runtime_checkable
class Observer(Protocol):
    """Structural protocol for engine event observers.

    Example::

        class PrintObserver:
            def on_event(self, event: Event) -> None:
                print(type(event).__name__, event)

        bus = EventBus()
        bus.subscribe(BundleCompleted, PrintObserver())
    """

    def on_event(self, event: Event) -> None:
        """Receive a dispatched event."""
        ...


class EventBus:
    """Typed, synchronous event dispatcher.

    An event is delivered to observers subscribed to its exact type first,
    then to observers of each ancestor type in MRO order. An observer
    subscribed to several matching types receives the event once.

    Subscriptions may change from any thread; dispatch iterates over a
    snapshot.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[type[Event], list[Observer]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, event_type: type[Event], observer: Observer) -> None:
        """Register *observer* to receive events of *event_type*."""
        with self._lock:
            self._subscriptions[event_type].append(observer)

    def unsubscribe(self, event_type: type[Event], observer: Observer) -> None:
        """Remove *observer* from *event_type*; no-op if not subscribed."""
        with self._lock:
            observers = self._subscriptions.get(event_type)
            if observers and observer in observers:
                observers.remove(observer)

    def emit(self, event: Event) -> None:
        """Deliver *event* synchronously to all matching observers.

        Args:
            event: The event to dispatch.
        """
        with self._lock:
            snapshot = {k: list(v) for k, v in self._subscriptions.items()}

        seen: set[int] = set()
        for ancestor in type(event).__mro__:
            if not (isinstance(ancestor, type) and issubclass(ancestor, Event)):
                continue
            for obs in snapshot.get(ancestor, []):
                if id(obs) in seen:
                    continue
                seen.add(id(obs))
                try:
                    obs.on_event(event)
                except Exception:
                    logger.warning(
                        "Observer %r raised an exception on event %r; "
                        "continuing delivery to remaining observers.",
                        obs,
                        event,
                        exc_info=True,
                    )


__all__ = ["EventBus", "Observer"]
