from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar, cast
from weakref import WeakMethod

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Subscription:
    event_type: type[object]
    handler: Callable[[object], None]


TEvent = TypeVar("TEvent")


class EventBus:
    """Synchronous, in-process event bus for a single event loop.

    - Handlers run in the publisher's call stack, in subscription order.
    - A handler subscribed to a base class also receives its subclasses.
    - A failing handler is logged and never stops delivery to the others.
    """

    def __init__(self) -> None:
        self._subs: defaultdict[type[object], list[Callable[[object], None]]] = defaultdict(list)

    def subscribe(
        self, event_type: type[TEvent], handler: Callable[[TEvent], None]
    ) -> Subscription:
        def _wrapped(event: object) -> None:
            handler(cast(TEvent, event))

        self._subs[event_type].append(_wrapped)
        return Subscription(event_type=event_type, handler=_wrapped)

    def subscribe_weak(
        self, event_type: type[TEvent], handler: Callable[[TEvent], None]
    ) -> Subscription:
        """Subscribe a bound method without keeping its owner alive.

        Intended for Qt objects and views. Once the owner is garbage-collected
        the subscription removes itself on the next publish.
        """

        wm: WeakMethod | None
        try:
            wm = WeakMethod(cast(Any, handler))
        except TypeError:
            wm = None

        if wm is None:
            return self.subscribe(event_type, handler)

        sub: Subscription

        def _wrapped(event: object) -> None:
            alive = wm()
            if alive is None:
                self.unsubscribe(sub)
                return
            alive(cast(TEvent, event))

        sub = Subscription(event_type=event_type, handler=_wrapped)
        self._subs[event_type].append(_wrapped)
        return sub

    def unsubscribe(self, subscription: Subscription) -> None:
        handlers = self._subs.get(subscription.event_type)
        if not handlers:
            return
        try:
            handlers.remove(subscription.handler)
        except ValueError:
            return

    def publish(self, event: object) -> None:
        # Snapshot first: handlers may (un)subscribe while being called.
        handlers: list[Callable[[object], None]] = []
        for cls in type(event).__mro__:
            handlers.extend(self._subs.get(cls, ()))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Event handler failed",
                    extra={"event": type(event).__name__, "handler": repr(handler)},
                )

    def clear(self) -> None:
        """Remove all subscriptions."""
        self._subs.clear()
