"""Lightweight publish/subscribe bus decoupling the engine from observers."""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from typing import Callable, DefaultDict, List, Union

from core.events import EventBase, EventEnvelope, EventType

LOGGER = logging.getLogger(__name__)

Subscriber = Callable[[EventEnvelope], None]


def _type_key(event_type: Union[EventType, str]) -> str:
    return event_type.value if isinstance(event_type, EventType) else str(event_type)


class EventBus:
    """Synchronous fan-out; a failing handler never stops the others."""

    def __init__(self) -> None:
        self._subscribers: DefaultDict[str, List[Subscriber]] = defaultdict(list)

    def subscribe(self, event_type: Union[EventType, str], handler: Subscriber) -> None:
        self._subscribers[_type_key(event_type)].append(handler)

    def publish(self, envelope: EventEnvelope) -> None:
        for handler in list(self._subscribers.get(envelope.event.event_type.value, [])):
            try:
                handler(envelope)
            except Exception:
                LOGGER.exception("Subscriber %r failed on %s", handler, envelope.event.event_type.value)

    def emit(self, event: EventBase) -> None:
        """Wrap ``event`` in an envelope stamped with wall-clock time and publish it."""

        self.publish(EventEnvelope(event=event, ts=time.time()))


__all__ = ["EventBus", "Subscriber"]
