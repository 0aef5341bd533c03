"""
Event Bus
=========

Delivers routing notifications to external listeners.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Union

from switchyard.models.events import RoutingEvent, RoutingEventDetail

logger = logging.getLogger(__name__)

Listener = Callable[[RoutingEvent, Optional[RoutingEventDetail]], Any]


class EventBus:
    """
    Synchronous pub/sub for RoutingEvents.

    A failing listener is logged and skipped; it never aborts a pass.
    """

    def __init__(self):
        self._listeners: Dict[RoutingEvent, List[Listener]] = defaultdict(list)
        self._emitted: Dict[RoutingEvent, int] = defaultdict(int)

    def subscribe(self, event: Union[RoutingEvent, str], listener: Listener) -> None:
        self._listeners[RoutingEvent(event)].append(listener)

    def unsubscribe(self, event: Union[RoutingEvent, str], listener: Listener) -> bool:
        listeners = self._listeners.get(RoutingEvent(event), [])
        if listener in listeners:
            listeners.remove(listener)
            return True
        return False

    def emit(self, event: RoutingEvent, detail: Optional[RoutingEventDetail] = None) -> None:
        self._emitted[event] += 1
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(event, detail)
            except Exception:
                logger.exception(f"Listener for {event.value} failed")

    def emitted_count(self, event: RoutingEvent) -> int:
        return self._emitted[event]
