"""Event names and the listener registry shared by guidance components."""

import inspect
from enum import Enum
from typing import Any, Callable, Optional

from .logger import Logger

Listener = Callable[[Enum, dict], Any]


class GuidanceEvent(str, Enum):
    # General guidance
    GUIDANCE_STARTED = "guidance-started"
    GUIDANCE_STOPPED = "guidance-stopped"
    GUIDANCE_ERROR = "guidance-error"
    POSITION_UPDATED = "position-updated"

    # Guided tour
    TOUR_STARTED = "tour-started"
    TOUR_STOPPED = "tour-stopped"
    TOUR_COMPLETED = "tour-completed"
    POI_APPROACHED = "poi-approached"
    POI_REACHED = "poi-reached"
    NEXT_POI_NAVIGATION = "next-poi-navigation"
    ROUTING_ERROR = "routing-error"

    # Back-on-track
    DEVIATION_DETECTED = "deviation-detected"
    BACK_ON_TRACK_STARTED = "back-on-track-started"
    BACK_ON_TRACK_COMPLETED = "back-on-track-completed"
    RETURNED_TO_MAIN_ROUTE = "returned-to-main-route"


class NavigationEvent(str, Enum):
    NAVIGATION_STARTED = "navigationStarted"
    POSITION_UPDATE = "positionUpdate"
    INSTRUCTION = "instruction"
    DESTINATION_REACHED = "destinationReached"
    NAVIGATION_STOPPED = "navigationStopped"


class EventEmitter:
    """Ordered listener registry.

    Listeners are called as ``listener(event, data)`` and may be plain
    functions or coroutine functions; coroutines are awaited in turn. An
    exception raised by one listener is logged and delivery continues with
    the next one. The listener list is snapshotted per emit, so listeners may
    subscribe or unsubscribe while an event is being delivered.
    """

    def __init__(self, name: str, logger: Optional[Logger] = None):
        self.name = name
        self.logger = logger or Logger()
        self._listeners: list[Listener] = []

    def add_listener(self, callback: Listener):
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: Listener):
        self._listeners = [cb for cb in self._listeners if cb != callback]

    def has_listener(self, callback: Listener) -> bool:
        return callback in self._listeners

    def __len__(self) -> int:
        return len(self._listeners)

    async def emit(self, event: Enum, data: Optional[dict] = None):
        payload = data or {}
        for listener in list(self._listeners):
            try:
                result = listener(event, dict(payload))
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.logger.log(f"{self.name} listener error", {
                    "event": event.value,
                    "error": repr(e),
                })
