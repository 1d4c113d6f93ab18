"""
ATLAS EVENT BUS - State Slice Notifications

Controllers own their slice and announce every mutation here; the render
session (and any UI binding) subscribes instead of polling.

    SelectionController  --SELECTION_CHANGED / VIEW_MODE_CHANGED-->
    IntelligenceLayerArbiter --LAYERS_CHANGED-->           EventBus --> subscribers
    PerformanceModeController --PERFORMANCE_CHANGED-->
    GraphSession --EXPANSION_CHANGED / FRAME_RECOMPUTED / SNAPSHOT_RESTORED-->

Delivery is synchronous and in subscription order. A failing handler is
logged and skipped; it never aborts the mutation that published the event.

Usage:
    from infrastructure.event_bus import get_event_bus, EventType

    bus = get_event_bus()
    bus.subscribe(EventType.LAYERS_CHANGED, lambda e: print(e.payload["active"]))
    bus.emit(EventType.LAYERS_CHANGED, {"active": ["story"]}, source="layers")
"""
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import msgspec

logger = logging.getLogger("atlas.event_bus")


class EventType(str, Enum):
    SELECTION_CHANGED = "selection_changed"
    VIEW_MODE_CHANGED = "view_mode_changed"
    LAYERS_CHANGED = "layers_changed"
    PERFORMANCE_CHANGED = "performance_changed"
    EXPANSION_CHANGED = "expansion_changed"
    FRAME_RECOMPUTED = "frame_recomputed"
    SNAPSHOT_RESTORED = "snapshot_restored"


class StateEvent(msgspec.Struct, kw_only=True, frozen=True):
    type: EventType
    payload: Dict[str, Any]
    timestamp: float
    source: str                         # "selection", "layers", "performance", "session"


Handler = Callable[[StateEvent], None]


class EventBus:
    """
    Per-event-type handler lists.

    Handlers may subscribe or unsubscribe while an event is being delivered;
    the change applies from the next publish.
    """

    def __init__(self):
        self._handlers: Dict[EventType, List[Handler]] = {}

    def subscribe(self, event_type: EventType, handler: Handler) -> None:
        handlers = self._handlers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)

    def unsubscribe(self, event_type: EventType, handler: Handler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event: StateEvent) -> None:
        for handler in tuple(self._handlers.get(event.type, ())):
            try:
                handler(event)
            except Exception:
                logger.exception(f"Handler {handler!r} failed on {event.type.value} from {event.source}")

    def emit(self, event_type: EventType, payload: Dict[str, Any], source: str) -> None:
        """Build a timestamped StateEvent and publish it."""
        self.publish(StateEvent(
            type=event_type,
            payload=payload,
            timestamp=time.time(),
            source=source,
        ))

    def subscriber_count(self, event_type: Optional[EventType] = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, ()))
        return sum(len(handlers) for handlers in self._handlers.values())

    def clear(self) -> None:
        self._handlers.clear()


# =============================================================================
# GLOBAL INSTANCE
# =============================================================================

_event_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Process-wide bus; controllers fall back to it when none is injected."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


def reset_event_bus() -> None:
    """Drop the global bus and its subscriptions (tests)."""
    global _event_bus
    _event_bus = None
