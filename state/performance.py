"""
ATLAS PERFORMANCE MODE - Auto Switching

Tracks how many nodes are visible and flips into performance mode once the
count reaches the threshold. A user override pins the mode; overriding
back to auto re-enables switching in both directions.
"""
import logging
from typing import Optional

import msgspec

from core.ontology import PerformanceMode
from infrastructure.config import PerformanceConfig
from infrastructure.event_bus import EventBus, EventType, get_event_bus

logger = logging.getLogger(__name__)


class PerformanceState(msgspec.Struct, kw_only=True, frozen=True):
    mode: str = PerformanceMode.AUTO.value
    user_override: Optional[str] = None
    visible_node_count: int = 0


class PerformanceModeController:
    """
    Usage:
        perf = PerformanceModeController()
        perf.update_node_count(39)   # auto
        perf.update_node_count(40)   # performance
        perf.set_mode("quality")     # pinned until set_mode("auto")
    """

    def __init__(self, node_threshold: int = 40, event_bus: Optional[EventBus] = None):
        self.node_threshold = node_threshold
        self._bus = event_bus
        self._state = PerformanceState()

    @classmethod
    def from_config(cls, config: PerformanceConfig, event_bus: Optional[EventBus] = None):
        return cls(node_threshold=config.node_threshold, event_bus=event_bus)

    @property
    def bus(self) -> EventBus:
        return self._bus if self._bus is not None else get_event_bus()

    @property
    def state(self) -> PerformanceState:
        return self._state

    @property
    def mode(self) -> str:
        return self._state.mode

    @property
    def user_override(self) -> Optional[str]:
        return self._state.user_override

    @property
    def visible_node_count(self) -> int:
        return self._state.visible_node_count

    def update_node_count(self, count: int) -> None:
        """
        Record the visible node count and apply auto switching.

        Without an override, auto only ever switches up to performance.
        With an explicit auto override it follows the threshold both ways.
        """
        if count < 0:
            raise ValueError(f"Node count cannot be negative: {count}")

        mode = self._state.mode
        override = self._state.user_override
        above = count >= self.node_threshold

        if override is None:
            if mode == PerformanceMode.AUTO.value and above:
                mode = PerformanceMode.PERFORMANCE.value
        elif override == PerformanceMode.AUTO.value:
            mode = PerformanceMode.PERFORMANCE.value if above else PerformanceMode.AUTO.value

        if mode != self._state.mode:
            logger.info(f"Performance mode {self._state.mode} -> {mode} at {count} nodes")

        self._set(PerformanceState(mode=mode, user_override=override, visible_node_count=count))

    def set_mode(self, mode: PerformanceMode) -> None:
        """Pin the mode as a user override."""
        value = PerformanceMode(mode).value
        self._set(msgspec.structs.replace(self._state, mode=value, user_override=value))

    def restore(self, mode: PerformanceMode, user_override: Optional[PerformanceMode] = None) -> None:
        """Restore persisted mode/override; the visible count starts again at 0."""
        self._set(PerformanceState(
            mode=PerformanceMode(mode).value,
            user_override=PerformanceMode(user_override).value if user_override is not None else None,
        ))

    def _set(self, state: PerformanceState) -> None:
        if state == self._state:
            return
        self._state = state
        self.bus.emit(EventType.PERFORMANCE_CHANGED, {
            "mode": state.mode,
            "user_override": state.user_override,
            "visible_node_count": state.visible_node_count,
        }, source="performance")
