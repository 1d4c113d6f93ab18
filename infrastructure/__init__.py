"""
ATLAS INFRASTRUCTURE - System-Level Modules

This package contains infrastructure components:
- config: TOML-backed engine configuration
- event_bus: Publisher-subscriber bus for state-slice notifications
"""

from infrastructure.config import (
    EngineConfig,
    GraphConfig,
    get_config,
    set_config,
    reset_config,
    load_engine_config,
)
from infrastructure.event_bus import (
    EventBus,
    EventType,
    StateEvent,
    get_event_bus,
    reset_event_bus,
)

__all__ = [
    "EngineConfig",
    "GraphConfig",
    "get_config",
    "set_config",
    "reset_config",
    "load_engine_config",
    "EventBus",
    "EventType",
    "StateEvent",
    "get_event_bus",
    "reset_event_bus",
]
