"""
Pytest configuration and shared fixtures for the Journey Atlas test suite.
"""
import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))
sys.path.insert(0, str(Path(__file__).parent))


@pytest.fixture(autouse=True)
def reset_global_state():
    """Reset global state before each test to ensure isolation."""
    from infrastructure.config import EngineConfig, set_config, reset_config
    from infrastructure.event_bus import reset_event_bus

    reset_event_bus()
    set_config(EngineConfig())

    yield

    reset_event_bus()
    reset_config()


@pytest.fixture
def event_bus():
    from infrastructure.event_bus import get_event_bus
    return get_event_bus()


@pytest.fixture
def recorded_events(event_bus):
    """Collect every published event, in order."""
    from infrastructure.event_bus import EventType

    events = []
    for event_type in EventType:
        event_bus.subscribe(event_type, events.append)
    return events


@pytest.fixture
def scenario_a():
    from factories import scenario_a_entities
    return scenario_a_entities()


@pytest.fixture
def scenario_a_graph(scenario_a):
    from factories import make_graph
    entities, links = scenario_a
    return make_graph(entities, links)
