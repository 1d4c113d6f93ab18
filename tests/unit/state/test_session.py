"""
Unit tests for state/session.py - GraphSession

Tests interaction wiring:
- Node clicks select entities or toggle aggregate expansion
- Pane click / escape semantics
- Recompute on selection events, performance fed from the frame
- Viewport throttling, layout collaborator, search, overlays
- Save / restore through a key-value store
"""
from core.ontology import IntelligenceLayer, PerformanceMode
from infrastructure.event_bus import EventBus, EventType
from state.search import Throttle
from state.session import GraphSession
from viz.culling import Viewport
from factories import character, element, many_elements


def loaded_session(scenario_a, **kwargs):
    entities, links = scenario_a
    session = GraphSession(**kwargs)
    session.load(entities, links)
    return session


def big_session():
    session = GraphSession()
    session.load([character("c1", "Alex")] + many_elements(60, owner="c1"))
    return session


# =============================================================================
# SELECTION
# =============================================================================

def test_load_renders_overview(scenario_a):
    session = loaded_session(scenario_a)

    assert session.frame.node_count == 7
    assert session.frame.selected_id is None
    assert session.performance.visible_node_count == 7
    assert len(session.entities) == 7


def test_click_entity_selects_and_recomputes(scenario_a):
    session = loaded_session(scenario_a)

    session.click_node("char-a")

    assert session.selection.state.selected_id == "char-a"
    assert session.frame.selected_id == "char-a"
    assert session.frame.tiers()["char-b"] == "secondary_connected"


def test_direct_controller_selection_recomputes(scenario_a):
    session = loaded_session(scenario_a)

    session.selection.select_entity(session.graph.get_entity("el-a1"))

    assert session.frame.selected_id == "el-a1"


def test_click_unknown_node_ignored(scenario_a, recorded_events):
    session = loaded_session(scenario_a)
    recorded_events.clear()

    session.click_node("ghost")
    session.select("ghost")

    assert session.selection.selected_entity is None
    assert recorded_events == []


def test_escape_goes_back_then_deselects(scenario_a):
    session = loaded_session(scenario_a)
    session.click_node("char-a")
    session.click_node("el-a1")

    session.escape()
    assert session.selection.state.selected_id == "char-a"

    session.escape()
    assert session.selection.selected_entity is None
    assert session.frame.selected_id is None


# =============================================================================
# AGGREGATES
# =============================================================================

def test_click_aggregate_expands_with_residual(recorded_events):
    session = big_session()
    group = session.frame.aggregate_nodes()[0]
    assert session.frame.node_count == 2

    session.click_node(group.id)

    assert session.frame.node_count == 50
    residual = session.frame.nodes[-1]
    assert residual.id == f"remaining-{group.id}"
    expansion = [e for e in recorded_events if e.type == EventType.EXPANSION_CHANGED]
    assert expansion[0].payload["expanded"] is True
    assert session.performance.mode == PerformanceMode.PERFORMANCE.value

    session.click_node(residual.id)

    assert session.frame.node_count == 2
    assert not session.aggregator.is_expanded(group.id)


def test_click_pane_collapses_and_deselects():
    session = big_session()
    session.click_node("c1")
    session.click_node(session.frame.aggregate_nodes()[0].id)

    session.click_pane()

    assert session.aggregator.expanded == frozenset()
    assert session.selection.selected_entity is None
    assert session.frame.node_count == 2


def test_escape_to_overview_collapses_groups():
    session = big_session()
    session.click_node("aggregated-element-ungrouped")
    session.click_node("c1")

    session.escape()

    assert session.selection.selected_entity is None
    assert session.aggregator.expanded == frozenset()
    assert session.frame.node_count == 2
    assert not any(n.is_residual for n in session.frame.aggregate_nodes())


def test_controller_deselect_collapses_groups():
    session = big_session()
    session.click_node("c1")
    session.click_node("aggregated-element-c1")
    assert session.frame.node_count == 50

    session.selection.select_entity(None)

    assert session.aggregator.expanded == frozenset()
    assert session.frame.node_count == 2


def test_view_mode_change_keeps_expansion():
    session = big_session()
    session.click_node("aggregated-element-ungrouped")

    session.selection.set_view_mode("intelligence_deep_dive")

    assert session.aggregator.is_expanded("aggregated-element-ungrouped")
    assert session.frame.node_count == 50


def test_entity_outside_snapshot_renders_all_background(scenario_a):
    session = loaded_session(scenario_a)

    session.select("el-gone")
    assert session.selection.selected_entity is None

    session.selection.select_entity(element("el-gone"))

    assert session.frame.selected_id == "el-gone"
    assert set(session.frame.tiers().values()) == {"background"}


# =============================================================================
# VIEWPORT / LAYOUT
# =============================================================================

class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_set_viewport_is_throttled(scenario_a):
    session = loaded_session(scenario_a)
    clock = FakeClock()
    session._viewport_throttle = Throttle.per_second(10, clock=clock)

    assert session.set_viewport(Viewport(x=5)) is True
    assert session.set_viewport(Viewport(x=6)) is False
    assert session.viewport.x == 6
    assert session.set_viewport(Viewport(x=7), force=True) is True
    clock.now = 1.0
    assert session.set_viewport(Viewport(x=8)) is True


def test_last_throttled_viewport_is_rendered_on_flush():
    """
    A pan burst whose final viewport was throttled.

    Verifies:
    - The throttled viewport is not rendered immediately
    - flush_viewport() renders it exactly once
    """
    entities = many_elements(150)
    session = GraphSession(aggregate=False)
    session.load(entities)
    session.set_positions({e.id: (i * 100.0, 0.0) for i, e in enumerate(entities)})
    clock = FakeClock()
    session._viewport_throttle = Throttle.per_second(10, clock=clock)

    assert session.set_viewport(Viewport(x=-100000, width=1000, height=500)) is True
    assert session.frame.node_count == 0
    clock.now = 0.05
    assert session.set_viewport(Viewport(x=0, width=1000, height=500)) is False
    assert session.frame.node_count == 0

    clock.now = 10.0
    assert session.flush_viewport() is True

    assert session.frame.node_count == 13
    assert session.frame.culled_count == 137
    assert session.flush_viewport() is False


def test_unrelated_recompute_clears_pending_viewport(scenario_a):
    session = loaded_session(scenario_a)
    clock = FakeClock()
    session._viewport_throttle = Throttle.per_second(10, clock=clock)
    session.set_viewport(Viewport(x=1))
    session.set_viewport(Viewport(x=2))

    session.click_node("char-a")

    assert session.flush_viewport() is False


def test_relayout_uses_layout_collaborator(scenario_a):
    def grid(frame):
        return {node.id: (i * 10, 0) for i, node in enumerate(frame.nodes)}

    session = loaded_session(scenario_a, layout=grid)

    frame = session.relayout()

    assert all(n.x is not None for n in frame.nodes)
    assert frame.nodes[1].x == 10.0


def test_relayout_without_collaborator_keeps_frame(scenario_a):
    session = loaded_session(scenario_a)

    assert session.relayout() is session.frame


# =============================================================================
# SEARCH / OVERLAYS
# =============================================================================

def test_search(scenario_a):
    session = loaded_session(scenario_a)

    assert [e.id for e in session.search("alex")] == ["char-a"]


def test_overlays_follow_selection_and_layers(scenario_a):
    session = loaded_session(scenario_a)
    assert session.overlays() == []

    session.click_node("char-a")
    session.toggle_layer("gaps")

    assert [r.layer for r in session.overlays()] == ["story", "social", "gaps"]


# =============================================================================
# PERSISTENCE
# =============================================================================

def test_save_and_restore(scenario_a):
    store = {}
    first = loaded_session(scenario_a, event_bus=EventBus())
    first.click_node("char-b")
    first.click_node("char-a")
    first.toggle_layer("economic")
    first.performance.set_mode(PerformanceMode.QUALITY)
    first.set_viewport(Viewport(x=-50, zoom=2.0), force=True)
    first.save(store)

    bus = EventBus()
    restored_events = []
    bus.subscribe(EventType.SNAPSHOT_RESTORED, restored_events.append)
    second = loaded_session(scenario_a, event_bus=bus)
    snapshot = second.restore(store)

    assert snapshot.selected_entity.id == "char-a"
    assert second.selection.state.selected_id == "char-a"
    assert second.selection.history == ()
    assert second.layers.active == (
        IntelligenceLayer.STORY, IntelligenceLayer.SOCIAL, IntelligenceLayer.ECONOMIC,
    )
    assert second.performance.mode == "quality"
    assert second.viewport == Viewport(x=-50, zoom=2.0)
    assert second.frame.selected_id == "char-a"
    assert restored_events[0].payload["selected_id"] == "char-a"


def test_restore_from_empty_store_gives_defaults(scenario_a):
    session = loaded_session(scenario_a)

    snapshot = session.restore({})

    assert snapshot.selected_entity is None
    assert session.layers.active == ()
    assert session.performance.mode == "auto"


def test_close_detaches_from_bus(scenario_a):
    bus = EventBus()
    session = loaded_session(scenario_a, event_bus=bus)

    session.close()

    assert bus.subscriber_count(EventType.SELECTION_CHANGED) == 0
