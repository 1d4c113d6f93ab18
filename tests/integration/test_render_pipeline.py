"""
Integration tests for the full render pipeline driven through GraphSession.

Covers the reference scenarios end to end:
- A: selection tiers on a small cast
- B: characters individual, elements aggregated under the budget
- C: per-type groups under a selected owner, independent expansion
- D: performance mode flips exactly at the threshold
Plus raw-mode viewport culling and JSON/Arrow transport of a live frame.
"""
import io

import polars as pl
import pytest

from core.ontology import IntelligenceLayer, PerformanceMode
from infrastructure.config import EngineConfig, GraphConfig
from infrastructure.event_bus import EventType
from state.session import GraphSession
from viz.core import AggregateNode, SimpleNode, decode_frame, encode_frame, serialize_to_arrow
from viz.culling import Viewport
from factories import character, element, many_elements


@pytest.fixture
def session():
    s = GraphSession()
    yield s
    s.close()


def test_scenario_a_selection_tiers(session, scenario_a):
    entities, links = scenario_a
    session.load(entities, links)

    session.click_node("char-a")
    frame = session.frame

    tiers = frame.tiers()
    assert tiers["char-a"] == "selected"
    assert {k for k, v in tiers.items() if v == "connected"} == {"el-a1", "el-a2"}
    assert {k for k, v in tiers.items() if v == "secondary_connected"} == {"char-b"}
    assert {k for k, v in tiers.items() if v == "background"} == {"char-c", "el-free", "el-b1"}

    emphasis = {e.id: e.style.emphasis for e in frame.edges}
    assert emphasis["owner-el-a1"] == "focused"
    assert emphasis["owner-el-b1"] == "dim"


def test_scenario_b_budget(session):
    characters = [character(f"char-{i:02d}") for i in range(30)]
    elements = [element(f"el-{i:02d}", owner=f"char-{i % 30:02d}") for i in range(40)]

    frame = session.load(characters + elements)

    assert frame.node_count <= 50
    assert frame.aggregated is True
    simple = {n.id for n in frame.nodes if isinstance(n, SimpleNode)}
    assert {c.id for c in characters} <= simple
    assert sum(n.count for n in frame.aggregate_nodes()) == 40
    # 40 ownership relationships collapse onto character -> aggregate edges
    assert all(e.target_node_id.startswith("aggregated-") for e in frame.edges)


def test_scenario_c_independent_expansion(session):
    owner = character("char-a", "Alex")
    elements = (
        many_elements(20, "mem", owner="char-a", element_type="Memory Token")
        + many_elements(20, "prop", owner="char-a", element_type="Prop")
        + many_elements(20, "doc", owner="char-a", element_type="Document")
    )
    session.load([owner] + elements)
    session.click_node("char-a")

    groups = session.frame.aggregate_nodes()
    assert sorted(g.count for g in groups) == [20, 20, 20]
    assert all(g.visual_state.tier == "connected" for g in groups)

    session.click_node("aggregated-element-char-a:prop")

    remaining = session.frame.aggregate_nodes()
    assert len(remaining) == 2
    assert session.aggregator.expanded == frozenset({"aggregated-element-char-a:prop"})
    assert session.frame.node_count == 23
    assert session.frame.tiers()["prop-007"] == "connected"


def test_scenario_d_performance_threshold(session, recorded_events):
    session.performance.update_node_count(39)
    assert session.performance.mode == PerformanceMode.AUTO.value

    session.performance.update_node_count(40)
    assert session.performance.mode == PerformanceMode.PERFORMANCE.value

    modes = [e.payload["mode"] for e in recorded_events if e.type == EventType.PERFORMANCE_CHANGED]
    assert modes == ["auto", "performance"]


def test_large_frame_switches_performance_mode(session):
    session.load([character(f"c{i:02d}") for i in range(45)])

    assert session.frame.node_count == 45
    assert session.performance.mode == PerformanceMode.PERFORMANCE.value


def test_raw_mode_culls_to_viewport():
    config = EngineConfig(graph=GraphConfig(culling_threshold=100))
    session = GraphSession(config=config, aggregate=False)
    entities = many_elements(150)
    session.load(entities)
    session.set_positions({e.id: (i * 100.0, 0.0) for i, e in enumerate(entities)})

    session.set_viewport(Viewport(x=0, y=0, zoom=1.0, width=1000, height=500), force=True)

    assert session.frame.node_count == 13
    assert session.frame.culled_count == 137
    assert not any(isinstance(n, AggregateNode) for n in session.frame.nodes)

    session.set_viewport(Viewport(x=0, y=0, zoom=0.25, width=1000, height=500), force=True)

    assert all(n.visual_state.hide_label for n in session.frame.nodes)
    session.close()


def test_selection_history_drives_frames(session, scenario_a):
    entities, links = scenario_a
    session.load(entities, links)
    for entity_id in ("char-a", "char-b", "char-c", "el-a1", "el-a2", "el-b1", "el-free"):
        session.click_node(entity_id)

    assert session.selection.state.history_ids == ("char-b", "char-c", "el-a1", "el-a2", "el-b1")

    session.navigate_back()
    assert session.frame.selected_id == "el-b1"


def test_overlays_for_selection(session, scenario_a):
    entities, links = scenario_a
    session.load(entities, links)
    session.layers.set_active([IntelligenceLayer.GAPS])

    session.click_node("el-free")
    reports = session.overlays()

    assert [r.layer for r in reports] == ["gaps"]
    assert reports[0].has_issues


def test_live_frame_transport(session, scenario_a):
    entities, links = scenario_a
    session.load(entities, links)
    session.click_node("char-a")
    frame = session.frame

    assert decode_frame(encode_frame(frame)) == frame

    nodes_bytes, edges_bytes = serialize_to_arrow(frame)
    nodes_df = pl.read_ipc(io.BytesIO(nodes_bytes))
    assert nodes_df.filter(pl.col("tier") == "connected")["id"].sort().to_list() == ["el-a1", "el-a2"]
    assert pl.read_ipc(io.BytesIO(edges_bytes)).height == frame.edge_count
