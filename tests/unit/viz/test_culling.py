"""
Unit tests for viz/culling.py - ViewportCuller
"""
import msgspec
import pytest

from viz.core import RenderEdge, SimpleNode
from viz.culling import Viewport, ViewportCuller, visible_range
from factories import element


def positioned(count, x_step=10.0, y=0.0):
    return [
        msgspec.structs.replace(SimpleNode.from_entity(element(f"el-{i:03d}")), x=i * x_step, y=y)
        for i in range(count)
    ]


def test_bounds_formula():
    culler = ViewportCuller(padding=200)
    box = culler.bounds(Viewport(x=-100, y=50, zoom=2.0, width=800, height=600))

    assert box.min_x == (100 - 200) / 2
    assert box.max_x == (100 + 800 + 200) / 2
    assert box.min_y == (-50 - 200) / 2
    assert box.max_y == (-50 + 600 + 200) / 2
    assert visible_range(Viewport(zoom=1.0, width=100, height=100), padding=0) == (0, 100, 0, 100)


def test_inactive_below_threshold():
    nodes = positioned(100, x_step=1000)
    culler = ViewportCuller(threshold=100)

    result = culler.cull(nodes, [], Viewport(width=100, height=100))

    assert result.nodes == nodes
    assert result.culled_count == 0


def test_culls_offscreen_nodes_and_dangling_edges():
    nodes = positioned(150, x_step=100.0)
    edges = [
        RenderEdge(id="in", source_node_id="el-000", target_node_id="el-001", kind="containment"),
        RenderEdge(id="out", source_node_id="el-000", target_node_id="el-149", kind="containment"),
    ]
    culler = ViewportCuller(threshold=100, padding=200)

    result = culler.cull(nodes, edges, Viewport(x=0, y=0, zoom=1.0, width=1000, height=500))

    # Visible x range [-200, 1200] -> el-000 .. el-012
    assert [n.id for n in result.nodes] == [f"el-{i:03d}" for i in range(13)]
    assert result.culled_count == 137
    assert [e.id for e in result.edges] == ["in"]
    assert result.labels_hidden is False


def test_unpositioned_nodes_are_kept():
    nodes = positioned(120, x_step=10_000.0)
    loose = SimpleNode.from_entity(element("loose"))

    result = ViewportCuller().cull(nodes + [loose], [], Viewport(width=100, height=100))

    assert "loose" in {n.id for n in result.nodes}


def test_low_zoom_hides_labels():
    nodes = positioned(120, x_step=1.0)

    result = ViewportCuller(label_zoom_threshold=0.5).cull(nodes, [], Viewport(zoom=0.4))

    assert result.labels_hidden is True
    assert all(n.visual_state.hide_label for n in result.nodes)
    assert not nodes[0].visual_state.hide_label


def test_no_viewport_passes_through():
    nodes = positioned(120)
    assert ViewportCuller().cull(nodes, [], None).nodes == nodes


def test_zero_zoom_rejected():
    with pytest.raises(ValueError):
        ViewportCuller().bounds(Viewport(zoom=0))
