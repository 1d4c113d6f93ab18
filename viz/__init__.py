"""
ATLAS VISUALIZATION - The Render Pipeline

This package turns an entity snapshot plus selection state into the
nodes and edges an external renderer draws:
- core: Render data model and serialization (JSON, Arrow IPC)
- hierarchy: Selection-relative tiers and edge emphasis
- aggregation: Node budget via grouped AggregateNodes
- culling: Viewport visibility filter
- pipeline: compute_render_frame() tying the steps together
"""

from viz.core import (
    VisualState,
    EdgeStyle,
    SimpleNode,
    AggregateNode,
    RenderNode,
    RenderEdge,
    RenderFrame,
    FrameDelta,
    diff_frames,
    encode_frame,
    decode_frame,
    serialize_to_arrow,
)
from viz.aggregation import GraphAggregator, AggregationResult, aggregate_entities
from viz.culling import Viewport, ViewportCuller
from viz.hierarchy import VisualHierarchyCalculator
from viz.pipeline import compute_render_frame, project_edges
