"""
ATLAS VISUALIZATION CORE - The Renderer's Data Model

This module provides the data structures handed to the external renderer
and their serialization.

Architecture:
- SimpleNode / AggregateNode: Renderable vertices (one entity / a group)
- RenderEdge: Projected relationship between two rendered nodes
- RenderFrame: Everything the renderer needs for one recomputation
- FrameDelta: Id-based diff between two frames for incremental updates

Nodes and edges are recomputed, never mutated. Their `id` fields are the
only identity that survives a recomputation, which is what the renderer
diffs on.

Performance:
- Uses polars for Arrow IPC serialization of large frames
- Colors and visual tuples are computed here so the renderer stays dumb
"""
import io
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union

import msgspec
import polars as pl

from core.ontology import (
    EntityKind,
    RelationshipKind,
    Tier,
    EdgeEmphasis,
    ViewMode,
    OVERVIEW_VISUAL,
    OVERVIEW_EDGE_STYLE,
)
from core.schemas import Entity


# =============================================================================
# COLOR PALETTES (Consistent across views)
# =============================================================================

NODE_COLORS: Dict[str, str] = {
    EntityKind.CHARACTER.value: "#2196F3",       # Blue
    EntityKind.ELEMENT.value: "#FF9800",         # Orange
    EntityKind.PUZZLE.value: "#4CAF50",          # Green
    EntityKind.TIMELINE_EVENT.value: "#9C27B0",  # Purple
    "aggregate": "#2A2A2A",                      # Dark - grouped nodes
    "default": "#CCCCCC",
}

EDGE_COLORS: Dict[str, str] = {
    RelationshipKind.OWNERSHIP.value: "#10B981",         # Green
    RelationshipKind.CONTAINMENT.value: "#64748B",       # Slate
    RelationshipKind.CHARACTER_LINK.value: "#3B82F6",    # Blue
    RelationshipKind.PUZZLE_REQUIRES.value: "#EF4444",   # Red
    RelationshipKind.PUZZLE_REWARDS.value: "#F59E0B",    # Amber
    RelationshipKind.TIMELINE_REVEALS.value: "#8B5CF6",  # Violet
    "default": "#6C757D",
}


# =============================================================================
# VISUAL TUPLES
# =============================================================================

class VisualState(msgspec.Struct, kw_only=True, frozen=True):
    """Per-node presentation tuple derived from the node's tier."""
    tier: str = Tier.SELECTED.value
    opacity: float = OVERVIEW_VISUAL.opacity
    scale: float = OVERVIEW_VISUAL.scale
    z_index: int = OVERVIEW_VISUAL.z_index
    show_label: bool = True
    hide_label: bool = False            # Render hint set by viewport culling


class EdgeStyle(msgspec.Struct, kw_only=True, frozen=True):
    emphasis: str = EdgeEmphasis.RELEVANT.value
    opacity: float = OVERVIEW_EDGE_STYLE.opacity
    stroke_width: float = OVERVIEW_EDGE_STYLE.stroke_width


# =============================================================================
# RENDER NODES
# =============================================================================

class SimpleNode(msgspec.Struct, kw_only=True, frozen=True, tag="simple"):
    """A renderable node wrapping exactly one entity."""
    id: str                             # Same as the entity id
    kind: str                           # EntityKind.value
    label: str
    entity: Entity
    color: str = NODE_COLORS["default"]
    visual_state: VisualState = msgspec.field(default_factory=VisualState)
    x: Optional[float] = None           # Position from the layout collaborator
    y: Optional[float] = None

    @classmethod
    def from_entity(cls, entity: Entity) -> "SimpleNode":
        return cls(
            id=entity.id,
            kind=entity.kind,
            label=entity.display_name,
            entity=entity,
            color=NODE_COLORS.get(entity.kind, NODE_COLORS["default"]),
        )

    @property
    def member_ids(self) -> FrozenSet[str]:
        return frozenset((self.id,))

    @property
    def is_aggregate(self) -> bool:
        return False


class AggregateNode(msgspec.Struct, kw_only=True, frozen=True, tag="aggregate"):
    """
    A renderable node summarising a non-empty set of same-kind entities
    that share a grouping key.

    Residual aggregates stand in for the members of a partially expanded
    group that did not fit into the budget.
    """
    id: str
    kind: str                           # Kind of every member
    group_key: str
    label: str
    member_ids: FrozenSet[str]
    count: int
    owner_id: Optional[str] = None      # Character scoping the group, if any
    is_expanded: bool = False
    is_residual: bool = False
    color: str = NODE_COLORS["aggregate"]
    visual_state: VisualState = msgspec.field(default_factory=VisualState)
    x: Optional[float] = None
    y: Optional[float] = None

    @property
    def is_aggregate(self) -> bool:
        return True


RenderNode = Union[SimpleNode, AggregateNode]


# =============================================================================
# RENDER EDGES
# =============================================================================

class RenderEdge(msgspec.Struct, kw_only=True, frozen=True):
    """
    A relationship projected onto rendered nodes.

    Several relationships may collapse into one edge when their endpoints
    are aggregated; `weight` is then the sum of their weights.
    """
    id: str
    source_node_id: str
    target_node_id: str
    kind: str                           # RelationshipKind.value
    weight: float = 1.0
    relationship_ids: Tuple[str, ...] = ()
    color: str = EDGE_COLORS["default"]
    style: EdgeStyle = msgspec.field(default_factory=EdgeStyle)


# =============================================================================
# FRAMES
# =============================================================================

class RenderFrame(msgspec.Struct, kw_only=True, frozen=True):
    """
    The complete output of one recomputation.

    Contains no timestamps or sequence numbers: identical inputs produce
    identical (==) frames.
    """
    nodes: List[RenderNode]
    edges: List[RenderEdge]
    selected_id: Optional[str] = None
    view_mode: str = ViewMode.OVERVIEW.value
    total_entities: int = 0
    culled_count: int = 0
    aggregated: bool = False

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def edge_count(self) -> int:
        return len(self.edges)

    def node_ids(self) -> List[str]:
        return [n.id for n in self.nodes]

    def get_node(self, node_id: str) -> Optional[RenderNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def aggregate_nodes(self) -> List[AggregateNode]:
        return [n for n in self.nodes if isinstance(n, AggregateNode)]

    def simple_nodes(self) -> List[SimpleNode]:
        return [n for n in self.nodes if isinstance(n, SimpleNode)]

    def tiers(self) -> Dict[str, str]:
        """node id -> tier"""
        return {n.id: n.visual_state.tier for n in self.nodes}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to builtins for JSON transport."""
        return {
            "nodes": [msgspec.to_builtins(n) for n in self.nodes],
            "edges": [msgspec.to_builtins(e) for e in self.edges],
            "selected_id": self.selected_id,
            "view_mode": self.view_mode,
            "node_count": self.node_count,
            "edge_count": self.edge_count,
            "total_entities": self.total_entities,
            "culled_count": self.culled_count,
            "aggregated": self.aggregated,
        }


EMPTY_FRAME = RenderFrame(nodes=[], edges=[])


class FrameDelta(msgspec.Struct, kw_only=True):
    """
    Incremental update between two frames.

    Much smaller than a full frame when only the selection tier changed.
    """
    nodes_added: List[RenderNode] = msgspec.field(default_factory=list)
    nodes_updated: List[RenderNode] = msgspec.field(default_factory=list)
    nodes_removed: List[str] = msgspec.field(default_factory=list)    # ids only
    edges_added: List[RenderEdge] = msgspec.field(default_factory=list)
    edges_updated: List[RenderEdge] = msgspec.field(default_factory=list)
    edges_removed: List[str] = msgspec.field(default_factory=list)

    def is_empty(self) -> bool:
        return (
            not self.nodes_added and
            not self.nodes_updated and
            not self.nodes_removed and
            not self.edges_added and
            not self.edges_updated and
            not self.edges_removed
        )


def diff_frames(previous: RenderFrame, current: RenderFrame) -> FrameDelta:
    """Compute the id-based delta turning `previous` into `current`."""
    old_nodes = {n.id: n for n in previous.nodes}
    new_nodes = {n.id: n for n in current.nodes}
    old_edges = {e.id: e for e in previous.edges}
    new_edges = {e.id: e for e in current.edges}

    return FrameDelta(
        nodes_added=[n for nid, n in new_nodes.items() if nid not in old_nodes],
        nodes_updated=[
            n for nid, n in new_nodes.items()
            if nid in old_nodes and old_nodes[nid] != n
        ],
        nodes_removed=[nid for nid in old_nodes if nid not in new_nodes],
        edges_added=[e for eid, e in new_edges.items() if eid not in old_edges],
        edges_updated=[
            e for eid, e in new_edges.items()
            if eid in old_edges and old_edges[eid] != e
        ],
        edges_removed=[eid for eid in old_edges if eid not in new_edges],
    )


# =============================================================================
# SERIALIZATION
# =============================================================================

_frame_decoder = msgspec.json.Decoder(RenderFrame)


def encode_frame(frame: RenderFrame) -> bytes:
    return msgspec.json.encode(frame)


def decode_frame(data: bytes) -> RenderFrame:
    return _frame_decoder.decode(data)


def serialize_to_arrow(frame: RenderFrame) -> Tuple[bytes, bytes]:
    """
    Serialize a RenderFrame to Apache Arrow IPC format.

    Returns:
        Tuple of (nodes_arrow_bytes, edges_arrow_bytes)
    """
    nodes_df = pl.DataFrame({
        "id": [n.id for n in frame.nodes],
        "kind": [n.kind for n in frame.nodes],
        "label": [n.label for n in frame.nodes],
        "color": [n.color for n in frame.nodes],
        "is_aggregate": [n.is_aggregate for n in frame.nodes],
        "count": [len(n.member_ids) if n.is_aggregate else 1 for n in frame.nodes],
        "tier": [n.visual_state.tier for n in frame.nodes],
        "opacity": [n.visual_state.opacity for n in frame.nodes],
        "scale": [n.visual_state.scale for n in frame.nodes],
        "z_index": [n.visual_state.z_index for n in frame.nodes],
        "hide_label": [n.visual_state.hide_label for n in frame.nodes],
        "x": [n.x for n in frame.nodes],
        "y": [n.y for n in frame.nodes],
    }, schema={
        "id": pl.Utf8,
        "kind": pl.Utf8,
        "label": pl.Utf8,
        "color": pl.Utf8,
        "is_aggregate": pl.Boolean,
        "count": pl.Int64,
        "tier": pl.Utf8,
        "opacity": pl.Float64,
        "scale": pl.Float64,
        "z_index": pl.Int64,
        "hide_label": pl.Boolean,
        "x": pl.Float64,
        "y": pl.Float64,
    })

    edges_df = pl.DataFrame({
        "id": [e.id for e in frame.edges],
        "source": [e.source_node_id for e in frame.edges],
        "target": [e.target_node_id for e in frame.edges],
        "kind": [e.kind for e in frame.edges],
        "color": [e.color for e in frame.edges],
        "weight": [e.weight for e in frame.edges],
        "emphasis": [e.style.emphasis for e in frame.edges],
        "opacity": [e.style.opacity for e in frame.edges],
        "stroke_width": [e.style.stroke_width for e in frame.edges],
    }, schema={
        "id": pl.Utf8,
        "source": pl.Utf8,
        "target": pl.Utf8,
        "kind": pl.Utf8,
        "color": pl.Utf8,
        "weight": pl.Float64,
        "emphasis": pl.Utf8,
        "opacity": pl.Float64,
        "stroke_width": pl.Float64,
    })

    nodes_buffer = io.BytesIO()
    edges_buffer = io.BytesIO()

    nodes_df.write_ipc(nodes_buffer)
    edges_df.write_ipc(edges_buffer)

    return nodes_buffer.getvalue(), edges_buffer.getvalue()
