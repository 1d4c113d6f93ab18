"""
ATLAS RENDER PIPELINE - One Recomputation

    entity graph
        -> GraphAggregator          (node budget)
        -> edge projection          (relationships onto rendered nodes)
        -> ViewportCuller           (only above the culling threshold)
        -> VisualHierarchyCalculator(selection-relative tiers)
        -> RenderFrame

Every step is a pure function of its inputs; the session calls
compute_render_frame() again on each relevant state change instead of
patching the previous frame.
"""
import logging
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

import msgspec

from core.entity_graph import EntityGraph
from core.ontology import ViewMode
from core.schemas import Relationship
from infrastructure.config import GraphConfig
from viz.aggregation import GroupKeyFn, aggregate_entities
from viz.core import EDGE_COLORS, RenderEdge, RenderFrame, RenderNode
from viz.culling import Viewport, ViewportCuller
from viz.hierarchy import VisualHierarchyCalculator

logger = logging.getLogger(__name__)


Position = Tuple[float, float]


def project_edges(
    relationships: Iterable[Relationship],
    entity_to_node: Mapping[str, str],
) -> List[RenderEdge]:
    """
    Map relationships onto rendered node ids.

    Relationships with an endpoint that was not rendered are dropped, as are
    those whose endpoints land in the same node. Parallel projections of
    the same kind merge into one edge carrying the summed weight.
    """
    merged: Dict[Tuple[str, str, str], List[Relationship]] = {}
    dropped = 0

    for rel in relationships:
        source = entity_to_node.get(rel.source_id)
        target = entity_to_node.get(rel.target_id)
        if source is None or target is None:
            dropped += 1
            continue
        if source == target:
            continue
        if not rel.directed:
            source, target = sorted((source, target))
        merged.setdefault((rel.kind, source, target), []).append(rel)

    if dropped:
        logger.debug(f"Dropped {dropped} edges with unrendered endpoints")

    edges = []
    for (kind, source, target), rels in merged.items():
        if len(rels) == 1 and {source, target} == {rels[0].source_id, rels[0].target_id}:
            edge_id = rels[0].id
        else:
            edge_id = f"{kind}:{source}->{target}"
        edges.append(RenderEdge(
            id=edge_id,
            source_node_id=source,
            target_node_id=target,
            kind=kind,
            weight=sum(r.weight for r in rels),
            relationship_ids=tuple(r.id for r in rels),
            color=EDGE_COLORS.get(kind, EDGE_COLORS["default"]),
        ))
    return edges


def apply_positions(
    nodes: List[RenderNode],
    positions: Optional[Mapping[str, Position]],
) -> List[RenderNode]:
    """Attach layout positions (node id -> (x, y)); unknown ids stay unpositioned."""
    if not positions:
        return nodes
    placed = []
    for node in nodes:
        pos = positions.get(node.id)
        if pos is None:
            placed.append(node)
        else:
            placed.append(msgspec.structs.replace(node, x=float(pos[0]), y=float(pos[1])))
    return placed


def compute_render_frame(
    graph: EntityGraph,
    selected_id: Optional[str] = None,
    view_mode: str = ViewMode.OVERVIEW.value,
    expanded: FrozenSet[str] = frozenset(),
    viewport: Optional[Viewport] = None,
    positions: Optional[Mapping[str, Position]] = None,
    config: Optional[GraphConfig] = None,
    strategies: Optional[Dict[str, GroupKeyFn]] = None,
    aggregate: bool = True,
) -> RenderFrame:
    """
    Run the full pipeline for one snapshot and state.

    Args:
        graph: Entity graph for the current snapshot
        selected_id: Selected entity id (None = overview)
        view_mode: Carried through to the frame
        expanded: Group ids flagged for individual display
        viewport: Current viewport (culling is skipped when None)
        positions: Layout positions keyed by node id
        config: Budget/threshold settings (defaults when None)
        strategies: Grouping strategy overrides
        aggregate: False renders every entity individually (raw mode);
            viewport culling is then the only bound

    Returns:
        RenderFrame with styled nodes and edges
    """
    config = config or GraphConfig()
    budget = config.node_budget if aggregate else max(graph.entity_count, 1)

    aggregation = aggregate_entities(
        graph.iter_entities(),
        selected_id,
        expanded,
        node_budget=budget,
        min_group_size=config.min_group_size,
        strategies=strategies,
    )
    nodes = apply_positions(aggregation.nodes, positions)
    edges = project_edges(graph.relationships(), aggregation.entity_to_node)

    culled = ViewportCuller.from_config(config).cull(nodes, edges, viewport)

    calculator = VisualHierarchyCalculator(graph)
    styled_nodes, styled_edges = calculator.apply(culled.nodes, culled.edges, selected_id)

    return RenderFrame(
        nodes=styled_nodes,
        edges=styled_edges,
        selected_id=selected_id,
        view_mode=ViewMode(view_mode).value,
        total_entities=graph.entity_count,
        culled_count=culled.culled_count,
        aggregated=aggregation.aggregated,
    )
