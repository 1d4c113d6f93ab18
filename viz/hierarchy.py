"""
ATLAS VISUAL HIERARCHY - Selection-Relative Tiers

Partitions every rendered node into exactly one tier relative to the
current selection and attaches the tier's visual tuple:

    selected            the selection itself
    connected           direct structural neighbours (per-kind rule)
    secondary_connected characters linked to a selected character
    background          everything else

Per-kind connection rules live in CONNECTION_RULES (kind -> fn), so adding
an entity kind means adding one function, not a new branch.

Edges get a ternary emphasis: focused (touches the selection), relevant
(both endpoints non-background) or dim.
"""
import logging
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

import msgspec

from core.entity_graph import EntityGraph
from core.ontology import (
    EntityKind,
    Tier,
    EdgeEmphasis,
    TIER_VISUALS,
    OVERVIEW_VISUAL,
    EMPHASIS_STYLES,
    OVERVIEW_EDGE_STYLE,
)
from core.schemas import Entity
from viz.core import (
    AggregateNode,
    EdgeStyle,
    RenderEdge,
    RenderNode,
    VisualState,
)

logger = logging.getLogger(__name__)


# (connected ids, secondary ids)
Connections = Tuple[Set[str], Set[str]]
ConnectionRule = Callable[[Entity, EntityGraph], Connections]


# =============================================================================
# PER-KIND CONNECTION RULES
# =============================================================================

def _character_connections(selected: Entity, graph: EntityGraph) -> Connections:
    owned = [e.id for e in graph.owned_by(selected.id)]
    connected = set(owned)
    # One hop of containment from an owned element
    for element_id in owned:
        connected.update(e.id for e in graph.contents_of(element_id))
    secondary = {c.id for c in graph.linked_characters(selected.id)}
    return connected, secondary - connected


def _element_connections(selected: Entity, graph: EntityGraph) -> Connections:
    connected: Set[str] = set()
    owner = graph.owner_of(selected.id)
    if owner is not None:
        connected.add(owner.id)
    container = graph.container_of(selected.id)
    if container is not None:
        connected.add(container.id)
    connected.update(e.id for e in graph.contents_of(selected.id))
    return connected, set()


def _puzzle_connections(selected: Entity, graph: EntityGraph) -> Connections:
    connected = {e.id for e in graph.required_elements(selected.id)}
    connected.update(e.id for e in graph.reward_elements(selected.id))
    return connected, set()


def _timeline_connections(selected: Entity, graph: EntityGraph) -> Connections:
    return {e.id for e in graph.revealing_elements(selected.id)}, set()


CONNECTION_RULES: Dict[str, ConnectionRule] = {
    EntityKind.CHARACTER.value: _character_connections,
    EntityKind.ELEMENT.value: _element_connections,
    EntityKind.PUZZLE.value: _puzzle_connections,
    EntityKind.TIMELINE_EVENT.value: _timeline_connections,
}


# =============================================================================
# VISUAL TUPLES
# =============================================================================

def visual_state_for(tier: Tier) -> VisualState:
    visual = TIER_VISUALS[Tier(tier).value]
    return VisualState(
        tier=Tier(tier).value,
        opacity=visual.opacity,
        scale=visual.scale,
        z_index=visual.z_index,
        show_label=visual.show_label,
    )


OVERVIEW_STATE = VisualState(
    tier=Tier.SELECTED.value,
    opacity=OVERVIEW_VISUAL.opacity,
    scale=OVERVIEW_VISUAL.scale,
    z_index=OVERVIEW_VISUAL.z_index,
    show_label=OVERVIEW_VISUAL.show_label,
)

OVERVIEW_EDGE = EdgeStyle(
    emphasis=EdgeEmphasis.RELEVANT.value,
    opacity=OVERVIEW_EDGE_STYLE.opacity,
    stroke_width=OVERVIEW_EDGE_STYLE.stroke_width,
)


def _restyle(node: RenderNode, state: VisualState) -> RenderNode:
    # hide_label is owned by the culler
    if node.visual_state.hide_label:
        state = msgspec.structs.replace(state, hide_label=True)
    return msgspec.structs.replace(node, visual_state=state)


def edge_style_for(emphasis: EdgeEmphasis) -> EdgeStyle:
    style = EMPHASIS_STYLES[EdgeEmphasis(emphasis).value]
    return EdgeStyle(
        emphasis=EdgeEmphasis(emphasis).value,
        opacity=style.opacity,
        stroke_width=style.stroke_width,
    )


# =============================================================================
# CALCULATOR
# =============================================================================

class VisualHierarchyCalculator:
    """
    Classifies nodes and edges relative to a selection.

    Usage:
        calc = VisualHierarchyCalculator(graph)
        tiers = calc.classify("char-alex")        # entity id -> Tier
        nodes, edges = calc.apply(nodes, edges, "char-alex")

    Stateless apart from the graph reference: classify() is recomputed on
    every selection change and never cached.
    """

    def __init__(
        self,
        graph: EntityGraph,
        rules: Optional[Dict[str, ConnectionRule]] = None,
    ):
        self.graph = graph
        self.rules = dict(CONNECTION_RULES if rules is None else rules)

    def classify(self, selected_id: Optional[str]) -> Dict[str, Tier]:
        """
        Tier for every entity in the graph.

        An empty dict means "no selection" (overview). An id that is not in
        the graph classifies everything as background.
        """
        if selected_id is None:
            return {}

        tiers = {e.id: Tier.BACKGROUND for e in self.graph.iter_entities()}
        selected = self.graph.find_entity(selected_id)
        if selected is None:
            logger.debug(f"Selection {selected_id} not in snapshot, all background")
            return tiers

        rule = self.rules.get(selected.kind)
        connected, secondary = rule(selected, self.graph) if rule else (set(), set())

        for entity_id in secondary:
            if entity_id in tiers:
                tiers[entity_id] = Tier.SECONDARY_CONNECTED
        for entity_id in connected:
            if entity_id in tiers:
                tiers[entity_id] = Tier.CONNECTED
        tiers[selected.id] = Tier.SELECTED
        return tiers

    def aggregate_tier(self, node: AggregateNode, tiers: Dict[str, Tier]) -> Tier:
        member_tiers = {tiers.get(m, Tier.BACKGROUND) for m in node.member_ids}
        if Tier.SELECTED in member_tiers or Tier.CONNECTED in member_tiers:
            return Tier.CONNECTED
        if Tier.SECONDARY_CONNECTED in member_tiers:
            return Tier.SECONDARY_CONNECTED
        if node.owner_id is not None and tiers.get(node.owner_id) == Tier.SECONDARY_CONNECTED:
            return Tier.SECONDARY_CONNECTED
        return Tier.BACKGROUND

    def node_tier(self, node: RenderNode, tiers: Dict[str, Tier]) -> Tier:
        if isinstance(node, AggregateNode):
            return self.aggregate_tier(node, tiers)
        return tiers.get(node.id, Tier.BACKGROUND)

    def apply(
        self,
        nodes: Iterable[RenderNode],
        edges: Iterable[RenderEdge],
        selected_id: Optional[str],
    ) -> Tuple[List[RenderNode], List[RenderEdge]]:
        """
        Return new nodes/edges carrying tier visuals and edge styles.

        Inputs are not modified. Every node ends up in exactly one tier.
        """
        nodes = list(nodes)
        edges = list(edges)

        if selected_id is None:
            return (
                [_restyle(n, OVERVIEW_STATE) for n in nodes],
                [msgspec.structs.replace(e, style=OVERVIEW_EDGE) for e in edges],
            )

        tiers = self.classify(selected_id)
        node_tiers: Dict[str, Tier] = {}
        styled_nodes: List[RenderNode] = []
        for node in nodes:
            tier = self.node_tier(node, tiers)
            node_tiers[node.id] = tier
            styled_nodes.append(_restyle(node, visual_state_for(tier)))

        styled_edges = [
            msgspec.structs.replace(e, style=edge_style_for(self.edge_emphasis(e, node_tiers, selected_id)))
            for e in edges
        ]
        return styled_nodes, styled_edges

    @staticmethod
    def edge_emphasis(
        edge: RenderEdge,
        node_tiers: Dict[str, Tier],
        selected_id: Optional[str],
    ) -> EdgeEmphasis:
        if selected_id is not None and selected_id in (edge.source_node_id, edge.target_node_id):
            return EdgeEmphasis.FOCUSED
        source_tier = node_tiers.get(edge.source_node_id, Tier.BACKGROUND)
        target_tier = node_tiers.get(edge.target_node_id, Tier.BACKGROUND)
        if source_tier != Tier.BACKGROUND and target_tier != Tier.BACKGROUND:
            return EdgeEmphasis.RELEVANT
        return EdgeEmphasis.DIM


def partition(tiers: Dict[str, Tier]) -> Dict[Tier, FrozenSet[str]]:
    """Invert an id -> tier map into tier -> ids (every tier present)."""
    buckets: Dict[Tier, Set[str]] = {tier: set() for tier in Tier}
    for entity_id, tier in tiers.items():
        buckets[tier].add(entity_id)
    return {tier: frozenset(ids) for tier, ids in buckets.items()}
