"""
ATLAS GRAPH AGGREGATOR - The Node Budget

Keeps the number of rendered nodes at or under a hard budget by collapsing
groups of budget-managed entities into AggregateNodes.

Policy:
- Always-visible kinds (characters) and the selection are individual.
- Everything else is partitioned by (kind, group key). The group key comes
  from a pluggable strategy map: kind -> fn(entity, selected) -> GroupSpec.
- When the snapshot does not fit, every group of min_group_size or more
  collapses; smaller groups stay individual unless they are needed to fit,
  in which case they collapse largest first.
- Expanding a group turns it back into individual nodes. If it does not
  fit, the first N members (by id) are shown plus a residual aggregate
  "remaining-{group}" for the rest.

aggregate_entities() is a pure function of (entities, selection, expanded
set, budget settings). GraphAggregator only adds the expansion state.
"""
import logging
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

import msgspec

from core.ontology import (
    EntityKind,
    ELEMENT_TYPE_PLURALS,
    is_always_visible,
    kind_label,
)
from core.schemas import Entity, slugify
from infrastructure.config import GraphConfig
from viz.core import AggregateNode, RenderNode, SimpleNode

logger = logging.getLogger(__name__)


AGGREGATE_PREFIX = "aggregated"
RESIDUAL_PREFIX = "remaining-"
OVERFLOW_GROUP = "overflow"
MIXED_KIND = "mixed"
UNGROUPED = "ungrouped"


# =============================================================================
# GROUPING STRATEGIES
# =============================================================================

class GroupSpec(msgspec.Struct, frozen=True):
    """Where a budget-managed entity belongs and how its group is labelled."""
    key: str
    noun: str                           # Plural noun used in the label
    owner_id: Optional[str] = None


GroupKeyFn = Callable[[Entity, Optional[Entity]], GroupSpec]


def _subtype_plural(element_type: str) -> str:
    return ELEMENT_TYPE_PLURALS.get(slugify(element_type), f"{element_type}s")


def group_element(entity: Entity, selected: Optional[Entity]) -> GroupSpec:
    """
    Elements group by sub-type. Elements owned by a selected character are
    scoped to that character ("Alex's Memory Tokens", "Alex's Elements").
    """
    element_type = entity.element_type
    owner_scoped = (
        selected is not None and
        selected.kind == EntityKind.CHARACTER.value and
        entity.owner_id == selected.id
    )

    if owner_scoped:
        owner = selected.display_name
        if element_type:
            return GroupSpec(
                key=f"{selected.id}:{slugify(element_type)}",
                noun=f"{owner}'s {_subtype_plural(element_type)}",
                owner_id=selected.id,
            )
        return GroupSpec(key=selected.id, noun=f"{owner}'s Elements", owner_id=selected.id)

    if element_type:
        return GroupSpec(key=slugify(element_type), noun=_subtype_plural(element_type))

    return GroupSpec(key=UNGROUPED, noun=kind_label(entity.kind, plural=True))


def group_by_kind(entity: Entity, selected: Optional[Entity]) -> GroupSpec:
    """One group per kind."""
    return GroupSpec(key=UNGROUPED, noun=kind_label(entity.kind, plural=True))


DEFAULT_STRATEGIES: Dict[str, GroupKeyFn] = {
    EntityKind.ELEMENT.value: group_element,
    EntityKind.PUZZLE.value: group_by_kind,
    EntityKind.TIMELINE_EVENT.value: group_by_kind,
}


def group_id_for(kind: str, key: str) -> str:
    return f"{AGGREGATE_PREFIX}-{kind}-{key}"


def residual_id_for(group_id: str) -> str:
    return f"{RESIDUAL_PREFIX}{group_id}"


def group_id_from_node_id(node_id: str) -> str:
    """A residual node id maps back to the group it belongs to."""
    if node_id.startswith(RESIDUAL_PREFIX):
        return node_id[len(RESIDUAL_PREFIX):]
    return node_id


def is_aggregate_id(node_id: str) -> bool:
    return group_id_from_node_id(node_id).startswith(f"{AGGREGATE_PREFIX}-")


# =============================================================================
# RESULT TYPES
# =============================================================================

class EntityGroup(msgspec.Struct, kw_only=True, frozen=True):
    """All budget-managed entities sharing a (kind, key)."""
    id: str
    kind: str
    key: str
    noun: str
    member_ids: Tuple[str, ...]         # Sorted by id
    owner_id: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.member_ids)


class AggregationResult(msgspec.Struct, kw_only=True, frozen=True):
    nodes: List[RenderNode]
    entity_to_node: Dict[str, str]      # entity id -> rendered node id
    groups: Dict[str, EntityGroup]      # group id -> group
    aggregated: bool = False

    @property
    def node_count(self) -> int:
        return len(self.nodes)


# =============================================================================
# PURE AGGREGATION
# =============================================================================

def build_groups(
    entities: Iterable[Entity],
    selected: Optional[Entity],
    strategies: Dict[str, GroupKeyFn],
) -> Dict[str, EntityGroup]:
    """Partition budget-managed entities into groups, keyed and ordered by group id."""
    members: Dict[str, List[str]] = {}
    specs: Dict[str, Tuple[str, GroupSpec]] = {}

    for entity in entities:
        strategy = strategies.get(entity.kind, group_by_kind)
        spec = strategy(entity, selected)
        gid = group_id_for(entity.kind, spec.key)
        members.setdefault(gid, []).append(entity.id)
        specs.setdefault(gid, (entity.kind, spec))

    groups = {}
    for gid in sorted(members):
        kind, spec = specs[gid]
        groups[gid] = EntityGroup(
            id=gid,
            kind=kind,
            key=spec.key,
            noun=spec.noun,
            member_ids=tuple(sorted(members[gid])),
            owner_id=spec.owner_id,
        )
    return groups


def _aggregate_node(group: EntityGroup) -> AggregateNode:
    return AggregateNode(
        id=group.id,
        kind=group.kind,
        group_key=group.key,
        label=f"{group.size} {group.noun}",
        member_ids=frozenset(group.member_ids),
        count=group.size,
        owner_id=group.owner_id,
    )


def _residual_node(group: EntityGroup, shown: int) -> AggregateNode:
    hidden = group.member_ids[shown:]
    return AggregateNode(
        id=residual_id_for(group.id),
        kind=group.kind,
        group_key=group.key,
        label=f"Showing {shown} of {group.size} {group.noun}",
        member_ids=frozenset(hidden),
        count=len(hidden),
        owner_id=group.owner_id,
        is_expanded=True,
        is_residual=True,
    )


def _overflow_node(hidden: List[Entity], shown: int, total: int) -> AggregateNode:
    kinds = {e.kind for e in hidden}
    kind = kinds.pop() if len(kinds) == 1 else MIXED_KIND
    noun = kind_label(kind, plural=True) if kind != MIXED_KIND else "Entities"
    return AggregateNode(
        id=residual_id_for(OVERFLOW_GROUP),
        kind=kind,
        group_key=OVERFLOW_GROUP,
        label=f"Showing {shown} of {total} {noun}",
        member_ids=frozenset(e.id for e in hidden),
        count=len(hidden),
        is_residual=True,
    )


def aggregate_entities(
    entities: Iterable[Entity],
    selected_id: Optional[str] = None,
    expanded: FrozenSet[str] = frozenset(),
    *,
    node_budget: int = 50,
    min_group_size: int = 3,
    strategies: Optional[Dict[str, GroupKeyFn]] = None,
) -> AggregationResult:
    """
    Map an entity snapshot onto at most `node_budget` render nodes.

    Args:
        entities: Snapshot (any order; duplicates by id are ignored)
        selected_id: Current selection, rendered individually
        expanded: Group ids the user asked to see individually
        node_budget: Hard cap on emitted nodes
        min_group_size: Groups smaller than this stay individual when they fit
        strategies: kind -> group key function (defaults to DEFAULT_STRATEGIES)

    Returns:
        AggregationResult whose node count never exceeds node_budget
    """
    if node_budget < 1:
        raise ValueError(f"node_budget must be positive, got {node_budget}")
    strategies = DEFAULT_STRATEGIES if strategies is None else strategies

    snapshot: Dict[str, Entity] = {}
    for entity in entities:
        snapshot.setdefault(entity.id, entity)
    ordered = list(snapshot.values())

    selected = snapshot.get(selected_id) if selected_id is not None else None
    fixed = [
        e for e in ordered
        if is_always_visible(e.kind) or (selected is not None and e.id == selected.id)
    ]
    fixed_ids = {e.id for e in fixed}
    managed = [e for e in ordered if e.id not in fixed_ids]
    groups = build_groups(managed, selected, strategies)

    nodes: List[RenderNode] = []
    entity_to_node: Dict[str, str] = {}

    def emit_simple(entity: Entity) -> None:
        nodes.append(SimpleNode.from_entity(entity))
        entity_to_node[entity.id] = entity.id

    def emit_aggregate(node: AggregateNode) -> None:
        nodes.append(node)
        for member_id in node.member_ids:
            entity_to_node[member_id] = node.id

    # Everything fits: no aggregation at all
    if len(ordered) <= node_budget:
        for entity in ordered:
            emit_simple(entity)
        return AggregationResult(nodes=nodes, entity_to_node=entity_to_node, groups=groups)

    # Always-visible entities alone overflow the budget
    if len(fixed) + (1 if managed else 0) > node_budget:
        rest = sorted((e for e in fixed if selected is None or e.id != selected.id), key=lambda e: e.id)
        priority = ([selected] if selected is not None else []) + rest
        shown = priority[:node_budget - 1]
        hidden = priority[node_budget - 1:] + managed
        logger.warning(
            f"{len(fixed)} always-visible entities exceed the node budget "
            f"of {node_budget}; truncating to {len(shown)}"
        )
        for entity in shown:
            emit_simple(entity)
        emit_aggregate(_overflow_node(hidden, len(shown), len(ordered)))
        return AggregationResult(
            nodes=nodes, entity_to_node=entity_to_node, groups=groups, aggregated=True
        )

    capacity = node_budget - len(fixed)

    # Collapse every sizeable group, then small ones largest-first until it fits
    collapsed: Set[str] = {gid for gid, g in groups.items() if g.size >= min_group_size}
    node_total = len(collapsed) + sum(g.size for g in groups.values() if g.id not in collapsed)
    small = sorted(
        (g for g in groups.values() if g.id not in collapsed),
        key=lambda g: (-g.size, g.id),
    )
    for group in small:
        if node_total <= capacity:
            break
        collapsed.add(group.id)
        node_total -= group.size - 1

    # More groups than slots: fold the smallest into one overflow residual
    overflow: List[EntityGroup] = []
    if node_total > capacity:
        by_size = sorted(groups.values(), key=lambda g: (-g.size, g.id))
        overflow = by_size[capacity - 1:]
        node_total = capacity
        logger.warning(f"{len(groups)} groups exceed {capacity} free slots; folding {len(overflow)}")
    overflow_ids = {g.id for g in overflow}

    # Expansion, in group id order so the outcome does not depend on click order
    partial: Dict[str, int] = {}
    opened: Set[str] = set()
    for gid in sorted(expanded):
        if gid not in collapsed or gid in overflow_ids:
            continue
        group = groups[gid]
        available = capacity - node_total + 1
        if group.size <= available:
            opened.add(gid)
            node_total += group.size - 1
        elif available >= 2:
            partial[gid] = available - 1
            node_total += available - 1
        else:
            logger.debug(f"No room to expand {gid}; it stays collapsed")

    for entity in fixed:
        emit_simple(entity)

    for gid, group in groups.items():
        if gid in overflow_ids:
            continue
        if gid not in collapsed or gid in opened:
            for member_id in group.member_ids:
                emit_simple(snapshot[member_id])
        elif gid in partial:
            shown = partial[gid]
            for member_id in group.member_ids[:shown]:
                emit_simple(snapshot[member_id])
            emit_aggregate(_residual_node(group, shown))
        else:
            emit_aggregate(_aggregate_node(group))

    if overflow:
        hidden = [snapshot[m] for g in overflow for m in g.member_ids]
        emit_aggregate(_overflow_node(hidden, len(ordered) - len(hidden), len(ordered)))

    return AggregationResult(
        nodes=nodes, entity_to_node=entity_to_node, groups=groups, aggregated=True
    )


# =============================================================================
# STATEFUL AGGREGATOR (expansion flags)
# =============================================================================

class GraphAggregator:
    """
    Holds per-group expansion flags and runs aggregate_entities().

    Usage:
        aggregator = GraphAggregator.from_config(get_config().graph)
        result = aggregator.aggregate(entities, selected_id="char-alex")
        aggregator.toggle("aggregated-element-char-alex:prop")
        aggregator.collapse_all()
    """

    def __init__(
        self,
        node_budget: int = 50,
        min_group_size: int = 3,
        strategies: Optional[Dict[str, GroupKeyFn]] = None,
    ):
        self.node_budget = node_budget
        self.min_group_size = min_group_size
        self.strategies: Dict[str, GroupKeyFn] = dict(
            DEFAULT_STRATEGIES if strategies is None else strategies
        )
        self._expanded: Set[str] = set()

    @classmethod
    def from_config(cls, config: GraphConfig, **kwargs) -> "GraphAggregator":
        return cls(
            node_budget=config.node_budget,
            min_group_size=config.min_group_size,
            **kwargs
        )

    def register_strategy(self, kind: str, fn: GroupKeyFn) -> None:
        self.strategies[kind] = fn

    # === Expansion state ===

    @property
    def expanded(self) -> FrozenSet[str]:
        return frozenset(self._expanded)

    def is_expanded(self, group_id: str) -> bool:
        return group_id_from_node_id(group_id) in self._expanded

    def expand(self, group_id: str) -> None:
        self._expanded.add(group_id_from_node_id(group_id))

    def collapse(self, group_id: str) -> None:
        self._expanded.discard(group_id_from_node_id(group_id))

    def toggle(self, group_id: str) -> bool:
        """Flip one group's flag. Returns the new expanded state."""
        gid = group_id_from_node_id(group_id)
        if gid in self._expanded:
            self._expanded.discard(gid)
            return False
        self._expanded.add(gid)
        return True

    def collapse_all(self) -> None:
        self._expanded.clear()

    def restore_expanded(self, group_ids: Iterable[str]) -> None:
        self._expanded = {group_id_from_node_id(g) for g in group_ids}

    # === Aggregation ===

    def aggregate(
        self,
        entities: Iterable[Entity],
        selected_id: Optional[str] = None,
    ) -> AggregationResult:
        return aggregate_entities(
            entities,
            selected_id,
            frozenset(self._expanded),
            node_budget=self.node_budget,
            min_group_size=self.min_group_size,
            strategies=self.strategies,
        )
