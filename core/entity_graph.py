"""
ATLAS ENTITY GRAPH - The Rust-Accelerated Snapshot

Bridges entity id strings with rustworkx integer indices so that the
hierarchy calculator and overlays can ask neighbourhood questions
("what does this character own?", "which elements reveal this event?")
without scanning the whole snapshot.

Architecture (The Bridge Pattern):
  Python Layer
  - Uses entity ids: "char-alex", "el-locket"
  - Calls: graph.owned_by("char-alex")

  Bridge Layer (This File)
  - _node_map: Dict[str, int]  (id -> index)
  - _inv_map: Dict[int, str]   (index -> id)

  Rust Layer (rustworkx.PyDiGraph)
  - Integer indices, multigraph (two entities may be linked several ways)

The graph is rebuilt (not patched) whenever the entity snapshot changes.
"""
import logging
from typing import Dict, Iterable, Iterator, List, Optional, Set

import rustworkx as rx

from core.ontology import EntityKind, RelationshipKind
from core.schemas import Entity, Relationship

logger = logging.getLogger(__name__)


# =============================================================================
# CUSTOM EXCEPTIONS
# =============================================================================

class GraphError(Exception):
    """Base exception for entity graph operations."""
    pass


class EntityNotFoundError(GraphError):
    """Raised when an entity id is not in the graph."""
    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"Entity not found: {entity_id}")


class DuplicateEntityError(GraphError):
    """Raised when attempting to add an entity with an existing id."""
    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"Entity already exists: {entity_id}")


# =============================================================================
# ENTITY GRAPH
# =============================================================================

class EntityGraph:
    """
    In-memory graph over one entity snapshot, backed by rustworkx.

    Usage:
        graph = build_entity_graph(entities, derive_relationships(entities, links))

        graph.owned_by("char-alex")          # -> [Entity, ...]
        graph.linked_characters("char-alex") # -> [Entity, ...]

    Thread Safety:
        NOT thread-safe. Build once per snapshot and treat as read-only.
    """

    def __init__(self):
        self._graph: rx.PyDiGraph = rx.PyDiGraph(multigraph=True)

        # The Bridge: bidirectional id <-> index mapping
        self._node_map: Dict[str, int] = {}
        self._inv_map: Dict[int, str] = {}

        self._relationships: List[Relationship] = []

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def entity_count(self) -> int:
        return self._graph.num_nodes()

    @property
    def relationship_count(self) -> int:
        return self._graph.num_edges()

    @property
    def is_empty(self) -> bool:
        return self.entity_count == 0

    # =========================================================================
    # ENTITY OPERATIONS
    # =========================================================================

    def add_entity(self, entity: Entity) -> int:
        """
        Add an entity to the graph.

        Returns:
            The rustworkx index of the new node

        Raises:
            DuplicateEntityError: If the id is already present
        """
        if entity.id in self._node_map:
            raise DuplicateEntityError(entity.id)

        idx = self._graph.add_node(entity)
        self._node_map[entity.id] = idx
        self._inv_map[idx] = entity.id
        return idx

    def add_entities_batch(self, entities: List[Entity]) -> List[int]:
        """
        Add many entities in a single Rust call.

        Duplicates (against the graph or within the batch) are skipped
        with a debug log; the first occurrence wins.
        """
        fresh: List[Entity] = []
        batch_ids: Set[str] = set()
        for entity in entities:
            if entity.id in self._node_map or entity.id in batch_ids:
                logger.debug(f"Skipping duplicate entity id {entity.id}")
                continue
            batch_ids.add(entity.id)
            fresh.append(entity)

        if not fresh:
            return []

        indices = list(self._graph.add_nodes_from(fresh))
        for entity, idx in zip(fresh, indices):
            self._node_map[entity.id] = idx
            self._inv_map[idx] = entity.id
        return indices

    def get_entity(self, entity_id: str) -> Entity:
        """
        Retrieve an entity by id.

        Raises:
            EntityNotFoundError: If the entity doesn't exist
        """
        if entity_id not in self._node_map:
            raise EntityNotFoundError(entity_id)
        return self._graph[self._node_map[entity_id]]

    def find_entity(self, entity_id: Optional[str]) -> Optional[Entity]:
        """Like get_entity but returns None for unknown ids."""
        if entity_id is None or entity_id not in self._node_map:
            return None
        return self._graph[self._node_map[entity_id]]

    def has_entity(self, entity_id: str) -> bool:
        return entity_id in self._node_map

    def iter_entities(self) -> Iterator[Entity]:
        """Iterate entities in insertion order."""
        for idx in sorted(self._inv_map):
            yield self._graph[idx]

    def get_all_entities(self) -> List[Entity]:
        return list(self.iter_entities())

    def entities_of_kind(self, kind: EntityKind) -> List[Entity]:
        kind_value = EntityKind(kind).value
        return [e for e in self.iter_entities() if e.kind == kind_value]

    # =========================================================================
    # RELATIONSHIP OPERATIONS
    # =========================================================================

    def add_relationship(self, relationship: Relationship) -> int:
        """
        Add a relationship between two entities already in the graph.

        Undirected relationships are stored once (source -> target) and
        matched in both directions by the neighbourhood queries.

        Raises:
            EntityNotFoundError: If either endpoint is missing
        """
        src_idx = self._get_index(relationship.source_id)
        tgt_idx = self._get_index(relationship.target_id)
        edge_idx = self._graph.add_edge(src_idx, tgt_idx, relationship)
        self._relationships.append(relationship)
        return edge_idx

    def relationships(self) -> List[Relationship]:
        return list(self._relationships)

    def relationships_of_kind(self, kind: RelationshipKind) -> List[Relationship]:
        kind_value = RelationshipKind(kind).value
        return [r for r in self._relationships if r.kind == kind_value]

    def relationships_of(self, entity_id: str) -> List[Relationship]:
        """All relationships touching an entity (empty for unknown ids)."""
        if entity_id not in self._node_map:
            return []
        idx = self._node_map[entity_id]
        found = [rel for _, _, rel in self._graph.out_edges(idx)]
        found.extend(rel for _, _, rel in self._graph.in_edges(idx))
        return found

    # =========================================================================
    # NEIGHBOURHOOD QUERIES
    # =========================================================================

    def _successors_by(self, entity_id: str, kind: RelationshipKind) -> List[Entity]:
        if entity_id not in self._node_map:
            return []
        idx = self._node_map[entity_id]
        kind_value = kind.value
        seen: Set[int] = set()
        result = []
        for _, tgt_idx, rel in self._graph.out_edges(idx):
            if rel.kind == kind_value and tgt_idx not in seen:
                seen.add(tgt_idx)
                result.append(self._graph[tgt_idx])
        return sorted(result, key=lambda e: e.id)

    def _predecessors_by(self, entity_id: str, kind: RelationshipKind) -> List[Entity]:
        if entity_id not in self._node_map:
            return []
        idx = self._node_map[entity_id]
        kind_value = kind.value
        seen: Set[int] = set()
        result = []
        for src_idx, _, rel in self._graph.in_edges(idx):
            if rel.kind == kind_value and src_idx not in seen:
                seen.add(src_idx)
                result.append(self._graph[src_idx])
        return sorted(result, key=lambda e: e.id)

    def owned_by(self, character_id: str) -> List[Entity]:
        """Elements owned by a character."""
        return self._successors_by(character_id, RelationshipKind.OWNERSHIP)

    def owner_of(self, element_id: str) -> Optional[Entity]:
        owners = self._predecessors_by(element_id, RelationshipKind.OWNERSHIP)
        return owners[0] if owners else None

    def contents_of(self, element_id: str) -> List[Entity]:
        """Elements directly contained by an element."""
        return self._successors_by(element_id, RelationshipKind.CONTAINMENT)

    def container_of(self, element_id: str) -> Optional[Entity]:
        containers = self._predecessors_by(element_id, RelationshipKind.CONTAINMENT)
        return containers[0] if containers else None

    def linked_characters(self, character_id: str) -> List[Entity]:
        """Characters linked by an (undirected) character link."""
        linked = self._successors_by(character_id, RelationshipKind.CHARACTER_LINK)
        linked += self._predecessors_by(character_id, RelationshipKind.CHARACTER_LINK)
        unique = {e.id: e for e in linked if e.id != character_id}
        return [unique[k] for k in sorted(unique)]

    def revealing_elements(self, event_id: str) -> List[Entity]:
        """Elements whose timeline_event_id points at this event."""
        return self._predecessors_by(event_id, RelationshipKind.TIMELINE_REVEALS)

    def required_elements(self, puzzle_id: str) -> List[Entity]:
        return self._predecessors_by(puzzle_id, RelationshipKind.PUZZLE_REQUIRES)

    def reward_elements(self, puzzle_id: str) -> List[Entity]:
        return self._successors_by(puzzle_id, RelationshipKind.PUZZLE_REWARDS)

    def puzzles_requiring(self, element_id: str) -> List[Entity]:
        return self._successors_by(element_id, RelationshipKind.PUZZLE_REQUIRES)

    def puzzles_rewarding(self, element_id: str) -> List[Entity]:
        return self._predecessors_by(element_id, RelationshipKind.PUZZLE_REWARDS)

    # =========================================================================
    # INTERNAL
    # =========================================================================

    def _get_index(self, entity_id: str) -> int:
        if entity_id not in self._node_map:
            raise EntityNotFoundError(entity_id)
        return self._node_map[entity_id]

    def __len__(self) -> int:
        return self.entity_count

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._node_map

    def __repr__(self) -> str:
        return f"EntityGraph(entities={self.entity_count}, relationships={self.relationship_count})"


# =============================================================================
# FACTORY FUNCTIONS
# =============================================================================

def build_entity_graph(
    entities: Iterable[Entity],
    relationships: Iterable[Relationship] = (),
) -> EntityGraph:
    """
    Build a graph for one snapshot.

    Relationships referencing entities outside the snapshot are dropped
    silently (debug-logged); they never reach the renderer.
    """
    graph = EntityGraph()
    graph.add_entities_batch(list(entities))

    dropped = 0
    for relationship in relationships:
        if relationship.source_id not in graph or relationship.target_id not in graph:
            dropped += 1
            continue
        graph.add_relationship(relationship)

    if dropped:
        logger.debug(f"Dropped {dropped} dangling relationships while building graph")

    return graph
