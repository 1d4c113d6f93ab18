"""
Unit tests for core/relationships.py and core/entity_graph.py

Tests relationship derivation and the rustworkx bridge:
- Deterministic relationship ids per kind
- Dangling endpoints dropped, never raised
- Neighbourhood queries
- Error handling
"""
import pytest

from core.ontology import EntityKind, RelationshipKind
from core.schemas import Entity, Relationship
from core.relationships import derive_relationships
from core.entity_graph import (
    EntityGraph,
    EntityNotFoundError,
    DuplicateEntityError,
    GraphError,
    build_entity_graph,
)
from factories import character, element, puzzle, timeline_event, make_graph


# =============================================================================
# DERIVATION
# =============================================================================

def test_derive_relationship_ids_and_directions():
    entities = [
        character("char-a"),
        element("box", owner="char-a"),
        element("key", container_element_id="box", timeline_event_id="t1"),
        puzzle("p1", required=["key"], rewards=["box"]),
        timeline_event("t1"),
    ]

    rels = {r.id: r for r in derive_relationships(entities)}

    assert rels["owner-box"].source_id == "char-a"
    assert rels["owner-box"].target_id == "box"
    assert rels["container-key"].source_id == "box"
    assert rels["reveals-key"].target_id == "t1"
    assert rels["requires-p1-key"].source_id == "key"
    assert rels["requires-p1-key"].target_id == "p1"
    assert rels["reward-p1-box"].source_id == "p1"
    assert rels["reward-p1-box"].kind == RelationshipKind.PUZZLE_REWARDS.value


def test_derive_drops_dangling_endpoints():
    entities = [
        element("el-1", owner="char-ghost", timeline_event_id="t-ghost"),
        puzzle("p1", required=["missing"]),
    ]

    assert derive_relationships(entities) == []


def test_character_links_are_undirected_and_deduplicated():
    entities = [character("char-b"), character("char-a")]
    links = [
        {"source": "char-b", "target": "char-a", "strength": "3"},
        {"source": "char-a", "target": "char-b"},
        {"source": "char-a", "target": "char-a"},
        {"source": "char-a"},
    ]

    rels = derive_relationships(entities, links)

    assert len(rels) == 1
    assert rels[0].id == "link-char-a-char-b"
    assert rels[0].directed is False
    assert rels[0].weight == 3.0


def test_character_links_accept_relationship_objects():
    entities = [character("char-a"), character("char-b")]
    link = Relationship.create(RelationshipKind.CHARACTER_LINK, "char-a", "char-b", weight=2.0)

    rels = derive_relationships(entities, [link])

    assert rels[0].weight == 2.0


# =============================================================================
# GRAPH OPERATIONS
# =============================================================================

def test_add_and_get_entity():
    graph = EntityGraph()
    entity = character("char-a")

    graph.add_entity(entity)

    assert graph.entity_count == 1
    assert graph.get_entity("char-a") == entity
    assert "char-a" in graph
    assert graph.find_entity("missing") is None
    assert graph.find_entity(None) is None


def test_duplicate_entity_raises():
    graph = EntityGraph()
    graph.add_entity(character("char-a"))

    with pytest.raises(DuplicateEntityError) as exc_info:
        graph.add_entity(character("char-a"))

    assert "char-a" in str(exc_info.value)


def test_batch_skips_duplicates():
    graph = EntityGraph()
    graph.add_entity(character("char-a"))

    added = graph.add_entities_batch([character("char-a"), character("char-b"), character("char-b")])

    assert len(added) == 1
    assert graph.entity_count == 2


def test_get_missing_entity_raises_graph_error():
    with pytest.raises(GraphError):
        EntityGraph().get_entity("nope")

    with pytest.raises(EntityNotFoundError) as exc_info:
        EntityGraph().get_entity("nope")
    assert exc_info.value.entity_id == "nope"


def test_add_relationship_requires_endpoints():
    graph = EntityGraph()
    graph.add_entity(character("char-a"))

    with pytest.raises(EntityNotFoundError):
        graph.add_relationship(Relationship.create(RelationshipKind.OWNERSHIP, "char-a", "ghost"))


def test_build_entity_graph_skips_dangling():
    entities = [character("char-a")]
    rels = [Relationship.create(RelationshipKind.OWNERSHIP, "char-a", "ghost")]

    graph = build_entity_graph(entities, rels)

    assert graph.relationship_count == 0


def test_iteration_preserves_insertion_order():
    graph = make_graph([character("c2"), character("c1"), element("e0")])

    assert [e.id for e in graph.iter_entities()] == ["c2", "c1", "e0"]
    assert [e.id for e in graph.entities_of_kind(EntityKind.CHARACTER)] == ["c2", "c1"]


# =============================================================================
# NEIGHBOURHOOD QUERIES
# =============================================================================

def test_neighbourhood_queries():
    graph = make_graph(
        [
            character("char-a"),
            character("char-b"),
            element("box", owner="char-a"),
            element("key", owner="char-a", container_element_id="box", timeline_event_id="t1"),
            puzzle("p1", required=["key"], rewards=["box"]),
            timeline_event("t1"),
        ],
        [{"source": "char-b", "target": "char-a"}],
    )

    assert [e.id for e in graph.owned_by("char-a")] == ["box", "key"]
    assert graph.owner_of("key").id == "char-a"
    assert [e.id for e in graph.contents_of("box")] == ["key"]
    assert graph.container_of("key").id == "box"
    assert [e.id for e in graph.linked_characters("char-a")] == ["char-b"]
    assert [e.id for e in graph.linked_characters("char-b")] == ["char-a"]
    assert [e.id for e in graph.revealing_elements("t1")] == ["key"]
    assert [e.id for e in graph.required_elements("p1")] == ["key"]
    assert [e.id for e in graph.reward_elements("p1")] == ["box"]
    assert [e.id for e in graph.puzzles_requiring("key")] == ["p1"]
    assert [e.id for e in graph.puzzles_rewarding("box")] == ["p1"]
    assert len(graph.relationships_of("key")) == 4
    assert len(graph.relationships_of_kind(RelationshipKind.OWNERSHIP)) == 2


def test_queries_on_unknown_ids_are_empty():
    graph = make_graph([character("char-a")])

    assert graph.owned_by("ghost") == []
    assert graph.owner_of("ghost") is None
    assert graph.relationships_of("ghost") == []
