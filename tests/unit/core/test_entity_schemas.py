"""
Unit tests for core/schemas.py and core/ontology.py

Tests the entity model:
- Tolerant parsing of list-valued and reference attributes
- Display names and the "Unnamed {Kind}" fallback
- Element sub-types
- Relationship helpers
- msgspec serialization
"""
import pytest

from core.ontology import (
    EntityKind,
    RelationshipKind,
    Tier,
    TIER_VISUALS,
    EMPHASIS_STYLES,
    kind_label,
    is_always_visible,
    validate_entity_kind,
    validate_relationship_kind,
)
from core.schemas import (
    Entity,
    Relationship,
    parse_id_list,
    parse_ref,
    slugify,
    serialize_entities,
    deserialize_entities,
)


# =============================================================================
# ATTRIBUTE PARSING
# =============================================================================

@pytest.mark.parametrize("value, expected", [
    (["a", "b"], ["a", "b"]),
    ('["a", "b"]', ["a", "b"]),
    ("single", ["single"]),
    ([{"id": "a"}, {"id": "b"}, {"name": "no id"}], ["a", "b"]),
    (None, []),
    ("", []),
    ("[not json", []),
    (42, []),
    ({"id": "a"}, []),
])
def test_parse_id_list(value, expected):
    assert parse_id_list(value) == expected


def test_parse_ref_variants():
    assert parse_ref("char-1") == "char-1"
    assert parse_ref({"id": "char-1"}) == "char-1"
    assert parse_ref(["char-1", "char-2"]) == "char-1"
    assert parse_ref("") is None
    assert parse_ref(3) is None


def test_slugify():
    assert slugify("Memory Token") == "memory-token"
    assert slugify("  Prop ") == "prop"


# =============================================================================
# ENTITY
# =============================================================================

def test_display_name_fallbacks():
    """
    Validate name resolution per kind.

    Verifies:
    - Puzzles read "puzzle" before "name"
    - Timeline events read "description"
    - Missing names never raise
    """
    puzzle = Entity.create(EntityKind.PUZZLE, "p1", puzzle="Safe Lock")
    event = Entity.create(EntityKind.TIMELINE_EVENT, "t1", description="The party")
    nameless = Entity.create(EntityKind.TIMELINE_EVENT, "t2")
    blank = Entity.create(EntityKind.CHARACTER, "c1", name="   ")

    assert puzzle.display_name == "Safe Lock"
    assert event.display_name == "The party"
    assert nameless.display_name == "Unnamed Timeline Event"
    assert blank.display_name == "Unnamed Character"


def test_element_fields():
    el = Entity.create(
        EntityKind.ELEMENT, "el-1",
        owner_character_id=[{"id": "char-1"}],
        container_element_id="box",
        timeline_event_id="t1",
        type="Memory Token",
    )

    assert el.owner_id == "char-1"
    assert el.container_id == "box"
    assert el.timeline_event_id == "t1"
    assert el.element_type == "Memory Token"


def test_generic_element_type_is_none():
    assert Entity.create(EntityKind.ELEMENT, "e", type="element").element_type is None
    assert Entity.create(EntityKind.ELEMENT, "e", basic_type="Prop").element_type == "Prop"
    assert Entity.create(EntityKind.ELEMENT, "e").element_type is None


def test_puzzle_fields_tolerate_malformed_json():
    p = Entity.create(
        EntityKind.PUZZLE, "p1",
        required_elements='["el-1", "el-2"]',
        reward_ids="{broken",
    )

    assert p.required_ids == ["el-1", "el-2"]
    assert p.reward_ids == ["{broken"]


def test_get_number():
    el = Entity.create(EntityKind.ELEMENT, "e", value="$5,000", flag=True, junk="abc", n=3)

    assert el.get_number("value") == 5000.0
    assert el.get_number("n") == 3.0
    assert el.get_number("flag") == 0.0
    assert el.get_number("junk", 1.0) == 1.0
    assert el.get_number("missing") == 0.0


def test_entity_is_frozen_and_identity_by_id():
    a = Entity.create(EntityKind.CHARACTER, "c1", name="A")
    b = Entity.create(EntityKind.CHARACTER, "c1", name="Renamed")

    with pytest.raises(AttributeError):
        a.id = "other"
    assert a.same_as(b)
    assert not a.same_as(None)


def test_entity_create_rejects_unknown_kind():
    with pytest.raises(ValueError):
        Entity.create("spaceship", "x")


def test_entities_serialization():
    entities = [
        Entity.create(EntityKind.CHARACTER, "c1", name="A"),
        Entity.create(EntityKind.ELEMENT, "e1", owner_character_id="c1"),
    ]

    decoded = deserialize_entities(serialize_entities(entities))

    assert decoded == entities


# =============================================================================
# RELATIONSHIP
# =============================================================================

def test_relationship_create_and_helpers():
    rel = Relationship.create(RelationshipKind.OWNERSHIP, "c1", "e1")

    assert rel.id == "ownership-c1-e1"
    assert rel.directed is True
    assert rel.touches("c1") and rel.touches("e1")
    assert rel.other_end("c1") == "e1"
    assert rel.other_end("zz") is None


# =============================================================================
# ONTOLOGY
# =============================================================================

def test_kind_labels():
    assert kind_label("timeline_event") == "Timeline Event"
    assert kind_label("element", plural=True) == "Elements"
    assert kind_label("gadget", plural=True) == "Gadgets"


def test_always_visible_policy():
    assert is_always_visible("character")
    assert not is_always_visible("element")
    assert not is_always_visible("puzzle")


def test_tier_visuals_are_ordered():
    """Visual prominence decreases from selected to background."""
    order = [Tier.SELECTED, Tier.CONNECTED, Tier.SECONDARY_CONNECTED, Tier.BACKGROUND]
    opacities = [TIER_VISUALS[t.value].opacity for t in order]
    z_indexes = [TIER_VISUALS[t.value].z_index for t in order]

    assert opacities == sorted(opacities, reverse=True)
    assert z_indexes == sorted(z_indexes, reverse=True)
    assert TIER_VISUALS["background"].show_label is False


def test_emphasis_styles_monotone():
    focused, relevant, dim = (EMPHASIS_STYLES[k] for k in ("focused", "relevant", "dim"))
    assert focused.opacity >= relevant.opacity >= dim.opacity
    assert focused.stroke_width >= relevant.stroke_width >= dim.stroke_width


def test_validators():
    assert validate_entity_kind("puzzle")
    assert not validate_entity_kind("PUZZLE")
    assert validate_relationship_kind("character_link")
    assert not validate_relationship_kind("friendship")
