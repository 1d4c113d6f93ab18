"""
ATLAS SCHEMAS - The Grammar of the System

If ontology.py is the Dictionary (defining the words we can use),
schemas.py is the Grammar (defining how entities and relationships are shaped).

This module defines the data structures handed to the engine by the data
layer:
- Entity: One game object (character, element, puzzle, timeline event)
- Relationship: A derived, read-only link between two entity ids
- Tolerant accessors for well-known attribute keys
- Serialization helpers

Design Principles:
1. STRICT TYPING: msgspec.Struct for every payload
2. KW_ONLY: Enforce keyword arguments to prevent positional mix-ups
3. IMMUTABLE SNAPSHOTS: Entities are frozen; a new fetch means new objects
4. NEVER RAISE ON BAD DATA: malformed attribute values read as absent
"""
import json
from typing import Any, Dict, List, Optional

import msgspec

from core.ontology import (
    EntityKind,
    RelationshipKind,
    NAME_FIELDS,
    GENERIC_ELEMENT_TYPES,
    kind_label,
)


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def parse_id_list(value: Any) -> List[str]:
    """
    Read a list of ids from an attribute value.

    Accepts a list, a JSON-encoded list, a single id string, or a list of
    {"id": ...} mappings (the shape relation properties arrive in).
    Anything unparsable is treated as an empty list.
    """
    if value is None:
        return []

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        if text.startswith("["):
            try:
                value = json.loads(text)
            except (json.JSONDecodeError, ValueError):
                return []
        else:
            return [text]

    if not isinstance(value, (list, tuple)):
        return []

    ids = []
    for item in value:
        if isinstance(item, str) and item:
            ids.append(item)
        elif isinstance(item, dict) and isinstance(item.get("id"), str):
            ids.append(item["id"])
    return ids


def parse_ref(value: Any) -> Optional[str]:
    """Read a single id reference (string, {"id": ...}, or first of a list)."""
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        ref = value.get("id")
        return ref if isinstance(ref, str) and ref else None
    if isinstance(value, (list, tuple)):
        ids = parse_id_list(list(value))
        return ids[0] if ids else None
    return None


def slugify(text: str) -> str:
    """'Memory Token' -> 'memory-token'"""
    return "-".join(text.lower().split())


# =============================================================================
# ENTITY
# =============================================================================

class Entity(msgspec.Struct, kw_only=True, frozen=True):
    """
    One domain object owned by the external data layer.

    `id` is unique across all kinds. `attributes` carries whatever the data
    layer fetched; the engine only reads the well-known keys exposed through
    the properties below.
    """
    id: str
    kind: str                                  # EntityKind.value
    attributes: Dict[str, Any] = msgspec.field(default_factory=dict)

    @classmethod
    def create(cls, kind: EntityKind, id: str, **attributes) -> "Entity":
        """Factory: Entity.create(EntityKind.ELEMENT, "el-1", name="Locket")"""
        return cls(id=id, kind=EntityKind(kind).value, attributes=attributes)

    # === Display ===

    @property
    def display_name(self) -> str:
        """Name for labels; falls back to 'Unnamed {Kind}'."""
        for key in NAME_FIELDS.get(self.kind, ("name",)):
            value = self.attributes.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return f"Unnamed {kind_label(self.kind)}"

    # === Element fields ===

    @property
    def owner_id(self) -> Optional[str]:
        return parse_ref(self.attributes.get("owner_character_id"))

    @property
    def container_id(self) -> Optional[str]:
        return parse_ref(self.attributes.get("container_element_id"))

    @property
    def timeline_event_id(self) -> Optional[str]:
        return parse_ref(self.attributes.get("timeline_event_id"))

    @property
    def element_type(self) -> Optional[str]:
        """Specific element sub-type ('Memory Token', 'Prop', ...) if any."""
        value = self.attributes.get("type") or self.attributes.get("basic_type")
        if not isinstance(value, str) or value.strip().lower() in GENERIC_ELEMENT_TYPES:
            return None
        return value.strip()

    # === Puzzle fields ===

    @property
    def required_ids(self) -> List[str]:
        return parse_id_list(self.attributes.get("required_elements"))

    @property
    def reward_ids(self) -> List[str]:
        return parse_id_list(self.attributes.get("reward_ids"))

    # === Generic helpers ===

    def get(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)

    def get_list(self, key: str) -> List[str]:
        """Read any list-valued attribute tolerantly."""
        return parse_id_list(self.attributes.get(key))

    def get_number(self, key: str, default: float = 0.0) -> float:
        value = self.attributes.get(key)
        if isinstance(value, bool):
            return default
        if isinstance(value, (int, float)):
            return float(value)
        if isinstance(value, str):
            try:
                return float(value.replace(",", "").replace("$", ""))
            except ValueError:
                return default
        return default

    def same_as(self, other: Optional["Entity"]) -> bool:
        """Identity comparison (by id only)."""
        return other is not None and other.id == self.id


# =============================================================================
# RELATIONSHIP
# =============================================================================

class Relationship(msgspec.Struct, kw_only=True, frozen=True):
    """
    A derived, read-only link between two entity ids.

    Relationships are rebuilt whenever source entities change; they never
    carry state of their own.
    """
    id: str
    source_id: str
    target_id: str
    kind: str                                  # RelationshipKind.value
    directed: bool = True
    weight: float = 1.0

    @classmethod
    def create(
        cls,
        kind: RelationshipKind,
        source_id: str,
        target_id: str,
        **kwargs
    ) -> "Relationship":
        kind_value = RelationshipKind(kind).value
        rel_id = kwargs.pop("id", None) or f"{kind_value}-{source_id}-{target_id}"
        return cls(
            id=rel_id,
            source_id=source_id,
            target_id=target_id,
            kind=kind_value,
            **kwargs
        )

    def touches(self, entity_id: str) -> bool:
        return entity_id in (self.source_id, self.target_id)

    def other_end(self, entity_id: str) -> Optional[str]:
        if entity_id == self.source_id:
            return self.target_id
        if entity_id == self.target_id:
            return self.source_id
        return None


# =============================================================================
# SERIALIZATION HELPERS
# =============================================================================

_entity_decoder = msgspec.json.Decoder(List[Entity])
_relationship_decoder = msgspec.json.Decoder(List[Relationship])


def serialize_entities(entities: List[Entity]) -> bytes:
    return msgspec.json.encode(entities)


def deserialize_entities(data: bytes) -> List[Entity]:
    return _entity_decoder.decode(data)


def serialize_relationships(relationships: List[Relationship]) -> bytes:
    return msgspec.json.encode(relationships)


def deserialize_relationships(data: bytes) -> List[Relationship]:
    return _relationship_decoder.decode(data)
