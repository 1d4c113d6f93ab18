"""
Relationship derivation.

Relationships are never stored: they are rebuilt from the entity snapshot
(plus the character link list) every time the snapshot changes. A link whose
endpoint is not in the snapshot is dropped here, so nothing downstream ever
sees a dangling id.
"""
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from core.ontology import EntityKind, RelationshipKind
from core.schemas import Entity, Relationship

logger = logging.getLogger(__name__)


CharacterLink = Union[Relationship, Mapping[str, Any]]


def _link_endpoints(link: CharacterLink) -> Optional[tuple]:
    if isinstance(link, Relationship):
        return link.source_id, link.target_id, link.weight
    if isinstance(link, Mapping):
        source = link.get("source") or link.get("source_id")
        target = link.get("target") or link.get("target_id")
        strength = link.get("strength", link.get("weight", 1))
        try:
            weight = float(strength)
        except (TypeError, ValueError):
            weight = 1.0
        if isinstance(source, str) and isinstance(target, str):
            return source, target, weight
    return None


def derive_relationships(
    entities: Iterable[Entity],
    character_links: Iterable[CharacterLink] = (),
) -> List[Relationship]:
    """
    Build the full relationship list for an entity snapshot.

    Args:
        entities: Current snapshot (all kinds)
        character_links: Character-to-character links, as Relationship
            objects or {"source", "target", "strength"} mappings

    Returns:
        Relationships in deterministic order (entity order, then links)
    """
    by_id: Dict[str, Entity] = {}
    for entity in entities:
        by_id[entity.id] = entity

    relationships: List[Relationship] = []
    seen_ids = set()
    dropped = 0

    def emit(kind: RelationshipKind, rel_id: str, source: str, target: str,
             directed: bool = True, weight: float = 1.0) -> None:
        nonlocal dropped
        if source not in by_id or target not in by_id or source == target:
            dropped += 1
            return
        if rel_id in seen_ids:
            return
        seen_ids.add(rel_id)
        relationships.append(Relationship(
            id=rel_id,
            source_id=source,
            target_id=target,
            kind=kind.value,
            directed=directed,
            weight=weight,
        ))

    for entity in by_id.values():
        if entity.kind == EntityKind.ELEMENT.value:
            owner = entity.owner_id
            if owner:
                emit(RelationshipKind.OWNERSHIP, f"owner-{entity.id}", owner, entity.id)
            container = entity.container_id
            if container:
                emit(RelationshipKind.CONTAINMENT, f"container-{entity.id}", container, entity.id)
            event = entity.timeline_event_id
            if event:
                emit(RelationshipKind.TIMELINE_REVEALS, f"reveals-{entity.id}", entity.id, event)

        elif entity.kind == EntityKind.PUZZLE.value:
            for element_id in entity.required_ids:
                emit(
                    RelationshipKind.PUZZLE_REQUIRES,
                    f"requires-{entity.id}-{element_id}",
                    element_id,
                    entity.id,
                )
            for element_id in entity.reward_ids:
                emit(
                    RelationshipKind.PUZZLE_REWARDS,
                    f"reward-{entity.id}-{element_id}",
                    entity.id,
                    element_id,
                )

    for link in character_links:
        endpoints = _link_endpoints(link)
        if endpoints is None:
            dropped += 1
            continue
        source, target, weight = endpoints
        a, b = sorted((source, target))
        emit(RelationshipKind.CHARACTER_LINK, f"link-{a}-{b}", a, b, directed=False, weight=weight)

    if dropped:
        logger.debug(f"Dropped {dropped} relationships with missing endpoints")

    return relationships
