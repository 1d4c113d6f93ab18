"""
ATLAS CORE - Central exports for the entity model.

This module provides access to:
- Vocabulary (EntityKind, RelationshipKind, Tier, ViewMode, ...)
- Entity / Relationship structs and relationship derivation
- The rustworkx-backed EntityGraph
"""

from core.ontology import (
    EntityKind,
    RelationshipKind,
    Tier,
    EdgeEmphasis,
    ViewMode,
    IntelligenceLayer,
    PerformanceMode,
)
from core.schemas import Entity, Relationship
from core.relationships import derive_relationships
from core.entity_graph import (
    EntityGraph,
    GraphError,
    EntityNotFoundError,
    DuplicateEntityError,
    build_entity_graph,
)

__all__ = [
    # Vocabulary
    "EntityKind",
    "RelationshipKind",
    "Tier",
    "EdgeEmphasis",
    "ViewMode",
    "IntelligenceLayer",
    "PerformanceMode",
    # Model
    "Entity",
    "Relationship",
    "derive_relationships",
    # Graph
    "EntityGraph",
    "GraphError",
    "EntityNotFoundError",
    "DuplicateEntityError",
    "build_entity_graph",
]
