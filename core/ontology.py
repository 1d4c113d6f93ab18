"""
ATLAS ONTOLOGY - The Dictionary of the System

If schemas.py is the Grammar (how entities and relationships are shaped),
ontology.py is the Dictionary (the words we can use).

This module defines:
- Enums: The vocabulary (EntityKind, RelationshipKind, Tier, ViewMode, ...)
- Policy tables: which kinds are always visible, how kinds are labelled,
  which visual tuple each tier maps to

Policy lives in tables, not in control flow. The aggregator and the
hierarchy calculator read these tables; adding an entity kind means adding
rows here, not branches there.
"""
from typing import Dict, FrozenSet, Tuple
from enum import Enum

import msgspec


# =============================================================================
# ENUMS (The Vocabulary)
# =============================================================================

class EntityKind(str, Enum):
    """Kinds of game entities ingested from the data layer."""
    CHARACTER = "character"
    ELEMENT = "element"              # Physical prop, document or memory token
    PUZZLE = "puzzle"
    TIMELINE_EVENT = "timeline_event"


class RelationshipKind(str, Enum):
    """Kinds of derived links between entities."""
    OWNERSHIP = "ownership"              # character -> element
    CONTAINMENT = "containment"          # container element -> element
    CHARACTER_LINK = "character_link"    # character <-> character (undirected)
    PUZZLE_REQUIRES = "puzzle_requires"  # element -> puzzle
    PUZZLE_REWARDS = "puzzle_rewards"    # puzzle -> element
    TIMELINE_REVEALS = "timeline_reveals"  # element -> timeline event


class Tier(str, Enum):
    """Visual-hierarchy classification of a node relative to the selection."""
    SELECTED = "selected"
    CONNECTED = "connected"
    SECONDARY_CONNECTED = "secondary_connected"
    BACKGROUND = "background"


class EdgeEmphasis(str, Enum):
    """Ternary edge classification relative to the selection."""
    FOCUSED = "focused"      # Touches the selected node
    RELEVANT = "relevant"    # Both endpoints outside the background tier
    DIM = "dim"


class ViewMode(str, Enum):
    OVERVIEW = "overview"
    ENTITY_FOCUS = "entity_focus"
    INTELLIGENCE_DEEP_DIVE = "intelligence_deep_dive"


class IntelligenceLayer(str, Enum):
    """Analytical overlays that can be toggled independently of selection."""
    STORY = "story"
    SOCIAL = "social"
    ECONOMIC = "economic"
    PRODUCTION = "production"
    GAPS = "gaps"


class PerformanceMode(str, Enum):
    AUTO = "auto"
    QUALITY = "quality"
    PERFORMANCE = "performance"


# =============================================================================
# KIND POLICY TABLES
# =============================================================================

# Kinds rendered individually regardless of the node budget.
# TODO: confirm with the product owner whether puzzles belong here too.
ALWAYS_VISIBLE_KINDS: FrozenSet[str] = frozenset({EntityKind.CHARACTER.value})

# Kinds whose individual nodes count against the budget and may be aggregated.
BUDGET_MANAGED_KINDS: FrozenSet[str] = frozenset({
    EntityKind.ELEMENT.value,
    EntityKind.PUZZLE.value,
    EntityKind.TIMELINE_EVENT.value,
})

# (singular, plural) display nouns per kind
KIND_LABELS: Dict[str, Tuple[str, str]] = {
    EntityKind.CHARACTER.value: ("Character", "Characters"),
    EntityKind.ELEMENT.value: ("Element", "Elements"),
    EntityKind.PUZZLE.value: ("Puzzle", "Puzzles"),
    EntityKind.TIMELINE_EVENT.value: ("Timeline Event", "Timeline Events"),
}

# Attribute keys consulted (in order) for an entity's display name
NAME_FIELDS: Dict[str, Tuple[str, ...]] = {
    EntityKind.CHARACTER.value: ("name",),
    EntityKind.ELEMENT.value: ("name",),
    EntityKind.PUZZLE.value: ("puzzle", "name"),
    EntityKind.TIMELINE_EVENT.value: ("description", "name"),
}

# Element sub-types with irregular plurals
ELEMENT_TYPE_PLURALS: Dict[str, str] = {
    "memory-token": "Memory Tokens",
    "prop": "Props",
    "document": "Documents",
}

# Sub-type values that carry no information beyond the kind itself
GENERIC_ELEMENT_TYPES: FrozenSet[str] = frozenset({
    "", "element", "character", "puzzle", "timeline_event",
})


def kind_label(kind: str, plural: bool = False) -> str:
    """Human-readable noun for a kind; unknown kinds are title-cased."""
    singular, many = KIND_LABELS.get(
        kind, (kind.replace("_", " ").title(), kind.replace("_", " ").title() + "s")
    )
    return many if plural else singular


def is_always_visible(kind: str) -> bool:
    return kind in ALWAYS_VISIBLE_KINDS


# =============================================================================
# VISUAL POLICY TABLES
# =============================================================================

class TierVisual(msgspec.Struct, kw_only=True, frozen=True):
    """Presentation tuple attached to every node of a tier."""
    opacity: float
    scale: float
    z_index: int
    show_label: bool


class EmphasisStyle(msgspec.Struct, kw_only=True, frozen=True):
    opacity: float
    stroke_width: float


TIER_VISUALS: Dict[str, TierVisual] = {
    Tier.SELECTED.value: TierVisual(opacity=1.0, scale=1.2, z_index=10, show_label=True),
    Tier.CONNECTED.value: TierVisual(opacity=0.9, scale=1.0, z_index=5, show_label=True),
    Tier.SECONDARY_CONNECTED.value: TierVisual(opacity=0.7, scale=0.9, z_index=3, show_label=True),
    Tier.BACKGROUND.value: TierVisual(opacity=0.3, scale=0.8, z_index=1, show_label=False),
}

# Full visibility when nothing is selected
OVERVIEW_VISUAL = TierVisual(opacity=1.0, scale=1.0, z_index=1, show_label=True)

# Monotone: focused >= relevant >= dim
EMPHASIS_STYLES: Dict[str, EmphasisStyle] = {
    EdgeEmphasis.FOCUSED.value: EmphasisStyle(opacity=1.0, stroke_width=3.0),
    EdgeEmphasis.RELEVANT.value: EmphasisStyle(opacity=0.6, stroke_width=2.0),
    EdgeEmphasis.DIM.value: EmphasisStyle(opacity=0.1, stroke_width=2.0),
}

OVERVIEW_EDGE_STYLE = EmphasisStyle(opacity=0.6, stroke_width=2.0)


# =============================================================================
# VALIDATION HELPERS
# =============================================================================

def validate_entity_kind(kind_str: str) -> bool:
    """Check if a string is a valid EntityKind."""
    try:
        EntityKind(kind_str)
        return True
    except ValueError:
        return False


def validate_relationship_kind(kind_str: str) -> bool:
    """Check if a string is a valid RelationshipKind."""
    try:
        RelationshipKind(kind_str)
        return True
    except ValueError:
        return False
