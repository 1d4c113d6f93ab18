"""
ATLAS INTELLIGENCE OVERLAYS - Per-Layer Analyses of the Selection

Each active intelligence layer contributes one OverlayReport about the
selected entity:

    story       timeline connections and what reveals what
    social      linked characters, collaborators a puzzle needs
    economic    memory-token value, character portfolios, puzzle rewards
    production  physical props, RFID tags, production status
    gaps        missing timeline links, missing story, missing evidence

Analyses are pure reads of the entity graph. Nothing is computed without a
selection, and only active layers are computed.
"""
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import msgspec

from core.entity_graph import EntityGraph
from core.ontology import EntityKind, IntelligenceLayer
from core.schemas import Entity

logger = logging.getLogger(__name__)


HIGH_VALUE_TOKEN = 5000
HIGH_CONTRIBUTOR = 10000
MEDIUM_CONTRIBUTOR = 5000
MIN_BACKSTORY_EVENTS = 3
CRITICAL_STATUS = "Critical Missing"
STORYLESS_COMPLETENESS = frozenset({"Missing Story", "Unknown"})


class Finding(msgspec.Struct, kw_only=True, frozen=True):
    type: str
    severity: str                       # "high" | "medium" | "info"
    message: str
    suggestion: str = ""


class OverlayReport(msgspec.Struct, kw_only=True, frozen=True):
    layer: str
    entity_id: str
    entity_kind: str
    findings: Tuple[Finding, ...] = ()
    metrics: Dict[str, Any] = msgspec.field(default_factory=dict)

    @property
    def has_issues(self) -> bool:
        return any(f.severity in ("high", "medium") for f in self.findings)


Analysis = Callable[[Entity, EntityGraph], Tuple[List[Finding], Dict[str, Any]]]


def _value(entity: Entity) -> float:
    return entity.get_number("calculated_memory_value")


def _revealed_events(elements: Iterable[Entity], graph: EntityGraph) -> List[str]:
    events = {e.timeline_event_id for e in elements if e.timeline_event_id}
    return sorted(eid for eid in events if graph.has_entity(eid))


# =============================================================================
# STORY
# =============================================================================

def _story(entity: Entity, graph: EntityGraph):
    findings: List[Finding] = []
    metrics: Dict[str, Any] = {}

    if entity.kind == EntityKind.ELEMENT.value:
        event = graph.find_entity(entity.timeline_event_id)
        metrics["timeline_event_id"] = event.id if event else None
        metrics["timeline_event"] = event.display_name if event else None
        if event is None:
            findings.append(Finding(
                type="timeline",
                severity="info",
                message="Not connected to a timeline event",
            ))

    elif entity.kind == EntityKind.CHARACTER.value:
        owned = graph.owned_by(entity.id)
        events = _revealed_events(owned, graph)
        metrics["owned_elements"] = len(owned)
        metrics["timeline_events"] = events
        metrics["timeline_event_count"] = len(events)

    elif entity.kind == EntityKind.TIMELINE_EVENT.value:
        revealing = graph.revealing_elements(entity.id)
        metrics["revealed_by"] = [e.id for e in revealing]
        metrics["revealed_by_count"] = len(revealing)

    elif entity.kind == EntityKind.PUZZLE.value:
        rewards = graph.reward_elements(entity.id)
        events = _revealed_events(rewards, graph)
        metrics["unlocks_timeline_events"] = events
        metrics["unlocks_count"] = len(events)

    return findings, metrics


# =============================================================================
# SOCIAL
# =============================================================================

def _social(entity: Entity, graph: EntityGraph):
    findings: List[Finding] = []
    metrics: Dict[str, Any] = {}

    if entity.kind == EntityKind.CHARACTER.value:
        linked = graph.linked_characters(entity.id)
        metrics["linked_characters"] = [c.id for c in linked]
        metrics["link_count"] = len(linked)
        if entity.get("social_load") == "Overloaded":
            findings.append(Finding(
                type="load",
                severity="medium",
                message="Character is socially overloaded",
                suggestion="Consider redistributing some collaborations to other characters",
            ))

    elif entity.kind == EntityKind.PUZZLE.value:
        required = graph.required_elements(entity.id)
        owners = sorted({e.owner_id for e in required if e.owner_id and graph.has_entity(e.owner_id)})
        declared = entity.get_list("required_collaborators")
        collaborators = sorted(set(owners) | set(declared))
        metrics["required_elements"] = len(required)
        metrics["collaborators"] = collaborators
        metrics["social_complexity"] = entity.get("social_complexity", "Unknown")
        if len(collaborators) > 1:
            findings.append(Finding(
                type="collaboration",
                severity="info",
                message=f"Requires collaboration between {len(collaborators)} characters",
            ))

    elif entity.kind == EntityKind.ELEMENT.value:
        requirements = entity.get_list("social_access_requirements")
        puzzles = graph.puzzles_requiring(entity.id)
        metrics["access_requirements"] = requirements
        metrics["required_for_puzzles"] = [p.id for p in puzzles]
        metrics["needs_collaboration"] = any("collaboration" in r for r in requirements)

    elif entity.kind == EntityKind.TIMELINE_EVENT.value:
        owners = {e.owner_id for e in graph.revealing_elements(entity.id) if e.owner_id}
        metrics["characters_involved"] = sorted(o for o in owners if graph.has_entity(o))

    return findings, metrics


# =============================================================================
# ECONOMIC
# =============================================================================

def contributor_role(portfolio: float) -> str:
    if portfolio > HIGH_CONTRIBUTOR:
        return "High contributor"
    if portfolio > MEDIUM_CONTRIBUTOR:
        return "Medium contributor"
    return "Low contributor"


def _economic(entity: Entity, graph: EntityGraph):
    findings: List[Finding] = []
    metrics: Dict[str, Any] = {}

    if entity.kind == EntityKind.ELEMENT.value:
        value = _value(entity)
        metrics["value"] = value
        metrics["is_high_value"] = value >= HIGH_VALUE_TOKEN
        metrics["memory_group"] = entity.get("memory_group")
        metrics["group_multiplier"] = entity.get_number("group_multiplier", 1.0)
        if value >= HIGH_VALUE_TOKEN:
            findings.append(Finding(
                type="path_pressure",
                severity="info",
                message=f"At ${value:,.0f}, strongly incentivizes Black Market path",
            ))
        if entity.get("rightful_owner"):
            findings.append(Finding(
                type="return_path",
                severity="info",
                message="Return Path Available",
            ))

    elif entity.kind == EntityKind.CHARACTER.value:
        owned = graph.owned_by(entity.id)
        portfolio = sum(_value(e) for e in owned)
        metrics["portfolio_value"] = portfolio
        metrics["token_count"] = len(owned)
        metrics["role"] = contributor_role(portfolio)

    elif entity.kind == EntityKind.PUZZLE.value:
        rewards = graph.reward_elements(entity.id)
        metrics["reward_value"] = sum(_value(e) for e in rewards)
        metrics["reward_count"] = len(rewards)

    elif entity.kind == EntityKind.TIMELINE_EVENT.value:
        metrics["evidence_value"] = sum(_value(e) for e in graph.revealing_elements(entity.id))

    return findings, metrics


# =============================================================================
# PRODUCTION
# =============================================================================

def _production(entity: Entity, graph: EntityGraph):
    findings: List[Finding] = []
    metrics: Dict[str, Any] = {}

    if entity.kind == EntityKind.ELEMENT.value:
        status = entity.get("production_status") or "Unknown"
        rfid = entity.get("rfid_tag")
        container = graph.container_of(entity.id)
        metrics["physical_prop"] = entity.get("physical_prop") or "No physical prop assigned"
        metrics["rfid_tag"] = rfid
        metrics["production_status"] = status
        metrics["container"] = container.display_name if container else "Not in container"
        if status == CRITICAL_STATUS:
            findings.append(Finding(
                type="critical",
                severity="high",
                message="Blocks revelation scene - urgent action required!",
            ))
        if not rfid:
            findings.append(Finding(
                type="rfid",
                severity="medium",
                message="No RFID tag assigned",
            ))

    elif entity.kind == EntityKind.PUZZLE.value:
        props = entity.get_list("physical_props_required")
        metrics["physical_props_required"] = props
        metrics["setup_time"] = entity.get("setup_time", "Unknown")
        metrics["production_complexity"] = entity.get("production_complexity", "Unknown")
        for dependency in entity.get_list("critical_dependencies"):
            findings.append(Finding(
                type="dependency",
                severity="high" if "MISSING" in dependency else "medium",
                message=dependency,
            ))

    elif entity.kind == EntityKind.CHARACTER.value:
        metrics["props_required"] = entity.get_list("props_required")
        metrics["production_notes"] = entity.get("production_notes", "")
        for item in entity.get_list("critical_missing"):
            findings.append(Finding(type="missing", severity="high", message=item))

    return findings, metrics


# =============================================================================
# GAPS
# =============================================================================

def _gaps(entity: Entity, graph: EntityGraph):
    findings: List[Finding] = []
    metrics: Dict[str, Any] = {}

    if entity.kind == EntityKind.ELEMENT.value:
        connected = graph.find_entity(entity.timeline_event_id) is not None
        completeness = entity.get("content_completeness") or "Unknown"
        metrics["has_timeline_connection"] = connected
        metrics["content_completeness"] = completeness
        if not connected:
            findings.append(Finding(
                type="timeline",
                severity="high",
                message="No timeline event connection",
                suggestion="Consider creating a backstory event for when/how this element came to exist",
            ))
        if completeness in STORYLESS_COMPLETENESS:
            findings.append(Finding(
                type="story",
                severity="medium",
                message="Element lacks story integration",
                suggestion="Create narrative context for this item's significance",
            ))

    elif entity.kind == EntityKind.CHARACTER.value:
        owned = graph.owned_by(entity.id)
        events = _revealed_events(owned, graph)
        metrics["timeline_event_count"] = len(events)
        metrics["element_count"] = len(owned)
        if not events:
            findings.append(Finding(
                type="critical",
                severity="high",
                message="Character needs complete development",
                suggestion="Start with basic backstory, motivation, and relationships",
            ))
        elif len(events) < MIN_BACKSTORY_EVENTS:
            findings.append(Finding(
                type="backstory",
                severity="medium",
                message="Minimal backstory content",
                suggestion="Add more timeline events to develop character history",
            ))
        if not owned:
            findings.append(Finding(
                type="elements",
                severity="medium",
                message="No associated memory tokens",
                suggestion="Create elements that reveal character story",
            ))

    elif entity.kind == EntityKind.TIMELINE_EVENT.value:
        revealing = graph.revealing_elements(entity.id)
        metrics["revealing_element_count"] = len(revealing)
        if not revealing:
            findings.append(Finding(
                type="evidence",
                severity="high",
                message="No revealing elements",
                suggestion="Create physical evidence or memory tokens that reveal this event",
            ))

    return findings, metrics


# =============================================================================
# DISPATCH
# =============================================================================

ANALYSES: Dict[str, Analysis] = {
    IntelligenceLayer.STORY.value: _story,
    IntelligenceLayer.SOCIAL.value: _social,
    IntelligenceLayer.ECONOMIC.value: _economic,
    IntelligenceLayer.PRODUCTION.value: _production,
    IntelligenceLayer.GAPS.value: _gaps,
}


def analyze_layer(layer: IntelligenceLayer, entity: Entity, graph: EntityGraph) -> OverlayReport:
    """Run one layer's analysis for one entity."""
    layer_value = IntelligenceLayer(layer).value
    findings, metrics = ANALYSES[layer_value](entity, graph)
    return OverlayReport(
        layer=layer_value,
        entity_id=entity.id,
        entity_kind=entity.kind,
        findings=tuple(findings),
        metrics=metrics,
    )


def compute_overlays(
    selection: Optional[Entity],
    active_layers: Iterable[IntelligenceLayer],
    graph: EntityGraph,
) -> List[OverlayReport]:
    """
    One report per active layer, in activation order.

    Returns an empty list without a selection. The graph's copy of the
    selected entity is preferred when present.
    """
    if selection is None:
        return []

    entity = graph.find_entity(selection.id) or selection
    reports = [analyze_layer(layer, entity, graph) for layer in active_layers]
    logger.debug(f"Computed {len(reports)} overlays for {entity.id}")
    return reports
