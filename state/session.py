"""
ATLAS GRAPH SESSION - Interaction Wiring

GraphSession owns one entity snapshot plus the three state slices and keeps
a current RenderFrame in step with them:

    click_node(id)   aggregate -> toggle expansion, entity -> select
    click_pane()     collapse all groups, deselect
    escape()         back if there is history, otherwise deselect
    set_viewport()   throttled recompute (culling); flush_viewport() renders
                     the last throttled viewport
    set_positions()  positions from the layout collaborator

Recomputation is triggered by SELECTION_CHANGED on the event bus, so a
selection made directly through the controller re-renders too, and any
deselect collapses expanded groups. After each
recompute the visible node count is fed to the performance controller.
"""
import logging
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional

from analysis.overlays import OverlayReport, compute_overlays
from core.entity_graph import EntityGraph, build_entity_graph
from core.ontology import PerformanceMode, ViewMode
from core.relationships import CharacterLink, derive_relationships
from core.schemas import Entity
from infrastructure.config import EngineConfig, get_config
from infrastructure.event_bus import EventBus, EventType, StateEvent, get_event_bus
from state.layers import IntelligenceLayerArbiter, LayerLike
from state.performance import PerformanceModeController
from state.persistence import STORAGE_KEY, StateSnapshot, load_snapshot, save_snapshot
from state.search import Throttle, search_entities
from state.selection import SelectionController, SelectionState
from viz.aggregation import GraphAggregator, is_aggregate_id
from viz.core import EMPTY_FRAME, RenderFrame
from viz.culling import Viewport
from viz.pipeline import Position, compute_render_frame

logger = logging.getLogger(__name__)


LayoutFn = Callable[[RenderFrame], Mapping[str, Position]]

_DESELECT_ACTIONS = frozenset({"select", "restore"})


class GraphSession:
    """
    Usage:
        session = GraphSession()
        session.load(entities, character_links)
        session.click_node("char-alex")
        frame = session.frame
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        event_bus: Optional[EventBus] = None,
        layout: Optional[LayoutFn] = None,
        aggregate: bool = True,
    ):
        self.config = config or get_config()
        self.bus = event_bus or get_event_bus()
        self.layout = layout
        self.aggregate = aggregate

        self.selection = SelectionController(
            history_limit=self.config.selection.history_limit,
            event_bus=self.bus,
        )
        self.layers = IntelligenceLayerArbiter.from_config(self.config.intelligence, event_bus=self.bus)
        self.performance = PerformanceModeController.from_config(self.config.performance, event_bus=self.bus)
        self.aggregator = GraphAggregator.from_config(self.config.graph)

        self._graph = EntityGraph()
        self._frame: RenderFrame = EMPTY_FRAME
        self._positions: Dict[str, Position] = {}
        self._viewport = Viewport(
            width=self.config.graph.viewport_width,
            height=self.config.graph.viewport_height,
        )
        self._viewport_throttle = Throttle.per_second(self.config.search.viewport_updates_per_second)

        self.bus.subscribe(EventType.SELECTION_CHANGED, self._on_selection_changed)

    def close(self) -> None:
        """Detach from the event bus."""
        self.bus.unsubscribe(EventType.SELECTION_CHANGED, self._on_selection_changed)

    # =========================================================================
    # ACCESSORS
    # =========================================================================

    @property
    def graph(self) -> EntityGraph:
        return self._graph

    @property
    def frame(self) -> RenderFrame:
        return self._frame

    @property
    def entities(self) -> List[Entity]:
        return self._graph.get_all_entities()

    @property
    def viewport(self) -> Viewport:
        return self._viewport

    # =========================================================================
    # SNAPSHOT
    # =========================================================================

    def load(self, entities: Iterable[Entity], character_links: Iterable[CharacterLink] = ()) -> RenderFrame:
        """
        Replace the entity snapshot and recompute.

        A selection that is no longer in the snapshot stays selected (it
        classifies every node as background) until the user moves on.
        """
        entities = list(entities)
        relationships = derive_relationships(entities, character_links)
        self._graph = build_entity_graph(entities, relationships)
        logger.info(f"Loaded snapshot: {self._graph!r}")
        return self.recompute()

    # =========================================================================
    # INTERACTION
    # =========================================================================

    def click_node(self, node_id: str) -> None:
        """Aggregate (or residual) click toggles expansion; entity click selects."""
        if is_aggregate_id(node_id):
            expanded = self.aggregator.toggle(node_id)
            self.bus.emit(EventType.EXPANSION_CHANGED, {
                "group_id": node_id,
                "expanded": expanded,
                "expanded_groups": sorted(self.aggregator.expanded),
            }, source="session")
            self.recompute()
            return

        entity = self._graph.find_entity(node_id)
        if entity is None:
            logger.debug(f"Click on unknown node {node_id} ignored")
            return
        self.selection.select_entity(entity)

    def select(self, entity_id: Optional[str]) -> None:
        """
        Select by id (None deselects).

        Unknown ids are ignored. An entity that is not (or no longer) in the
        snapshot can still be selected through selection.select_entity();
        every node then renders as background.
        """
        if entity_id is None:
            self.selection.select_entity(None)
            return
        entity = self._graph.find_entity(entity_id)
        if entity is None:
            logger.debug(f"Select of unknown entity {entity_id} ignored")
            return
        self.selection.select_entity(entity)

    def click_pane(self) -> None:
        self.aggregator.collapse_all()
        self.selection.select_entity(None)

    def escape(self) -> None:
        if self.selection.history:
            self.selection.navigate_back()
        else:
            self.selection.select_entity(None)

    def navigate_back(self) -> bool:
        return self.selection.navigate_back()

    def toggle_layer(self, layer: LayerLike):
        return self.layers.toggle(layer)

    def set_viewport(self, viewport: Viewport, force: bool = False) -> bool:
        """
        Record the viewport and recompute unless throttled.

        A throttled viewport is kept pending until the next allowed update
        or flush_viewport().

        Returns:
            True if a recompute happened
        """
        self._viewport = viewport
        if not force and not self._viewport_throttle.allow():
            return False
        self.recompute()
        return True

    def flush_viewport(self) -> bool:
        """
        Render the last throttled viewport (call at the end of a pan/zoom).

        Returns:
            True if a pending viewport was rendered
        """
        if not self._viewport_throttle.flush():
            return False
        self.recompute()
        return True

    def set_positions(self, positions: Mapping[str, Position]) -> RenderFrame:
        self._positions = {k: (float(v[0]), float(v[1])) for k, v in positions.items()}
        return self.recompute()

    def relayout(self) -> RenderFrame:
        """Ask the layout collaborator for positions of the current frame."""
        if self.layout is None:
            logger.debug("No layout collaborator configured")
            return self._frame
        return self.set_positions(self.layout(self._frame))

    def search(self, query: str) -> List[Entity]:
        return search_entities(self._graph.iter_entities(), query, self.config.search.max_results)

    def overlays(self) -> List[OverlayReport]:
        return compute_overlays(self.selection.selected_entity, self.layers.active, self._graph)

    # =========================================================================
    # RECOMPUTE
    # =========================================================================

    def recompute(self) -> RenderFrame:
        state = self.selection.state
        # Any recompute renders the current viewport
        self._viewport_throttle.pending = False
        self._frame = compute_render_frame(
            self._graph,
            selected_id=state.selected_id,
            view_mode=state.view_mode,
            expanded=self.aggregator.expanded,
            viewport=self._viewport,
            positions=self._positions,
            config=self.config.graph,
            strategies=self.aggregator.strategies,
            aggregate=self.aggregate,
        )
        self.bus.emit(EventType.FRAME_RECOMPUTED, {
            "node_count": self._frame.node_count,
            "edge_count": self._frame.edge_count,
            "culled_count": self._frame.culled_count,
            "selected_id": self._frame.selected_id,
        }, source="session")
        self.performance.update_node_count(self._frame.node_count)
        return self._frame

    def _on_selection_changed(self, event: StateEvent) -> None:
        # Deselecting (pane click, escape, direct controller call) resets expansion
        if event.payload.get("selected_id") is None and event.payload.get("action") in _DESELECT_ACTIONS:
            self.aggregator.collapse_all()
        self.recompute()

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def snapshot(self) -> StateSnapshot:
        perf = self.performance.state
        return StateSnapshot(
            selected_entity=self.selection.selected_entity,
            view_mode=ViewMode(self.selection.view_mode),
            active_layers=self.layers.active,
            performance_mode=PerformanceMode(perf.mode),
            performance_override=PerformanceMode(perf.user_override) if perf.user_override else None,
            viewport=self._viewport,
        )

    def save(self, store: MutableMapping[str, bytes], key: str = STORAGE_KEY) -> StateSnapshot:
        snapshot = self.snapshot()
        save_snapshot(store, snapshot, key)
        return snapshot

    def restore(self, store: MutableMapping[str, bytes], key: str = STORAGE_KEY) -> StateSnapshot:
        """Load a snapshot; history and the visible node count start empty."""
        snapshot = load_snapshot(store, key)
        if snapshot.viewport is not None:
            self._viewport = snapshot.viewport
        self.layers.set_active(snapshot.active_layers)
        self.performance.restore(snapshot.performance_mode, snapshot.performance_override)
        self.selection.restore(SelectionState(
            selected_entity=snapshot.selected_entity,
            view_mode=snapshot.view_mode.value,
        ))
        self.bus.emit(EventType.SNAPSHOT_RESTORED, {
            "selected_id": self.selection.state.selected_id,
            "active_layers": [l.value for l in self.layers.active],
            "performance_mode": self.performance.mode,
        }, source="session")
        return snapshot
