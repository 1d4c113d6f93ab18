"""
ATLAS SELECTION - The Selection State Machine

Owns the selection slice: the selected entity, a bounded back-history and
the view mode. All mutation goes through SelectionController; every
mutation is announced on the event bus so dependents (the render session,
overlay panels) recompute.

    select_entity(e)   history += [previous] if previous is a different entity
    navigate_back()    selected = history.pop() (no-op on empty history)
    set_view_mode(m)   direct override, selection untouched
"""
import logging
from typing import Optional, Tuple

import msgspec

from core.ontology import ViewMode
from core.schemas import Entity
from infrastructure.event_bus import EventBus, EventType, get_event_bus

logger = logging.getLogger(__name__)


class SelectionState(msgspec.Struct, kw_only=True, frozen=True):
    """Immutable view of the selection slice. History is oldest first."""
    selected_entity: Optional[Entity] = None
    history: Tuple[Entity, ...] = ()
    view_mode: str = ViewMode.OVERVIEW.value

    @property
    def selected_id(self) -> Optional[str]:
        return self.selected_entity.id if self.selected_entity is not None else None

    @property
    def history_ids(self) -> Tuple[str, ...]:
        return tuple(e.id for e in self.history)


def _mode_for(entity: Optional[Entity]) -> str:
    return ViewMode.ENTITY_FOCUS.value if entity is not None else ViewMode.OVERVIEW.value


class SelectionController:
    """
    Mutates the selection slice and publishes the change.

    Usage:
        selection = SelectionController()
        selection.select_entity(alex)
        selection.select_entity(locket)   # alex pushed onto history
        selection.navigate_back()         # alex selected again
    """

    def __init__(self, history_limit: int = 5, event_bus: Optional[EventBus] = None):
        if history_limit < 0:
            raise ValueError(f"history_limit must be >= 0, got {history_limit}")
        self.history_limit = history_limit
        self._bus = event_bus
        self._state = SelectionState()

    @property
    def bus(self) -> EventBus:
        return self._bus if self._bus is not None else get_event_bus()

    # === Accessors ===

    @property
    def state(self) -> SelectionState:
        return self._state

    @property
    def selected_entity(self) -> Optional[Entity]:
        return self._state.selected_entity

    @property
    def history(self) -> Tuple[Entity, ...]:
        return self._state.history

    @property
    def view_mode(self) -> str:
        return self._state.view_mode

    # === Mutations ===

    def select_entity(self, entity: Optional[Entity]) -> None:
        """
        Select an entity (None deselects).

        A different previous selection is pushed onto history, evicting the
        oldest entry beyond history_limit. Re-selecting the same id leaves
        history alone but still notifies.
        """
        current = self._state.selected_entity
        history = self._state.history
        if current is not None and (entity is None or current.id != entity.id):
            history = self._trim(history + (current,))

        self._commit(SelectionState(
            selected_entity=entity,
            history=history,
            view_mode=_mode_for(entity),
        ), action="select")

    def navigate_back(self) -> bool:
        """
        Re-select the most recent history entry.

        Returns:
            False (and changes nothing) when history is empty
        """
        if not self._state.history:
            logger.debug("navigate_back with empty history ignored")
            return False

        *rest, previous = self._state.history
        self._commit(SelectionState(
            selected_entity=previous,
            history=tuple(rest),
            view_mode=_mode_for(previous),
        ), action="back")
        return True

    def set_view_mode(self, mode: ViewMode) -> None:
        """Override the view mode without touching the selection."""
        self._commit(
            msgspec.structs.replace(self._state, view_mode=ViewMode(mode).value),
            action="view_mode",
        )

    def clear_history(self) -> None:
        self._commit(msgspec.structs.replace(self._state, history=()), action="clear_history")

    def restore(self, state: SelectionState) -> None:
        """
        Replace the whole slice (used when loading a persisted snapshot).

        The view mode is re-derived from the selection unless it is the
        intelligence deep dive, which only set_view_mode can enter.
        """
        view_mode = ViewMode(state.view_mode).value
        if view_mode != ViewMode.INTELLIGENCE_DEEP_DIVE.value:
            view_mode = _mode_for(state.selected_entity)
        self._commit(
            msgspec.structs.replace(
                state,
                history=self._trim(state.history),
                view_mode=view_mode,
            ),
            action="restore",
        )

    # === Internal ===

    def _trim(self, history: Tuple[Entity, ...]) -> Tuple[Entity, ...]:
        if self.history_limit == 0:
            return ()
        return history[-self.history_limit:]

    def _commit(self, new_state: SelectionState, action: str) -> None:
        previous_mode = self._state.view_mode
        self._state = new_state

        self.bus.emit(EventType.SELECTION_CHANGED, {
            "action": action,
            "selected_id": new_state.selected_id,
            "history": list(new_state.history_ids),
            "view_mode": new_state.view_mode,
        }, source="selection")

        if new_state.view_mode != previous_mode:
            self.bus.emit(EventType.VIEW_MODE_CHANGED, {
                "previous": previous_mode,
                "view_mode": new_state.view_mode,
            }, source="selection")
