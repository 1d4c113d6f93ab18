"""
ATLAS INTELLIGENCE LAYERS - Bounded Active Set

At most `max_active` analytical layers are active at once. The active set
is ordered by activation (oldest first); activating one more than allowed
evicts the oldest. Independent of the selection.
"""
import logging
from typing import Iterable, Optional, Tuple, Union

from core.ontology import IntelligenceLayer
from infrastructure.config import IntelligenceConfig
from infrastructure.event_bus import EventBus, EventType, get_event_bus

logger = logging.getLogger(__name__)


LayerLike = Union[IntelligenceLayer, str]


def parse_layer(layer: LayerLike) -> IntelligenceLayer:
    """
    Raises:
        ValueError: If the id is not a known layer
    """
    try:
        return IntelligenceLayer(layer)
    except ValueError:
        valid = ", ".join(l.value for l in IntelligenceLayer)
        raise ValueError(f"Unknown intelligence layer {layer!r} (expected one of: {valid})") from None


class IntelligenceLayerArbiter:
    """
    Usage:
        layers = IntelligenceLayerArbiter()
        layers.toggle("story")
        layers.toggle("economic")
        layers.active       # (STORY, ECONOMIC)
    """

    def __init__(
        self,
        max_active: int = 3,
        initial: Iterable[LayerLike] = (),
        event_bus: Optional[EventBus] = None,
    ):
        if max_active < 1:
            raise ValueError(f"max_active must be >= 1, got {max_active}")
        self.max_active = max_active
        self._bus = event_bus
        self._active: Tuple[IntelligenceLayer, ...] = self._bounded(initial)

    @classmethod
    def from_config(cls, config: IntelligenceConfig, event_bus: Optional[EventBus] = None):
        return cls(
            max_active=config.max_active_layers,
            initial=config.default_layers,
            event_bus=event_bus,
        )

    @property
    def bus(self) -> EventBus:
        return self._bus if self._bus is not None else get_event_bus()

    @property
    def active(self) -> Tuple[IntelligenceLayer, ...]:
        return self._active

    def is_active(self, layer: LayerLike) -> bool:
        return parse_layer(layer) in self._active

    def toggle(self, layer: LayerLike) -> Tuple[IntelligenceLayer, ...]:
        """
        Deactivate if active, otherwise activate (evicting the oldest when full).

        Returns:
            The new active tuple
        """
        layer = parse_layer(layer)
        if layer in self._active:
            self._set(tuple(l for l in self._active if l != layer), action="deactivate")
        elif len(self._active) < self.max_active:
            self._set(self._active + (layer,), action="activate")
        else:
            evicted = self._active[0]
            logger.debug(f"Evicting {evicted.value} to activate {layer.value}")
            self._set(self._active[1:] + (layer,), action="activate")
        return self._active

    def clear(self) -> None:
        self._set((), action="clear")

    def set_active(self, layers: Iterable[LayerLike]) -> None:
        """Replace the active set (most recent last); extra layers drop from the front."""
        self._set(self._bounded(layers), action="restore")

    def _bounded(self, layers: Iterable[LayerLike]) -> Tuple[IntelligenceLayer, ...]:
        unique = []
        for layer in layers:
            parsed = parse_layer(layer)
            if parsed in unique:
                unique.remove(parsed)
            unique.append(parsed)
        return tuple(unique[-self.max_active:])

    def _set(self, active: Tuple[IntelligenceLayer, ...], action: str) -> None:
        self._active = active
        self.bus.emit(EventType.LAYERS_CHANGED, {
            "action": action,
            "active": [l.value for l in active],
        }, source="layers")
