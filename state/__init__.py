"""
ATLAS STATE - Framework-agnostic state slices.

- selection: SelectionController (selected entity, history, view mode)
- layers: IntelligenceLayerArbiter (bounded active overlay set)
- performance: PerformanceModeController (auto switching on node count)
- persistence: StateSnapshot save/load against a key-value store
- search: Ranked/debounced entity search, Throttle
- session: GraphSession wiring the slices to the render pipeline
"""

from state.selection import SelectionController, SelectionState
from state.layers import IntelligenceLayerArbiter
from state.performance import PerformanceModeController, PerformanceState
from state.persistence import StateSnapshot, FileKeyValueStore, load_snapshot, save_snapshot
from state.search import DebouncedEntitySearch, Throttle, search_entities
from state.session import GraphSession
