"""
ATLAS CONFIG - Engine Configuration

Configuration is loaded once from config/atlas.toml and converted into
typed msgspec structs. Components receive an EngineConfig (or pull the
process-wide one via get_config()) instead of reading TOML themselves.

Usage:
    from infrastructure.config import get_config

    config = get_config()
    budget = config.graph.node_budget

    # Tests swap the global config
    set_config(EngineConfig(graph=GraphConfig(node_budget=10)))
    reset_config()
"""
import warnings
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import msgspec


DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "atlas.toml"


# =============================================================================
# CONFIG SECTIONS
# =============================================================================

class GraphConfig(msgspec.Struct, kw_only=True, frozen=True):
    """Budgets and thresholds for aggregation and viewport culling."""
    node_budget: int = 50
    culling_threshold: int = 100
    min_group_size: int = 3
    viewport_padding: float = 200.0
    label_zoom_threshold: float = 0.5
    viewport_width: float = 1920.0
    viewport_height: float = 1080.0


class SelectionConfig(msgspec.Struct, kw_only=True, frozen=True):
    history_limit: int = 5


class IntelligenceConfig(msgspec.Struct, kw_only=True, frozen=True):
    max_active_layers: int = 3
    default_layers: Tuple[str, ...] = ("story", "social")


class PerformanceConfig(msgspec.Struct, kw_only=True, frozen=True):
    node_threshold: int = 40


class SearchConfig(msgspec.Struct, kw_only=True, frozen=True):
    debounce_seconds: float = 0.3
    max_results: int = 20
    viewport_updates_per_second: float = 10.0


class EngineConfig(msgspec.Struct, kw_only=True, frozen=True):
    """Top-level configuration, one field per TOML section."""
    graph: GraphConfig = msgspec.field(default_factory=GraphConfig)
    selection: SelectionConfig = msgspec.field(default_factory=SelectionConfig)
    intelligence: IntelligenceConfig = msgspec.field(default_factory=IntelligenceConfig)
    performance: PerformanceConfig = msgspec.field(default_factory=PerformanceConfig)
    search: SearchConfig = msgspec.field(default_factory=SearchConfig)


# =============================================================================
# LOADING
# =============================================================================

def load_toml_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load raw configuration sections from atlas.toml.

    Returns:
        Dict with all configuration sections (empty if the file is unreadable)
    """
    try:
        import tomllib
        config_path = path or DEFAULT_CONFIG_PATH

        with open(config_path, "rb") as f:
            return tomllib.load(f)
    except Exception as e:
        warnings.warn(f"Failed to load config from TOML: {e}")
        return {}


def load_engine_config(path: Optional[Path] = None) -> EngineConfig:
    """
    Load and validate the engine configuration.

    Unknown keys are ignored; values of the wrong type fall back to the
    defaults for the whole file with a warning.
    """
    raw = load_toml_config(path)
    try:
        return msgspec.convert(raw, EngineConfig)
    except msgspec.ValidationError as e:
        warnings.warn(f"Invalid engine config, using defaults: {e}")
        return EngineConfig()


# =============================================================================
# GLOBAL INSTANCE
# =============================================================================

_config: Optional[EngineConfig] = None


def get_config() -> EngineConfig:
    """Get the process-wide EngineConfig, loading it on first use."""
    global _config
    if _config is None:
        _config = load_engine_config()
    return _config


def set_config(config: EngineConfig) -> None:
    """Replace the process-wide EngineConfig."""
    global _config
    _config = config


def reset_config() -> None:
    """Forget the cached config so the next get_config() reloads it."""
    global _config
    _config = None
