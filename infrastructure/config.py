"""
KNOWLEDGE GRAPH CONFIG - Store Limits and Defaults

Configuration is loaded once (from a TOML file or built in code) and passed
explicitly to the GraphStore and to helpers that need it. There is no global
config instance.

TOML layout (all keys optional):

    [graph]
    max_nodes = 10000
    max_edges = 50000
    max_string_length = 10000
    default_node_color = "#3498db"
    default_edge_color = "#95a5a6"
    default_relationship = "is a subset of"
    history_size = 50
    max_paths = 100
    suggestion_threshold = 0.5

Usage:
    from infrastructure.config import load_config

    config = load_config(Path("graph.toml"))
    store = GraphStore(config=config)
"""
import tomllib
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import msgspec

# Hard defaults, shared with core.sanitize and core.schemas
MAX_NODES = 10_000
MAX_EDGES = 50_000
MAX_STRING_LENGTH = 10_000

DEFAULT_NODE_COLOR = "#3498db"
DEFAULT_EDGE_COLOR = "#95a5a6"
DEFAULT_RELATIONSHIP = "is a subset of"


class StoreConfig(msgspec.Struct, kw_only=True, frozen=True):
    """Per-store limits and defaults."""
    max_nodes: int = MAX_NODES
    max_edges: int = MAX_EDGES
    max_string_length: int = MAX_STRING_LENGTH
    default_node_color: str = DEFAULT_NODE_COLOR
    default_edge_color: str = DEFAULT_EDGE_COLOR
    default_relationship: str = DEFAULT_RELATIONSHIP
    history_size: int = 50
    max_paths: int = 100
    suggestion_threshold: float = 0.5

    def __post_init__(self):
        if self.max_nodes < 0 or self.max_edges < 0:
            raise ValueError("max_nodes and max_edges must be non-negative")
        if self.max_string_length < 1:
            raise ValueError("max_string_length must be positive")
        if self.history_size < 1:
            raise ValueError("history_size must be positive")


DEFAULT_CONFIG = StoreConfig()


def config_from_dict(section: Dict[str, Any]) -> StoreConfig:
    """
    Build a StoreConfig from a mapping (e.g. the [graph] TOML table).

    Raises:
        msgspec.ValidationError: On wrong types or invalid values.
    """
    return msgspec.convert(section, type=StoreConfig)


def load_config(path: Optional[Path] = None) -> StoreConfig:
    """
    Load configuration from a TOML file.

    Args:
        path: TOML file. None returns the defaults.

    Returns:
        StoreConfig. A missing or invalid file produces a warning and the
        defaults; configuration problems never stop the editor from starting.
    """
    if path is None:
        return DEFAULT_CONFIG

    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
        return config_from_dict(data.get("graph", {}))
    except (OSError, tomllib.TOMLDecodeError, msgspec.ValidationError) as e:
        warnings.warn(f"Failed to load config from {path}: {e}")
        return DEFAULT_CONFIG
