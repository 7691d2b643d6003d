"""
KNOWLEDGE GRAPH INFRASTRUCTURE - System-Level Modules

This package contains infrastructure components:
- config: Store limits and defaults, loaded from TOML
- logger: Mutation event journal
"""

from infrastructure.config import StoreConfig, DEFAULT_CONFIG, load_config
from infrastructure.logger import (
    MutationLogger,
    MutationEvent,
    MutationType,
    LoggerConfig,
)

__all__ = [
    "StoreConfig",
    "DEFAULT_CONFIG",
    "load_config",
    "MutationLogger",
    "MutationEvent",
    "MutationType",
    "LoggerConfig",
]
