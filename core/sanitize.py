"""
KNOWLEDGE GRAPH SANITIZE - Bounding Untrusted Values

Every value that enters the graph from outside (an imported document, a
property edit, an importer) passes through these functions first.

Contract:
- Never raise. A bad value becomes a default, a clamped number, or a
  truncated string.
- Per-field violations are silent (a warning is logged for truncation).
- Collection-size limits are NOT enforced here; the store rejects oversized
  documents outright (see GraphStore.from_json).

Collection and string limits default to the values in infrastructure.config;
StoreConfig may lower or raise them per store instance.
"""
import logging
import math
import re
from typing import Any, Optional

from infrastructure.config import (
    DEFAULT_EDGE_COLOR,
    DEFAULT_NODE_COLOR,
    MAX_EDGES,
    MAX_NODES,
    MAX_STRING_LENGTH,
)

logger = logging.getLogger(__name__)


# =============================================================================
# LIMITS
# =============================================================================

MIN_NODE_SIZE = 1
MAX_NODE_SIZE = 100
MIN_EDGE_WEIGHT = 0
MAX_EDGE_WEIGHT = 1000

# Layout coordinates are unbounded in the UI but must stay finite
MAX_COORDINATE = 1_000_000.0

_COLOR_PATTERN = re.compile(r"^#[0-9A-F]{6}$", re.IGNORECASE)


# =============================================================================
# VALIDATORS
# =============================================================================

def validate_string(value: Any, max_length: int = MAX_STRING_LENGTH, default: str = "") -> str:
    """
    Coerce a value to a bounded string.

    None becomes `default`. Anything else is stringified and truncated to
    `max_length` characters.
    """
    if value is None:
        return default

    if isinstance(value, str):
        text = value
    else:
        text = stringify_value(value)

    if len(text) > max_length:
        logger.warning(
            "Truncating string of length %d to %d characters", len(text), max_length
        )
        text = text[:max_length]

    return text


def validate_number(
    value: Any,
    min_value: float,
    max_value: float,
    default: float,
) -> float:
    """
    Coerce a value to a number clamped into [min_value, max_value].

    Booleans, NaN, infinities and non-numeric strings yield `default`.
    Numeric strings ("12", "3.5") are parsed.
    """
    if isinstance(value, bool) or value is None:
        return default

    if isinstance(value, (int, float)):
        number = value
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return default
    else:
        return default

    if isinstance(number, float) and not math.isfinite(number):
        return default

    if number < min_value:
        return min_value
    if number > max_value:
        return max_value
    return number


def validate_optional_number(
    value: Any,
    min_value: float = -MAX_COORDINATE,
    max_value: float = MAX_COORDINATE,
) -> Optional[float]:
    """Like validate_number, but absent or invalid values stay None."""
    if value is None:
        return None
    number = validate_number(value, min_value, max_value, default=math.nan)
    if isinstance(number, float) and math.isnan(number):
        return None
    return float(number)


def validate_color(value: Any, fallback: str = DEFAULT_NODE_COLOR) -> str:
    """Accept only #RRGGBB hex colors (any case); anything else is `fallback`."""
    if isinstance(value, str) and _COLOR_PATTERN.match(value):
        return value
    return fallback


def validate_bool(value: Any, default: bool) -> bool:
    """Accept real booleans only."""
    if isinstance(value, bool):
        return value
    return default


def validate_custom_value(value: Any, max_length: int = MAX_STRING_LENGTH) -> Any:
    """
    Bound a custom property value.

    Custom properties hold scalars only: str, int, float, bool. Containers
    and other objects are stringified so they cannot smuggle nested
    structures into the graph.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        return value
    return validate_string(value, max_length)


# =============================================================================
# TEXT RENDERING
# =============================================================================

def stringify_value(value: Any) -> str:
    """
    Render a scalar the way the exchanged JSON would show it.

    Used wherever values are compared as text (clustering, filtering,
    similarity), so that True groups as "true" and 3.0 as "3".
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
