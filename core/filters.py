"""
KNOWLEDGE GRAPH FILTERS - Node Selection Queries

Read-only selections over a GraphStore, complementing the generic
GraphStore.filter_nodes(key, value, match_type):

- filter_by_priority / filter_by_category / filter_by_color: membership in
  a chosen set of values
- filter_by_deadline, overdue_nodes, upcoming_nodes: deadline windows
- filter_by_date_range: created / modified / user date windows
- filter_by_connections: the one-step neighborhood of a node

Every function returns nodes in insertion order and never mutates the
store. An empty selection (no values, no dates, no direction) is a caller
error and raises ValueError.

Dates are compared by calendar day, inclusive at both ends. Stored dates
are ISO strings (YYYY-MM-DD or full timestamps); a value that does not
parse never matches.
"""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, List, Optional, Union

from core.graph_store import GraphStore
from core.schemas import NODE_FIELD_NAMES, NodeData

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime, str]

DATE_FIELDS = ("created_date", "modified_date", "user_date", "deadline")


# =============================================================================
# DATE HELPERS
# =============================================================================

def parse_date(value: Optional[DateLike]) -> Optional[date]:
    """
    Calendar day of an ISO date/timestamp, or None if absent or unparseable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return datetime.fromisoformat(value.strip()).date()
    except ValueError:
        logger.debug("Unparseable date %r", value)
        return None


def _in_window(day: date, start: Optional[date], end: Optional[date]) -> bool:
    if start is not None and day < start:
        return False
    if end is not None and day > end:
        return False
    return True


def _window(start: Optional[DateLike], end: Optional[DateLike]):
    start_day = parse_date(start)
    end_day = parse_date(end)
    if start_day is None and end_day is None:
        raise ValueError("At least one of start or end must be a valid date")
    return start_day, end_day


def _today(today: Optional[DateLike]) -> date:
    return parse_date(today) or datetime.now(timezone.utc).date()


# =============================================================================
# VALUE SET FILTERS
# =============================================================================

def _selection(values: Iterable[str], what: str) -> set:
    if isinstance(values, str):
        values = [values]
    selected = {v for v in values if v}
    if not selected:
        raise ValueError(f"Select at least one {what}")
    return selected


def filter_by_priority(graph: GraphStore, priorities: Iterable[str]) -> List[NodeData]:
    """Nodes whose priority is one of `priorities` (exact match)."""
    selected = _selection(priorities, "priority")
    return [n for n in graph.nodes if n.priority and n.priority in selected]


def filter_by_category(graph: GraphStore, categories: Iterable[str]) -> List[NodeData]:
    """Nodes whose category (trimmed) is one of `categories`."""
    selected = {c.strip() for c in _selection(categories, "category")}
    return [n for n in graph.nodes if n.category.strip() and n.category.strip() in selected]


def filter_by_color(graph: GraphStore, colors: Iterable[str]) -> List[NodeData]:
    """Nodes whose color is one of `colors` (hex, case-insensitive)."""
    selected = {c.lower() for c in _selection(colors, "color")}
    return [n for n in graph.nodes if n.color and n.color.lower() in selected]


# =============================================================================
# DATE FILTERS
# =============================================================================

def filter_by_deadline(
    graph: GraphStore,
    start: Optional[DateLike] = None,
    end: Optional[DateLike] = None,
    include_empty: bool = False,
) -> List[NodeData]:
    """
    Nodes whose deadline falls within [start, end].

    Either bound may be omitted, not both. Nodes without a deadline are
    included only with `include_empty`; an unparseable deadline never
    matches.

    Raises:
        ValueError: If neither bound is a valid date
    """
    start_day, end_day = _window(start, end)
    results = []
    for node in graph.nodes:
        if not node.deadline.strip():
            if include_empty:
                results.append(node)
            continue
        day = parse_date(node.deadline)
        if day is not None and _in_window(day, start_day, end_day):
            results.append(node)
    return results


def overdue_nodes(graph: GraphStore, today: Optional[DateLike] = None) -> List[NodeData]:
    """Nodes whose deadline is strictly before `today` (default: UTC today)."""
    return filter_by_deadline(graph, end=_today(today) - timedelta(days=1))


def upcoming_nodes(
    graph: GraphStore,
    days: int = 7,
    today: Optional[DateLike] = None,
) -> List[NodeData]:
    """Nodes due between `today` and `today + days`, inclusive."""
    if days < 0:
        raise ValueError("days must be non-negative")
    start = _today(today)
    return filter_by_deadline(graph, start=start, end=start + timedelta(days=days))


def filter_by_date_range(
    graph: GraphStore,
    field: str,
    start: Optional[DateLike] = None,
    end: Optional[DateLike] = None,
) -> List[NodeData]:
    """
    Nodes whose date `field` falls within [start, end].

    Args:
        field: createdDate, modifiedDate, userDate or deadline (wire or
            attribute name)

    Raises:
        ValueError: On an unknown field or if neither bound is a valid date
    """
    attr = NODE_FIELD_NAMES.get(field)
    if attr not in DATE_FIELDS:
        raise ValueError(f"Not a date field: {field}")
    start_day, end_day = _window(start, end)

    results = []
    for node in graph.nodes:
        day = parse_date(getattr(node, attr))
        if day is not None and _in_window(day, start_day, end_day):
            results.append(node)
    return results


# =============================================================================
# CONNECTIONS
# =============================================================================

def filter_by_connections(
    graph: GraphStore,
    node_id: str,
    outgoing: bool = True,
    incoming: bool = True,
    include_selected: bool = False,
) -> List[NodeData]:
    """
    Nodes one edge away from `node_id`.

    Edge direction is taken literally (source -> target) regardless of the
    `directed` flag. Dangling ends contribute nothing.

    Args:
        outgoing: Include targets of edges leaving the node
        incoming: Include sources of edges entering the node
        include_selected: Include the node itself

    Raises:
        ValueError: If node_id is empty or both directions are off
    """
    if not node_id:
        raise ValueError("Select a node")
    if not outgoing and not incoming:
        raise ValueError("Select at least one connection direction")

    connected = set()
    for edge in graph.edges:
        if outgoing and edge.source == node_id and edge.target is not None:
            connected.add(edge.target)
        if incoming and edge.target == node_id and edge.source is not None:
            connected.add(edge.source)
    if include_selected:
        connected.add(node_id)

    return [n for n in graph.nodes if n.id in connected]
