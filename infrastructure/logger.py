"""
KNOWLEDGE GRAPH MUTATION LOGGER - The Edit Journal

Structured journal of graph mutations. Every add/update/remove/rename that
goes through a GraphStore constructed with a MutationLogger is recorded as a
MutationEvent in an in-memory ring buffer.

Architecture:
- MutationType: the vocabulary of mutations
- MutationEvent: one immutable record (msgspec.Struct)
- EventBuffer: thread-safe ring buffer for recent events
- MutationLogger: emit + query + subscription interface

Usage:
    journal = MutationLogger()
    store = GraphStore(mutation_logger=journal)
    store.add_node(name="Alpha")

    for event in journal.get_recent_events(10):
        print(f"{event.sequence}: {event.mutation_type} {event.entity_id}")

Diagnostics that are not mutations (truncation, dropped entities) go to the
standard `logging` module instead.
"""
import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import msgspec

logger = logging.getLogger(__name__)


# =============================================================================
# EVENT MODEL
# =============================================================================

class MutationType(str, Enum):
    """Types of graph mutations for event tracking."""
    NODE_CREATED = "NODE_CREATED"
    NODE_UPDATED = "NODE_UPDATED"
    NODE_RENAMED = "NODE_RENAMED"
    NODE_DELETED = "NODE_DELETED"
    NODES_MERGED = "NODES_MERGED"
    EDGE_CREATED = "EDGE_CREATED"
    EDGE_UPDATED = "EDGE_UPDATED"
    EDGE_RENAMED = "EDGE_RENAMED"
    EDGE_DELETED = "EDGE_DELETED"
    GRAPH_LOADED = "GRAPH_LOADED"
    GRAPH_CLEARED = "GRAPH_CLEARED"


class MutationEvent(msgspec.Struct, kw_only=True, frozen=True):
    """A single recorded mutation."""
    timestamp: str
    sequence: int
    mutation_type: str                  # MutationType value
    entity_id: Optional[str] = None     # Node or edge id
    previous_id: Optional[str] = None   # For renames and merges
    source_id: Optional[str] = None     # For edges
    target_id: Optional[str] = None
    detail: Dict[str, Any] = msgspec.field(default_factory=dict)


@dataclass
class LoggerConfig:
    """Configuration for the mutation logger."""
    buffer_size: int = 10000            # In-memory buffer size


# =============================================================================
# EVENT BUFFER
# =============================================================================

class EventBuffer:
    """
    Thread-safe ring buffer for recent mutation events.

    Provides O(1) append and O(n) query for filtering.
    """

    def __init__(self, max_size: int = 10000):
        self._buffer: deque[MutationEvent] = deque(maxlen=max_size)
        self._lock = threading.RLock()
        self._sequence = 0

    def append(self, event: MutationEvent) -> None:
        with self._lock:
            self._buffer.append(event)

    def get_since(self, timestamp: str) -> List[MutationEvent]:
        with self._lock:
            return [e for e in self._buffer if e.timestamp >= timestamp]

    def get_last(self, n: int) -> List[MutationEvent]:
        with self._lock:
            items = list(self._buffer)
            return items[-n:] if len(items) >= n else items

    def get_by_entity(self, entity_id: str) -> List[MutationEvent]:
        """Events where the entity is the subject or the previous id."""
        with self._lock:
            return [
                e for e in self._buffer
                if e.entity_id == entity_id or e.previous_id == entity_id
            ]

    def get_by_type(self, mutation_type: str) -> List[MutationEvent]:
        with self._lock:
            return [e for e in self._buffer if e.mutation_type == mutation_type]

    def next_sequence(self) -> int:
        with self._lock:
            self._sequence += 1
            return self._sequence

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)


# =============================================================================
# MUTATION LOGGER (Main Interface)
# =============================================================================

class MutationLogger:
    """
    Journal of graph mutations.

    Thread-safe for concurrent logging, although a GraphStore itself is
    single-threaded.
    """

    def __init__(self, config: Optional[LoggerConfig] = None):
        self.config = config or LoggerConfig()
        self._buffer = EventBuffer(self.config.buffer_size)
        self._subscribers: List[Callable[[MutationEvent], None]] = []

    def _now(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    def _emit(self, event: MutationEvent) -> None:
        self._buffer.append(event)

        for subscriber in self._subscribers:
            try:
                subscriber(event)
            except Exception:
                # A broken subscriber must not abort the mutation that fired it
                logger.exception("Mutation subscriber failed for %s", event.mutation_type)

    # =========================================================================
    # LOGGING METHODS
    # =========================================================================

    def record(
        self,
        mutation_type: MutationType,
        entity_id: Optional[str] = None,
        previous_id: Optional[str] = None,
        source_id: Optional[str] = None,
        target_id: Optional[str] = None,
        **detail: Any,
    ) -> MutationEvent:
        """Record a mutation of any type."""
        event = MutationEvent(
            timestamp=self._now(),
            sequence=self._buffer.next_sequence(),
            mutation_type=mutation_type.value,
            entity_id=entity_id,
            previous_id=previous_id,
            source_id=source_id,
            target_id=target_id,
            detail=detail,
        )
        self._emit(event)
        return event

    def log_node_created(self, node_id: str, name: str) -> MutationEvent:
        return self.record(MutationType.NODE_CREATED, node_id, name=name)

    def log_node_deleted(self, node_id: str, edges_removed: int = 0) -> MutationEvent:
        return self.record(MutationType.NODE_DELETED, node_id, edges_removed=edges_removed)

    def log_edge_created(
        self,
        edge_id: str,
        source_id: Optional[str],
        target_id: Optional[str],
        relationship: str,
    ) -> MutationEvent:
        return self.record(
            MutationType.EDGE_CREATED,
            edge_id,
            source_id=source_id,
            target_id=target_id,
            relationship=relationship,
        )

    def log_edge_deleted(
        self,
        edge_id: str,
        source_id: Optional[str],
        target_id: Optional[str],
    ) -> MutationEvent:
        return self.record(
            MutationType.EDGE_DELETED,
            edge_id,
            source_id=source_id,
            target_id=target_id,
        )

    # =========================================================================
    # QUERY METHODS
    # =========================================================================

    def get_recent_events(self, n: int = 100) -> List[MutationEvent]:
        return self._buffer.get_last(n)

    def get_events_since(self, timestamp: str) -> List[MutationEvent]:
        return self._buffer.get_since(timestamp)

    def get_events_for_entity(self, entity_id: str) -> List[MutationEvent]:
        return self._buffer.get_by_entity(entity_id)

    def get_events_by_type(self, mutation_type: str) -> List[MutationEvent]:
        return self._buffer.get_by_type(mutation_type)

    def get_entity_timeline(self, entity_id: str) -> List[Dict[str, Any]]:
        """Simplified list of mutations touching one entity."""
        return [
            {
                "time": e.timestamp,
                "type": e.mutation_type,
                "entity": e.entity_id,
                "previous": e.previous_id,
            }
            for e in self.get_events_for_entity(entity_id)
        ]

    # =========================================================================
    # SUBSCRIPTION
    # =========================================================================

    def subscribe(self, callback: Callable[[MutationEvent], None]) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[MutationEvent], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def clear(self) -> None:
        self._buffer.clear()

    def __len__(self) -> int:
        return len(self._buffer)
