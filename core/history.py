"""
KNOWLEDGE GRAPH HISTORY - Undo/Redo Over Document Snapshots

HistoryManager keeps a bounded list of whole-graph snapshots (the dicts
produced by GraphStore.to_json) and a cursor into it.

Snapshots are stored msgspec-encoded, so a stored state can never be
mutated through a reference held by the caller, and every undo()/redo()
hands out a fresh copy.

Usage:
    history = HistoryManager.for_store(store)
    history.record(store)            # after each edit

    snapshot = history.undo()
    if snapshot is not None:
        history.restore(store, snapshot)
"""
from typing import Any, Dict, List, Optional

from core.graph_store import GraphStore, LoadReport
from core.schemas import decode_document, encode_document


class HistoryManager:
    """Linear undo/redo stack of graph snapshots."""

    def __init__(self, max_history: int = 50):
        if max_history < 1:
            raise ValueError("max_history must be at least 1")
        self.max_history = max_history
        self._states: List[bytes] = []
        self._index = -1

    @classmethod
    def for_store(cls, store: GraphStore) -> "HistoryManager":
        """Create a manager sized by the store config's `history_size`."""
        return cls(max_history=store.config.history_size)

    def add_state(self, state: Dict[str, Any]) -> None:
        """
        Push a snapshot.

        States after the cursor (the redo tail) are discarded. When the
        stack is full the oldest state is evicted.
        """
        del self._states[self._index + 1:]
        self._states.append(encode_document(state))

        if len(self._states) > self.max_history:
            self._states.pop(0)
        else:
            self._index += 1

    def undo(self) -> Optional[Dict[str, Any]]:
        """Step back; returns a copy of the now-current state, or None."""
        if not self.can_undo:
            return None
        self._index -= 1
        return decode_document(self._states[self._index])

    def redo(self) -> Optional[Dict[str, Any]]:
        """Step forward; returns a copy of the now-current state, or None."""
        if not self.can_redo:
            return None
        self._index += 1
        return decode_document(self._states[self._index])

    @property
    def can_undo(self) -> bool:
        return self._index > 0

    @property
    def can_redo(self) -> bool:
        return self._index < len(self._states) - 1

    @property
    def current_index(self) -> int:
        return self._index

    def clear(self) -> None:
        self._states = []
        self._index = -1

    def info(self) -> Dict[str, Any]:
        return {
            "size": len(self._states),
            "current_index": self._index,
            "can_undo": self.can_undo,
            "can_redo": self.can_redo,
        }

    # =========================================================================
    # STORE HELPERS
    # =========================================================================

    def record(self, store: GraphStore) -> None:
        """Snapshot the store's current document."""
        self.add_state(store.to_json())

    @staticmethod
    def restore(store: GraphStore, snapshot: Dict[str, Any]) -> LoadReport:
        """Replace the store's contents with a snapshot from undo()/redo()."""
        return store.from_json(snapshot)

    def __len__(self) -> int:
        return len(self._states)
