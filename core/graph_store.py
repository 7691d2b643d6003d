"""
KNOWLEDGE GRAPH STORE - The Owner of Nodes and Edges

This is the most critical file in the system. Every write to the graph goes
through GraphStore, which enforces:
- Identity: node/edge ids are content-derived from names (sha256), unique
- Referential integrity: edge endpoints always name an existing node (or are
  None for a dangling end); deleting a node cascades to its edges; renames
  rewrite endpoints; merges rewire and de-duplicate
- Sanitization: every incoming field is bounded (core.sanitize)

Architecture:
  Collaborators (renderer, importer, undo/redo, workflow UI)
  - Read: store.nodes, store.edges, get_node(), get_edge()
  - Write: add_node(), update_node(), rename_node(), add_edge(), ...

  Storage (this file)
  - _nodes: Dict[str, NodeData]  (insertion-ordered, id -> node)
  - _edges: Dict[str, EdgeData]  (insertion-ordered, id -> edge)

  Readers (core.algorithms, core.analytics, core.workflow)
  - Consume a store without mutating it

Failure Policy:
  Expected failures (unknown id, name collision, missing endpoint) return a
  signal: None / False. Exceptions are reserved for a malformed document
  (DocumentFormatError) and for oversized documents (GraphLimitError).

Thread Safety:
  NOT thread-safe. One store belongs to one editing session.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import msgspec

from core.sanitize import (
    MAX_COORDINATE,
    MAX_EDGE_WEIGHT,
    MAX_NODE_SIZE,
    MIN_EDGE_WEIGHT,
    MIN_NODE_SIZE,
    stringify_value,
    validate_bool,
    validate_color,
    validate_custom_value,
    validate_number,
    validate_optional_number,
    validate_string,
)
from core.schemas import (
    DEFAULT_EDGE_WEIGHT,
    DEFAULT_NODE_SIZE,
    DEFAULT_PRIORITY,
    EDGE_FIELD_NAMES,
    EDGE_RESERVED_KEYS,
    NODE_FIELD_NAMES,
    NODE_RESERVED_KEYS,
    SCRATCH_KEYS,
    EdgeData,
    GraphMetadata,
    GraphSettings,
    NodeData,
    WorldBoundary,
    decode_document,
    derive_id,
    encode_document,
    generate_id,
    metadata_to_dict,
    now_utc,
    settings_to_dict,
    today_utc,
)
from infrastructure.config import DEFAULT_CONFIG, StoreConfig
from infrastructure.logger import MutationLogger, MutationType

logger = logging.getLogger(__name__)

SPLIT_NODE_COLOR = "#9b59b6"
MAX_CUSTOM_KEY_LENGTH = 256
MAX_LABEL_SIZE = 200

EDGE_ENDS = ("source", "target")


# =============================================================================
# CUSTOM EXCEPTIONS
# =============================================================================

class GraphError(Exception):
    """Base exception for graph operations."""
    pass


class NodeNotFoundError(GraphError):
    """Raised by strict accessors when a node id is not in the graph."""
    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node not found: {node_id}")


class EdgeNotFoundError(GraphError):
    """Raised by strict accessors when an edge id is not in the graph."""
    def __init__(self, edge_id: str):
        self.edge_id = edge_id
        super().__init__(f"Edge not found: {edge_id}")


class DocumentFormatError(GraphError, ValueError):
    """Raised when an imported document does not have the graph shape."""
    pass


class GraphLimitError(GraphError):
    """Raised when an imported document exceeds a collection-size limit."""
    def __init__(self, kind: str, count: int, limit: int):
        self.kind = kind
        self.count = count
        self.limit = limit
        super().__init__(f"Document has {count} {kind}; the limit is {limit}")


# =============================================================================
# LOAD REPORT
# =============================================================================

@dataclass
class LoadReport:
    """Outcome of GraphStore.from_json."""
    nodes_loaded: int = 0
    edges_loaded: int = 0
    dropped_nodes: int = 0
    dropped_edges: int = 0
    diagnostics: List[str] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        """True if nothing was dropped."""
        return self.dropped_nodes == 0 and self.dropped_edges == 0

    def drop_node(self, message: str) -> None:
        self.dropped_nodes += 1
        self.diagnostics.append(message)
        logger.warning("Dropping node on load: %s", message)

    def drop_edge(self, message: str) -> None:
        self.dropped_edges += 1
        self.diagnostics.append(message)
        logger.warning("Dropping edge on load: %s", message)


# =============================================================================
# FIELD SANITIZERS
# =============================================================================

_NODE_TEXT_FIELDS = (
    "icon", "description", "category", "sub_cat",
    "link1", "link2", "link3", "link4",
    "deadline", "user_date",
)

_NODE_POSITION_FIELDS = ("x", "y", "fx", "fy")

_EDGE_POSITION_FIELDS = (
    "free_source_x", "free_source_y", "free_target_x", "free_target_y",
)

# Fields filled from the absorbed node when empty on the kept node
_MERGE_TEXT_FIELDS = _NODE_TEXT_FIELDS


def _resolve_endpoint(value: Any, max_length: int) -> Optional[str]:
    """
    Node id referenced by an edge end.

    None and "" mean a dangling end. An embedded node reference
    ({"id": ...}) resolves to its id.

    Raises:
        ValueError: If the value is neither an id nor a node reference
    """
    if isinstance(value, dict):
        node_id = _normalize_id(value.get("id"), max_length)
        if node_id is None:
            raise ValueError(f"node reference without an id: {value!r}")
        return node_id
    if value is None or value == "":
        return None
    node_id = _normalize_id(value, max_length)
    if node_id is None:
        raise ValueError(f"not a node id: {value!r}")
    return node_id


def _normalize_id(value: Any, max_length: int) -> Optional[str]:
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        return None
    text = validate_string(value, max_length).strip()
    return text or None


def _flatten_legacy(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Accept the older nested layout {"id", "properties": {...}, "x", "y"}.

    Top-level keys win over keys inside "properties".
    """
    nested = raw.get("properties")
    if not isinstance(nested, dict):
        return dict(raw)
    merged = dict(nested)
    merged.update({k: v for k, v in raw.items() if k != "properties"})
    return merged


# =============================================================================
# GRAPH STORE
# =============================================================================

class GraphStore:
    """
    In-memory knowledge graph with content-addressed identity.

    Usage:
        store = GraphStore()

        alpha = store.add_node(name="Alpha", category="task")
        beta = store.add_node(name="Beta")
        store.add_edge(alpha.id, beta.id, name="alpha-beta", relationship="next")

        document = store.to_json()      # snapshot
        store.from_json(document)       # restore

    Collaborators read `nodes` / `edges` freely and route every write through
    the methods below.
    """

    def __init__(
        self,
        config: Optional[StoreConfig] = None,
        mutation_logger: Optional[MutationLogger] = None,
    ):
        self.config = config or DEFAULT_CONFIG
        self.metadata = GraphMetadata()
        self.settings = GraphSettings()

        # Insertion-ordered storage: display order and algorithm tie-breaks
        self._nodes: Dict[str, NodeData] = {}
        self._edges: Dict[str, EdgeData] = {}

        # derive_id(name) -> id. Loaded ids need not be derived from names.
        self._node_names: Dict[str, str] = {}
        self._edge_names: Dict[str, str] = {}

        self._journal = mutation_logger

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def nodes(self) -> List[NodeData]:
        """Nodes in insertion order."""
        return list(self._nodes.values())

    @property
    def edges(self) -> List[EdgeData]:
        """Edges in insertion order."""
        return list(self._edges.values())

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    @property
    def edge_count(self) -> int:
        return len(self._edges)

    @property
    def is_empty(self) -> bool:
        return not self._nodes

    # =========================================================================
    # NODE OPERATIONS
    # =========================================================================

    def add_node(
        self,
        properties: Optional[Mapping[str, Any]] = None,
        **kwargs: Any,
    ) -> Optional[NodeData]:
        """
        Create a node whose id is derived from its name.

        Args:
            properties: Field values by wire name (camelCase) or attribute
                name. Unknown keys become custom properties.
            **kwargs: Same, as keyword arguments (override `properties`).

        Returns:
            The created NodeData, or None if the name collides with an
            existing node (the graph is left unchanged) or the node limit
            is reached.
        """
        props = {**(properties or {}), **kwargs}
        fields, custom = self._sanitize_node_props(props)
        fields.pop("id", None)

        name = fields.pop("name", "")
        if name.strip():
            node_id = derive_id(name)
        else:
            node_id = generate_id()
            name = node_id
        name_key = derive_id(name)

        if name_key in self._node_names or node_id in self._nodes:
            logger.warning("Duplicate node name %r: node %s already exists", name, node_id)
            return None

        if len(self._nodes) >= self.config.max_nodes:
            logger.warning("Node limit %d reached; %r not added", self.config.max_nodes, name)
            return None

        fields.setdefault("color", self.config.default_node_color)
        now = now_utc()
        fields.setdefault("created_date", now)
        fields["modified_date"] = now
        node = NodeData(
            id=node_id,
            name=name,
            custom={k: v for k, v in custom.items() if v is not None},
            **fields,
        )

        self._nodes[node_id] = node
        self._node_names[name_key] = node_id
        self._touch()
        self._record(MutationType.NODE_CREATED, node_id, name=name)
        return node

    def get_node(self, node_id: str) -> Optional[NodeData]:
        """Node by id, or None."""
        return self._nodes.get(node_id)

    def require_node(self, node_id: str) -> NodeData:
        """
        Node by id.

        Raises:
            NodeNotFoundError: If the node doesn't exist
        """
        node = self._nodes.get(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def get_node_by_name(self, name: str) -> Optional[NodeData]:
        """Node named `name` (case-insensitive), or None."""
        node_id = self._node_names.get(derive_id(name))
        return self._nodes.get(node_id) if node_id is not None else None

    def remove_node(self, node_id: str) -> bool:
        """
        Remove a node and every edge referencing it.

        Returns:
            False if the node doesn't exist.
        """
        if node_id not in self._nodes:
            return False

        kept = {eid: e for eid, e in self._edges.items() if not e.touches(node_id)}
        removed = len(self._edges) - len(kept)
        self._edges = kept
        self._edge_names = self._name_index(kept)
        node = self._nodes.pop(node_id)
        self._node_names.pop(derive_id(node.name), None)

        self._touch()
        self._record(MutationType.NODE_DELETED, node_id, edges_removed=removed)
        return True

    def update_node(
        self,
        node_id: str,
        properties: Optional[Mapping[str, Any]] = None,
        **kwargs: Any,
    ) -> bool:
        """
        Merge field values into an existing node.

        `id` cannot be changed here. A changed `name` is applied through
        rename_node (so the id follows); if that rename collides, nothing is
        changed. A custom property set to None is removed.

        Returns:
            False if the node doesn't exist or the rename collides.
        """
        node = self._nodes.get(node_id)
        if node is None:
            return False

        props = {**(properties or {}), **kwargs}
        fields, custom = self._sanitize_node_props(props, current=node)
        fields.pop("id", None)
        new_name = fields.pop("name", None)

        if new_name is not None and new_name != node.name:
            if not self.rename_node(node_id, new_name):
                return False

        for attr, value in fields.items():
            setattr(node, attr, value)
        self._merge_custom(node.custom, custom)

        node.touch()
        self._touch()
        self._record(MutationType.NODE_UPDATED, node.id, fields=sorted([*fields, *custom]))
        return True

    def rename_node(self, old_id: str, new_name: str) -> bool:
        """
        Give a node a new name and therefore a new id.

        Every edge endpoint referencing the old id is rewritten to the new
        id. Renaming to a name that hashes to the same id (e.g. a change of
        case) only updates the display name.

        Returns:
            False if the node doesn't exist, the name is blank, or another
            node already has that name.
        """
        node = self._nodes.get(old_id)
        if node is None:
            return False

        new_name = validate_string(new_name, self.config.max_string_length)
        if not new_name.strip():
            return False

        new_id = derive_id(new_name)
        owner = self._node_names.get(new_id)
        if owner == old_id:
            # Same name up to case: only the display name changes
            node.name = new_name
            node.touch()
            self._touch()
            return True

        if owner is not None or (new_id != old_id and new_id in self._nodes):
            logger.warning("Cannot rename %s: duplicate name %r", old_id, new_name)
            return False

        self._node_names.pop(derive_id(node.name), None)
        self._node_names[new_id] = new_id
        self._nodes = self._rekey(self._nodes, old_id, new_id)
        node.id = new_id
        node.name = new_name
        node.touch()

        for edge in self._edges.values():
            if edge.source == old_id:
                edge.source = new_id
            if edge.target == old_id:
                edge.target = new_id

        self._touch()
        self._record(MutationType.NODE_RENAMED, new_id, previous_id=old_id, name=new_name)
        return True

    def merge_nodes(self, keep_id: str, delete_id: str) -> bool:
        """
        Fold node `delete_id` into node `keep_id`.

        1. Properties: custom keys missing on the kept node are copied;
           conflicting values are kept as `merged_<delete_id>_<key>`; empty
           text fields are filled; the earliest createdDate wins.
        2. Every edge endpoint delete_id -> keep_id.
        3. Complete edges with the same ordered (source, target) pair are
           reduced to the first occurrence, across the whole graph.
           Relationship and direction are not part of the key. Half-edges
           are never de-duplicated.
        4. delete_id is removed.

        Returns:
            False if either node is missing or the ids are equal.
        """
        if keep_id == delete_id:
            return False
        keep = self._nodes.get(keep_id)
        absorbed = self._nodes.get(delete_id)
        if keep is None or absorbed is None:
            return False

        for key, value in absorbed.custom.items():
            if key not in keep.custom:
                keep.custom[key] = value
            elif keep.custom[key] != value:
                keep.custom[f"merged_{delete_id}_{key}"] = value

        for attr in _MERGE_TEXT_FIELDS:
            if not getattr(keep, attr) and getattr(absorbed, attr):
                setattr(keep, attr, getattr(absorbed, attr))

        if absorbed.created_date and absorbed.created_date < keep.created_date:
            keep.created_date = absorbed.created_date

        for edge in self._edges.values():
            if edge.source == delete_id:
                edge.source = keep_id
            if edge.target == delete_id:
                edge.target = keep_id

        seen = set()
        unique: Dict[str, EdgeData] = {}
        for edge_id, edge in self._edges.items():
            if not edge.is_half_edge:
                pair = (edge.source, edge.target)
                if pair in seen:
                    continue
                seen.add(pair)
            unique[edge_id] = edge
        duplicates = len(self._edges) - len(unique)
        self._edges = unique
        self._edge_names = self._name_index(unique)

        del self._nodes[delete_id]
        self._node_names.pop(derive_id(absorbed.name), None)
        keep.touch()

        self._touch()
        self._record(
            MutationType.NODES_MERGED,
            keep_id,
            previous_id=delete_id,
            edges_deduplicated=duplicates,
        )
        return True

    # =========================================================================
    # EDGE OPERATIONS
    # =========================================================================

    def add_edge(
        self,
        source: Optional[str],
        target: Optional[str],
        properties: Optional[Mapping[str, Any]] = None,
        **kwargs: Any,
    ) -> Optional[EdgeData]:
        """
        Create an edge whose id is derived from its name.

        Either endpoint may be None (a half-edge) but not both. A non-null
        endpoint must name an existing node. Free coordinates are kept only
        for the dangling end.

        Returns:
            The created EdgeData, or None if the endpoints are invalid, the
            name collides, or the edge limit is reached.
        """
        max_length = self.config.max_string_length
        try:
            source = _resolve_endpoint(source, max_length)
            target = _resolve_endpoint(target, max_length)
        except ValueError as e:
            logger.warning("Edge rejected: %s", e)
            return None

        if source is None and target is None:
            logger.warning("Edge rejected: both endpoints are empty")
            return None
        for end in (source, target):
            if end is not None and end not in self._nodes:
                logger.warning("Edge rejected: unknown endpoint %s", end)
                return None

        props = {**(properties or {}), **kwargs}
        fields, custom = self._sanitize_edge_props(props)
        for key in ("id", "source", "target"):
            fields.pop(key, None)

        name = fields.pop("name", "")
        if name.strip():
            edge_id = derive_id(name)
        else:
            edge_id = generate_id()
            name = edge_id
        name_key = derive_id(name)

        if name_key in self._edge_names or edge_id in self._edges:
            logger.warning("Duplicate edge name %r: edge %s already exists", name, edge_id)
            return None

        if len(self._edges) >= self.config.max_edges:
            logger.warning("Edge limit %d reached; %r not added", self.config.max_edges, name)
            return None

        self._apply_edge_defaults(fields)
        if source is not None:
            fields.pop("free_source_x", None)
            fields.pop("free_source_y", None)
        if target is not None:
            fields.pop("free_target_x", None)
            fields.pop("free_target_y", None)

        edge = EdgeData(
            id=edge_id,
            name=name,
            source=source,
            target=target,
            custom={k: v for k, v in custom.items() if v is not None},
            **fields,
        )

        self._edges[edge_id] = edge
        self._edge_names[name_key] = edge_id
        self._touch()
        self._record(
            MutationType.EDGE_CREATED,
            edge_id,
            source_id=source,
            target_id=target,
            relationship=edge.relationship,
        )
        return edge

    def get_edge(self, edge_id: str) -> Optional[EdgeData]:
        return self._edges.get(edge_id)

    def require_edge(self, edge_id: str) -> EdgeData:
        """
        Edge by id.

        Raises:
            EdgeNotFoundError: If the edge doesn't exist
        """
        edge = self._edges.get(edge_id)
        if edge is None:
            raise EdgeNotFoundError(edge_id)
        return edge

    def has_edge(self, edge_id: str) -> bool:
        return edge_id in self._edges

    def remove_edge(self, edge_id: str) -> bool:
        edge = self._edges.pop(edge_id, None)
        if edge is None:
            return False
        self._edge_names.pop(derive_id(edge.name), None)
        self._touch()
        self._record(
            MutationType.EDGE_DELETED,
            edge_id,
            source_id=edge.source,
            target_id=edge.target,
        )
        return True

    def update_edge(
        self,
        edge_id: str,
        properties: Optional[Mapping[str, Any]] = None,
        **kwargs: Any,
    ) -> bool:
        """
        Merge field values into an existing edge.

        Endpoints are changed with change_edge_endpoint / break_edge, not
        here. A changed `name` goes through rename_edge.
        """
        edge = self._edges.get(edge_id)
        if edge is None:
            return False

        props = {**(properties or {}), **kwargs}
        fields, custom = self._sanitize_edge_props(props, current=edge)
        for key in ("id", "source", "target"):
            fields.pop(key, None)
        new_name = fields.pop("name", None)

        if new_name is not None and new_name != edge.name:
            if not self.rename_edge(edge_id, new_name):
                return False

        for attr, value in fields.items():
            setattr(edge, attr, value)
        self._merge_custom(edge.custom, custom)

        self._touch()
        self._record(MutationType.EDGE_UPDATED, edge.id, fields=sorted([*fields, *custom]))
        return True

    def rename_edge(self, old_id: str, new_name: str) -> bool:
        """Give an edge a new name and id. False on collision or unknown id."""
        edge = self._edges.get(old_id)
        if edge is None:
            return False

        new_name = validate_string(new_name, self.config.max_string_length)
        if not new_name.strip():
            return False

        new_id = derive_id(new_name)
        owner = self._edge_names.get(new_id)
        if owner == old_id:
            edge.name = new_name
            self._touch()
            return True

        if owner is not None or (new_id != old_id and new_id in self._edges):
            logger.warning("Cannot rename edge %s: duplicate name %r", old_id, new_name)
            return False

        self._edge_names.pop(derive_id(edge.name), None)
        self._edge_names[new_id] = new_id
        self._edges = self._rekey(self._edges, old_id, new_id)
        edge.id = new_id
        edge.name = new_name

        self._touch()
        self._record(MutationType.EDGE_RENAMED, new_id, previous_id=old_id, name=new_name)
        return True

    def change_edge_endpoint(self, edge_id: str, which: str, node_id: Optional[str]) -> bool:
        """
        Reconnect one end of an edge.

        Args:
            edge_id: The edge
            which: "source" or "target"
            node_id: New endpoint. None detaches the end, leaving it dangling
                at the previous node's position.

        Returns:
            False if the edge or node is unknown, or detaching would leave
            both ends free.

        Raises:
            ValueError: If `which` is not "source" or "target"
        """
        self._check_end(which)
        edge = self._edges.get(edge_id)
        if edge is None:
            return False

        if node_id is None:
            if self._other_end(edge, which) is None:
                return False
            previous = self._nodes.get(getattr(edge, which))
            x = previous.x if previous is not None else None
            y = previous.y if previous is not None else None
            self._detach(edge, which, x, y)
        else:
            if node_id not in self._nodes:
                return False
            setattr(edge, which, node_id)
            setattr(edge, f"free_{which}_x", None)
            setattr(edge, f"free_{which}_y", None)

        self._touch()
        self._record(
            MutationType.EDGE_UPDATED,
            edge_id,
            source_id=edge.source,
            target_id=edge.target,
            fields=[which],
        )
        return True

    def break_edge(self, edge_id: str, which: str, x: float, y: float) -> bool:
        """
        Detach one end of an edge so it hangs at (x, y).

        Returns:
            False if the edge is unknown or its other end is already free.

        Raises:
            ValueError: If `which` is not "source" or "target"
        """
        self._check_end(which)
        edge = self._edges.get(edge_id)
        if edge is None or self._other_end(edge, which) is None:
            return False

        self._detach(edge, which, validate_optional_number(x), validate_optional_number(y))

        self._touch()
        self._record(
            MutationType.EDGE_UPDATED,
            edge_id,
            source_id=edge.source,
            target_id=edge.target,
            fields=[which],
        )
        return True

    def break_edge_with_node(
        self,
        edge_id: str,
        x: float,
        y: float,
    ) -> Optional[Tuple[NodeData, EdgeData, EdgeData]]:
        """
        Split an edge in two by inserting a pinned node at (x, y).

        Both halves copy the original's relationship, color, weight,
        direction, description and custom properties. The original edge is
        removed.

        Returns:
            (new_node, source_half, target_half), or None if the edge is
            unknown, is a half-edge, or a limit prevented the split (in which
            case the graph is unchanged).
        """
        edge = self._edges.get(edge_id)
        if edge is None or edge.is_half_edge:
            return None

        node = self.add_node(
            name=self._unique_name(f"{edge.name} (split)", self._node_names),
            color=SPLIT_NODE_COLOR,
            description=f"Created by breaking edge {edge.name}",
            x=x,
            y=y,
            fx=x,
            fy=y,
        )
        if node is None:
            return None

        shared = {
            **edge.custom,
            "relationship": edge.relationship,
            "color": edge.color,
            "weight": edge.weight,
            "directed": edge.directed,
            "description": edge.description,
        }
        first = self.add_edge(
            edge.source, node.id, shared,
            name=self._unique_name(f"{edge.name}_1", self._edge_names),
        )
        second = self.add_edge(
            node.id, edge.target, shared,
            name=self._unique_name(f"{edge.name}_2", self._edge_names),
        ) if first is not None else None

        if first is None or second is None:
            # Cascade also removes `first` if it was created
            self.remove_node(node.id)
            return None

        self.remove_edge(edge_id)
        return node, first, second

    # =========================================================================
    # NEIGHBORHOOD QUERIES
    # =========================================================================

    def get_node_edges(self, node_id: str) -> List[EdgeData]:
        """Every edge with `node_id` as source or target."""
        return [e for e in self._edges.values() if e.touches(node_id)]

    def get_neighbors(self, node_id: str) -> List[str]:
        """
        Ids reachable in one step from `node_id`.

        Directed edges lead source -> target only; undirected edges also
        lead target -> source. Order follows edge insertion order.
        """
        neighbors: Dict[str, None] = {}
        for edge in self._edges.values():
            if edge.source == node_id and edge.target is not None:
                neighbors[edge.target] = None
            if edge.target == node_id and edge.source is not None and not edge.directed:
                neighbors[edge.source] = None
        return list(neighbors)

    # =========================================================================
    # SEARCH & FILTER
    # =========================================================================

    def search_nodes(self, query: str) -> List[NodeData]:
        """
        Case-insensitive substring search over name, description, category,
        subCat and id. An empty query matches nothing.
        """
        if not query:
            return []

        needle = query.lower()
        return [
            node for node in self._nodes.values()
            if any(
                needle in value.lower()
                for value in (node.name, node.description, node.category, node.sub_cat, node.id)
            )
        ]

    def filter_nodes(self, key: str, value: Any, match_type: str = "exact") -> List[NodeData]:
        """
        Nodes whose property `key` matches `value` (case-insensitive).

        Args:
            key: Wire name, attribute name or custom property key
            value: Value to compare against (stringified)
            match_type: "exact", "contains", "starts" or "ends"

        Returns:
            Matching nodes. Nodes without the property are excluded. An empty
            key or value applies no filter.

        Raises:
            ValueError: On an unknown match_type
        """
        matcher = _MATCHERS.get(match_type)
        if matcher is None:
            raise ValueError(f"Unknown match type: {match_type}")

        if not key or value is None or value == "":
            return self.nodes

        needle = stringify_value(value).lower()
        results = []
        for node in self._nodes.values():
            prop = node.get_property(key)
            if prop is None:
                continue
            if matcher(stringify_value(prop).lower(), needle):
                results.append(node)
        return results

    # =========================================================================
    # GRAPH-LEVEL OPERATIONS
    # =========================================================================

    def clear(self) -> None:
        """Drop all nodes and edges. Metadata and settings are kept."""
        self._nodes = {}
        self._edges = {}
        self._node_names = {}
        self._edge_names = {}
        self._touch()
        self._record(MutationType.GRAPH_CLEARED)

    def update_metadata(self, **fields: Any) -> None:
        """Set name/title/description on the document metadata."""
        max_length = self.config.max_string_length
        for key in ("name", "title", "description"):
            if key in fields:
                setattr(self.metadata, key, validate_string(fields[key], max_length))
        self._touch()

    def update_settings(self, settings: Mapping[str, Any]) -> None:
        """Merge display settings (wire names), bounded like on load."""
        current = settings_to_dict(self.settings)
        boundary = settings.get("worldBoundary")
        if isinstance(boundary, dict):
            current["worldBoundary"] = {**current["worldBoundary"], **boundary}
        for key in ("nodeLabelSize", "edgeLabelSize"):
            if key in settings:
                current[key] = settings[key]
        self.settings = self._sanitize_settings(current)
        self._touch()

    def get_stats(self) -> Dict[str, Any]:
        """Node count, edge count and average degree."""
        node_count = len(self._nodes)
        edge_count = len(self._edges)
        return {
            "node_count": node_count,
            "edge_count": edge_count,
            "avg_degree": (edge_count * 2) / node_count if node_count else 0,
        }

    def get_relationship_types(self) -> List[str]:
        """Distinct edge relationships, sorted."""
        return sorted({e.relationship for e in self._edges.values() if e.relationship})

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    def to_json(self) -> Dict[str, Any]:
        """
        Full document snapshot.

        Custom properties are spread flat onto each node/edge; unset layout
        fields are omitted; simulation scratch fields never appear.
        """
        return {
            "graph": {
                "metadata": metadata_to_dict(self.metadata),
                "settings": settings_to_dict(self.settings),
                "nodes": [node.to_dict() for node in self._nodes.values()],
                "edges": [edge.to_dict() for edge in self._edges.values()],
            }
        }

    def dumps(self) -> bytes:
        """Document snapshot as JSON bytes."""
        return encode_document(self.to_json())

    def loads(self, data: bytes) -> LoadReport:
        """
        Replace the graph from JSON bytes.

        Raises:
            DocumentFormatError: If the bytes are not JSON or not a graph
            GraphLimitError: If a collection limit is exceeded
        """
        try:
            document = decode_document(data)
        except msgspec.DecodeError as e:
            raise DocumentFormatError(f"Invalid JSON document: {e}") from e
        return self.from_json(document)

    def from_json(self, document: Any) -> LoadReport:
        """
        Replace the graph with an untrusted document.

        Every field is sanitized. Nodes and edges without an id, or whose
        id or name (case-insensitive) repeats an earlier one, are dropped
        and reported, as are edges that are fully dangling, have an
        unusable endpoint or point at a node that was not retained. Stored
        ids are kept as given.

        Raises:
            DocumentFormatError: On a malformed top-level shape
            GraphLimitError: If nodes or edges exceed the configured limits

            In both cases the current graph is left untouched.
        """
        if not isinstance(document, dict) or not isinstance(document.get("graph"), dict):
            raise DocumentFormatError("Invalid graph format: expected {'graph': {...}}")

        graph = document["graph"]
        raw_nodes = graph.get("nodes") or []
        raw_edges = graph.get("edges") or []
        if not isinstance(raw_nodes, list) or not isinstance(raw_edges, list):
            raise DocumentFormatError("Invalid graph format: nodes and edges must be lists")

        if len(raw_nodes) > self.config.max_nodes:
            raise GraphLimitError("nodes", len(raw_nodes), self.config.max_nodes)
        if len(raw_edges) > self.config.max_edges:
            raise GraphLimitError("edges", len(raw_edges), self.config.max_edges)

        report = LoadReport()
        max_length = self.config.max_string_length

        nodes: Dict[str, NodeData] = {}
        node_names: Dict[str, str] = {}
        for position, raw in enumerate(raw_nodes):
            if not isinstance(raw, dict):
                report.drop_node(f"nodes[{position}] is not an object")
                continue
            props = _flatten_legacy(raw)
            node_id = _normalize_id(props.get("id"), max_length)
            if node_id is None:
                report.drop_node(f"nodes[{position}] has no id")
                continue
            if node_id in nodes:
                report.drop_node(f"nodes[{position}] duplicates id {node_id}")
                continue
            node = self._build_loaded_node(node_id, props)
            name_key = derive_id(node.name)
            if name_key in node_names:
                report.drop_node(f"nodes[{position}] duplicates name {node.name!r}")
                continue
            nodes[node_id] = node
            node_names[name_key] = node_id

        edges: Dict[str, EdgeData] = {}
        edge_names: Dict[str, str] = {}
        for position, raw in enumerate(raw_edges):
            if not isinstance(raw, dict):
                report.drop_edge(f"edges[{position}] is not an object")
                continue
            props = _flatten_legacy(raw)
            edge_id = _normalize_id(props.get("id"), max_length)
            if edge_id is None:
                report.drop_edge(f"edges[{position}] has no id")
                continue
            if edge_id in edges:
                report.drop_edge(f"edges[{position}] duplicates id {edge_id}")
                continue
            try:
                source = _resolve_endpoint(props.get("source"), max_length)
                target = _resolve_endpoint(props.get("target"), max_length)
            except ValueError as e:
                report.drop_edge(f"edge {edge_id}: {e}")
                continue
            if source is None and target is None:
                report.drop_edge(f"edge {edge_id} has no endpoints")
                continue
            missing = [end for end in (source, target) if end is not None and end not in nodes]
            if missing:
                report.drop_edge(f"edge {edge_id} references missing node {missing[0]}")
                continue
            edge = self._build_loaded_edge(edge_id, source, target, props)
            name_key = derive_id(edge.name)
            if name_key in edge_names:
                report.drop_edge(f"edge {edge_id} duplicates name {edge.name!r}")
                continue
            edges[edge_id] = edge
            edge_names[name_key] = edge_id

        self.metadata = self._sanitize_metadata(graph.get("metadata"))
        self.settings = self._sanitize_settings(graph.get("settings"))
        self._nodes = nodes
        self._edges = edges
        self._node_names = node_names
        self._edge_names = edge_names
        self._touch()

        report.nodes_loaded = len(nodes)
        report.edges_loaded = len(edges)
        self._record(
            MutationType.GRAPH_LOADED,
            nodes=report.nodes_loaded,
            edges=report.edges_loaded,
            dropped_nodes=report.dropped_nodes,
            dropped_edges=report.dropped_edges,
        )
        return report

    # =========================================================================
    # INTERNAL: SANITIZATION
    # =========================================================================

    def _sanitize_node_props(
        self,
        props: Mapping[str, Any],
        current: Optional[NodeData] = None,
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """
        Split raw properties into bounded fixed fields and custom values.

        Invalid values fall back to the field default, or to the value on
        `current` when updating an existing node.

        Returns:
            (fields by attribute name, custom properties). A custom value of
            None marks the key for removal.
        """
        max_length = self.config.max_string_length
        fields: Dict[str, Any] = {}
        custom: Dict[str, Any] = {}

        def fallback(attr: str, default: Any) -> Any:
            return default if current is None else getattr(current, attr)

        for key, value in props.items():
            if key in SCRATCH_KEYS:
                continue
            attr = NODE_FIELD_NAMES.get(key)
            if attr == "custom":
                if isinstance(value, dict):
                    self._collect_custom(value, custom, NODE_RESERVED_KEYS)
                continue
            if attr is None:
                self._collect_custom({key: value}, custom, NODE_RESERVED_KEYS)
                continue

            if attr in ("id", "name"):
                fields[attr] = validate_string(value, max_length)
            elif attr == "color":
                fields[attr] = validate_color(value, fallback("color", self.config.default_node_color))
            elif attr == "size":
                fields[attr] = validate_number(
                    value, MIN_NODE_SIZE, MAX_NODE_SIZE, fallback("size", DEFAULT_NODE_SIZE)
                )
            elif attr in _NODE_POSITION_FIELDS:
                fields[attr] = validate_optional_number(value)
            elif attr == "priority":
                fields[attr] = validate_string(value, max_length, fallback("priority", DEFAULT_PRIORITY))
            elif attr in ("created_date", "modified_date"):
                fields[attr] = validate_string(value, max_length, fallback(attr, now_utc()))
            else:
                fields[attr] = validate_string(value, max_length)

        return fields, custom

    def _sanitize_edge_props(
        self,
        props: Mapping[str, Any],
        current: Optional[EdgeData] = None,
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Edge counterpart of _sanitize_node_props."""
        max_length = self.config.max_string_length
        fields: Dict[str, Any] = {}
        custom: Dict[str, Any] = {}

        def fallback(attr: str, default: Any) -> Any:
            return default if current is None else getattr(current, attr)

        for key, value in props.items():
            if key in SCRATCH_KEYS:
                continue
            attr = EDGE_FIELD_NAMES.get(key)
            if attr == "custom":
                if isinstance(value, dict):
                    self._collect_custom(value, custom, EDGE_RESERVED_KEYS)
                continue
            if attr is None:
                self._collect_custom({key: value}, custom, EDGE_RESERVED_KEYS)
                continue

            if attr in ("source", "target"):
                # Endpoints are resolved by the caller
                continue
            if attr == "color":
                fields[attr] = validate_color(value, fallback("color", self.config.default_edge_color))
            elif attr == "weight":
                fields[attr] = validate_number(
                    value, MIN_EDGE_WEIGHT, MAX_EDGE_WEIGHT, fallback("weight", DEFAULT_EDGE_WEIGHT)
                )
            elif attr == "directed":
                fields[attr] = validate_bool(value, fallback("directed", True))
            elif attr == "relationship":
                fields[attr] = validate_string(
                    value, max_length, fallback("relationship", self.config.default_relationship)
                )
            elif attr in _EDGE_POSITION_FIELDS:
                fields[attr] = validate_optional_number(value)
            else:
                fields[attr] = validate_string(value, max_length)

        return fields, custom

    def _collect_custom(
        self,
        values: Mapping[str, Any],
        custom: Dict[str, Any],
        reserved,
    ) -> None:
        max_length = self.config.max_string_length
        for key, value in values.items():
            if not isinstance(key, str) or not key or key in reserved:
                continue
            key = validate_string(key, MAX_CUSTOM_KEY_LENGTH)
            custom[key] = None if value is None else validate_custom_value(value, max_length)

    @staticmethod
    def _merge_custom(target: Dict[str, Any], updates: Mapping[str, Any]) -> None:
        for key, value in updates.items():
            if value is None:
                target.pop(key, None)
            else:
                target[key] = value

    def _build_loaded_node(self, node_id: str, props: Mapping[str, Any]) -> NodeData:
        fields, custom = self._sanitize_node_props(props)
        fields.pop("id", None)
        name = fields.pop("name", "") or node_id
        fields.setdefault("color", self.config.default_node_color)
        now = now_utc()
        fields["created_date"] = fields.get("created_date") or now
        fields["modified_date"] = fields.get("modified_date") or now
        return NodeData(
            id=node_id,
            name=name,
            custom={k: v for k, v in custom.items() if v is not None},
            **fields,
        )

    def _build_loaded_edge(
        self,
        edge_id: str,
        source: Optional[str],
        target: Optional[str],
        props: Mapping[str, Any],
    ) -> EdgeData:
        fields, custom = self._sanitize_edge_props(props)
        for key in ("id", "source", "target"):
            fields.pop(key, None)
        name = fields.pop("name", "") or edge_id
        self._apply_edge_defaults(fields)
        return EdgeData(
            id=edge_id,
            name=name,
            source=source,
            target=target,
            custom={k: v for k, v in custom.items() if v is not None},
            **fields,
        )

    def _apply_edge_defaults(self, fields: Dict[str, Any]) -> None:
        fields.setdefault("color", self.config.default_edge_color)
        fields.setdefault("relationship", self.config.default_relationship)

    def _sanitize_metadata(self, raw: Any) -> GraphMetadata:
        if not isinstance(raw, dict):
            return GraphMetadata(name="Imported Graph")
        max_length = self.config.max_string_length
        defaults = GraphMetadata()
        return GraphMetadata(
            name=validate_string(raw.get("name"), max_length, defaults.name),
            title=validate_string(raw.get("title"), max_length),
            description=validate_string(raw.get("description"), max_length),
            created=validate_string(raw.get("created"), max_length, defaults.created),
            modified=validate_string(raw.get("modified"), max_length, defaults.modified),
        )

    def _sanitize_settings(self, raw: Any) -> GraphSettings:
        defaults = GraphSettings()
        if not isinstance(raw, dict):
            return defaults

        boundary_raw = raw.get("worldBoundary")
        boundary = WorldBoundary()
        if isinstance(boundary_raw, dict):
            boundary = WorldBoundary(
                enabled=validate_bool(boundary_raw.get("enabled"), boundary.enabled),
                min_x=validate_number(boundary_raw.get("minX"), -MAX_COORDINATE, MAX_COORDINATE, boundary.min_x),
                max_x=validate_number(boundary_raw.get("maxX"), -MAX_COORDINATE, MAX_COORDINATE, boundary.max_x),
                min_y=validate_number(boundary_raw.get("minY"), -MAX_COORDINATE, MAX_COORDINATE, boundary.min_y),
                max_y=validate_number(boundary_raw.get("maxY"), -MAX_COORDINATE, MAX_COORDINATE, boundary.max_y),
            )

        return GraphSettings(
            node_label_size=validate_number(
                raw.get("nodeLabelSize"), 1, MAX_LABEL_SIZE, defaults.node_label_size
            ),
            edge_label_size=validate_number(
                raw.get("edgeLabelSize"), 1, MAX_LABEL_SIZE, defaults.edge_label_size
            ),
            world_boundary=boundary,
        )

    # =========================================================================
    # INTERNAL UTILITIES
    # =========================================================================

    def _touch(self) -> None:
        self.metadata.modified = today_utc()

    def _record(self, mutation_type: MutationType, entity_id: Optional[str] = None, **detail: Any) -> None:
        logger.debug("%s %s", mutation_type.value, entity_id or "")
        if self._journal is not None:
            self._journal.record(mutation_type, entity_id, **detail)

    @staticmethod
    def _rekey(items: Dict[str, Any], old_key: str, new_key: str) -> Dict[str, Any]:
        """Rename a key while keeping its position."""
        return {(new_key if key == old_key else key): value for key, value in items.items()}

    @staticmethod
    def _name_index(items: Mapping[str, Any]) -> Dict[str, str]:
        return {derive_id(item.name): item_id for item_id, item in items.items()}

    @staticmethod
    def _unique_name(base: str, taken: Mapping[str, Any]) -> str:
        name = base
        counter = 2
        while derive_id(name) in taken:
            name = f"{base} {counter}"
            counter += 1
        return name

    @staticmethod
    def _check_end(which: str) -> None:
        if which not in EDGE_ENDS:
            raise ValueError(f"Edge end must be 'source' or 'target', not {which!r}")

    @staticmethod
    def _other_end(edge: EdgeData, which: str) -> Optional[str]:
        return edge.target if which == "source" else edge.source

    @staticmethod
    def _detach(edge: EdgeData, which: str, x: Optional[float], y: Optional[float]) -> None:
        setattr(edge, which, None)
        setattr(edge, f"free_{which}_x", x)
        setattr(edge, f"free_{which}_y", y)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes

    def __repr__(self) -> str:
        return f"GraphStore(nodes={self.node_count}, edges={self.edge_count})"


_MATCHERS: Dict[str, Callable[[str, str], bool]] = {
    "exact": lambda text, needle: text == needle,
    "contains": lambda text, needle: needle in text,
    "starts": lambda text, needle: text.startswith(needle),
    "ends": lambda text, needle: text.endswith(needle),
}
