"""
KNOWLEDGE GRAPH SCHEMAS - The Shape of Nodes and Edges

This module defines the structures the GraphStore owns:
- NodeData: a vertex with identity, display and taxonomy attributes
- EdgeData: a (possibly half-open) connection between two nodes
- GraphMetadata / GraphSettings: document-level properties
- Identity helpers: content-derived ids and timestamps
- Document encode/decode helpers

Design Principles:
1. FIXED STRUCT + SIDE TABLE: known fields are msgspec.Struct attributes,
   user-defined properties live in `custom` and are spread flat on export.
2. CAMELCASE ON THE WIRE: `rename="camel"` maps sub_cat <-> subCat etc., so
   the exchanged document keeps the editor's field names.
3. KW_ONLY: keyword construction only.
4. PLAIN ID ENDPOINTS: EdgeData.source/target are node ids or None, never
   embedded node objects.
"""
import hashlib
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Optional

import msgspec

from infrastructure.config import (
    DEFAULT_EDGE_COLOR,
    DEFAULT_NODE_COLOR,
    DEFAULT_RELATIONSHIP,
)


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def now_utc() -> str:
    """Fast UTC timestamp as ISO8601 string."""
    return datetime.now(timezone.utc).isoformat()


def today_utc() -> str:
    """Current UTC date as YYYY-MM-DD (document metadata granularity)."""
    return datetime.now(timezone.utc).date().isoformat()


def generate_id() -> str:
    """Generate a random id for entities created without a name."""
    return uuid.uuid4().hex


def derive_id(name: str) -> str:
    """
    Derive a content-addressed id from a display name.

    id = sha256(lowercase(name)) as hex. Names differing only in case map to
    the same id and therefore collide in the store.
    """
    return hashlib.sha256(name.lower().encode("utf-8")).hexdigest()


DEFAULT_PRIORITY = "Medium"
DEFAULT_NODE_SIZE = 10
DEFAULT_EDGE_WEIGHT = 1

# Force-simulation scratch fields: never persisted, ignored on import
SCRATCH_KEYS: FrozenSet[str] = frozenset({"vx", "vy", "index"})


# =============================================================================
# NODE DATA
# =============================================================================

class NodeData(msgspec.Struct, kw_only=True, rename="camel"):
    """
    A graph vertex.

    `id` is content-derived from `name` when the store creates the node.
    `fx`/`fy` present means the node is pinned and exempt from layout forces.
    `custom` holds user-defined scalar properties; its keys never shadow the
    fixed fields.
    """
    # === Identity ===
    id: str
    name: str = ""

    # === Display ===
    color: str = DEFAULT_NODE_COLOR
    size: float = DEFAULT_NODE_SIZE
    icon: str = ""

    # === Taxonomy ===
    description: str = ""
    category: str = ""
    sub_cat: str = ""

    # === References (may encode an opaque image reference) ===
    link1: str = ""
    link2: str = ""
    link3: str = ""
    link4: str = ""

    # === Planning ===
    priority: str = DEFAULT_PRIORITY
    deadline: str = ""
    user_date: str = ""
    created_date: str = msgspec.field(default_factory=now_utc)
    modified_date: str = msgspec.field(default_factory=now_utc)

    # === Layout ===
    x: Optional[float] = None
    y: Optional[float] = None
    fx: Optional[float] = None
    fy: Optional[float] = None

    # === Extension Point ===
    custom: Dict[str, Any] = msgspec.field(default_factory=dict)

    @property
    def is_pinned(self) -> bool:
        return self.fx is not None or self.fy is not None

    def touch(self) -> None:
        """Refresh modified_date."""
        self.modified_date = now_utc()

    def get_property(self, key: str) -> Any:
        """
        Look up a fixed field (by wire or Python name) or a custom property.

        Returns None when the property is absent.
        """
        attr = NODE_FIELD_NAMES.get(key)
        if attr is not None and attr != "custom":
            return getattr(self, attr)
        return self.custom.get(key)

    def to_dict(self) -> Dict[str, Any]:
        """Flat wire representation: fixed fields + custom properties."""
        return _flatten(self)


# =============================================================================
# EDGE DATA
# =============================================================================

class EdgeData(msgspec.Struct, kw_only=True, rename="camel"):
    """
    A connection between two nodes.

    Either endpoint may be None (a half-edge), never both. A dangling end
    carries its free position in free_source_x/y or free_target_x/y.
    """
    # === Identity ===
    id: str
    name: str = ""

    # === Endpoints (plain node ids) ===
    source: Optional[str] = None
    target: Optional[str] = None

    # === Semantics ===
    relationship: str = DEFAULT_RELATIONSHIP
    color: str = DEFAULT_EDGE_COLOR
    weight: float = DEFAULT_EDGE_WEIGHT
    directed: bool = True
    description: str = ""

    # === Dangling end positions ===
    free_source_x: Optional[float] = None
    free_source_y: Optional[float] = None
    free_target_x: Optional[float] = None
    free_target_y: Optional[float] = None

    # === Extension Point ===
    custom: Dict[str, Any] = msgspec.field(default_factory=dict)

    @property
    def is_half_edge(self) -> bool:
        return self.source is None or self.target is None

    def touches(self, node_id: str) -> bool:
        return self.source == node_id or self.target == node_id

    def get_property(self, key: str) -> Any:
        attr = EDGE_FIELD_NAMES.get(key)
        if attr is not None and attr != "custom":
            return getattr(self, attr)
        return self.custom.get(key)

    def to_dict(self) -> Dict[str, Any]:
        return _flatten(self)


# =============================================================================
# DOCUMENT-LEVEL STRUCTURES
# =============================================================================

class GraphMetadata(msgspec.Struct, kw_only=True):
    name: str = "Untitled Graph"
    title: str = ""
    description: str = ""
    created: str = msgspec.field(default_factory=today_utc)
    modified: str = msgspec.field(default_factory=today_utc)


class WorldBoundary(msgspec.Struct, kw_only=True, rename="camel"):
    """Optional clamp on layout positions, applied by the renderer."""
    enabled: bool = False
    min_x: float = -2000
    max_x: float = 2000
    min_y: float = -2000
    max_y: float = 2000


class GraphSettings(msgspec.Struct, kw_only=True, rename="camel"):
    node_label_size: float = 12
    edge_label_size: float = 10
    world_boundary: WorldBoundary = msgspec.field(default_factory=WorldBoundary)


# =============================================================================
# FIELD TABLES
# =============================================================================

def _field_names(struct_type) -> Dict[str, str]:
    """Map both wire names and attribute names to attribute names."""
    names: Dict[str, str] = {}
    for info in msgspec.structs.fields(struct_type):
        names[info.encode_name] = info.name
        names[info.name] = info.name
    return names


NODE_FIELD_NAMES: Dict[str, str] = _field_names(NodeData)
EDGE_FIELD_NAMES: Dict[str, str] = _field_names(EdgeData)

# Keys a custom property may never take
NODE_RESERVED_KEYS: FrozenSet[str] = frozenset(NODE_FIELD_NAMES) | SCRATCH_KEYS
EDGE_RESERVED_KEYS: FrozenSet[str] = frozenset(EDGE_FIELD_NAMES) | SCRATCH_KEYS

# Optional layout fields omitted from the wire when unset
_OPTIONAL_WIRE_FIELDS: FrozenSet[str] = frozenset({
    "x", "y", "fx", "fy",
    "freeSourceX", "freeSourceY", "freeTargetX", "freeTargetY",
})


def _flatten(entity) -> Dict[str, Any]:
    data = msgspec.to_builtins(entity)
    custom = data.pop("custom", {})
    for key in _OPTIONAL_WIRE_FIELDS:
        if key in data and data[key] is None:
            del data[key]
    for key, value in custom.items():
        if key not in data:
            data[key] = value
    return data


# =============================================================================
# DOCUMENT SERIALIZATION
# =============================================================================

_document_encoder = msgspec.json.Encoder()
_document_decoder = msgspec.json.Decoder()


def encode_document(document: Dict[str, Any]) -> bytes:
    """Serialize a graph document to JSON bytes."""
    return _document_encoder.encode(document)


def decode_document(data: bytes) -> Any:
    """
    Parse JSON bytes into plain Python objects.

    Deliberately untyped: the result is untrusted and goes through
    GraphStore.from_json for validation.
    """
    return _document_decoder.decode(data)


def settings_to_dict(settings: GraphSettings) -> Dict[str, Any]:
    return msgspec.to_builtins(settings)


def metadata_to_dict(metadata: GraphMetadata) -> Dict[str, Any]:
    return msgspec.to_builtins(metadata)

