"""
KNOWLEDGE GRAPH EXPLODE - Properties Into Structure

Rewrites a graph so that taxonomy tags and custom properties become nodes
of their own, linked to the entities that carried them:

    node --is--> <category>  --is a--> cat
    node --is--> <subCat>    --is a--> sub-cat --is--> cat
    node --has--> <value>    --is a--> <key>   --is a--> Properties

    source, target --is related to--> <value> --is--> <key> --is--> Properties
                                          (custom properties of an edge)

The original nodes and edges are kept, stripped of what was exploded out of
them (category, subCat and custom properties).

Meta-nodes are content-addressed like every node: one node per distinct
name (case-insensitive), shared by all entities that mention it. A value
equal to an existing node's name links to that node. Custom keys starting
with "_" or "merged_" are bookkeeping and are not exploded; neither are
values that are empty after trimming.

explode_graph() only builds the document; explode_in_place() loads it
into the store.
"""
import logging
from typing import Any, Dict, Iterator, Optional, Set, Tuple

import msgspec

from core.graph_store import GraphStore, LoadReport
from core.sanitize import stringify_value
from core.schemas import (
    DEFAULT_EDGE_WEIGHT,
    DEFAULT_NODE_SIZE,
    EdgeData,
    NodeData,
    derive_id,
    metadata_to_dict,
    settings_to_dict,
    today_utc,
)

logger = logging.getLogger(__name__)

CATEGORY_ROOT = "cat"
SUB_CATEGORY_ROOT = "sub-cat"
PROPERTIES_ROOT = "Properties"

ROOT_COLOR = "#9b59b6"
TAG_VALUE_COLOR = "#f39c12"
PROPERTIES_COLOR = "#e74c3c"
PROPERTY_KEY_COLOR = "#e67e22"
PROPERTY_VALUE_COLOR = "#16a085"
LINK_COLOR = "#95a5a6"

BOOKKEEPING_PREFIXES = ("_", "merged_")


def _exploded_properties(entity) -> Iterator[Tuple[str, str]]:
    """(key, trimmed text value) for each custom property worth a node."""
    for key, value in entity.custom.items():
        if key.startswith(BOOKKEEPING_PREFIXES):
            continue
        text = stringify_value(value).strip()
        if text:
            yield key, text


class GraphExploder:
    """
    Builds the exploded document for one store.

    Usage:
        document = GraphExploder(store).explode()
    """

    def __init__(self, graph: GraphStore):
        self.graph = graph

        # Output, insertion-ordered: originals first, then created entities
        self._nodes: Dict[str, Dict[str, Any]] = {}
        self._edges: Dict[str, Dict[str, Any]] = {}

        # derive_id(name) -> node id, for every node in the output
        self._node_names: Dict[str, str] = {}
        self._edge_names: Set[str] = set()
        self._links: Set[Tuple[str, str, str]] = set()

    def explode(self) -> Dict[str, Any]:
        for node in self.graph.nodes:
            self._keep_node(node)
        for edge in self.graph.edges:
            self._keep_edge(edge)

        for node in self.graph.nodes:
            self._explode_tags(node)
            self._explode_node_properties(node)
        for edge in self.graph.edges:
            self._explode_edge_properties(edge)

        metadata = metadata_to_dict(self.graph.metadata)
        metadata["description"] = f"{metadata['description']} [Exploded on {today_utc()}]".strip()

        logger.info(
            "Exploded graph: %d -> %d nodes, %d -> %d edges",
            self.graph.node_count, len(self._nodes),
            self.graph.edge_count, len(self._edges),
        )
        return {
            "graph": {
                "metadata": metadata,
                "settings": settings_to_dict(self.graph.settings),
                "nodes": list(self._nodes.values()),
                "edges": list(self._edges.values()),
            }
        }

    # =========================================================================
    # ORIGINAL ENTITIES
    # =========================================================================

    def _keep_node(self, node: NodeData) -> None:
        stripped = msgspec.structs.replace(node, category="", sub_cat="", custom={})
        self._nodes[node.id] = stripped.to_dict()
        self._node_names[derive_id(node.name)] = node.id

    def _keep_edge(self, edge: EdgeData) -> None:
        stripped = msgspec.structs.replace(edge, custom={})
        self._edges[edge.id] = stripped.to_dict()
        self._edge_names.add(derive_id(edge.name))

    # =========================================================================
    # EXPLOSION RULES
    # =========================================================================

    def _explode_tags(self, node: NodeData) -> None:
        category = node.category.strip()
        if category:
            root = self._meta_node(CATEGORY_ROOT, ROOT_COLOR)
            value = self._meta_node(category, TAG_VALUE_COLOR)
            self._link(value, root, "is a")
            self._link(node.id, value, "is")

        sub_category = node.sub_cat.strip()
        if sub_category:
            root = self._meta_node(SUB_CATEGORY_ROOT, ROOT_COLOR)
            value = self._meta_node(sub_category, TAG_VALUE_COLOR)
            self._link(value, root, "is a")
            self._link(node.id, value, "is")
            self._link(root, self._meta_node(CATEGORY_ROOT, ROOT_COLOR), "is")

    def _explode_node_properties(self, node: NodeData) -> None:
        for key, text in _exploded_properties(node):
            root = self._meta_node(PROPERTIES_ROOT, PROPERTIES_COLOR)
            key_id = self._meta_node(key, PROPERTY_KEY_COLOR)
            value_id = self._meta_node(text, PROPERTY_VALUE_COLOR)
            self._link(node.id, value_id, "has")
            self._link(value_id, key_id, "is a")
            self._link(key_id, root, "is a")

    def _explode_edge_properties(self, edge: EdgeData) -> None:
        ends = [end for end in (edge.source, edge.target) if end is not None]
        for key, text in _exploded_properties(edge):
            root = self._meta_node(PROPERTIES_ROOT, PROPERTIES_COLOR)
            key_id = self._meta_node(key, PROPERTY_KEY_COLOR)
            value_id = self._meta_node(text, PROPERTY_VALUE_COLOR)
            for end in ends:
                self._link(end, value_id, "is related to", directed=False)
            self._link(value_id, key_id, "is")
            self._link(key_id, root, "is")

    # =========================================================================
    # BUILDERS
    # =========================================================================

    def _meta_node(self, name: str, color: str) -> str:
        """Id of the node named `name`, created if no node has that name."""
        name_key = derive_id(name)
        node_id = self._node_names.get(name_key)
        if node_id is not None:
            return node_id

        self._nodes[name_key] = {
            "id": name_key,
            "name": name,
            "color": color,
            "size": DEFAULT_NODE_SIZE,
            "description": f"Meta-node: {name}",
            "category": "",
            "subCat": "",
        }
        self._node_names[name_key] = name_key
        return name_key

    def _link(self, source: str, target: str, relationship: str, directed: bool = True) -> Optional[str]:
        """Add a link edge once per (source, target, relationship)."""
        triple = (source, target, relationship)
        if triple in self._links:
            return None
        self._links.add(triple)

        base = f"{self._nodes[source]['name']} {relationship} {self._nodes[target]['name']}"
        name = base
        counter = 2
        while derive_id(name) in self._edge_names or derive_id(name) in self._edges:
            name = f"{base} {counter}"
            counter += 1

        edge_id = derive_id(name)
        self._edge_names.add(edge_id)
        self._edges[edge_id] = {
            "id": edge_id,
            "name": name,
            "source": source,
            "target": target,
            "relationship": relationship,
            "color": LINK_COLOR,
            "weight": DEFAULT_EDGE_WEIGHT,
            "directed": directed,
        }
        return edge_id


# =============================================================================
# ENTRY POINTS
# =============================================================================

def explode_graph(graph: GraphStore) -> Dict[str, Any]:
    """
    Exploded copy of `graph` as a document for GraphStore.from_json.

    The store itself is not modified.
    """
    return GraphExploder(graph).explode()


def explode_in_place(graph: GraphStore) -> LoadReport:
    """
    Replace the graph with its exploded form.

    Raises:
        GraphLimitError: If the exploded graph exceeds the store's limits
            (the graph is then left unchanged)
    """
    return graph.from_json(explode_graph(graph))
