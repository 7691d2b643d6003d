"""
KNOWLEDGE GRAPH ANALYTICS - Structure Metrics and Tabular Export

This module provides read-only analytics over a GraphStore. These metrics
help answer questions like:
- Is the graph one piece or several islands? (components)
- Which nodes were never connected? (orphans)
- How dense is it? (density)
- What is in it, by category or any other property? (counts)

Structural metrics run on a rustworkx PyDiGraph snapshot built from the
store (half-edges have no place in it and are left out). Tabular exports
produce polars DataFrames for reporting.

All functions are read-only queries - they observe but don't modify.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import polars as pl
import rustworkx as rx

from core.graph_store import GraphStore
from core.sanitize import stringify_value


# =============================================================================
# DATA CLASSES FOR RESULTS
# =============================================================================

@dataclass
class GraphHealthReport:
    """Overall health metrics for the graph."""
    total_nodes: int
    total_edges: int
    half_edge_count: int
    density: float
    component_count: int
    orphan_count: int
    relationship_count: int
    is_dag: bool


# =============================================================================
# SNAPSHOT
# =============================================================================

def build_digraph(store: GraphStore) -> Tuple[rx.PyDiGraph, Dict[int, str]]:
    """
    Copy the store's topology into a rustworkx directed multigraph.

    Node payloads are node ids, edge payloads are edge ids. Undirected edges
    appear once, in their stored source -> target orientation.

    Returns:
        (graph, inv_map) where inv_map maps rustworkx index -> node id
    """
    graph = rx.PyDiGraph(multigraph=True)
    index_of: Dict[str, int] = {}
    inv_map: Dict[int, str] = {}

    for node in store.nodes:
        idx = graph.add_node(node.id)
        index_of[node.id] = idx
        inv_map[idx] = node.id

    for edge in store.edges:
        if edge.source is None or edge.target is None:
            continue
        graph.add_edge(index_of[edge.source], index_of[edge.target], edge.id)

    return graph, inv_map


# =============================================================================
# COMPONENT ANALYSIS
# =============================================================================

def find_connected_components(store: GraphStore) -> List[List[str]]:
    """
    Weakly connected components.

    Node ids inside a component and the components themselves follow the
    store's insertion order.

    Returns:
        List of components (each is a list of node ids)
    """
    graph, inv_map = build_digraph(store)
    components = [sorted(component) for component in rx.weakly_connected_components(graph)]
    components.sort(key=lambda c: c[0])
    return [[inv_map[idx] for idx in component] for component in components]


def find_orphan_nodes(store: GraphStore) -> List[str]:
    """
    Nodes with no edge at all.

    A node holding only half-edges is not an orphan.
    """
    graph, inv_map = build_digraph(store)
    dangling = set()
    for edge in store.edges:
        if edge.is_half_edge:
            dangling.add(edge.source or edge.target)

    return [
        inv_map[idx] for idx in graph.node_indices()
        if graph.in_degree(idx) == 0
        and graph.out_degree(idx) == 0
        and inv_map[idx] not in dangling
    ]


def compute_graph_density(store: GraphStore) -> float:
    """
    Compute graph density (actual edges / possible edges).

    Uses the directed maximum n * (n - 1); parallel edges and self-loops
    count, so a multigraph may exceed 1.0.
    """
    graph, _ = build_digraph(store)
    n = graph.num_nodes()
    if n <= 1:
        return 0.0
    return graph.num_edges() / (n * (n - 1))


# =============================================================================
# PROPERTY-BASED ANALYTICS
# =============================================================================

def count_nodes_by(store: GraphStore, key: str) -> Dict[str, int]:
    """
    Count nodes grouped by a property value.

    Empty or missing values count as "unknown".
    """
    counts: Dict[str, int] = {}
    for node in store.nodes:
        value = node.get_property(key)
        label = stringify_value(value) if value not in (None, "") else "unknown"
        counts[label] = counts.get(label, 0) + 1
    return counts


def get_graph_health_report(store: GraphStore) -> GraphHealthReport:
    """
    Generate a comprehensive health report for the graph.

    Returns:
        GraphHealthReport with all metrics
    """
    graph, _ = build_digraph(store)

    return GraphHealthReport(
        total_nodes=store.node_count,
        total_edges=store.edge_count,
        half_edge_count=sum(1 for e in store.edges if e.is_half_edge),
        density=compute_graph_density(store),
        component_count=len(find_connected_components(store)),
        orphan_count=len(find_orphan_nodes(store)),
        relationship_count=len(store.get_relationship_types()),
        is_dag=rx.is_directed_acyclic_graph(graph),
    )


# =============================================================================
# TABULAR EXPORT
# =============================================================================

_NODE_SCHEMA = {
    "id": pl.Utf8,
    "name": pl.Utf8,
    "category": pl.Utf8,
    "sub_cat": pl.Utf8,
    "priority": pl.Utf8,
    "color": pl.Utf8,
    "size": pl.Float64,
    "x": pl.Float64,
    "y": pl.Float64,
    "pinned": pl.Boolean,
    "degree": pl.Int64,
}

_EDGE_SCHEMA = {
    "id": pl.Utf8,
    "name": pl.Utf8,
    "source": pl.Utf8,
    "target": pl.Utf8,
    "relationship": pl.Utf8,
    "weight": pl.Float64,
    "directed": pl.Boolean,
}


def nodes_frame(store: GraphStore, properties: Optional[Sequence[str]] = None) -> pl.DataFrame:
    """
    One row per node.

    Args:
        store: GraphStore instance
        properties: Extra property keys to add as text columns (missing
            values are null). Keys that are already columns are skipped.
    """
    extra = [key for key in properties or () if key not in _NODE_SCHEMA]
    degree: Dict[str, int] = {}
    for edge in store.edges:
        for end in (edge.source, edge.target):
            if end is not None:
                degree[end] = degree.get(end, 0) + 1

    records = []
    for node in store.nodes:
        record = {
            "id": node.id,
            "name": node.name,
            "category": node.category,
            "sub_cat": node.sub_cat,
            "priority": node.priority,
            "color": node.color,
            "size": float(node.size),
            "x": node.x,
            "y": node.y,
            "pinned": node.is_pinned,
            "degree": degree.get(node.id, 0),
        }
        for key in extra:
            value = node.get_property(key)
            record[key] = None if value is None else stringify_value(value)
        records.append(record)

    schema = dict(_NODE_SCHEMA)
    schema.update((key, pl.Utf8) for key in extra)

    return pl.DataFrame(records, schema=schema)


def edges_frame(store: GraphStore) -> pl.DataFrame:
    """One row per edge; a dangling end is null."""
    records = [
        {
            "id": edge.id,
            "name": edge.name,
            "source": edge.source,
            "target": edge.target,
            "relationship": edge.relationship,
            "weight": float(edge.weight),
            "directed": edge.directed,
        }
        for edge in store.edges
    ]
    return pl.DataFrame(records, schema=_EDGE_SCHEMA)
