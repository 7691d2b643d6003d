"""
KNOWLEDGE GRAPH CORE - Central exports for core functionality.

This module provides access to:
- The graph store (GraphStore) and its exceptions
- Node/edge structures (NodeData, EdgeData)
- Graph queries (algorithms, filters), workflow validation, history and analytics
- Explode: properties into meta-nodes
"""

from core.schemas import (
    NodeData,
    EdgeData,
    GraphMetadata,
    GraphSettings,
    WorldBoundary,
    derive_id,
)

from core.graph_store import (
    GraphStore,
    LoadReport,
    GraphError,
    NodeNotFoundError,
    EdgeNotFoundError,
    DocumentFormatError,
    GraphLimitError,
)

from core.algorithms import (
    PathResult,
    CentralityReport,
    EdgeSuggestion,
    find_shortest_path,
    find_all_paths,
    cluster_by_property,
    detect_communities,
    calculate_centrality,
    calculate_similarity,
    suggest_edges,
    get_neighbors,
)

from core.filters import (
    filter_by_priority,
    filter_by_category,
    filter_by_color,
    filter_by_deadline,
    filter_by_date_range,
    filter_by_connections,
    overdue_nodes,
    upcoming_nodes,
)

from core.explode import GraphExploder, explode_graph, explode_in_place

from core.workflow import (
    WorkflowValidator,
    WorkflowNavigator,
    WorkflowReport,
    WorkflowStep,
    DisconnectedChain,
)

from core.history import HistoryManager

__all__ = [
    # Structures
    "NodeData",
    "EdgeData",
    "GraphMetadata",
    "GraphSettings",
    "WorldBoundary",
    "derive_id",
    # Store
    "GraphStore",
    "LoadReport",
    "GraphError",
    "NodeNotFoundError",
    "EdgeNotFoundError",
    "DocumentFormatError",
    "GraphLimitError",
    # Algorithms
    "PathResult",
    "CentralityReport",
    "EdgeSuggestion",
    "find_shortest_path",
    "find_all_paths",
    "cluster_by_property",
    "detect_communities",
    "calculate_centrality",
    "calculate_similarity",
    "suggest_edges",
    "get_neighbors",
    # Filters
    "filter_by_priority",
    "filter_by_category",
    "filter_by_color",
    "filter_by_deadline",
    "filter_by_date_range",
    "filter_by_connections",
    "overdue_nodes",
    "upcoming_nodes",
    # Explode
    "GraphExploder",
    "explode_graph",
    "explode_in_place",
    # Workflow
    "WorkflowValidator",
    "WorkflowNavigator",
    "WorkflowReport",
    "WorkflowStep",
    "DisconnectedChain",
    # History
    "HistoryManager",
]
