"""
KNOWLEDGE GRAPH ALGORITHMS - Queries Over the Current Graph

Read-only analysis of a GraphStore:
- Which route connects two nodes? (shortest path, all simple paths)
- Which nodes belong together? (property clusters, label propagation)
- How connected is a node? (centrality)
- Which nodes look alike but are not linked? (edge suggestions)

All functions take a GraphStore and never modify it. Iteration follows the
store's insertion order, so results are deterministic for a given graph
(community detection also needs a fixed seed).

Traversal Rules:
- Directed edges lead source -> target
- Undirected edges lead both ways
- ignore_direction=True treats every edge as undirected
- Half-edges (one end None) are never traversed
"""
import math
import random
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

from core.graph_store import GraphStore
from core.sanitize import stringify_value
from core.schemas import NodeData

# Layout, visual and identity keys that never count towards similarity
SIMILARITY_IGNORED_KEYS = frozenset({
    "color", "size", "x", "y", "fx", "fy", "vx", "vy", "index", "id", "name",
})

UNDEFINED_CLUSTER = "undefined"


# =============================================================================
# DATA CLASSES FOR RESULTS
# =============================================================================

@dataclass
class PathResult:
    """A path as node ids and the edge ids between them."""
    nodes: List[str]
    edges: List[str] = field(default_factory=list)
    distance: float = 0

    @property
    def hops(self) -> int:
        return len(self.edges)


@dataclass
class CentralityReport:
    """Degree metrics for a single node."""
    degree: int         # Incident edges
    neighbors: int      # Distinct nodes reachable in one step
    in_degree: int
    out_degree: int


@dataclass
class EdgeSuggestion:
    """A proposed edge between two similar, unconnected nodes."""
    source: str
    target: str
    similarity: float
    reason: str


# =============================================================================
# ADJACENCY
# =============================================================================

def _steps(edge, node_id: str, ignore_direction: bool) -> Optional[str]:
    """The node reached by leaving `node_id` along `edge`, if allowed."""
    if edge.source is None or edge.target is None:
        return None
    if edge.source == node_id:
        return edge.target
    if edge.target == node_id and (ignore_direction or not edge.directed):
        return edge.source
    return None


def _adjacency(
    graph: GraphStore,
    ignore_direction: bool,
) -> Dict[str, List[Tuple[str, str, float]]]:
    """node_id -> [(neighbor_id, edge_id, weight)] in edge insertion order."""
    adjacency: Dict[str, List[Tuple[str, str, float]]] = {n.id: [] for n in graph.nodes}
    for edge in graph.edges:
        if edge.source is None or edge.target is None:
            continue
        adjacency[edge.source].append((edge.target, edge.id, edge.weight))
        if ignore_direction or not edge.directed:
            adjacency[edge.target].append((edge.source, edge.id, edge.weight))
    return adjacency


def get_neighbors(graph: GraphStore, node_id: str) -> List[str]:
    """One-step neighbors of a node (see GraphStore.get_neighbors)."""
    return graph.get_neighbors(node_id)


# =============================================================================
# PATHS
# =============================================================================

def find_shortest_path(
    graph: GraphStore,
    start_id: str,
    end_id: str,
    ignore_direction: bool = False,
) -> Optional[PathResult]:
    """
    Minimum total-weight path using Dijkstra's algorithm.

    Selection is a linear scan: the first unvisited node (in insertion order)
    with a strictly smaller distance wins, and relaxation visits edges in
    insertion order. Equal-weight alternatives therefore resolve the same way
    on every run.

    Args:
        graph: GraphStore instance
        start_id: Start node id
        end_id: End node id
        ignore_direction: Traverse directed edges both ways

    Returns:
        PathResult, or None if either node is unknown or no path exists
    """
    if not graph.has_node(start_id) or not graph.has_node(end_id):
        return None

    if start_id == end_id:
        return PathResult(nodes=[start_id], edges=[], distance=0)

    distances: Dict[str, float] = {node.id: math.inf for node in graph.nodes}
    previous: Dict[str, Tuple[str, str]] = {}
    distances[start_id] = 0
    unvisited = dict.fromkeys(distances)
    edges = graph.edges

    while unvisited:
        current = None
        best = math.inf
        for node_id in unvisited:
            if distances[node_id] < best:
                best = distances[node_id]
                current = node_id

        if current is None:
            break  # Remaining nodes are unreachable

        del unvisited[current]
        if current == end_id:
            break

        for edge in edges:
            neighbor = _steps(edge, current, ignore_direction)
            if neighbor is None or neighbor not in unvisited:
                continue
            candidate = distances[current] + edge.weight
            if candidate < distances[neighbor]:
                distances[neighbor] = candidate
                previous[neighbor] = (current, edge.id)

    if math.isinf(distances[end_id]):
        return None

    path_nodes = [end_id]
    path_edges: List[str] = []
    cursor = end_id
    while cursor in previous:
        cursor, edge_id = previous[cursor]
        path_nodes.append(cursor)
        path_edges.append(edge_id)

    path_nodes.reverse()
    path_edges.reverse()
    return PathResult(nodes=path_nodes, edges=path_edges, distance=distances[end_id])


def find_all_paths(
    graph: GraphStore,
    start_id: str,
    end_id: str,
    max_paths: Optional[int] = None,
    ignore_direction: bool = False,
) -> List[PathResult]:
    """
    Enumerate simple paths (no repeated node) from start to end.

    Depth-first with an explicit stack; a node is on the visited set only
    while it is on the current path. Enumeration stops as soon as
    `max_paths` paths have been collected, so on dense graphs the result is
    the first `max_paths` paths in DFS order, not the shortest ones.

    Returns:
        Paths sorted by hop count, then distance. Empty if either node is
        unknown or none exists.
    """
    if max_paths is None:
        max_paths = graph.config.max_paths
    if not graph.has_node(start_id) or not graph.has_node(end_id) or max_paths <= 0:
        return []

    if start_id == end_id:
        return [PathResult(nodes=[start_id], edges=[], distance=0)]

    adjacency = _adjacency(graph, ignore_direction)
    results: List[PathResult] = []

    path = [start_id]
    path_edges: List[str] = []
    distances = [0]
    on_path = {start_id}
    stack: List[Iterator[Tuple[str, str, float]]] = [iter(adjacency[start_id])]

    while stack and len(results) < max_paths:
        advanced = False
        for neighbor, edge_id, weight in stack[-1]:
            if neighbor in on_path:
                continue
            if neighbor == end_id:
                results.append(PathResult(
                    nodes=path + [end_id],
                    edges=path_edges + [edge_id],
                    distance=distances[-1] + weight,
                ))
                if len(results) >= max_paths:
                    break
                continue

            path.append(neighbor)
            path_edges.append(edge_id)
            distances.append(distances[-1] + weight)
            on_path.add(neighbor)
            stack.append(iter(adjacency[neighbor]))
            advanced = True
            break

        if not advanced:
            stack.pop()
            on_path.discard(path.pop())
            distances.pop()
            if path_edges:
                path_edges.pop()

    results.sort(key=lambda p: (p.hops, p.distance))
    return results


# =============================================================================
# GROUPING
# =============================================================================

def cluster_by_property(graph: GraphStore, key: str) -> Dict[str, List[str]]:
    """
    Group node ids by the stringified value of a property.

    Nodes without the property land in the "undefined" cluster.
    """
    clusters: Dict[str, List[str]] = {}
    for node in graph.nodes:
        value = node.get_property(key)
        label = UNDEFINED_CLUSTER if value is None else stringify_value(value)
        clusters.setdefault(label, []).append(node.id)
    return clusters


def detect_communities(
    graph: GraphStore,
    max_iterations: int = 10,
    seed: Optional[int] = None,
) -> Dict[str, List[str]]:
    """
    Label propagation community detection.

    Every node starts with its own id as label. Each pass visits nodes in a
    shuffled order and adopts the most frequent label among the node's
    neighbors, updating in place. On a tie the label seen first while
    scanning neighbors wins. Stops after a pass with no change or after
    `max_iterations` passes.

    Args:
        graph: GraphStore instance
        max_iterations: Upper bound on passes
        seed: Shuffle seed. None gives a different visit order per call, so
            results on graphs with ties vary between runs.

    Returns:
        Dict mapping community label to member node ids
    """
    rng = random.Random(seed)
    labels: Dict[str, str] = {node.id: node.id for node in graph.nodes}
    neighbors = {node_id: graph.get_neighbors(node_id) for node_id in labels}

    changed = True
    iteration = 0
    while changed and iteration < max_iterations:
        changed = False
        iteration += 1

        order = list(labels)
        rng.shuffle(order)

        for node_id in order:
            if not neighbors[node_id]:
                continue

            counts: Dict[str, int] = {}
            for neighbor_id in neighbors[node_id]:
                label = labels[neighbor_id]
                counts[label] = counts.get(label, 0) + 1

            best_label = labels[node_id]
            best_count = 0
            for label, count in counts.items():
                if count > best_count:
                    best_count = count
                    best_label = label

            if labels[node_id] != best_label:
                labels[node_id] = best_label
                changed = True

    communities: Dict[str, List[str]] = {}
    for node_id, label in labels.items():
        communities.setdefault(label, []).append(node_id)
    return communities


# =============================================================================
# CENTRALITY
# =============================================================================

def calculate_centrality(graph: GraphStore, node_id: str) -> Optional[CentralityReport]:
    """Degree, neighbor count, in- and out-degree. None for an unknown node."""
    if not graph.has_node(node_id):
        return None

    incident = graph.get_node_edges(node_id)
    return CentralityReport(
        degree=len(incident),
        neighbors=len(graph.get_neighbors(node_id)),
        in_degree=sum(1 for e in incident if e.target == node_id),
        out_degree=sum(1 for e in incident if e.source == node_id),
    )


# =============================================================================
# SIMILARITY
# =============================================================================

def _comparable(value: Any) -> str:
    return "" if value is None else stringify_value(value).lower()


def calculate_similarity(node_a: NodeData, node_b: NodeData) -> float:
    """
    Score in [0, 1] comparing custom properties of two nodes.

    Each key in the union of both nodes' custom keys scores 1 for an equal
    value (case-insensitive, missing counts as empty), 0.5 when one
    non-empty value contains the other, else 0. The score is the mean.
    """
    keys = [
        key for key in dict.fromkeys([*node_a.custom, *node_b.custom])
        if key not in SIMILARITY_IGNORED_KEYS
    ]
    if not keys:
        return 0.0

    matches = 0.0
    for key in keys:
        value_a = _comparable(node_a.custom.get(key))
        value_b = _comparable(node_b.custom.get(key))
        if value_a == value_b:
            matches += 1
        elif value_a and value_b and (value_a in value_b or value_b in value_a):
            matches += 0.5

    return matches / len(keys)


def suggest_edges(graph: GraphStore, threshold: Optional[float] = None) -> List[EdgeSuggestion]:
    """
    Propose edges between unconnected node pairs with similar properties.

    Pairs already joined by an edge in either direction are skipped.
    The threshold defaults to the store config's `suggestion_threshold`.

    Returns:
        Suggestions with similarity >= threshold, highest first
    """
    if threshold is None:
        threshold = graph.config.suggestion_threshold

    connected = set()
    for edge in graph.edges:
        if edge.source is not None and edge.target is not None:
            connected.add((edge.source, edge.target))
            connected.add((edge.target, edge.source))

    nodes = graph.nodes
    suggestions: List[EdgeSuggestion] = []
    for i, node_a in enumerate(nodes):
        for node_b in nodes[i + 1:]:
            if (node_a.id, node_b.id) in connected:
                continue
            similarity = calculate_similarity(node_a, node_b)
            if similarity >= threshold:
                suggestions.append(EdgeSuggestion(
                    source=node_a.id,
                    target=node_b.id,
                    similarity=similarity,
                    reason=f"{similarity * 100:.0f}% property match",
                ))

    suggestions.sort(key=lambda s: s.similarity, reverse=True)
    return suggestions
