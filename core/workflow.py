"""
KNOWLEDGE GRAPH WORKFLOW - Chain Grammar Over "next" Edges

A workflow is a chain of nodes joined by directed "next" edges:

    start --next--> task --next--> decision --next--> ... --next--> end

Roles are read from (name, category), case-insensitively:
    start     name "start", category "start-end"   exactly 1 outgoing next
    end       name "end", category "start-end"     exactly 1 incoming next
    task      category "task"                      exactly 1 in, 1 out
    decision  category "decision"                  exactly 1 in, >= 1 out

Any other category in a chain is an error.

WorkflowValidator checks a chain and reports; it never modifies the graph.
WorkflowNavigator keeps a cursor and a history for stepping through a valid
chain, on top of the validator.
"""
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import List, Optional

from core.graph_store import GraphStore
from core.schemas import EdgeData, NodeData

logger = logging.getLogger(__name__)

NEXT_RELATION = "next"

CATEGORY_START_END = "start-end"
CATEGORY_TASK = "task"
CATEGORY_DECISION = "decision"


# =============================================================================
# REPORTS
# =============================================================================

@dataclass
class DisconnectedChain:
    """A "next" chain elsewhere in the graph that is not part of the checked one."""
    nodes: List[NodeData]
    reason: str
    has_start: bool
    has_end: bool


@dataclass
class WorkflowReport:
    """Outcome of WorkflowValidator.validate_workflow_structure."""
    is_valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    workflow_chain: List[NodeData] = field(default_factory=list)
    disconnected_chains: List[DisconnectedChain] = field(default_factory=list)
    start_node: Optional[NodeData] = None
    end_node: Optional[NodeData] = None

    def error(self, message: str) -> None:
        self.errors.append(message)
        self.is_valid = False


@dataclass
class WorkflowStep:
    """A neighbor along a "next" edge, as offered to a navigation UI."""
    node: NodeData
    edge: EdgeData
    label: str


def _display(node: NodeData) -> str:
    return node.name or node.id


def _is_role(node: NodeData, name: str) -> bool:
    return node.name.lower() == name and node.category.lower() == CATEGORY_START_END


# =============================================================================
# VALIDATOR
# =============================================================================

class WorkflowValidator:
    """Checks the workflow grammar for chains in a GraphStore."""

    def __init__(self, graph: GraphStore):
        self.graph = graph

    @staticmethod
    def is_next_edge(edge: EdgeData) -> bool:
        """Directed, and relationship, label or name equals "next"."""
        if not edge.directed:
            return False
        label = edge.custom.get("label")
        candidates = (edge.relationship, label if isinstance(label, str) else "", edge.name)
        return any(value.lower() == NEXT_RELATION for value in candidates)

    def next_edges(self, node_id: str, direction: str) -> List[EdgeData]:
        """
        "next" edges entering (direction="incoming") or leaving
        (direction="outgoing") a node.
        """
        if direction == "incoming":
            return [e for e in self.graph.edges if self.is_next_edge(e) and e.target == node_id]
        if direction == "outgoing":
            return [e for e in self.graph.edges if self.is_next_edge(e) and e.source == node_id]
        raise ValueError(f"direction must be 'incoming' or 'outgoing', not {direction!r}")

    def has_next_edges(self, node_id: str) -> bool:
        return any(self.is_next_edge(e) and e.touches(node_id) for e in self.graph.edges)

    def find_workflow_chain(self, start_id: str) -> List[NodeData]:
        """
        Nodes connected to `start_id` through "next" edges in either
        direction, in breadth-first order. Empty for an unknown node.
        """
        next_edges = [e for e in self.graph.edges if self.is_next_edge(e)]
        visited = set()
        chain: List[NodeData] = []
        queue = deque([start_id])

        while queue:
            node_id = queue.popleft()
            if node_id in visited:
                continue
            visited.add(node_id)

            node = self.graph.get_node(node_id)
            if node is None:
                continue
            chain.append(node)

            for edge in next_edges:
                if edge.source == node_id and edge.target is not None and edge.target not in visited:
                    queue.append(edge.target)
                if edge.target == node_id and edge.source is not None and edge.source not in visited:
                    queue.append(edge.source)

        return chain

    @staticmethod
    def identify_start_node(nodes: List[NodeData]) -> Optional[NodeData]:
        return next((n for n in nodes if _is_role(n, "start")), None)

    @staticmethod
    def identify_end_node(nodes: List[NodeData]) -> Optional[NodeData]:
        return next((n for n in nodes if _is_role(n, "end")), None)

    def validate_workflow_structure(self, nodes: List[NodeData]) -> WorkflowReport:
        """
        Check a chain against the workflow grammar.

        Errors: missing start or end, wrong "next" degree for a role,
        unrecognized category. Warnings: an end -> start loop edge, and other
        "next" chains in the graph that are disconnected from this one.
        """
        report = WorkflowReport(workflow_chain=list(nodes))
        report.start_node = self.identify_start_node(nodes)
        report.end_node = self.identify_end_node(nodes)

        if report.start_node is None:
            report.error('Missing start node: a workflow needs a node named "start" with category "start-end"')
        if report.end_node is None:
            report.error('Missing end node: a workflow needs a node named "end" with category "start-end"')

        if report.start_node is not None and report.end_node is not None:
            loop = self._find_edge(report.end_node.id, report.start_node.id)
            if loop is not None:
                report.warnings.append(
                    f'End node connects back to start node, forming a loop. Edge: "{loop.name or loop.id}"'
                )

        for node in nodes:
            for message in self._check_node(node):
                report.error(message)

        chain_ids = {n.id for n in nodes}
        report.disconnected_chains = self.find_disconnected_chains(chain_ids)
        if report.disconnected_chains:
            report.warnings.append(
                f"Found {len(report.disconnected_chains)} disconnected workflow chain(s)"
            )

        return report

    def find_disconnected_chains(self, processed_ids) -> List[DisconnectedChain]:
        """Every other "next" chain in the graph, with what it is missing."""
        seen = set(processed_ids)
        chains: List[DisconnectedChain] = []

        for node in self.graph.nodes:
            if node.id in seen or not self.has_next_edges(node.id):
                continue

            chain = self.find_workflow_chain(node.id)
            seen.update(n.id for n in chain)

            has_start = self.identify_start_node(chain) is not None
            has_end = self.identify_end_node(chain) is not None
            if not has_start and not has_end:
                reason = "Missing both start and end nodes"
            elif not has_start:
                reason = "Missing start node"
            elif not has_end:
                reason = "Missing end node"
            else:
                reason = "Has start and end but disconnected from main workflow"

            chains.append(DisconnectedChain(
                nodes=chain, reason=reason, has_start=has_start, has_end=has_end,
            ))

        return chains

    def _check_node(self, node: NodeData) -> List[str]:
        category = node.category.lower()
        incoming = len(self.next_edges(node.id, "incoming"))
        outgoing = len(self.next_edges(node.id, "outgoing"))
        label = _display(node)
        errors = []

        if _is_role(node, "start"):
            if outgoing != 1:
                errors.append(f'Start node "{label}" must have exactly one outgoing "next" edge (found {outgoing})')
        elif _is_role(node, "end"):
            if incoming != 1:
                errors.append(f'End node "{label}" must have exactly one incoming "next" edge (found {incoming})')
        elif category == CATEGORY_TASK:
            if incoming != 1:
                errors.append(f'Task node "{label}" must have exactly one incoming "next" edge (found {incoming})')
            if outgoing != 1:
                errors.append(f'Task node "{label}" must have exactly one outgoing "next" edge (found {outgoing})')
        elif category == CATEGORY_DECISION:
            if incoming != 1:
                errors.append(f'Decision node "{label}" must have exactly one incoming "next" edge (found {incoming})')
            if outgoing < 1:
                errors.append(f'Decision node "{label}" must have at least one outgoing "next" edge (found {outgoing})')
        else:
            errors.append(
                f'Node "{label}" has category "{node.category}", which is not a workflow type '
                f"(start-end, task, decision)"
            )

        return errors

    def _find_edge(self, source_id: str, target_id: str) -> Optional[EdgeData]:
        for edge in self.graph.edges:
            if self.is_next_edge(edge) and edge.source == source_id and edge.target == target_id:
                return edge
        return None


# =============================================================================
# NAVIGATOR
# =============================================================================

class WorkflowNavigator:
    """
    Cursor over a validated workflow chain.

    Usage:
        navigator = WorkflowNavigator(store)
        report = navigator.open(node_id)
        if navigator.is_open:
            for step in navigator.next_steps():
                ...
            navigator.navigate_to(step.node.id)
            navigator.back()
    """

    def __init__(self, graph: GraphStore):
        self.graph = graph
        self.validator = WorkflowValidator(graph)
        self.report: Optional[WorkflowReport] = None
        self.chain: List[NodeData] = []
        self.current_id: Optional[str] = None
        self.history: List[str] = []

    @property
    def is_open(self) -> bool:
        return self.current_id is not None

    def open(self, node_id: str) -> Optional[WorkflowReport]:
        """
        Validate the chain containing `node_id` and place the cursor on it.

        Returns:
            The validation report, or None if the node is unknown or has no
            "next" edges. The navigator stays closed when the report has
            errors.
        """
        self.close()

        if not self.graph.has_node(node_id):
            logger.info("Workflow navigator: node %s not found", node_id)
            return None
        if not self.validator.has_next_edges(node_id):
            logger.info("Workflow navigator: node %s is not part of a workflow chain", node_id)
            return None

        chain = self.validator.find_workflow_chain(node_id)
        report = self.validator.validate_workflow_structure(chain)
        self.report = report
        if report.errors:
            return report

        self.chain = chain
        self.current_id = node_id
        self.history = [node_id]
        return report

    def next_steps(self, node_id: Optional[str] = None) -> List[WorkflowStep]:
        """Targets of the outgoing "next" edges of a node (default: cursor)."""
        node_id = node_id or self.current_id
        if node_id is None:
            return []
        return self._steps(self.validator.next_edges(node_id, "outgoing"), "target")

    def previous_steps(self, node_id: Optional[str] = None) -> List[WorkflowStep]:
        """Sources of the incoming "next" edges of a node (default: cursor)."""
        node_id = node_id or self.current_id
        if node_id is None:
            return []
        return self._steps(self.validator.next_edges(node_id, "incoming"), "source")

    def navigate_to(self, node_id: str) -> bool:
        """Move the cursor. False if closed or the node is unknown."""
        if not self.is_open or not self.graph.has_node(node_id):
            return False
        if node_id != self.current_id:
            self.history.append(node_id)
        self.current_id = node_id
        return True

    def back(self) -> Optional[str]:
        """Return to the previous node in the history; None at the beginning."""
        if len(self.history) < 2:
            return None
        self.history.pop()
        self.current_id = self.history[-1]
        return self.current_id

    def position(self) -> Optional[int]:
        """1-based position of the cursor within the chain, or None."""
        for index, node in enumerate(self.chain):
            if node.id == self.current_id:
                return index + 1
        return None

    def connections(self, node_id: Optional[str] = None):
        """
        Non-"next" edges of a node as (inputs, outputs).

        Inputs end at the node, outputs start at it.
        """
        node_id = node_id or self.current_id
        inputs = [
            e for e in self.graph.edges
            if e.target == node_id and not self.validator.is_next_edge(e)
        ]
        outputs = [
            e for e in self.graph.edges
            if e.source == node_id and not self.validator.is_next_edge(e)
        ]
        return inputs, outputs

    def close(self) -> None:
        self.report = None
        self.chain = []
        self.current_id = None
        self.history = []

    @staticmethod
    def edge_label(edge: EdgeData) -> str:
        """Button text for an edge: name, description, relationship, label or id."""
        label = edge.custom.get("label")
        for candidate in (edge.name, edge.description, edge.relationship, label):
            if candidate:
                return str(candidate)
        return edge.id

    def _steps(self, edges: List[EdgeData], end: str) -> List[WorkflowStep]:
        steps = []
        for edge in edges:
            node = self.graph.get_node(getattr(edge, end))
            if node is not None:
                steps.append(WorkflowStep(node=node, edge=edge, label=self.edge_label(edge)))
        return steps
