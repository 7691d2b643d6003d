"""
Unit tests for core/workflow.py

Tests the workflow grammar checker and navigator:
- "next" edge recognition
- Chain discovery
- Structure validation errors and warnings
- Navigation over a valid chain
"""
import pytest

from core.schemas import EdgeData, derive_id
from core.workflow import WorkflowNavigator, WorkflowValidator


# =============================================================================
# NEXT EDGE TESTS
# =============================================================================

def test_is_next_edge_variants(fresh_store):
    """
    Validate "next" recognition.

    Verifies:
    - relationship, custom label or name equal to "next" qualify (any case)
    - Undirected edges never qualify
    """
    a = fresh_store.add_node(name="A")
    b = fresh_store.add_node(name="B")
    by_relationship = fresh_store.add_edge(a.id, b.id, name="r", relationship="NEXT")
    by_label = fresh_store.add_edge(a.id, b.id, name="l", label="Next")
    by_name = fresh_store.add_edge(a.id, b.id, name="next")
    undirected = fresh_store.add_edge(a.id, b.id, name="u", relationship="next", directed=False)
    other = fresh_store.add_edge(a.id, b.id, name="o", relationship="then")

    assert WorkflowValidator.is_next_edge(by_relationship)
    assert WorkflowValidator.is_next_edge(by_label)
    assert WorkflowValidator.is_next_edge(by_name)
    assert not WorkflowValidator.is_next_edge(undirected)
    assert not WorkflowValidator.is_next_edge(other)


def test_find_workflow_chain_both_directions(workflow_store):
    """Validate that the chain is found from any member, breadth-first."""
    store, nodes = workflow_store
    validator = WorkflowValidator(store)

    chain = validator.find_workflow_chain(nodes["work"].id)

    assert [n.name for n in chain] == ["Work", "start", "end"]
    assert validator.find_workflow_chain("missing") == []


def test_find_workflow_chain_is_level_ordered(fresh_store):
    """
    Validate breadth-first order on a branching chain.

    Verifies:
    - Both branches of a fork come before anything two steps away
    - Each node appears once even when reached twice
    """
    start = fresh_store.add_node(name="S")
    left = fresh_store.add_node(name="L")
    right = fresh_store.add_node(name="R")
    deep = fresh_store.add_node(name="D")
    fresh_store.add_edge(start.id, left.id, name="s-l", relationship="next")
    fresh_store.add_edge(start.id, right.id, name="s-r", relationship="next")
    fresh_store.add_edge(left.id, deep.id, name="l-d", relationship="next")
    fresh_store.add_edge(right.id, deep.id, name="r-d", relationship="next")

    chain = WorkflowValidator(fresh_store).find_workflow_chain(start.id)

    assert [n.name for n in chain] == ["S", "L", "R", "D"]


# =============================================================================
# VALIDATION TESTS
# =============================================================================

def test_valid_chain_has_no_errors(workflow_store):
    """
    Validate the minimal start -> task -> end chain.

    Verifies:
    - Zero errors and warnings
    - Start and end nodes are identified
    """
    store, nodes = workflow_store
    validator = WorkflowValidator(store)

    report = validator.validate_workflow_structure(validator.find_workflow_chain(nodes["start"].id))

    assert report.is_valid
    assert report.errors == []
    assert report.warnings == []
    assert report.start_node is nodes["start"]
    assert report.end_node is nodes["end"]


def test_removing_task_output_reports_task(workflow_store):
    """
    Validate that a task without its outgoing edge is an error.

    Verifies:
    - The report is invalid
    - An error names the task node
    """
    store, nodes = workflow_store
    store.remove_edge(derive_id("w-e"))
    validator = WorkflowValidator(store)

    chain = [nodes["start"], nodes["work"], nodes["end"]]
    report = validator.validate_workflow_structure(chain)

    assert not report.is_valid
    assert any('"Work"' in e and "outgoing" in e for e in report.errors)
    assert any("End node" in e for e in report.errors)


def test_missing_start_and_unknown_category(fresh_store):
    """
    Validate hard errors.

    Verifies:
    - Missing start and end are reported
    - An unrecognized category is an error
    """
    a = fresh_store.add_node(name="A", category="note")
    b = fresh_store.add_node(name="B", category="task")
    fresh_store.add_edge(a.id, b.id, name="a-b", relationship="next")
    validator = WorkflowValidator(fresh_store)

    report = validator.validate_workflow_structure(validator.find_workflow_chain(a.id))

    assert any(e.startswith("Missing start node") for e in report.errors)
    assert any(e.startswith("Missing end node") for e in report.errors)
    assert any('"A"' in e and "not a workflow type" in e for e in report.errors)


def test_decision_node_rules(workflow_store):
    """Validate that a decision may branch but needs one input."""
    store, nodes = workflow_store
    decide = store.add_node(name="Decide", category="decision")
    store.add_edge(nodes["work"].id, decide.id, name="w-d", relationship="next")
    store.add_edge(decide.id, nodes["end"].id, name="d-e", relationship="next")
    validator = WorkflowValidator(store)

    report = validator.validate_workflow_structure(validator.find_workflow_chain(decide.id))

    # Work now has two outputs and End two inputs; the decision itself is fine
    assert not any('"Decide"' in e for e in report.errors)
    assert any('"Work"' in e for e in report.errors)
    assert any('"end"' in e for e in report.errors)


def test_loop_and_disconnected_warnings(workflow_store):
    """
    Validate soft warnings.

    Verifies:
    - An end -> start "next" edge warns about the loop
    - Another "next" chain is reported as disconnected with its reason
    """
    store, nodes = workflow_store
    store.add_edge(nodes["end"].id, nodes["start"].id, name="loop", relationship="next")
    x = store.add_node(name="X", category="task")
    y = store.add_node(name="Y", category="task")
    store.add_edge(x.id, y.id, name="x-y", relationship="next")
    validator = WorkflowValidator(store)

    report = validator.validate_workflow_structure(validator.find_workflow_chain(nodes["start"].id))

    assert any("loop" in w for w in report.warnings)
    assert len(report.disconnected_chains) == 1
    chain = report.disconnected_chains[0]
    assert [n.id for n in chain.nodes] == [x.id, y.id]
    assert chain.reason == "Missing both start and end nodes"
    assert not chain.has_start and not chain.has_end


def test_validation_does_not_mutate(workflow_store):
    """Validate that validation leaves the graph unchanged."""
    store, nodes = workflow_store
    before = store.to_json()["graph"]["nodes"]
    validator = WorkflowValidator(store)

    validator.validate_workflow_structure(store.nodes)

    assert store.to_json()["graph"]["nodes"] == before


# =============================================================================
# NAVIGATOR TESTS
# =============================================================================

def test_navigator_steps_through_chain(workflow_store):
    """
    Validate navigation over a valid chain.

    Verifies:
    - open() places the cursor and returns a clean report
    - next_steps / previous_steps follow "next" edges with labels
    - navigate_to / back maintain the history
    - position() is 1-based within the chain
    """
    store, nodes = workflow_store
    navigator = WorkflowNavigator(store)

    report = navigator.open(nodes["start"].id)

    assert report.is_valid
    assert navigator.is_open
    steps = navigator.next_steps()
    assert [(s.node.name, s.label) for s in steps] == [("Work", "s-w")]

    assert navigator.navigate_to(steps[0].node.id)
    assert navigator.current_id == nodes["work"].id
    assert [s.node.name for s in navigator.previous_steps()] == ["start"]
    assert navigator.position() == 2

    assert navigator.back() == nodes["start"].id
    assert navigator.back() is None

    navigator.close()
    assert not navigator.is_open
    assert navigator.navigate_to(nodes["end"].id) is False


def test_navigator_refuses_invalid_chain(workflow_store):
    """
    Validate that open() refuses broken or unrelated nodes.

    Verifies:
    - Unknown node returns None
    - A node without "next" edges returns None
    - A chain with errors returns the report but stays closed
    """
    store, nodes = workflow_store
    navigator = WorkflowNavigator(store)
    loner = store.add_node(name="Loner")

    assert navigator.open("missing") is None
    assert navigator.open(loner.id) is None

    store.remove_edge(derive_id("w-e"))
    report = navigator.open(nodes["start"].id)

    assert report is not None and report.errors
    assert not navigator.is_open


def test_navigator_connections_exclude_next(workflow_store):
    """Validate that connections() lists only non-"next" edges."""
    store, nodes = workflow_store
    doc = store.add_node(name="Spec Doc")
    store.add_edge(doc.id, nodes["work"].id, name="input", relationship="feeds")
    navigator = WorkflowNavigator(store)
    navigator.open(nodes["work"].id)

    inputs, outputs = navigator.connections()

    assert [e.name for e in inputs] == ["input"]
    assert outputs == []


@pytest.mark.parametrize(
    "fields, expected",
    [
        ({"name": "go", "description": "proceed"}, "go"),
        ({"description": "proceed", "relationship": "next"}, "proceed"),
        ({"relationship": "next", "custom": {"label": "Next"}}, "next"),
        ({"relationship": "", "custom": {"label": "Next"}}, "Next"),
        ({"relationship": ""}, "e1"),
    ],
)
def test_edge_label_priority(fields, expected):
    """Validate the label priority: name, description, relationship, label, id."""
    edge = EdgeData(id="e1", source="a", target="b", **fields)

    assert WorkflowNavigator.edge_label(edge) == expected
