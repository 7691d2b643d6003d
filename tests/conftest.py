"""
Pytest configuration and shared fixtures for the knowledge graph test suite.
"""
import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


@pytest.fixture
def fresh_store():
    """Provide an empty GraphStore."""
    from core.graph_store import GraphStore
    return GraphStore()


@pytest.fixture
def journal():
    """Provide a MutationLogger."""
    from infrastructure.logger import MutationLogger
    return MutationLogger()


@pytest.fixture
def sample_store(fresh_store):
    """
    Provide a store with a small mixed graph:

        alpha --knows(2)--> beta --knows(3)--> gamma
        alpha --------------knows(10)--------> gamma
        delta (no edges)
    """
    alpha = fresh_store.add_node(name="Alpha", category="person", team="red")
    beta = fresh_store.add_node(name="Beta", category="person", team="red")
    gamma = fresh_store.add_node(name="Gamma", category="place", team="blue")
    delta = fresh_store.add_node(name="Delta", category="place")

    fresh_store.add_edge(alpha.id, beta.id, name="ab", relationship="knows", weight=2)
    fresh_store.add_edge(beta.id, gamma.id, name="bg", relationship="knows", weight=3)
    fresh_store.add_edge(alpha.id, gamma.id, name="ag", relationship="knows", weight=10)

    return fresh_store, {"alpha": alpha, "beta": beta, "gamma": gamma, "delta": delta}


@pytest.fixture
def workflow_store(fresh_store):
    """
    Provide a store holding a valid workflow chain:

        start --next--> work --next--> end
    """
    start = fresh_store.add_node(name="start", category="start-end")
    work = fresh_store.add_node(name="Work", category="task")
    end = fresh_store.add_node(name="end", category="start-end")

    fresh_store.add_edge(start.id, work.id, name="s-w", relationship="next")
    fresh_store.add_edge(work.id, end.id, name="w-e", relationship="next")

    return fresh_store, {"start": start, "work": work, "end": end}
