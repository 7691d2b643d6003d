"""
Unit tests for core/explode.py

Tests the property-to-structure rewrite:
- Category and subCat tags become shared meta-nodes
- Node and edge custom properties become key/value nodes
- Original entities are kept, stripped of what was exploded
- The result loads cleanly into a store
"""
import pytest

from core.explode import explode_graph, explode_in_place
from core.graph_store import GraphLimitError, GraphStore
from core.schemas import derive_id
from infrastructure.config import StoreConfig


def _links(document):
    """{(source name, relationship, target name)} of the document's edges."""
    names = {n["id"]: n["name"] for n in document["graph"]["nodes"]}
    return {
        (names.get(e["source"]), e["relationship"], names.get(e["target"]))
        for e in document["graph"]["edges"]
    }


def test_explode_tags(fresh_store):
    """
    Validate category and subCat explosion.

    Verifies:
    - One meta-node per distinct tag, shared between nodes
    - Tag values link to the cat / sub-cat roots
    - sub-cat links to cat
    - The original node keeps its id but loses its tags
    """
    a = fresh_store.add_node(name="A", category="tool", subCat="hand")
    fresh_store.add_node(name="B", category="tool")

    document = explode_graph(fresh_store)

    nodes = {n["name"]: n for n in document["graph"]["nodes"]}
    assert list(nodes) == ["A", "B", "cat", "tool", "sub-cat", "hand"]
    assert nodes["A"]["id"] == a.id
    assert nodes["A"]["category"] == ""
    assert nodes["A"]["subCat"] == ""
    assert nodes["tool"]["id"] == derive_id("tool")
    assert _links(document) == {
        ("tool", "is a", "cat"),
        ("A", "is", "tool"),
        ("B", "is", "tool"),
        ("hand", "is a", "sub-cat"),
        ("A", "is", "hand"),
        ("sub-cat", "is", "cat"),
    }


def test_explode_node_properties(fresh_store):
    """
    Validate custom property explosion on nodes.

    Verifies:
    - node -has-> value -is a-> key -is a-> Properties
    - Bookkeeping keys and blank values are skipped
    - The original node loses its custom properties
    """
    fresh_store.add_node(name="A", team="red", _hidden="x", merged_old_team="blue", note="  ")

    document = explode_graph(fresh_store)

    node_a = document["graph"]["nodes"][0]
    assert "team" not in node_a
    assert _links(document) == {
        ("A", "has", "red"),
        ("red", "is a", "team"),
        ("team", "is a", "Properties"),
    }


def test_explode_edge_properties(sample_store):
    """
    Validate custom property explosion on edges.

    Verifies:
    - Both ends link to the value with an undirected "is related to"
    - value -is-> key -is-> Properties
    - The original edge is kept without its custom properties
    """
    store, nodes = sample_store
    for node in store.nodes:
        store.update_node(node.id, category="", team=None)
    store.update_edge(derive_id("ab"), since="2020")

    document = explode_graph(store)

    edges = {e["name"]: e for e in document["graph"]["edges"]}
    assert "since" not in edges["ab"]
    assert edges["ab"]["source"] == nodes["alpha"].id
    related = edges["Alpha is related to 2020"]
    assert related["directed"] is False
    assert _links(document) >= {
        ("Alpha", "is related to", "2020"),
        ("Beta", "is related to", "2020"),
        ("2020", "is", "since"),
        ("since", "is", "Properties"),
    }


def test_explode_reuses_existing_node_names(fresh_store):
    """Validate that a value naming an existing node links to that node."""
    paris = fresh_store.add_node(name="Paris")
    fresh_store.add_node(name="Trip", destination="paris")

    document = explode_graph(fresh_store)

    names = [n["name"] for n in document["graph"]["nodes"]]
    assert names.count("Paris") == 1
    assert "paris" not in names
    has_edge = next(e for e in document["graph"]["edges"] if e["relationship"] == "has")
    assert has_edge["target"] == paris.id


def test_explode_leaves_store_unchanged(sample_store):
    store, _ = sample_store
    before = store.to_json()

    explode_graph(store)

    assert store.to_json()["graph"]["nodes"] == before["graph"]["nodes"]
    assert store.edge_count == 3


def test_explode_in_place_loads_cleanly(sample_store):
    """
    Validate that the exploded document round-trips through from_json.

    Verifies:
    - Nothing is dropped on load
    - Meta-nodes are reachable by name
    - The metadata description records the explosion
    """
    store, _ = sample_store

    report = explode_in_place(store)

    assert report.is_clean
    assert store.get_node_by_name("person") is not None
    assert store.get_node_by_name("Properties") is not None
    assert "[Exploded on" in store.metadata.description


def test_explode_in_place_respects_limits():
    """Validate that an explosion past the node limit leaves the graph unchanged."""
    store = GraphStore(config=StoreConfig(max_nodes=2))
    store.add_node(name="A", category="x")
    store.add_node(name="B", category="y")

    with pytest.raises(GraphLimitError):
        explode_in_place(store)

    assert [n.name for n in store.nodes] == ["A", "B"]
