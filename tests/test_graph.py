import json

import networkx as nx
import pytest

from graphbot.graph import (
    Edge,
    Graph,
    GraphLoadError,
    Node,
    check_graph,
    load_graphs,
    parse_graphs,
    save_graph_as_json,
)

from conftest import GRAMMAR_PATH


def test_load_walker_grammar():
    graphs = load_graphs(GRAMMAR_PATH)
    assert [g.name for g in graphs] == ["make_robot", "append_body", "add_legs", "end_tail"]
    lhs = graphs[0].get_subgraph("L")
    assert lhs.nodes[0].id == "robot"
    assert lhs.nodes[0].attrs == {"require_label": "robot"}


def test_parse_keeps_order_labels_and_attributes():
    text = json.dumps({
        "name": "g",
        "nodes": [{"id": "b", "label": "body", "length": 0.2}, {"id": 7}],
        "edges": [{"source": "b", "target": 7, "type": "hinge"}],
    })
    (graph,) = parse_graphs(text)
    assert graph.node_ids() == ["b", "7"]
    assert graph.nodes[0] == Node("b", "body", {"length": 0.2})
    assert graph.edges == (Edge("b", "7", {"type": "hinge"}),)


def test_edges_keep_file_order():
    # networkx would list a -> b first, grouped by source node
    text = json.dumps({
        "name": "g",
        "nodes": [{"id": "a"}, {"id": "b"}, {"id": "c"}],
        "links": [
            {"source": "c", "target": "a", "axis": [0, 1, 0]},
            {"source": "a", "target": "b", "key": 5},
            {"source": "c", "target": "b"},
        ],
    })
    (graph,) = parse_graphs(text)
    assert [(e.source, e.target) for e in graph.edges] == [("c", "a"), ("a", "b"), ("c", "b")]
    assert graph.edges[0].attrs == {"axis": [0, 1, 0]}
    assert graph.edges[1].attrs == {}


def test_attributes_match_networkx_node_link_reading():
    data = {
        "name": "g",
        "nodes": [{"id": "a", "label": "body", "rgba": [1, 0, 0, 1]}, {"id": "b"}],
        "links": [{"source": "a", "target": "b", "type": "hinge", "offset": 0.5}],
    }
    (graph,) = parse_graphs(json.dumps(data))
    reference = nx.node_link_graph(data, directed=True, multigraph=True, edges="links")
    assert dict(graph.to_networkx().nodes(data=True))["a"] == reference.nodes["a"]
    assert graph.edges[0].attrs == reference.edges["a", "b", 0]


def test_duplicate_ids_in_one_level_are_rejected():
    with pytest.raises(GraphLoadError, match="duplicate"):
        parse_graphs('{"name": "g", "nodes": [{"id": "a"}, {"id": "a"}]}')


def test_nested_subgraphs_are_flattened_depth_first():
    text = json.dumps({
        "name": "outer",
        "nodes": [{"id": "a"}],
        "links": [{"source": "a", "target": "c"}],
        "subgraphs": [
            {"name": "s1", "nodes": [{"id": "b"}], "links": [],
             "subgraphs": [{"name": "s2", "nodes": [{"id": "c"}], "links": [{"source": "c", "target": "c"}]}]},
        ],
    })
    (graph,) = parse_graphs(text)
    assert graph.node_ids() == ["a", "b", "c"]
    assert [(e.source, e.target) for e in graph.all_edges()] == [("a", "c"), ("c", "c")]
    assert [g.name for g in graph.iter_graphs()] == ["outer", "s1", "s2"]


@pytest.mark.parametrize("text", ["", "   \n", "{not json", "[]", '{"graphs": []}', '{"graphs": 3}', '{"nodes": [{"label": "x"}]}'])
def test_empty_or_malformed_source_is_fatal(text):
    with pytest.raises(GraphLoadError):
        parse_graphs(text)


def test_graph_without_nodes_is_rejected():
    with pytest.raises(GraphLoadError, match="no nodes"):
        parse_graphs('{"graphs": [{"name": "empty", "nodes": [], "links": []}]}')


def test_dangling_edge_is_rejected():
    text = json.dumps({"name": "g", "nodes": [{"id": "a"}], "links": [{"source": "a", "target": "zz"}]})
    with pytest.raises(GraphLoadError, match="zz"):
        parse_graphs(text)


def test_subgraph_edge_cannot_reach_parent_nodes():
    text = json.dumps({
        "name": "g",
        "nodes": [{"id": "a"}],
        "subgraphs": [{"name": "s", "nodes": [{"id": "b"}], "links": [{"source": "b", "target": "a"}]}],
    })
    with pytest.raises(GraphLoadError):
        parse_graphs(text)


def test_duplicate_ids_across_subgraphs_are_rejected():
    graph = Graph("g", (Node("a"),), (), (Graph("s", (Node("a"),)),))
    with pytest.raises(GraphLoadError, match="duplicate"):
        check_graph(graph)


def test_missing_file_is_a_load_error(tmp_path):
    with pytest.raises(GraphLoadError):
        load_graphs(tmp_path / "nope.json")


def test_saved_graph_loads_back(tmp_path):
    graph = Graph("robot", (Node("a", "body", {"length": 0.3}), Node("b")), (Edge("a", "b", {"type": "fixed"}),))
    path = tmp_path / "robot.json"
    save_graph_as_json(graph, path)
    assert load_graphs(path) == [graph]


def test_to_networkx_keeps_attributes():
    graph = Graph("robot", (Node("a", "body", {"length": 0.3}), Node("b")), (Edge("a", "b", {"type": "fixed"}),))
    nx_graph = graph.to_networkx()
    assert nx_graph.nodes["a"] == {"label": "body", "length": 0.3}
    assert list(nx_graph.get_edge_data("a", "b").values()) == [{"type": "fixed"}]
