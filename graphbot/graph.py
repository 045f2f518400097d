"""Attributed graphs with nested subgraphs, and their JSON source format.

The on-disk layout follows the networkx node-link format, extended with a
``subgraphs`` list per graph:

    {"graphs": [{"name": "...", "nodes": [...], "links": [...], "subgraphs": [...]}]}
"""
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

import networkx as nx


class GraphLoadError(ValueError):
    """Raised when a graph source is empty or malformed."""


@dataclass(frozen=True)
class Node:
    id: str
    label: str = ""
    attrs: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Edge:
    source: str
    target: str
    attrs: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Graph:
    name: str
    nodes: tuple[Node, ...] = ()
    edges: tuple[Edge, ...] = ()
    subgraphs: tuple["Graph", ...] = ()

    def all_nodes(self) -> list[Node]:
        """Nodes of this graph and its subgraphs, depth first."""
        nodes = list(self.nodes)
        for subgraph in self.subgraphs:
            nodes.extend(subgraph.all_nodes())
        return nodes

    def all_edges(self) -> list[Edge]:
        """Edges in id order: this graph's edges first, then the subgraphs'."""
        edges = list(self.edges)
        for subgraph in self.subgraphs:
            edges.extend(subgraph.all_edges())
        return edges

    def node_ids(self) -> list[str]:
        return [node.id for node in self.all_nodes()]

    def get_node(self, node_id: str) -> Node:
        for node in self.all_nodes():
            if node.id == node_id:
                return node
        raise KeyError(node_id)

    def get_subgraph(self, name: str) -> "Graph | None":
        for subgraph in self.subgraphs:
            if subgraph.name == name:
                return subgraph
        return None

    def iter_graphs(self) -> Iterator["Graph"]:
        yield self
        for subgraph in self.subgraphs:
            yield from subgraph.iter_graphs()

    def to_networkx(self) -> nx.MultiDiGraph:
        """Flattened copy, subgraph structure is dropped."""
        nx_graph = nx.MultiDiGraph(name=self.name)
        for node in self.all_nodes():
            nx_graph.add_node(node.id, label=node.label, **node.attrs)
        for edge in self.all_edges():
            nx_graph.add_edge(edge.source, edge.target, **edge.attrs)
        return nx_graph


def check_graph(graph: Graph) -> None:
    """Raise GraphLoadError if ids repeat or an edge endpoint is missing."""
    ids = graph.node_ids()
    seen = set()
    for node_id in ids:
        if node_id in seen:
            raise GraphLoadError(f"graph '{graph.name}': duplicate node id '{node_id}'")
        seen.add(node_id)

    # an edge may only reference nodes of its own graph or of nested subgraphs
    for sub in graph.iter_graphs():
        scope = set(sub.node_ids())
        for edge in sub.edges:
            for end in (edge.source, edge.target):
                if end not in scope:
                    raise GraphLoadError(
                        f"graph '{sub.name}': edge {edge.source} -> {edge.target} "
                        f"references unknown node '{end}'"
                    )


def _level_to_networkx(data: dict[str, Any]) -> nx.MultiDiGraph:
    """One level of a graph source, subgraphs left out, as a networkx graph."""
    edges_key = "links" if "links" in data else "edges"
    nodes = data.get("nodes", [])
    links = data.get(edges_key, [])
    if not isinstance(nodes, list) or not isinstance(links, list):
        raise GraphLoadError(f"graph '{data.get('name', '')}': nodes and {edges_key} must be lists")

    ids = []
    for entry in nodes:
        if not isinstance(entry, dict) or not isinstance(entry.get("id"), (str, int)):
            raise GraphLoadError(f"node without a string or integer id: {entry!r}")
        ids.append(entry["id"])
    if len(set(ids)) != len(ids):
        raise GraphLoadError(f"graph '{data.get('name', '')}': duplicate node id in {ids}")
    for entry in links:
        if not isinstance(entry, dict) or "source" not in entry or "target" not in entry:
            raise GraphLoadError(f"edge needs a source and a target: {entry!r}")

    level = {
        "directed": True,
        "multigraph": True,
        "graph": {"name": data.get("name", "")},
        "nodes": nodes,
        # networkx iterates edges by source node, the key keeps the file order
        edges_key: [{**entry, "key": k} for k, entry in enumerate(links)],
    }
    return nx.node_link_graph(level, directed=True, multigraph=True, edges=edges_key)


def graph_from_dict(data: dict[str, Any]) -> Graph:
    if not isinstance(data, dict):
        raise GraphLoadError(f"expected a graph object, got {type(data).__name__}")
    nx_graph = _level_to_networkx(data)

    # edges may add placeholder nodes for endpoints declared in other graphs
    declared = {entry["id"] for entry in data.get("nodes", [])}
    nodes = []
    for node_id, attrs in nx_graph.nodes(data=True):
        if node_id not in declared:
            continue
        attrs = dict(attrs)
        label = attrs.pop("label", "")
        nodes.append(Node(str(node_id), str(label), attrs))

    edges = [
        Edge(str(source), str(target), dict(attrs))
        for source, target, _, attrs in sorted(nx_graph.edges(keys=True, data=True), key=lambda e: e[2])
    ]

    subgraphs = tuple(graph_from_dict(sub) for sub in data.get("subgraphs", []))
    return Graph(str(data.get("name", "")), tuple(nodes), tuple(edges), subgraphs)


def graph_to_dict(graph: Graph) -> dict[str, Any]:
    return {
        "name": graph.name,
        "nodes": [
            {"id": node.id, **({"label": node.label} if node.label else {}), **node.attrs}
            for node in graph.nodes
        ],
        "links": [
            {"source": edge.source, "target": edge.target, **edge.attrs}
            for edge in graph.edges
        ],
        "subgraphs": [graph_to_dict(sub) for sub in graph.subgraphs],
    }


def parse_graphs(text: str) -> list[Graph]:
    """Parse a graph source; an empty or malformed source is an error."""
    if not text.strip():
        raise GraphLoadError("graph source is empty")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise GraphLoadError(f"graph source is not valid JSON: {e}") from e

    if isinstance(data, dict):
        entries = data["graphs"] if "graphs" in data else [data]
    else:
        entries = data
    if not isinstance(entries, list):
        raise GraphLoadError("'graphs' must be a list")

    graphs = []
    for entry in entries:
        graph = graph_from_dict(entry)
        if not graph.all_nodes():
            raise GraphLoadError(f"graph '{graph.name}' has no nodes")
        check_graph(graph)
        graphs.append(graph)

    if not graphs:
        raise GraphLoadError("graph source does not contain any graphs")
    return graphs


def load_graphs(path: str | Path) -> list[Graph]:
    path = Path(path)
    try:
        text = path.read_text()
    except OSError as e:
        raise GraphLoadError(f"cannot read graph file {path}: {e}") from e
    return parse_graphs(text)


def save_graph_as_json(graph: Graph, path: str | Path) -> None:
    with open(path, "w") as f:
        json.dump({"graphs": [graph_to_dict(graph)]}, f, indent=2)
