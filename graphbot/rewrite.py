from itertools import count

from graphbot.graph import Edge, Graph, Node
from graphbot.matching import GraphMapping
from graphbot.rules import Rule, RuleError


def _fresh_ids(rule: Rule, taken: set[str]) -> dict[str, str]:
    """Ids for the replacement nodes that do not clash with the kept nodes."""
    fresh = {}
    for node in rule.rhs.all_nodes():
        new_id, n = node.id, 0
        while new_id in taken:
            n += 1
            new_id = f"{node.id}_{n}"
        taken.add(new_id)
        fresh[node.id] = new_id
    return fresh


def _home_path(graph: Graph, node_ids: set[str]) -> tuple[int, ...]:
    """Subgraph index path of the innermost graph holding all of ``node_ids``."""
    paths = []

    def visit(g: Graph, path: tuple[int, ...]) -> None:
        if any(node.id in node_ids for node in g.nodes):
            paths.append(path)
        for i, sub in enumerate(g.subgraphs):
            visit(sub, path + (i,))

    visit(graph, ())
    if not paths:
        return ()
    home = paths[0]
    for path in paths[1:]:
        n = 0
        while n < min(len(home), len(path)) and home[n] == path[n]:
            n += 1
        home = home[:n]
    return home


def apply_rule(rule: Rule, target: Graph, mapping: GraphMapping) -> Graph:
    """Replace the region selected by ``mapping`` with the rule's replacement.

    Edges crossing the boundary of the match are reconnected through the rule's
    in/out correspondence. Kept nodes and edges stay in order and in their
    subgraphs. New nodes and edges go to the end of the innermost subgraph that
    held the whole match, and so does any reconnected edge whose own subgraph
    cannot reach them.
    """
    lhs_ids = [node.id for node in rule.lhs.all_nodes()]
    if len(mapping.node_ids) != len(lhs_ids) or len(mapping.edge_ids) != len(rule.lhs.all_edges()):
        raise ValueError(f"mapping does not fit the pattern of rule '{rule.name}'")

    matched = dict(zip(mapping.node_ids, lhs_ids))
    removed_edges = set(mapping.edge_ids)
    fresh = _fresh_ids(rule, {i for i in target.node_ids() if i not in matched})
    home = _home_path(target, set(matched))

    def reconnect(edge: Edge) -> Edge:
        source, dest = edge.source, edge.target
        if source in matched:
            lhs_id = matched[source]
            if lhs_id not in rule.out_map:
                raise RuleError(
                    f"rule '{rule.name}' cannot place edge {edge.source} -> {edge.target}: "
                    f"no 'out' correspondence for pattern node '{lhs_id}'"
                )
            source = fresh[rule.out_map[lhs_id]]
        if dest in matched:
            lhs_id = matched[dest]
            if lhs_id not in rule.in_map:
                raise RuleError(
                    f"rule '{rule.name}' cannot place edge {edge.source} -> {edge.target}: "
                    f"no 'in' correspondence for pattern node '{lhs_id}'"
                )
            dest = fresh[rule.in_map[lhs_id]]
        return Edge(source, dest, dict(edge.attrs))

    new_nodes = [
        Node(fresh[node.id], node.label, dict(node.attrs)) for node in rule.rhs.all_nodes()
    ]
    new_edges = [
        Edge(fresh[edge.source], fresh[edge.target], dict(edge.attrs))
        for edge in rule.rhs.all_edges()
    ]
    lifted = []

    # edge ids follow Graph.all_edges order: own edges, then subgraphs
    edge_ids = count()

    def rebuild(graph: Graph, path: tuple[int, ...]) -> Graph:
        nodes = [node for node in graph.nodes if node.id not in matched]
        edges = []
        for edge in graph.edges:
            if next(edge_ids) in removed_edges:
                continue
            crosses = edge.source in matched or edge.target in matched
            edge = reconnect(edge)
            # the replacement is only in scope for the home graph and its ancestors
            if crosses and home[:len(path)] != path:
                lifted.append(edge)
            else:
                edges.append(edge)
        subgraphs = tuple(rebuild(sub, path + (i,)) for i, sub in enumerate(graph.subgraphs))
        if path == home:
            nodes += new_nodes
            edges += lifted + new_edges
        return Graph(graph.name, tuple(nodes), tuple(edges), subgraphs)

    return rebuild(target, ())
