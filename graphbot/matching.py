from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Iterator, Sequence

from graphbot.graph import Graph
from graphbot.rules import edge_matches, node_matches


@dataclass(frozen=True)
class GraphMapping:
    """One match: target node id per pattern node, target edge id per pattern edge."""
    node_ids: tuple[str, ...]
    edge_ids: tuple[int, ...]


def _injective_assignments(
    size: int,
    options: Callable[[int, list[int]], Sequence[int]],
) -> Iterator[tuple[int, ...]]:
    """Yield injective assignments of ``size`` slots in lexicographic order.

    ``options(depth, partial)`` lists the candidates for slot ``depth`` given the
    choices made for the earlier slots. Backtracking uses an explicit stack of
    candidate iterators, one per slot.
    """
    if size == 0:
        yield ()
        return
    partial: list[int] = []
    stack = [iter(options(0, partial))]
    while stack:
        depth = len(stack) - 1
        del partial[depth:]
        for choice in stack[-1]:
            if choice not in partial:
                break
        else:
            stack.pop()
            continue
        partial.append(choice)
        if len(partial) == size:
            yield tuple(partial)
        else:
            stack.append(iter(options(depth + 1, partial)))


def find_matches(pattern: Graph, target: Graph) -> list[GraphMapping]:
    """All matches of ``pattern`` in ``target``, ordered by target node order."""
    p_nodes, p_edges = pattern.all_nodes(), pattern.all_edges()
    t_nodes, t_edges = target.all_nodes(), target.all_edges()
    if not p_nodes:
        return []

    p_index = {node.id: i for i, node in enumerate(p_nodes)}
    t_index = {node.id: j for j, node in enumerate(t_nodes)}

    candidates = [
        [j for j, t_node in enumerate(t_nodes) if node_matches(p_node, t_node)]
        for p_node in p_nodes
    ]
    edges_between = defaultdict(list)
    for k, edge in enumerate(t_edges):
        edges_between[t_index[edge.source], t_index[edge.target]].append(k)

    # a pattern edge is checked once both of its endpoints are assigned
    edges_closed_at = [[] for _ in p_nodes]
    endpoints = []
    for e, edge in enumerate(p_edges):
        s, t = p_index[edge.source], p_index[edge.target]
        endpoints.append((s, t))
        edges_closed_at[max(s, t)].append(e)

    def compatible_edges(e: int, js: int, jt: int) -> list[int]:
        return [k for k in edges_between[js, jt] if edge_matches(p_edges[e], t_edges[k])]

    def node_options(depth: int, partial: list[int]) -> list[int]:
        options = []
        for j in candidates[depth]:
            assigned = partial[:depth] + [j]
            if all(
                compatible_edges(e, assigned[endpoints[e][0]], assigned[endpoints[e][1]])
                for e in edges_closed_at[depth]
            ):
                options.append(j)
        return options

    matches = []
    for assignment in _injective_assignments(len(p_nodes), node_options):
        edge_options = [
            compatible_edges(e, assignment[s], assignment[t])
            for e, (s, t) in enumerate(endpoints)
        ]
        edge_ids = next(
            _injective_assignments(len(p_edges), lambda depth, partial: edge_options[depth]),
            None,
        )
        # parallel pattern edges may not fit into the target edges
        if edge_ids is None:
            continue
        matches.append(GraphMapping(tuple(t_nodes[j].id for j in assignment), edge_ids))
    return matches
