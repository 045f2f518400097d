from typing import Iterable, Sequence

from graphbot.graph import Graph, Node
from graphbot.matching import find_matches
from graphbot.rewrite import apply_rule
from graphbot.rules import Rule, create_rule_from_graph


def make_start_graph() -> Graph:
    return Graph("robot", (Node("robot", "robot"),))


def create_rules(rule_graphs: Iterable[Graph]) -> list[Rule]:
    return [create_rule_from_graph(graph) for graph in rule_graphs]


def derive_graph(
    rules: Sequence[Rule],
    rule_sequence: Iterable[int],
    start: Graph | None = None,
) -> Graph:
    """Apply the rules in order, each to its first match.

    Indices outside the rule set and rules without a match are skipped, so
    random rule sequences always produce some graph.
    """
    graph = make_start_graph() if start is None else start
    for rule_idx in rule_sequence:
        if not 0 <= rule_idx < len(rules):
            continue
        rule = rules[rule_idx]
        matches = find_matches(rule.lhs, graph)
        if matches:
            graph = apply_rule(rule, graph, matches[0])
    return graph
