"""Graph grammar rules.

A rule graph holds a pattern subgraph ``L`` and a replacement subgraph ``R``.
Top-level links from an ``L`` node to an ``R`` node say where the edges that
cross the boundary of a match are reconnected:

    role "in"   edges entering the L node now enter the R node
    role "out"  edges leaving the L node now leave the R node
    role "both" (default) both of the above
"""
from dataclasses import dataclass, field
from typing import Any

from graphbot.graph import Edge, Graph, Node

REQUIRE_PREFIX = "require_"
ANY_VALUE = "*"
ROLES = ("in", "out", "both")


class RuleError(ValueError):
    """Raised for malformed rules, including boundary edges a rule cannot place."""


@dataclass(frozen=True)
class Rule:
    name: str
    lhs: Graph
    rhs: Graph
    in_map: dict[str, str] = field(default_factory=dict)
    out_map: dict[str, str] = field(default_factory=dict)


def constraints(attrs: dict[str, Any]) -> dict[str, Any]:
    """The ``require_*`` entries of a pattern element, prefix stripped."""
    return {
        key[len(REQUIRE_PREFIX):]: value
        for key, value in attrs.items()
        if key.startswith(REQUIRE_PREFIX)
    }


def _value_matches(required: Any, actual: Any) -> bool:
    if actual is None:
        return False
    if required == ANY_VALUE:
        return True
    return required == actual


def node_matches(pattern: Node, target: Node) -> bool:
    for name, required in constraints(pattern.attrs).items():
        actual = target.label if name == "label" else target.attrs.get(name)
        if name == "label" and actual == "":
            actual = None
        if not _value_matches(required, actual):
            return False
    return True


def edge_matches(pattern: Edge, target: Edge) -> bool:
    for name, required in constraints(pattern.attrs).items():
        if not _value_matches(required, target.attrs.get(name)):
            return False
    return True


def create_rule_from_graph(graph: Graph) -> Rule:
    lhs_part = graph.get_subgraph("L")
    rhs_part = graph.get_subgraph("R")
    if lhs_part is None or rhs_part is None:
        raise RuleError(f"rule '{graph.name}' needs an 'L' and an 'R' subgraph")
    if graph.nodes:
        raise RuleError(f"rule '{graph.name}': nodes must live in 'L' or 'R'")

    lhs = Graph(graph.name + "/L", tuple(lhs_part.all_nodes()), tuple(lhs_part.all_edges()))
    rhs = Graph(graph.name + "/R", tuple(rhs_part.all_nodes()), tuple(rhs_part.all_edges()))
    if not lhs.nodes:
        raise RuleError(f"rule '{graph.name}': empty pattern")

    lhs_ids = set(lhs.node_ids())
    rhs_ids = set(rhs.node_ids())
    in_map, out_map = {}, {}
    for edge in graph.edges:
        if edge.source not in lhs_ids or edge.target not in rhs_ids:
            raise RuleError(
                f"rule '{graph.name}': link {edge.source} -> {edge.target} "
                "must go from an L node to an R node"
            )
        role = edge.attrs.get("role", "both")
        if role not in ROLES:
            raise RuleError(f"rule '{graph.name}': unknown role '{role}'")
        if role in ("in", "both"):
            if edge.source in in_map:
                raise RuleError(f"rule '{graph.name}': '{edge.source}' has two 'in' targets")
            in_map[edge.source] = edge.target
        if role in ("out", "both"):
            if edge.source in out_map:
                raise RuleError(f"rule '{graph.name}': '{edge.source}' has two 'out' targets")
            out_map[edge.source] = edge.target

    return Rule(graph.name, lhs, rhs, in_map, out_map)
