import pytest

from graphbot.derivation import derive_graph
from graphbot.graph import Edge, Graph, Node, check_graph, load_graphs, save_graph_as_json
from graphbot.matching import GraphMapping, find_matches
from graphbot.rewrite import apply_rule
from graphbot.rules import Rule, RuleError


def relabel_rule():
    """leg -> claw, keeping every connection."""
    lhs = Graph("L", (Node("x", attrs={"require_label": "leg"}),))
    rhs = Graph("R", (Node("claw", "claw", {"shape": "box"}),))
    return Rule("claw", lhs, rhs, {"x": "claw"}, {"x": "claw"})


def test_first_match_changes_only_the_selected_node():
    target = Graph("robot", (Node("body", "body"), Node("a", "leg"), Node("b", "leg")),
                   (Edge("body", "a"), Edge("body", "b")))
    rule = relabel_rule()
    matches = find_matches(rule.lhs, target)
    assert [m.node_ids for m in matches] == [("a",), ("b",)]

    result = apply_rule(rule, target, matches[0])
    assert result.node_ids() == ["body", "b", "claw"]
    assert result.get_node("b") == target.get_node("b")
    assert result.get_node("claw").attrs == {"shape": "box"}
    assert [(e.source, e.target) for e in result.edges] == [("body", "claw"), ("body", "b")]
    check_graph(result)


def test_input_graph_is_left_untouched():
    target = Graph("robot", (Node("body", "body"), Node("a", "leg")), (Edge("body", "a", {"type": "hinge"}),))
    before = repr(target)
    apply_rule(relabel_rule(), target, find_matches(relabel_rule().lhs, target)[0])
    assert repr(target) == before


def test_boundary_edges_keep_their_attributes():
    target = Graph("robot", (Node("body", "body"), Node("a", "leg")), (Edge("body", "a", {"type": "hinge"}),))
    result = apply_rule(relabel_rule(), target, GraphMapping(("a",), ()))
    assert result.edges == (Edge("body", "claw", {"type": "hinge"}),)


def test_in_and_out_go_to_different_nodes(walker_rules):
    append_body = walker_rules[1]
    target = Graph("robot", (Node("base", "body"), Node("tail", "tail"), Node("end", "end")),
                   (Edge("base", "tail", {"type": "hinge"}), Edge("tail", "end")))
    result = apply_rule(append_body, target, find_matches(append_body.lhs, target)[0])
    assert result.node_ids() == ["base", "end", "segment", "next_tail"]
    assert [(e.source, e.target) for e in result.edges] == [
        ("base", "segment"), ("next_tail", "end"), ("segment", "next_tail"),
    ]
    check_graph(result)


def test_new_ids_do_not_clash():
    target = Graph("robot", (Node("claw", "body"), Node("a", "leg")), (Edge("claw", "a"),))
    result = apply_rule(relabel_rule(), target, GraphMapping(("a",), ()))
    assert result.node_ids() == ["claw", "claw_1"]
    assert result.edges == (Edge("claw", "claw_1"),)


def test_matched_edges_are_replaced():
    lhs = Graph("L", (Node("p", attrs={"require_label": "body"}), Node("q", attrs={"require_label": "leg"})),
                (Edge("p", "q"),))
    rhs = Graph("R", (Node("trunk", "body"), Node("foot", "foot")), (Edge("trunk", "foot", {"type": "fixed"}),))
    rule = Rule("foot", lhs, rhs, {"p": "trunk"}, {"p": "trunk"})
    target = Graph("robot", (Node("root", "root"), Node("b", "body"), Node("l", "leg")),
                   (Edge("root", "b"), Edge("b", "l")))
    (mapping,) = find_matches(rule.lhs, target)
    assert mapping == GraphMapping(("b", "l"), (1,))
    result = apply_rule(rule, target, mapping)
    assert [(e.source, e.target) for e in result.edges] == [("root", "trunk"), ("trunk", "foot")]


def test_unplaceable_boundary_edge_fails_fast():
    # end_tail only says where incoming edges go
    target = Graph("robot", (Node("tail", "tail"), Node("after", "body")), (Edge("tail", "after"),))
    rule = Rule(
        "end_tail",
        Graph("L", (Node("t", attrs={"require_label": "tail"}),)),
        Graph("R", (Node("tip", "tail_end"),)),
        {"t": "tip"},
        {},
    )
    with pytest.raises(RuleError, match="out"):
        apply_rule(rule, target, GraphMapping(("tail",), ()))


def test_subgraph_placement_is_kept():
    target = Graph("robot", (Node("body", "body"),), (Edge("body", "a"),),
                   (Graph("limbs", (Node("a", "leg"), Node("b", "leg"))),))
    result = apply_rule(relabel_rule(), target, GraphMapping(("b",), ()))
    assert result.node_ids() == ["body", "a", "claw"]
    assert result.get_subgraph("limbs").node_ids() == ["a", "claw"]
    assert result.edges == (Edge("body", "a"),)
    check_graph(result)


def test_replacement_joins_the_subgraph_of_the_match(walker_rules, tmp_path):
    start = Graph("robot", (), (), (Graph("s", (Node("b", "body"), Node("t", "tail")), (Edge("b", "t"),)),))
    result = derive_graph(walker_rules, [3], start=start)

    body = result.get_subgraph("s")
    assert body.node_ids() == ["b", "tail_end"]
    assert [(e.source, e.target) for e in body.edges] == [("b", "tail_end")]
    assert result.nodes == ()
    check_graph(result)

    path = tmp_path / "robot.json"
    save_graph_as_json(result, path)
    assert load_graphs(path) == [result]


def test_boundary_edge_moves_up_when_match_spans_subgraphs():
    lhs = Graph("L", (Node("p", attrs={"require_label": "body"}), Node("q", attrs={"require_label": "leg"})),
                (Edge("p", "q"),))
    rhs = Graph("R", (Node("trunk", "body"), Node("foot", "foot")), (Edge("trunk", "foot"),))
    rule = Rule("foot", lhs, rhs, {"p": "trunk"}, {"p": "trunk"})
    target = Graph(
        "robot", (), (Edge("b", "l"),),
        (Graph("s1", (Node("b", "body"), Node("x", "body")), (Edge("x", "b", {"type": "hinge"}),)),
         Graph("s2", (Node("l", "leg"),))),
    )
    (mapping,) = find_matches(rule.lhs, target)
    result = apply_rule(rule, target, mapping)

    assert result.node_ids() == ["trunk", "foot", "x"]
    assert result.edges == (Edge("x", "trunk", {"type": "hinge"}), Edge("trunk", "foot"))
    assert result.get_subgraph("s1").edges == ()
    assert result.get_subgraph("s2").nodes == ()
    check_graph(result)


def test_mapping_must_fit_pattern():
    target = Graph("robot", (Node("a", "leg"), Node("b", "leg")))
    with pytest.raises(ValueError):
        apply_rule(relabel_rule(), target, GraphMapping(("a", "b"), ()))
