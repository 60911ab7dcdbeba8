from skill_graph.schemas import PrereqEdge, SkillNode
from skill_graph.validation import check_invariants, drop_question_refs, prune_dangling_edges, validate_paths

from conftest import edge_keys, make_graph


def test_validate_paths_filters_and_drops_empty():
    questions = {"Q1": ["a", "gone", "b"], "Q2": ["gone"], "Q3": ["b"]}
    out, pruned = validate_paths(questions, {"a", "b"})
    assert out == {"Q1": ["a", "b"], "Q3": ["b"]}
    assert pruned == {"Q1": ["gone"], "Q2": ["gone"]}


def test_drop_question_refs_only_touches_dropped_questions():
    nodes = [SkillNode(id="a", name="a", required_by=["Q1", "Q2"]), SkillNode(id="b", name="b", required_by=["Q3"])]
    drop_question_refs(nodes, {"Q2"})
    assert [n.required_by for n in nodes] == [["Q1"], ["Q3"]]


def test_prune_dangling_edges():
    edges = [PrereqEdge(source="a", target="b"), PrereqEdge(source="a", target="zz")]
    kept, dropped = prune_dangling_edges(edges, {"a", "b"})
    assert edge_keys(kept) == [("a", "b")]
    assert edge_keys(dropped) == [("a", "zz")]


class TestCheckInvariants:
    def test_consistent_graph_passes(self):
        g = make_graph(["a", ("b", 1), ("c", 2)], [("a", "b"), ("b", "c")], {"Q": ["a", "c"]})
        rep = check_invariants(g)
        assert rep.ok(), rep.errors
        assert rep.stats["num_nodes"] == 3
        assert rep.stats["max_level"] == 2
        assert rep.stats["is_dag"] is True

    def test_empty_graph_passes(self):
        assert check_invariants(make_graph([])).ok()

    def test_cycle_is_reported(self):
        g = make_graph(["a", "b", "c"], [("a", "b"), ("b", "c"), ("c", "a")])
        rep = check_invariants(g)
        assert any(e.startswith("Cycle detected") for e in rep.errors)
        assert rep.stats["is_dag"] is False

    def test_two_cycle_is_reported(self):
        g = make_graph(["a", "b"], [("a", "b"), ("b", "a")])
        assert any("2-cycle" in e for e in check_invariants(g).errors)

    def test_wrong_level_is_reported(self):
        g = make_graph(["a", "b"], [("a", "b")])
        assert check_invariants(g).errors == ["Node b: level 0 but expected 1"]

    def test_redundant_edge_is_reported(self):
        g = make_graph(["a", ("b", 1), ("c", 2)], [("a", "b"), ("b", "c"), ("a", "c")])
        errors = check_invariants(g).errors
        assert errors == ["Redundant edge a->c (implied by a longer path)"]

    def test_dangling_references_are_reported(self):
        g = make_graph(["a"], [("a", "zz")], {"Q": ["a", "ghost"], "Empty": []})
        errors = check_invariants(g).errors
        assert "Dangling edge a->zz" in errors
        assert any("unknown skill 'ghost'" in e for e in errors)
        assert any("empty skill list" in e for e in errors)

    def test_duplicate_ids_and_self_loops_are_reported(self):
        g = make_graph(["a"], [("a", "a")])
        g.nodes.append(SkillNode(id="a", name="Again"))
        errors = check_invariants(g).errors
        assert any("Duplicate node id 'a'" in e for e in errors)
        assert any("Self-loop" in e for e in errors)

    def test_isolated_nodes_only_warn(self):
        g = make_graph(["a", ("b", 1), "c"], [("a", "b")])
        rep = check_invariants(g)
        assert rep.ok()
        assert rep.warnings
