from skill_graph.accumulate import accumulate
from skill_graph.schemas import PrereqEdge, SkillGraph, SkillNode

from conftest import edge_keys, make_graph


def test_new_nodes_are_inserted_in_arrival_order():
    out = accumulate(make_graph(["a", "b"]), make_graph(["c", "a"]))
    assert [n.id for n in out.nodes] == ["a", "b", "c"]


def test_existing_node_is_kept_but_questions_are_unioned():
    g = SkillGraph(nodes=[SkillNode(id="a", name="Original", required_by=["Q1"])])
    f = SkillGraph(nodes=[SkillNode(id="a", name="Renamed", required_by=["Q2", "Q1"])])
    out = accumulate(g, f)
    assert len(out.nodes) == 1
    assert out.nodes[0].name == "Original"
    assert out.nodes[0].required_by == ["Q1", "Q2"]


def test_duplicate_and_reverse_edges_are_discarded():
    g = make_graph(["a", "b"], [("a", "b")])
    f = make_graph(["a", "b"], [("a", "b"), ("b", "a")])
    assert edge_keys(accumulate(g, f)) == [("a", "b")]


def test_first_occurrence_wins_for_reverse_pair_within_fragment():
    f = make_graph(["a", "b"], [("b", "a"), ("a", "b")])
    assert edge_keys(accumulate(SkillGraph(), f)) == [("b", "a")]


def test_self_loops_rejected_by_default():
    f = make_graph(["a"], [("a", "a")])
    assert accumulate(SkillGraph(), f).edges == []
    assert edge_keys(accumulate(SkillGraph(), f, reject_self_loops=False)) == [("a", "a")]


def test_question_associations_are_unioned():
    g = make_graph(["a", "b"], questions={"Q": ["a"]})
    f = make_graph(["b", "c"], questions={"Q": ["b", "a"], "R": ["c"]})
    out = accumulate(g, f)
    assert out.questions == {"Q": ["a", "b"], "R": ["c"]}


def test_inputs_are_not_mutated():
    g = SkillGraph(
        nodes=[SkillNode(id="a", name="A", required_by=["Q1"])],
        edges=[PrereqEdge(source="a", target="b")],
    )
    f = SkillGraph(nodes=[SkillNode(id="a", name="A", required_by=["Q2"]), SkillNode(id="b", name="B")])
    g_before = g.model_copy(deep=True)
    f_before = f.model_copy(deep=True)

    out = accumulate(g, f)
    out.nodes[0].required_by.append("Q3")

    assert g == g_before
    assert f == f_before


def test_empty_fragment_is_identity():
    g = make_graph(["a", ("b", 1)], [("a", "b")], {"Q": ["a"]})
    assert accumulate(g, SkillGraph()) == g
