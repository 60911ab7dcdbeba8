import json

import pytest

from skill_graph.config import MergeConfig
from skill_graph.session import (
    CHECKPOINT_VERSION,
    MergeSession,
    clear_checkpoint,
    format_time_remaining,
    load_checkpoint,
    save_checkpoint,
)

from conftest import edge_keys, make_graph, raw_edge, raw_fragment, raw_node


class FakeClock:
    def __init__(self, t=1000.0):
        self.t = t

    def __call__(self):
        return self.t


def frag_ab():
    return raw_fragment(
        nodes=[raw_node("a", "Variables"), raw_node("b", "Loops")],
        edges=[raw_edge("a", "b")],
        questions={"Q1": ["a", "b"]},
    )


def frag_c():
    return raw_fragment(
        nodes=[raw_node("c", "Functions"), raw_node("b2", "loops")],
        edges=[raw_edge("b2", "c")],
        questions={"Q2": ["c"]},
    )


@pytest.mark.parametrize("seconds, expected", [
    (0, "0s"),
    (59, "59s"),
    (60, "1m 0s"),
    (125, "2m 5s"),
])
def test_format_time_remaining(seconds, expected):
    assert format_time_remaining(seconds) == expected


class TestProgress:
    def test_before_any_batch(self):
        s = MergeSession(total_batches=3, clock=FakeClock())
        p = s.progress()
        assert (p.current_batch, p.total_batches, p.skills_discovered) == (0, 3, 0)
        assert p.estimated_time_remaining == "Calculating..."

    def test_eta_uses_average_batch_time(self):
        clock = FakeClock()
        s = MergeSession(total_batches=3, clock=clock)
        clock.t += 10
        p = s.add(frag_ab())
        assert p.current_batch == 1
        assert p.skills_discovered == 2
        # 10s per batch, two batches left
        assert p.estimated_time_remaining == "20s"

    def test_last_batch_reports_zero_remaining(self):
        s = MergeSession(total_batches=1, clock=FakeClock())
        assert s.add(frag_ab()).estimated_time_remaining == "0s"

    def test_skills_discovered_excludes_base(self):
        base = make_graph(["x"])
        s = MergeSession(base=base, total_batches=2, clock=FakeClock())
        assert s.add(frag_ab()).skills_discovered == 2

    def test_more_batches_than_announced(self):
        s = MergeSession(total_batches=1, clock=FakeClock())
        s.add(frag_ab())
        p = s.add(frag_c())
        assert p.current_batch == 2
        assert p.total_batches == 2


class TestSession:
    def test_known_skills_lists_every_folded_skill(self):
        s = MergeSession(total_batches=2)
        s.add(frag_ab())
        known = s.known_skills()
        assert [k["id"] for k in known] == ["a", "b"]
        assert set(known[0]) == {"id", "name", "tier", "description"}

    def test_add_only_folds(self):
        s = MergeSession(total_batches=2)
        s.add(frag_ab())
        s.add(frag_c())
        # duplicate 'b2' is still present until consolidation
        assert [n.id for n in s.graph.nodes] == ["a", "b", "c", "b2"]

    def test_preview_does_not_touch_session_state(self):
        s = MergeSession(total_batches=2)
        s.add(frag_ab())
        s.add(frag_c())
        before = s.graph.model_copy(deep=True)
        res = s.preview()
        assert [n.id for n in res.graph.nodes] == ["a", "b", "c"]
        assert s.graph == before

    def test_finish_replaces_graph_with_consolidated_one(self):
        s = MergeSession(total_batches=2)
        s.add(frag_ab())
        s.add(frag_c())
        res = s.finish()
        assert s.graph == res.graph
        assert edge_keys(s.graph) == [("a", "b"), ("b", "c")]
        assert res.remap == {"b2": "b"}

    def test_config_reaches_consolidation(self):
        s = MergeSession(total_batches=1, config=MergeConfig(overlap_threshold=1.0))
        s.add(raw_fragment(nodes=[
            raw_node("a", "Python list comprehension syntax"),
            raw_node("b", "List comprehension syntax"),
        ]))
        assert len(s.finish().graph.nodes) == 2

    def test_snapshot_counts_rejections(self):
        s = MergeSession(total_batches=1)
        s.add({"nodes": [{"id": "a", "name": "A"}, {"id": "nameless"}], "edges": [42]})
        snap = s.snapshot()
        assert snap["nodes"] == 1
        assert snap["rejected_nodes"] == 1
        assert snap["rejected_edges"] == 1
        assert snap["progress"]["current_batch"] == 1


class TestCheckpoint:
    def test_round_trip(self):
        clock = FakeClock()
        s = MergeSession(base=make_graph(["x"]), total_batches=3, questions=["q1", "q2", "q3"], clock=clock)
        s.add(frag_ab())
        data = json.loads(json.dumps(s.checkpoint()))
        assert data["version"] == CHECKPOINT_VERSION

        clock.t += 60
        r = MergeSession.restore(data, clock=clock)
        assert r is not None
        assert r.graph == s.graph
        assert r.base == s.base
        assert r.questions == ["q1", "q2", "q3"]
        assert r.processed_batches == 1
        assert r.progress().skills_discovered == 2
        # nothing processed since the resume yet
        assert r.progress().estimated_time_remaining == "Calculating..."

    def test_stale_checkpoint_is_ignored(self):
        clock = FakeClock()
        data = MergeSession(total_batches=1, clock=clock).checkpoint()
        clock.t += 3601
        assert MergeSession.restore(data, clock=clock) is None
        assert MergeSession.restore(data, max_age_s=7200, clock=clock) is not None

    def test_unknown_version_is_ignored(self):
        data = MergeSession(total_batches=1).checkpoint()
        data["version"] = 99
        assert MergeSession.restore(data) is None
        assert MergeSession.restore(["not", "a", "dict"]) is None

    def test_save_load_clear(self, tmp_path):
        path = tmp_path / "cp" / "session.json"
        data = MergeSession(total_batches=1).checkpoint()
        save_checkpoint(data, path)
        assert load_checkpoint(path) == data
        assert not (tmp_path / "cp" / "session.json.tmp").exists()
        clear_checkpoint(path)
        assert load_checkpoint(path) is None
        clear_checkpoint(path)

    def test_unreadable_checkpoint_loads_as_none(self, tmp_path):
        path = tmp_path / "session.json"
        path.write_text("{not json", encoding="utf-8")
        assert load_checkpoint(path) is None
