import json
import logging

from skill_graph._perf import AuditWriter, timed

_LOG = logging.getLogger("skill_graph.test_perf")


def test_timed_records_duration(caplog):
    timings = {}
    with caplog.at_level(logging.DEBUG, logger="skill_graph.test_perf"):
        with timed(_LOG, "merge.reduce", timings=timings, edges=3):
            pass
    assert timings["merge.reduce"] >= 0
    assert "Stage merge.reduce started (edges=3)" in caplog.text
    assert "Stage merge.reduce finished in " in caplog.text


def test_timed_clips_long_fields(caplog):
    with caplog.at_level(logging.DEBUG, logger="skill_graph.test_perf"):
        with timed(_LOG, "merge.paths", question="q" * 500):
            pass
    assert "q" * 121 not in caplog.text
    assert "q" * 120 + "..." in caplog.text


def test_timed_warns_when_slow(caplog):
    with caplog.at_level(logging.WARNING, logger="skill_graph.test_perf"):
        with timed(_LOG, "batch.generate", warn_ms=0):
            pass
    assert [r.levelno for r in caplog.records] == [logging.WARNING]


def test_timed_records_even_on_error():
    timings = {}
    try:
        with timed(_LOG, "merge.levels", timings=timings):
            raise RuntimeError("boom")
    except RuntimeError:
        pass
    assert "merge.levels" in timings


def test_audit_writer_appends_jsonl(tmp_path):
    path = tmp_path / "logs" / "audit.jsonl"
    w = AuditWriter(str(path), run_id="run1")
    w.write({"event": "dedup_merge", "duplicate_id": "b"})
    w.write({"event": "edge_removed", "stage": "reduce"})
    lines = [json.loads(x) for x in path.read_text(encoding="utf-8").splitlines()]
    assert [x["event"] for x in lines] == ["dedup_merge", "edge_removed"]
    assert {x["run"] for x in lines} == {"run1"}


def test_write_all_counts_and_logs_stages(tmp_path, caplog):
    path = tmp_path / "audit.jsonl"
    events = [
        {"event": "edge_removed", "stage": "reduce"},
        {"event": "edge_removed", "stage": "cycle"},
        {"event": "edge_removed", "stage": "reduce"},
        {"event": "dedup_merge"},
    ]
    with caplog.at_level(logging.INFO, logger="skill_graph._perf"):
        assert AuditWriter(str(path), run_id="r").write_all(iter(events)) == 4
    assert len(path.read_text(encoding="utf-8").splitlines()) == 4
    assert "cycle=1, dedup_merge=1, reduce=2" in caplog.text


def test_separate_runs_get_separate_ids(tmp_path):
    path = tmp_path / "audit.jsonl"
    AuditWriter(str(path)).write({"event": "x"})
    AuditWriter(str(path)).write({"event": "x"})
    runs = [json.loads(x)["run"] for x in path.read_text(encoding="utf-8").splitlines()]
    assert len(set(runs)) == 2


def test_disabled_audit_writer_writes_nothing(tmp_path):
    path = tmp_path / "audit.jsonl"
    assert AuditWriter(str(path), enabled=False).write_all([{"event": "x"}]) == 0
    assert not path.exists()
