import os

import pytest

from skill_graph.config import BatchConfig, MergeConfig, _from_env, load_config
from skill_graph.errors import ConfigError


@pytest.fixture
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("SKILLGRAPH_"):
            monkeypatch.delenv(key)
    yield
    # load_dotenv writes straight into os.environ
    for key in list(os.environ):
        if key.startswith("SKILLGRAPH_"):
            del os.environ[key]


def test_defaults():
    m, b = MergeConfig(), BatchConfig()
    assert m.overlap_threshold == 0.6
    assert m.require_same_tier is True
    assert m.min_token_length == 3
    assert m.max_cycle_iterations is None
    assert (b.batch_size, b.batch_delay_s, b.max_retries) == (50, 2.0, 3)
    assert (b.retry_delay_s, b.rate_limit_backoff_s) == (5.0, 30.0)


def test_from_env_parses_each_field_type():
    m = _from_env(MergeConfig, {
        "SKILLGRAPH_OVERLAP_THRESHOLD": "0.8",
        "SKILLGRAPH_REQUIRE_SAME_TIER": "no",
        "SKILLGRAPH_MAX_CYCLE_ITERATIONS": "12",
        "SKILLGRAPH_VERIFY_INVARIANTS": "1",
        "SKILLGRAPH_MIN_TOKEN_LENGTH": "  ",
    })
    assert m == MergeConfig(
        overlap_threshold=0.8, require_same_tier=False, max_cycle_iterations=12, verify_invariants=True,
    )


@pytest.mark.parametrize("env", [
    {"SKILLGRAPH_OVERLAP_THRESHOLD": "high"},
    {"SKILLGRAPH_REQUIRE_SAME_TIER": "maybe"},
    {"SKILLGRAPH_OVERLAP_THRESHOLD": "1.5"},
    {"SKILLGRAPH_MAX_CYCLE_ITERATIONS": "0"},
])
def test_invalid_merge_values_raise(env):
    with pytest.raises(ConfigError):
        _from_env(MergeConfig, env)


@pytest.mark.parametrize("kwargs", [
    {"batch_size": 0},
    {"max_retries": 0},
    {"batch_delay_s": -1},
])
def test_invalid_batch_values_raise(kwargs):
    with pytest.raises(ConfigError):
        BatchConfig(**kwargs)


@pytest.mark.usefixtures("clean_env")
def test_load_config_reads_env_file(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("SKILLGRAPH_OVERLAP_THRESHOLD=0.75\nSKILLGRAPH_BATCH_SIZE=10\n", encoding="utf-8")
    m, b = load_config(env_file)
    assert m.overlap_threshold == 0.75
    assert b.batch_size == 10


@pytest.mark.usefixtures("clean_env")
def test_exported_variables_win_over_env_file(tmp_path):
    os.environ["SKILLGRAPH_BATCH_SIZE"] = "7"
    env_file = tmp_path / ".env"
    env_file.write_text("SKILLGRAPH_BATCH_SIZE=10\n", encoding="utf-8")
    _, b = load_config(env_file)
    assert b.batch_size == 7
