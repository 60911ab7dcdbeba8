"""skill_graph.config

Tunable constants for the merge engine and the batch runner.

Values come from the dataclass defaults, optionally overridden by SKILLGRAPH_*
environment variables (a .env file is loaded first, without clobbering variables
that are already exported):

  SKILLGRAPH_OVERLAP_THRESHOLD       float in (0, 1]      default 0.6
  SKILLGRAPH_REQUIRE_SAME_TIER       true/false          default true
  SKILLGRAPH_MIN_TOKEN_LENGTH        int >= 1            default 3
  SKILLGRAPH_REJECT_SELF_LOOPS       true/false          default true
  SKILLGRAPH_MAX_CYCLE_ITERATIONS    int >= 1            default: edge count
  SKILLGRAPH_VERIFY_INVARIANTS       true/false          default false
  SKILLGRAPH_BATCH_SIZE              int >= 1            default 50
  SKILLGRAPH_BATCH_DELAY_S           float >= 0          default 2.0
  SKILLGRAPH_MAX_RETRIES             int >= 1            default 3
  SKILLGRAPH_RETRY_DELAY_S           float >= 0          default 5.0
  SKILLGRAPH_RATE_LIMIT_BACKOFF_S    float >= 0          default 30.0
  SKILLGRAPH_CHECKPOINT_MAX_AGE_S    float >= 0          default 3600
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple, Union

from dotenv import load_dotenv

from .errors import ConfigError

ENV_PREFIX = "SKILLGRAPH_"


@dataclass(frozen=True)
class MergeConfig:
    # Semantic dedup heuristic; never validated against labelled data, tune freely.
    overlap_threshold: float = 0.6
    require_same_tier: bool = True
    min_token_length: int = 3

    reject_self_loops: bool = True
    # None => cap at the number of edges entering the cycle breaker
    max_cycle_iterations: Optional[int] = None
    verify_invariants: bool = False

    def __post_init__(self) -> None:
        if not (0.0 < float(self.overlap_threshold) <= 1.0):
            raise ConfigError(f"overlap_threshold must be in (0, 1], got {self.overlap_threshold!r}")
        if int(self.min_token_length) < 1:
            raise ConfigError(f"min_token_length must be >= 1, got {self.min_token_length!r}")
        if self.max_cycle_iterations is not None and int(self.max_cycle_iterations) < 1:
            raise ConfigError(f"max_cycle_iterations must be >= 1, got {self.max_cycle_iterations!r}")


@dataclass(frozen=True)
class BatchConfig:
    batch_size: int = 50
    batch_delay_s: float = 2.0

    # Retry policy for the fragment generator
    max_retries: int = 3
    retry_delay_s: float = 5.0
    rate_limit_backoff_s: float = 30.0   # 30s, 60s, 120s ...

    checkpoint_max_age_s: float = 3600.0

    def __post_init__(self) -> None:
        if int(self.batch_size) < 1:
            raise ConfigError(f"batch_size must be >= 1, got {self.batch_size!r}")
        if int(self.max_retries) < 1:
            raise ConfigError(f"max_retries must be >= 1, got {self.max_retries!r}")
        for name in ("batch_delay_s", "retry_delay_s", "rate_limit_backoff_s", "checkpoint_max_age_s"):
            if float(getattr(self, name)) < 0:
                raise ConfigError(f"{name} must be >= 0, got {getattr(self, name)!r}")


def _parse_bool(raw: str) -> bool:
    s = raw.strip().lower()
    if s in {"1", "true", "yes", "on"}:
        return True
    if s in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"not a boolean: {raw!r}")


def _parser_for(default: Any) -> Callable[[str], Any]:
    if isinstance(default, bool):
        return _parse_bool
    if isinstance(default, int):
        return int
    if isinstance(default, float):
        return float
    # Optional[int] fields default to None
    return int


def _from_env(cls, env: Dict[str, str]):
    kwargs: Dict[str, Any] = {}
    for f in fields(cls):
        key = ENV_PREFIX + f.name.upper()
        raw = env.get(key)
        if raw is None or raw.strip() == "":
            continue
        try:
            kwargs[f.name] = _parser_for(f.default)(raw)
        except ValueError as e:
            raise ConfigError(f"Invalid value for {key}: {e}") from e
    return cls(**kwargs)


def load_config(env_file: Optional[Union[str, Path]] = None) -> Tuple[MergeConfig, BatchConfig]:
    """Load (MergeConfig, BatchConfig) from .env + process environment."""
    if env_file is not None:
        load_dotenv(env_file, override=False)
    else:
        load_dotenv(override=False)
    env = dict(os.environ)
    return _from_env(MergeConfig, env), _from_env(BatchConfig, env)
