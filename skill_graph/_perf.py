"""
Stage timing for the merge pipeline and the JSONL audit trail of its decisions.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, Optional

_LOG = logging.getLogger(__name__)

_MAX_FIELD_CHARS = 120


def _describe(fields: Dict[str, Any]) -> str:
    """Render stage counters as `k=v, k=v`, clipping long values."""
    shown = []
    for key, value in sorted(fields.items()):
        text = str(value)
        if len(text) > _MAX_FIELD_CHARS:
            text = text[:_MAX_FIELD_CHARS] + "..."
        shown.append(f"{key}={text}")
    return ", ".join(shown) or "-"


@contextmanager
def timed(
    logger: logging.Logger,
    stage: str,
    *,
    warn_ms: Optional[float] = None,
    timings: Optional[Dict[str, int]] = None,
    **fields: Any,
) -> Iterator[None]:
    """
    Time one pipeline stage. The elapsed milliseconds go into `timings[stage]`
    even when the stage raises; a stage slower than `warn_ms` logs at WARNING.
    """
    started = time.perf_counter()
    logger.debug("Stage %s started (%s)", stage, _describe(fields))
    try:
        yield
    finally:
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        if timings is not None:
            timings[stage] = elapsed_ms
        slow = warn_ms is not None and elapsed_ms >= warn_ms
        logger.log(
            logging.WARNING if slow else logging.DEBUG,
            "Stage %s finished in %dms (%s)", stage, elapsed_ms, _describe(fields),
        )


@dataclass
class AuditWriter:
    """
    Append-only JSONL trail of merge decisions and edge removals, so a human can
    review (and undo downstream) every heuristic call the engine made.

    Every record carries the writer's `run` id, so records appended by several
    merge runs to one file can be told apart.
    """
    path: str
    enabled: bool = True
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def write_all(self, events: Iterable[Dict[str, Any]]) -> int:
        """Append `events`; returns how many were written."""
        if not self.enabled:
            return 0
        target = Path(self.path)
        target.parent.mkdir(parents=True, exist_ok=True)
        per_kind: Counter = Counter()
        with self._lock, target.open("a", encoding="utf-8") as f:
            for event in events:
                record = {"run": self.run_id, **event}
                f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")
                per_kind[event.get("stage") or event.get("event", "?")] += 1
        total = sum(per_kind.values())
        if total:
            _LOG.info(
                "Audit run %s: appended %d record(s) to %s (%s)",
                self.run_id, total, target, _describe(dict(per_kind)),
            )
        return total

    def write(self, event: Dict[str, Any]) -> None:
        self.write_all([event])
