# session.py
"""
Stateful wrapper around the pure merge functions, for callers that feed
fragments one at a time and want live progress plus resumable state.

The session only ever *folds* fragments as they arrive; the full consolidate
pass runs in preview() / finish(), so nothing half-consolidated is kept around.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from .accumulate import accumulate
from .config import MergeConfig
from .dedup import NodeMatcher
from .merge import MergeResult, consolidate
from .normalize import FragmentReport, normalize_fragment
from .schemas import SkillGraph

_LOG = logging.getLogger(__name__)

CHECKPOINT_VERSION = 1


def format_time_remaining(seconds: float) -> str:
    if seconds < 60:
        return f"{round(seconds)}s"
    minutes = int(seconds // 60)
    secs = round(seconds % 60)
    return f"{minutes}m {secs}s"


@dataclass(frozen=True)
class BatchProgress:
    current_batch: int
    total_batches: int
    skills_discovered: int
    estimated_time_remaining: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class MergeSession:
    def __init__(
        self,
        base: Optional[SkillGraph] = None,
        total_batches: int = 0,
        config: Optional[MergeConfig] = None,
        *,
        questions: Optional[List[str]] = None,
        matcher: Optional[NodeMatcher] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or MergeConfig()
        self.matcher = matcher
        self.base = base.model_copy(deep=True) if base is not None else SkillGraph()
        self.graph = self.base.model_copy(deep=True)
        self.total_batches = int(total_batches)
        self.questions: List[str] = list(questions or [])
        self.processed_batches = 0
        self.base_node_count = len(self.base.nodes)
        self.reports: List[FragmentReport] = []
        self._clock = clock
        self._started = clock()
        self._resumed_at_batch = 0

    # --- Feeding ---

    def add(self, payload: Any) -> BatchProgress:
        """Normalize and fold one fragment; returns the progress after it."""
        frag, rep = normalize_fragment(payload)
        self.reports.append(rep)
        self.graph = accumulate(self.graph, frag, reject_self_loops=self.config.reject_self_loops)
        self.processed_batches += 1
        progress = self.progress()
        _LOG.info(
            "Folded batch %d/%d | nodes=%d edges=%d new_skills=%d",
            progress.current_batch, progress.total_batches,
            len(self.graph.nodes), len(self.graph.edges), progress.skills_discovered,
        )
        return progress

    def progress(self) -> BatchProgress:
        done_this_run = self.processed_batches - self._resumed_at_batch
        remaining = max(self.total_batches - self.processed_batches, 0)
        if remaining == 0:
            eta = "0s"
        elif done_this_run > 0:
            avg = (self._clock() - self._started) / done_this_run
            eta = format_time_remaining(avg * remaining)
        else:
            eta = "Calculating..."
        return BatchProgress(
            current_batch=self.processed_batches,
            total_batches=max(self.total_batches, self.processed_batches),
            skills_discovered=len(self.graph.nodes) - self.base_node_count,
            estimated_time_remaining=eta,
        )

    def known_skills(self) -> List[Dict[str, str]]:
        """Identifier-reuse hints for the generator: every skill seen so far."""
        return [
            {"id": n.id, "name": n.name, "tier": n.tier, "description": n.description}
            for n in self.graph.nodes
        ]

    # --- Consolidation ---

    def preview(self) -> MergeResult:
        """Consolidated view of everything folded so far; session state is untouched."""
        return consolidate(self.graph, self.config, matcher=self.matcher)

    def finish(self) -> MergeResult:
        result = consolidate(self.graph, self.config, matcher=self.matcher)
        self.graph = result.graph.model_copy(deep=True)
        return result

    def snapshot(self) -> Dict[str, Any]:
        return {
            "progress": self.progress().to_dict(),
            "nodes": len(self.graph.nodes),
            "edges": len(self.graph.edges),
            "questions": len(self.graph.questions),
            "rejected_nodes": sum(len(r.rejected_nodes) for r in self.reports),
            "rejected_edges": sum(len(r.rejected_edges) for r in self.reports),
        }

    # --- Checkpoint / resume ---

    def checkpoint(self) -> Dict[str, Any]:
        return {
            "version": CHECKPOINT_VERSION,
            "timestamp": self._clock(),
            "questions": list(self.questions),
            "processed_batches": self.processed_batches,
            "total_batches": self.total_batches,
            "base_node_count": self.base_node_count,
            "base": self.base.model_dump(mode="json"),
            "graph": self.graph.model_dump(mode="json"),
        }

    @classmethod
    def restore(
        cls,
        data: Dict[str, Any],
        *,
        max_age_s: float = 3600.0,
        config: Optional[MergeConfig] = None,
        matcher: Optional[NodeMatcher] = None,
        clock: Callable[[], float] = time.time,
    ) -> Optional["MergeSession"]:
        """Rebuild a session from checkpoint(); returns None when the checkpoint is stale or foreign."""
        if not isinstance(data, dict) or data.get("version") != CHECKPOINT_VERSION:
            _LOG.warning("Ignoring checkpoint with unknown format")
            return None
        age = clock() - float(data.get("timestamp", 0))
        if age > max_age_s:
            _LOG.info("Ignoring stale checkpoint (age %.0fs > %.0fs)", age, max_age_s)
            return None

        s = cls(
            base=SkillGraph.model_validate(data.get("base") or {}),
            total_batches=int(data.get("total_batches", 0)),
            config=config,
            questions=data.get("questions") or [],
            matcher=matcher,
            clock=clock,
        )
        s.graph = SkillGraph.model_validate(data.get("graph") or {})
        s.processed_batches = int(data.get("processed_batches", 0))
        s.base_node_count = int(data.get("base_node_count", len(s.base.nodes)))
        s._resumed_at_batch = s.processed_batches
        _LOG.info("Resumed from checkpoint at batch %d/%d", s.processed_batches, s.total_batches)
        return s


def save_checkpoint(data: Dict[str, Any], path: Union[str, Path]) -> str:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    tmp = p.with_suffix(p.suffix + ".tmp")
    tmp.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
    os.replace(tmp, p)
    return str(p)


def load_checkpoint(path: Union[str, Path]) -> Optional[Dict[str, Any]]:
    p = Path(path)
    if not p.exists():
        return None
    try:
        return json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        _LOG.warning("Unreadable checkpoint %s: %s", p, e)
        return None


def clear_checkpoint(path: Union[str, Path]) -> None:
    p = Path(path)
    if p.exists():
        p.unlink()
