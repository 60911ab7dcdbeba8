"""
Merge pipeline.

    fold(graph, fragment)      accumulate one fragment (cheap; used per batch)
    consolidate(graph)         dedup -> dangling cleanup -> reduce -> break cycles
                               (-> reduce again if any were broken) -> relevel
                               -> validate paths   (one complete pass)
    merge(graph, fragment)     fold + consolidate
    merge_all(fragments)       fold every fragment in arrival order, consolidate once

All four are pure: inputs are never mutated, a new graph is returned. A pass
either completes and returns a MergeResult or raises; there is no partially
consolidated output.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional

from ._perf import timed
from .accumulate import accumulate
from .config import MergeConfig
from .dedup import MergeDecision, NameOverlapMatcher, NodeMatcher, deduplicate
from .errors import InvariantViolation
from .graph_build import assign_levels, break_cycles, transitive_reduce
from .normalize import normalize_fragment
from .schemas import PrereqEdge, SkillGraph
from .validation import check_invariants, drop_question_refs, prune_dangling_edges, validate_paths

_LOG = logging.getLogger(__name__)


@dataclass
class MergeResult:
    graph: SkillGraph
    remap: Dict[str, str] = field(default_factory=dict)
    decisions: List[MergeDecision] = field(default_factory=list)
    dedup_dropped_edges: List[PrereqEdge] = field(default_factory=list)
    dangling_edges: List[PrereqEdge] = field(default_factory=list)
    reduced_edges: List[PrereqEdge] = field(default_factory=list)
    cycle_edges: List[PrereqEdge] = field(default_factory=list)
    pruned_questions: Dict[str, List[str]] = field(default_factory=dict)
    timings: Dict[str, int] = field(default_factory=dict)

    def summary(self) -> Dict[str, Any]:
        return {
            "nodes": len(self.graph.nodes),
            "edges": len(self.graph.edges),
            "questions": len(self.graph.questions),
            "merged_duplicates": len(self.decisions),
            "reduced_edges": len(self.reduced_edges),
            "cycle_edges": len(self.cycle_edges),
            "dangling_edges": len(self.dangling_edges),
            "pruned_questions": len(self.pruned_questions),
            "max_level": max((n.level for n in self.graph.nodes), default=0),
        }

    def audit_events(self) -> Iterator[Dict[str, Any]]:
        """One JSON-ready record per heuristic decision or removed edge."""
        for d in self.decisions:
            yield {"event": "dedup_merge", **d.to_dict()}
        for stage, edges in (
            ("dedup_remap", self.dedup_dropped_edges),
            ("dangling", self.dangling_edges),
            ("reduce", self.reduced_edges),
            ("cycle", self.cycle_edges),
        ):
            for e in edges:
                yield {
                    "event": "edge_removed",
                    "stage": stage,
                    "source": e.source,
                    "target": e.target,
                    "relation": e.relation,
                    "reason": e.reason,
                }
        for q, ids in self.pruned_questions.items():
            yield {"event": "question_pruned", "question": q, "removed_ids": ids}


def default_matcher(config: MergeConfig) -> NameOverlapMatcher:
    return NameOverlapMatcher(
        threshold=config.overlap_threshold,
        require_same_tier=config.require_same_tier,
        min_token_length=config.min_token_length,
    )


def _as_fragment(payload: Any) -> SkillGraph:
    if payload is None:
        return SkillGraph()
    frag, rep = normalize_fragment(payload)
    if not rep.ok():
        _LOG.warning(
            "Fragment had rejected records | nodes=%d edges=%d questions=%d",
            len(rep.rejected_nodes), len(rep.rejected_edges), len(rep.rejected_questions),
        )
    return frag


def fold(graph: Optional[SkillGraph], fragment: Any, config: Optional[MergeConfig] = None) -> SkillGraph:
    """Accumulate one fragment (raw payload or SkillGraph) into `graph`."""
    config = config or MergeConfig()
    return accumulate(
        graph if graph is not None else SkillGraph(),
        _as_fragment(fragment),
        reject_self_loops=config.reject_self_loops,
    )


def consolidate(
    graph: SkillGraph,
    config: Optional[MergeConfig] = None,
    *,
    matcher: Optional[NodeMatcher] = None,
) -> MergeResult:
    config = config or MergeConfig()
    matcher = matcher or default_matcher(config)
    timings: Dict[str, int] = {}

    with timed(_LOG, "merge.dedup", timings=timings, nodes=len(graph.nodes)):
        dd = deduplicate(graph, matcher)
    g = dd.graph
    node_ids = g.node_ids()

    with timed(_LOG, "merge.dangling", timings=timings, edges=len(g.edges)):
        edges, dangling = prune_dangling_edges(g.edges, node_ids)

    with timed(_LOG, "merge.reduce", timings=timings, edges=len(edges)):
        edges, reduced = transitive_reduce(edges)

    with timed(_LOG, "merge.break_cycles", timings=timings, edges=len(edges)):
        edges, cycle = break_cycles([n.id for n in g.nodes], edges, config.max_cycle_iterations)

    if cycle:
        # reduction skipped paths through the cycles; finish it on the DAG
        with timed(_LOG, "merge.reduce_dag", timings=timings, edges=len(edges)):
            edges, reduced_dag = transitive_reduce(edges)
        reduced += reduced_dag

    out = SkillGraph(nodes=g.nodes, edges=edges, questions=g.questions)
    with timed(_LOG, "merge.levels", timings=timings, nodes=len(out.nodes)):
        assign_levels(out)

    with timed(_LOG, "merge.paths", timings=timings, questions=len(out.questions)):
        out.questions, pruned = validate_paths(g.questions, node_ids)
        drop_question_refs(out.nodes, set(g.questions) - set(out.questions))

    result = MergeResult(
        graph=out,
        remap=dd.remap,
        decisions=dd.decisions,
        dedup_dropped_edges=dd.dropped_edges,
        dangling_edges=dangling,
        reduced_edges=reduced,
        cycle_edges=cycle,
        pruned_questions=pruned,
        timings=timings,
    )

    if config.verify_invariants:
        rep = check_invariants(out)
        if not rep.ok():
            raise InvariantViolation(
                f"Merge produced an inconsistent graph ({len(rep.errors)} errors)", errors=rep.errors
            )

    _LOG.info("Merge pass complete | %s", " ".join(f"{k}={v}" for k, v in result.summary().items()))
    return result


def merge(
    graph: Optional[SkillGraph],
    fragment: Any,
    config: Optional[MergeConfig] = None,
    *,
    matcher: Optional[NodeMatcher] = None,
) -> MergeResult:
    """(previous graph, new fragment) -> new graph; neither input is mutated."""
    config = config or MergeConfig()
    return consolidate(fold(graph, fragment, config), config, matcher=matcher)


def merge_all(
    fragments: Iterable[Any],
    base: Optional[SkillGraph] = None,
    config: Optional[MergeConfig] = None,
    *,
    matcher: Optional[NodeMatcher] = None,
) -> MergeResult:
    config = config or MergeConfig()
    g = base if base is not None else SkillGraph()
    for frag in fragments:
        g = fold(g, frag, config)
    return consolidate(g, config, matcher=matcher)
