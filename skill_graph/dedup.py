"""
Semantic deduplicator.

The generator may call the same capability "list comprehension" in one batch and
"list_comprehensions" in the next. Identity-based accumulation cannot see that,
so this pass walks nodes in arrival order, keeps a growing list of canonical
nodes, and folds every node that a NodeMatcher deems equivalent into the first
canonical node it matches. References (edges, question paths) are then rewritten
through the resulting remap table.

The default matcher is a name-overlap heuristic. False merges and missed merges
are expected; every decision is logged and returned as a MergeDecision so it can
be corrected downstream.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Dict, FrozenSet, List, Optional, Protocol, Set

from .normalize import dedupe
from .schemas import PrereqEdge, SkillGraph, SkillNode

_LOG = logging.getLogger(__name__)

_SEPARATORS = re.compile(r"[\s_\-]+")


# ---- Matching ----------------------------------------------------------------

def normalize_name(name: str) -> str:
    """
    Case-fold, turn runs of whitespace, underscores and hyphens into single spaces,
    trim. Other punctuation is kept: "C++ Basics" and "C# Basics" stay apart.
    """
    return _SEPARATORS.sub(" ", (name or "").casefold()).strip()


def name_tokens(normalized: str, min_length: int = 3) -> Set[str]:
    return {w for w in normalized.split() if len(w) >= min_length}


def overlap_ratio(a: Set[str], b: Set[str]) -> float:
    denom = max(len(a), len(b))
    if denom == 0:
        return 0.0
    return len(a & b) / denom


class NodeMatcher(Protocol):
    def are_equivalent(self, a: SkillNode, b: SkillNode) -> bool: ...


@dataclass(frozen=True)
class NameOverlapMatcher:
    """
    Two nodes are the same skill when
      - their normalized names are equal, or
      - their word sets (words of >= min_token_length chars) overlap by at least
        `threshold` (|A ∩ B| / max(|A|, |B|)) AND they sit in the same tier.
    """
    threshold: float = 0.6
    require_same_tier: bool = True
    min_token_length: int = 3

    def score(self, a: SkillNode, b: SkillNode) -> float:
        na, nb = normalize_name(a.name), normalize_name(b.name)
        if na == nb:
            return 1.0
        return overlap_ratio(
            name_tokens(na, self.min_token_length),
            name_tokens(nb, self.min_token_length),
        )

    def are_equivalent(self, a: SkillNode, b: SkillNode) -> bool:
        if normalize_name(a.name) == normalize_name(b.name):
            return True
        if self.require_same_tier and a.tier != b.tier:
            return False
        return self.score(a, b) >= self.threshold


# ---- Pass --------------------------------------------------------------------

@dataclass(frozen=True)
class MergeDecision:
    duplicate_id: str
    duplicate_name: str
    canonical_id: str
    canonical_name: str
    tier: str
    score: Optional[float] = None

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


@dataclass
class DedupResult:
    graph: SkillGraph
    remap: Dict[str, str] = field(default_factory=dict)
    decisions: List[MergeDecision] = field(default_factory=list)
    dropped_edges: List[PrereqEdge] = field(default_factory=list)


def find_duplicates(nodes: List[SkillNode], matcher: NodeMatcher):
    """
    First-canonical-wins scan. Returns (canonical nodes, remap, decisions); the
    canonical nodes are deep copies that have absorbed their duplicates'
    required_by lists and contexts.
    """
    canonical: List[SkillNode] = []
    remap: Dict[str, str] = {}
    decisions: List[MergeDecision] = []
    score_fn = getattr(matcher, "score", None)

    for node in nodes:
        match: Optional[SkillNode] = None
        for c in canonical:
            if matcher.are_equivalent(node, c):
                match = c
                break
        if match is None:
            canonical.append(node.model_copy(deep=True))
            continue

        remap[node.id] = match.id
        match.required_by = dedupe(match.required_by + node.required_by)
        match.contexts = dedupe(match.contexts + node.contexts)
        if not match.description and node.description:
            match.description = node.description

        d = MergeDecision(
            duplicate_id=node.id,
            duplicate_name=node.name,
            canonical_id=match.id,
            canonical_name=match.name,
            tier=match.tier,
            score=round(float(score_fn(node, match)), 4) if callable(score_fn) else None,
        )
        decisions.append(d)
        _LOG.info(
            "Merged skill %r (%s) into %r (%s) score=%s",
            node.id, node.name, match.id, match.name, d.score,
        )

    return canonical, remap, decisions


def apply_remap(graph: SkillGraph, remap: Dict[str, str]):
    """
    Rewrite edge endpoints and question paths through `remap`; drop edges that
    became self-loops or (undirected) duplicates. Returns (edges, questions, dropped).
    """
    seen: Set[FrozenSet[str]] = set()
    edges: List[PrereqEdge] = []
    dropped: List[PrereqEdge] = []
    for e in graph.edges:
        src = remap.get(e.source, e.source)
        dst = remap.get(e.target, e.target)
        ne = e.model_copy(update={"source": src, "target": dst})
        if src == dst or ne.undirected_key in seen:
            dropped.append(ne)
            continue
        seen.add(ne.undirected_key)
        edges.append(ne)

    questions: Dict[str, List[str]] = {
        q: dedupe(remap.get(sid, sid) for sid in ids) for q, ids in graph.questions.items()
    }
    return edges, questions, dropped


def deduplicate(graph: SkillGraph, matcher: Optional[NodeMatcher] = None) -> DedupResult:
    matcher = matcher or NameOverlapMatcher()
    canonical, remap, decisions = find_duplicates(list(graph.nodes), matcher)
    if not remap:
        return DedupResult(graph=graph.model_copy(deep=True))

    edges, questions, dropped = apply_remap(graph, remap)
    for e in dropped:
        _LOG.debug("Dedup dropped edge %s -> %s after remap", e.source, e.target)
    return DedupResult(
        graph=SkillGraph(nodes=canonical, edges=edges, questions=questions),
        remap=remap,
        decisions=decisions,
        dropped_edges=dropped,
    )
