"""Node & edge accumulator: fold one normalized fragment into the running graph."""

from __future__ import annotations

import logging
from typing import Dict, FrozenSet, List, Set

from .normalize import dedupe
from .schemas import PrereqEdge, SkillGraph, SkillNode

_LOG = logging.getLogger(__name__)


def accumulate(graph: SkillGraph, fragment: SkillGraph, *, reject_self_loops: bool = True) -> SkillGraph:
    """
    Return a new graph = graph ∪ fragment. Neither input is mutated.

    Nodes union by id: the first occurrence wins, later occurrences only contribute
    their required_by questions. Edges union by *undirected* endpoint pair: once
    A-B is known in either direction, a later A->B or B->A is a duplicate.
    Question associations union their skill lists (first-seen order).
    """
    nodes: Dict[str, SkillNode] = {n.id: n.model_copy(deep=True) for n in graph.nodes}
    for n in fragment.nodes:
        existing = nodes.get(n.id)
        if existing is None:
            nodes[n.id] = n.model_copy(deep=True)
        else:
            existing.required_by = dedupe(existing.required_by + n.required_by)

    seen: Set[FrozenSet[str]] = set()
    edges: List[PrereqEdge] = []
    for e in list(graph.edges) + list(fragment.edges):
        if e.source == e.target and reject_self_loops:
            _LOG.debug("Accumulator dropped self-loop %s -> %s", e.source, e.target)
            continue
        k = e.undirected_key
        if k in seen:
            continue
        seen.add(k)
        edges.append(e.model_copy())

    questions: Dict[str, List[str]] = {q: list(ids) for q, ids in graph.questions.items()}
    for q, ids in fragment.questions.items():
        questions[q] = dedupe(questions.get(q, []) + list(ids))

    return SkillGraph(nodes=list(nodes.values()), edges=edges, questions=questions)
