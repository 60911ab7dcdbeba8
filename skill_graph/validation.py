"""
Path validator and invariant checker.

validate_paths / prune_dangling_edges are the cleanup passes run at the end of a
merge; they never fail. check_invariants re-derives every structural guarantee
of a merged graph from scratch and reports what does not hold.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Set, Tuple

import networkx as nx

from .graph_build import adjacency, reachable_via_other_path, compute_levels
from .normalize import dedupe
from .schemas import PrereqEdge, SkillGraph, SkillNode

_LOG = logging.getLogger(__name__)


@dataclass
class ValidationReport:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)

    def ok(self) -> bool:
        return len(self.errors) == 0


# --- Cleanup passes ---

def prune_dangling_edges(
    edges: Iterable[PrereqEdge], node_ids: Set[str]
) -> Tuple[List[PrereqEdge], List[PrereqEdge]]:
    """Drop edges with an endpoint outside `node_ids`. Returns (kept, dropped)."""
    kept: List[PrereqEdge] = []
    dropped: List[PrereqEdge] = []
    for e in edges:
        if e.source in node_ids and e.target in node_ids:
            kept.append(e)
        else:
            dropped.append(e)
            _LOG.warning("Dropped dangling edge %s -> %s (unknown endpoint)", e.source, e.target)
    return kept, dropped


def validate_paths(
    questions: Dict[str, List[str]], node_ids: Set[str]
) -> Tuple[Dict[str, List[str]], Dict[str, List[str]]]:
    """
    Keep only skill ids that exist; drop a question whose list ends up empty.
    Returns (questions, pruned) where pruned maps question -> removed ids.
    """
    out: Dict[str, List[str]] = {}
    pruned: Dict[str, List[str]] = {}
    for q, ids in questions.items():
        keep = dedupe(sid for sid in ids if sid in node_ids)
        gone = [sid for sid in ids if sid not in node_ids]
        if gone:
            pruned[q] = gone
            _LOG.debug("Question %r: pruned dangling skill ids %s", q[:80], gone)
        if keep:
            out[q] = keep
        else:
            _LOG.debug("Question %r: no surviving skills, association dropped", q[:80])
    return out, pruned


def drop_question_refs(nodes: Iterable[SkillNode], dropped: Set[str]) -> None:
    """Remove dropped questions from every node's required_by, in place."""
    if not dropped:
        return
    for n in nodes:
        if any(q in dropped for q in n.required_by):
            n.required_by = [q for q in n.required_by if q not in dropped]
            _LOG.debug("Node %s: removed references to dropped questions", n.id)


# --- Invariant checker ---

def check_invariants(graph: SkillGraph) -> ValidationReport:
    rep = ValidationReport()

    counts = Counter(n.id for n in graph.nodes)
    for nid, c in counts.items():
        if c > 1:
            rep.errors.append(f"Duplicate node id '{nid}' ({c} occurrences)")
    node_ids = set(counts)

    # 1) Edge endpoints, self-loops, duplicates (either direction)
    seen_pairs: Dict[frozenset, Tuple[str, str]] = {}
    for e in graph.edges:
        if e.source not in node_ids or e.target not in node_ids:
            rep.errors.append(f"Dangling edge {e.source}->{e.target}")
        if e.source == e.target:
            rep.errors.append(f"Self-loop edge '{e.source} -> {e.target}'")
            continue
        k = e.undirected_key
        if k in seen_pairs:
            first = seen_pairs[k]
            if first == e.key:
                rep.errors.append(f"Duplicate edge {e.source}->{e.target}")
            else:
                rep.errors.append(f"2-cycle between '{e.source}' and '{e.target}'")
        else:
            seen_pairs[k] = e.key

    # 2) Acyclicity
    G = nx.DiGraph()
    G.add_nodes_from(node_ids)
    G.add_edges_from(e.key for e in graph.edges)
    acyclic = nx.is_directed_acyclic_graph(G)
    if not acyclic:
        cyc = nx.find_cycle(G, orientation="original")
        cyc_path = " -> ".join([a for (a, b, _) in cyc] + [cyc[0][0]])
        rep.errors.append(f"Cycle detected: {cyc_path}")

    # 3) Level correctness (only meaningful on a DAG)
    if acyclic:
        expected = compute_levels([n.id for n in graph.nodes], graph.edges)
        for n in graph.nodes:
            want = expected.get(n.id, 0)
            if n.level != want:
                rep.errors.append(f"Node {n.id}: level {n.level} but expected {want}")

    # 4) Transitive-reduction minimality
    adj = adjacency(graph.edges)
    for e in graph.edges:
        if e.source != e.target and reachable_via_other_path(adj, e.source, e.target):
            rep.errors.append(f"Redundant edge {e.source}->{e.target} (implied by a longer path)")

    # 5) Question references
    for q, ids in graph.questions.items():
        if not ids:
            rep.errors.append(f"Question {q[:80]!r} has an empty skill list")
        for sid in ids:
            if sid not in node_ids:
                rep.errors.append(f"Question {q[:80]!r} references unknown skill '{sid}'")

    # Soft checks
    isolated = [n for n in node_ids if G.degree(n) == 0]
    if isolated and graph.edges:
        rep.warnings.append(f"{len(isolated)} skill(s) have no prerequisite edges at all")

    rep.stats = {
        "num_nodes": len(node_ids),
        "num_edges": len(graph.edges),
        "num_questions": len(graph.questions),
        "max_level": max((n.level for n in graph.nodes), default=0),
        "is_dag": acyclic,
    }
    return rep
