# skill_graph/graph_build.py
"""
Structural passes over a SkillGraph's edge set, plus networkx export.

Public API
----------
to_nx(graph: SkillGraph) -> nx.DiGraph
transitive_reduce(edges: list[PrereqEdge]) -> (kept, removed)
break_cycles(node_ids, edges, max_iterations=None) -> (kept, removed)
assign_levels(graph: SkillGraph) -> dict[str, int]
export_graphml(graph: SkillGraph, path: str|Path) -> str

Acceptance notes
----------------
• Reduction is evaluated against a snapshot of the adjacency taken before the pass,
  so the result does not depend on edge order. Paths through a node still on a
  cycle do not count; the merge pass reduces again after breaking cycles.
• Cycles are repaired deterministically (see RELATION_PRIORITY below); every removed
  edge is logged and returned.
• Levels are fully recomputed: 0 for a node without prerequisites, otherwise
  1 + max(level of direct prerequisites).
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple, Union

import networkx as nx

from .errors import CycleBreakLimitError
from .schemas import PrereqEdge, SkillGraph

_LOG = logging.getLogger(__name__)

# Lower number = more essential; higher = easier to drop when repairing cycles
RELATION_PRIORITY: Dict[str, int] = {
    "requires": 0,
    "builds_on": 1,
    "extends": 2,   # easiest to drop during cycle repair
}

# ---- Builders ----------------------------------------------------------------

def to_nx(graph: SkillGraph) -> nx.DiGraph:
    """
    Convert a SkillGraph into a networkx.DiGraph whose nodes are skill ids.
    Edges pointing at unknown ids are kept (networkx adds the endpoint), so
    validation can still see them.
    """
    G = nx.DiGraph()
    for n in graph.nodes:
        G.add_node(
            n.id,
            name=n.name,
            tier=n.tier,
            level=int(n.level),
            description=n.description,
            contexts="; ".join(n.contexts),
            required_by=len(n.required_by),
        )
    for e in graph.edges:
        G.add_edge(
            e.source,
            e.target,
            relation=e.relation,
            reason=e.reason,
            priority=RELATION_PRIORITY.get(e.relation, 99),
        )
    return G


def adjacency(edges: Iterable[PrereqEdge]) -> Dict[str, List[str]]:
    adj: Dict[str, List[str]] = defaultdict(list)
    for e in edges:
        adj[e.source].append(e.target)
    return adj

# ---- Transitive reduction ----------------------------------------------------

def reachable_via_other_path(
    adj: Dict[str, List[str]],
    source: str,
    target: str,
    blocked: Optional[Set[str]] = None,
) -> bool:
    """
    BFS from `source` that may not take the direct source->target hop first.
    Nodes in `blocked` are never used as intermediate hops.
    """
    blocked = blocked or set()
    seen: Set[str] = {source}
    q = deque(v for v in adj.get(source, ()) if v != target and v not in blocked)
    seen.update(q)
    while q:
        u = q.popleft()
        for v in adj.get(u, ()):
            if v == target:
                return True
            if v not in seen and v not in blocked:
                seen.add(v)
                q.append(v)
    return False


def cycle_nodes(edges: Iterable[PrereqEdge]) -> Set[str]:
    """Nodes that sit in a strongly connected component of two or more nodes."""
    G = nx.DiGraph()
    G.add_edges_from(e.key for e in edges if e.source != e.target)
    out: Set[str] = set()
    for comp in nx.strongly_connected_components(G):
        if len(comp) > 1:
            out |= comp
    return out


def transitive_reduce(edges: List[PrereqEdge]) -> Tuple[List[PrereqEdge], List[PrereqEdge]]:
    """
    Remove every edge (A, C) for which C is reachable from A via some other path.
    Returns (kept, removed), both in input order.

    Alternate paths may not pass through a node that is still on a cycle: two
    edges into a cycle would otherwise each justify removing the other. Run it
    again once the cycles are broken to finish the job.
    """
    adj = adjacency(edges)  # snapshot; not updated while removing
    blocked = cycle_nodes(edges)
    kept: List[PrereqEdge] = []
    removed: List[PrereqEdge] = []
    for e in edges:
        if e.source != e.target and reachable_via_other_path(adj, e.source, e.target, blocked):
            removed.append(e)
            _LOG.warning("Reducer removed redundant edge %s -> %s", e.source, e.target)
        else:
            kept.append(e)
    return kept, removed

# ---- DAG repair --------------------------------------------------------------

def _kahn_stuck(node_ids: Iterable[str], edges: List[PrereqEdge]) -> Set[str]:
    """Run Kahn's algorithm; return the nodes that never reach in-degree 0."""
    indeg: Dict[str, int] = {nid: 0 for nid in node_ids}
    adj = adjacency(edges)
    for e in edges:
        indeg.setdefault(e.source, 0)
        indeg[e.target] = indeg.get(e.target, 0) + 1

    q = deque(n for n, d in indeg.items() if d == 0)
    done: Set[str] = set()
    while q:
        u = q.popleft()
        done.add(u)
        for v in adj.get(u, ()):
            indeg[v] -= 1
            if indeg[v] == 0:
                q.append(v)
    return set(indeg) - done


def _choose_edge_to_break(stuck: Set[str], edges: List[PrereqEdge]) -> Optional[int]:
    """
    Index of the least-essential edge that lies on a cycle among the stuck nodes.
    Ties on relation priority go to the most recently arrived edge.
    """
    candidates = [i for i, e in enumerate(edges) if e.source in stuck and e.target in stuck]
    if not candidates:
        return None
    sub = nx.DiGraph()
    sub.add_edges_from(edges[i].key for i in candidates)
    on_cycle = [i for i in candidates if nx.has_path(sub, edges[i].target, edges[i].source)]
    if not on_cycle:
        return None
    return max(on_cycle, key=lambda i: (RELATION_PRIORITY.get(edges[i].relation, 99), i))


def break_cycles(
    node_ids: Iterable[str],
    edges: List[PrereqEdge],
    max_iterations: Optional[int] = None,
) -> Tuple[List[PrereqEdge], List[PrereqEdge]]:
    """
    Remove edges until the graph is a DAG. Returns (kept, removed); removed is in
    removal order.

    Each iteration re-runs Kahn's algorithm from scratch and drops one cycle edge.
    Hitting the iteration cap (default: number of edges) raises CycleBreakLimitError.
    """
    node_ids = list(node_ids)
    kept = list(edges)
    removed: List[PrereqEdge] = []
    cap = max_iterations if max_iterations is not None else max(len(kept), 1)

    iterations = 0
    while True:
        stuck = _kahn_stuck(node_ids, kept)
        if not stuck:
            return kept, removed
        if iterations >= cap:
            raise CycleBreakLimitError(
                f"Cycle breaker hit its iteration cap ({cap}) with {len(stuck)} nodes still on cycles",
                errors=sorted(stuck),
            )
        idx = _choose_edge_to_break(stuck, kept)
        if idx is None:
            # Should not happen: Kahn left nodes behind but no edge closes a cycle
            raise CycleBreakLimitError(
                "Cycle breaker found stuck nodes but no cycle edge to remove",
                errors=sorted(stuck),
            )
        drop = kept.pop(idx)
        removed.append(drop)
        iterations += 1
        _LOG.warning(
            "Cycle breaker removed edge %s -> %s (relation=%s, stuck=%d)",
            drop.source, drop.target, drop.relation, len(stuck),
        )

# ---- Leveling ----------------------------------------------------------------

def compute_levels(node_ids: Iterable[str], edges: Iterable[PrereqEdge]) -> Dict[str, int]:
    """
    Longest-prerequisite-chain depth per node, via memoized depth-first search.

    A prerequisite met while it is still being computed (only possible on a
    cycle) counts as level 0 and is logged at ERROR.
    """
    preds: Dict[str, List[str]] = defaultdict(list)
    for e in edges:
        preds[e.target].append(e.source)

    levels: Dict[str, int] = {}
    in_progress: Set[str] = set()
    for root in node_ids:
        if root in levels:
            continue
        stack: List[Tuple[str, bool]] = [(root, False)]
        while stack:
            u, expanded = stack.pop()
            if u in levels:
                continue
            if expanded:
                in_progress.discard(u)
                levels[u] = max((levels.get(p, 0) + 1 for p in preds.get(u, ())), default=0)
                continue
            in_progress.add(u)
            stack.append((u, True))
            for p in preds.get(u, ()):
                if p in levels:
                    continue
                if p in in_progress:
                    _LOG.error("Level guard hit: %s is its own prerequisite (via %s); graph is not a DAG", p, u)
                    continue
                stack.append((p, False))
    return levels


def assign_levels(graph: SkillGraph) -> Dict[str, int]:
    """Recompute every node's level in place; returns the id -> level map."""
    levels = compute_levels([n.id for n in graph.nodes], graph.edges)
    for n in graph.nodes:
        n.level = levels.get(n.id, 0)
    return levels

# ---- Export ------------------------------------------------------------------

def export_graphml(graph: SkillGraph, path: Union[str, Path]) -> str:
    """Export the graph to GraphML (.graphml), an XML format."""
    P = str(Path(path).absolute())
    Path(P).parent.mkdir(parents=True, exist_ok=True)
    H = to_nx(graph)
    # Ensure attributes are GraphML-friendly (no None)
    for _n, d in H.nodes(data=True):
        for k, v in list(d.items()):
            if v is None:
                d[k] = ""
    for _u, _v, d in H.edges(data=True):
        for k, val in list(d.items()):
            if val is None:
                d[k] = ""
    nx.write_graphml(H, P)
    return P
