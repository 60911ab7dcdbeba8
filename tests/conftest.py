import logging
from typing import Any, Dict, Iterable, List, Optional

import pytest

from skill_graph.schemas import PrereqEdge, SkillGraph, SkillNode


def raw_node(nid: str, name: Optional[str] = None, tier: str = "core", **extra: Any) -> Dict[str, Any]:
    d = {"id": nid, "name": name if name is not None else nid.replace("_", " ").title(), "tier": tier}
    d.update(extra)
    return d


def raw_edge(src: str, dst: str, relation: str = "requires", reason: str = "") -> Dict[str, Any]:
    return {"source": src, "target": dst, "relation": relation, "reason": reason}


def raw_fragment(
    nodes: Iterable[Dict[str, Any]] = (),
    edges: Iterable[Dict[str, Any]] = (),
    questions: Optional[Dict[str, List[str]]] = None,
) -> Dict[str, Any]:
    return {"nodes": list(nodes), "edges": list(edges), "questions": dict(questions or {})}


def make_graph(
    nodes: Iterable[Any],
    edges: Iterable[tuple] = (),
    questions: Optional[Dict[str, List[str]]] = None,
) -> SkillGraph:
    """nodes: ids or (id, level) pairs; edges: (source, target[, relation]) tuples."""
    ns = []
    for n in nodes:
        nid, level = (n, 0) if isinstance(n, str) else n
        ns.append(SkillNode(id=nid, name=nid, level=level))
    es = [PrereqEdge(source=e[0], target=e[1], relation=e[2] if len(e) > 2 else "requires") for e in edges]
    return SkillGraph(nodes=ns, edges=es, questions=dict(questions or {}))


def edge_keys(graph_or_edges) -> List[tuple]:
    edges = graph_or_edges.edges if isinstance(graph_or_edges, SkillGraph) else graph_or_edges
    return [e.key for e in edges]


@pytest.fixture
def restore_root_logging():
    root = logging.getLogger()
    pkg = logging.getLogger("skill_graph")
    handlers = list(root.handlers)
    level, pkg_level = root.level, pkg.level
    yield
    pkg.setLevel(pkg_level)
    for h in list(root.handlers):
        if h not in handlers:
            root.removeHandler(h)
    for h in handlers:
        if h not in root.handlers:
            root.addHandler(h)
    root.setLevel(level)
