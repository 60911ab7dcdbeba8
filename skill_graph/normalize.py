"""
Fragment normalizer.

Turns the (possibly partial, possibly malformed) JSON-shaped payload returned by
the graph-generation collaborator into a canonical SkillGraph. Every node comes
out fully populated; nodes and edges that cannot be recovered are rejected,
logged, and listed in the FragmentReport.

Both the canonical snake_case keys and the collaborator's camelCase keys are
understood:

    nodes | globalNodes
    questions | questionPaths            (value: [ids] or {executionOrder|requiredNodes: [ids]})
    edge.source | edge.from,  edge.target | edge.to
    edge.relation | edge.relationshipType
    node.contexts | node.transferableContexts
    node.required_by | node.appearsInQuestions | node.knowledgePoint.appearsInQuestions
    node.mastery | node.cme,  node.effort | node.le
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from pydantic import ValidationError

from .errors import MalformedFragmentError, MalformedNodeError
from .schemas import (
    DEFAULT_RELATION,
    DEFAULT_TIER,
    RELATION_KINDS,
    TIER_ORDER,
    EffortEstimate,
    MasteryEvidence,
    PrereqEdge,
    SkillGraph,
    SkillNode,
)

_LOG = logging.getLogger(__name__)

_MASTERY_KEYS = {
    "measured": "measured",
    "highestConceptLevel": "highest_concept_level",
    "levelLabels": "level_labels",
    "independence": "independence",
    "retention": "retention",
    "evidenceByLevel": "evidence_by_level",
}

_EFFORT_KEYS = {
    "estimated": "estimated",
    "estimatedMinutes": "estimated_minutes",
    "measuredMinutes": "measured_minutes",
}


@dataclass
class FragmentReport:
    rejected_nodes: List[Dict[str, Any]] = field(default_factory=list)
    rejected_edges: List[Dict[str, Any]] = field(default_factory=list)
    rejected_questions: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def ok(self) -> bool:
        return not (self.rejected_nodes or self.rejected_edges or self.rejected_questions)


# --- Helpers to canonicalize/guard JSON fields ---

def _as_str_id(x: Any) -> str:
    if isinstance(x, bool):
        raise ValueError(f"Unsupported id type: {type(x)}")
    if isinstance(x, (int, float)):  # keep ints like 0,1 as "0","1"
        if isinstance(x, float) and not x.is_integer():
            raise ValueError(f"Non-integer numeric id '{x}' not allowed.")
        return str(int(x))
    if isinstance(x, str):
        sx = x.strip()
        if not sx:
            raise ValueError("Blank id not allowed.")
        return sx
    raise ValueError(f"Unsupported id type: {type(x)}")


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for k in keys:
        if k in raw and raw[k] is not None:
            return raw[k]
    return None


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return dedupe([str(v).strip() for v in value if v is not None and str(v).strip()])


def dedupe(items: Iterable[str]) -> List[str]:
    """Order-preserving de-duplication."""
    seen = set()
    out: List[str] = []
    for it in items:
        if it not in seen:
            seen.add(it)
            out.append(it)
    return out


def _canon_tier(raw_tier: Any, nid: str) -> str:
    if raw_tier is None:
        return DEFAULT_TIER
    t = str(raw_tier).strip().lower()
    if t in TIER_ORDER:
        return t
    _LOG.warning("Node %s: unknown tier %r, using %r", nid, raw_tier, DEFAULT_TIER)
    return DEFAULT_TIER


def _canon_relation(raw_rel: Any) -> str:
    if raw_rel is None:
        return DEFAULT_RELATION
    r = str(raw_rel).strip().lower()
    return r if r in RELATION_KINDS else DEFAULT_RELATION


def _sub_record(model, raw: Any, key_map: Dict[str, str], nid: str):
    if not isinstance(raw, Mapping):
        return model()
    data = {key_map.get(k, k): v for k, v in raw.items() if key_map.get(k, k) in model.model_fields}
    try:
        return model(**data)
    except ValidationError as e:
        _LOG.warning("Node %s: invalid %s (%s), using defaults", nid, model.__name__, e.error_count())
        return model()


# --- Public API ---

def normalize_node(raw: Any) -> SkillNode:
    """
    Fill every optional field of a partial node. Only id and name are mandatory;
    anything else missing is defaulted (tier 'core', empty description, unmeasured
    mastery evidence, estimated effort, no contexts).
    """
    if isinstance(raw, SkillNode):
        return raw.model_copy(deep=True)
    if not isinstance(raw, Mapping):
        raise MalformedNodeError(f"node is not an object: {type(raw).__name__}", raw=raw)

    try:
        nid = _as_str_id(raw.get("id"))
    except ValueError as e:
        raise MalformedNodeError(f"node id error: {e}", raw=raw) from e

    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raise MalformedNodeError(f"node {nid!r} has no name", raw=raw)

    kp = raw.get("knowledgePoint")
    required_by = _first(raw, "required_by", "appearsInQuestions")
    if required_by is None and isinstance(kp, Mapping):
        required_by = kp.get("appearsInQuestions")

    level = raw.get("level")
    if isinstance(level, bool) or not isinstance(level, int) or level < 0:
        level = 0

    description = raw.get("description")
    if description is None:
        description = ""
    elif not isinstance(description, str):
        description = str(description)

    return SkillNode(
        id=nid,
        name=name.strip(),
        tier=_canon_tier(raw.get("tier"), nid),
        level=level,
        description=description,
        contexts=_str_list(_first(raw, "contexts", "transferableContexts")),
        required_by=_str_list(required_by),
        mastery=_sub_record(MasteryEvidence, _first(raw, "mastery", "cme"), _MASTERY_KEYS, nid),
        effort=_sub_record(EffortEstimate, _first(raw, "effort", "le"), _EFFORT_KEYS, nid),
    )


def normalize_edge(raw: Any) -> PrereqEdge:
    if isinstance(raw, PrereqEdge):
        return raw.model_copy()
    if not isinstance(raw, Mapping):
        raise ValueError(f"edge is not an object: {type(raw).__name__}")
    src = _as_str_id(_first(raw, "source", "from"))
    dst = _as_str_id(_first(raw, "target", "to"))
    reason = raw.get("reason")
    return PrereqEdge(
        source=src,
        target=dst,
        reason=reason if isinstance(reason, str) else "",
        relation=_canon_relation(_first(raw, "relation", "relationshipType")),
    )


def question_skill_ids(value: Any) -> List[str]:
    """Accept a bare id list or a path object ({executionOrder|requiredNodes: [...]})."""
    if isinstance(value, Mapping):
        value = _first(value, "executionOrder", "requiredNodes", "skills")
    if not isinstance(value, (list, tuple)):
        raise ValueError("question path must be a list of skill ids")
    out: List[str] = []
    for v in value:
        try:
            out.append(_as_str_id(v))
        except ValueError:
            continue
    return dedupe(out)


def normalize_fragment(payload: Any) -> Tuple[SkillGraph, FragmentReport]:
    rep = FragmentReport()
    if isinstance(payload, SkillGraph):
        return payload.model_copy(deep=True), rep
    if not isinstance(payload, Mapping):
        raise MalformedFragmentError(f"fragment must be a JSON object, got {type(payload).__name__}")

    raw_nodes = _first(payload, "nodes", "globalNodes") or []
    raw_edges = payload.get("edges") or []
    raw_questions = _first(payload, "questions", "questionPaths") or {}
    if not isinstance(raw_nodes, list):
        raise MalformedFragmentError("fragment 'nodes' must be a list")
    if not isinstance(raw_edges, list):
        raise MalformedFragmentError("fragment 'edges' must be a list")
    if not isinstance(raw_questions, Mapping):
        raise MalformedFragmentError("fragment 'questions' must be an object")

    nodes: Dict[str, SkillNode] = {}
    for i, rn in enumerate(raw_nodes):
        try:
            node = normalize_node(rn)
        except MalformedNodeError as e:
            # collaborator contract violation: reject loudly, keep going
            _LOG.warning("Rejected fragment node [%d]: %s", i, e)
            rep.rejected_nodes.append({"index": i, "reason": str(e), "raw": rn})
            continue
        if node.id in nodes:
            first = nodes[node.id]
            first.required_by = dedupe(first.required_by + node.required_by)
            rep.warnings.append(f"Duplicate node id {node.id!r} inside fragment; kept first")
            continue
        nodes[node.id] = node

    edges: List[PrereqEdge] = []
    for i, re_ in enumerate(raw_edges):
        try:
            edges.append(normalize_edge(re_))
        except (ValueError, ValidationError) as e:
            _LOG.warning("Rejected fragment edge [%d]: %s", i, e)
            rep.rejected_edges.append({"index": i, "reason": str(e), "raw": re_})

    questions: Dict[str, List[str]] = {}
    for q, path in raw_questions.items():
        qtext = str(q).strip()
        try:
            ids = question_skill_ids(path)
        except ValueError as e:
            _LOG.warning("Rejected question association %r: %s", qtext[:80], e)
            rep.rejected_questions.append(qtext)
            continue
        if not qtext or not ids:
            continue
        questions[qtext] = ids
        for sid in ids:
            n = nodes.get(sid)
            if n is not None and qtext not in n.required_by:
                n.required_by.append(qtext)

    return SkillGraph(nodes=list(nodes.values()), edges=edges, questions=questions), rep
