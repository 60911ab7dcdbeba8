"""skill_graph.fragment_io

Reading collaborator output and writing the persistence hand-off payload.

LLM responses arrive as text that is *usually* a JSON object, but often wrapped in
code fences, sprinkled with smart quotes or trailing commas, or cut off at the
token limit. parse_fragment_text() recovers what it can and raises
FragmentParseError (with .truncated set) when it cannot.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Union

from .errors import FragmentParseError
from .schemas import SkillGraph

_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def _strip_code_fences(s: str) -> str:
    s = s.strip()
    s = re.sub(r"```(?:json)?\s*", "", s, flags=re.I)
    return s.replace("```", "").strip()


def _normalize_jsonish_text(s: str) -> str:
    s = s.replace("﻿", "")  # BOM
    # common “smart quotes” that break JSON
    s = s.replace("“", '"').replace("”", '"').replace("’", "'").replace("‘", "'")
    return s


def _json_extract_object(text: str) -> str:
    """Extract the first balanced JSON object; if it never closes, return the tail from '{'."""
    start = text.find("{")
    if start < 0:
        raise FragmentParseError("No JSON object start found", last_content=text[:500])

    depth = 0
    in_str = False
    esc = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_str:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return text[start:]


def is_likely_truncated(text: str) -> bool:
    return text.count("{") != text.count("}") or text.count("[") != text.count("]")


def repair_truncated_json(text: str) -> Any:
    """
    Close a JSON document that was cut off mid-stream: drop the dangling partial
    token after the last complete value, then append the missing ']' / '}'.
    Returns the parsed value or raises ValueError.
    """
    stack: List[str] = []
    in_str = False
    esc = False
    last_complete = 0
    for i, ch in enumerate(text):
        if in_str:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch in "{[":
            stack.append(ch)
        elif ch in "}]":
            if stack:
                stack.pop()
            last_complete = i + 1
        elif ch == ",":
            last_complete = i

    # Everything after the last closed container / separator is partial.
    repaired = text[:last_complete].rstrip().rstrip(",")
    # Recount what is still open in the kept prefix.
    stack = []
    in_str = False
    esc = False
    for ch in repaired:
        if in_str:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch in "{[":
            stack.append(ch)
        elif ch in "}]" and stack:
            stack.pop()
    for opener in reversed(stack):
        repaired += "]" if opener == "[" else "}"
    repaired = _TRAILING_COMMA.sub(r"\1", repaired)
    return json.loads(repaired)


def parse_fragment_text(text: str) -> Dict[str, Any]:
    if not text or not text.strip():
        raise FragmentParseError("Empty response")

    cleaned = _json_extract_object(_strip_code_fences(_normalize_jsonish_text(text)))
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        cleaned = _CONTROL_CHARS.sub("", _TRAILING_COMMA.sub(r"\1", cleaned))
        try:
            parsed = json.loads(cleaned, strict=False)
        except json.JSONDecodeError as second:
            if not is_likely_truncated(cleaned):
                raise FragmentParseError(
                    f"Failed to parse response as JSON: {second}", last_content=cleaned[-500:]
                ) from second
            try:
                parsed = repair_truncated_json(cleaned)
            except ValueError as e:
                raise FragmentParseError(
                    "Response appears truncated (incomplete JSON); try a smaller batch.",
                    last_content=cleaned[-500:],
                    truncated=True,
                ) from e

    if not isinstance(parsed, dict):
        raise FragmentParseError("Top-level JSON value is not an object", last_content=cleaned[:500])
    return parsed


def load_graph_file(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a fragment / merged-graph JSON file (raw payload, not yet normalized)."""
    text = Path(path).read_text(encoding="utf-8")
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        data = parse_fragment_text(text)
    if not isinstance(data, dict):
        raise FragmentParseError(f"{path}: top-level JSON value is not an object")
    return data


def graph_to_payload(graph: SkillGraph) -> Dict[str, Any]:
    """Render the graph in the collaborator's camelCase wire shape."""
    nodes = []
    for n in graph.nodes:
        nodes.append({
            "id": n.id,
            "name": n.name,
            "level": n.level,
            "tier": n.tier,
            "description": n.description,
            "transferableContexts": list(n.contexts),
            "knowledgePoint": {"appearsInQuestions": list(n.required_by)},
            "cme": {
                "measured": n.mastery.measured,
                "highestConceptLevel": n.mastery.highest_concept_level,
                "levelLabels": list(n.mastery.level_labels),
                "independence": n.mastery.independence,
                "retention": n.mastery.retention,
                "evidenceByLevel": {str(k): v for k, v in n.mastery.evidence_by_level.items()},
            },
            "le": {
                "estimated": n.effort.estimated,
                "estimatedMinutes": n.effort.estimated_minutes,
                **({"measuredMinutes": n.effort.measured_minutes} if n.effort.measured_minutes is not None else {}),
            },
        })
    return {
        "globalNodes": nodes,
        "edges": [
            {"from": e.source, "to": e.target, "reason": e.reason, "relationshipType": e.relation}
            for e in graph.edges
        ],
        "questionPaths": {q: list(ids) for q, ids in graph.questions.items()},
    }


def write_graph_file(graph: SkillGraph, path: Union[str, Path], *, wire: bool = False) -> str:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    data = graph_to_payload(graph) if wire else graph.model_dump(mode="json")
    out.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
    return str(out)
