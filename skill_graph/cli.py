# skill_graph/cli.py
"""
Offline driver for the merge engine.

  skillgraph merge frag1.json frag2.json ... [--base graph.json] [--out merged.json]
  skillgraph check merged.json

stdout carries one JSON object per line (PROGRESS per fragment, then DONE or
ERROR); logs go to stderr and, optionally, a log file.

Exit codes: 0 ok, 1 invariant failure, 2 unreadable input.
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from ._perf import AuditWriter
from .config import load_config
from .errors import ConfigError, FragmentParseError, InvariantViolation, MalformedFragmentError
from .fragment_io import graph_to_payload, load_graph_file, write_graph_file
from .graph_build import export_graphml
from .normalize import normalize_fragment
from .schemas import SkillGraph
from .session import MergeSession
from .validation import check_invariants

_LOG = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INVARIANT = 1
EXIT_BAD_INPUT = 2


def send_update(msg_type: str, flush: bool = True, **fields: Any) -> None:
    print(json.dumps({"type": msg_type, **fields}, ensure_ascii=False, default=str), flush=flush)


def _setup_logger(*, log_level: str, log_file: Optional[str], console: bool = True) -> logging.Logger:
    level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger("skill_graph")
    logger.setLevel(level)

    fmt = logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
    handlers: List[logging.Handler] = []

    if console:
        ch = logging.StreamHandler(sys.stderr)
        ch.setFormatter(fmt)
        ch.setLevel(level)
        handlers.append(ch)

    if log_file:
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setFormatter(fmt)
        fh.setLevel(level)
        handlers.append(fh)

    # Configure root with the same handlers so every skill_graph.* module logs once.
    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)
    for h in handlers:
        root.addHandler(h)

    return logger


def _read_graph(path: str) -> SkillGraph:
    graph, rep = normalize_fragment(load_graph_file(path))
    if not rep.ok():
        _LOG.warning(
            "%s: rejected %d node(s), %d edge(s), %d question(s)",
            path, len(rep.rejected_nodes), len(rep.rejected_edges), len(rep.rejected_questions),
        )
    return graph


# --- Commands ---

def cmd_merge(args: argparse.Namespace) -> int:
    merge_cfg, _batch_cfg = load_config(args.env_file)
    overrides: Dict[str, Any] = {}
    if args.threshold is not None:
        overrides["overlap_threshold"] = args.threshold
    if args.allow_cross_tier:
        overrides["require_same_tier"] = False
    if args.verify:
        overrides["verify_invariants"] = True
    if overrides:
        merge_cfg = dataclasses.replace(merge_cfg, **overrides)

    base = _read_graph(args.base) if args.base else None
    session = MergeSession(base=base, total_batches=len(args.fragments), config=merge_cfg)

    for path in args.fragments:
        progress = session.add(load_graph_file(path))
        send_update("PROGRESS", file=path, **progress.to_dict())

    result = session.finish()

    if args.audit_file:
        AuditWriter(args.audit_file).write_all(result.audit_events())

    done: Dict[str, Any] = {"summary": result.summary(), "timings_ms": result.timings}
    if args.out:
        done["out"] = write_graph_file(result.graph, args.out, wire=(args.payload_format == "wire"))
    elif args.payload_format == "wire":
        done["graph"] = graph_to_payload(result.graph)
    else:
        done["graph"] = result.graph.model_dump(mode="json")
    if args.graphml:
        done["graphml"] = export_graphml(result.graph, args.graphml)

    send_update("DONE", **done)
    return EXIT_OK


def cmd_check(args: argparse.Namespace) -> int:
    rep = check_invariants(_read_graph(args.graph))
    send_update("CHECK", ok=rep.ok(), errors=rep.errors, warnings=rep.warnings, stats=rep.stats)
    return EXIT_OK if rep.ok() else EXIT_INVARIANT


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="skillgraph", description="Merge and check skill prerequisite graphs.")
    parser.add_argument("--log-level", default="INFO", help="DEBUG|INFO|WARNING|ERROR")
    parser.add_argument("--log-file", default=None, help="Also write logs to this file.")
    parser.add_argument("--env-file", default=None, help="Load SKILLGRAPH_* settings from this .env file.")
    sub = parser.add_subparsers(dest="command", required=True)

    m = sub.add_parser("merge", help="Merge fragment files, in order, into one consistent graph.")
    m.add_argument("fragments", nargs="+", help="Fragment JSON files, merged in the order given.")
    m.add_argument("--base", default=None, help="Previously merged graph to extend.")
    m.add_argument("--out", default=None, help="Write the merged graph here (default: inline in DONE line).")
    m.add_argument("--payload-format", choices=["canonical", "wire"], default="canonical",
                   help="canonical = snake_case model dump; wire = collaborator camelCase shape.")
    m.add_argument("--graphml", default=None, help="Also export GraphML to this path.")
    m.add_argument("--audit-file", default=None, help="Append JSONL merge decisions / removed edges here.")
    m.add_argument("--threshold", type=float, default=None, help="Name-overlap ratio for duplicate skills.")
    m.add_argument("--allow-cross-tier", action="store_true", help="Let overlap matches span tiers.")
    m.add_argument("--verify", action="store_true", help="Re-check every invariant after merging.")
    m.set_defaults(func=cmd_merge)

    c = sub.add_parser("check", help="Verify the invariants of a merged graph.")
    c.add_argument("graph", help="Merged graph JSON file.")
    c.set_defaults(func=cmd_check)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    _setup_logger(log_level=args.log_level, log_file=args.log_file)
    try:
        return args.func(args)
    except (OSError, FragmentParseError, MalformedFragmentError, ConfigError) as e:
        _LOG.error("Unreadable input: %s", e)
        send_update("ERROR", error=str(e), kind=type(e).__name__)
        return EXIT_BAD_INPUT
    except InvariantViolation as e:
        _LOG.error("Merge failed: %s", e)
        send_update("ERROR", error=str(e), kind=type(e).__name__, details=e.errors[:50])
        return EXIT_INVARIANT


if __name__ == "__main__":
    sys.exit(main())
