"""skill_graph: keeps an incrementally generated skill prerequisite graph consistent."""

from .config import BatchConfig, MergeConfig, load_config
from .dedup import MergeDecision, NameOverlapMatcher, NodeMatcher, deduplicate
from .errors import (
    ConfigError,
    CycleBreakLimitError,
    FragmentParseError,
    GenerationError,
    InvariantViolation,
    MalformedFragmentError,
    MalformedNodeError,
    SkillGraphError,
)
from .merge import MergeResult, consolidate, fold, merge, merge_all
from .normalize import normalize_fragment, normalize_node
from .schemas import Fragment, PrereqEdge, SkillGraph, SkillNode
from .session import BatchProgress, MergeSession
from .validation import ValidationReport, check_invariants

__all__ = [
    "BatchConfig",
    "BatchProgress",
    "ConfigError",
    "CycleBreakLimitError",
    "Fragment",
    "FragmentParseError",
    "GenerationError",
    "InvariantViolation",
    "MalformedFragmentError",
    "MalformedNodeError",
    "MergeConfig",
    "MergeDecision",
    "MergeResult",
    "MergeSession",
    "NameOverlapMatcher",
    "NodeMatcher",
    "PrereqEdge",
    "SkillGraph",
    "SkillGraphError",
    "SkillNode",
    "ValidationReport",
    "check_invariants",
    "consolidate",
    "deduplicate",
    "fold",
    "load_config",
    "merge",
    "merge_all",
    "normalize_fragment",
    "normalize_node",
]
