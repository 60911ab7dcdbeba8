"""Exception types raised by the merge engine and its intake helpers."""

from __future__ import annotations

from typing import Any, Optional


class SkillGraphError(Exception):
    """Base class for every error raised by skill_graph."""


class MalformedNodeError(SkillGraphError, ValueError):
    """A fragment node is missing its mandatory id or name."""

    def __init__(self, message: str, *, raw: Any = None):
        super().__init__(message)
        self.raw = raw


class MalformedFragmentError(SkillGraphError, ValueError):
    """The collaborator payload is not a JSON object at all."""


class FragmentParseError(SkillGraphError, ValueError):
    def __init__(self, message: str, *, last_content: str = "", truncated: bool = False):
        super().__init__(message)
        self.last_content = last_content
        self.truncated = truncated


class InvariantViolation(SkillGraphError, RuntimeError):
    """A complete merge pass produced (or would produce) an inconsistent graph."""

    def __init__(self, message: str, *, errors: Optional[list] = None):
        super().__init__(message)
        self.errors = list(errors or [])


class CycleBreakLimitError(InvariantViolation):
    pass


class ConfigError(SkillGraphError, ValueError):
    pass


class GenerationError(SkillGraphError):
    """The fragment generator kept failing after all retries."""

    def __init__(self, message: str, *, batch_index: int, attempts: int, original: BaseException):
        super().__init__(message)
        self.batch_index = batch_index
        self.attempts = attempts
        self.original = original
