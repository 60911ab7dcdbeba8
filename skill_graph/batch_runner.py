"""
Sequential batch driver around an external fragment generator.

    fetch fragment (retryable, rate limited) -> fold -> report progress
    -> checkpoint -> sleep between batches -> ... -> consolidate once

Fetching is the only awaitable step. Folding and the final consolidate pass are
CPU-only and always run in question order, so the output does not depend on
how long each generator call took.

Retry policy:
  - Rate limits wait for the retry-after hint when the error carries one,
    otherwise rate_limit_backoff_s * 2**(attempt-1)  (30s, 60s, 120s ...).
  - Other transient failures (timeouts, connection errors, 5xx, unparseable
    output) wait retry_delay_s.
  - Anything else propagates immediately.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, Union

from ._perf import timed
from .config import BatchConfig, MergeConfig
from .dedup import NodeMatcher
from .errors import FragmentParseError, GenerationError
from .fragment_io import parse_fragment_text
from .merge import MergeResult
from .schemas import SkillGraph
from .session import BatchProgress, MergeSession, clear_checkpoint, load_checkpoint, save_checkpoint

_LOG = logging.getLogger(__name__)


class FragmentGenerator(Protocol):
    async def generate(self, questions: List[str], known_skills: List[Dict[str, str]]) -> Any:
        """Return a fragment payload (mapping) or the raw response text."""
        ...


@dataclass
class BatchOutcome:
    progress: BatchProgress
    result: Optional[MergeResult] = None
    aborted: bool = False
    checkpoint: Optional[Dict[str, Any]] = None
    attempts: List[int] = field(default_factory=list)   # generator calls per batch

    @property
    def completed(self) -> bool:
        return self.result is not None


# --- Error classification ---

def _http_status(exc: BaseException) -> Optional[int]:
    for obj in (exc, getattr(exc, "response", None), getattr(exc, "__cause__", None)):
        if obj is None:
            continue
        for attr in ("status", "status_code"):
            v = getattr(obj, attr, None)
            if isinstance(v, int):
                return v
    return None


def _is_rate_limit_error(exc: BaseException) -> bool:
    if _http_status(exc) == 429:
        return True
    name = type(exc).__name__.lower()
    msg = str(exc).lower()
    if "ratelimit" in name or "rate_limit" in name:
        return True
    if "rate limit" in msg or "too many requests" in msg:
        return True
    if "error code: 429" in msg or (" 429" in msg and "limit" in msg):
        return True
    return False


def _extract_retry_after_seconds(exc: BaseException) -> Optional[float]:
    """Best-effort parse of retry-after hints across SDKs/wrappers."""
    for attr in ("retry_after", "retry_after_seconds", "retry_after_s"):
        v = getattr(exc, attr, None)
        if isinstance(v, (int, float)) and not isinstance(v, bool) and v > 0:
            return float(v)

    headers = getattr(exc, "headers", None)
    resp = getattr(exc, "response", None)
    if headers is None and resp is not None:
        headers = getattr(resp, "headers", None)
    if isinstance(headers, dict):
        ra = headers.get("retry-after") or headers.get("Retry-After")
        if ra is not None:
            try:
                return float(ra)
            except (TypeError, ValueError):
                pass

    msg = str(exc)
    # e.g., "Please try again in 20s."
    m = re.search(r"try again in\s*(\d+(?:\.\d+)?)\s*s", msg, flags=re.I)
    if m:
        return float(m.group(1))
    # e.g., "retry after 10"
    m = re.search(r"retry\s*after\s*(\d+(?:\.\d+)?)", msg, flags=re.I)
    if m:
        return float(m.group(1))
    return None


def _is_retryable_error(exc: BaseException) -> bool:
    if _is_rate_limit_error(exc):
        return True
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError, FragmentParseError)):
        return True

    name = type(exc).__name__.lower()
    msg = str(exc).lower()
    if "timeout" in name or "timed out" in msg:
        return True
    if "connection" in name or "connection" in msg:
        return True
    if "temporarily unavailable" in msg or "service unavailable" in msg:
        return True
    status = _http_status(exc)
    if status in (500, 502, 503, 504):
        return True
    if "error code: 502" in msg or "error code: 503" in msg or "error code: 504" in msg:
        return True
    return False


def _retry_wait_s(exc: BaseException, attempt: int, cfg: BatchConfig) -> float:
    if _is_rate_limit_error(exc):
        hint = _extract_retry_after_seconds(exc)
        if hint is not None:
            return hint
        return float(cfg.rate_limit_backoff_s) * (2 ** (attempt - 1))
    return float(cfg.retry_delay_s)


# --- Driver ---

def split_batches(questions: Sequence[str], batch_size: int) -> List[List[str]]:
    size = max(1, int(batch_size))
    return [list(questions[i : i + size]) for i in range(0, len(questions), size)]


async def fetch_fragment(
    generator: FragmentGenerator,
    batch: List[str],
    known_skills: List[Dict[str, str]],
    *,
    batch_index: int,
    cfg: BatchConfig,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> tuple:
    """Call the generator with retries. Returns (payload, attempts)."""
    attempts = max(1, int(cfg.max_retries))
    for attempt in range(1, attempts + 1):
        try:
            with timed(_LOG, "batch.generate", warn_ms=60_000, batch=batch_index, attempt=attempt, questions=len(batch)):
                payload = await generator.generate(list(batch), known_skills)
            if isinstance(payload, str):
                payload = parse_fragment_text(payload)
            return payload, attempt
        except Exception as e:
            if not _is_retryable_error(e):
                raise
            if attempt >= attempts:
                raise GenerationError(
                    f"Batch {batch_index + 1} failed after {attempt} attempts: {type(e).__name__}: {e}",
                    batch_index=batch_index,
                    attempts=attempt,
                    original=e,
                ) from e

            wait_s = _retry_wait_s(e, attempt, cfg)
            emsg = str(e).replace("\n", " ")
            if len(emsg) > 300:
                emsg = emsg[:300] + "…"
            _LOG.warning(
                "Generator retrying batch %d (attempt %s/%s, wait %.2fs): %s: %s",
                batch_index + 1, attempt, attempts, wait_s, type(e).__name__, emsg,
            )
            await sleep(wait_s)

    # Should never reach here
    raise RuntimeError("Generator retry loop ended without a result")


async def run_batches(
    questions: Sequence[str],
    generator: FragmentGenerator,
    *,
    base: Optional[SkillGraph] = None,
    config: Optional[MergeConfig] = None,
    batch_config: Optional[BatchConfig] = None,
    matcher: Optional[NodeMatcher] = None,
    on_progress: Optional[Callable[[BatchProgress], None]] = None,
    should_abort: Optional[Callable[[], bool]] = None,
    checkpoint_path: Optional[Union[str, Path]] = None,
    resume: bool = False,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> BatchOutcome:
    config = config or MergeConfig()
    bcfg = batch_config or BatchConfig()

    session: Optional[MergeSession] = None
    if resume and checkpoint_path is not None:
        data = load_checkpoint(checkpoint_path)
        if data is not None:
            session = MergeSession.restore(
                data, max_age_s=bcfg.checkpoint_max_age_s, config=config, matcher=matcher
            )
        if session is not None:
            questions = session.questions

    batches = split_batches(questions, bcfg.batch_size)
    if session is None:
        session = MergeSession(
            base=base, total_batches=len(batches), config=config,
            questions=list(questions), matcher=matcher,
        )

    attempts: List[int] = []
    for i in range(session.processed_batches, len(batches)):
        if should_abort is not None and should_abort():
            cp = session.checkpoint()
            if checkpoint_path is not None:
                save_checkpoint(cp, checkpoint_path)
            _LOG.info("Run paused: %d of %d batches completed", i, len(batches))
            return BatchOutcome(progress=session.progress(), aborted=True, checkpoint=cp, attempts=attempts)

        payload, n = await fetch_fragment(
            generator, batches[i], session.known_skills(), batch_index=i, cfg=bcfg, sleep=sleep
        )
        attempts.append(n)
        progress = session.add(payload)
        if on_progress is not None:
            on_progress(progress)
        if checkpoint_path is not None:
            save_checkpoint(session.checkpoint(), checkpoint_path)

        if i < len(batches) - 1:
            await sleep(float(bcfg.batch_delay_s))

    result = session.finish()
    if checkpoint_path is not None:
        clear_checkpoint(checkpoint_path)
    return BatchOutcome(progress=session.progress(), result=result, attempts=attempts)
