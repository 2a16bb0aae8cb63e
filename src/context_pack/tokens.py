"""Token counting: pluggable counters, per-file counting and batched scheduling."""

from __future__ import annotations

import asyncio
import functools
import math
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import tiktoken

from context_pack.classifier import is_binary
from context_pack.config import FileStat, TokenCountResult
from context_pack.logging import logger
from context_pack.paths import resolve_within_root
from context_pack.settings import DEFAULT_TOKEN_MODEL

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

APPROXIMATE_MODEL = "approx"
FALLBACK_ENCODING = "cl100k_base"
DEFAULT_BATCH_SIZE = 20
DEFAULT_BATCH_DELAY = 0.01


@runtime_checkable
class TokenCounter(Protocol):
    """Anything that turns text into an approximate token count."""

    def count_tokens(self, text: str) -> int: ...


class ApproximateTokenCounter:
    """Four characters per token, rounded up."""

    chars_per_token = 4

    def count_tokens(self, text: str) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / self.chars_per_token)


@functools.lru_cache(maxsize=8)
def _get_encoder(model_name: str) -> tiktoken.Encoding | None:
    """Get or create the tiktoken encoder for a model (cached per model)."""
    try:
        return tiktoken.encoding_for_model(model_name)
    except KeyError:
        logger.info("unknown_token_model", model=model_name, encoding=FALLBACK_ENCODING)
    except Exception as e:  # noqa: BLE001
        logger.warning("token_encoder_unavailable", model=model_name, error=str(e))
        return None
    try:
        return tiktoken.get_encoding(FALLBACK_ENCODING)
    except Exception as e:  # noqa: BLE001
        logger.warning("token_encoder_unavailable", model=model_name, error=str(e))
        return None


class TiktokenCounter:
    """Token counter backed by ``tiktoken``.

    When no encoder can be loaded (unknown model and no cached BPE data, or no
    network to fetch it) the counter degrades to ApproximateTokenCounter.
    """

    def __init__(self, model_name: str = DEFAULT_TOKEN_MODEL) -> None:
        self.model_name = model_name
        self._encoder = _get_encoder(model_name)
        self._fallback = ApproximateTokenCounter()

    @property
    def is_exact(self) -> bool:
        return self._encoder is not None

    def count_tokens(self, text: str) -> int:
        if not text:
            return 0
        if self._encoder is None:
            return self._fallback.count_tokens(text)
        try:
            return len(self._encoder.encode(text, disallowed_special=()))
        except (ValueError, TypeError) as e:
            logger.error("token_count_failed", model=self.model_name, error=str(e))
            return self._fallback.count_tokens(text)


def make_token_counter(model_name: str = DEFAULT_TOKEN_MODEL) -> TokenCounter:
    """Build the counter for a model name; ``approx`` selects the character heuristic."""
    if model_name.strip().lower() == APPROXIMATE_MODEL:
        return ApproximateTokenCounter()
    return TiktokenCounter(model_name)


def read_text(path: Path) -> str:
    """Read a file as UTF-8, keeping its line endings and replacing undecodable bytes."""
    with path.open(encoding="utf-8", errors="replace", newline="") as f:
        return f.read()


def count_files_tokens(root: Path | str, file_paths: Sequence[str], counter: TokenCounter) -> TokenCountResult:
    """Count tokens for several files of one root.

    Every requested path gets an entry in ``results``: 0 for paths outside
    the root, missing, binary or unreadable files. ``stats`` holds the size
    and mtime of every file that could be stat-ed, for cache validation.

    Args:
        root (Path | str): the root directory
        file_paths (Sequence[str]): paths relative to root
        counter (TokenCounter): the token counter

    Returns:
        TokenCountResult: counts and stats keyed by the requested path
    """
    results: dict[str, int] = {}
    stats: dict[str, FileStat] = {}
    for rel in file_paths:
        results[rel] = 0
        full = resolve_within_root(root, rel)
        if full is None:
            logger.warning("path_outside_root", path=rel, root=str(root))
            continue
        try:
            st = full.stat()
        except FileNotFoundError:
            logger.warning("file_not_found", path=rel)
            continue
        except OSError as e:
            logger.error("token_count_stat_failed", path=rel, error=str(e))
            continue
        stats[rel] = FileStat(mtime=st.st_mtime, size=st.st_size)
        if is_binary(full):
            logger.info("binary_file_skipped", path=rel)
            continue
        try:
            results[rel] = counter.count_tokens(read_text(full))
        except OSError as e:
            logger.error("token_count_read_failed", path=rel, error=str(e))
    return TokenCountResult(results=results, stats=stats)


@dataclass(frozen=True)
class CachedCount:
    tokens: int
    stat: FileStat | None = None


class TokenCountScheduler:
    """Count tokens for a large selection in batches without blocking the event loop.

    Each batch runs in a worker thread; between batches the scheduler sleeps
    ``delay`` seconds so other tasks get the loop. Counts are cached per path.
    Scheduling a new selection cancels the pending run, and a cancelled run
    never reports a total.

    Args:
        count_batch: callable counting one batch of relative paths, usually
            ``functools.partial(service.count_files_tokens, root)``
        batch_size: number of files per batch
        delay: pause between batches, in seconds
    """

    def __init__(
        self,
        count_batch: Callable[[list[str]], TokenCountResult],
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        delay: float = DEFAULT_BATCH_DELAY,
    ) -> None:
        if batch_size < 1:
            msg = "batch_size must be at least 1"
            raise ValueError(msg)
        self._count_batch = count_batch
        self.batch_size = batch_size
        self.delay = delay
        self._cache: dict[str, CachedCount] = {}
        self._task: asyncio.Task[int] | None = None

    @property
    def cache(self) -> dict[str, CachedCount]:
        return dict(self._cache)

    @property
    def pending(self) -> bool:
        """True while a scheduled run has not finished."""
        return self._task is not None and not self._task.done()

    def cached_total(self, paths: Sequence[str]) -> int:
        """Sum of the cached counts of ``paths`` (uncached paths count as 0)."""
        return sum(self._cache[p].tokens for p in paths if p in self._cache)

    def forget_stale(self, current: dict[str, FileStat]) -> list[str]:
        """Drop cached counts whose file size or mtime changed.

        Args:
            current: fresh stats keyed by path

        Returns:
            list[str]: the paths dropped from the cache
        """
        stale = [
            p
            for p, cached in self._cache.items()
            if p in current and cached.stat is not None and cached.stat != current[p]
        ]
        for p in stale:
            del self._cache[p]
        return stale

    def clear(self) -> None:
        self._cache.clear()

    async def run(
        self,
        paths: Sequence[str],
        on_progress: Callable[[int, int, int], None] | None = None,
    ) -> int:
        """Count every uncached path, batch by batch, and return the selection total.

        Args:
            paths: the selected paths
            on_progress: called after each batch with (running total, files
                counted so far, files to count)

        Returns:
            int: the token total of the whole selection
        """
        todo = [p for p in dict.fromkeys(paths) if p not in self._cache]
        done = 0
        for start in range(0, len(todo), self.batch_size):
            batch = todo[start : start + self.batch_size]
            result = await asyncio.to_thread(self._count_batch, batch)
            for p in batch:
                self._cache[p] = CachedCount(tokens=result.results.get(p, 0), stat=result.stats.get(p))
            done += len(batch)
            if on_progress is not None:
                on_progress(self.cached_total(paths), done, len(todo))
            if done < len(todo):
                await asyncio.sleep(self.delay)
        return self.cached_total(paths)

    def schedule(
        self,
        paths: Sequence[str],
        on_progress: Callable[[int, int, int], None] | None = None,
    ) -> asyncio.Task[int]:
        """Start counting a new selection, cancelling the previous one.

        Must be called from a running event loop.
        """
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(self.run(list(paths), on_progress))
        return self._task

    def cancel(self) -> bool:
        """Cancel the pending run, if any; return whether one was cancelled."""
        if self._task is None or self._task.done():
            self._task = None
            return False
        self._task.cancel()
        self._task = None
        logger.info("token_count_cancelled")
        return True
