"""Glob pattern compilation and matching.

A pattern without glob metacharacters is kept as a :class:`SimplePattern` and
matched by exact or path-suffix comparison. Anything else is compiled once into
a :class:`CompiledPattern` with these semantics:

- ``*`` matches within one path segment, ``**`` across zero or more segments;
- ``?`` matches one character, ``[...]`` is a character class (``!`` or ``^``
  negates), ``{a,b}`` and ``{1..3}`` expand to alternatives;
- wildcards match dotfiles;
- a pattern without ``/`` is also tried against the path's basename;
- a trailing ``/`` (``build/``) matches a directory of that name and
  everything beneath it, never a file of that name;
- a trailing ``/**`` matches the path itself and everything beneath it.

A malformed pattern never raises. It becomes a never-matching
:class:`CompiledPattern` so the remaining patterns still apply.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import TYPE_CHECKING, ClassVar

from context_pack.logging import logger
from context_pack.paths import normalize_path

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

GLOB_CHARS = frozenset("*?[{")
_BRACE_RANGE = re.compile(r"^(-?\d+)\.\.(-?\d+)$")
_MAX_BRACE_EXPANSION = 1024


class PatternSyntaxError(ValueError):
    """Raised internally when a glob cannot be translated."""


@dataclass(frozen=True)
class SimplePattern:
    """Literal pattern matched by equality or as a trailing path suffix."""

    text: str
    is_simple: ClassVar[bool] = True

    def matches(self, path: str, *, is_directory: bool = False) -> bool:  # noqa: ARG002
        """Check the path against the literal text."""
        return path == self.text or path.endswith("/" + self.text)


@dataclass(frozen=True)
class CompiledPattern:
    """Wildcard pattern compiled to anchored regular expressions.

    Attributes:
        text: the source pattern
        regexes: one regex per brace alternative; empty when the pattern is malformed
        match_base: whether the basename of a path is also tried
        directory_only: whether the pattern ends with ``/`` and so matches
            directories (and their contents) only
    """

    text: str
    regexes: tuple[re.Pattern[str], ...]
    match_base: bool = False
    directory_only: bool = False
    is_simple: ClassVar[bool] = False

    @property
    def is_valid(self) -> bool:
        """False for a malformed pattern that never matches."""
        return bool(self.regexes)

    def matches(self, path: str, *, is_directory: bool = False) -> bool:
        """Check the path, and its basename when basename matching applies.

        A directory-only pattern matches a file solely through one of the
        file's parent directories.
        """
        if self.directory_only and not is_directory:
            return any(self._matches(path[:i]) for i, c in enumerate(path) if c == "/" and i > 0)
        return self._matches(path)

    def _matches(self, path: str) -> bool:
        if any(rx.fullmatch(path) for rx in self.regexes):
            return True
        if self.match_base and "/" in path:
            base = path.rsplit("/", 1)[1]
            return any(rx.fullmatch(base) for rx in self.regexes)
        return False


Pattern = SimplePattern | CompiledPattern


def is_simple_text(text: str) -> bool:
    """Whether a pattern string can be matched literally."""
    return not any(c in GLOB_CHARS for c in text) and not text.endswith("/")


def _find_closing_brace(text: str, start: int) -> int:
    depth = 0
    i = start
    while i < len(text):
        c = text[i]
        if c == "\\":
            i += 2
            continue
        if c == "{":
            depth += 1
        elif c == "}":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return -1


def _split_top_level(body: str) -> list[str]:
    parts: list[str] = []
    depth = 0
    cur: list[str] = []
    i = 0
    while i < len(body):
        c = body[i]
        if c == "\\" and i + 1 < len(body):
            cur.append(body[i : i + 2])
            i += 2
            continue
        if c == "{":
            depth += 1
        elif c == "}":
            depth -= 1
        elif c == "," and depth == 0:
            parts.append("".join(cur))
            cur = []
            i += 1
            continue
        cur.append(c)
        i += 1
    parts.append("".join(cur))
    return parts


def _brace_alternatives(body: str) -> list[str] | None:
    rng = _BRACE_RANGE.match(body)
    if rng:
        lo, hi = int(rng.group(1)), int(rng.group(2))
        step = 1 if hi >= lo else -1
        return [str(n) for n in range(lo, hi + step, step)]
    parts = _split_top_level(body)
    if len(parts) < 2:  # noqa: PLR2004
        return None
    return parts


def expand_braces(text: str) -> list[str]:
    """Expand ``{a,b}`` alternations and ``{1..3}`` ranges.

    Braces that are unbalanced or hold a single alternative are kept
    literally, as shells and most glob libraries do.

    Args:
        text (str): the pattern to expand

    Returns:
        list[str]: the expanded patterns, in order of appearance
    """
    i = 0
    while i < len(text):
        c = text[i]
        if c == "\\":
            i += 2
            continue
        if c == "{":
            end = _find_closing_brace(text, i)
            if end == -1:
                return [text]
            alternatives = _brace_alternatives(text[i + 1 : end])
            if alternatives is None:
                # literal braces: keep scanning after them
                rest = expand_braces(text[end + 1 :])
                head = text[: end + 1]
                return [head + r for r in rest]
            prefix, suffix = text[:i], text[end + 1 :]
            out: list[str] = []
            for alt in alternatives:
                out.extend(expand_braces(prefix + alt + suffix))
                if len(out) > _MAX_BRACE_EXPANSION:
                    msg = f"brace expansion of {text!r} is too large"
                    raise PatternSyntaxError(msg)
            return out
        i += 1
    return [text]


def _translate_class(segment: str, start: int) -> tuple[str, int]:
    i = start + 1
    negate = i < len(segment) and segment[i] in "!^"
    if negate:
        i += 1
    body_start = i
    # a ']' right after the opening (or negation) is literal
    if i < len(segment) and segment[i] == "]":
        i += 1
    while i < len(segment) and segment[i] != "]":
        i += 2 if segment[i] == "\\" else 1
    if i >= len(segment):
        msg = f"unbalanced '[' in {segment!r}"
        raise PatternSyntaxError(msg)
    body = segment[body_start:i]
    out: list[str] = []
    j = 0
    while j < len(body):
        c = body[j]
        if c == "\\" and j + 1 < len(body):
            out.append(re.escape(body[j + 1]))
            j += 2
            continue
        if c == "-" and 0 < j < len(body) - 1:
            out.append("-")
        else:
            out.append(re.escape(c))
        j += 1
    inner = "".join(out)
    regex = f"[^/{inner}]" if negate else f"(?!/)[{inner}]"
    return regex, i + 1


def _translate_segment(segment: str) -> str:
    out: list[str] = []
    i = 0
    while i < len(segment):
        c = segment[i]
        if c == "*":
            while i < len(segment) and segment[i] == "*":
                i += 1
            out.append("[^/]*")
            continue
        if c == "?":
            out.append("[^/]")
        elif c == "[":
            cls, i = _translate_class(segment, i)
            out.append(cls)
            continue
        elif c == "\\" and i + 1 < len(segment):
            out.append(re.escape(segment[i + 1]))
            i += 2
            continue
        else:
            out.append(re.escape(c))
        i += 1
    return "".join(out)


def glob_to_regex(text: str) -> str:
    """Translate one brace-free glob into an anchored-by-fullmatch regex source.

    Args:
        text (str): the glob, POSIX separators, without leading ``/``

    Raises:
        PatternSyntaxError: if a character class is unbalanced

    Returns:
        str: a regular expression to use with ``re.fullmatch``
    """
    directory = text.endswith("/")
    segments = text.rstrip("/").split("/")
    n = len(segments)
    out = ""
    need_sep = False
    prev_globstar = False
    for i, seg in enumerate(segments):
        last = i == n - 1
        if seg == "**":
            if last:
                out += ".*" if (i == 0 or prev_globstar) else "(?:/.*)?"
            else:
                out += ("/" if need_sep else "") + "(?:.*/)?"
                need_sep = False
            prev_globstar = True
            continue
        out += ("/" if need_sep else "") + _translate_segment(seg)
        need_sep = True
        prev_globstar = False
    if directory and not prev_globstar:
        out += "(?:/.*)?"
    return out


@lru_cache(maxsize=4096)
def compile_pattern(text: str) -> Pattern:
    """Compile a pattern string once; the result depends only on the string.

    Args:
        text (str): the glob-like pattern

    Returns:
        Pattern: a SimplePattern for literal text, a CompiledPattern otherwise
    """
    norm = normalize_path(text.strip())
    if norm.startswith("./"):
        norm = norm[2:]
    if not norm:
        return CompiledPattern(text=text, regexes=())
    if is_simple_text(norm):
        return SimplePattern(text=norm)

    anchored = norm.lstrip("/")
    match_base = "/" not in norm
    directory_only = anchored.endswith("/")
    try:
        sources = [glob_to_regex(alt) for alt in expand_braces(anchored)]
        regexes = tuple(re.compile(src, re.DOTALL) for src in sources)
    except (PatternSyntaxError, re.error) as e:
        logger.warning("pattern_compile_failed", pattern=text, error=str(e))
        return CompiledPattern(text=text, regexes=(), match_base=match_base, directory_only=directory_only)
    return CompiledPattern(text=text, regexes=regexes, match_base=match_base, directory_only=directory_only)


def compile_patterns(texts: Iterable[str]) -> list[Pattern]:
    """Compile a sequence of patterns, skipping blank entries.

    Malformed patterns are kept in the result as never-matching entries.
    """
    return [compile_pattern(t) for t in texts if t and t.strip()]


def matches(path: str, pattern: Pattern | str, *, is_directory: bool = False) -> bool:
    """Check whether a relative path matches one pattern.

    Args:
        path (str): the path relative to the root; backslashes are normalised
        pattern (Pattern | str): a compiled pattern or a pattern string
        is_directory (bool): whether the path names a directory

    Returns:
        bool: True if the pattern matches the path
    """
    compiled = compile_pattern(pattern) if isinstance(pattern, str) else pattern
    return compiled.matches(normalize_path(path), is_directory=is_directory)


def matches_any(path: str, patterns: Sequence[Pattern | str], *, is_directory: bool = False) -> bool:
    """Check whether a relative path matches at least one pattern."""
    norm = normalize_path(path)
    for p in patterns:
        compiled = compile_pattern(p) if isinstance(p, str) else p
        if compiled.matches(norm, is_directory=is_directory):
            return True
    return False
