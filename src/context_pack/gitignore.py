from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from context_pack.logging import logger
from context_pack.paths import resolve_real_path
from context_pack.patterns import Pattern, compile_patterns

GITIGNORE_FILENAME = ".gitignore"

# Generated bundles that are noise in an export even when .gitignore misses them.
BUILD_ARTIFACT_PATTERNS: tuple[str, ...] = (
    "**/bundle.js",
    "**/bundle.js.map",
    "**/bundle.js.LICENSE.txt",
    "**/index.js.map",
    "**/output.css",
)


@dataclass(frozen=True)
class GitignorePatterns:
    """Exclude rules and negated (re-include) rules read from a .gitignore.

    Attributes:
        exclude_texts: exclude pattern strings, in file order, then build artifacts
        include_texts: negated pattern strings with the leading ``!`` removed
    """

    exclude_texts: tuple[str, ...] = ()
    include_texts: tuple[str, ...] = ()
    exclude_patterns: tuple[Pattern, ...] = field(init=False, repr=False, compare=False)
    include_patterns: tuple[Pattern, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "exclude_patterns", tuple(compile_patterns(self.exclude_texts)))
        object.__setattr__(self, "include_patterns", tuple(compile_patterns(self.include_texts)))

    @property
    def is_empty(self) -> bool:
        """True when neither excludes nor includes are present."""
        return not self.exclude_texts and not self.include_texts


EMPTY_GITIGNORE = GitignorePatterns()


def _pattern_variants(pattern: str) -> list[str]:
    if pattern.startswith("/"):
        anchored = pattern[1:]
        if anchored.endswith("/"):
            anchored = f"{anchored}**"
        return [anchored]
    return [pattern, f"**/{pattern}"]


def parse_gitignore_content(content: str) -> GitignorePatterns:
    """Turn .gitignore text into exclude and include pattern sets.

    Rules, line by line:
    - blank lines and ``#`` comments are skipped;
    - a leading ``!`` negates: the rest goes to the include set;
    - a leading ``/`` anchors to the root: stored without the slash, with no
      ``**/`` variant;
    - every other pattern, directory patterns (``build/``) included, is stored
      as written and with a ``**/`` prefix so it matches at any depth.

    The build artifacts in BUILD_ARTIFACT_PATTERNS are always appended to the
    excludes.

    Args:
        content (str): the text of the .gitignore file

    Returns:
        GitignorePatterns: the parsed pattern sets
    """
    excludes: list[str] = []
    includes: list[str] = []
    for line in content.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        negated = stripped.startswith("!")
        pattern = stripped[1:].strip() if negated else stripped
        if not pattern:
            continue
        target = includes if negated else excludes
        target.extend(v for v in _pattern_variants(pattern) if v)

    excludes.extend(BUILD_ARTIFACT_PATTERNS)
    return GitignorePatterns(exclude_texts=tuple(excludes), include_texts=tuple(includes))


class GitignoreResolver:
    """Reads a root's .gitignore once and caches the parsed rules per root.

    The cache is never refreshed implicitly: callers invalidate a root (or
    clear everything) when the root or the configuration changes.
    """

    def __init__(self) -> None:
        self._cache: dict[Path, GitignorePatterns] = {}

    def __contains__(self, root: object) -> bool:
        if not isinstance(root, (str, Path)):
            return False
        return self._key(root) in self._cache

    def __len__(self) -> int:
        return len(self._cache)

    @staticmethod
    def _key(root: str | Path) -> Path:
        return resolve_real_path(root)

    def parse_gitignore(self, root: str | Path) -> GitignorePatterns:
        """Return the patterns of ``root/.gitignore``, reading it at most once.

        A missing file yields (and caches) empty sets. Read and decode errors
        are logged and yield (and cache) empty sets as well.

        Args:
            root (str | Path): the root directory

        Returns:
            GitignorePatterns: the cached or freshly parsed patterns
        """
        key = self._key(root)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        gitignore = key / GITIGNORE_FILENAME
        if not gitignore.is_file():
            self._cache[key] = EMPTY_GITIGNORE
            return EMPTY_GITIGNORE

        try:
            content = gitignore.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.error("gitignore_read_failed", path=str(gitignore), error=str(e))
            self._cache[key] = EMPTY_GITIGNORE
            return EMPTY_GITIGNORE

        patterns = parse_gitignore_content(content)
        self._cache[key] = patterns
        return patterns

    def invalidate(self, root: str | Path) -> None:
        """Forget the cached patterns of one root."""
        self._cache.pop(self._key(root), None)

    def clear(self) -> None:
        """Forget every cached root."""
        self._cache.clear()
