from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

from context_pack.logging import logger
from context_pack.paths import normalize_path, relpath
from context_pack.patterns import Pattern, compile_patterns, matches_any
from context_pack.secret_scanner import is_sensitive_file_path, secret_policy_enabled

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from context_pack.gitignore import GitignoreResolver
    from context_pack.settings import ContextConfig

FALLBACK_EXCLUDES: tuple[str, ...] = ("**/.git/**",)


@dataclass(frozen=True)
class FilterConfig:
    """Resolved filtering rules for one analysis pass.

    Custom and gitignore excludes are kept apart because they do not have the
    same strength: a gitignore negation (``include_patterns``) can rescue a
    path excluded by gitignore, never one excluded by a custom pattern.

    Attributes:
        custom_exclude_patterns: user-authored excludes (always win)
        gitignore_exclude_patterns: excludes read from .gitignore
        include_patterns: gitignore negations
        allowed_extensions: lower-cased extensions with a leading dot, or None
            to disable extension filtering
        exclude_suspicious_files: drop files whose name looks like a secret store
    """

    custom_exclude_patterns: tuple[Pattern, ...] = ()
    gitignore_exclude_patterns: tuple[Pattern, ...] = ()
    include_patterns: tuple[Pattern, ...] = ()
    allowed_extensions: tuple[str, ...] | None = None
    exclude_suspicious_files: bool = True

    @property
    def exclude_patterns(self) -> tuple[Pattern, ...]:
        """All active excludes, custom first."""
        return self.custom_exclude_patterns + self.gitignore_exclude_patterns

    @classmethod
    def from_texts(
        cls,
        *,
        custom_excludes: Sequence[str] = (),
        gitignore_excludes: Sequence[str] = (),
        includes: Sequence[str] = (),
        allowed_extensions: Sequence[str] | None = None,
        exclude_suspicious_files: bool = True,
    ) -> FilterConfig:
        """Build a FilterConfig from raw pattern strings."""
        return cls(
            custom_exclude_patterns=tuple(compile_patterns(custom_excludes)),
            gitignore_exclude_patterns=tuple(compile_patterns(gitignore_excludes)),
            include_patterns=tuple(compile_patterns(includes)),
            allowed_extensions=None if allowed_extensions is None else tuple(e.lower() for e in allowed_extensions),
            exclude_suspicious_files=exclude_suspicious_files,
        )


def build_filter_config(
    root: Path | str,
    config: ContextConfig,
    resolver: GitignoreResolver | None = None,
) -> FilterConfig:
    """Merge the configuration toggles and the root's .gitignore into a FilterConfig.

    Args:
        root (Path | str): the root directory whose .gitignore is read
        config (ContextConfig): the parsed configuration
        resolver (GitignoreResolver | None): the gitignore cache; when None no
            gitignore rules are merged

    Returns:
        FilterConfig: the rules for this pass
    """
    custom: tuple[Pattern, ...] = ()
    if config.use_custom_excludes:
        custom = tuple(compile_patterns(config.exclude_patterns))

    allowed: tuple[str, ...] | None = None
    if config.use_custom_includes and config.include_extensions:
        allowed = tuple(config.include_extensions)

    gitignore_excludes: tuple[Pattern, ...] = ()
    includes: tuple[Pattern, ...] = ()
    if config.use_gitignore and resolver is not None:
        patterns = resolver.parse_gitignore(root)
        gitignore_excludes = patterns.exclude_patterns
        includes = patterns.include_patterns

    return FilterConfig(
        custom_exclude_patterns=custom,
        gitignore_exclude_patterns=gitignore_excludes,
        include_patterns=includes,
        allowed_extensions=allowed,
        exclude_suspicious_files=secret_policy_enabled(config),
    )


def fallback_filter_config() -> FilterConfig:
    """Rules used when the configuration cannot be parsed: hide .git only."""
    return FilterConfig.from_texts(gitignore_excludes=FALLBACK_EXCLUDES)


def excluded_by_extension(rel_path: str, filter_config: FilterConfig) -> bool:
    """Check the allow-list; files without an extension always pass."""
    if not filter_config.allowed_extensions:
        return False
    ext = PurePosixPath(rel_path).suffix.lower()
    if not ext:
        return False
    return ext not in filter_config.allowed_extensions


def in_sensitive_location(rel_path: str) -> bool:
    """Whether the path, or one of its parent directories, has a secret-like name."""
    path = PurePosixPath(rel_path)
    return any(is_sensitive_file_path(p) for p in (path, *path.parents) if str(p) != ".")


def is_excluded_relative(rel_path: str, filter_config: FilterConfig, *, is_directory: bool = False) -> bool:
    """Decide exclusion for a path already relative to the root.

    Order of precedence:
    1. suspicious names (when the policy is on), checked on the path and on
       each of its parent directories;
    2. the extension allow-list (files only);
    3. custom excludes, which cannot be overridden;
    4. gitignore negations, which rescue the path;
    5. gitignore excludes.

    Args:
        rel_path (str): path relative to the root, any separator
        filter_config (FilterConfig): the active rules
        is_directory (bool): whether the path is a directory (skips the
            extension check, and lets ``dir/`` patterns match the path itself)

    Returns:
        bool: True if the path must be left out
    """
    rel = normalize_path(rel_path)
    if filter_config.exclude_suspicious_files and in_sensitive_location(rel):
        return True
    if not is_directory and excluded_by_extension(rel, filter_config):
        return True
    if matches_any(rel, filter_config.custom_exclude_patterns, is_directory=is_directory):
        return True
    if filter_config.include_patterns and matches_any(rel, filter_config.include_patterns, is_directory=is_directory):
        return False
    return matches_any(rel, filter_config.gitignore_exclude_patterns, is_directory=is_directory)


def should_exclude(
    path: Path | str,
    root: Path | str,
    filter_config: FilterConfig,
    *,
    is_directory: bool = False,
) -> bool:
    """Decide whether an entry found under ``root`` is left out of the tree.

    Args:
        path (Path | str): the entry path (absolute, or relative to root)
        root (Path | str): the root directory
        filter_config (FilterConfig): the active rules
        is_directory (bool): whether the entry is a directory

    Returns:
        bool: True if the entry must be skipped (and not descended into)
    """
    try:
        return is_excluded_relative(relpath(path, root), filter_config, is_directory=is_directory)
    except (TypeError, ValueError) as e:
        logger.error("should_exclude_failed", path=str(path), error=str(e))
        return False
