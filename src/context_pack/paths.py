"""Root-boundary checks and path normalisation.

Every path that reaches the tree or the export passes through
:func:`is_path_within_root`, which compares canonical (symlink-free) paths so
that neither ``..`` segments nor symlinks can escape the selected root.
"""

from __future__ import annotations

import os
from pathlib import Path


def normalize_path(path: str) -> str:
    """Replace Windows separators with forward slashes."""
    return path.replace("\\", "/")


def relpath(path: Path | str, root: Path | str) -> str:
    """Send the relative path of path from root.

    Args:
        path (Path | str): the path to "relativise"
        root (Path | str): the root to relativise from

    Returns:
        str: the relative path from root to path, with POSIX separators.
            If path is not under root, returns the original path as a string.
    """
    try:
        return normalize_path(str(Path(path).relative_to(Path(root))))
    except ValueError:
        return normalize_path(str(path))


def _resolve_from_existing_ancestor(path: Path) -> Path:
    pending: list[str] = []
    current = path
    while True:
        try:
            real = Path(os.path.realpath(current, strict=True))
        except OSError:
            parent = current.parent
            if parent == current:
                return path
            pending.append(current.name)
            current = parent
        else:
            return real.joinpath(*reversed(pending))


def resolve_real_path(path: Path | str) -> Path:
    """Resolve a path to its canonical location.

    Missing trailing components are re-appended to the canonical form of the
    deepest existing ancestor, so a not-yet-created file under a symlinked
    directory still resolves to where it would land.

    Args:
        path (Path | str): the path to resolve

    Returns:
        Path: the absolute, symlink-free path
    """
    absolute = Path(os.path.abspath(path))
    try:
        return Path(os.path.realpath(absolute, strict=True))
    except OSError:
        return _resolve_from_existing_ancestor(absolute)


def is_within(resolved_root: Path, resolved_candidate: Path) -> bool:
    """Check containment of two already-canonical paths."""
    return resolved_candidate == resolved_root or resolved_root in resolved_candidate.parents


def is_path_within_root(root: Path | str, candidate: Path | str) -> bool:
    """Check whether ``candidate`` lies inside ``root`` once both are canonical.

    Args:
        root (Path | str): the authorized root directory
        candidate (Path | str): the path to test

    Returns:
        bool: True if the canonical candidate equals or descends from the canonical root
    """
    if not str(root) or not str(candidate):
        return False
    return is_within(resolve_real_path(root), resolve_real_path(candidate))


def resolve_within_root(root: Path | str, relative: str) -> Path | None:
    """Join ``relative`` onto ``root`` and return it only if it stays inside.

    Args:
        root (Path | str): the authorized root directory
        relative (str): a path relative to root (absolute paths are accepted
            and checked the same way)

    Returns:
        Path | None: the absolute (non-canonical) path, or None when it escapes root
    """
    candidate = Path(os.path.abspath(Path(root) / normalize_path(relative)))
    if not is_path_within_root(root, candidate):
        return None
    return candidate
