"""Filtered directory traversal producing the selection tree.

Symlinks are never followed nor emitted. Each walk keeps its own set of
visited canonical directories, so bind mounts or other aliasing cannot make it
descend twice into the same place.
"""

from __future__ import annotations

import os
import stat
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from context_pack.config import DirectoryNode, FileNode
from context_pack.filters import should_exclude
from context_pack.logging import logger
from context_pack.paths import is_within, relpath, resolve_real_path

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from context_pack.config import TreeNode
    from context_pack.filters import FilterConfig


def node_sort_key(node: TreeNode) -> tuple[int, str, str]:
    """Directories first, then case-insensitive name, exact name as tie-breaker."""
    return (0 if node.type == "directory" else 1, node.name.casefold(), node.name)


class DirectoryWalker:
    """Walks one root with one set of filter rules.

    Args:
        root: the directory to walk
        filter_config: the rules deciding which entries are skipped
    """

    def __init__(self, root: Path | str, filter_config: FilterConfig) -> None:
        self.root = Path(os.path.abspath(root))
        self.real_root = resolve_real_path(self.root)
        self.filter_config = filter_config
        self._visited: set[Path] = set()

    def walk(self) -> list[TreeNode]:
        """Build the filtered tree below the root.

        Returns:
            list[TreeNode]: the root's surviving children, sorted
        """
        self._visited = {self.real_root}
        nodes = self._walk_directory(self.root)
        logger.info("directory_walk_done", root=str(self.root), visited_directories=len(self._visited))
        return nodes

    def _walk_directory(self, directory: Path) -> list[TreeNode]:
        try:
            with os.scandir(directory) as it:
                entries = list(it)
        except OSError as e:
            logger.warning("directory_read_failed", path=str(directory), error=str(e))
            return []
        nodes: list[TreeNode] = []
        for entry in entries:
            node = self._visit(entry)
            if node is not None:
                nodes.append(node)
        return sorted(nodes, key=node_sort_key)

    def _visit(self, entry: os.DirEntry[str]) -> TreeNode | None:
        full = Path(entry.path)
        try:
            is_dir = entry.is_dir(follow_symlinks=False)
        except OSError:
            is_dir = False
        if should_exclude(full, self.root, self.filter_config, is_directory=is_dir):
            return None

        try:
            st = entry.stat(follow_symlinks=False)
        except OSError as e:
            logger.warning("entry_stat_failed", path=str(full), error=str(e))
            return None

        if stat.S_ISLNK(st.st_mode):
            target = resolve_real_path(full)
            if is_within(self.real_root, target):
                logger.info("symlink_skipped", path=str(full))
            else:
                logger.warning("symlink_outside_root_skipped", path=str(full), target=str(target))
            return None

        real = resolve_real_path(full)
        if not is_within(self.real_root, real):
            logger.warning("path_outside_root", path=str(full), root=str(self.root))
            return None

        last_modified = datetime.fromtimestamp(st.st_mtime, tz=UTC)
        if stat.S_ISDIR(st.st_mode):
            if real in self._visited:
                logger.warning("directory_cycle_skipped", path=str(full), real_path=str(real))
                return None
            self._visited.add(real)
            children = self._walk_directory(full)
            if not children:
                return None
            return DirectoryNode(
                name=entry.name,
                path=str(full),
                size=st.st_size,
                last_modified=last_modified,
                children=children,
            )
        if stat.S_ISREG(st.st_mode):
            return FileNode(
                name=entry.name,
                path=str(full),
                size=st.st_size,
                last_modified=last_modified,
                extension=full.suffix.lower(),
            )
        return None


def walk(root: Path | str, filter_config: FilterConfig) -> list[TreeNode]:
    """Walk ``root`` and return its filtered, sorted tree."""
    return DirectoryWalker(root, filter_config).walk()


def iter_files(nodes: Iterable[TreeNode]) -> Iterator[FileNode]:
    """Yield every file of a tree, depth first, in tree order."""
    for node in nodes:
        if isinstance(node, DirectoryNode):
            yield from iter_files(node.children)
        else:
            yield node


def tree_relative_paths(nodes: Iterable[TreeNode], root: Path | str) -> list[str]:
    """Relative POSIX paths of every file of a tree."""
    base = Path(os.path.abspath(root))
    return [relpath(Path(f.path), base) for f in iter_files(nodes)]


def _node_paths(nodes: Iterable[TreeNode], prefix: str = "") -> Iterator[str]:
    for node in nodes:
        path = f"{prefix}{node.name}"
        if isinstance(node, DirectoryNode):
            yield from _node_paths(node.children, f"{path}/")
        else:
            yield path


def build_tree_lines(rel_paths: Iterable[str], *, mark_directories: bool = False) -> list[str]:
    """Lay out relative file paths as box-drawing tree lines.

    Directories are inferred from the paths, so they always have at least one
    file below them. Siblings are ordered like the directory walk: directories
    first, then case-insensitive name.

    Args:
        rel_paths (Iterable[str]): POSIX paths relative to the root
        mark_directories (bool): append ``/`` to directory names

    Returns:
        list[str]: one line per directory or file, without a root line
    """
    tree: dict[str, dict] = {}
    for rel in rel_paths:
        parts = [p for p in rel.replace("\\", "/").split("/") if p]
        cur = tree
        for part in parts:
            cur = cur.setdefault(part, {})

    lines: list[str] = []

    def emit(children: dict[str, dict], prefix: str) -> None:
        names = sorted(children, key=lambda n: (not children[n], n.casefold(), n))
        for idx, name in enumerate(names):
            sub = children[name]
            last = idx == len(names) - 1
            label = f"{name}/" if sub and mark_directories else name
            lines.append(f"{prefix}{'└── ' if last else '├── '}{label}")
            if sub:
                emit(sub, prefix + ("    " if last else "│   "))

    emit(tree, "")
    return lines


def render_tree(nodes: Iterable[TreeNode], root_name: str = "") -> str:
    """Render a walked tree, directories suffixed with ``/``, optionally under a root line."""
    lines = [root_name] if root_name else []
    lines.extend(build_tree_lines(_node_paths(nodes), mark_directories=True))
    return "".join(f"{line}\n" for line in lines)
