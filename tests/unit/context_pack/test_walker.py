import os
from pathlib import Path

import pytest
from pytest_mock import MockerFixture

from context_pack import walker
from context_pack.config import DirectoryNode, FileNode
from context_pack.filters import FilterConfig
from context_pack.walker import (
    DirectoryWalker,
    build_tree_lines,
    iter_files,
    render_tree,
    tree_relative_paths,
    walk,
)


def _write(path: Path, content: str = "x") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def test_walk_builds_sorted_tree(tmp_path: Path) -> None:
    _write(tmp_path / "b.txt")
    _write(tmp_path / "A.txt")
    _write(tmp_path / "z" / "inner.py", "print(1)")

    nodes = walk(tmp_path, FilterConfig())

    assert [n.name for n in nodes] == ["z", "A.txt", "b.txt"]
    directory = nodes[0]
    assert isinstance(directory, DirectoryNode)
    assert directory.item_count == 1
    file_node = directory.children[0]
    assert isinstance(file_node, FileNode)
    assert file_node.extension == ".py"
    assert file_node.size == len("print(1)")
    assert file_node.path == str(tmp_path / "z" / "inner.py")


def test_excluded_directories_are_not_descended(tmp_path: Path, mocker: MockerFixture) -> None:
    _write(tmp_path / "node_modules" / "x.js")
    _write(tmp_path / "src" / "app.js")
    scandir = mocker.spy(walker.os, "scandir")
    fc = FilterConfig.from_texts(custom_excludes=["**/node_modules/**"])

    nodes = walk(tmp_path, fc)

    assert tree_relative_paths(nodes, tmp_path) == ["src/app.js"]
    scanned = {Path(call.args[0]).name for call in scandir.call_args_list}
    assert "node_modules" not in scanned


def test_empty_directories_are_pruned(tmp_path: Path) -> None:
    (tmp_path / "empty").mkdir()
    _write(tmp_path / "logs" / "debug.log")
    _write(tmp_path / "keep.md")
    fc = FilterConfig.from_texts(custom_excludes=["*.log"])

    nodes = walk(tmp_path, fc)

    assert [n.name for n in nodes] == ["keep.md"]


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
def test_symlinks_are_never_emitted(tmp_path: Path) -> None:
    root = tmp_path / "root"
    outside = tmp_path / "outside"
    _write(outside / "secret.txt")
    _write(root / "real" / "file.txt")
    try:
        (root / "link_out").symlink_to(outside, target_is_directory=True)
        (root / "link_in").symlink_to(root / "real", target_is_directory=True)
        (root / "file_link.txt").symlink_to(root / "real" / "file.txt")
    except OSError:
        pytest.skip("cannot create symlinks here")

    nodes = walk(root, FilterConfig())

    assert tree_relative_paths(nodes, root) == ["real/file.txt"]


def test_aliased_directory_is_visited_once(tmp_path: Path, mocker: MockerFixture) -> None:
    _write(tmp_path / "a" / "one.txt")
    _write(tmp_path / "b" / "two.txt")
    real_a = walker.resolve_real_path(tmp_path / "a")
    original = walker.resolve_real_path

    def fake_resolve(path: Path | str) -> Path:
        return real_a if Path(path).name == "b" else original(path)

    mocker.patch.object(walker, "resolve_real_path", side_effect=fake_resolve)

    nodes = walk(tmp_path, FilterConfig())

    assert len(nodes) == 1
    assert nodes[0].name in {"a", "b"}


def test_entries_resolving_outside_root_are_skipped(tmp_path: Path, mocker: MockerFixture) -> None:
    _write(tmp_path / "inside.txt")
    _write(tmp_path / "escape.txt")
    original = walker.resolve_real_path

    def fake_resolve(path: Path | str) -> Path:
        if Path(path).name == "escape.txt":
            return Path("/elsewhere/escape.txt")
        return original(path)

    mocker.patch.object(walker, "resolve_real_path", side_effect=fake_resolve)

    nodes = walk(tmp_path, FilterConfig())

    assert [n.name for n in nodes] == ["inside.txt"]


def test_missing_root_yields_empty_tree(tmp_path: Path) -> None:
    assert walk(tmp_path / "missing", FilterConfig()) == []


def test_stat_failure_skips_entry(tmp_path: Path, mocker: MockerFixture) -> None:
    _write(tmp_path / "ok.txt")
    _write(tmp_path / "broken.txt")
    original_visit = DirectoryWalker._visit

    def flaky_visit(self: DirectoryWalker, entry: os.DirEntry[str]) -> object:
        if entry.name == "broken.txt":
            failing = mocker.Mock()
            failing.name = entry.name
            failing.path = entry.path
            failing.is_dir.return_value = False
            failing.stat.side_effect = PermissionError("denied")
            return original_visit(self, failing)
        return original_visit(self, entry)

    mocker.patch.object(DirectoryWalker, "_visit", flaky_visit)

    nodes = walk(tmp_path, FilterConfig())

    assert [n.name for n in nodes] == ["ok.txt"]


def test_render_tree_and_iter_files(tmp_path: Path) -> None:
    _write(tmp_path / "src" / "app.py")
    _write(tmp_path / "README.md")

    nodes = walk(tmp_path, FilterConfig())

    assert [f.name for f in iter_files(nodes)] == ["app.py", "README.md"]
    assert render_tree(nodes, "repo") == "repo\n├── src/\n│   └── app.py\n└── README.md\n"


def test_secret_like_directories_are_pruned(tmp_path: Path) -> None:
    _write(tmp_path / "secrets" / "prod.yaml", "replicas: 2\n")
    _write(tmp_path / "credentials" / "notes.txt", "rotate monthly\n")
    _write(tmp_path / "src" / "app.py")

    nodes = walk(tmp_path, FilterConfig())

    assert tree_relative_paths(nodes, tmp_path) == ["src/app.py"]
    relaxed = walk(tmp_path, FilterConfig(exclude_suspicious_files=False))
    assert tree_relative_paths(relaxed, tmp_path) == ["credentials/notes.txt", "secrets/prod.yaml", "src/app.py"]


def test_gitignored_directory_pattern_keeps_file_of_same_name(tmp_path: Path) -> None:
    _write(tmp_path / "build", "#!/bin/sh\nmake all\n")
    _write(tmp_path / "out" / "build" / "bundle.txt")
    _write(tmp_path / "out" / "keep.txt")
    fc = FilterConfig.from_texts(gitignore_excludes=["build/", "**/build/"])

    nodes = walk(tmp_path, fc)

    assert tree_relative_paths(nodes, tmp_path) == ["out/keep.txt", "build"]


def test_build_tree_lines_infers_directories() -> None:
    paths = ["README.md", "src/lib/b.py", "src/a.py", "Docs/x.md"]

    assert build_tree_lines(paths) == [
        "├── Docs",
        "│   └── x.md",
        "├── src",
        "│   ├── lib",
        "│   │   └── b.py",
        "│   └── a.py",
        "└── README.md",
    ]
    assert build_tree_lines(["src/a.py"], mark_directories=True) == ["└── src/", "    └── a.py"]
    assert build_tree_lines([]) == []
