import pytest

from context_pack.patterns import (
    CompiledPattern,
    SimplePattern,
    compile_pattern,
    compile_patterns,
    expand_braces,
    matches,
    matches_any,
)


def test_simple_pattern_matches_exact_path_and_trailing_segments() -> None:
    pattern = compile_pattern("file.js")

    assert isinstance(pattern, SimplePattern)
    assert pattern.is_simple
    assert matches("file.js", pattern)
    assert matches("dir/file.js", pattern)
    assert matches("a/b/file.js", pattern)
    assert not matches("dir/otherfile.js", pattern)
    assert not matches("file.js.map", pattern)


@pytest.mark.parametrize(
    ("pattern", "path", "expected"),
    [
        ("*.js", "app.js", True),
        ("*.js", "src/deep/app.js", True),
        ("*.js", "src/app.ts", False),
        ("src/*.js", "src/app.js", True),
        ("src/*.js", "src/lib/app.js", False),
        ("src/**/*.js", "src/app.js", True),
        ("src/**/*.js", "src/lib/deep/app.js", True),
        ("**/node_modules/**", "node_modules", True),
        ("**/node_modules/**", "node_modules/x.js", True),
        ("**/node_modules/**", "packages/a/node_modules/x/y.js", True),
        ("**/node_modules/**", "src/node_modules_old/x.js", False),
        ("file?.txt", "file1.txt", True),
        ("file?.txt", "file10.txt", False),
        ("[abc].py", "b.py", True),
        ("[!abc].py", "d.py", True),
        ("[!abc].py", "a.py", False),
        ("*.{js,ts}", "lib/index.ts", True),
        ("*.{js,ts}", "lib/index.py", False),
        ("log{1..3}.txt", "log2.txt", True),
        ("log{1..3}.txt", "log4.txt", False),
        ("*", ".env", True),
        ("src/**", "src", True),
        ("src/**", "src/a/b.py", True),
    ],
)
def test_wildcard_semantics(pattern: str, path: str, expected: bool) -> None:
    assert matches(path, pattern) is expected


def test_trailing_slash_matches_directory_and_descendants() -> None:
    pattern = compile_pattern("build/")

    assert isinstance(pattern, CompiledPattern)
    assert pattern.directory_only
    assert matches("build", pattern, is_directory=True)
    assert matches("build/out/app.js", pattern)
    assert not matches("rebuild", pattern, is_directory=True)
    assert not matches("src/build", pattern, is_directory=True)
    assert matches("src/build/x", "**/build/")


def test_trailing_slash_never_matches_a_file_of_that_name() -> None:
    assert not matches("build", "build/")
    assert not matches("src/build", "**/build/")
    assert matches("src/build", "**/build/", is_directory=True)
    assert matches("build", "build/**")


def test_globstar_prefix_is_depth_insensitive() -> None:
    pattern = compile_pattern("**/a/b.txt")

    assert matches("a/b.txt", pattern)
    assert matches("prefix/a/b.txt", pattern)
    assert matches("x/y/z/a/b.txt", pattern)


def test_malformed_pattern_never_matches_and_is_kept() -> None:
    compiled = compile_patterns(["[abc", "*.py"])

    assert len(compiled) == 2
    broken = compiled[0]
    assert isinstance(broken, CompiledPattern)
    assert not broken.is_valid
    assert not matches("a", broken)
    assert not matches("[abc", broken)
    assert matches_any("x.py", compiled)


def test_unbalanced_brace_is_literal() -> None:
    assert expand_braces("{a,b") == ["{a,b"]
    assert expand_braces("{a}.txt") == ["{a}.txt"]
    assert expand_braces("{a,{b,c}}") == ["a", "b", "c"]
    assert matches("{a,b", "{a,b*")


def test_compile_is_deterministic() -> None:
    first = compile_pattern("**/*.min.js")
    second = compile_pattern("**/*.min.js")

    paths = ["a.min.js", "dist/app.min.js", "app.js", "min.js"]
    assert [matches(p, first) for p in paths] == [matches(p, second) for p in paths]


def test_backslashes_are_normalized() -> None:
    assert matches("src\\lib\\app.js", "src/**/*.js")
    assert matches("dist/app.js", "dist\\*.js")


def test_compile_patterns_skips_blank_entries() -> None:
    assert compile_patterns(["", "  ", "*.md"]) == [compile_pattern("*.md")]


def test_leading_dot_slash_is_ignored() -> None:
    assert matches("README.md", "./README.md")
