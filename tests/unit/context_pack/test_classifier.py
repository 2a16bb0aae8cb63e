from pathlib import Path

import pytest

from context_pack.classifier import BINARY_SAMPLE_SIZE, is_binary, is_binary_sample, should_process
from context_pack.filters import FilterConfig


@pytest.mark.parametrize("offset", [0, 1, 2048, BINARY_SAMPLE_SIZE - 1])
def test_single_nul_byte_means_binary(offset: int) -> None:
    sample = bytearray(b"a" * BINARY_SAMPLE_SIZE)
    sample[offset] = 0

    assert is_binary_sample(bytes(sample))


def test_plain_text_with_tabs_and_newlines_is_text() -> None:
    assert not is_binary_sample(b"def f():\r\n\treturn 1\n" * 100)


def test_empty_sample_is_text() -> None:
    assert not is_binary_sample(b"")


def test_control_char_threshold() -> None:
    at_threshold = b"\x01" * 10 + b"a" * 90
    above_threshold = b"\x01" * 11 + b"a" * 89

    assert not is_binary_sample(at_threshold)
    assert is_binary_sample(above_threshold)


def test_is_binary_reads_file(tmp_path: Path) -> None:
    text = tmp_path / "a.txt"
    text.write_text("hello\n", encoding="utf-8")
    image = tmp_path / "image.png"
    image.write_bytes(b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR")
    empty = tmp_path / "empty.txt"
    empty.write_bytes(b"")

    assert not is_binary(text)
    assert is_binary(image)
    assert not is_binary(empty)


def test_unreadable_file_counts_as_binary(tmp_path: Path) -> None:
    assert is_binary(tmp_path / "missing.bin")
    assert is_binary(tmp_path)


def test_should_process_refuses_node_modules() -> None:
    fc = FilterConfig()

    assert not should_process("node_modules/x.js", fc)
    assert not should_process("packages\\a\\node_modules\\x.js", fc)
    assert should_process("src/x.js", fc)
