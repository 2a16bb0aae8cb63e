from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from context_pack.filters import is_excluded_relative
from context_pack.logging import logger
from context_pack.paths import normalize_path

if TYPE_CHECKING:
    from context_pack.filters import FilterConfig

BINARY_SAMPLE_SIZE = 4096
CONTROL_CHAR_THRESHOLD = 0.10
_TEXT_CONTROL_BYTES = frozenset({0x09, 0x0A, 0x0D})


def is_binary_sample(sample: bytes) -> bool:
    """Classify a leading byte sample as binary or text.

    A NUL byte anywhere means binary. Otherwise the share of control bytes
    below 0x20 (tab, newline and carriage return excepted) must stay at or
    under CONTROL_CHAR_THRESHOLD. An empty sample is text.

    Args:
        sample (bytes): the first bytes of a file

    Returns:
        bool: True if the sample looks binary
    """
    if not sample:
        return False
    if b"\x00" in sample:
        return True
    control = sum(1 for b in sample if b < 0x20 and b not in _TEXT_CONTROL_BYTES)  # noqa: PLR2004
    return control / len(sample) > CONTROL_CHAR_THRESHOLD


def is_binary(path: Path | str) -> bool:
    """Sample the start of a file and classify it.

    Any error while reading counts as binary so that the file is never read
    further.

    Args:
        path (Path | str): the file to check

    Returns:
        bool: True if the file is binary or unreadable
    """
    try:
        with Path(path).open("rb") as f:
            sample = f.read(BINARY_SAMPLE_SIZE)
    except OSError as e:
        logger.warning("binary_check_failed", path=str(path), error=str(e))
        return True
    return is_binary_sample(sample)


def should_process(relative_path: str, filter_config: FilterConfig) -> bool:
    """Decide whether a selected file goes through token counting.

    Files under ``node_modules`` are always refused; everything else follows
    the exclusion rules of the filter configuration.

    Args:
        relative_path (str): path relative to the root
        filter_config (FilterConfig): the active rules

    Returns:
        bool: True if the file may be read and counted
    """
    norm = normalize_path(relative_path)
    if "node_modules" in norm.split("/"):
        return False
    return not is_excluded_relative(norm, filter_config)
