from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

from context_pack.classifier import is_binary, should_process
from context_pack.config import AnalysisResult, FileRecord
from context_pack.logging import logger
from context_pack.paths import relpath, resolve_within_root
from context_pack.secret_scanner import scan_content_with_policy
from context_pack.tokens import read_text

if TYPE_CHECKING:
    from collections.abc import Iterable

    from context_pack.filters import FilterConfig
    from context_pack.settings import ContextConfig
    from context_pack.tokens import TokenCounter


def analyze_file(full_path: Path, rel: str, counter: TokenCounter, config: ContextConfig | None) -> int | None:
    """Read one text file, secret-scan it and count its tokens.

    Args:
        full_path (Path): absolute path of the file
        rel (str): path relative to the root, used for logging
        counter (TokenCounter): the token counter
        config (ContextConfig | None): the configuration holding the secret policy

    Returns:
        int | None: the token count, or None when the file is unreadable or
            flagged by the secret scan
    """
    try:
        content = read_text(full_path)
    except OSError as e:
        logger.error("analyze_read_failed", path=rel, error=str(e))
        return None
    scan = scan_content_with_policy(content, config)
    if scan.is_suspicious:
        logger.warning("suspicious_file_skipped", path=rel, rules=list(scan.rule_ids))
        return None
    return counter.count_tokens(content)


def sort_by_tokens(records: Iterable[FileRecord]) -> list[FileRecord]:
    """Heaviest files first; ties keep their selection order."""
    return sorted(records, key=lambda r: -r.tokens)


def analyze(
    root: Path | str,
    filter_config: FilterConfig,
    selected_paths: Iterable[str],
    counter: TokenCounter,
    config: ContextConfig | None = None,
) -> AnalysisResult:
    """Classify and count the tokens of every selected file.

    For each selected path, in order:
    1. paths escaping the root are skipped with a warning;
    2. binary files are recorded with 0 tokens and counted as skipped, even
       when the filter rules would have excluded them;
    3. files refused by the filter rules are dropped silently;
    4. unreadable files and files flagged by the secret scan are dropped;
    5. everything else is recorded with its token count.

    Args:
        root (Path | str): the root directory
        filter_config (FilterConfig): the active rules
        selected_paths (Iterable[str]): paths relative to root (absolute paths
            inside root are accepted)
        counter (TokenCounter): the token counter
        config (ContextConfig | None): the configuration holding the secret policy

    Returns:
        AnalysisResult: the records sorted by descending token count
    """
    base = Path(os.path.abspath(root))
    records: list[FileRecord] = []
    total_tokens = 0
    skipped_binary = 0

    for selected in selected_paths:
        full = resolve_within_root(root, selected)
        if full is None:
            logger.warning("path_outside_root", path=selected, root=str(root))
            continue
        rel = relpath(full, base)
        if not full.is_file():
            logger.warning("file_not_found", path=rel)
            continue

        if is_binary(full):
            logger.info("binary_file_detected", path=rel)
            skipped_binary += 1
            records.append(FileRecord(path=rel, tokens=0, is_binary=True))
            continue

        if not should_process(rel, filter_config):
            continue

        tokens = analyze_file(full, rel, counter, config)
        if tokens is None:
            continue
        records.append(FileRecord(path=rel, tokens=tokens))
        total_tokens += tokens

    logger.info("analysis_done", files=len(records), total_tokens=total_tokens, skipped_binary=skipped_binary)
    return AnalysisResult(
        files_info=sort_by_tokens(records),
        total_tokens=total_tokens,
        skipped_binary_files=skipped_binary,
    )
