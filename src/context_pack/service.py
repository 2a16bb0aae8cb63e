"""Request/response operations consumed by a user interface or the CLI.

:class:`ContextService` owns the gitignore cache and the token counter for a
session. Every operation takes the root explicitly and the raw configuration
text, so the same service can be reused across roots as long as the cache is
reset when the root changes.
"""

from __future__ import annotations

import functools
from pathlib import Path
from typing import TYPE_CHECKING, Any

from context_pack import analysis, output_construction, tokens, walker
from context_pack.exceptions import ConfigParseError, NoFilesSelectedError, NoRootSelectedError
from context_pack.filters import build_filter_config, fallback_filter_config
from context_pack.gitignore import GitignoreResolver
from context_pack.logging import logger
from context_pack.settings import DEFAULT_TOKEN_MODEL, load_config, parse_config_text

if TYPE_CHECKING:
    from collections.abc import Sequence

    from context_pack.config import AnalysisResult, ExportDocument, FileRecord, TokenCountResult, TreeNode
    from context_pack.output_construction import ExportOptions
    from context_pack.tokens import TokenCounter


def _require_root(root: Path | str | None) -> Path:
    if root is None or not str(root).strip():
        raise NoRootSelectedError
    return Path(root)


class ContextService:
    """Session-scoped entry point for tree, analysis, export and token counting.

    Args:
        resolver: the gitignore cache; a fresh one when None
        counter: the token counter; a tiktoken counter for ``token_model`` is
            created on first use when None
        token_model: model name used when no counter is given
    """

    def __init__(
        self,
        resolver: GitignoreResolver | None = None,
        counter: TokenCounter | None = None,
        *,
        token_model: str = DEFAULT_TOKEN_MODEL,
    ) -> None:
        self.resolver = resolver if resolver is not None else GitignoreResolver()
        self._counter = counter
        self.token_model = token_model

    @property
    def counter(self) -> TokenCounter:
        if self._counter is None:
            self._counter = tokens.make_token_counter(self.token_model)
        return self._counter

    def get_directory_tree(self, root: Path | str | None, config_text: str | None = None) -> list[TreeNode]:
        """Walk ``root`` with the rules from ``config_text``.

        A configuration that cannot be parsed falls back to hiding ``.git`` only.

        Raises:
            NoRootSelectedError: if no root is given

        Returns:
            list[TreeNode]: the filtered tree
        """
        root_path = _require_root(root)
        try:
            config = parse_config_text(config_text)
        except ConfigParseError as e:
            logger.warning("config_parse_failed", error=e.message, fallback="git_only")
            filter_config = fallback_filter_config()
        else:
            filter_config = build_filter_config(root_path, config, self.resolver)
        return walker.walk(root_path, filter_config)

    def analyze_repository(
        self,
        root: Path | str | None,
        config_text: str | None,
        selected_paths: Sequence[str],
    ) -> AnalysisResult:
        """Classify and count the selected files.

        Raises:
            NoRootSelectedError: if no root is given
            NoFilesSelectedError: if the selection is empty

        Returns:
            AnalysisResult: records sorted by descending token count
        """
        root_path = _require_root(root)
        if not selected_paths:
            raise NoFilesSelectedError(root=root_path)
        config = load_config(config_text)
        filter_config = build_filter_config(root_path, config, self.resolver)
        return analysis.analyze(root_path, filter_config, selected_paths, self.counter, config)

    def process_repository(
        self,
        root: Path | str | None,
        files_info: Sequence[FileRecord | dict[str, Any]],
        tree_view: str | None = None,
        options: ExportOptions | None = None,
    ) -> ExportDocument:
        """Render the export document for analysed files.

        Raises:
            NoRootSelectedError: if no root is given
            NoFilesSelectedError: if there is nothing to export

        Returns:
            ExportDocument: the document and its counters
        """
        root_path = _require_root(root)
        if not files_info:
            raise NoFilesSelectedError(root=root_path)
        return output_construction.process_repository(root_path, files_info, tree_view, options)

    def count_files_tokens(self, root: Path | str | None, file_paths: Sequence[str]) -> TokenCountResult:
        """Count the tokens of each path; unusable paths count as 0."""
        root_path = _require_root(root)
        return tokens.count_files_tokens(root_path, file_paths, self.counter)

    def token_scheduler(self, root: Path | str | None, **kwargs: Any) -> tokens.TokenCountScheduler:  # noqa: ANN401
        """Batched, cancellable token counting bound to one root."""
        root_path = _require_root(root)
        return tokens.TokenCountScheduler(functools.partial(self.count_files_tokens, root_path), **kwargs)

    def reset_gitignore_cache(self) -> bool:
        """Forget every cached .gitignore; call it when the root or config changes."""
        self.resolver.clear()
        logger.info("gitignore_cache_cleared")
        return True

    @staticmethod
    def save_document(document: ExportDocument, output: Path | str) -> Path:
        """Write the export document as UTF-8 text, creating parent directories."""
        target = Path(output)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(document.content, encoding="utf-8")
        logger.info("export_saved", path=str(target), bytes=len(document.content.encode("utf-8")))
        return target
