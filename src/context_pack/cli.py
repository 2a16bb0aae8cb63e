"""
context-pack: select the files of a local repository and export them for an LLM.

Overview
--------
The command line drives the same operations a user interface would:

1) **tree**: walk a root with the configured filters (custom excludes,
   extension allow-list, ``.gitignore``, suspicious files) and print the
   surviving tree.
2) **analyze**: classify the selected files (binary, secret-like) and count
   their tokens, heaviest first.
3) **export**: analyse, then write one Markdown or XML document holding the
   selected files' contents.
4) **init-config**: print or write the default YAML configuration.

Usage
-----
Run ``context-pack --help`` for full options. Common examples:
    - Print the filtered tree:
        context-pack tree . --config context-pack.yaml

    - Export every file of the tree as XML, with the tree view:
        context-pack export . --output context.xml --format xml --tree-view

    - Export two files only, logging to a file:
        context-pack --log-file export.log export . src/app.py README.md -o out.md
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from context_pack import __version__
from context_pack.exceptions import ContextPackError
from context_pack.logging import logger, setup_logging
from context_pack.output_construction import ExportOptions, normalize_export_format
from context_pack.service import ContextService
from context_pack.settings import Settings, default_config_text, load_config
from context_pack.walker import render_tree, tree_relative_paths

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from context_pack.config import AnalysisResult


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with one sub-parser per command.

    Returns:
        argparse.ArgumentParser: The configured parser.
    """
    parser = argparse.ArgumentParser(
        prog="context-pack",
        description="Select repository files and export them as one Markdown or XML document.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--log-file", type=str, default="", help="Log file path.")
    parser.add_argument(
        "--token-model",
        type=str,
        default=None,
        help="Tokenizer model name for tiktoken, or 'approx' for the chars/4 estimate.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    rooted = argparse.ArgumentParser(add_help=False)
    rooted.add_argument("repo", type=Path, help="Root directory.")
    rooted.add_argument("--config", type=Path, default=None, help="YAML configuration file.")
    rooted.add_argument("--json", dest="json_output", action="store_true", help="Print JSON.")

    sub.add_parser("tree", parents=[rooted], help="Print the filtered directory tree.")

    analyze = sub.add_parser("analyze", parents=[rooted], help="Count tokens of the selected files.")
    analyze.add_argument("paths", nargs="*", help="Paths relative to the root (default: the whole tree).")

    export = sub.add_parser("export", parents=[rooted], help="Write the export document.")
    export.add_argument("paths", nargs="*", help="Paths relative to the root (default: the whole tree).")
    export.add_argument("--output", "-o", type=Path, required=True, help="Output file.")
    export.add_argument(
        "--format",
        type=str,
        choices=["markdown", "xml"],
        default="",
        help="Force the export format (default: from the configuration).",
    )
    export.add_argument(
        "--tree-view",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Prepend the file structure (default: from the configuration).",
    )
    export.add_argument("--no-token-count", action="store_true", help="Hide per-file token counts.")

    init = sub.add_parser("init-config", help="Print or write the default configuration.")
    init.add_argument("--output", "-o", type=Path, default=None, help="Write to this file instead of stdout.")
    return parser


def parse_args(argv: Sequence[str] | None = None) -> Settings:
    """Parse CLI arguments into a Settings object.

    Options left unset keep the Settings defaults, which read the environment.

    Args:
        argv (Sequence[str] | None): Optional CLI args.

    Returns:
        Settings: Parsed settings.
    """
    args = build_parser().parse_args(argv)
    return Settings.model_validate({k: v for k, v in vars(args).items() if v is not None})


def selected_paths(service: ContextService, settings: Settings) -> list[str]:
    """Paths given on the command line, or every file of the filtered tree."""
    if settings.paths:
        return list(settings.paths)
    nodes = service.get_directory_tree(settings.repo, settings.read_config_text())
    return tree_relative_paths(nodes, settings.repo)


def format_analysis(result: AnalysisResult) -> str:
    lines = [f"{r.tokens:>10}  {r.path}{'  [binary]' if r.is_binary else ''}" for r in result.files_info]
    lines.append(f"Total tokens: {result.total_tokens}")
    lines.append(f"Skipped binary files: {result.skipped_binary_files}")
    return "\n".join(lines)


def run_tree(service: ContextService, settings: Settings) -> int:
    nodes = service.get_directory_tree(settings.repo, settings.read_config_text())
    if settings.json_output:
        print(json.dumps([n.model_dump(mode="json", by_alias=True) for n in nodes], indent=2))
    else:
        print(render_tree(nodes, settings.repo.resolve().name), end="")
    return 0


def run_analyze(service: ContextService, settings: Settings) -> int:
    result = service.analyze_repository(settings.repo, settings.read_config_text(), selected_paths(service, settings))
    if settings.json_output:
        print(result.model_dump_json(by_alias=True, indent=2))
    else:
        print(format_analysis(result))
    return 0


def export_options(settings: Settings) -> ExportOptions:
    """Merge the configuration file with the command-line overrides."""
    config = load_config(settings.read_config_text())
    export_format = normalize_export_format(settings.format) if settings.format else config.export_format
    include_tree_view = config.include_tree_view if settings.tree_view is None else settings.tree_view
    return ExportOptions(
        show_token_count=config.show_token_count and not settings.no_token_count,
        include_tree_view=include_tree_view,
        export_format=export_format,
    )


def run_export(service: ContextService, settings: Settings) -> int:
    if settings.output is None:
        msg = "export requires --output"
        raise ValueError(msg)
    analysis = service.analyze_repository(
        settings.repo,
        settings.read_config_text(),
        selected_paths(service, settings),
    )
    document = service.process_repository(settings.repo, analysis.files_info, None, export_options(settings))
    out_path = service.save_document(document, settings.output)
    if settings.json_output:
        print(document.model_dump_json(by_alias=True, exclude={"content"}, indent=2))
    else:
        print(
            f"Wrote {out_path} format={document.export_format.value} files={document.processed_files} "
            f"tokens={document.total_tokens} skipped={document.skipped_files}"
        )
    return 0


def run_init_config(_service: ContextService, settings: Settings) -> int:
    text = default_config_text()
    if settings.output is None:
        sys.stdout.write(text)
        return 0
    settings.output.parent.mkdir(parents=True, exist_ok=True)
    settings.output.write_text(text, encoding="utf-8")
    print(f"Wrote {settings.output}")
    return 0


COMMANDS: dict[str, Callable[[ContextService, Settings], int]] = {
    "tree": run_tree,
    "analyze": run_analyze,
    "export": run_export,
    "init-config": run_init_config,
}


def main(argv: Sequence[str] | None = None) -> int:
    """Run one context-pack command.

    Args:
        argv (Sequence[str] | None): Optional CLI arguments.

    Returns:
        int: Process exit code, 1 when the command failed.
    """
    settings = parse_args(argv)
    if settings.log_file:
        setup_logging(settings.log_file, force=True)

    service = ContextService(token_model=settings.token_model)
    try:
        return COMMANDS[settings.command](service, settings)
    except ContextPackError as e:
        message = getattr(e, "message", type(e).__name__)
        logger.error("command_failed", command=settings.command, error=message)
        print(f"error: {message}", file=sys.stderr)
        return 1
    except OSError as e:
        logger.error("command_failed", command=settings.command, error=str(e))
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
