from __future__ import annotations

import io
import math
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from context_pack.classifier import is_binary
from context_pack.config import ExportDocument, ExportFormat, FileRecord
from context_pack.logging import logger
from context_pack.paths import resolve_within_root
from context_pack.tokens import read_text
from context_pack.walker import build_tree_lines

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from pathlib import Path

    from context_pack.settings import ContextConfig

BINARY_NOTE = "Binary files are included in the file tree but not processed for content."
MARKDOWN_SEPARATOR = "######"
MARKDOWN_FOOTER = "\n--END--\n"
XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>\n'

_XML_ATTRIBUTE_ESCAPES = str.maketrans({
    "&": "&amp;",
    '"': "&quot;",
    "'": "&apos;",
    "<": "&lt;",
    ">": "&gt;",
})


class ExportOptions(BaseModel):
    """Rendering switches for one export."""

    model_config = ConfigDict(frozen=True)

    show_token_count: bool = True
    include_tree_view: bool = False
    export_format: ExportFormat = ExportFormat.MARKDOWN

    @field_validator("export_format", mode="before")
    @classmethod
    def _normalize_format(cls, value: Any) -> ExportFormat:  # noqa: ANN401
        return normalize_export_format(value)

    @classmethod
    def from_config(cls, config: ContextConfig) -> ExportOptions:
        """Take the export switches from a parsed configuration."""
        return cls(
            show_token_count=config.show_token_count,
            include_tree_view=config.include_tree_view,
            export_format=config.export_format,
        )


def normalize_export_format(value: object) -> ExportFormat:
    """``xml`` selects XML; anything else falls back to Markdown."""
    return ExportFormat.XML if value == ExportFormat.XML.value else ExportFormat.MARKDOWN


def normalize_token_count(value: object) -> int:
    """Coerce a token count to a non-negative int; garbage becomes 0."""
    if isinstance(value, bool):
        return 0
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number) or number < 0:
        return 0
    return int(number)


def is_valid_xml_char(char: str) -> bool:
    """Whether a character is allowed in an XML 1.0 document."""
    cp = ord(char)
    return (
        cp in {0x9, 0xA, 0xD}
        or 0x20 <= cp <= 0xD7FF  # noqa: PLR2004
        or 0xE000 <= cp <= 0xFFFD  # noqa: PLR2004
        or 0x10000 <= cp <= 0x10FFFF  # noqa: PLR2004
    )


def escape_xml_attribute(value: str) -> str:
    """Escape a value for a double- or single-quoted XML attribute."""
    return sanitize_xml_content(value).translate(_XML_ATTRIBUTE_ESCAPES)


def sanitize_xml_content(value: str) -> str:
    """Drop characters that XML 1.0 forbids (C0 controls, lone surrogates, U+FFFE/U+FFFF)."""
    return "".join(ch for ch in value if is_valid_xml_char(ch))


def wrap_xml_cdata(value: str) -> str:
    """Wrap text in a CDATA section.

    Every ``]]>`` is split across two sections so the content cannot close
    the section early. Carriage returns are written between sections as
    ``&#13;`` because a parser turns a literal one into a line feed. A parser
    joins the pieces back into the original text.
    """
    body = sanitize_xml_content(value).replace("]]>", "]]]]><![CDATA[>").replace("\r", "]]>&#13;<![CDATA[")
    return f"<![CDATA[{body}]]>"


def to_xml_numeric_attribute(value: object) -> str:
    return escape_xml_attribute(str(normalize_token_count(value)))


def generate_tree_view(files_info: Iterable[FileRecord]) -> str:
    """Render the selected files as a box-drawing tree, one entry per line."""
    lines = build_tree_lines(r.path for r in files_info)
    return "".join(f"{line}\n" for line in lines)


def build_header(options: ExportOptions, tree_view: str | None, files_info: Sequence[FileRecord]) -> str:
    """Document preamble: title or XML root, then the optional file structure."""
    out = io.StringIO()
    xml = options.export_format is ExportFormat.XML
    if xml:
        out.write(XML_DECLARATION)
        out.write("<repositoryContent>\n")
    else:
        out.write("# Repository Content\n\n")

    if options.include_tree_view:
        resolved = tree_view or generate_tree_view(files_info)
        if xml:
            out.write(f"<fileStructure>{wrap_xml_cdata(resolved)}</fileStructure>\n")
        else:
            out.write("## File Structure\n\n")
            out.write("```\n")
            out.write(resolved)
            if not resolved.endswith("\n"):
                out.write("\n")
            out.write("```\n\n")
            out.write("## File Contents\n\n")

    if xml:
        out.write("<files>\n")
    return out.getvalue()


def build_footer(options: ExportOptions, *, total_tokens: int, processed_files: int, skipped_files: int) -> str:
    """Closing marker (Markdown) or summary element and closing tags (XML)."""
    if options.export_format is ExportFormat.XML:
        return (
            "</files>\n"
            f'<summary totalTokens="{to_xml_numeric_attribute(total_tokens)}" '
            f'processedFiles="{to_xml_numeric_attribute(processed_files)}" '
            f'skippedFiles="{to_xml_numeric_attribute(skipped_files)}" />\n'
            "</repositoryContent>\n"
        )
    return MARKDOWN_FOOTER


def binary_file_section(full_path: Path, rel: str, options: ExportOptions) -> str:
    """Placeholder section for a binary file: type and size, never content.

    Args:
        full_path (Path): absolute path of the file
        rel (str): path relative to the root
        options (ExportOptions): the rendering switches

    Returns:
        str: the rendered section
    """
    file_type = PurePosixPath(rel).suffix.lstrip(".").upper()
    try:
        size_kb = f"{full_path.stat().st_size / 1024:.2f}"
    except OSError:
        size_kb = "0.00"
    if options.export_format is ExportFormat.XML:
        return (
            f'<file path="{escape_xml_attribute(rel)}" binary="true" '
            f'fileType="{escape_xml_attribute(file_type)}" sizeKB="{escape_xml_attribute(size_kb)}">\n'
            f"<note>{wrap_xml_cdata(BINARY_NOTE)}</note>\n"
            "</file>\n"
        )
    return (
        f"{MARKDOWN_SEPARATOR}\n{rel} (binary file)\n{MARKDOWN_SEPARATOR}\n\n"
        "[BINARY FILE]\n"
        f"File Type: {file_type}\n"
        f"Size: {size_kb} KB\n\n"
        f"Note: {BINARY_NOTE}\n\n"
    )


def text_file_section(rel: str, content: str, tokens: int, options: ExportOptions) -> str:
    """Section for a text file, with the token count when enabled.

    Args:
        rel (str): path relative to the root
        content (str): the file content
        tokens (int): the token count recorded by the analysis
        options (ExportOptions): the rendering switches

    Returns:
        str: the rendered section
    """
    if options.export_format is ExportFormat.XML:
        token_attr = f' tokens="{to_xml_numeric_attribute(tokens)}"' if options.show_token_count else ""
        return f'<file path="{escape_xml_attribute(rel)}"{token_attr} binary="false">\n{wrap_xml_cdata(content)}\n</file>\n'
    header = f"{rel} ({tokens} tokens)" if options.show_token_count else rel
    return f"{MARKDOWN_SEPARATOR}\n{header}\n{MARKDOWN_SEPARATOR}\n\n```\n{content}\n```\n\n"


def coerce_record(item: FileRecord | dict[str, Any]) -> FileRecord | None:
    """Accept a FileRecord or its dict form (either key style); None when unusable."""
    if isinstance(item, FileRecord):
        return item if item.path else None
    if not isinstance(item, dict):
        return None
    data = dict(item)
    data["tokens"] = normalize_token_count(data.get("tokens", 0))
    try:
        record = FileRecord.model_validate(data)
    except ValidationError:
        return None
    return record if record.path else None


def process_repository(
    root: Path | str,
    files_info: Sequence[FileRecord | dict[str, Any]] | None,
    tree_view: str | None = None,
    options: ExportOptions | None = None,
) -> ExportDocument:
    """Assemble the export document for analysed files.

    Each file is re-read from disk. Entries without a path, outside the root,
    missing on disk or unreadable are skipped; binary files get a placeholder
    section and count as skipped. Token totals come from the records.

    Args:
        root (Path | str): the root directory
        files_info (Sequence[FileRecord | dict]): the analysed records, in export order
        tree_view (str | None): pre-rendered tree text; generated from the
            records when None and the tree view is enabled
        options (ExportOptions | None): the rendering switches

    Returns:
        ExportDocument: the document and its counters
    """
    opts = options or ExportOptions()
    records: list[FileRecord] = []
    skipped = 0
    for item in files_info or []:
        record = coerce_record(item)
        if record is None:
            logger.warning("invalid_file_info_skipped")
            skipped += 1
            continue
        records.append(record)

    logger.info(
        "export_started",
        export_format=opts.export_format.value,
        files=len(records),
        include_tree_view=opts.include_tree_view,
    )
    out = io.StringIO()
    out.write(build_header(opts, tree_view, records))

    total_tokens = 0
    processed = 0
    for record in records:
        full = resolve_within_root(root, record.path)
        if full is None:
            logger.warning("path_outside_root", path=record.path, root=str(root))
            skipped += 1
            continue
        if not full.is_file():
            logger.warning("file_not_found", path=record.path)
            skipped += 1
            continue
        if is_binary(full):
            out.write(binary_file_section(full, record.path, opts))
            skipped += 1
            continue
        try:
            content = read_text(full)
        except OSError as e:
            logger.error("export_read_failed", path=record.path, error=str(e))
            skipped += 1
            continue
        out.write(text_file_section(record.path, content, record.tokens, opts))
        total_tokens += record.tokens
        processed += 1

    out.write(build_footer(opts, total_tokens=total_tokens, processed_files=processed, skipped_files=skipped))
    logger.info("export_done", processed_files=processed, skipped_files=skipped, total_tokens=total_tokens)
    return ExportDocument(
        content=out.getvalue(),
        export_format=opts.export_format,
        processed_files=processed,
        total_tokens=total_tokens,
        skipped_files=skipped,
        files_info=records,
    )
