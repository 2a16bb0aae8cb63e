from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel


class ExportFormat(StrEnum):
    """Serialization formats for the export document."""

    MARKDOWN = "markdown"
    XML = "xml"


DEFAULT_EXCLUDE_PATTERNS: list[str] = [
    "**/.git/**",
    "**/node_modules/**",
    "**/.venv/**",
    "**/venv/**",
    "**/__pycache__/**",
    "**/.mypy_cache/**",
    "**/.ruff_cache/**",
    "**/.pytest_cache/**",
    "**/.ipynb_checkpoints/**",
    "**/.idea/**",
    "**/.vscode/**",
    "**/dist/**",
    "**/build/**",
    "**/coverage/**",
    "**/*.min.js",
    "**/*.min.css",
    "**/*.lock",
    "**/package-lock.json",
    "**/.DS_Store",
]

DEFAULT_INCLUDE_EXTENSIONS: list[str] = [
    ".py",
    ".pyi",
    ".js",
    ".jsx",
    ".mjs",
    ".ts",
    ".tsx",
    ".json",
    ".toml",
    ".yaml",
    ".yml",
    ".md",
    ".rst",
    ".txt",
    ".html",
    ".css",
    ".scss",
    ".sh",
    ".sql",
    ".go",
    ".rs",
    ".java",
    ".kt",
    ".c",
    ".h",
    ".cpp",
    ".hpp",
    ".cs",
    ".rb",
    ".php",
    ".swift",
    ".xml",
    ".ini",
    ".cfg",
]


class _BoundaryModel(BaseModel):
    """Immutable record exchanged across the service boundary.

    Field names are snake_case in Python and camelCase when dumped with
    ``by_alias=True`` (the shape the UI layer consumes).
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class FileNode(_BoundaryModel):
    """A file surviving the directory walk."""

    type: Literal["file"] = "file"
    name: str
    path: str = Field(..., description="Absolute path on disk")
    size: int = Field(..., ge=0)
    last_modified: datetime
    extension: str = Field("", description="Lower-cased suffix including the dot")


class DirectoryNode(_BoundaryModel):
    """A directory with at least one surviving descendant."""

    type: Literal["directory"] = "directory"
    name: str
    path: str = Field(..., description="Absolute path on disk")
    size: int = Field(..., ge=0)
    last_modified: datetime
    children: list[TreeNode] = Field(default_factory=list)

    @computed_field(alias="itemCount")
    @property
    def item_count(self) -> int:
        """Number of direct children."""
        return len(self.children)


TreeNode = Annotated[FileNode | DirectoryNode, Field(discriminator="type")]

DirectoryNode.model_rebuild()


class FileRecord(_BoundaryModel):
    """Per-file outcome of the analysis pass.

    Attributes:
        path: Path relative to the analysed root, POSIX separators.
        tokens: Approximate token count, 0 for binary files.
        is_binary: Whether the binary heuristic flagged the file.
    """

    path: str
    tokens: int = Field(0, ge=0)
    is_binary: bool = False


class AnalysisResult(_BoundaryModel):
    """Records of an analysis pass, heaviest files first."""

    files_info: list[FileRecord] = Field(default_factory=list)
    total_tokens: int = 0
    skipped_binary_files: int = 0


class ExportDocument(_BoundaryModel):
    """Serialized export and its aggregate counters."""

    content: str
    export_format: ExportFormat = ExportFormat.MARKDOWN
    processed_files: int = 0
    total_tokens: int = 0
    skipped_files: int = 0
    files_info: list[FileRecord] = Field(default_factory=list)


class FileStat(_BoundaryModel):
    """Size and modification time used to validate cached token counts."""

    mtime: float
    size: int


class TokenCountResult(_BoundaryModel):
    """Token counts keyed by the requested (relative) path."""

    results: dict[str, int] = Field(default_factory=dict)
    stats: dict[str, FileStat] = Field(default_factory=dict)
