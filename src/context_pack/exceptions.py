from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class ContextPackError(Exception):
    """Base exception for errors in the context_pack package."""


@dataclass(frozen=True)
class ConfigParseError(ContextPackError):
    """Raised when configuration text is not a valid YAML mapping."""

    message: str


@dataclass(frozen=True)
class NoRootSelectedError(ContextPackError):
    """Raised when an operation needs a root directory and none was given."""

    message: str = "No root directory selected."


@dataclass(frozen=True)
class NoFilesSelectedError(ContextPackError):
    """Raised when an analysis or export is requested for an empty selection."""

    root: Path
    message: str = "No files selected."

