from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from context_pack.config import DEFAULT_EXCLUDE_PATTERNS, DEFAULT_INCLUDE_EXTENSIONS, ExportFormat
from context_pack.exceptions import ConfigParseError
from context_pack.logging import logger

ENV_FILE = find_dotenv(usecwd=True)
if ENV_FILE:
    load_dotenv(ENV_FILE, override=False)

DEFAULT_TOKEN_MODEL = "gpt-4"


def env_token_model() -> str:
    """Tokenizer model name, overridable with ``CONTEXT_PACK_TOKEN_MODEL``."""
    return os.environ.get("CONTEXT_PACK_TOKEN_MODEL", "").strip() or DEFAULT_TOKEN_MODEL


def env_config_path() -> Path | None:
    """Default configuration file, taken from ``CONTEXT_PACK_CONFIG`` when set."""
    raw = os.environ.get("CONTEXT_PACK_CONFIG", "").strip()
    return Path(raw) if raw else None


class ContextConfig(BaseModel):
    """Parsed configuration document driving filtering and export.

    Every ``use_*`` toggle and both secret-scanning switches default to on:
    only an explicit ``false`` disables them. Unknown keys are ignored so that
    documents carrying UI-only settings still load.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    use_custom_excludes: bool = True
    use_custom_includes: bool = True
    use_gitignore: bool = True
    include_extensions: list[str] | None = None
    exclude_patterns: list[str] = Field(default_factory=list)
    enable_secret_scanning: bool = True
    exclude_suspicious_files: bool = True
    include_tree_view: bool = False
    show_token_count: bool = True
    export_format: ExportFormat = ExportFormat.MARKDOWN

    @field_validator("include_extensions", mode="before")
    @classmethod
    def _normalize_extensions(cls, value: Any) -> list[str] | None:  # noqa: ANN401
        if value is None:
            return None
        if not isinstance(value, list):
            return None
        out: list[str] = []
        for ext in value:
            ext_str = str(ext).strip().lower()
            if not ext_str:
                continue
            out.append(ext_str if ext_str.startswith(".") else f".{ext_str}")
        return out

    @field_validator("exclude_patterns", mode="before")
    @classmethod
    def _normalize_patterns(cls, value: Any) -> list[str]:  # noqa: ANN401
        if not isinstance(value, list):
            return []
        return [str(p).strip().replace("\\", "/") for p in value if p is not None and str(p).strip()]

    @field_validator("export_format", mode="before")
    @classmethod
    def _normalize_format(cls, value: Any) -> ExportFormat:  # noqa: ANN401
        return ExportFormat.XML if value == "xml" else ExportFormat.MARKDOWN

    @property
    def secret_policy_enabled(self) -> bool:
        """Whether suspicious files are dropped."""
        return self.enable_secret_scanning and self.exclude_suspicious_files


def parse_config_text(config_text: str | None) -> ContextConfig:
    """Parse YAML configuration text strictly.

    Args:
        config_text: the raw YAML document; empty or None yields the defaults

    Raises:
        ConfigParseError: if the text is not YAML, is not a mapping, or holds
            values of the wrong type

    Returns:
        ContextConfig: the parsed configuration
    """
    if not config_text or not config_text.strip():
        return ContextConfig()
    try:
        data = yaml.safe_load(config_text)
    except yaml.YAMLError as e:
        raise ConfigParseError(message=f"invalid YAML: {e}") from e
    if data is None:
        return ContextConfig()
    if not isinstance(data, dict):
        raise ConfigParseError(message=f"expected a mapping, got {type(data).__name__}")
    try:
        return ContextConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigParseError(message=str(e)) from e


def load_config(config_text: str | None) -> ContextConfig:
    """Parse configuration text, falling back to defaults on any parse failure.

    Args:
        config_text: the raw YAML document

    Returns:
        ContextConfig: the parsed configuration, or the default one
    """
    try:
        return parse_config_text(config_text)
    except ConfigParseError as e:
        logger.warning("config_parse_failed", error=e.message)
        return ContextConfig()


def default_config() -> ContextConfig:
    """Configuration shipped with the tool: common excludes and source extensions."""
    return ContextConfig(
        include_extensions=list(DEFAULT_INCLUDE_EXTENSIONS),
        exclude_patterns=list(DEFAULT_EXCLUDE_PATTERNS),
    )


def default_config_text() -> str:
    """Render the default configuration as a YAML document."""
    data = default_config().model_dump(mode="json")
    return yaml.safe_dump(data, sort_keys=False, default_flow_style=False)


class Settings(BaseModel):
    """Invocation settings for the context-pack command line."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    command: str = Field(default="export", description="Sub-command to run.")
    repo: Path = Field(default_factory=Path.cwd, description="Root directory.")
    output: Path | None = Field(default=None, description="Output file.")
    config: Path | None = Field(default_factory=env_config_path, description="YAML config file.")
    format: str = Field(default="", description="Force export format.")
    tree_view: bool | None = Field(default=None, description="Override include_tree_view.")
    no_token_count: bool = Field(default=False, description="Hide per-file token counts.")
    token_model: str = Field(default_factory=env_token_model, description="Tokenizer model name.")
    paths: list[str] = Field(default_factory=list, description="Selected paths relative to root.")
    json_output: bool = Field(default=False, description="Print machine-readable JSON.")
    log_file: str = Field(default="", description="Log file path.")

    def read_config_text(self) -> str | None:
        """Read the configured YAML file, or None when no file is configured."""
        if self.config is None:
            return None
        return self.config.read_text(encoding="utf-8")
