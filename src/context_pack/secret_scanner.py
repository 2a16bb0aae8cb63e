"""Heuristics flagging files that likely hold credentials.

Two independent checks: :func:`is_sensitive_file_path` looks at the name only
(``.env``, private keys, key-material extensions, tool credential files) and
:func:`scan_content_for_secrets` runs content rules. Both are pure functions.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from context_pack.logging import logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from context_pack.settings import ContextConfig

_AWS_SECRET_ASSIGNMENT_PREFIX = re.compile(
    r"aws(?:\s|_|-)?secret(?:\s|_|-)?access(?:\s|_|-)?key\s*[:=]\s*",
    re.IGNORECASE,
)
_AWS_SECRET_VALUE = re.compile(r"^[A-Za-z0-9+/=]{40}$")
_VALUE_STOP = re.compile(r"[\s;,]")


@dataclass(frozen=True)
class SecretRule:
    """One content rule: a regex, or a predicate for rules a regex cannot express."""

    id: str
    description: str
    pattern: re.Pattern[str] | None = None
    predicate: Callable[[str], bool] | None = None

    def matches(self, content: str) -> bool:
        if self.predicate is not None:
            return self.predicate(content)
        return self.pattern is not None and self.pattern.search(content) is not None


@dataclass(frozen=True)
class SecretMatch:
    id: str
    description: str


@dataclass(frozen=True)
class SecretScanResult:
    matches: tuple[SecretMatch, ...] = ()
    error: str = ""
    rule_ids: tuple[str, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "rule_ids", tuple(m.id for m in self.matches))

    @property
    def is_suspicious(self) -> bool:
        return bool(self.matches)


CLEAN_SCAN = SecretScanResult()


def extract_assigned_value(text: str) -> str:
    """Extract the value following an assignment operator.

    Quoted values are returned without quotes; bare values stop at the first
    whitespace, ``;`` or ``,``. An unterminated quote yields an empty string.
    """
    trimmed = text.lstrip()
    if not trimmed:
        return ""
    quote = trimmed[0]
    if quote in {'"', "'"}:
        end = trimmed.find(quote, 1)
        return trimmed[1:end] if end > 0 else ""
    stop = _VALUE_STOP.search(trimmed)
    return trimmed[: stop.start()] if stop else trimmed


def has_aws_secret_assignment(content: str) -> bool:
    """Detect ``aws_secret_access_key = <40 chars>`` style assignments."""
    for m in _AWS_SECRET_ASSIGNMENT_PREFIX.finditer(content):
        if _AWS_SECRET_VALUE.match(extract_assigned_value(content[m.end() :])):
            return True
    return False


SECRET_RULES: tuple[SecretRule, ...] = (
    SecretRule(
        id="private-key-block",
        description="Private key block detected",
        pattern=re.compile(r"-----BEGIN (?:[A-Z ]+)?PRIVATE KEY-----"),
    ),
    SecretRule(
        id="github-token",
        description="GitHub token detected",
        pattern=re.compile(r"\bgh[pousr]_[A-Za-z0-9]{20,}\b"),
    ),
    SecretRule(
        id="aws-access-key-id",
        description="AWS access key id detected",
        pattern=re.compile(r"\b(?:AKIA|ASIA)[0-9A-Z]{16}\b"),
    ),
    SecretRule(
        id="aws-secret-assignment",
        description="AWS secret key assignment detected",
        predicate=has_aws_secret_assignment,
    ),
    SecretRule(
        id="slack-token",
        description="Slack token detected",
        pattern=re.compile(r"\bxox[baprs]-[0-9A-Za-z-]{10,}\b"),
    ),
    SecretRule(
        id="stripe-secret-key",
        description="Stripe secret key detected",
        pattern=re.compile(r"\bsk_live_[0-9A-Za-z]{16,}\b"),
    ),
    SecretRule(
        id="jwt-token",
        description="JWT-like token detected",
        pattern=re.compile(r"\beyJ[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]{8,}\b"),
    ),
    SecretRule(
        id="token-assignment",
        description="Token assignment detected",
        pattern=re.compile(
            r"(?:api[_-]?key|access[_-]?token|auth[_-]?token)\s*[:=]\s*['\"][^'\"\n]{8,}['\"]",
            re.IGNORECASE,
        ),
    ),
    SecretRule(
        id="credential-assignment",
        description="Credential assignment detected",
        pattern=re.compile(
            r"(?:secret|password|passwd|client[_-]?secret)\s*[:=]\s*['\"][^'\"\n]{8,}['\"]",
            re.IGNORECASE,
        ),
    ),
)

_SENSITIVE_NAME_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^\.env(?:\..+)?$", re.IGNORECASE),
    re.compile(r"^id_(?:rsa|dsa|ecdsa|ed25519)(?:\.pub)?$", re.IGNORECASE),
    re.compile(r"(?:^|[-_.])(?:secret|secrets|credential|credentials)(?:[-_.]|$)", re.IGNORECASE),
)
_SENSITIVE_EXTENSION = re.compile(r"\.(?:pem|key|p12|pfx|jks|keystore|cer|crt|der|kdbx|asc)$", re.IGNORECASE)
_SENSITIVE_PATH_SEGMENTS: tuple[str, ...] = (
    ".aws/credentials",
    ".npmrc",
    ".pypirc",
    ".docker/config.json",
)


def secret_policy_enabled(config: ContextConfig | None) -> bool:
    """Suspicious files are dropped unless either switch is explicitly off."""
    if config is None:
        return True
    return config.secret_policy_enabled


def is_sensitive_file_path(path: str | Path) -> bool:
    """Check a path against the sensitive name, extension and location rules.

    Args:
        path (str | Path): an absolute or relative path

    Returns:
        bool: True if the name alone marks the file as likely holding secrets
    """
    norm = str(path).replace("\\", "/").lower()
    name = PurePosixPath(norm).name
    if _SENSITIVE_EXTENSION.search(name):
        return True
    if any(p.search(name) for p in _SENSITIVE_NAME_PATTERNS):
        return True
    return any(
        norm == segment or norm.endswith(f"/{segment}") or f"/{segment}/" in norm
        for segment in _SENSITIVE_PATH_SEGMENTS
    )


def scan_content_for_secrets(content: str) -> SecretScanResult:
    """Run every content rule and collect the ones that fire."""
    found = tuple(SecretMatch(id=r.id, description=r.description) for r in SECRET_RULES if r.matches(content))
    return SecretScanResult(matches=found)


def scan_content_with_policy(content: str, config: ContextConfig | None) -> SecretScanResult:
    """Scan only when the suspicious-file policy is enabled."""
    if not secret_policy_enabled(config):
        return CLEAN_SCAN
    return scan_content_for_secrets(content)


def scan_file_for_secrets(path: Path) -> SecretScanResult:
    """Read a file and scan its content; an unreadable file counts as suspicious.

    Args:
        path (Path): the file to scan

    Returns:
        SecretScanResult: the rules that fired, or a ``scan-read-error`` match
    """
    try:
        content = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.error("secret_scan_read_failed", path=str(path), error=str(e))
        return SecretScanResult(
            matches=(SecretMatch(id="scan-read-error", description="Unable to read file while scanning for secrets"),),
            error=str(e),
        )
    return scan_content_for_secrets(content)


def is_suspicious(target: str | Path) -> bool:
    """Secret check over either a path or a piece of content.

    A :class:`~pathlib.Path` is checked by name, then by content when it is a
    file. A ``str`` is treated as content.

    Args:
        target (str | Path): a file path or text content

    Returns:
        bool: True if any rule flags the target
    """
    if isinstance(target, Path):
        if is_sensitive_file_path(target):
            return True
        return target.is_file() and scan_file_for_secrets(target).is_suspicious
    return scan_content_for_secrets(target).is_suspicious
