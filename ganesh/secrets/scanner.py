"""
Plaintext secret scanner for configuration files.

Flags credentials that should live in a backend and be referenced with
``...Ref`` fields instead. Lines that already use a reference are skipped and
matches are redacted before they are reported.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# (name, pattern, severity)
SECRET_PATTERNS: list[tuple[str, re.Pattern[str], str]] = [
    ("Anthropic API Key", re.compile(r"sk-ant-[a-zA-Z0-9_-]{20,}"), "critical"),
    ("OpenAI API Key", re.compile(r"sk-(?!ant-)[a-zA-Z0-9]{48,}"), "critical"),
    ("Telegram Bot Token", re.compile(r"\d{9,}:[A-Za-z0-9_-]{35}"), "critical"),
    ("GitHub Token", re.compile(r"gh[pousr]_[A-Za-z0-9_]{36,}"), "critical"),
    ("Google API Key", re.compile(r"AIza[0-9A-Za-z_-]{35}"), "high"),
    (
        "Generic API Key/Secret",
        re.compile(r'"(api[_-]?key|apikey|secret[_-]?key|secretkey)":\s*"[a-zA-Z0-9_-]{32,}"', re.I),
        "medium",
    ),
]

# tokenRef, keyRef, botTokenRef: references, not secrets
IGNORE_PATTERNS = [re.compile(r'Ref"\s*:\s*"[^"]+"')]

SEVERITY_ORDER = {"critical": 0, "high": 1, "medium": 2}


@dataclass(frozen=True)
class Finding:
    file: str
    line: int
    pattern: str
    match: str
    severity: str


def redact(secret: str) -> str:
    if len(secret) > 20:
        return f"{secret[:12]}...{secret[-4:]}"
    return f"{secret[:8]}..."


def scan_text(text: str, source: str = "<string>") -> list[Finding]:
    findings: list[Finding] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        if any(p.search(line) for p in IGNORE_PATTERNS):
            continue
        for name, pattern, severity in SECRET_PATTERNS:
            match = pattern.search(line)
            if match:
                findings.append(
                    Finding(
                        file=source,
                        line=lineno,
                        pattern=name,
                        match=redact(match.group(0)),
                        severity=severity,
                    )
                )
    return sorted(findings, key=lambda f: (SEVERITY_ORDER[f.severity], f.file, f.line))


def scan_file(path: Path | str) -> list[Finding]:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return []
    return scan_text(text, str(path))


def _plaintext_without_ref(section: Any, field: str) -> bool:
    return (
        isinstance(section, dict)
        and bool(section.get(field))
        and not section.get(f"{field}Ref")
    )


def check_ref_usage(path: Path | str) -> list[str]:
    """Warn about JSON credentials stored as plaintext with no ``...Ref`` sibling."""
    path = Path(path)
    try:
        content = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.debug("scanner: skipping ref check for %s: %s", path, e)
        return []
    if not isinstance(content, dict):
        return []

    warnings: list[str] = []
    telegram = (content.get("channels") or {}).get("telegram")
    if isinstance(telegram, dict) and telegram.get("enabled"):
        if _plaintext_without_ref(telegram, "botToken"):
            warnings.append(f"{path}: Telegram is using plaintext botToken instead of botTokenRef")

    for profile_id, profile in (content.get("profiles") or {}).items():
        if not isinstance(profile, dict):
            continue
        if profile.get("type") == "token" and _plaintext_without_ref(profile, "token"):
            warnings.append(f'{path}: Profile "{profile_id}" has plaintext token without tokenRef')
        if profile.get("type") == "api_key" and _plaintext_without_ref(profile, "key"):
            warnings.append(f'{path}: Profile "{profile_id}" has plaintext key without keyRef')
    return warnings
