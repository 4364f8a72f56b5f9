"""Secret redaction applied before any free text reaches the store."""
from __future__ import annotations

import re
from typing import Any

from mission_control.models import RedactionResult

EXCLUDED_PATH_SENTINEL = "[REDACTED:EXCLUDED_PATH]"
PATH_EXCLUDED = "path_excluded"

# Evaluated in order; each pattern that fires contributes one indicator.
_SECRET_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("openai_key", re.compile(r"\bsk-[A-Za-z0-9]{16,}\b")),
    ("github_token", re.compile(r"\bghp_[A-Za-z0-9]{20,}\b")),
    ("aws_access_key", re.compile(r"\bAKIA[0-9A-Z]{16}\b")),
    (
        "credential_assignment",
        re.compile(r"\b(?:token|secret|password|api[_-]?key)\s*[:=]\s*\S+", re.IGNORECASE),
    ),
    ("bearer_token", re.compile(r"\bBearer\s+[A-Za-z0-9._\-]{10,}")),
]

_PATH_EXCLUSIONS = [
    re.compile(r"\.env", re.IGNORECASE),
    re.compile(r"secrets?", re.IGNORECASE),
    re.compile(r"id_rsa", re.IGNORECASE),
    re.compile(r"\.pem$", re.IGNORECASE),
]


def _mask(match: re.Match[str]) -> str:
    text = match.group(0)
    if len(text) <= 8:
        return "[REDACTED]"
    return f"{text[:4]}…[REDACTED]…{text[-2:]}"


def should_exclude_path(path: str | None) -> bool:
    if not path:
        return False
    return any(pattern.search(str(path)) for pattern in _PATH_EXCLUSIONS)


def redact_text(text: Any, source_path: str | None = None) -> RedactionResult:
    """Mask secret-shaped substrings of ``text``.

    A sensitive ``source_path`` short-circuits to a fixed sentinel without
    scanning the content at all.
    """
    if should_exclude_path(source_path):
        return RedactionResult(value=EXCLUDED_PATH_SENTINEL, redacted=True, indicators=[PATH_EXCLUDED])

    value = "" if text is None else str(text)
    indicators: list[str] = []
    for name, pattern in _SECRET_PATTERNS:
        value, count = pattern.subn(_mask, value)
        if count:
            indicators.append(f"pattern:{name}")

    return RedactionResult(value=value, redacted=bool(indicators), indicators=indicators)


def redact_value(value: Any, source_path: str | None = None) -> tuple[Any, list[str]]:
    """Redact every string leaf of a JSON-like structure."""
    indicators: list[str] = []

    def _walk(node: Any) -> Any:
        if isinstance(node, str):
            result = redact_text(node, source_path)
            for indicator in result.indicators:
                if indicator not in indicators:
                    indicators.append(indicator)
            return result.value
        if isinstance(node, dict):
            return {key: _walk(item) for key, item in node.items()}
        if isinstance(node, (list, tuple)):
            return [_walk(item) for item in node]
        return node

    return _walk(value), indicators
