"""Redaction of credentials and bulky issue text in structured log payloads."""

from __future__ import annotations

import re
from typing import Any, Optional

REDACTED = "***REDACTED***"

# Field names whose values are dropped outright.
CREDENTIAL_FIELDS = ("authorization", "token", "api_key", "apikey", "secret", "password", "cookie", "session")
# Field names carrying issue bodies, prompts or model output; logged as a length only.
TEXT_FIELDS = ("body", "raw", "content", "payload", "response", "prompt", "description")

_INLINE_CREDENTIALS = [
    re.compile(pattern)
    for pattern in (
        r"(?i)(bearer\s+)[^\s,;]+",
        r"(?i)(token\s*[=:]\s*)[^\s,;]+",
        r"(?i)(access_token=)[^&\s]+",
        r"(?i)(api[_-]?key\s*[=:]\s*)[^\s,;]+",
        r"(?i)(key=)[^&\s]+",
        r"(?i)(secret\s*[=:]\s*)[^\s,;]+",
    )
]


def sanitize_log_extra(**fields: Any) -> dict[str, Any]:
    """Build an ``extra=`` mapping with credentials and issue text redacted."""

    return {name: redact(value, field=name) for name, value in fields.items()}


def redact(value: Any, *, field: Optional[str] = None) -> Any:
    if isinstance(value, dict):
        return {str(name): _redact_field(str(name), item) for name, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [redact(item, field=field) for item in value]
    if isinstance(value, str):
        if field and _mentions(field, TEXT_FIELDS):
            return summarize_text(value)
        return scrub_credentials(value)
    return value


def scrub_credentials(text: str) -> str:
    for pattern in _INLINE_CREDENTIALS:
        text = pattern.sub(rf"\1{REDACTED}", text)
    return text


def summarize_text(text: str) -> str:
    if not text.strip():
        return ""
    return f"<redacted payload ({len(text)} chars)>"


def _redact_field(name: str, value: Any) -> Any:
    if _mentions(name, CREDENTIAL_FIELDS):
        return REDACTED
    return redact(value, field=name)


def _mentions(name: str, keywords: tuple[str, ...]) -> bool:
    lowered = name.lower()
    return any(keyword in lowered for keyword in keywords)
