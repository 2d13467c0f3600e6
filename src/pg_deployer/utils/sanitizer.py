"""Redaction of secrets from anything that reaches a log or the terminal."""

from __future__ import annotations

import re
import threading
from typing import Any, Dict, Set

REDACTED_TEXT = "[REDACTED]"

# Group 1, when present, is the sensitive part; otherwise the whole match is.
SENSITIVE_PATTERNS = [
    re.compile(r"password[=:]\s*(\S+)", re.IGNORECASE),
    re.compile(r"PASSWORD\s+'([^']*)'", re.IGNORECASE),
    re.compile(r"PGPASSWORD[=:]\s*(\S+)", re.IGNORECASE),
    re.compile(r"passwd[=:]\s*(\S+)", re.IGNORECASE),
    re.compile(r"postgres(?:ql)?://[^:/\s]+:([^@\s]+)@", re.IGNORECASE),
    re.compile(r"-----BEGIN [A-Z ]+ KEY-----[\s\S]+?-----END [A-Z ]+ KEY-----"),
    re.compile(r"token[=:]\s*(\S+)", re.IGNORECASE),
    re.compile(r"secret[=:]\s*(\S+)", re.IGNORECASE),
    re.compile(r"api[_-]?key[=:]\s*(\S+)", re.IGNORECASE),
    re.compile(r"aws[_-]?access[_-]?key[_-]?id[=:]\s*(\S+)", re.IGNORECASE),
    re.compile(r"aws[_-]?secret[_-]?access[_-]?key[=:]\s*(\S+)", re.IGNORECASE),
]

# Resolved secret values, redacted verbatim wherever they appear.
_KNOWN_SECRETS: Set[str] = set()
_KNOWN_SECRETS_LOCK = threading.Lock()

# Shorter values would redact ordinary words.
MIN_SECRET_LENGTH = 4


def register_secret(value: str) -> None:
    """Redact ``value`` itself from everything sanitized in this process."""
    if value and len(value) >= MIN_SECRET_LENGTH:
        with _KNOWN_SECRETS_LOCK:
            _KNOWN_SECRETS.add(value)


def clear_registered_secrets() -> None:
    with _KNOWN_SECRETS_LOCK:
        _KNOWN_SECRETS.clear()


def _redact(match: re.Match) -> str:
    if match.re.groups == 0 or match.group(1) is None:
        return REDACTED_TEXT
    start, end = match.span(1)
    offset = match.start()
    text = match.group(0)
    return text[: start - offset] + REDACTED_TEXT + text[end - offset :]


def sanitize(text: Any) -> Any:
    """Return ``text`` with every sensitive value replaced by ``[REDACTED]``."""
    if text is None:
        return None
    text = str(text)
    if not text:
        return text
    with _KNOWN_SECRETS_LOCK:
        known = sorted(_KNOWN_SECRETS, key=len, reverse=True)
    for value in known:
        text = text.replace(value, REDACTED_TEXT)
    for pattern in SENSITIVE_PATTERNS:
        text = pattern.sub(_redact, text)
    return text


def sanitize_mapping(payload: Dict[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for key, value in payload.items():
        if isinstance(value, dict):
            result[key] = sanitize_mapping(value)
        elif isinstance(value, str):
            result[key] = sanitize(value)
        elif isinstance(value, list):
            result[key] = [sanitize(v) if isinstance(v, str) else v for v in value]
        else:
            result[key] = value
    return result
