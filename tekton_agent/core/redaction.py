"""Redaction helpers that mask API keys and bearer tokens in logs and outputs."""
from __future__ import annotations

import re
from typing import Any

SECRET_VALUE_PATTERNS = [
    re.compile(r"sk-[a-zA-Z0-9_-]{20,}"),  # OpenAI-style keys
    re.compile(r"Bearer\s+[a-zA-Z0-9._-]+", re.IGNORECASE),
]
SECRET_KEY_PATTERN = re.compile(r"api[-_]?key|token|secret|password", re.IGNORECASE)

REDACTED = "[REDACTED]"


def mask_secrets(data: Any) -> Any:
    """Recursively redact sensitive values from dicts, lists and strings."""
    if isinstance(data, dict):
        masked = {}
        for k, v in data.items():
            if isinstance(k, str) and SECRET_KEY_PATTERN.search(k) and v:
                masked[k] = REDACTED
            else:
                masked[k] = mask_secrets(v)
        return masked
    if isinstance(data, (list, tuple)):
        return [mask_secrets(i) for i in data]
    if isinstance(data, str):
        masked = data
        for pattern in SECRET_VALUE_PATTERNS:
            masked = pattern.sub(REDACTED, masked)
        return masked
    return data
