from __future__ import annotations

import re
from typing import Any

TOKENISH = re.compile(r"(?i)(secret|token|password|apikey|api_key)\s*[=:]\s*\S+")
PRIVATE_KEY = re.compile(
    r"-----BEGIN [A-Z ]*PRIVATE KEY-----.*?-----END [A-Z ]*PRIVATE KEY-----",
    re.S,
)
HEX_LONG = re.compile(r"\b[0-9a-f]{48,}\b", re.I)


def redact_string(s: str) -> str:
    s = PRIVATE_KEY.sub("[REDACTED KEY]", s)
    s = TOKENISH.sub(lambda m: f"{m.group(1)}=[REDACTED]", s)
    return HEX_LONG.sub("[REDACTED]", s)


def redact_data(data: Any) -> Any:
    if isinstance(data, str):
        return redact_string(data)
    if isinstance(data, dict):
        return {k: redact_data(v) for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        return [redact_data(v) for v in data]
    return data
