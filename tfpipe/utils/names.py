from __future__ import annotations

import re

# Environment and project names end up in URLs, file names and Buildkite step keys.
NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,62}$")


def validate_name(kind: str, value: str) -> str:
    v = str(value or "").strip()
    if not NAME_RE.match(v):
        raise ValueError(f"Invalid {kind}: {value!r} (expected letters, digits, '-' or '_')")
    return v


def truthy(value: object) -> bool:
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")
