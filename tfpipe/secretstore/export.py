"""Short-lived credential export file.

The only place credentials touch disk. ``tfpipe secrets --export-file`` writes
them here (mode 0600) and a later command in the same job reads and deletes
the file in one call (``--credentials-file``).
"""

from __future__ import annotations

import re
import shlex
from pathlib import Path
from typing import Dict

from ..infra.models import CredentialBundle
from ..utils.fs import write_private_text

_EXPORT_RE = re.compile(r"^export\s+([A-Z][A-Z0-9_]*)=(.*)$")


def render_exports(bundle: CredentialBundle) -> str:
    lines = [f"export {k}={shlex.quote(bundle.get(k))}" for k in bundle.keys()]
    return "\n".join(lines) + ("\n" if lines else "")


def write_export_file(bundle: CredentialBundle, path: Path) -> Path:
    write_private_text(path, render_exports(bundle))
    return path


def consume_export_file(path: Path) -> Dict[str, str]:
    """Parse an export file and delete it, even if parsing fails."""
    try:
        out: Dict[str, str] = {}
        for line in path.read_text(encoding="utf-8").splitlines():
            m = _EXPORT_RE.match(line.strip())
            if not m:
                continue
            parts = shlex.split(m.group(2))
            out[m.group(1)] = parts[0] if parts else ""
        return out
    finally:
        path.unlink(missing_ok=True)

