from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path
from typing import Mapping, Optional, Sequence

from .contracts import CommandResult


class LocalCommandRunner:
    """CommandRunner that executes on the local agent via subprocess.

    ``env`` entries are layered over the current process environment for the
    child only; the parent's os.environ is never modified.
    """

    def __init__(self, *, timeout: Optional[int] = None):
        self.timeout = timeout

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
        input_text: Optional[str] = None,
    ) -> CommandResult:
        child_env = dict(os.environ)
        if env:
            child_env.update({str(k): str(v) for k, v in env.items()})
        try:
            cp = subprocess.run(
                list(args),
                cwd=str(cwd) if cwd else None,
                env=child_env,
                input=input_text,
                check=False,
                text=True,
                capture_output=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            # Match the shell convention for "command not found".
            return CommandResult(args=list(args), returncode=127, stderr=str(e))
        except subprocess.TimeoutExpired as e:
            return CommandResult(args=list(args), returncode=124, stderr=f"timed out after {e.timeout}s")
        return CommandResult(args=list(args), returncode=cp.returncode, stdout=cp.stdout or "", stderr=cp.stderr or "")

    def available(self, executable: str) -> bool:
        return shutil.which(executable) is not None
