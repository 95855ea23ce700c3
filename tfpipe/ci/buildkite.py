from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Iterable, List, Optional

from ..infra.contracts import CommandRunner
from ..infra.errors import PipelineError
from ..infra.exec_local import LocalCommandRunner
from ..infra.models import AnnotationStyle

ANNOTATION_STYLES = ("success", "info", "warning", "error")


class BuildkiteError(PipelineError):
    pass


class BuildkiteAgent:
    """Thin wrapper over the ``buildkite-agent`` CLI.

    Outside of a Buildkite job (no BUILDKITE env var) annotations and
    meta-data are printed, artifacts are copied to ``local_artifacts_dir``
    and meta-data lives in memory, so every stage can run on a laptop.
    """

    def __init__(
        self,
        *,
        runner: Optional[CommandRunner] = None,
        binary: str = "buildkite-agent",
        enabled: Optional[bool] = None,
        local_artifacts_dir: Optional[Path] = None,
    ):
        self.runner = runner or LocalCommandRunner()
        self.binary = binary
        self.enabled = bool(os.environ.get("BUILDKITE")) if enabled is None else enabled
        self.local_artifacts_dir = local_artifacts_dir or Path(".artifacts")
        self._local_metadata: dict = {}

    def _run(self, args: List[str], input_text: Optional[str] = None):
        return self.runner.run([self.binary, *args], input_text=input_text)

    def annotate(self, body: str, *, style: AnnotationStyle, context: str, append: bool = False) -> None:
        if style not in ANNOTATION_STYLES:
            raise ValueError(f"invalid annotation style: {style!r}")
        if not self.enabled:
            print(f"[annotate][{style}][{context}] {body}")
            return
        args = ["annotate", "--style", style, "--context", context]
        if append:
            args.append("--append")
        cp = self._run(args, input_text=body)
        if not cp.ok:
            raise BuildkiteError(f"Failed to annotate context={context}: {cp.tail()}")

    def set_metadata(self, key: str, value: str) -> None:
        if not self.enabled:
            self._local_metadata[key] = str(value)
            print(f"[meta-data] {key}={value}")
            return
        cp = self._run(["meta-data", "set", key, str(value)])
        if not cp.ok:
            raise BuildkiteError(f"Failed to set meta-data {key}: {cp.tail()}")

    def get_metadata(self, key: str, default: Optional[str] = None) -> Optional[str]:
        if not self.enabled:
            return self._local_metadata.get(key, default)
        cp = self._run(["meta-data", "get", key])
        if not cp.ok:
            # The agent exits nonzero when the key was never set.
            return default
        return cp.stdout.rstrip("\n")

    def upload_artifacts(self, paths: Iterable[Path]) -> None:
        files = [Path(p) for p in paths if Path(p).exists()]
        if not files:
            return
        if not self.enabled:
            self.local_artifacts_dir.mkdir(parents=True, exist_ok=True)
            for p in files:
                shutil.copy2(str(p), str(self.local_artifacts_dir / p.name))
            return
        for p in files:
            # Upload from the file's own directory so the artifact path is just its name.
            cp = self.runner.run([self.binary, "artifact", "upload", p.name], cwd=p.parent)
            if not cp.ok:
                raise BuildkiteError(f"Failed to upload artifact {p.name}: {cp.tail()}")

    def download_artifact(self, pattern: str, dest_dir: Path) -> List[Path]:
        dest_dir.mkdir(parents=True, exist_ok=True)
        if not self.enabled:
            out: List[Path] = []
            for src in sorted(self.local_artifacts_dir.glob(pattern)):
                dst = dest_dir / src.name
                shutil.copy2(str(src), str(dst))
                out.append(dst)
            return out
        cp = self._run(["artifact", "download", pattern, str(dest_dir)])
        if not cp.ok:
            return []
        return sorted(dest_dir.glob(pattern))

    def upload_pipeline(self, pipeline_yaml: str) -> None:
        if not self.enabled:
            print(pipeline_yaml)
            return
        cp = self._run(["pipeline", "upload"], input_text=pipeline_yaml)
        if not cp.ok:
            raise BuildkiteError(f"Failed to upload pipeline: {cp.tail()}")

    def request_oidc_token(self, audience: str) -> str:
        if not self.enabled:
            return ""
        cp = self._run(["oidc", "request-token", "--audience", audience])
        if not cp.ok:
            raise BuildkiteError(f"Failed to request OIDC token: {cp.tail()}")
        return cp.stdout.strip()
