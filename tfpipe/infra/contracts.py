from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Protocol, Sequence

from .models import AnnotationStyle


@dataclass(frozen=True)
class CommandResult:
    args: Sequence[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def tail(self, lines: int = 20) -> str:
        """Last lines of stderr (or stdout when stderr is empty), for error messages."""
        text = (self.stderr or self.stdout or "").strip()
        return "\n".join(text.splitlines()[-lines:])


class CommandRunner(Protocol):
    def run(
        self,
        args: Sequence[str],
        *,
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
        input_text: Optional[str] = None,
    ) -> CommandResult:
        raise NotImplementedError

    def available(self, executable: str) -> bool:
        raise NotImplementedError


class HttpClient(Protocol):
    """The subset of the ``requests`` module API the pipeline relies on."""

    def get(self, url: str, **kwargs: Any) -> Any:
        raise NotImplementedError

    def post(self, url: str, **kwargs: Any) -> Any:
        raise NotImplementedError


class CiAgent(Protocol):
    def annotate(self, body: str, *, style: AnnotationStyle, context: str, append: bool = False) -> None:
        raise NotImplementedError

    def set_metadata(self, key: str, value: str) -> None:
        raise NotImplementedError

    def get_metadata(self, key: str, default: Optional[str] = None) -> Optional[str]:
        raise NotImplementedError

    def upload_artifacts(self, paths: Iterable[Path]) -> None:
        raise NotImplementedError

    def download_artifact(self, pattern: str, dest_dir: Path) -> List[Path]:
        raise NotImplementedError

    def upload_pipeline(self, pipeline_yaml: str) -> None:
        raise NotImplementedError

    def request_oidc_token(self, audience: str) -> str:
        raise NotImplementedError
