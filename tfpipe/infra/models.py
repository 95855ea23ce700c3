from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Literal, Optional, Tuple

# Single source of truth for analyzer result states.
AnalysisStatus = Literal["PASSED", "WARNED", "SKIPPED", "FAILED"]
ANALYSIS_STATUS_VALUES: Tuple[str, ...] = ("PASSED", "WARNED", "SKIPPED", "FAILED")

# Buildkite annotation styles.
AnnotationStyle = Literal["success", "info", "warning", "error"]


@dataclass(frozen=True)
class Environment:
    """One named deployment target in the sequence."""

    name: str
    position: int
    workdir: Path
    production: bool = False


@dataclass(frozen=True)
class DeploymentSequence:
    """Ordered environments. Environment i must apply before i+1 starts."""

    environments: Tuple[Environment, ...] = ()

    def __post_init__(self) -> None:
        names = [e.name for e in self.environments]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate environment names in sequence: {names}")
        for idx, env in enumerate(self.environments):
            if env.position != idx:
                raise ValueError(f"environment {env.name!r} has position {env.position}, expected {idx}")

    def __iter__(self) -> Iterator[Environment]:
        return iter(self.environments)

    def __len__(self) -> int:
        return len(self.environments)

    def names(self) -> List[str]:
        return [e.name for e in self.environments]

    def get(self, name: str) -> Environment:
        for env in self.environments:
            if env.name == name:
                return env
        raise KeyError(name)

    def previous(self, env: Environment) -> Optional[Environment]:
        if env.position == 0:
            return None
        return self.environments[env.position - 1]


class CredentialBundle:
    """Secrets for a single environment, held in memory only.

    Values are keyed by logical name (for example TF_HTTP_USERNAME). The bundle
    is a context manager: leaving the ``with`` block scrubs every value, so a
    stage cannot leak credentials into the next environment.
    """

    def __init__(self, environment: str, values: Optional[Dict[str, str]] = None):
        self.environment = environment
        self._values: Dict[str, str] = dict(values or {})
        self.providers_loaded: List[str] = []
        self.providers_skipped: List[str] = []
        self.scrubbed = False

    def __repr__(self) -> str:
        return f"CredentialBundle(environment={self.environment!r}, keys={sorted(self._values)})"

    def __enter__(self) -> "CredentialBundle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.scrub()

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def keys(self) -> List[str]:
        return sorted(self._values)

    def get(self, key: str, default: str = "") -> str:
        return self._values.get(key, default)

    def set(self, key: str, value: str) -> None:
        if self.scrubbed:
            raise RuntimeError(f"credential bundle for {self.environment!r} was already scrubbed")
        self._values[key] = value

    def as_env(self) -> Dict[str, str]:
        """Return a copy suitable for merging into a subprocess environment."""
        return dict(self._values)

    def scrub(self) -> None:
        for k in list(self._values):
            self._values[k] = ""
        self._values.clear()
        self.scrubbed = True


@dataclass(frozen=True)
class ChangeSummary:
    additions: int = 0
    changes: int = 0
    destructions: int = 0
    # json | text | no-changes
    source: str = "json"

    @property
    def has_changes(self) -> bool:
        return (self.additions + self.changes + self.destructions) > 0

    @property
    def risky(self) -> bool:
        return self.destructions > 0

    @property
    def annotation_style(self) -> AnnotationStyle:
        return "warning" if self.risky else "success"

    def as_tuple(self) -> Tuple[int, int, int]:
        return (self.additions, self.changes, self.destructions)

    def render(self) -> str:
        if not self.has_changes:
            return "No changes."
        return f"Plan: {self.additions} to add, {self.changes} to change, {self.destructions} to destroy."


@dataclass(frozen=True)
class PlanArtifact:
    """Output of the plan stage, consumed read-only by analysis and apply."""

    environment: str
    project: str
    plan_path: Path
    json_path: Path
    text_path: Path
    summary: ChangeSummary
    sha256: str = ""


@dataclass(frozen=True)
class StateBackup:
    environment: str
    path: Path
    created_at: str
    sha256: str = ""
    size_bytes: int = 0


@dataclass(frozen=True)
class ApprovalRecord:
    environment: str
    approver: str
    justification: str


@dataclass(frozen=True)
class AnalysisOutcome:
    """Result of one optional analyzer.

    SKIPPED is distinct from PASSED: an analyzer that never ran is not a pass.
    """

    analyzer: str
    status: AnalysisStatus
    detail: str = ""
    outputs: Tuple[Path, ...] = ()

    def __post_init__(self) -> None:
        if self.status not in ANALYSIS_STATUS_VALUES:
            raise ValueError(f"invalid analysis status: {self.status!r}")

    @property
    def passed(self) -> bool:
        return self.status == "PASSED"

    @property
    def ran(self) -> bool:
        return self.status != "SKIPPED"

    @property
    def needs_attention(self) -> bool:
        return self.status in ("WARNED", "FAILED")


@dataclass(frozen=True)
class BackendAddresses:
    address: str
    lock_address: str
    unlock_address: str


@dataclass(frozen=True)
class LockInfo:
    lock_id: str
    who: str = ""
    operation: str = ""
    created: str = ""
    raw: Dict[str, str] = field(default_factory=dict)

    def describe(self) -> str:
        parts = [f"id={self.lock_id}"]
        if self.who:
            parts.append(f"who={self.who}")
        if self.operation:
            parts.append(f"operation={self.operation}")
        if self.created:
            parts.append(f"created={self.created}")
        return " ".join(parts)
