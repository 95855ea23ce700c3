"""CI orchestrator adapter (Buildkite)."""

from .buildkite import BuildkiteAgent, BuildkiteError  # noqa: F401
