from __future__ import annotations

from pathlib import Path
from typing import Dict, Mapping, Optional

from ..infra.contracts import CommandResult, CommandRunner
from ..infra.exec_local import LocalCommandRunner

# Keeps tofu/terraform from prompting or decorating output in CI logs.
AUTOMATION_ENV: Dict[str, str] = {
    "TF_IN_AUTOMATION": "1",
    "TF_INPUT": "0",
}


class TofuClient:
    """Runs the OpenTofu (or Terraform) binary in one environment's workdir.

    ``env`` carries the credentials for this environment only and is passed to
    each child process; it is never written to os.environ.
    """

    def __init__(
        self,
        *,
        workdir: Path,
        binary: str = "tofu",
        env: Optional[Mapping[str, str]] = None,
        runner: Optional[CommandRunner] = None,
    ):
        self.workdir = workdir
        self.binary = binary
        self.env: Dict[str, str] = dict(AUTOMATION_ENV)
        if env:
            self.env.update(env)
        self.runner = runner or LocalCommandRunner()

    def with_env(self, env: Mapping[str, str]) -> "TofuClient":
        merged = dict(self.env)
        merged.update(env)
        return TofuClient(workdir=self.workdir, binary=self.binary, env=merged, runner=self.runner)

    def clear_env(self) -> None:
        """Drop everything but the automation settings."""
        self.env = dict(AUTOMATION_ENV)

    def run(self, *args: str) -> CommandResult:
        return self.runner.run([self.binary, *args], cwd=self.workdir, env=self.env)

    def init(self) -> CommandResult:
        return self.run("init", "-reconfigure", "-input=false", "-no-color")

    def validate(self) -> CommandResult:
        return self.run("validate", "-no-color")

    def plan(self, out_path: Path) -> CommandResult:
        return self.run("plan", "-input=false", "-no-color", f"-out={out_path}")

    def show_json(self, plan_path: Path) -> CommandResult:
        return self.run("show", "-json", str(plan_path))

    def apply(self, plan_path: Path) -> CommandResult:
        return self.run("apply", "-input=false", "-no-color", str(plan_path))

    def output_json(self) -> CommandResult:
        return self.run("output", "-json")

    def state_pull(self) -> CommandResult:
        return self.run("state", "pull")

    def force_unlock(self, lock_id: str) -> CommandResult:
        return self.run("force-unlock", "-force", lock_id)
