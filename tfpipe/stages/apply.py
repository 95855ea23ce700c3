from __future__ import annotations

import json
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Optional

from ..backend.locks import LockChecker
from ..infra.errors import ApplyError
from ..infra.models import ApprovalRecord, Environment, LockInfo, StateBackup
from ..tofu.runner import TofuClient
from ..utils.fs import atomic_write_text, sha256_file
from .approval import read_approval
from .artifacts import apply_log_name, metadata_keys, outputs_file_name, plan_file_names
from .backup import best_effort_backup
from .context import StageContext, environment_session, log_group, publish_failure


@dataclass(frozen=True)
class ApplyResult:
    environment: str
    outputs_path: Path
    log_path: Path
    backup: Optional[StateBackup] = None
    approval: Optional[ApprovalRecord] = None
    released_lock: Optional[LockInfo] = None


class ApplyStage:
    """Apply the reviewed plan artifact for one environment.

    The plan is always the artifact produced by the plan step, never a fresh
    plan, so what was reviewed is what gets applied.
    """

    def __init__(
        self,
        ctx: StageContext,
        environment: Environment,
        *,
        backup_dir: Path,
        force_unlock: bool = False,
        env: Optional[Mapping[str, str]] = None,
    ):
        self.ctx = ctx
        self.environment = environment
        self.backup_dir = backup_dir
        self.force_unlock = force_unlock
        self.env = env

    def _download_plan(self) -> Path:
        name = plan_file_names(self.environment.name)["plan"]
        dest = self.ctx.output_dir / "downloaded"
        found = [p for p in self.ctx.agent.download_artifact(name, dest) if p.name == name]
        if not found:
            raise ApplyError(f"plan artifact {name} not found for environment {self.environment.name}")
        plan_path = found[0].resolve()

        expected = self.ctx.agent.get_metadata(metadata_keys(self.environment.name)["sha256"])
        if expected:
            actual = sha256_file(plan_path)
            if actual != expected:
                raise ApplyError(
                    f"plan artifact checksum mismatch for {self.environment.name}: expected {expected[:12]}, got {actual[:12]}"
                )
        return plan_path

    def _apply(self, tofu: TofuClient, plan_path: Path) -> ApplyResult:
        env_name = self.environment.name
        log_path = self.ctx.output_dir / apply_log_name(env_name)
        outputs_path = self.ctx.output_dir / outputs_file_name(env_name)

        cp = tofu.apply(plan_path)
        atomic_write_text(log_path, cp.stdout + (("\n" + cp.stderr) if cp.stderr else ""))
        if not cp.ok:
            self.ctx.agent.upload_artifacts([log_path])
            raise ApplyError(f"apply failed for {env_name} (exit {cp.returncode}): {cp.tail()}")

        out = tofu.output_json()
        if not out.ok:
            raise ApplyError(f"could not read outputs for {env_name}: {out.tail()}")
        try:
            outputs = json.loads(out.stdout or "{}")
        except json.JSONDecodeError as e:
            raise ApplyError(f"outputs for {env_name} are not valid JSON: {e}")
        atomic_write_text(outputs_path, json.dumps(outputs, indent=2, sort_keys=True) + "\n")

        self.ctx.agent.upload_artifacts([outputs_path, log_path])
        return ApplyResult(environment=env_name, outputs_path=outputs_path, log_path=log_path)

    def run(self) -> ApplyResult:
        env_name = self.environment.name
        log_group(f":terraform: Apply {env_name}")
        try:
            approval = None
            if self.environment.production:
                approval = read_approval(self.ctx.agent, env_name, env=self.env)
                print(f"[apply] approval for {env_name} by {approval.approver}")

            with environment_session(self.ctx, self.environment) as (bundle, tofu):
                addresses = self.ctx.backend().addresses(self.environment)
                released = LockChecker(http=self.ctx.http).ensure_unlocked(
                    addresses, bundle, tofu, force_unlock=self.force_unlock
                )
                backup = best_effort_backup(
                    environment=env_name, tofu=tofu, backup_dir=self.backup_dir, agent=self.ctx.agent
                )
                plan_path = self._download_plan()
                result = self._apply(tofu, plan_path)
        except Exception as e:
            print(f"[apply][FAILED] environment={env_name} {type(e).__name__}: {e}")
            publish_failure(self.ctx.agent, context=f"apply-{env_name}", title=f"Apply failed for `{env_name}`", error=e)
            raise

        result = replace(result, backup=backup, approval=approval, released_lock=released)
        lines = [f"**Applied `{env_name}`** ({self.ctx.project})"]
        if approval is not None:
            lines.append(f"Approved by {approval.approver}: {approval.justification}")
        if released is not None:
            lines.append(f":warning: stale lock {released.lock_id} was force-released")
        if backup is None:
            lines.append("State backup was skipped.")
        self.ctx.agent.annotate("\n\n".join(lines), style="success", context=f"apply-{env_name}")
        print(f"[apply] environment={env_name} outputs={result.outputs_path.name}")
        return result
