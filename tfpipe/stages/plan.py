from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Sequence

from ..config.load_deploy_config import AnalyzerSpec
from ..infra.contracts import CiAgent, CommandRunner
from ..infra.errors import PlanError, StageTransitionError, ValidationError
from ..infra.models import AnalysisOutcome, ChangeSummary, Environment, PlanArtifact
from ..tofu.plan_summary import changed_addresses, summarize_plan
from ..tofu.runner import TofuClient
from ..utils.fs import atomic_write_text, ensure_dir, sha256_file
from .analysis import ANALYZERS, analyze_plan
from .artifacts import metadata_keys, plan_file_names
from .context import StageContext, environment_session, log_group, publish_failure


class PlanState(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    VALIDATING = "VALIDATING"
    PLANNING = "PLANNING"
    ANALYZING = "ANALYZING"
    REPORTED = "REPORTED"
    FAILED = "FAILED"


_TRANSITIONS: Dict[PlanState, FrozenSet[PlanState]] = {
    PlanState.NOT_STARTED: frozenset({PlanState.VALIDATING, PlanState.FAILED}),
    PlanState.VALIDATING: frozenset({PlanState.PLANNING, PlanState.FAILED}),
    PlanState.PLANNING: frozenset({PlanState.ANALYZING, PlanState.FAILED}),
    PlanState.ANALYZING: frozenset({PlanState.REPORTED, PlanState.FAILED}),
    PlanState.REPORTED: frozenset(),
    PlanState.FAILED: frozenset(),
}

MAX_LISTED_ADDRESSES = 50


def plan_annotation(artifact: PlanArtifact, changed: Sequence[str] = ()) -> str:
    s = artifact.summary
    lines = [f"**Plan for `{artifact.environment}`** ({artifact.project})", "", s.render()]
    if s.risky:
        lines.append("")
        lines.append(f":warning: {s.destructions} resource(s) will be destroyed. Review `{artifact.text_path.name}` before approving.")
    if changed:
        lines.extend(["", "<details><summary>Changed resources</summary>", ""])
        lines.extend(f"- `{a}`" for a in changed[:MAX_LISTED_ADDRESSES])
        if len(changed) > MAX_LISTED_ADDRESSES:
            lines.append(f"- ... and {len(changed) - MAX_LISTED_ADDRESSES} more")
        lines.extend(["", "</details>"])
    return "\n".join(lines)


class PlanStage:
    """Validate, plan, analyze and report one environment.

    NOT_STARTED -> VALIDATING -> PLANNING -> ANALYZING -> REPORTED, with
    FAILED reachable from every non-terminal state.
    """

    def __init__(
        self,
        *,
        environment: Environment,
        project: str,
        tofu: TofuClient,
        agent: CiAgent,
        output_dir: Path,
        analyzers: Sequence[AnalyzerSpec] = (),
        analysis_runner: Optional[CommandRunner] = None,
    ):
        self.environment = environment
        self.project = project
        self.tofu = tofu
        self.agent = agent
        self.output_dir = output_dir
        self.analyzers = list(analyzers)
        self.analysis_runner = analysis_runner or tofu.runner
        self.state = PlanState.NOT_STARTED
        self.history: List[PlanState] = [PlanState.NOT_STARTED]
        self.outcomes: List[AnalysisOutcome] = []

    def _to(self, new_state: PlanState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise StageTransitionError(f"plan stage cannot move from {self.state.value} to {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    def _validate(self) -> None:
        self._to(PlanState.VALIDATING)
        cp = self.tofu.validate()
        if not cp.ok:
            raise ValidationError(f"configuration validation failed for {self.environment.name}: {cp.tail()}")

    def _plan(self) -> PlanArtifact:
        self._to(PlanState.PLANNING)
        names = plan_file_names(self.environment.name)
        ensure_dir(self.output_dir)
        plan_path = (self.output_dir / names["plan"]).resolve()
        json_path = self.output_dir / names["json"]
        text_path = self.output_dir / names["text"]

        cp = self.tofu.plan(plan_path)
        atomic_write_text(text_path, cp.stdout)
        if not cp.ok:
            raise PlanError(f"plan failed for {self.environment.name} (exit {cp.returncode}): {cp.tail()}")

        shown = self.tofu.show_json(plan_path)
        if not shown.ok:
            raise PlanError(f"could not render plan as JSON for {self.environment.name}: {shown.tail()}")
        atomic_write_text(json_path, shown.stdout)

        summary = summarize_plan(json_text=shown.stdout, plan_text=cp.stdout)
        return PlanArtifact(
            environment=self.environment.name,
            project=self.project,
            plan_path=plan_path,
            json_path=json_path,
            text_path=text_path,
            summary=summary,
            sha256=sha256_file(plan_path) if plan_path.exists() else "",
        )

    def _report(self, artifact: PlanArtifact) -> None:
        s: ChangeSummary = artifact.summary
        keys = metadata_keys(self.environment.name)
        self.agent.set_metadata(keys["add"], str(s.additions))
        self.agent.set_metadata(keys["change"], str(s.changes))
        self.agent.set_metadata(keys["destroy"], str(s.destructions))
        if artifact.sha256:
            self.agent.set_metadata(keys["sha256"], artifact.sha256)
        self.agent.upload_artifacts([artifact.plan_path, artifact.json_path, artifact.text_path])
        try:
            changed = changed_addresses(json.loads(artifact.json_path.read_text(encoding="utf-8")))
        except (OSError, ValueError):
            changed = []
        self.agent.annotate(plan_annotation(artifact, changed), style=s.annotation_style, context=f"plan-{self.environment.name}")

    def run(self, *, analyze: bool = True) -> PlanArtifact:
        try:
            self._validate()
            artifact = self._plan()
            print(f"[plan] environment={self.environment.name} {artifact.summary.render()}")
            self._report(artifact)
            self._to(PlanState.ANALYZING)
            if analyze:
                self.outcomes = analyze_plan(
                    artifact,
                    self.analyzers,
                    runner=self.analysis_runner,
                    agent=self.agent,
                    output_dir=self.output_dir,
                )
            self._to(PlanState.REPORTED)
            return artifact
        except Exception as e:
            if self.state not in (PlanState.REPORTED, PlanState.FAILED):
                self._to(PlanState.FAILED)
            print(f"[plan][FAILED] environment={self.environment.name} {type(e).__name__}: {e}")
            publish_failure(self.agent, context=f"plan-{self.environment.name}", title=f"Plan failed for `{self.environment.name}`", error=e)
            raise


def run_plan_step(ctx: StageContext, environment: Environment, *, analyze: bool = True) -> PlanArtifact:
    """Credentials, backend init and the plan stage for one environment."""
    log_group(f":terraform: Plan {environment.name}")
    stage: Optional[PlanStage] = None
    try:
        with environment_session(ctx, environment) as (_bundle, tofu):
            stage = PlanStage(
                environment=environment,
                project=ctx.project,
                tofu=tofu,
                agent=ctx.agent,
                output_dir=ctx.output_dir,
                analyzers=[ctx.config.analyzer(name) for name in ANALYZERS],
                analysis_runner=ctx.runner,
            )
            return stage.run(analyze=analyze)
    except Exception as e:
        # PlanStage reports its own failures; this covers credentials and backend init.
        if stage is None:
            print(f"[plan][FAILED] environment={environment.name} {type(e).__name__}: {e}")
            publish_failure(ctx.agent, context=f"plan-{environment.name}", title=f"Plan failed for `{environment.name}`", error=e)
        raise
