"""Optional plan analyzers.

Two independent external tools look at a plan:

- ai-summary: writes a plain-text summary of the plan to stdout.
  Exit 0 means nothing notable, exit 2 means "review carefully".
- blast-radius: writes a JSON report to stdout:
  ``{"changed": [...], "affected": [...], "risk": "low|medium|high|critical"}``.

Neither may fail the plan. Every problem becomes an AnalysisOutcome with status
FAILED or SKIPPED, and the caller decides how loudly to report it.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List, Sequence

from ..config.load_deploy_config import AnalyzerSpec
from ..infra.contracts import CiAgent, CommandRunner
from ..infra.errors import AnalysisFailure
from ..infra.models import AnalysisOutcome, Environment, PlanArtifact
from ..tofu.plan_summary import summarize_plan
from ..utils.fs import atomic_write_text, ensure_dir
from .artifacts import plan_file_names
from .context import StageContext, log_group

AI_SUMMARY = "ai-summary"
BLAST_RADIUS = "blast-radius"
ANALYZERS = (AI_SUMMARY, BLAST_RADIUS)

WARN_EXIT_CODE = 2
HIGH_RISK = ("high", "critical")


def render_command(template: Sequence[str], artifact: PlanArtifact) -> List[str]:
    values = {
        "plan_json": str(artifact.json_path),
        "plan_text": str(artifact.text_path),
        "plan_file": str(artifact.plan_path),
        "environment": artifact.environment,
        "project": artifact.project,
    }
    try:
        return [part.format(**values) for part in template]
    except (KeyError, IndexError) as e:
        raise AnalysisFailure(f"unknown placeholder in analyzer command {list(template)}: {e}")


def _skipped(spec: AnalyzerSpec, runner: CommandRunner) -> str:
    if not spec.configured:
        return "not configured"
    if not runner.available(spec.command[0]):
        return f"executable {spec.command[0]!r} not found"
    return ""


def run_ai_summary(spec: AnalyzerSpec, artifact: PlanArtifact, runner: CommandRunner, output_dir: Path) -> AnalysisOutcome:
    cp = runner.run(render_command(spec.command, artifact), cwd=output_dir)
    if cp.returncode not in (0, WARN_EXIT_CODE):
        raise AnalysisFailure(f"{AI_SUMMARY} exited {cp.returncode}: {cp.tail(5)}")
    out = output_dir / f"ai-summary-{artifact.environment}.txt"
    atomic_write_text(out, cp.stdout)
    status = "WARNED" if cp.returncode == WARN_EXIT_CODE else "PASSED"
    first_line = next((ln.strip() for ln in cp.stdout.splitlines() if ln.strip()), "")
    return AnalysisOutcome(analyzer=AI_SUMMARY, status=status, detail=first_line[:200], outputs=(out,))


def render_blast_radius(report: Dict, environment: str) -> str:
    changed = [str(x) for x in report.get("changed") or []]
    affected = [str(x) for x in report.get("affected") or []]
    lines = [
        f"Blast radius for {environment}",
        f"risk: {report.get('risk') or 'unknown'}",
        f"changed resources: {len(changed)}",
    ]
    lines.extend(f"  ~ {a}" for a in changed)
    lines.append(f"affected downstream resources: {len(affected)}")
    lines.extend(f"  > {a}" for a in affected)
    return "\n".join(lines) + "\n"


def run_blast_radius(spec: AnalyzerSpec, artifact: PlanArtifact, runner: CommandRunner, output_dir: Path) -> AnalysisOutcome:
    cp = runner.run(render_command(spec.command, artifact), cwd=output_dir)
    if not cp.ok:
        raise AnalysisFailure(f"{BLAST_RADIUS} exited {cp.returncode}: {cp.tail(5)}")
    try:
        report = json.loads(cp.stdout)
    except json.JSONDecodeError as e:
        raise AnalysisFailure(f"{BLAST_RADIUS} output is not JSON: {e}")
    if not isinstance(report, dict):
        raise AnalysisFailure(f"{BLAST_RADIUS} output must be a JSON object")

    json_out = output_dir / f"blast-radius-{artifact.environment}.json"
    text_out = output_dir / f"blast-radius-{artifact.environment}.txt"
    atomic_write_text(json_out, json.dumps(report, indent=2, sort_keys=True) + "\n")
    atomic_write_text(text_out, render_blast_radius(report, artifact.environment))

    risk = str(report.get("risk") or "").lower()
    affected = len(report.get("affected") or [])
    warn = risk in HIGH_RISK or affected > spec.warn_threshold
    return AnalysisOutcome(
        analyzer=BLAST_RADIUS,
        status="WARNED" if warn else "PASSED",
        detail=f"risk={risk or 'unknown'} affected={affected}",
        outputs=(json_out, text_out),
    )


_RUNNERS = {AI_SUMMARY: run_ai_summary, BLAST_RADIUS: run_blast_radius}


def run_analyzer(spec: AnalyzerSpec, artifact: PlanArtifact, runner: CommandRunner, output_dir: Path) -> AnalysisOutcome:
    """Run one analyzer; never raises."""
    reason = _skipped(spec, runner)
    if reason:
        print(f"[analysis] {spec.name} skipped: {reason}")
        return AnalysisOutcome(analyzer=spec.name, status="SKIPPED", detail=reason)
    try:
        outcome = _RUNNERS[spec.name](spec, artifact, runner, output_dir)
    except Exception as e:
        print(f"[analysis] WARNING: {spec.name} failed for {artifact.environment}: {e}")
        return AnalysisOutcome(analyzer=spec.name, status="FAILED", detail=str(e))
    print(f"[analysis] {spec.name} {outcome.status} {outcome.detail}")
    return outcome


def summarize_outcomes(outcomes: Sequence[AnalysisOutcome], environment: str) -> str:
    lines = [f"**Plan analysis for `{environment}`**", ""]
    for o in outcomes:
        detail = f": {o.detail}" if o.detail else ""
        lines.append(f"- {o.analyzer}: {o.status}{detail}")
    return "\n".join(lines)


def analyze_plan(
    artifact: PlanArtifact,
    specs: Sequence[AnalyzerSpec],
    *,
    runner: CommandRunner,
    agent: CiAgent,
    output_dir: Path,
) -> List[AnalysisOutcome]:
    """Run every analyzer, upload what they produced, annotate softly."""
    ensure_dir(output_dir)
    outcomes = [run_analyzer(spec, artifact, runner, output_dir) for spec in specs]

    outputs = [p for o in outcomes for p in o.outputs]
    style = "warning" if any(o.needs_attention for o in outcomes) else "info"
    try:
        agent.upload_artifacts(outputs)
        agent.annotate(summarize_outcomes(outcomes, artifact.environment), style=style, context=f"analysis-{artifact.environment}")
    except Exception as e:
        print(f"[analysis] WARNING: could not publish analysis results for {artifact.environment}: {e}")
    return outcomes


def run_analysis_step(ctx: StageContext, environment: Environment) -> List[AnalysisOutcome]:
    """Analyze the plan artifacts produced by this environment's plan step."""
    log_group(f":mag: Analyze {environment.name}")
    names = plan_file_names(environment.name)
    dest = ctx.output_dir / "downloaded"
    fetched: Dict[str, Path] = {}
    for kind in ("json", "text"):
        found = [p for p in ctx.agent.download_artifact(names[kind], dest) if p.name == names[kind]]
        if not found:
            raise AnalysisFailure(f"plan artifact {names[kind]} not found for environment {environment.name}")
        fetched[kind] = found[0]

    json_text = fetched["json"].read_text(encoding="utf-8")
    artifact = PlanArtifact(
        environment=environment.name,
        project=ctx.project,
        plan_path=dest / names["plan"],
        json_path=fetched["json"],
        text_path=fetched["text"],
        summary=summarize_plan(json_text=json_text, plan_text=fetched["text"].read_text(encoding="utf-8")),
    )
    return analyze_plan(
        artifact,
        [ctx.config.analyzer(name) for name in ANALYZERS],
        runner=ctx.runner,
        agent=ctx.agent,
        output_dir=ctx.output_dir,
    )
