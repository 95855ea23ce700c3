"""Multi-environment deployment sequencing.

Every environment gets the same step template:

    secrets-<env> -> plan-<env> -> analysis-<env> [-> approve-<env>] -> apply-<env>

Environments are chained, never parallel: secrets-<env i+1> depends on
apply-<env i>, and the first environment waits for the security-scan gate.
Production environments get a block step with a required justification field
between analysis and apply.
"""

from __future__ import annotations

import shlex
from typing import List

from ..config.load_deploy_config import DeployConfig
from ..infra.errors import StepGraphError
from ..infra.models import DeploymentSequence, Environment
from ..stages.approval import justification_key
from .step_graph import BlockStep, CommandStep, StepGraph, TextField

SECURITY_GATE_KEY = "security-scan"
STAGE_KINDS = ("secrets", "plan", "analysis", "approve", "apply")

DEFAULT_CLI = "python -m tfpipe.cli"
DEFAULT_SCAN_COMMAND = f"{DEFAULT_CLI} scan-summary --output security-scan-summary.json scan-results/*.json"


def step_key(kind: str, environment: str) -> str:
    if kind not in STAGE_KINDS:
        raise ValueError(f"unknown stage kind: {kind}")
    return f"{kind}-{environment}"


def _cli(cli: str, *args: str) -> str:
    return " ".join([cli, *(shlex.quote(a) for a in args)])


def _environment_steps(graph: StepGraph, env: Environment, *, project: str, cli: str, after: str) -> None:
    name = env.name
    lock_group = f"tfpipe/{project}/{name}"

    graph.add(
        CommandStep(
            key=step_key("secrets", name),
            label=f":key: Secrets {name}",
            command=_cli(cli, "secrets", "--environment", name),
            depends_on=(after,),
        )
    )
    graph.add(
        CommandStep(
            key=step_key("plan", name),
            label=f":terraform: Plan {name}",
            command=_cli(cli, "plan", "--environment", name, "--project", project, "--skip-analysis"),
            depends_on=(step_key("secrets", name),),
            concurrency_group=lock_group,
        )
    )
    graph.add(
        CommandStep(
            key=step_key("analysis", name),
            label=f":mag: Analyze {name}",
            command=_cli(cli, "analyze", "--environment", name, "--project", project),
            depends_on=(step_key("plan", name),),
            soft_fail=True,
        )
    )

    before_apply = step_key("analysis", name)
    if env.production:
        graph.add(
            BlockStep(
                key=step_key("approve", name),
                label=f":rotating_light: Approve {name} apply",
                prompt=f"Review the {name} plan and analysis annotations before approving.",
                fields=(
                    TextField(
                        key=justification_key(name),
                        text="Justification",
                        required=True,
                        hint="Why is this change safe to apply now?",
                    ),
                ),
                depends_on=(before_apply,),
            )
        )
        before_apply = step_key("approve", name)

    graph.add(
        CommandStep(
            key=step_key("apply", name),
            label=f":rocket: Apply {name}",
            command=_cli(cli, "apply", "--environment", name, "--project", project),
            depends_on=(before_apply,),
            concurrency_group=lock_group,
        )
    )


def build_deployment_graph(
    sequence: DeploymentSequence,
    *,
    project: str,
    config: DeployConfig,
    cli: str = DEFAULT_CLI,
) -> StepGraph:
    if len(sequence) == 0:
        raise StepGraphError("deployment sequence is empty")

    graph = StepGraph()
    graph.add(
        CommandStep(
            key=SECURITY_GATE_KEY,
            label=":shield: Security scan gate",
            command=config.security_scan_command or DEFAULT_SCAN_COMMAND,
            artifact_paths=("security-scan-summary.json",),
        )
    )

    after = SECURITY_GATE_KEY
    for env in sequence:
        _environment_steps(graph, env, project=project, cli=cli, after=after)
        after = step_key("apply", env.name)

    verify_sequence_invariants(graph, sequence)
    return graph


def verify_sequence_invariants(graph: StepGraph, sequence: DeploymentSequence) -> None:
    """Check chaining and approval-gate rules; raise StepGraphError on the first violation."""
    problems: List[str] = []
    envs = list(sequence)

    for env in envs:
        for kind in ("secrets", "plan", "analysis", "apply"):
            if step_key(kind, env.name) not in graph:
                problems.append(f"missing step {step_key(kind, env.name)}")
    if problems:
        raise StepGraphError("; ".join(problems))

    first = graph.get(step_key("secrets", envs[0].name))
    if SECURITY_GATE_KEY not in first.depends_on:
        problems.append(f"{first.key} must depend on {SECURITY_GATE_KEY}")

    for prev, cur in zip(envs, envs[1:]):
        secrets = graph.get(step_key("secrets", cur.name))
        if step_key("apply", prev.name) not in secrets.depends_on:
            problems.append(f"{secrets.key} must depend on {step_key('apply', prev.name)}")

    for env in envs:
        gate = graph.find(step_key("approve", env.name))
        apply_step = graph.get(step_key("apply", env.name))
        if not env.production:
            if gate is not None:
                problems.append(f"non-production environment {env.name} must not have an approval gate")
            continue
        if not isinstance(gate, BlockStep):
            problems.append(f"production environment {env.name} needs an approval block step")
            continue
        if step_key("analysis", env.name) not in gate.depends_on:
            problems.append(f"{gate.key} must depend on {step_key('analysis', env.name)}")
        if gate.key not in apply_step.depends_on:
            problems.append(f"{apply_step.key} must depend on {gate.key}")
        wanted = justification_key(env.name)
        if not any(f.key == wanted and f.required for f in gate.fields):
            problems.append(f"{gate.key} needs a required field {wanted}")

    expected_gates = sum(1 for e in envs if e.production)
    if len(graph.block_steps()) != expected_gates:
        problems.append(f"expected {expected_gates} approval gate(s), found {len(graph.block_steps())}")

    if problems:
        raise StepGraphError("; ".join(problems))
