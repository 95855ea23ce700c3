from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import List, Optional

from .backend.locks import LockChecker
from .ci.buildkite import BuildkiteAgent
from .config.load_deploy_config import DeployConfig, load_deploy_config
from .infra.errors import PipelineError
from .orchestration.sequencer import build_deployment_graph
from .scans.summary import publish_scan_summary, summarize_scan_reports
from .secretstore.export import write_export_file
from .secretstore.loader import CredentialLoader, identity_token_from_env
from .stages.analysis import run_analysis_step
from .stages.apply import ApplyStage
from .stages.context import StageContext, environment_session, log_group
from .stages.plan import run_plan_step
from .utils.names import truthy


def _repo_root() -> Path:
    # Buildkite runs every step from the repository checkout.
    return Path(os.environ.get("TFPIPE_REPO_ROOT") or Path.cwd()).resolve()


def _agent() -> BuildkiteAgent:
    return BuildkiteAgent(local_artifacts_dir=_repo_root() / ".artifacts")


def _config(args: argparse.Namespace) -> DeployConfig:
    return load_deploy_config(_repo_root(), getattr(args, "config", None))


def _loader(config: DeployConfig, agent: BuildkiteAgent) -> CredentialLoader:
    return CredentialLoader(config.vault, token_sources=[identity_token_from_env, agent.request_oidc_token])


def _context(args: argparse.Namespace) -> StageContext:
    config = _config(args)
    agent = _agent()
    return StageContext(
        config=config,
        agent=agent,
        loader=_loader(config, agent),
        project=config.require_project(getattr(args, "project", None)),
        output_dir=Path(getattr(args, "output_dir", None) or "out").resolve(),
        credentials_file=Path(args.credentials_file) if getattr(args, "credentials_file", None) else None,
    )


def _force_unlock(args: argparse.Namespace) -> bool:
    return bool(args.force_unlock) or truthy(os.environ.get("TF_FORCE_UNLOCK"))


def cmd_secrets(args: argparse.Namespace) -> int:
    config = _config(args)
    environment = config.environment(args.environment)
    log_group(f":key: Secrets {environment.name}")
    loader = _loader(config, _agent())
    try:
        with loader.load(environment.name) as bundle:
            if args.export_file:
                path = write_export_file(bundle, Path(args.export_file))
                print(f"[secrets] wrote {len(bundle)} credential(s) to {path} (mode 0600); pass it to --credentials-file later in this job")
    finally:
        loader.close()
    return 0


def cmd_plan(args: argparse.Namespace) -> int:
    ctx = _context(args)
    run_plan_step(ctx, ctx.config.environment(args.environment), analyze=not args.skip_analysis)
    return 0


def cmd_analyze(args: argparse.Namespace) -> int:
    ctx = _context(args)
    run_analysis_step(ctx, ctx.config.environment(args.environment))
    return 0


def cmd_apply(args: argparse.Namespace) -> int:
    ctx = _context(args)
    stage = ApplyStage(
        ctx,
        ctx.config.environment(args.environment),
        backup_dir=Path(args.backup_dir).resolve(),
        force_unlock=_force_unlock(args),
    )
    stage.run()
    return 0


def cmd_lock_check(args: argparse.Namespace) -> int:
    ctx = _context(args)
    environment = ctx.config.environment(args.environment)
    log_group(f":lock: Lock check {environment.name}")
    with environment_session(ctx, environment) as (bundle, tofu):
        LockChecker(http=ctx.http).ensure_unlocked(
            ctx.backend().addresses(environment), bundle, tofu, force_unlock=_force_unlock(args)
        )
    return 0


def cmd_pipeline(args: argparse.Namespace) -> int:
    config = _config(args)
    names: Optional[List[str]] = None
    if args.environments:
        names = [x.strip() for x in args.environments.split(",") if x.strip()]
    sequence = config.sequence(names)
    graph = build_deployment_graph(sequence, project=config.require_project(args.project), config=config)
    text = graph.to_yaml()
    if args.upload:
        _agent().upload_pipeline(text)
        print(f"[pipeline] uploaded {len(graph)} steps for {sequence.names()}")
    else:
        print(text, end="")
    return 0


def cmd_scan_summary(args: argparse.Namespace) -> int:
    summary = summarize_scan_reports(Path(p) for p in args.reports)
    publish_scan_summary(summary, output=Path(args.output), agent=_agent())
    print(f"[scan] verdict={summary.verdict} findings={summary.total} reports={len(summary.reports)}")
    if args.fail_on_high and summary.verdict == "fail":
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="tfpipe")
    p.add_argument("--config", default=None, help="Deploy config YAML (default: TFPIPE_CONFIG or config/deploy.yml)")
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("secrets", help="Verify (and optionally export) credentials for an environment")
    sp.add_argument("--environment", required=True)
    sp.add_argument("--export-file", default=None)
    sp.set_defaults(func=cmd_secrets)

    sp = sub.add_parser("plan", help="Validate, plan and report one environment")
    sp.add_argument("--environment", required=True)
    sp.add_argument("--project", default=None)
    sp.add_argument("--output-dir", default="out")
    sp.add_argument("--credentials-file", default=None, help="Export file from `secrets --export-file`; deleted after reading")
    sp.add_argument("--skip-analysis", action="store_true")
    sp.set_defaults(func=cmd_plan)

    sp = sub.add_parser("analyze", help="Run the optional analyzers on a plan artifact")
    sp.add_argument("--environment", required=True)
    sp.add_argument("--project", default=None)
    sp.add_argument("--output-dir", default="out")
    sp.set_defaults(func=cmd_analyze)

    sp = sub.add_parser("apply", help="Apply the reviewed plan artifact for one environment")
    sp.add_argument("--environment", required=True)
    sp.add_argument("--project", default=None)
    sp.add_argument("--output-dir", default="out")
    sp.add_argument("--backup-dir", default="state-backups")
    sp.add_argument("--force-unlock", action="store_true")
    sp.add_argument("--credentials-file", default=None)
    sp.set_defaults(func=cmd_apply)

    sp = sub.add_parser("lock-check", help="Fail if the remote state is locked")
    sp.add_argument("--environment", required=True)
    sp.add_argument("--project", default=None)
    sp.add_argument("--credentials-file", default=None)
    sp.add_argument("--force-unlock", action="store_true")
    sp.set_defaults(func=cmd_lock_check)

    sp = sub.add_parser("pipeline", help="Generate the multi-environment deployment pipeline")
    sp.add_argument("--environments", default=None, help="Comma-separated, in deployment order")
    sp.add_argument("--project", default=None)
    sp.add_argument("--upload", action="store_true")
    sp.set_defaults(func=cmd_pipeline)

    sp = sub.add_parser("scan-summary", help="Roll up security scanner reports")
    sp.add_argument("reports", nargs="*")
    sp.add_argument("--output", default="security-scan-summary.json")
    sp.add_argument("--fail-on-high", action="store_true")
    sp.set_defaults(func=cmd_scan_summary)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return int(args.func(args) or 0)
    except PipelineError as e:
        print(f"[{args.cmd}][FAILED] {type(e).__name__}: {e}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
