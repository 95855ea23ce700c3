from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from _testutil import ensure_repo_on_path

ensure_repo_on_path()

from _fakes import FakeAgent, FakeRunner, aws_secrets, deployable_http, make_context, plan_json, write_plan_file  # noqa: E402


def _runner() -> FakeRunner:
    runner = FakeRunner()
    runner.on("tofu", "plan", stdout="Plan: 2 to add, 0 to change, 0 to destroy.\n", effect=write_plan_file)
    runner.on("tofu", "show", "-json", stdout=plan_json(["create"], ["create"]))
    runner.on("tofu", "apply", stdout="Apply complete!\n")
    runner.on("tofu", "output", "-json", stdout='{"endpoint": {"value": "https://svc"}}')
    runner.on("tofu", "state", "pull", stdout='{"version": 4}')
    return runner


class TestDeploymentFlow(unittest.TestCase):
    def test_dev_tst_prd_rollout(self) -> None:
        from tfpipe.infra.errors import ApprovalMissing
        from tfpipe.orchestration.sequencer import build_deployment_graph
        from tfpipe.stages.analysis import run_analysis_step
        from tfpipe.stages.apply import ApplyStage
        from tfpipe.stages.plan import run_plan_step

        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            runner = _runner()
            agent = FakeAgent(root / "store")
            http = deployable_http("dev", "tst", "prd")
            for name in ("dev", "tst", "prd"):
                aws_secrets(http, name)
            ctx = make_context(root, http=http, runner=runner, agent=agent)

            graph = build_deployment_graph(ctx.config.sequence(), project="net", config=ctx.config)
            self.assertEqual([g.key for g in graph.block_steps()], ["approve-prd"])
            self.assertEqual(graph.get("apply-prd").depends_on, ("approve-prd",))
            self.assertEqual(graph.get("secrets-prd").depends_on, ("apply-tst",))

            for env in ctx.config.sequence():
                artifact = run_plan_step(ctx, env, analyze=False)
                self.assertEqual(artifact.summary.as_tuple(), (2, 0, 0))
                self.assertEqual(agent.metadata[f"{env.name}-plan-add"], "2")

                outcomes = run_analysis_step(ctx, env)
                self.assertEqual([o.status for o in outcomes], ["SKIPPED", "SKIPPED"])

                stage = ApplyStage(ctx, env, backup_dir=root / "backups", env={"BUILDKITE_UNBLOCKER": "Alex"})
                if env.production:
                    with self.assertRaises(ApprovalMissing):
                        stage.run()
                    agent.metadata[f"approval-justification-{env.name}"] = "quarterly network change"
                result = stage.run()
                self.assertEqual(result.outputs_path.name, f"outputs-{env.name}.json")
                self.assertEqual(result.approval is not None, env.production)

            plans = [c for c in runner.calls if c.args[1] == "plan"]
            self.assertEqual([c.env["AWS_ACCESS_KEY_ID"] for c in plans], ["AKIA-DEV", "AKIA-TST", "AKIA-PRD"])
            applies = [c for c in runner.calls if c.args[1] == "apply"]
            self.assertEqual([c.env["TF_HTTP_USERNAME"] for c in applies], ["user-dev", "user-tst", "user-prd"])
            self.assertEqual([c.env["AWS_ACCESS_KEY_ID"] for c in applies], ["AKIA-DEV", "AKIA-TST", "AKIA-PRD"])
            self.assertEqual(
                [Path(c.args[-1]).name for c in applies], ["tfplan-dev.bin", "tfplan-tst.bin", "tfplan-prd.bin"]
            )
            self.assertEqual(agent.annotation("plan-dev")["style"], "success")
            self.assertEqual(agent.annotation("apply-prd")["style"], "success")
            self.assertEqual(len(list((root / "backups").glob("state-backup-*.tfstate"))), 3)

    def test_missing_backend_credentials_stop_before_init(self) -> None:
        from tfpipe.infra.errors import RequiredSecretMissing
        from tfpipe.stages.plan import run_plan_step

        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            runner = _runner()
            agent = FakeAgent(root / "store")
            ctx = make_context(root, http=deployable_http("dev"), runner=runner, agent=agent)

            with self.assertRaises(RequiredSecretMissing):
                run_plan_step(ctx, ctx.config.environment("tst"))
            self.assertEqual(runner.calls, [])
            self.assertEqual(agent.annotation("plan-tst")["style"], "error")


if __name__ == "__main__":
    unittest.main()
