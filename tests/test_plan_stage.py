from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from _testutil import ensure_repo_on_path

ensure_repo_on_path()

from _fakes import FakeAgent, FakeRunner, plan_json, write_plan_file  # noqa: E402


def _stage(root: Path, runner: FakeRunner, *, name: str = "dev", analyzers=(), agent=None):
    from tfpipe.infra.models import Environment
    from tfpipe.stages.plan import PlanStage
    from tfpipe.tofu.runner import TofuClient

    env = Environment(name=name, position=0, workdir=root / "environments" / name)
    return PlanStage(
        environment=env,
        project="net",
        tofu=TofuClient(workdir=env.workdir, runner=runner),
        agent=agent or FakeAgent(root / "store"),
        output_dir=root / "out",
        analyzers=analyzers,
        analysis_runner=runner,
    )


def _planning_runner(json_text: str, plan_text: str = "") -> FakeRunner:
    runner = FakeRunner()
    runner.on("tofu", "plan", stdout=plan_text, effect=write_plan_file)
    runner.on("tofu", "show", "-json", stdout=json_text)
    return runner


class TestPlanStage(unittest.TestCase):
    def test_successful_plan_walks_every_state(self) -> None:
        from tfpipe.stages.plan import PlanState

        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            runner = _planning_runner(plan_json(["create"], ["create"], ["create"], ["update"]))
            stage = _stage(root, runner)
            artifact = stage.run()

            self.assertEqual(
                stage.history,
                [PlanState.NOT_STARTED, PlanState.VALIDATING, PlanState.PLANNING, PlanState.ANALYZING, PlanState.REPORTED],
            )
            self.assertEqual(artifact.summary.as_tuple(), (3, 1, 0))
            self.assertEqual(len(artifact.sha256), 64)

            agent = stage.agent
            self.assertEqual(agent.metadata["dev-plan-add"], "3")
            self.assertEqual(agent.metadata["dev-plan-change"], "1")
            self.assertEqual(agent.metadata["dev-plan-destroy"], "0")
            self.assertEqual(agent.metadata["dev-plan-sha256"], artifact.sha256)
            self.assertEqual(sorted(agent.uploaded), ["plan-dev.json", "plan-dev.txt", "tfplan-dev.bin"])

            note = agent.annotation("plan-dev")
            self.assertEqual(note["style"], "success")
            self.assertIn("Plan: 3 to add, 1 to change, 0 to destroy.", note["body"])
            self.assertIn("`null_resource.r0`", note["body"])

    def test_plan_commands_in_order(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            runner = _planning_runner(plan_json())
            _stage(root, runner).run()
            verbs = [c[1] for c in runner.commands()]
            self.assertEqual(verbs, ["validate", "plan", "show"])
            self.assertIn("-input=false", runner.commands()[1])

    def test_destroy_plan_gets_warning_annotation(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            runner = _planning_runner(plan_json(["delete"], ["delete"]))
            stage = _stage(root, runner)
            stage.run()
            note = stage.agent.annotation("plan-dev")
            self.assertEqual(note["style"], "warning")
            self.assertIn("2 resource(s) will be destroyed", note["body"])

    def test_text_fallback_when_json_unavailable(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            runner = _planning_runner("", plan_text="Plan: 0 to add, 2 to change, 1 to destroy.\n")
            artifact = _stage(root, runner).run()
            self.assertEqual(artifact.summary.as_tuple(), (0, 2, 1))
            self.assertEqual(artifact.summary.source, "text")

    def test_validation_failure_stops_before_plan(self) -> None:
        from tfpipe.infra.errors import ValidationError
        from tfpipe.stages.plan import PlanState

        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            runner = FakeRunner().on("tofu", "validate", returncode=1, stderr="Error: Unsupported argument")
            stage = _stage(root, runner)
            with self.assertRaises(ValidationError):
                stage.run()
            self.assertEqual(stage.state, PlanState.FAILED)
            self.assertEqual(stage.history[-2:], [PlanState.VALIDATING, PlanState.FAILED])
            self.assertFalse(runner.ran("tofu", "plan"))
            note = stage.agent.annotation("plan-dev")
            self.assertEqual(note["style"], "error")
            self.assertIn("Unsupported argument", note["body"])

    def test_plan_failure_keeps_text_output(self) -> None:
        from tfpipe.infra.errors import PlanError

        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            runner = FakeRunner().on("tofu", "plan", returncode=1, stdout="partial output", stderr="Error: provider crashed")
            stage = _stage(root, runner)
            with self.assertRaises(PlanError):
                stage.run()
            self.assertEqual((root / "out" / "plan-dev.txt").read_text(encoding="utf-8"), "partial output")
            self.assertEqual(stage.agent.metadata, {})

    def test_unparseable_plan_output_fails(self) -> None:
        from tfpipe.infra.errors import PlanSummaryError
        from tfpipe.stages.plan import PlanState

        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            runner = _planning_runner("", plan_text="something unexpected")
            stage = _stage(root, runner)
            with self.assertRaises(PlanSummaryError):
                stage.run()
            self.assertEqual(stage.state, PlanState.FAILED)

    def test_failure_annotation_error_does_not_mask_failure(self) -> None:
        from tfpipe.infra.errors import ValidationError

        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            runner = FakeRunner().on("tofu", "validate", returncode=1, stderr="bad")
            stage = _stage(root, runner, agent=FakeAgent(root / "store", fail_annotate=True))
            with self.assertRaises(ValidationError):
                stage.run()

    def test_unexpected_error_marks_failed_and_annotates(self) -> None:
        from tfpipe.stages.plan import PlanState

        def disk_full(argv):
            raise OSError("No space left on device")

        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            agent = FakeAgent(root / "store")
            runner = FakeRunner().on("tofu", "plan", effect=disk_full)
            stage = _stage(root, runner, agent=agent)
            with self.assertRaises(OSError):
                stage.run()
            self.assertEqual(stage.state, PlanState.FAILED)
            self.assertIn("No space left on device", agent.annotation("plan-dev")["body"])

    def test_illegal_transition(self) -> None:
        from tfpipe.infra.errors import StageTransitionError
        from tfpipe.stages.plan import PlanState

        with tempfile.TemporaryDirectory() as td:
            stage = _stage(Path(td), FakeRunner())
            with self.assertRaises(StageTransitionError):
                stage._to(PlanState.REPORTED)


if __name__ == "__main__":
    unittest.main()
