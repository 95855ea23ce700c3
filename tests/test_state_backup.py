from __future__ import annotations

import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path

from _testutil import ensure_repo_on_path

ensure_repo_on_path()

from _fakes import FakeAgent, FakeRunner  # noqa: E402

NOW = datetime(2026, 3, 1, 12, 30, 0, tzinfo=timezone.utc)


def _tofu(runner: FakeRunner):
    from tfpipe.tofu.runner import TofuClient

    return TofuClient(workdir=Path("/work/dev"), runner=runner)


class TestStateBackup(unittest.TestCase):
    def test_backup_written_once_with_timestamped_name(self) -> None:
        from tfpipe.infra.errors import BackupFailure
        from tfpipe.stages.backup import take_state_backup

        with tempfile.TemporaryDirectory() as td:
            runner = FakeRunner().on("tofu", "state", "pull", stdout='{"version": 4, "serial": 12}')
            backup = take_state_backup(environment="dev", tofu=_tofu(runner), backup_dir=Path(td), now=NOW)
            self.assertEqual(backup.path.name, "state-backup-dev-20260301T123000Z.tfstate")
            self.assertEqual(backup.created_at, "2026-03-01T12:30:00Z")
            self.assertEqual(backup.size_bytes, len('{"version": 4, "serial": 12}'))

            with self.assertRaises(BackupFailure):
                take_state_backup(environment="dev", tofu=_tofu(runner), backup_dir=Path(td), now=NOW)

    def test_best_effort_backup_swallows_failures(self) -> None:
        from tfpipe.stages.backup import best_effort_backup

        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            agent = FakeAgent(root / "store")

            failing = FakeRunner().on("tofu", "state", "pull", returncode=1, stderr="backend timeout")
            self.assertIsNone(best_effort_backup(environment="dev", tofu=_tofu(failing), backup_dir=root / "b", agent=agent, now=NOW))

            empty = FakeRunner().on("tofu", "state", "pull", stdout="")
            self.assertIsNone(best_effort_backup(environment="dev", tofu=_tofu(empty), backup_dir=root / "b", agent=agent, now=NOW))

            ok = FakeRunner().on("tofu", "state", "pull", stdout="{}")
            backup = best_effort_backup(environment="dev", tofu=_tofu(ok), backup_dir=root / "b", agent=agent, now=NOW)
            self.assertIsNotNone(backup)
            self.assertIn(backup.path.name, agent.uploaded)


class TestApproval(unittest.TestCase):
    def test_approval_read_from_metadata(self) -> None:
        from tfpipe.infra.errors import ApprovalMissing
        from tfpipe.stages.approval import read_approval

        with tempfile.TemporaryDirectory() as td:
            agent = FakeAgent(Path(td))
            with self.assertRaises(ApprovalMissing):
                read_approval(agent, "prd", env={})

            agent.metadata["approval-justification-prd"] = "   "
            with self.assertRaises(ApprovalMissing):
                read_approval(agent, "prd", env={})

            agent.metadata["approval-justification-prd"] = "CHG-1042 reviewed"
            rec = read_approval(agent, "prd", env={"BUILDKITE_UNBLOCKER": "Sam Ops"})
            self.assertEqual((rec.approver, rec.justification), ("Sam Ops", "CHG-1042 reviewed"))
            self.assertEqual(read_approval(agent, "prd", env={}).approver, "unknown")


if __name__ == "__main__":
    unittest.main()
