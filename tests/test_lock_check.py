from __future__ import annotations

import json
import unittest
from pathlib import Path

from _testutil import ensure_repo_on_path

ensure_repo_on_path()

from _fakes import BACKEND_BASE, FakeHttp, FakeResponse, FakeRunner  # noqa: E402

TEXT_LISTING = """
Error: Error acquiring the state lock

Lock Info:
  ID:        7c1b2f9e-53aa-4d1c-9a34-0f2c6e0d9a11
  Path:      net/prd
  Operation: OperationTypeApply
  Who:       buildkite@agent-7
  Version:   1.7.2
  Created:   2026-03-01 10:00:00 +0000 UTC
"""


def _tofu(runner: FakeRunner):
    from tfpipe.tofu.runner import TofuClient

    return TofuClient(workdir=Path("/work/prd"), runner=runner)


class TestLockParsing(unittest.TestCase):
    def test_text_listing(self) -> None:
        from tfpipe.backend.locks import parse_lock_listing

        info = parse_lock_listing(TEXT_LISTING)
        self.assertEqual(info.lock_id, "7c1b2f9e-53aa-4d1c-9a34-0f2c6e0d9a11")
        self.assertEqual(info.who, "buildkite@agent-7")
        self.assertEqual(info.operation, "OperationTypeApply")

    def test_json_listing(self) -> None:
        from tfpipe.backend.locks import parse_lock_listing

        info = parse_lock_listing(json.dumps({"ID": "abc", "Who": "me@host", "Operation": "OperationTypePlan"}))
        self.assertEqual((info.lock_id, info.who), ("abc", "me@host"))

    def test_no_lock(self) -> None:
        from tfpipe.backend.locks import parse_lock_listing

        self.assertIsNone(parse_lock_listing(""))
        self.assertIsNone(parse_lock_listing("{}"))
        self.assertIsNone(parse_lock_listing("state is free"))

    def test_lock_without_id(self) -> None:
        from tfpipe.backend.locks import parse_lock_listing
        from tfpipe.infra.errors import LockParseError, StateLocked

        with self.assertRaises(LockParseError):
            parse_lock_listing("Lock Info:\n  Who: someone\n")
        self.assertTrue(issubclass(LockParseError, StateLocked))

    def test_json_lock_record_without_id(self) -> None:
        from tfpipe.backend.locks import parse_lock_listing
        from tfpipe.infra.errors import LockParseError

        with self.assertRaises(LockParseError):
            parse_lock_listing(json.dumps({"Who": "ci@agent-7", "Operation": "OperationTypeApply"}))
        with self.assertRaises(LockParseError):
            parse_lock_listing(json.dumps({"ID": "", "Info": "Lock Info held"}))
        self.assertIsNone(parse_lock_listing(json.dumps({"status": "free"})))


class TestLockCheck(unittest.TestCase):
    def test_locked_state_fails_without_override(self) -> None:
        from tfpipe.backend.locks import check_lock
        from tfpipe.infra.errors import StateLocked

        runner = FakeRunner()
        with self.assertRaises(StateLocked) as ctx:
            check_lock(TEXT_LISTING, tofu=_tofu(runner))
        self.assertIn("buildkite@agent-7", str(ctx.exception))
        self.assertFalse(runner.ran("tofu", "force-unlock"))

    def test_override_force_unlocks_extracted_id(self) -> None:
        from tfpipe.backend.locks import check_lock

        runner = FakeRunner()
        info = check_lock(TEXT_LISTING, tofu=_tofu(runner), force_unlock=True)
        self.assertEqual(info.lock_id, "7c1b2f9e-53aa-4d1c-9a34-0f2c6e0d9a11")
        self.assertEqual(runner.commands(), [["tofu", "force-unlock", "-force", "7c1b2f9e-53aa-4d1c-9a34-0f2c6e0d9a11"]])

    def test_failed_force_unlock(self) -> None:
        from tfpipe.backend.locks import check_lock
        from tfpipe.infra.errors import StateLocked

        runner = FakeRunner().on("tofu", "force-unlock", returncode=1, stderr="lock id mismatch")
        with self.assertRaises(StateLocked):
            check_lock(TEXT_LISTING, tofu=_tofu(runner), force_unlock=True)

    def test_json_lock_without_id_is_never_treated_as_free(self) -> None:
        from tfpipe.backend.locks import check_lock
        from tfpipe.infra.errors import StateLocked

        listing = json.dumps({"Who": "ci@agent-7", "Operation": "OperationTypeApply", "Info": "Lock Info held"})
        for force in (False, True):
            runner = FakeRunner()
            with self.assertRaises(StateLocked):
                check_lock(listing, tofu=_tofu(runner), force_unlock=force)
            self.assertEqual(runner.commands(), [])

    def test_checker_reads_lock_address(self) -> None:
        from tfpipe.backend.http_backend import derive_addresses
        from tfpipe.backend.locks import LockChecker
        from tfpipe.infra.errors import StateLocked
        from tfpipe.infra.models import CredentialBundle

        addresses = derive_addresses(BACKEND_BASE, "net", "prd")
        bundle = CredentialBundle("prd", {"TF_HTTP_USERNAME": "u", "TF_HTTP_PASSWORD": "p"})
        runner = FakeRunner()

        http = FakeHttp()
        self.assertIsNone(LockChecker(http=http).ensure_unlocked(addresses, bundle, _tofu(runner)))
        self.assertEqual(http.urls(), [f"{BACKEND_BASE}/net/prd/lock"])

        http.get_routes[addresses.lock_address] = FakeResponse(200, text=json.dumps({"ID": "held-1"}))
        with self.assertRaises(StateLocked):
            LockChecker(http=http).ensure_unlocked(addresses, bundle, _tofu(runner))


if __name__ == "__main__":
    unittest.main()
