from __future__ import annotations

import contextlib
import io
import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import yaml

from _testutil import ensure_repo_on_path


def _run(argv, env):
    from tfpipe.cli import main

    buf = io.StringIO()
    with mock.patch.dict(os.environ, env, clear=True), contextlib.redirect_stdout(buf):
        rc = main(argv)
    return rc, buf.getvalue()


def _write_config(root: Path, obj: dict) -> Path:
    p = root / "config" / "deploy.yml"
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(yaml.safe_dump(obj, sort_keys=False), encoding="utf-8")
    return p


class TestCli(unittest.TestCase):
    def test_pipeline_prints_generated_yaml(self) -> None:
        ensure_repo_on_path()

        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            _write_config(root, {"project": "net", "environments": ["dev", "tst", "prd"]})
            rc, out = _run(["pipeline"], {"TFPIPE_REPO_ROOT": str(root)})
            self.assertEqual(rc, 0)
            keys = [s["key"] for s in yaml.safe_load(out)["steps"]]
            self.assertEqual(keys[0], "security-scan")
            self.assertIn("approve-prd", keys)
            self.assertEqual(keys[-1], "apply-prd")

    def test_pipeline_environment_override(self) -> None:
        ensure_repo_on_path()

        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            cfg = _write_config(root, {"project": "net", "environments": ["dev"]})
            rc, out = _run(["--config", str(cfg), "pipeline", "--environments", "qa,prod"], {})
            self.assertEqual(rc, 0)
            keys = [s["key"] for s in yaml.safe_load(out)["steps"]]
            self.assertIn("secrets-qa", keys)
            self.assertIn("approve-prod", keys)
            self.assertNotIn("secrets-dev", keys)

    def test_pipeline_without_project_fails(self) -> None:
        ensure_repo_on_path()

        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            _write_config(root, {"environments": ["dev"]})
            rc, out = _run(["pipeline"], {"TFPIPE_REPO_ROOT": str(root)})
            self.assertEqual(rc, 1)
            self.assertIn("[pipeline][FAILED] ConfigError", out)

    def test_secrets_without_vault_address_fails_cleanly(self) -> None:
        ensure_repo_on_path()

        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            _write_config(root, {"project": "net", "environments": ["dev"]})
            rc, out = _run(["secrets", "--environment", "dev"], {"TFPIPE_REPO_ROOT": str(root)})
            self.assertEqual(rc, 1)
            self.assertIn("[secrets][FAILED] AuthenticationError", out)

    def test_plan_consumes_credentials_file(self) -> None:
        ensure_repo_on_path()

        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            _write_config(root, {"project": "net", "environments": ["dev"]})
            creds = root / "creds.env"
            creds.write_text("export AWS_ACCESS_KEY_ID=AKIA-DEV\n", encoding="utf-8")
            rc, out = _run(
                ["plan", "--environment", "dev", "--output-dir", str(root / "out"), "--credentials-file", str(creds)],
                {"TFPIPE_REPO_ROOT": str(root)},
            )
            self.assertEqual(rc, 1)
            self.assertIn("[plan][FAILED] RequiredSecretMissing", out)
            self.assertFalse(creds.exists())

    def test_scan_summary_exit_code(self) -> None:
        ensure_repo_on_path()

        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            report = root / "tfsec.json"
            report.write_text(json.dumps({"results": [{"severity": "CRITICAL"}]}), encoding="utf-8")
            out_file = root / "summary.json"
            env = {"TFPIPE_REPO_ROOT": str(root)}

            rc, out = _run(["scan-summary", "--output", str(out_file), str(report)], env)
            self.assertEqual(rc, 0)
            self.assertIn("verdict=fail", out)

            rc, _ = _run(["scan-summary", "--output", str(out_file), "--fail-on-high", str(report)], env)
            self.assertEqual(rc, 1)
            self.assertEqual(json.loads(out_file.read_text(encoding="utf-8"))["by_severity"], {"CRITICAL": 1})


if __name__ == "__main__":
    unittest.main()
