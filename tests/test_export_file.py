from __future__ import annotations

import os
import stat
import tempfile
import unittest
from pathlib import Path

from _testutil import ensure_repo_on_path


class TestExportFile(unittest.TestCase):
    def test_written_private_and_consumed_once(self) -> None:
        ensure_repo_on_path()

        from tfpipe.infra.models import CredentialBundle
        from tfpipe.secretstore.export import consume_export_file, write_export_file

        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "creds.env"
            bundle = CredentialBundle("dev", {"TF_HTTP_USERNAME": "deploy", "TF_HTTP_PASSWORD": "p'a ss$word"})
            write_export_file(bundle, path)

            if os.name == "posix":
                self.assertEqual(stat.S_IMODE(path.stat().st_mode), 0o600)
            self.assertIn("export TF_HTTP_USERNAME=deploy", path.read_text(encoding="utf-8"))

            values = consume_export_file(path)
            self.assertEqual(values, {"TF_HTTP_PASSWORD": "p'a ss$word", "TF_HTTP_USERNAME": "deploy"})
            self.assertFalse(path.exists())

    def test_malformed_file_still_deleted(self) -> None:
        ensure_repo_on_path()

        from tfpipe.secretstore.export import consume_export_file

        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "creds.env"
            path.write_text("export TF_HTTP_PASSWORD='unterminated\n", encoding="utf-8")
            with self.assertRaises(ValueError):
                consume_export_file(path)
            self.assertFalse(path.exists())


if __name__ == "__main__":
    unittest.main()
