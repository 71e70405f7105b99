from __future__ import annotations

from pathlib import Path
import io
import json
import os
import shutil
import tempfile
import textwrap
import unittest
from contextlib import redirect_stdout
from unittest import mock

from wixgen import cli


DATA_DIR = Path(__file__).resolve().parent / "data"


class CliTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.workspace = Path(self.temp_dir.name)
        self.manifest = self.workspace / "acme.toml"
        shutil.copy(DATA_DIR / "acme.toml", self.manifest)
        config_dir = self.workspace / "config"
        config_dir.mkdir()
        (config_dir / "config.toml").write_text(
            textwrap.dedent(
                """
                [global]
                default_platform = "x64"
                output_dir = "artifacts"
                cultures = ["en-us", "de-de"]
                """
            )
        )
        patcher = mock.patch.dict(os.environ, {"WIXGEN_VERSION": "2.0.1"}, clear=False)
        patcher.start()
        self.addCleanup(patcher.stop)
        for name in ("WIXGEN_PLATFORM", "WIXGEN_PROFILE", "WIXGEN_CONFIG_DIR"):
            os.environ.pop(name, None)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _run(self, *argv: str) -> tuple[int, str]:
        buffer = io.StringIO()
        with mock.patch.object(Path, "cwd", return_value=self.workspace), redirect_stdout(buffer):
            code = cli.main(list(argv))
        return code, buffer.getvalue()

    def test_compile_writes_json_and_wxs(self) -> None:
        output = self.workspace / "out" / "acme.json"
        wxs = self.workspace / "out" / "acme.wxs"
        code, stdout = self._run("compile", str(self.manifest), "-o", str(output), "--wxs", str(wxs))
        self.assertEqual(code, 0)
        self.assertIn("Compilation successful", stdout)
        data = json.loads(output.read_text(encoding="utf-8"))
        self.assertEqual(data["product"]["version"], "2.0.1")
        self.assertEqual(data["platform"]["name"], "x64")
        self.assertIn("<Product", wxs.read_text(encoding="utf-8"))

    def test_compile_to_stdout_is_stable(self) -> None:
        first_code, first = self._run("compile", str(self.manifest), "--platform", "x86")
        second_code, second = self._run("compile", str(self.manifest), "--platform", "x86")
        self.assertEqual((first_code, second_code), (0, 0))
        self.assertEqual(first, second)
        self.assertFalse(json.loads(first)["platform"]["win64"])

    def test_show_vars(self) -> None:
        code, stdout = self._run("compile", str(self.manifest), "--show-vars")
        self.assertEqual(code, 0)
        self.assertIn("Resolved variables:", stdout)
        self.assertIn("'exe_source': 'build/x64/acme.exe'", stdout)

    def test_compile_error_exit_code(self) -> None:
        code, stdout = self._run("compile", str(self.manifest), "--platform", "sparc")
        self.assertEqual(code, 1)
        self.assertIn("Error: [UnsupportedPlatformError]", stdout)

    def test_unreadable_manifest_exit_code(self) -> None:
        code, stdout = self._run("validate", str(self.workspace / "missing.toml"))
        self.assertEqual(code, 2)
        self.assertIn("Error:", stdout)

    def test_validate(self) -> None:
        code, stdout = self._run("validate", str(self.manifest), "--profile", "debug")
        self.assertEqual(code, 0)
        self.assertIn("Validation successful", stdout)
        code, stdout = self._run("validate", str(self.manifest), "--profile", "nightly")
        self.assertEqual(code, 1)
        self.assertIn("Validation failed:", stdout)
        self.assertIn("[UnknownProfileError]", stdout)

    def test_validate_against_previous(self) -> None:
        previous = self.workspace / "previous.json"
        self.assertEqual(self._run("compile", str(self.manifest), "-o", str(previous))[0], 0)
        data = json.loads(previous.read_text(encoding="utf-8"))
        data["product"]["upgrade_code"] = "99999999-8888-4777-8666-555555555555"
        previous.write_text(json.dumps(data), encoding="utf-8")
        code, stdout = self._run("validate", str(self.manifest), "--previous", str(previous))
        self.assertEqual(code, 1)
        self.assertIn("[UpgradeCodeChangedError]", stdout)

    def test_build_dry_run(self) -> None:
        code, stdout = self._run("build", str(self.manifest), "--dry-run")
        self.assertEqual(code, 0)
        lines = [line for line in stdout.splitlines() if line.startswith("[dry-run]")]
        self.assertEqual(len(lines), 2)
        self.assertIn("candle -nologo -arch x64", lines[0])
        self.assertIn("-cultures:en-us;de-de", lines[1])
        self.assertIn(str(Path("artifacts") / "release" / "AcmeTool-2.0.1-x64.msi"), lines[1])
        self.assertFalse((self.workspace / "artifacts").exists())

    def test_config_dir_option_overrides_workspace_config(self) -> None:
        extra = self.workspace / "extra"
        extra.mkdir()
        (extra / "config.json").write_text('{"global": {"default_platform": "x86"}}')
        code, stdout = self._run("-C", str(extra), "build", str(self.manifest), "-n")
        self.assertEqual(code, 0)
        self.assertIn("-arch x86", stdout)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
