from __future__ import annotations

from pathlib import Path
import os
import tempfile
import textwrap
import unittest

from wixgen.settings import ToolSettings, resolve_config_directories


class ToolSettingsTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.workspace = Path(self.temp_dir.name).resolve()

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_defaults_without_configuration(self) -> None:
        settings = ToolSettings.from_directories(self.workspace, [self.workspace / "config"])
        self.assertEqual((settings.candle, settings.light, settings.output_dir), ("candle", "light", "dist"))
        self.assertEqual(settings.extensions, ["WixUIExtension"])
        self.assertEqual(settings.config_dirs, ())

    def test_later_directories_win(self) -> None:
        base = self.workspace / "config"
        team = self.workspace / "team"
        base.mkdir()
        team.mkdir()
        (base / "config.toml").write_text(
            textwrap.dedent(
                """
                [global]
                default_profile = "debug"
                light = "C:/wix/light.exe"
                extensions = "WixUIExtension"
                """
            )
        )
        (team / "config.toml").write_text('[global]\ndefault_profile = "release"\n')
        settings = ToolSettings.from_directories(self.workspace, [base, team])
        self.assertEqual(settings.default_profile, "release")
        self.assertEqual(settings.light, "C:/wix/light.exe")
        self.assertEqual(settings.extensions, ["WixUIExtension"])
        self.assertEqual(settings.config_dirs, (base, team))

    def test_resolve_config_directories_order(self) -> None:
        env = {"WIXGEN_CONFIG_DIR": os.pathsep.join(["shared", "/opt/wixgen"])}
        dirs = resolve_config_directories(self.workspace, ["local", "shared"], env=env)
        self.assertEqual(
            dirs,
            [self.workspace / "config", Path("/opt/wixgen"), self.workspace / "local", self.workspace / "shared"],
        )


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
