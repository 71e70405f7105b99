from __future__ import annotations

from pathlib import Path
import tempfile
import textwrap
import unittest

from core.config_loader import (
    collect_config_files,
    load_config_file,
    merge_mappings,
    normalize_string_list,
    resolve_config_paths,
)

try:  # PyYAML is optional
    import yaml  # type: ignore
except ModuleNotFoundError:  # pragma: no cover - optional dependency absent
    yaml = None


class ConfigLoaderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name).resolve()

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_loads_toml_and_json(self) -> None:
        toml_path = self.root / "manifest.toml"
        toml_path.write_text(
            textwrap.dedent(
                """
                [product]
                name = "Acme"
                language = 1033
                """
            )
        )
        json_path = self.root / "manifest.json"
        json_path.write_text('{"product": {"name": "Acme", "language": 1033}}')
        self.assertEqual(load_config_file(toml_path), load_config_file(json_path))

    @unittest.skipIf(yaml is None, "PyYAML not installed")
    def test_loads_yaml(self) -> None:
        path = self.root / "manifest.yaml"
        path.write_text(
            textwrap.dedent(
                """
                product:
                  name: Acme
                """
            )
        )
        self.assertEqual(load_config_file(path), {"product": {"name": "Acme"}})

    def test_rejects_unknown_suffix_and_bad_syntax(self) -> None:
        unknown = self.root / "manifest.ini"
        unknown.write_text("[product]\n")
        with self.assertRaisesRegex(ValueError, "Unsupported file extension"):
            load_config_file(unknown)
        broken = self.root / "broken.toml"
        broken.write_text("[product\n")
        with self.assertRaisesRegex(ValueError, "Could not parse"):
            load_config_file(broken)

    def test_root_must_be_mapping(self) -> None:
        path = self.root / "list.json"
        path.write_text("[1, 2]")
        with self.assertRaises(TypeError):
            load_config_file(path)

    def test_collect_config_files_rejects_duplicate_stems(self) -> None:
        (self.root / "config.toml").write_text("")
        (self.root / "notes.txt").write_text("")
        self.assertEqual(collect_config_files(self.root), {"config": self.root / "config.toml"})
        (self.root / "config.json").write_text("{}")
        with self.assertRaisesRegex(ValueError, "Multiple configuration files"):
            collect_config_files(self.root)

    def test_merge_mappings_is_deep(self) -> None:
        base = {"product": {"name": "Acme", "scope": "perMachine"}, "ui": {"dialog_set": "WixUI_Minimal"}}
        overlay = {"product": {"scope": "perUser"}, "ui": None}
        merged = merge_mappings(base, overlay)
        self.assertEqual(merged, {"product": {"name": "Acme", "scope": "perUser"}, "ui": None})
        self.assertEqual(base["product"]["scope"], "perMachine")

    def test_normalize_string_list(self) -> None:
        self.assertEqual(normalize_string_list(" Core "), ["Core"])
        self.assertEqual(normalize_string_list(["a", " ", "b"]), ["a", "b"])
        self.assertEqual(normalize_string_list(None), [])
        with self.assertRaises(TypeError):
            normalize_string_list([1], field_name="components")

    def test_resolve_config_paths_partitions_and_deduplicates(self) -> None:
        present = self.root / "config"
        present.mkdir()
        existing, missing = resolve_config_paths(self.root, [Path("config"), Path("absent"), present])
        self.assertEqual(existing, (present,))
        self.assertEqual(missing, (self.root / "absent",))


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
