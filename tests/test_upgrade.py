from __future__ import annotations

from pathlib import Path
import json
import tempfile
import unittest

from wixgen.compiler import compile_manifest, load_manifest, serialize
from wixgen.environment import BuildInputs
from wixgen.errors import ManifestSchemaError, StaleStabilityKeyError, UpgradeCodeChangedError
from wixgen.upgrade import check_upgrade, key_path_signature, load_previous


DATA_DIR = Path(__file__).resolve().parent / "data"
PINNED_GUID = "0F0F0F0F-1111-4222-8333-444444444444"


class UpgradeCheckTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.manifest = load_manifest(DATA_DIR / "acme.toml")
        self.inputs = BuildInputs(platform="x64", version="1.4.2")

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _pinned(self, file_name: str, upgrade_code: str | None = None):
        manifest = dict(self.manifest)
        components = [dict(component) for component in self.manifest["components"]]
        main = components[0]
        main["guid"] = PINNED_GUID
        main["payload"] = [dict(main["payload"][0], name=file_name)]
        manifest["components"] = components
        if upgrade_code is not None:
            manifest["product"] = dict(self.manifest["product"], upgrade_code=upgrade_code)
        return manifest

    def _previous(self, manifest) -> dict:
        path = self.root / "previous.json"
        path.write_text(serialize(compile_manifest(manifest, self.inputs, env={})), encoding="utf-8")
        return dict(load_previous(path))

    def test_unchanged_manifest_upgrades_cleanly(self) -> None:
        previous = self._previous(self._pinned("acme.exe"))
        check_upgrade(previous, compile_manifest(self._pinned("acme.exe"), BuildInputs(platform="x64", version="1.5"), env={}))

    def test_auto_keys_follow_key_path_changes(self) -> None:
        previous = self._previous(self.manifest)
        manifest = dict(self.manifest)
        components = [dict(component) for component in self.manifest["components"]]
        components[0]["payload"] = [dict(components[0]["payload"][0], name="acme2.exe")]
        manifest["components"] = components
        current = compile_manifest(manifest, self.inputs, env={})
        check_upgrade(previous, current)
        old_guid = next(c["guid"] for c in previous["components"] if c["id"] == "MainExe")
        self.assertNotEqual(old_guid, current.components["MainExe"].stability_key)

    def test_pinned_key_with_changed_key_path_is_stale(self) -> None:
        previous = self._previous(self._pinned("acme.exe"))
        current = compile_manifest(self._pinned("acme-cli.exe"), self.inputs, env={})
        with self.assertRaises(StaleStabilityKeyError) as ctx:
            check_upgrade(previous, current)
        self.assertEqual(ctx.exception.identifier, "MainExe")

    def test_upgrade_code_must_not_change(self) -> None:
        previous = self._previous(self.manifest)
        current = compile_manifest(
            self._pinned("acme.exe", upgrade_code="99999999-8888-4777-8666-555555555555"), self.inputs, env={}
        )
        with self.assertRaises(UpgradeCodeChangedError):
            check_upgrade(previous, current)

    def test_key_path_signature_for_directory(self) -> None:
        self.assertEqual(key_path_signature({"directory": "BINDIR", "key_path": "directory"}), ("BINDIR", "directory"))

    def test_load_previous_rejects_other_documents(self) -> None:
        path = self.root / "other.json"
        path.write_text(json.dumps({"name": "not a description"}), encoding="utf-8")
        with self.assertRaises(ManifestSchemaError):
            load_previous(path)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
