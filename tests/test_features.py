from __future__ import annotations

import unittest

from wixgen.components import Component, finalize_components
from wixgen.directories import build_directory_tree
from wixgen.errors import (
    DuplicateIdentifierError,
    ManifestSchemaError,
    OrphanComponentError,
    UnresolvedComponentRefError,
    UnresolvedDirectoryRefError,
    UnusedDirectoryError,
)
from wixgen.features import Feature, default_install_set, iter_features, validate_feature_graph


UPGRADE_CODE = "6F1C2A3B-1234-4C5D-8E9F-0123456789AB"


class FeatureGraphTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tree = build_directory_tree(
            [
                {"id": "INSTALLDIR", "name": "Acme"},
                {"id": "DOCDIR", "name": "docs", "parent": "INSTALLDIR"},
            ],
            base_folder="ProgramFilesFolder",
        )
        components = [
            Component.from_mapping(
                {"id": "Core", "directory": "INSTALLDIR", "payload": [{"kind": "file", "source": "a.exe", "key_path": True}]},
                win64=False,
            ),
            Component.from_mapping(
                {"id": "Docs", "directory": "DOCDIR", "payload": [{"kind": "file", "source": "d.chm", "key_path": True}]},
                win64=False,
            ),
            Component.from_mapping(
                {"id": "Deep", "directory": "DOCDIR", "key_path": "directory"},
                win64=False,
            ),
        ]
        self.components = finalize_components(components, tree=self.tree, upgrade_code=UPGRADE_CODE)

    def _features(self, docs_level: int = 1):
        return (
            Feature.from_mapping(
                {
                    "id": "Main",
                    "title": "Main",
                    "components": ["Core"],
                    "configurable_directory": "INSTALLDIR",
                    "features": [
                        {
                            "id": "Documentation",
                            "level": docs_level,
                            "components": "Docs",
                            "features": [{"id": "Samples", "features": [{"id": "Extra", "components": ["Deep"]}]}],
                        }
                    ],
                }
            ),
        )

    def test_refs_resolve_at_any_depth(self) -> None:
        features = self._features()
        validate_feature_graph(features, self.components, self.tree)
        self.assertEqual([feature.id for feature in iter_features(features)], ["Main", "Documentation", "Samples", "Extra"])

    def test_level_zero_is_excluded_from_default_set(self) -> None:
        self.assertEqual(default_install_set(self._features(docs_level=1)), ["Main", "Documentation", "Samples", "Extra"])
        self.assertEqual(default_install_set(self._features(docs_level=0)), ["Main"])

    def test_level_must_be_non_negative_integer(self) -> None:
        with self.assertRaises(ManifestSchemaError):
            Feature.from_mapping({"id": "Bad", "level": -1})
        with self.assertRaises(ManifestSchemaError):
            Feature.from_mapping({"id": "Bad", "level": "high"})

    def test_absent_and_display_policies(self) -> None:
        feature = Feature.from_mapping({"id": "Core", "allow_absent": "no", "display": "hidden"})
        self.assertEqual((feature.absent, feature.display), ("disallow", "hidden"))
        with self.assertRaises(ManifestSchemaError):
            Feature.from_mapping({"id": "Core", "display": "sideways"})

    def test_unresolved_component_reference(self) -> None:
        features = (Feature.from_mapping({"id": "Main", "components": ["Core", "Docs", "Deep", "Ghost"]}),)
        with self.assertRaises(UnresolvedComponentRefError) as ctx:
            validate_feature_graph(features, self.components, self.tree)
        self.assertEqual(ctx.exception.identifier, "Ghost")

    def test_orphan_component(self) -> None:
        features = (Feature.from_mapping({"id": "Main", "components": ["Core", "Docs"]}),)
        with self.assertRaises(OrphanComponentError) as ctx:
            validate_feature_graph(features, self.components, self.tree)
        self.assertEqual(ctx.exception.identifier, "Deep")

    def test_duplicate_feature_id(self) -> None:
        features = (
            Feature.from_mapping({"id": "Main", "components": ["Core", "Docs", "Deep"]}),
            Feature.from_mapping({"id": "Main"}),
        )
        with self.assertRaises(DuplicateIdentifierError):
            validate_feature_graph(features, self.components, self.tree)

    def test_unknown_configurable_directory(self) -> None:
        features = (
            Feature.from_mapping(
                {"id": "Main", "components": ["Core", "Docs", "Deep"], "configurable_directory": "NOPE"}
            ),
        )
        with self.assertRaises(UnresolvedDirectoryRefError):
            validate_feature_graph(features, self.components, self.tree)

    def test_unused_directory(self) -> None:
        tree = build_directory_tree(
            [
                {"id": "INSTALLDIR", "name": "Acme"},
                {"id": "DOCDIR", "name": "docs", "parent": "INSTALLDIR"},
                {"id": "EMPTY", "name": "empty", "parent": "INSTALLDIR"},
            ],
            base_folder="ProgramFilesFolder",
        )
        with self.assertRaises(UnusedDirectoryError) as ctx:
            validate_feature_graph(self._features(), self.components, tree)
        self.assertEqual(ctx.exception.identifier, "EMPTY")


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
