from __future__ import annotations

import unittest

from wixgen.directories import ROOT_DIRECTORY, build_directory_tree
from wixgen.errors import (
    DanglingParentReferenceError,
    DirectoryCycleError,
    DuplicateDirectoryIdError,
    DuplicateIdentifierError,
    UnresolvedDirectoryRefError,
)


class DirectoryTreeTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tree = build_directory_tree(
            [
                {"id": "INSTALLDIR", "name": "Acme"},
                {"id": "BINDIR", "name": "bin", "parent": "INSTALLDIR"},
                {"id": "AppMenu", "name": "Acme", "parent": "ProgramMenuFolder"},
            ],
            base_folder="ProgramFiles64Folder",
        )

    def test_unparented_directories_go_under_base_folder(self) -> None:
        self.assertEqual(self.tree.get("INSTALLDIR").parent, "ProgramFiles64Folder")
        self.assertEqual(
            self.tree.path_of("BINDIR"),
            (ROOT_DIRECTORY, "ProgramFiles64Folder", "INSTALLDIR", "BINDIR"),
        )

    def test_standard_folders_are_predeclared(self) -> None:
        self.assertIn("DesktopFolder", self.tree)
        self.assertEqual(self.tree.ancestors("AppMenu"), ["ProgramMenuFolder", ROOT_DIRECTORY])
        self.assertEqual([directory.id for directory in self.tree.declared()], ["INSTALLDIR", "BINDIR", "AppMenu"])

    def test_walk_is_depth_first(self) -> None:
        ids = [directory.id for directory in self.tree.walk("ProgramFiles64Folder")]
        self.assertEqual(ids, ["ProgramFiles64Folder", "INSTALLDIR", "BINDIR"])

    def test_duplicate_ids(self) -> None:
        with self.assertRaises(DuplicateDirectoryIdError) as ctx:
            build_directory_tree([{"id": "A"}, {"id": "A"}], base_folder="ProgramFilesFolder")
        self.assertIsInstance(ctx.exception, DuplicateIdentifierError)
        with self.assertRaises(DuplicateDirectoryIdError):
            build_directory_tree([{"id": "DesktopFolder"}], base_folder="ProgramFilesFolder")

    def test_dangling_parent(self) -> None:
        with self.assertRaises(DanglingParentReferenceError) as ctx:
            build_directory_tree([{"id": "A", "parent": "Nowhere"}], base_folder="ProgramFilesFolder")
        self.assertEqual(ctx.exception.identifier, "A")

    def test_parent_cycle(self) -> None:
        with self.assertRaises(DirectoryCycleError):
            build_directory_tree(
                [{"id": "A", "parent": "B"}, {"id": "B", "parent": "A"}],
                base_folder="ProgramFilesFolder",
            )

    def test_unknown_directory_lookup(self) -> None:
        with self.assertRaises(UnresolvedDirectoryRefError):
            self.tree.get("MISSING")


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
