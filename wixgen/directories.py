"""Directory tree assembly for install locations."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Sequence

from .errors import (
    DanglingParentReferenceError,
    DirectoryCycleError,
    DuplicateDirectoryIdError,
    ManifestSchemaError,
    UnresolvedDirectoryRefError,
)


ROOT_DIRECTORY = "TARGETDIR"

# Folders the installer engine defines itself; they hang directly off the root.
STANDARD_FOLDERS: tuple[str, ...] = (
    "AppDataFolder",
    "CommonAppDataFolder",
    "DesktopFolder",
    "LocalAppDataFolder",
    "ProgramFiles64Folder",
    "ProgramFilesFolder",
    "ProgramMenuFolder",
    "StartMenuFolder",
    "System64Folder",
    "SystemFolder",
    "TempFolder",
    "WindowsFolder",
)


@dataclass(frozen=True, slots=True)
class Directory:
    id: str
    name: str
    parent: str | None = None
    standard: bool = False

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, default_parent: str) -> "Directory":
        identifier = data.get("id")
        if not identifier or not isinstance(identifier, str):
            raise ManifestSchemaError("Directory entries require a string 'id'")
        name = data.get("name", identifier)
        parent = data.get("parent") or default_parent
        return cls(id=identifier, name=str(name), parent=str(parent))

    def to_mapping(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "parent": self.parent}


@dataclass(slots=True)
class DirectoryTree:
    """Arena of directories addressed by identifier."""

    base_folder: str
    nodes: Dict[str, Directory] = field(default_factory=dict)
    _children: Dict[str, List[str]] = field(default_factory=dict, repr=False)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self.nodes

    def __iter__(self) -> Iterator[Directory]:
        return iter(self.nodes.values())

    def get(self, identifier: str) -> Directory:
        try:
            return self.nodes[identifier]
        except KeyError:
            raise UnresolvedDirectoryRefError(
                f"Directory '{identifier}' is not declared", identifier=identifier
            ) from None

    def children(self, identifier: str) -> List[str]:
        return list(self._children.get(identifier, ()))

    def ancestors(self, identifier: str) -> List[str]:
        """Return the parent chain of ``identifier``, nearest first."""

        chain: List[str] = []
        current = self.get(identifier).parent
        while current is not None:
            chain.append(current)
            current = self.nodes[current].parent
        return chain

    def path_of(self, identifier: str) -> tuple[str, ...]:
        """Return identifiers from the root down to ``identifier``."""

        return tuple(reversed([identifier, *self.ancestors(identifier)]))

    def declared(self) -> List[Directory]:
        return [node for node in self.nodes.values() if not node.standard and node.id != ROOT_DIRECTORY]

    def walk(self, identifier: str = ROOT_DIRECTORY) -> Iterator[Directory]:
        """Depth-first pre-order traversal in declaration order."""

        yield self.nodes[identifier]
        for child in self._children.get(identifier, ()):
            yield from self.walk(child)


def build_directory_tree(declarations: Sequence[Mapping[str, Any]], *, base_folder: str) -> DirectoryTree:
    """Build the directory arena rooted at ``TARGETDIR``.

    Declarations without a ``parent`` are placed under ``base_folder``, the
    platform specific program files folder.
    """

    tree = DirectoryTree(base_folder=base_folder)
    tree.nodes[ROOT_DIRECTORY] = Directory(id=ROOT_DIRECTORY, name="SourceDir", standard=True)
    for folder in STANDARD_FOLDERS:
        tree.nodes[folder] = Directory(id=folder, name=folder, parent=ROOT_DIRECTORY, standard=True)

    declared: List[Directory] = []
    for raw in declarations:
        if not isinstance(raw, Mapping):
            raise ManifestSchemaError("Directory entries must be tables/mappings")
        directory = Directory.from_mapping(raw, default_parent=base_folder)
        if directory.id in tree.nodes:
            raise DuplicateDirectoryIdError(
                f"Directory id '{directory.id}' is declared more than once", identifier=directory.id
            )
        tree.nodes[directory.id] = directory
        declared.append(directory)

    for directory in declared:
        if directory.parent not in tree.nodes:
            raise DanglingParentReferenceError(
                f"Directory '{directory.id}' names undeclared parent '{directory.parent}'",
                identifier=directory.id,
            )

    for directory in declared:
        _ensure_rooted(tree, directory.id)

    for node in tree.nodes.values():
        if node.parent is not None:
            tree._children.setdefault(node.parent, []).append(node.id)
    return tree


def _ensure_rooted(tree: DirectoryTree, identifier: str) -> None:
    seen: List[str] = []
    current: str | None = identifier
    while current is not None:
        if current in seen:
            cycle = seen[seen.index(current):] + [current]
            raise DirectoryCycleError(
                f"Directory parent chain forms a cycle: {' -> '.join(cycle)}", identifier=identifier
            )
        seen.append(current)
        current = tree.nodes[current].parent


__all__ = ["Directory", "DirectoryTree", "ROOT_DIRECTORY", "STANDARD_FOLDERS", "build_directory_tree"]
