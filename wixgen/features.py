"""Feature tree construction and component/feature graph validation."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Mapping, Sequence

from core.config_loader import normalize_string_list

from .components import Component, ShortcutItem, parse_flag
from .directories import DirectoryTree, ROOT_DIRECTORY
from .errors import (
    DuplicateIdentifierError,
    ManifestSchemaError,
    OrphanComponentError,
    UnresolvedComponentRefError,
    UnresolvedDirectoryRefError,
    UnusedDirectoryError,
)


_ABSENT_POLICIES = {"allow", "disallow"}
_DISPLAY_MODES = {"expand", "collapse", "hidden"}


@dataclass(frozen=True, slots=True)
class Feature:
    id: str
    title: str
    description: str | None = None
    level: int = 1
    absent: str = "allow"
    display: str = "expand"
    configurable_directory: str | None = None
    components: tuple[str, ...] = ()
    children: tuple["Feature", ...] = ()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Feature":
        if not isinstance(data, Mapping):
            raise ManifestSchemaError("Feature entries must be tables/mappings")
        identifier = data.get("id")
        if not identifier or not isinstance(identifier, str):
            raise ManifestSchemaError("Feature entries require a string 'id'")

        level = data.get("level", 1)
        if isinstance(level, bool) or not isinstance(level, int) or level < 0:
            raise ManifestSchemaError(f"Feature level must be a non-negative integer, got {level!r}", identifier=identifier)

        absent = data.get("absent", "allow")
        if "allow_absent" in data:
            absent = "allow" if parse_flag(data["allow_absent"], field_name="allow_absent", identifier=identifier) else "disallow"
        if absent not in _ABSENT_POLICIES:
            raise ManifestSchemaError("Feature absent policy must be allow or disallow", identifier=identifier)

        display = data.get("display", "expand")
        if display not in _DISPLAY_MODES:
            raise ManifestSchemaError(f"Feature display must be one of {sorted(_DISPLAY_MODES)}", identifier=identifier)

        children_section = data.get("features", [])
        if not isinstance(children_section, Sequence) or isinstance(children_section, (str, bytes)):
            raise ManifestSchemaError("Nested features must be an array of tables", identifier=identifier)

        description = data.get("description")
        configurable = data.get("configurable_directory")
        return cls(
            id=identifier,
            title=str(data.get("title", identifier)),
            description=str(description) if description is not None else None,
            level=level,
            absent=str(absent),
            display=str(display),
            configurable_directory=str(configurable) if configurable else None,
            components=tuple(normalize_string_list(data.get("components"), field_name=f"feature {identifier} components")),
            children=tuple(cls.from_mapping(child) for child in children_section),
        )

    @property
    def selected_by_default(self) -> bool:
        return self.level > 0

    def walk(self) -> Iterator["Feature"]:
        yield self
        for child in self.children:
            yield from child.walk()

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "level": self.level,
            "absent": self.absent,
            "display": self.display,
            "configurable_directory": self.configurable_directory,
            "components": list(self.components),
            "features": [child.to_mapping() for child in self.children],
        }


def iter_features(features: Sequence[Feature]) -> Iterator[Feature]:
    for feature in features:
        yield from feature.walk()


def default_install_set(features: Sequence[Feature]) -> List[str]:
    """Return ids of features installed when the user changes nothing.

    A nested feature is only installed by default when its parent is.
    """

    selected: List[str] = []

    def _visit(feature: Feature) -> None:
        if not feature.selected_by_default:
            return
        selected.append(feature.id)
        for child in feature.children:
            _visit(child)

    for feature in features:
        _visit(feature)
    return selected


def validate_feature_graph(
    features: Sequence[Feature],
    components: Mapping[str, Component],
    tree: DirectoryTree,
) -> None:
    """Check that the feature tree, components and directories agree."""

    seen: set[str] = set()
    referenced: set[str] = set()
    for feature in iter_features(features):
        if feature.id in seen:
            raise DuplicateIdentifierError(f"Feature id '{feature.id}' is declared more than once", identifier=feature.id)
        seen.add(feature.id)
        for ref in feature.components:
            if ref not in components:
                raise UnresolvedComponentRefError(
                    f"Feature '{feature.id}' references undeclared component '{ref}'", identifier=ref
                )
            referenced.add(ref)
        if feature.configurable_directory and feature.configurable_directory not in tree:
            raise UnresolvedDirectoryRefError(
                f"Feature '{feature.id}' names undeclared configurable directory '{feature.configurable_directory}'",
                identifier=feature.configurable_directory,
            )

    for component_id in components:
        if component_id not in referenced:
            raise OrphanComponentError(
                f"Component '{component_id}' is not referenced by any feature", identifier=component_id
            )

    needed = _structurally_needed_directories(features, components, tree)
    for directory in tree.declared():
        if directory.id not in needed:
            raise UnusedDirectoryError(
                f"Directory '{directory.id}' holds no component and is not used by a shortcut or feature",
                identifier=directory.id,
            )


def _structurally_needed_directories(
    features: Sequence[Feature],
    components: Mapping[str, Component],
    tree: DirectoryTree,
) -> set[str]:
    anchors: set[str] = set()
    for component in components.values():
        anchors.add(component.directory)
        anchors.update(component.remove_folders)
        for item in component.items:
            if isinstance(item, ShortcutItem):
                anchors.add(item.directory)
                if item.working_directory:
                    anchors.add(item.working_directory)
    for feature in iter_features(features):
        if feature.configurable_directory:
            anchors.add(feature.configurable_directory)

    needed: set[str] = {ROOT_DIRECTORY}
    for anchor in sorted(anchors):
        tree.get(anchor)
        needed.add(anchor)
        needed.update(tree.ancestors(anchor))
    return needed


__all__ = ["Feature", "default_install_set", "iter_features", "validate_feature_graph"]
