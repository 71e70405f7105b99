"""Translation of shell integration intents into payload items.

Nothing here touches the registry or the file system; the intents become
declarations attached to their owning component and are carried out by the
installer engine.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Sequence

from .components import (
    ENVIRONMENT_PARTS,
    Component,
    EnvironmentItem,
    FileItem,
    PayloadItem,
    RegistryItem,
    ShortcutItem,
    parse_flag,
)
from .directories import ROOT_DIRECTORY, STANDARD_FOLDERS
from .errors import (
    ManifestSchemaError,
    MissingPermanenceFlagError,
    UnresolvedComponentRefError,
    UnresolvedFileKeyError,
)


# Folders owned by the system; uninstall must never remove them.
_SYSTEM_FOLDERS = frozenset((ROOT_DIRECTORY, *STANDARD_FOLDERS))


@dataclass(frozen=True, slots=True)
class IntegrationContext:
    manufacturer: str
    product_name: str
    per_machine: bool
    files: Mapping[str, FileItem]

    @property
    def classes_root(self) -> str:
        return "HKLM" if self.per_machine else "HKCU"

    def file(self, key: str, *, owner: str) -> FileItem:
        item = self.files.get(key)
        if item is None:
            raise UnresolvedFileKeyError(f"Integration on '{owner}' targets undeclared file '{key}'", identifier=key)
        return item


@dataclass(frozen=True, slots=True)
class IntegrationResult:
    items: tuple[PayloadItem, ...]
    remove_folders: tuple[str, ...] = ()


def _path_intent(
    data: Mapping[str, Any], component: Component, index: int, context: IntegrationContext
) -> IntegrationResult:
    owner = component.id
    if data.get("permanent") is None:
        raise MissingPermanenceFlagError(
            f"PATH integration on '{owner}' must state whether it is permanent", identifier=owner
        )
    part = ENVIRONMENT_PARTS.get(str(data.get("part", "last")))
    if part is None:
        raise ManifestSchemaError(f"PATH part must be one of {sorted(ENVIRONMENT_PARTS)}", identifier=owner)
    directory = data.get("directory")
    value = data.get("value") or (f"[{directory}]" if directory else None)
    if not value:
        raise ManifestSchemaError(f"PATH integration on '{owner}' requires 'directory' or 'value'", identifier=owner)
    item = EnvironmentItem(
        id=str(data.get("id") or f"{owner}_PATH"),
        name=str(data.get("variable", "PATH")),
        value=str(value),
        part=part,
        permanent=parse_flag(data["permanent"], field_name="permanent", identifier=owner),
        system=parse_flag(data.get("system", context.per_machine), field_name="system", identifier=owner),
        action="set",
    )
    return IntegrationResult(items=(item,))


def _file_association_intent(
    data: Mapping[str, Any], component: Component, index: int, context: IntegrationContext
) -> IntegrationResult:
    owner = component.id
    extension = str(data.get("extension", "")).lstrip(".")
    if not extension:
        raise ManifestSchemaError(f"File association on '{owner}' requires 'extension'", identifier=owner)
    file_key = data.get("file")
    if not file_key:
        raise ManifestSchemaError(f"File association on '{owner}' requires 'file'", identifier=owner)
    context.file(str(file_key), owner=owner)

    prog_id = str(data.get("prog_id") or f"{context.product_name}.{extension}").replace(" ", "")
    verb = str(data.get("verb", "open"))
    arguments = str(data.get("arguments", '"%1"'))
    description = str(data.get("description") or f"{context.product_name} {extension} file")
    root = context.classes_root
    classes = r"Software\Classes"
    prefix = f"{owner}_assoc{index}"

    icon = str(data.get("icon_file") or file_key)
    context.file(icon, owner=owner)
    items: List[PayloadItem] = [
        RegistryItem(id=f"{prefix}_ext", root=root, key=rf"{classes}\.{extension}", value=prog_id),
        RegistryItem(id=f"{prefix}_progid", root=root, key=rf"{classes}\{prog_id}", value=description),
        RegistryItem(id=f"{prefix}_icon", root=root, key=rf"{classes}\{prog_id}\DefaultIcon", value=f"[#{icon}],0"),
        RegistryItem(
            id=f"{prefix}_cmd",
            root=root,
            key=rf"{classes}\{prog_id}\shell\{verb}\command",
            value=f'"[#{file_key}]" {arguments}'.rstrip(),
        ),
    ]
    return IntegrationResult(items=tuple(items))


def _shortcut_intent(
    data: Mapping[str, Any], component: Component, index: int, context: IntegrationContext
) -> IntegrationResult:
    """Shortcut to a file, plus an HKCU key path when the component has none yet."""

    owner = component.id
    file_key = data.get("file")
    if not file_key:
        raise ManifestSchemaError(f"Shortcut on '{owner}' requires 'file'", identifier=owner)
    context.file(str(file_key), owner=owner)
    directory = data.get("directory")
    if not directory:
        raise ManifestSchemaError(f"Shortcut on '{owner}' requires 'directory'", identifier=owner)

    optional = {
        key: str(data[key]) for key in ("arguments", "description", "icon", "working_directory") if data.get(key)
    }
    items: List[PayloadItem] = [
        ShortcutItem(
            id=str(data.get("id") or f"{owner}_shortcut{index}"),
            name=str(data.get("name") or context.product_name),
            directory=str(directory),
            target=f"[#{file_key}]",
            **optional,
        )
    ]
    wants_key_path = parse_flag(data.get("registry_key_path", True), field_name="registry_key_path", identifier=owner)
    if wants_key_path and not component.has_key_path:
        items.append(
            RegistryItem(
                id=f"{owner}_shortcut{index}_installed",
                key_path=True,
                root="HKCU",
                key=rf"Software\{context.manufacturer}\{context.product_name}",
                name=f"{owner}_installed",
                value="1",
                type="integer",
            )
        )
    remove_folders = () if str(directory) in _SYSTEM_FOLDERS else (str(directory),)
    return IntegrationResult(items=tuple(items), remove_folders=remove_folders)


_WRITERS: Dict[str, Callable[[Mapping[str, Any], Component, int, IntegrationContext], IntegrationResult]] = {
    "path": _path_intent,
    "file_association": _file_association_intent,
    "shortcut": _shortcut_intent,
}


def apply_integrations(
    components: Sequence[Component],
    intents: Sequence[Mapping[str, Any]],
    context: IntegrationContext,
) -> List[Component]:
    """Attach the declarations for each intent to its owning component."""

    arena: Dict[str, Component] = {component.id: component for component in components}
    for index, intent in enumerate(intents):
        if not isinstance(intent, Mapping):
            raise ManifestSchemaError("Integration entries must be tables/mappings")
        kind = intent.get("kind")
        writer = _WRITERS.get(str(kind))
        if writer is None:
            raise ManifestSchemaError(
                f"Integration kind '{kind}' is not one of {sorted(_WRITERS)}", identifier=str(kind)
            )
        owner = intent.get("component")
        if not owner or owner not in arena:
            raise UnresolvedComponentRefError(
                f"Integration '{kind}' names undeclared component '{owner}'", identifier=str(owner)
            )
        result = writer(intent, arena[owner], index, context)
        arena[owner] = arena[owner].with_items(result.items, remove_folders=result.remove_folders)
    return [arena[component.id] for component in components]


__all__ = ["IntegrationContext", "IntegrationResult", "apply_integrations"]
