"""Components and the payload items they install."""
from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from pathlib import PureWindowsPath
from typing import Any, ClassVar, Dict, List, Mapping, Sequence
import re
import uuid

from cryptography.hazmat.primitives import hashes

from .directories import DirectoryTree
from .errors import (
    DuplicateIdentifierError,
    InvalidStabilityKeyError,
    ManifestSchemaError,
    MissingKeyPathError,
    MissingPermanenceFlagError,
    MultipleKeyPathsError,
)


AUTO_KEY = "auto"
DIRECTORY_KEY_PATH = "directory"

_GUID_PATTERN = re.compile(r"^\{?([0-9A-Fa-f]{8}-(?:[0-9A-Fa-f]{4}-){3}[0-9A-Fa-f]{12})\}?$")
_REGISTRY_ROOTS = {"HKCR", "HKCU", "HKLM", "HKU", "HKMU"}
_REGISTRY_TYPES = {"string", "integer", "expandable", "multiString", "binary"}
ENVIRONMENT_PARTS = {"first": "first", "prepend": "first", "last": "last", "append": "last", "all": "all"}
_ENVIRONMENT_ACTIONS = {"set", "create", "remove"}
_TRUE_WORDS = {"yes", "true", "1", "on"}
_FALSE_WORDS = {"no", "false", "0", "off"}


def parse_flag(value: Any, *, field_name: str, identifier: str | None = None) -> bool:
    """Accept booleans as well as ``"yes"``/``"no"`` style strings."""

    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise ManifestSchemaError(f"{field_name} must be yes/no, got '{value}'", identifier=identifier)


def normalize_guid(value: str, *, identifier: str | None = None) -> str:
    match = _GUID_PATTERN.match(value.strip())
    if not match:
        raise InvalidStabilityKeyError(f"'{value}' is not a valid GUID", identifier=identifier)
    return match.group(1).upper()


def derive_stability_key(upgrade_code: str, directory_path: Sequence[str], identity: Sequence[str]) -> str:
    """Derive a component GUID from the content that identifies its key path.

    The same product, install location and key path always produce the same
    GUID; changing any of them produces a new one.
    """

    digest = hashes.Hash(hashes.SHA256())
    for part in (upgrade_code.upper(), *directory_path, *identity):
        encoded = str(part).encode("utf-8")
        digest.update(len(encoded).to_bytes(4, byteorder="big"))
        digest.update(encoded)
    raw = bytearray(digest.finalize()[:16])
    raw[6] = (raw[6] & 0x0F) | 0x50
    raw[8] = (raw[8] & 0x3F) | 0x80
    return str(uuid.UUID(bytes=bytes(raw))).upper()


@dataclass(frozen=True, slots=True)
class PayloadItem:
    """Base class for installable items carried by a component."""

    kind: ClassVar[str] = ""
    can_be_key_path: ClassVar[bool] = False

    id: str
    key_path: bool = False

    def identity(self) -> tuple[str, ...]:
        return (self.kind, self.id)

    def to_mapping(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"kind": self.kind}
        for item_field in fields(self):
            value = getattr(self, item_field.name)
            if value is not None:
                data[item_field.name] = value
        return data


@dataclass(frozen=True, slots=True)
class FileItem(PayloadItem):
    kind: ClassVar[str] = "file"
    can_be_key_path: ClassVar[bool] = True

    source: str = ""
    name: str = ""

    def identity(self) -> tuple[str, ...]:
        return (self.kind, self.name.lower())


@dataclass(frozen=True, slots=True)
class RegistryItem(PayloadItem):
    kind: ClassVar[str] = "registry"
    can_be_key_path: ClassVar[bool] = True

    root: str = "HKLM"
    key: str = ""
    name: str | None = None
    value: str | None = None
    type: str = "string"

    def identity(self) -> tuple[str, ...]:
        return (self.kind, self.root, self.key.lower(), (self.name or "").lower())


@dataclass(frozen=True, slots=True)
class EnvironmentItem(PayloadItem):
    kind: ClassVar[str] = "environment"

    name: str = ""
    value: str = ""
    part: str = "last"
    permanent: bool = False
    system: bool = True
    action: str = "set"


@dataclass(frozen=True, slots=True)
class ShortcutItem(PayloadItem):
    kind: ClassVar[str] = "shortcut"

    name: str = ""
    directory: str = ""
    target: str = ""
    arguments: str | None = None
    description: str | None = None
    icon: str | None = None
    working_directory: str | None = None


def _require(data: Mapping[str, Any], key: str, *, label: str) -> Any:
    value = data.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ManifestSchemaError(f"{label} requires '{key}'", identifier=label)
    return value


def parse_payload_item(data: Mapping[str, Any], *, default_id: str) -> PayloadItem:
    """Build a payload item from its manifest table, dispatching on ``kind``."""

    if not isinstance(data, Mapping):
        raise ManifestSchemaError("Payload entries must be tables/mappings", identifier=default_id)
    kind = data.get("kind")
    identifier = str(data.get("id") or default_id)
    key_path = parse_flag(data.get("key_path", False), field_name="key_path", identifier=identifier)

    if kind == "file":
        source = str(_require(data, "source", label=identifier))
        name = str(data.get("name") or PureWindowsPath(source).name)
        return FileItem(id=identifier, key_path=key_path, source=source, name=name)

    if kind == "registry":
        root = str(data.get("root", "HKLM"))
        if root not in _REGISTRY_ROOTS:
            raise ManifestSchemaError(f"Registry root '{root}' is not one of {sorted(_REGISTRY_ROOTS)}", identifier=identifier)
        value_type = str(data.get("type", "string"))
        if value_type not in _REGISTRY_TYPES:
            raise ManifestSchemaError(f"Registry type '{value_type}' is not supported", identifier=identifier)
        name = data.get("name")
        value = data.get("value")
        return RegistryItem(
            id=identifier,
            key_path=key_path,
            root=root,
            key=str(_require(data, "key", label=identifier)),
            name=str(name) if name is not None else None,
            value=str(value) if value is not None else None,
            type=value_type,
        )

    if kind == "environment":
        if data.get("permanent") is None:
            raise MissingPermanenceFlagError(
                f"Environment entry '{identifier}' must state whether it is permanent", identifier=identifier
            )
        part = ENVIRONMENT_PARTS.get(str(data.get("part", "last")))
        if part is None:
            raise ManifestSchemaError(
                f"Environment part must be one of {sorted(ENVIRONMENT_PARTS)}", identifier=identifier
            )
        action = str(data.get("action", "set"))
        if action not in _ENVIRONMENT_ACTIONS:
            raise ManifestSchemaError(f"Environment action '{action}' is not supported", identifier=identifier)
        return EnvironmentItem(
            id=identifier,
            key_path=key_path,
            name=str(_require(data, "name", label=identifier)),
            value=str(_require(data, "value", label=identifier)),
            part=part,
            permanent=parse_flag(data["permanent"], field_name="permanent", identifier=identifier),
            system=parse_flag(data.get("system", True), field_name="system", identifier=identifier),
            action=action,
        )

    if kind == "shortcut":
        optional = {
            key: str(data[key])
            for key in ("arguments", "description", "icon", "working_directory")
            if data.get(key) is not None
        }
        return ShortcutItem(
            id=identifier,
            key_path=key_path,
            name=str(_require(data, "name", label=identifier)),
            directory=str(_require(data, "directory", label=identifier)),
            target=str(_require(data, "target", label=identifier)),
            **optional,
        )

    raise ManifestSchemaError(
        f"Payload '{identifier}' has unknown kind '{kind}' (expected file, registry, environment or shortcut)",
        identifier=identifier,
    )


@dataclass(frozen=True, slots=True)
class Component:
    id: str
    directory: str
    stability_key: str = AUTO_KEY
    win64: bool = False
    items: tuple[PayloadItem, ...] = ()
    directory_key_path: bool = False
    remove_folders: tuple[str, ...] = ()
    explicit_key: bool = field(default=False, compare=False)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, win64: bool) -> "Component":
        identifier = data.get("id")
        if not identifier or not isinstance(identifier, str):
            raise ManifestSchemaError("Component entries require a string 'id'")
        directory = _require(data, "directory", label=identifier)

        raw_key = str(data.get("guid", AUTO_KEY)).strip()
        explicit = raw_key.lower() not in {AUTO_KEY, "*", ""}
        stability_key = normalize_guid(raw_key, identifier=identifier) if explicit else AUTO_KEY

        directory_key_path = data.get("key_path") == DIRECTORY_KEY_PATH
        if data.get("key_path") not in (None, DIRECTORY_KEY_PATH):
            raise ManifestSchemaError(
                f"Component key_path may only be '{DIRECTORY_KEY_PATH}'; mark a payload item instead",
                identifier=identifier,
            )

        payload = data.get("payload", [])
        if not isinstance(payload, Sequence) or isinstance(payload, (str, bytes)):
            raise ManifestSchemaError("Component payload must be an array of tables", identifier=identifier)
        items = tuple(
            parse_payload_item(entry, default_id=f"{identifier}_{index}") for index, entry in enumerate(payload)
        )

        win64_value = data.get("win64")
        return cls(
            id=identifier,
            directory=str(directory),
            stability_key=stability_key,
            win64=win64 if win64_value is None else parse_flag(win64_value, field_name="win64", identifier=identifier),
            items=items,
            directory_key_path=directory_key_path,
            explicit_key=explicit,
        )

    @property
    def has_key_path(self) -> bool:
        return self.directory_key_path or any(item.key_path for item in self.items)

    def key_path_item(self) -> PayloadItem | None:
        """Return the key path item, or ``None`` when the directory is the key path.

        Raises :class:`MissingKeyPathError` or :class:`MultipleKeyPathsError`
        unless exactly one key path is declared.
        """

        marked = [item for item in self.items if item.key_path]
        total = len(marked) + (1 if self.directory_key_path else 0)
        if total == 0:
            raise MissingKeyPathError(f"Component '{self.id}' has no key path", identifier=self.id)
        if total > 1:
            names = [item.id for item in marked]
            if self.directory_key_path:
                names.insert(0, DIRECTORY_KEY_PATH)
            raise MultipleKeyPathsError(
                f"Component '{self.id}' has {total} key paths: {', '.join(names)}", identifier=self.id
            )
        if not marked:
            return None
        item = marked[0]
        if not item.can_be_key_path:
            raise ManifestSchemaError(
                f"{item.kind} item '{item.id}' cannot be a key path; use a file, a registry value "
                f"or key_path = '{DIRECTORY_KEY_PATH}'",
                identifier=self.id,
            )
        return item

    def key_path_identity(self) -> tuple[str, ...]:
        item = self.key_path_item()
        if item is None:
            return (DIRECTORY_KEY_PATH,)
        return item.identity()

    def with_items(self, items: Sequence[PayloadItem], *, remove_folders: Sequence[str] = ()) -> "Component":
        folders = list(self.remove_folders)
        for folder in remove_folders:
            if folder not in folders:
                folders.append(folder)
        return replace(self, items=(*self.items, *items), remove_folders=tuple(folders))

    def files(self) -> List[FileItem]:
        return [item for item in self.items if isinstance(item, FileItem)]

    def to_mapping(self) -> Dict[str, Any]:
        key_item = self.key_path_item()
        return {
            "id": self.id,
            "directory": self.directory,
            "guid": self.stability_key,
            "win64": self.win64,
            "key_path": key_item.id if key_item else DIRECTORY_KEY_PATH,
            "items": [item.to_mapping() for item in self.items],
            "remove_folders": list(self.remove_folders),
        }


def finalize_components(
    components: Sequence[Component],
    *,
    tree: DirectoryTree,
    upgrade_code: str,
) -> Dict[str, Component]:
    """Check key paths and replace ``auto`` stability keys with derived GUIDs."""

    finalized: Dict[str, Component] = {}
    for component in components:
        if component.id in finalized:
            raise DuplicateIdentifierError(
                f"Component id '{component.id}' is declared more than once", identifier=component.id
            )
        tree.get(component.directory)
        identity = component.key_path_identity()
        if component.stability_key == AUTO_KEY:
            key = derive_stability_key(upgrade_code, tree.path_of(component.directory), identity)
            component = replace(component, stability_key=key)
        finalized[component.id] = component
    return finalized


__all__ = [
    "AUTO_KEY",
    "Component",
    "DIRECTORY_KEY_PATH",
    "ENVIRONMENT_PARTS",
    "EnvironmentItem",
    "FileItem",
    "PayloadItem",
    "RegistryItem",
    "ShortcutItem",
    "derive_stability_key",
    "finalize_components",
    "normalize_guid",
    "parse_flag",
    "parse_payload_item",
]
