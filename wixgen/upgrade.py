"""Checks of a new installer description against a previously shipped one."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Mapping
import json

from .components import normalize_guid
from .compiler import InstallerDescription
from .errors import ManifestSchemaError, StaleStabilityKeyError, UpgradeCodeChangedError


def load_previous(path: Path) -> Mapping[str, Any]:
    """Load a description previously written by ``wixgen compile``."""

    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ManifestSchemaError(f"Could not read previous description '{path}': {exc}", identifier=str(path)) from exc
    if not isinstance(data, Mapping) or not isinstance(data.get("product"), Mapping):
        raise ManifestSchemaError(f"'{path}' is not a compiled installer description", identifier=str(path))
    return data


def key_path_signature(component: Mapping[str, Any]) -> tuple[str, ...]:
    """Describe what a component's key path points at.

    Two components with equal signatures install the same resource, so they
    may share a stability key; anything else may not.
    """

    directory = str(component.get("directory", ""))
    key_path = component.get("key_path")
    if key_path == "directory":
        return (directory, "directory")
    for item in component.get("items", []):
        if item.get("id") != key_path:
            continue
        kind = str(item.get("kind", ""))
        if kind == "file":
            return (directory, kind, str(item.get("name", "")).lower())
        if kind == "registry":
            return (
                directory,
                kind,
                str(item.get("root", "")),
                str(item.get("key", "")).lower(),
                str(item.get("name") or "").lower(),
            )
        return (directory, kind, str(item.get("id")))
    return (directory, "missing", str(key_path))


def check_upgrade(previous: Mapping[str, Any], current: InstallerDescription) -> None:
    """Raise when ``current`` cannot upgrade an installation of ``previous``."""

    old_code = previous.get("product", {}).get("upgrade_code")
    if old_code and normalize_guid(str(old_code)) != current.product.upgrade_code:
        raise UpgradeCodeChangedError(
            f"Upgrade code changed from {old_code} to {current.product.upgrade_code}; "
            "existing installations would not be upgraded",
            identifier="product.upgrade_code",
        )

    shipped: Dict[str, Mapping[str, Any]] = {}
    for component in previous.get("components", []):
        guid = component.get("guid")
        if guid:
            shipped[str(guid).upper()] = component

    for component in current.components.values():
        old = shipped.get(component.stability_key)
        if old is None:
            continue
        before = key_path_signature(old)
        after = key_path_signature(component.to_mapping())
        if before != after:
            raise StaleStabilityKeyError(
                f"Component '{component.id}' keeps stability key {component.stability_key} but its key path "
                f"changed from {'/'.join(before)} to {'/'.join(after)}; assign a new key",
                identifier=component.id,
            )


__all__ = ["check_upgrade", "key_path_signature", "load_previous"]
