"""Rendering of an installer description as WiX v3 source."""
from __future__ import annotations

from typing import Dict, List, Mapping
import xml.etree.ElementTree as ET

from .compiler import InstallerDescription
from .components import Component, EnvironmentItem, FileItem, PayloadItem, RegistryItem, ShortcutItem
from .directories import ROOT_DIRECTORY
from .features import Feature, iter_features
from .sequencer import CustomAction


WIX_NAMESPACE = "http://schemas.microsoft.com/wix/2006/wi"
INSTALLER_VERSION = "450"
PRODUCT_ICON_ID = "ProductIcon"

_ASSET_VARIABLES = {
    "license": "WixUILicenseRtf",
    "banner": "WixUIBannerBmp",
    "dialog": "WixUIDialogBmp",
}


def _yes_no(value: bool) -> str:
    return "yes" if value else "no"


def _element(parent: ET.Element, tag: str, attributes: Mapping[str, object | None]) -> ET.Element:
    cleaned = {key: str(value) for key, value in attributes.items() if value is not None}
    return ET.SubElement(parent, tag, cleaned)


def _render_item(parent: ET.Element, item: PayloadItem) -> None:
    key_path = "yes" if item.key_path else None
    if isinstance(item, FileItem):
        _element(parent, "File", {"Id": item.id, "Name": item.name, "Source": item.source, "KeyPath": key_path})
    elif isinstance(item, RegistryItem):
        _element(
            parent,
            "RegistryValue",
            {
                "Id": item.id,
                "Root": item.root,
                "Key": item.key,
                "Name": item.name,
                "Type": item.type,
                "Value": item.value,
                "KeyPath": key_path,
            },
        )
    elif isinstance(item, EnvironmentItem):
        _element(
            parent,
            "Environment",
            {
                "Id": item.id,
                "Name": item.name,
                "Value": item.value,
                "Part": item.part,
                "Action": item.action,
                "Permanent": _yes_no(item.permanent),
                "System": _yes_no(item.system),
            },
        )
    elif isinstance(item, ShortcutItem):
        _element(
            parent,
            "Shortcut",
            {
                "Id": item.id,
                "Name": item.name,
                "Directory": item.directory,
                "Target": item.target,
                "Arguments": item.arguments,
                "Description": item.description,
                "Icon": item.icon,
                "WorkingDirectory": item.working_directory,
            },
        )


def _render_component(parent: ET.Element, component: Component) -> None:
    node = _element(
        parent,
        "Component",
        {
            "Id": component.id,
            "Guid": component.stability_key,
            "Win64": _yes_no(component.win64),
            "KeyPath": "yes" if component.directory_key_path else None,
        },
    )
    if component.directory_key_path:
        ET.SubElement(node, "CreateFolder")
    for item in component.items:
        _render_item(node, item)
    for index, folder in enumerate(component.remove_folders):
        _element(node, "RemoveFolder", {"Id": f"{component.id}_rm{index}", "Directory": folder, "On": "uninstall"})


def _used_directories(description: InstallerDescription) -> set[str]:
    tree = description.directories
    anchors = {directory.id for directory in tree.declared()}
    for component in description.components.values():
        anchors.add(component.directory)
        anchors.update(component.remove_folders)
        anchors.update(item.directory for item in component.items if isinstance(item, ShortcutItem))
    used = {ROOT_DIRECTORY}
    for anchor in anchors:
        used.add(anchor)
        used.update(tree.ancestors(anchor))
    return used


def _render_directories(parent: ET.Element, description: InstallerDescription) -> None:
    tree = description.directories
    used = _used_directories(description)
    by_directory: Dict[str, List[Component]] = {}
    for component in description.components.values():
        by_directory.setdefault(component.directory, []).append(component)

    def visit(node: ET.Element, identifier: str) -> None:
        for component in by_directory.get(identifier, []):
            _render_component(node, component)
        for child_id in tree.children(identifier):
            if child_id not in used:
                continue
            child = tree.get(child_id)
            attributes: Dict[str, object | None] = {"Id": child.id}
            if not child.standard:
                attributes["Name"] = child.name
            visit(_element(node, "Directory", attributes), child_id)

    visit(_element(parent, "Directory", {"Id": ROOT_DIRECTORY, "Name": "SourceDir"}), ROOT_DIRECTORY)


def _render_feature(parent: ET.Element, feature: Feature) -> None:
    node = _element(
        parent,
        "Feature",
        {
            "Id": feature.id,
            "Title": feature.title,
            "Description": feature.description,
            "Level": feature.level,
            "Absent": feature.absent,
            "Display": feature.display,
            "ConfigurableDirectory": feature.configurable_directory,
        },
    )
    for component_id in feature.components:
        _element(node, "ComponentRef", {"Id": component_id})
    for child in feature.children:
        _render_feature(node, child)


def _render_action(parent: ET.Element, action: CustomAction) -> None:
    attributes: Dict[str, object | None] = {"Id": action.id}
    if action.property_name is not None:
        attributes.update({"Property": action.property_name, "Value": action.value})
    else:
        attributes.update({"FileKey": action.file_key, "ExeCommand": action.command})
    attributes.update({"Execute": action.execute, "Return": action.return_policy})
    if action.in_script:
        attributes["Impersonate"] = _yes_no(action.impersonate)
    _element(parent, "CustomAction", attributes)


def _render_upgrade(parent: ET.Element, description: InstallerDescription) -> None:
    policy = description.upgrade
    attributes: Dict[str, object | None] = {"Schedule": policy.schedule}
    if policy.allow_downgrades:
        attributes["AllowDowngrades"] = "yes"
    else:
        attributes["DowngradeErrorMessage"] = policy.downgrade_message
    if policy.allow_same_version_upgrades:
        attributes["AllowSameVersionUpgrades"] = "yes"
    _element(parent, "MajorUpgrade", attributes)


def _render_properties(parent: ET.Element, description: InstallerDescription) -> None:
    properties: Dict[str, str] = dict(description.properties)
    if description.product.help_link:
        properties.setdefault("ARPHELPLINK", description.product.help_link)
    icon = description.assets.get("icon")
    if icon:
        _element(parent, "Icon", {"Id": PRODUCT_ICON_ID, "SourceFile": icon})
        properties.setdefault("ARPPRODUCTICON", PRODUCT_ICON_ID)
    if description.dialog_set == "WixUI_InstallDir":
        configurable = [feature.configurable_directory for feature in iter_features(description.features)]
        target = next((directory for directory in configurable if directory), None)
        if target:
            properties.setdefault("WIXUI_INSTALLDIR", target)
    for name in sorted(properties):
        _element(parent, "Property", {"Id": name, "Value": properties[name]})


def _platform_defines(root: ET.Element, description: InstallerDescription) -> None:
    for variable in description.platform_variables:
        root.append(ET.ProcessingInstruction("define", f'{variable.name} = "{variable.value}"'))


def render_wxs(description: InstallerDescription) -> str:
    """Return the WiX source for ``description``; equal descriptions render identically."""

    product = description.product
    root = ET.Element("Wix", {"xmlns": WIX_NAMESPACE})
    _platform_defines(root, description)
    product_node = _element(
        root,
        "Product",
        {
            "Id": "*",
            "Name": product.name,
            "Language": product.language,
            "Codepage": product.codepage,
            "Version": product.version,
            "Manufacturer": product.manufacturer,
            "UpgradeCode": product.upgrade_code,
        },
    )
    _element(
        product_node,
        "Package",
        {
            "InstallerVersion": INSTALLER_VERSION,
            "Compressed": "yes",
            "InstallScope": product.scope,
            "Platform": description.platform.arch,
            "Description": product.description,
            "Manufacturer": product.manufacturer,
        },
    )
    _render_upgrade(product_node, description)
    _element(product_node, "MediaTemplate", {"EmbedCab": "yes"})
    _render_properties(product_node, description)
    _render_directories(product_node, description)
    for feature in description.features:
        _render_feature(product_node, feature)
    for action in description.actions.values():
        _render_action(product_node, action)
    if description.schedule.scheduled:
        sequence = ET.SubElement(product_node, "InstallExecuteSequence")
        for entry in description.schedule.scheduled:
            custom = _element(sequence, "Custom", {"Action": entry.action, "Sequence": entry.sequence})
            if entry.condition:
                custom.text = entry.condition
    for key, variable in _ASSET_VARIABLES.items():
        value = description.assets.get(key)
        if value:
            _element(product_node, "WixVariable", {"Id": variable, "Value": value})
    if description.dialog_set:
        _element(product_node, "UIRef", {"Id": description.dialog_set})

    ET.indent(root, space="  ")
    return '<?xml version="1.0" encoding="utf-8"?>\n' + ET.tostring(root, encoding="unicode") + "\n"


__all__ = ["INSTALLER_VERSION", "WIX_NAMESPACE", "render_wxs"]
