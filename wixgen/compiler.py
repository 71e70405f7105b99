"""Single-pass compilation of a manifest into an installer description."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence
import json

from core.config_loader import load_config_file, merge_mappings
from core.template import TemplateError, TemplateResolver, resolve_variable_table

from .components import Component, FileItem, finalize_components, normalize_guid, parse_flag
from .directories import DirectoryTree, build_directory_tree
from .environment import BuildInputs, ContextBuilder
from .errors import (
    DuplicateIdentifierError,
    ManifestSchemaError,
    UnknownProfileError,
)
from .features import Feature, default_install_set, iter_features, validate_feature_graph
from .integration import IntegrationContext, apply_integrations
from .platforms import PlatformVariable, ResolvedPlatform, expand_version, resolve_platform
from .sequencer import ActionSchedule, CustomAction, SequenceRule, sequence_actions, validate_actions


DEFAULT_VERSION_TEMPLATE = "{{build.version}}"
DEFAULT_DIALOG_SET = "WixUI_FeatureTree"
_SCOPES = {"perMachine", "perUser"}
# Sections resolved separately or not at all.
_UNRESOLVED_SECTIONS = {"profiles", "variables"}


@dataclass(frozen=True, slots=True)
class Product:
    name: str
    manufacturer: str
    upgrade_code: str
    version: str
    language: int = 1033
    codepage: int = 1252
    scope: str = "perMachine"
    description: str | None = None
    help_link: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, version: str) -> "Product":
        if not isinstance(data, Mapping):
            raise ManifestSchemaError("[product] section is required in the manifest", identifier="product")
        name = data.get("name")
        manufacturer = data.get("manufacturer")
        upgrade_code = data.get("upgrade_code")
        if not name or not manufacturer or not upgrade_code:
            raise ManifestSchemaError(
                "product.name, product.manufacturer and product.upgrade_code are required", identifier="product"
            )
        scope = str(data.get("scope", "perMachine"))
        if scope not in _SCOPES:
            raise ManifestSchemaError(f"product.scope must be one of {sorted(_SCOPES)}", identifier="product")
        language = data.get("language", 1033)
        codepage = data.get("codepage", 1252)
        for label, value in (("language", language), ("codepage", codepage)):
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ManifestSchemaError(f"product.{label} must be a positive integer", identifier="product")
        description = data.get("description")
        help_link = data.get("help_link")
        return cls(
            name=str(name),
            manufacturer=str(manufacturer),
            upgrade_code=normalize_guid(str(upgrade_code), identifier="product.upgrade_code"),
            version=version,
            language=language,
            codepage=codepage,
            scope=scope,
            description=str(description) if description else None,
            help_link=str(help_link) if help_link else None,
        )

    @property
    def per_machine(self) -> bool:
        return self.scope == "perMachine"

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "manufacturer": self.manufacturer,
            "upgrade_code": self.upgrade_code,
            "version": self.version,
            "language": self.language,
            "codepage": self.codepage,
            "scope": self.scope,
            "description": self.description,
            "help_link": self.help_link,
        }


@dataclass(frozen=True, slots=True)
class UpgradePolicy:
    allow_downgrades: bool = False
    allow_same_version_upgrades: bool = False
    downgrade_message: str = "A newer version of [ProductName] is already installed."
    schedule: str = "afterInstallInitialize"

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "UpgradePolicy":
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise ManifestSchemaError("[upgrade] must be a table", identifier="upgrade")
        defaults = cls()
        return cls(
            allow_downgrades=parse_flag(data.get("allow_downgrades", False), field_name="upgrade.allow_downgrades"),
            allow_same_version_upgrades=parse_flag(
                data.get("allow_same_version_upgrades", False), field_name="upgrade.allow_same_version_upgrades"
            ),
            downgrade_message=str(data.get("downgrade_message", defaults.downgrade_message)),
            schedule=str(data.get("schedule", defaults.schedule)),
        )

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "allow_downgrades": self.allow_downgrades,
            "allow_same_version_upgrades": self.allow_same_version_upgrades,
            "downgrade_message": self.downgrade_message,
            "schedule": self.schedule,
        }


@dataclass(frozen=True, slots=True)
class InstallerDescription:
    """Fully resolved, validated installer description.

    Built once per compilation and never mutated afterwards.
    """

    product: Product
    platform: ResolvedPlatform
    profile: str
    upgrade: UpgradePolicy
    directories: DirectoryTree
    components: Mapping[str, Component]
    features: tuple[Feature, ...]
    actions: Mapping[str, CustomAction]
    schedule: ActionSchedule
    assets: Mapping[str, str] = field(default_factory=dict)
    properties: Mapping[str, str] = field(default_factory=dict)
    dialog_set: str | None = DEFAULT_DIALOG_SET

    @property
    def platform_variables(self) -> tuple[PlatformVariable, ...]:
        return self.platform.variables

    def default_install_set(self) -> List[str]:
        return default_install_set(self.features)

    def file_items(self) -> Dict[str, FileItem]:
        return {item.id: item for component in self.components.values() for item in component.files()}

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "product": self.product.to_mapping(),
            "platform": self.platform.to_mapping(),
            "platform_variables": [
                {"name": variable.name, "value": variable.value, "condition": variable.condition}
                for variable in self.platform_variables
            ],
            "profile": self.profile,
            "upgrade": self.upgrade.to_mapping(),
            "assets": dict(self.assets),
            "properties": dict(self.properties),
            "ui": {"dialog_set": self.dialog_set},
            "directories": [directory.to_mapping() for directory in self.directories.declared()],
            "components": [component.to_mapping() for component in self.components.values()],
            "features": [feature.to_mapping() for feature in self.features],
            "default_install_set": self.default_install_set(),
            "actions": [action.to_mapping() for action in self.actions.values()],
            "sequence": [entry.to_mapping() for entry in self.schedule.scheduled],
        }


def serialize(description: InstallerDescription) -> str:
    """Canonical JSON form; identical descriptions serialize to identical text."""

    return json.dumps(description.to_mapping(), indent=2, sort_keys=True, ensure_ascii=False) + "\n"


def load_manifest(path: Path) -> Mapping[str, Any]:
    try:
        return load_config_file(path)
    except (OSError, TypeError, ValueError) as exc:
        raise ManifestSchemaError(f"Could not load manifest '{path}': {exc}", identifier=str(path)) from exc


def apply_profile(manifest: Mapping[str, Any], profile: str) -> Dict[str, Any]:
    """Overlay the named profile onto the manifest.

    A manifest that declares no profiles accepts any profile name.
    """

    profiles = manifest.get("profiles") or {}
    if not isinstance(profiles, Mapping):
        raise ManifestSchemaError("[profiles] must be a table of tables", identifier="profiles")
    base = {key: value for key, value in manifest.items() if key != "profiles"}
    if not profiles:
        return base
    overlay = profiles.get(profile)
    if not isinstance(overlay, Mapping):
        available = ", ".join(sorted(profiles))
        raise UnknownProfileError(f"Unknown build profile '{profile}'. Available: {available}", identifier=profile)
    return merge_mappings(base, overlay)


def build_context(
    manifest: Mapping[str, Any],
    inputs: BuildInputs,
    *,
    env: Mapping[str, str] | None = None,
) -> tuple[ResolvedPlatform, Dict[str, Any]]:
    """Resolve the platform and assemble the template context for ``manifest``."""

    platform = resolve_platform(inputs.platform)
    assets = manifest.get("assets") or {}
    if not isinstance(assets, Mapping):
        raise ManifestSchemaError("[assets] must be a table", identifier="assets")
    context = ContextBuilder(inputs, env=env if env is not None else {}).combined_context(
        platform=platform, assets=assets
    )

    product = dict(manifest.get("product") or {})
    context["product"] = product
    variables = manifest.get("variables") or {}
    if not isinstance(variables, Mapping):
        raise ManifestSchemaError("[variables] must be a table", identifier="variables")
    try:
        context["variables"] = resolve_variable_table(variables, context=context)
    except TemplateError as exc:
        raise ManifestSchemaError(str(exc), identifier="variables") from exc

    context["product"] = {
        **product,
        "version": expand_version(product.get("version", DEFAULT_VERSION_TEMPLATE), context),
    }
    return platform, context


def compile_manifest(
    manifest: Mapping[str, Any],
    inputs: BuildInputs,
    *,
    env: Mapping[str, str] | None = None,
) -> InstallerDescription:
    """Compile ``manifest`` with the injected ``inputs``.

    This is a pure function: no file system access, no global state. Any
    violation raises a :class:`~wixgen.errors.CompileError` subclass and
    nothing is produced.
    """

    merged = apply_profile(manifest, inputs.profile)
    platform, context = build_context(merged, inputs, env=env)

    try:
        resolved = TemplateResolver(context).resolve(
            {key: value for key, value in merged.items() if key not in _UNRESOLVED_SECTIONS}
        )
    except TemplateError as exc:
        raise ManifestSchemaError(f"Template resolution failed: {exc}") from exc

    product = Product.from_mapping(resolved.get("product"), version=context["product"]["version"])
    tree = build_directory_tree(_table_list(resolved, "directories"), base_folder=platform.program_files)

    components = [
        Component.from_mapping(entry, win64=platform.win64) for entry in _table_list(resolved, "components")
    ]
    files = {item.id: item for component in components for item in component.files()}
    components = apply_integrations(
        components,
        _table_list(resolved, "integrations"),
        IntegrationContext(
            manufacturer=product.manufacturer,
            product_name=product.name,
            per_machine=product.per_machine,
            files=files,
        ),
    )
    finalized = finalize_components(components, tree=tree, upgrade_code=product.upgrade_code)

    features = tuple(Feature.from_mapping(entry) for entry in _table_list(resolved, "features"))
    validate_feature_graph(features, finalized, tree)

    actions = validate_actions(
        [CustomAction.from_mapping(entry) for entry in _table_list(resolved, "actions")],
        file_keys=files,
    )
    _ensure_unique_identifiers(tree, finalized, features, actions)

    properties = resolved.get("properties") or {}
    if not isinstance(properties, Mapping):
        raise ManifestSchemaError("[properties] must be a table", identifier="properties")
    upgrade = UpgradePolicy.from_mapping(resolved.get("upgrade"))
    schedule = sequence_actions(
        actions,
        [SequenceRule.from_mapping(entry) for entry in _table_list(resolved, "sequence")],
        properties=[*properties, *tree.nodes],
        components=finalized,
        features=[feature.id for feature in iter_features(features)],
        upgrade_schedule=upgrade.schedule,
    )

    assets = {**(resolved.get("assets") or {}), **inputs.assets()}
    ui = resolved.get("ui") or {}
    dialog_set = ui.get("dialog_set", DEFAULT_DIALOG_SET) if isinstance(ui, Mapping) else DEFAULT_DIALOG_SET
    return InstallerDescription(
        product=product,
        platform=platform,
        profile=inputs.profile,
        upgrade=upgrade,
        directories=tree,
        components=finalized,
        features=features,
        actions=actions,
        schedule=schedule,
        assets={str(key): str(value) for key, value in sorted(assets.items())},
        properties={str(key): str(value) for key, value in sorted(properties.items())},
        dialog_set=str(dialog_set) if dialog_set else None,
    )


def _table_list(resolved: Mapping[str, Any], key: str) -> List[Mapping[str, Any]]:
    value = resolved.get(key, [])
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        raise ManifestSchemaError(f"[[{key}]] must be an array of tables", identifier=key)
    return list(value)


def _ensure_unique_identifiers(
    tree: DirectoryTree,
    components: Mapping[str, Component],
    features: Sequence[Feature],
    actions: Mapping[str, CustomAction],
) -> None:
    owners: Dict[str, str] = {node.id: "directory" for node in tree}

    def register(identifier: str, kind: str) -> None:
        if identifier in owners:
            raise DuplicateIdentifierError(
                f"Identifier '{identifier}' is used by both a {owners[identifier]} and a {kind}",
                identifier=identifier,
            )
        owners[identifier] = kind

    for component in components.values():
        register(component.id, "component")
        for item in component.items:
            register(item.id, f"{item.kind} item")
    for feature in iter_features(features):
        register(feature.id, "feature")
    for action in actions.values():
        register(action.id, "action")


__all__ = [
    "InstallerDescription",
    "Product",
    "UpgradePolicy",
    "apply_profile",
    "build_context",
    "compile_manifest",
    "load_manifest",
    "serialize",
]
