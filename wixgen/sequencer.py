"""Custom action declarations and their placement in the install sequence."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from core.ordering import CycleError, topological_order

from .components import parse_flag
from .conditions import parse_condition, unknown_references
from .errors import (
    DeferredOutsideScriptError,
    DuplicateIdentifierError,
    ManifestSchemaError,
    MissingReturnPolicyError,
    OrderingContradictionError,
    SelfReferentialGuardError,
    SequenceOverflowError,
    UnknownGuardVariableError,
    UnresolvedActionRefError,
    UnresolvedFileKeyError,
)


# Standard InstallExecuteSequence actions and their conventional numbers.
STANDARD_PHASES: tuple[tuple[str, int], ...] = (
    ("AppSearch", 50),
    ("LaunchConditions", 100),
    ("FindRelatedProducts", 200),
    ("ValidateProductID", 700),
    ("CostInitialize", 800),
    ("FileCost", 900),
    ("CostFinalize", 1000),
    ("InstallValidate", 1400),
    ("InstallInitialize", 1500),
    ("ProcessComponents", 1600),
    ("UnpublishFeatures", 1800),
    ("RemoveRegistryValues", 2600),
    ("RemoveShortcuts", 3200),
    ("RemoveEnvironmentStrings", 3300),
    ("RemoveFiles", 3500),
    ("RemoveFolders", 3600),
    ("CreateFolders", 3700),
    ("InstallFiles", 4000),
    ("CreateShortcuts", 4500),
    ("WriteRegistryValues", 5000),
    ("WriteEnvironmentStrings", 5200),
    ("RegisterUser", 6000),
    ("RegisterProduct", 6100),
    ("PublishFeatures", 6300),
    ("PublishProduct", 6400),
    ("InstallFinalize", 6600),
)

REMOVE_EXISTING_PRODUCTS = "RemoveExistingProducts"
UPGRADE_SCHEDULES: dict[str, int] = {
    "afterInstallValidate": 1401,
    "afterInstallInitialize": 1501,
}

PHASE_ALIASES: dict[str, str] = {
    "pre-install": "InstallInitialize",
    "install": "InstallFiles",
    "finalize": "InstallFinalize",
}

STANDARD_PROPERTIES: frozenset[str] = frozenset(
    {
        "ALLUSERS",
        "Installed",
        "Manufacturer",
        "MsiNTProductType",
        "PATCH",
        "Preselected",
        "Privileged",
        "ProductCode",
        "ProductLanguage",
        "ProductName",
        "ProductVersion",
        "REINSTALL",
        "REMOVE",
        "ResumeInstall",
        "UILevel",
        "UPGRADINGPRODUCTCODE",
        "UpgradeCode",
        "VersionNT",
        "VersionNT64",
        "WIX_DOWNGRADE_DETECTED",
        "WIX_UPGRADE_DETECTED",
    }
)

_EXECUTE_MODES = {"immediate", "deferred", "commit", "rollback", "oncePerProcess", "firstSequence", "secondSequence"}
_IN_SCRIPT_MODES = {"deferred", "commit", "rollback"}
_RETURN_POLICIES = {"check", "ignore", "asyncWait", "asyncNoWait"}


@dataclass(frozen=True, slots=True)
class CustomAction:
    id: str
    execute: str = "immediate"
    return_policy: str = "check"
    impersonate: bool = True
    file_key: str | None = None
    command: str = ""
    property_name: str | None = None
    value: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "CustomAction":
        if not isinstance(data, Mapping):
            raise ManifestSchemaError("Action entries must be tables/mappings")
        identifier = data.get("id")
        if not identifier or not isinstance(identifier, str):
            raise ManifestSchemaError("Action entries require a string 'id'")

        execute = str(data.get("execute", "immediate"))
        if execute not in _EXECUTE_MODES:
            raise ManifestSchemaError(f"Action execute mode '{execute}' is not supported", identifier=identifier)

        raw_return = data.get("return")
        if raw_return is None and execute in _IN_SCRIPT_MODES:
            raise MissingReturnPolicyError(
                f"Deferred action '{identifier}' must state its return policy (check, ignore, asyncWait or asyncNoWait)",
                identifier=identifier,
            )
        return_policy = str(raw_return or "check")
        if return_policy not in _RETURN_POLICIES:
            raise ManifestSchemaError(f"Action return policy '{return_policy}' is not supported", identifier=identifier)

        file_key = data.get("file")
        property_name = data.get("property")
        if bool(file_key) == bool(property_name):
            raise ManifestSchemaError(
                f"Action '{identifier}' must name exactly one of 'file' or 'property'", identifier=identifier
            )
        value = data.get("value")
        if property_name and value is None:
            raise ManifestSchemaError(f"Property action '{identifier}' requires 'value'", identifier=identifier)

        return cls(
            id=identifier,
            execute=execute,
            return_policy=return_policy,
            impersonate=parse_flag(data.get("impersonate", True), field_name="impersonate", identifier=identifier),
            file_key=str(file_key) if file_key else None,
            command=str(data.get("command", "")),
            property_name=str(property_name) if property_name else None,
            value=str(value) if value is not None else None,
        )

    @property
    def in_script(self) -> bool:
        return self.execute in _IN_SCRIPT_MODES

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "execute": self.execute,
            "return": self.return_policy,
            "impersonate": self.impersonate,
            "file": self.file_key,
            "command": self.command,
            "property": self.property_name,
            "value": self.value,
        }


@dataclass(frozen=True, slots=True)
class SequenceRule:
    action: str
    anchor: str
    before: bool
    condition: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "SequenceRule":
        if not isinstance(data, Mapping):
            raise ManifestSchemaError("Sequence entries must be tables/mappings")
        action = data.get("action")
        if not action or not isinstance(action, str):
            raise ManifestSchemaError("Sequence entries require a string 'action'")
        before, after = data.get("before"), data.get("after")
        if bool(before) == bool(after):
            raise ManifestSchemaError(
                f"Sequence entry for '{action}' must give exactly one of 'before' or 'after'", identifier=action
            )
        anchor = str(before or after)
        condition = data.get("condition")
        if condition is not None and not str(condition).strip():
            condition = None
        return cls(
            action=action,
            anchor=PHASE_ALIASES.get(anchor, anchor),
            before=bool(before),
            condition=str(condition).strip() if condition is not None else None,
        )


@dataclass(frozen=True, slots=True)
class ScheduledAction:
    action: str
    sequence: int
    condition: str | None = None

    def to_mapping(self) -> Dict[str, Any]:
        return {"action": self.action, "sequence": self.sequence, "condition": self.condition}


@dataclass(frozen=True, slots=True)
class ActionSchedule:
    order: tuple[str, ...]
    numbers: Mapping[str, int]
    scheduled: tuple[ScheduledAction, ...]

    def position(self, node: str) -> int:
        return self.order.index(node)


def lifecycle_phases(upgrade_schedule: str | None = None) -> List[tuple[str, int]]:
    """Return the fixed phases, with ``RemoveExistingProducts`` placed per the upgrade schedule."""

    phases = list(STANDARD_PHASES)
    if upgrade_schedule is not None:
        number = UPGRADE_SCHEDULES.get(upgrade_schedule)
        if number is None:
            raise ManifestSchemaError(
                f"Upgrade schedule '{upgrade_schedule}' must be one of {sorted(UPGRADE_SCHEDULES)}",
                identifier=upgrade_schedule,
            )
        phases.append((REMOVE_EXISTING_PRODUCTS, number))
        phases.sort(key=lambda entry: entry[1])
    return phases


def validate_actions(actions: Sequence[CustomAction], *, file_keys: Iterable[str]) -> Dict[str, CustomAction]:
    known_files = set(file_keys)
    arena: Dict[str, CustomAction] = {}
    for action in actions:
        if action.id in arena:
            raise DuplicateIdentifierError(f"Action id '{action.id}' is declared more than once", identifier=action.id)
        if action.file_key is not None and action.file_key not in known_files:
            raise UnresolvedFileKeyError(
                f"Action '{action.id}' targets undeclared file '{action.file_key}'", identifier=action.file_key
            )
        arena[action.id] = action
    return arena


def sequence_actions(
    actions: Mapping[str, CustomAction],
    rules: Sequence[SequenceRule],
    *,
    properties: Iterable[str] = (),
    components: Iterable[str] = (),
    features: Iterable[str] = (),
    upgrade_schedule: str | None = None,
) -> ActionSchedule:
    """Place custom actions among the lifecycle phases.

    Each rule pins an action before or after a phase or another action.
    The result is a total order consistent with every rule; an impossible set
    of rules raises :class:`OrderingContradictionError` naming the cycle.
    """

    phases = lifecycle_phases(upgrade_schedule)
    phase_numbers = dict(phases)

    known_properties = set(STANDARD_PROPERTIES) | set(properties)
    known_properties.update(action.property_name for action in actions.values() if action.property_name)
    component_ids = set(components)
    feature_ids = set(features)

    guards: Dict[str, str] = {}
    dependency_map: Dict[str, List[str]] = {}
    previous: str | None = None
    for name, _ in phases:
        dependency_map[name] = [previous] if previous else []
        previous = name

    for rule in rules:
        action = actions.get(rule.action)
        if action is None:
            raise UnresolvedActionRefError(
                f"Sequence rule names undeclared action '{rule.action}'", identifier=rule.action
            )
        if rule.anchor not in phase_numbers and rule.anchor not in actions:
            raise UnresolvedActionRefError(
                f"Action '{rule.action}' is anchored to unknown phase or action '{rule.anchor}'",
                identifier=rule.anchor,
            )
        if rule.condition is not None:
            if rule.action in guards and guards[rule.action] != rule.condition:
                raise ManifestSchemaError(
                    f"Action '{rule.action}' has more than one guard condition", identifier=rule.action
                )
            _check_guard(
                action,
                rule.condition,
                properties=known_properties,
                components=component_ids,
                features=feature_ids,
            )
            guards[rule.action] = rule.condition

        dependency_map.setdefault(rule.action, [])
        dependency_map.setdefault(rule.anchor, [])
        if rule.before:
            dependency_map[rule.anchor].append(rule.action)
        else:
            dependency_map[rule.action].append(rule.anchor)

    declaration_index = {name: index for index, name in enumerate(actions)}
    ranks = _anchor_ranks(rules, phase_numbers)

    def priority(node: str) -> tuple[float, int, int]:
        if node in phase_numbers:
            return (float(phase_numbers[node]), 1, 0)
        return (ranks.get(node, 0.0), 0, declaration_index.get(node, 0))

    try:
        order = topological_order(dependency_map, priority=priority)
    except CycleError as exc:
        raise OrderingContradictionError(
            f"Sequence rules contradict each other: {' -> '.join(exc.cycle) or 'cycle'}",
            identifier=exc.cycle[0] if exc.cycle else None,
            cycle=exc.cycle,
        ) from exc

    _check_placement(rules, phase_numbers, declaration_index)
    numbers = _assign_numbers(order, phase_numbers)
    _check_script_window(order, actions)

    scheduled = tuple(
        ScheduledAction(action=node, sequence=numbers[node], condition=guards.get(node))
        for node in order
        if node not in phase_numbers
    )
    return ActionSchedule(order=tuple(order), numbers=numbers, scheduled=scheduled)


def _check_guard(
    action: CustomAction,
    condition: str,
    *,
    properties: set[str],
    components: set[str],
    features: set[str],
) -> None:
    parsed = parse_condition(condition)
    if action.property_name and action.property_name in parsed.properties:
        raise SelfReferentialGuardError(
            f"Guard of action '{action.id}' reads property '{action.property_name}' that the action itself sets",
            identifier=action.id,
        )
    unknown = unknown_references(parsed, properties=properties, components=components, features=features)
    if unknown:
        raise UnknownGuardVariableError(
            f"Guard of action '{action.id}' references unknown state variable(s): {', '.join(unknown)}",
            identifier=unknown[0],
        )


def _anchor_ranks(rules: Sequence[SequenceRule], phase_numbers: Mapping[str, int]) -> Dict[str, float]:
    """Estimate where each action wants to sit so it lands next to its anchor."""

    by_action: Dict[str, List[SequenceRule]] = {}
    for rule in rules:
        by_action.setdefault(rule.action, []).append(rule)

    ranks: Dict[str, float] = {}
    visiting: set[str] = set()

    def rank_of(name: str) -> float:
        if name in phase_numbers:
            return float(phase_numbers[name])
        if name in ranks:
            return ranks[name]
        if name in visiting:
            return 0.0
        visiting.add(name)
        after: List[float] = []
        before: List[float] = []
        for rule in by_action.get(name, ()):
            offset = 0.5 if rule.anchor in phase_numbers else 0.01
            if rule.before:
                before.append(rank_of(rule.anchor) - offset)
            else:
                after.append(rank_of(rule.anchor) + offset)
        visiting.discard(name)
        ranks[name] = max(after) if after else (min(before) if before else 0.0)
        return ranks[name]

    for name in by_action:
        rank_of(name)
    return ranks


def _check_placement(
    rules: Sequence[SequenceRule], phase_numbers: Mapping[str, int], declaration_index: Mapping[str, int]
) -> None:
    """Every sequenced action must be tied to a lifecycle phase through a chain of rules."""

    placed: set[str] = set()
    changed = True
    while changed:
        changed = False
        for rule in rules:
            if rule.action not in placed and (rule.anchor in phase_numbers or rule.anchor in placed):
                placed.add(rule.action)
                changed = True

    ruled = {rule.action for rule in rules}
    nodes = {name for rule in rules for name in (rule.action, rule.anchor) if name not in phase_numbers}
    floating = sorted(nodes - placed, key=lambda name: (name in ruled, declaration_index.get(name, 0)))
    if not floating:
        return
    name = floating[0]
    if name in ruled:
        message = f"Action '{name}' is only placed relative to other actions that never reach a lifecycle phase"
    else:
        message = f"Action '{name}' is used as a sequence anchor but has no placement rule of its own"
    raise UnresolvedActionRefError(message, identifier=name)


def _assign_numbers(order: Sequence[str], phase_numbers: Mapping[str, int]) -> Dict[str, int]:
    numbers: Dict[str, int] = {}
    last = 0
    for node in order:
        if node in phase_numbers:
            number = phase_numbers[node]
            if number <= last:
                raise SequenceOverflowError(
                    f"Too many actions scheduled before '{node}' (sequence {number})", identifier=node
                )
        else:
            number = last + 1
        numbers[node] = number
        last = number
    return numbers


def _check_script_window(order: Sequence[str], actions: Mapping[str, CustomAction]) -> None:
    start = order.index("InstallInitialize")
    end = order.index("InstallFinalize")
    for index, node in enumerate(order):
        action = actions.get(node)
        if action is None or not action.in_script:
            continue
        if not start < index < end:
            raise DeferredOutsideScriptError(
                f"Deferred action '{node}' must run between InstallInitialize and InstallFinalize",
                identifier=node,
            )


__all__ = [
    "ActionSchedule",
    "CustomAction",
    "PHASE_ALIASES",
    "REMOVE_EXISTING_PRODUCTS",
    "STANDARD_PHASES",
    "STANDARD_PROPERTIES",
    "ScheduledAction",
    "SequenceRule",
    "lifecycle_phases",
    "sequence_actions",
    "validate_actions",
]
