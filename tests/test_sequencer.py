from __future__ import annotations

import unittest

from wixgen.errors import (
    DeferredOutsideScriptError,
    DuplicateIdentifierError,
    ManifestSchemaError,
    MissingReturnPolicyError,
    OrderingContradictionError,
    SelfReferentialGuardError,
    UnknownGuardVariableError,
    UnresolvedActionRefError,
    UnresolvedFileKeyError,
)
from wixgen.sequencer import (
    CustomAction,
    REMOVE_EXISTING_PRODUCTS,
    SequenceRule,
    lifecycle_phases,
    sequence_actions,
    validate_actions,
)


def _actions(*entries):
    return validate_actions([CustomAction.from_mapping(entry) for entry in entries], file_keys={"acme_exe"})


def _rules(*entries):
    return [SequenceRule.from_mapping(entry) for entry in entries]


class CustomActionTests(unittest.TestCase):
    def test_deferred_actions_need_return_policy(self) -> None:
        with self.assertRaises(MissingReturnPolicyError):
            CustomAction.from_mapping({"id": "A", "file": "acme_exe", "execute": "deferred"})
        action = CustomAction.from_mapping({"id": "A", "file": "acme_exe", "execute": "deferred", "return": "ignore"})
        self.assertTrue(action.in_script)
        self.assertEqual(action.return_policy, "ignore")

    def test_exactly_one_target(self) -> None:
        with self.assertRaises(ManifestSchemaError):
            CustomAction.from_mapping({"id": "A"})
        with self.assertRaises(ManifestSchemaError):
            CustomAction.from_mapping({"id": "A", "file": "acme_exe", "property": "X", "value": "1"})
        with self.assertRaises(ManifestSchemaError):
            CustomAction.from_mapping({"id": "A", "property": "X"})

    def test_property_action_round_trips_its_target(self) -> None:
        action = CustomAction.from_mapping({"id": "SetFlag", "property": "FLAG", "value": "1"})
        self.assertEqual((action.property_name, action.value), ("FLAG", "1"))
        self.assertFalse(action.in_script)
        self.assertEqual(action.to_mapping()["property"], "FLAG")
        self.assertIsNone(action.to_mapping()["file"])

    def test_file_key_must_resolve(self) -> None:
        with self.assertRaises(UnresolvedFileKeyError):
            _actions({"id": "A", "file": "missing"})
        with self.assertRaises(DuplicateIdentifierError):
            _actions({"id": "A", "file": "acme_exe"}, {"id": "A", "file": "acme_exe"})

    def test_rule_needs_exactly_one_anchor(self) -> None:
        with self.assertRaises(ManifestSchemaError):
            SequenceRule.from_mapping({"action": "A"})
        with self.assertRaises(ManifestSchemaError):
            SequenceRule.from_mapping({"action": "A", "before": "install", "after": "finalize"})
        self.assertEqual(SequenceRule.from_mapping({"action": "A", "before": "finalize"}).anchor, "InstallFinalize")


class SequencingTests(unittest.TestCase):
    def setUp(self) -> None:
        self.actions = _actions({"id": "A", "file": "acme_exe"}, {"id": "B", "file": "acme_exe"})

    def test_relative_rules_are_honoured(self) -> None:
        schedule = sequence_actions(
            self.actions,
            _rules({"action": "A", "before": "finalize"}, {"action": "B", "after": "A"}),
        )
        self.assertLess(schedule.position("A"), schedule.position("B"))
        self.assertLess(schedule.position("A"), schedule.position("InstallFinalize"))
        self.assertLess(schedule.numbers["A"], schedule.numbers["B"])
        self.assertEqual([entry.action for entry in schedule.scheduled], ["A", "B"])

    def test_actions_land_next_to_their_anchor(self) -> None:
        schedule = sequence_actions(self.actions, _rules({"action": "A", "after": "InstallFiles"}))
        self.assertEqual(schedule.position("A"), schedule.position("InstallFiles") + 1)
        self.assertEqual(schedule.numbers["A"], 4001)

    def test_contradictory_rules(self) -> None:
        rules = _rules(
            {"action": "A", "before": "finalize"},
            {"action": "B", "after": "A"},
            {"action": "A", "after": "finalize"},
        )
        with self.assertRaises(OrderingContradictionError) as ctx:
            sequence_actions(self.actions, rules)
        self.assertIn("A", ctx.exception.cycle)
        self.assertIn("InstallFinalize", ctx.exception.cycle)

    def test_unknown_action_or_anchor(self) -> None:
        with self.assertRaises(UnresolvedActionRefError):
            sequence_actions(self.actions, _rules({"action": "Ghost", "after": "InstallFiles"}))
        with self.assertRaises(UnresolvedActionRefError):
            sequence_actions(self.actions, _rules({"action": "A", "after": "Nowhere"}))

    def test_anchor_action_without_rule_is_rejected(self) -> None:
        with self.assertRaises(UnresolvedActionRefError) as ctx:
            sequence_actions(self.actions, _rules({"action": "B", "after": "A"}))
        self.assertEqual(ctx.exception.identifier, "A")
        self.assertIn("no placement rule", str(ctx.exception))

    def test_actions_placed_only_relative_to_each_other_are_rejected(self) -> None:
        rules = _rules({"action": "A", "before": "B"}, {"action": "B", "after": "A"})
        with self.assertRaises(UnresolvedActionRefError) as ctx:
            sequence_actions(self.actions, rules)
        self.assertEqual(ctx.exception.identifier, "A")

    def test_unruled_actions_stay_unsequenced(self) -> None:
        schedule = sequence_actions(self.actions, _rules({"action": "B", "after": "InstallFiles"}))
        self.assertEqual([entry.action for entry in schedule.scheduled], ["B"])
        self.assertNotIn("A", schedule.numbers)

    def test_guard_checks(self) -> None:
        actions = _actions({"id": "SetFlag", "property": "FLAG", "value": "1"}, {"id": "A", "file": "acme_exe"})
        with self.assertRaises(SelfReferentialGuardError):
            sequence_actions(actions, _rules({"action": "SetFlag", "after": "AppSearch", "condition": "NOT FLAG"}))
        with self.assertRaises(UnknownGuardVariableError):
            sequence_actions(actions, _rules({"action": "A", "after": "InstallFiles", "condition": "MYSTERY"}))
        schedule = sequence_actions(
            actions,
            _rules({"action": "A", "after": "InstallFiles", "condition": "FLAG AND &Core = 3"}),
            features=["Core"],
        )
        self.assertEqual(schedule.scheduled[0].condition, "FLAG AND &Core = 3")

    def test_at_most_one_guard_per_action(self) -> None:
        rules = _rules(
            {"action": "A", "after": "InstallFiles", "condition": "Installed"},
            {"action": "A", "before": "finalize", "condition": "NOT Installed"},
        )
        with self.assertRaises(ManifestSchemaError):
            sequence_actions(self.actions, rules)

    def test_deferred_actions_stay_inside_script(self) -> None:
        actions = _actions({"id": "D", "file": "acme_exe", "execute": "deferred", "return": "check"})
        schedule = sequence_actions(actions, _rules({"action": "D", "after": "InstallFiles"}))
        self.assertGreater(schedule.position("D"), schedule.position("InstallInitialize"))
        with self.assertRaises(DeferredOutsideScriptError):
            sequence_actions(actions, _rules({"action": "D", "after": "InstallFinalize"}))

    def test_upgrade_schedule_inserts_remove_existing_products(self) -> None:
        phases = dict(lifecycle_phases("afterInstallValidate"))
        self.assertEqual(phases[REMOVE_EXISTING_PRODUCTS], 1401)
        with self.assertRaises(ManifestSchemaError):
            lifecycle_phases("whenever")

    def test_schedule_is_deterministic(self) -> None:
        rules = _rules({"action": "B", "after": "InstallFiles"}, {"action": "A", "after": "InstallFiles"})
        first = sequence_actions(self.actions, rules)
        second = sequence_actions(self.actions, list(rules))
        self.assertEqual(first, second)
        self.assertEqual([entry.action for entry in first.scheduled], ["A", "B"])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
