from __future__ import annotations

import unittest

from ingestion.normalize_event import TimelineNormalizationError, normalize_events
from inference.check_risk import NO_RISK_REASONING, Profile, check_risk, matched_terms


def _events(*pairs: tuple[str, str]):
    return normalize_events([{"type": event_type, "event_data": {event_type: label}} for event_type, label in pairs])


class CheckRiskTests(unittest.TestCase):
    def test_cross_reactive_only_is_medium(self) -> None:
        verdict = check_risk(Profile(known_allergies=("tree_nut",)), _events(("meal", "mango smoothie")), "chk-1")
        payload = verdict.as_dict()
        self.assertEqual(payload["riskLevel"], "medium")
        self.assertEqual(len(payload["matched"]), 1)
        entry = payload["matched"][0]
        self.assertEqual(entry["rule"], "cross_reactive")
        self.assertEqual(entry["ruleCode"], "AA-RULE-CR-001")
        self.assertEqual(entry["details"]["matchedTerm"], "mango")
        self.assertEqual(entry["details"]["source"], "tree_nut")
        # tree_nut 90 + modifier 10, clamped
        self.assertEqual(payload["meta"]["severity"], 100)
        self.assertTrue(payload["meta"]["crossReactive"])
        self.assertEqual(payload["reasoning"], '"mango" is associated with tree_nut allergies (cross-reactive).')

    def test_direct_child_match_is_high(self) -> None:
        verdict = check_risk(Profile(known_allergies=("tree_nut",)), _events(("meal", "pistachio ice cream")), "chk-2")
        payload = verdict.as_dict()
        self.assertEqual(payload["riskLevel"], "high")
        details = payload["matched"][0]["details"]
        self.assertEqual(payload["matched"][0]["rule"], "allergy_match")
        self.assertEqual(details["allergen"], "pistachio")
        self.assertEqual(details["matchedCategory"], "tree_nut")
        self.assertEqual(details["parentKey"], "tree_nut")
        self.assertEqual(details["severity"], 90)
        self.assertFalse(payload["meta"]["crossReactive"])
        self.assertEqual(
            payload["reasoning"],
            'Meal "pistachio ice cream" matches tree_nut allergy via child token "pistachio" (severity 90/100).',
        )

    def test_direct_match_wins_over_cross_reactive(self) -> None:
        verdict = check_risk(
            Profile(known_allergies=("tree_nut",)),
            _events(("meal", "mango smoothie"), ("meal", "pistachio ice cream")),
            "chk-3",
        )
        self.assertEqual(verdict.risk_level, "high")
        self.assertEqual([entry.rule for entry in verdict.matched], ["cross_reactive", "allergy_match"])
        self.assertFalse(verdict.meta.cross_reactive)

    def test_direct_allergy_uses_term_severity(self) -> None:
        verdict = check_risk(Profile(known_allergies=("peanuts",)), _events(("meal", "Peanut Butter")), "chk-4")
        entry = verdict.matched[0]
        self.assertEqual(entry.allergen, "peanut")
        self.assertEqual(entry.matched_category, "peanut")
        self.assertEqual(entry.severity, 95)
        self.assertEqual(verdict.reasoning, 'Meal "Peanut Butter" matches known allergen "peanut" (severity 95/100).')

    def test_medication_interaction_is_medium(self) -> None:
        profile = Profile.from_dict({"known_allergies": [], "current_medications": [{"name": "aspirin", "dosage": "81mg"}]})
        verdict = check_risk(profile, _events(("medication", "ibuprofen")), "chk-5")
        payload = verdict.as_dict()
        self.assertEqual(payload["riskLevel"], "medium")
        self.assertEqual(
            payload["matched"],
            [
                {
                    "rule": "medication_interaction",
                    "ruleCode": "AA-RULE-MI-001",
                    "details": {"extracted": "ibuprofen", "conflictsWith": "aspirin", "classKey": "nsaids", "severity": 50},
                }
            ],
        )
        self.assertNotIn("crossReactive", payload["meta"])
        self.assertEqual(payload["reasoning"], "ibuprofen may interact with current medication aspirin.")
        self.assertEqual(matched_terms(verdict), ["aspirin", "ibuprofen"])

    def test_same_medication_is_not_an_interaction(self) -> None:
        profile = Profile.from_dict({"current_medications": ["Aspirin"]})
        verdict = check_risk(profile, _events(("medication", "aspirin")), "chk-6")
        self.assertEqual(verdict.risk_level, "none")

    def test_no_risk_verdict_still_carries_meta(self) -> None:
        verdict = check_risk(Profile(known_allergies=("dairy",)), _events(("meal", "green salad")), "chk-7")
        payload = verdict.as_dict()
        self.assertEqual(payload["riskLevel"], "none")
        self.assertEqual(payload["matched"], [])
        self.assertEqual(payload["reasoning"], NO_RISK_REASONING)
        self.assertEqual(payload["meta"], {"severity": 0, "taxonomyVersion": "12.6", "traceId": "chk-7:12.6"})

    def test_symptoms_and_supplements_never_match(self) -> None:
        verdict = check_risk(
            Profile(known_allergies=("peanut",)),
            _events(("symptom", "peanut rash"), ("supplement", "peanut oil")),
            "chk-8",
        )
        self.assertEqual(verdict.risk_level, "none")

    def test_verdict_is_deterministic(self) -> None:
        profile = Profile(known_allergies=("tree_nut", "shellfish"), current_medications=("warfarin",))
        events = _events(("meal", "prawn curry"), ("meal", "mango lassi"), ("medication", "aspirin"))
        first = check_risk(profile, events, "chk-9").as_dict()
        second = check_risk(profile, list(events), "chk-9").as_dict()
        self.assertEqual(first, second)
        self.assertEqual([m["rule"] for m in first["matched"]], ["allergy_match", "cross_reactive", "medication_interaction"])
        self.assertEqual(first["matched"][2]["details"]["classKey"], "anticoagulants")

    def test_strict_normalization_rejects_missing_label(self) -> None:
        with self.assertRaises(TimelineNormalizationError):
            normalize_events([{"type": "meal", "event_data": {}}], strict=True)
        self.assertEqual(normalize_events([{"type": "meal", "event_data": {}}]), [])

    def test_profile_from_dict_drops_blank_entries(self) -> None:
        profile = Profile.from_dict({"known_allergies": ["peanut", " ", 3], "current_medications": [{"dosage": "1"}, "aspirin"]})
        self.assertEqual(profile.known_allergies, ("peanut",))
        self.assertEqual(profile.current_medications, ("aspirin",))


if __name__ == "__main__":
    unittest.main()
