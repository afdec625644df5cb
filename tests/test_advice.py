from __future__ import annotations

import unittest

from ingestion.normalize_event import normalize_events
from inference.check_risk import Profile, check_risk
from knowledge.advice import (
    ADVICE_CAP,
    ADVICE_REGISTRY,
    ADVICE_REGISTRY_VERSION,
    GENERAL_SAFETY_FALLBACK,
    build_advice,
    orphan_advice_targets,
    resolve_advice,
)
from knowledge.guardrails import validate_snapshot
from knowledge.loader import default_snapshot, get_knowledge
from knowledge.snapshot import KnowledgeSnapshot, ParentCategory


def _verdict(allergies: tuple[str, ...], *events: tuple[str, str], medications: tuple[str, ...] = ()):
    rows = [{"type": event_type, "event_data": {event_type: label}} for event_type, label in events]
    profile = Profile(known_allergies=allergies, current_medications=medications)
    return check_risk(profile, normalize_events(rows), "chk").as_dict()


def _allergy(term: str, category: str) -> dict:
    return {"rule": "allergy_match", "details": {"allergen": term, "matchedCategory": category}}


class ResolveAdviceTests(unittest.TestCase):
    def test_term_advice_wins_over_parent(self) -> None:
        items = resolve_advice([("almond", "tree_nut")])
        self.assertEqual([item.id for item in items], ["term:almond"])

    def test_dedupes_and_orders_terms_first(self) -> None:
        items = resolve_advice(
            [("pistachio", "tree_nut"), ("mango", "tree_nut"), ("cashew", "tree_nut"), ("Almond", "tree_nut")]
        )
        self.assertEqual([item.id for item in items], ["term:almond", "term:mango", "parent:tree_nut"])

    def test_parent_lookup_fills_missing_category(self) -> None:
        items = resolve_advice([("walnut", None)], parent_for_term=lambda term: "tree_nut")
        self.assertEqual([item.id for item in items], ["parent:tree_nut"])
        self.assertEqual(resolve_advice([("walnut", None)]), [])


class BuildAdviceTests(unittest.TestCase):
    def test_cross_reactive_term_advice(self) -> None:
        advice = build_advice(_verdict(("tree_nut",), ("meal", "mango smoothie")))
        self.assertIsNotNone(advice)
        assert advice is not None
        self.assertEqual(advice.version, ADVICE_REGISTRY_VERSION)
        self.assertEqual(advice.top_target, "mango")
        self.assertEqual(advice.as_dict()["items"][0]["title"], "Mango (Cross-Reactive with Latex/Tree Nut)")

    def test_child_match_uses_parent_advice(self) -> None:
        advice = build_advice(_verdict(("tree_nut",), ("meal", "pistachio ice cream")))
        self.assertEqual([item.id for item in advice.items], ["parent:tree_nut"])

    def test_match_without_registry_entry_falls_back(self) -> None:
        advice = build_advice(_verdict(("dairy",), ("meal", "cheese pizza")))
        self.assertEqual(advice.items, (GENERAL_SAFETY_FALLBACK,))
        self.assertEqual(advice.top_target, "general")

    def test_medication_only_and_clean_verdicts_have_no_advice(self) -> None:
        self.assertIsNone(build_advice(_verdict((), ("medication", "ibuprofen"), medications=("aspirin",))))
        self.assertIsNone(build_advice(_verdict(("peanut",), ("meal", "green salad"))))

    def test_items_are_capped(self) -> None:
        verdict = {
            "matched": [
                _allergy("shrimp", "shellfish"),
                _allergy("cod", "fish"),
                _allergy("tahini", "sesame"),
                _allergy("peanut", "peanut"),
                _allergy("almond", "tree_nut"),
            ]
        }
        advice = build_advice(verdict)
        self.assertEqual(len(advice.items), ADVICE_CAP)
        self.assertEqual([item.target for item in advice.items], ["almond", "fish", "peanut"])


class OrphanAdviceTests(unittest.TestCase):
    def test_seed_covers_every_advice_target(self) -> None:
        self.assertEqual(validate_snapshot(default_snapshot(), ADVICE_REGISTRY.values()), [])
        self.assertEqual(orphan_advice_targets(get_knowledge().snapshot, [GENERAL_SAFETY_FALLBACK]), [])

    def test_targets_missing_from_taxonomy_are_reported(self) -> None:
        snapshot = KnowledgeSnapshot(
            version="t1",
            categories=(
                ParentCategory(key="fish", label="Fish", children=("cod",)),
                ParentCategory(key="tree_nut", label="Tree Nut", children=("almond",)),
            ),
            severity={"fish": 90, "tree_nut": 90},
        )
        self.assertEqual(
            orphan_advice_targets(snapshot, ADVICE_REGISTRY.values()),
            ["mango", "peanut", "sesame", "shellfish"],
        )
        self.assertIn("advice target mango has no taxonomy node", validate_snapshot(snapshot, ADVICE_REGISTRY.values()))
        self.assertEqual(validate_snapshot(snapshot), [])


if __name__ == "__main__":
    unittest.main()
