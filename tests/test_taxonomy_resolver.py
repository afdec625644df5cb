from __future__ import annotations

import unittest

from knowledge.loader import default_snapshot, get_knowledge
from knowledge.taxonomy import normalize_plural, normalize_token


class NormalizeTokenTests(unittest.TestCase):
    def test_lowercases_trims_and_collapses_whitespace(self) -> None:
        self.assertEqual(normalize_token("  Brazil   NUT "), "brazil nut")

    def test_strips_one_layer_of_wrapping(self) -> None:
        self.assertEqual(normalize_token('"peanut"'), "peanut")
        self.assertEqual(normalize_token("(cashew)"), "cashew")

    def test_non_string_is_empty(self) -> None:
        self.assertEqual(normalize_token(None), "")

    def test_naive_plural(self) -> None:
        self.assertEqual(normalize_plural("Almonds"), "almond")
        self.assertEqual(normalize_plural("s"), "s")


class TaxonomyResolverTests(unittest.TestCase):
    def setUp(self) -> None:
        self.taxonomy = get_knowledge().taxonomy

    def test_parent_expansion_covers_children(self) -> None:
        expanded = self.taxonomy.expand_allergies(["tree_nut"])
        self.assertIn("pistachio", expanded)
        self.assertIn("brazil nut", expanded)
        self.assertNotIn("tree_nut", expanded)

    def test_parent_key_accepts_spaced_and_plural_forms(self) -> None:
        self.assertEqual(self.taxonomy.parent_category_key("Tree Nuts"), "tree_nut")
        self.assertEqual(self.taxonomy.parent_category_key("shellfish"), "shellfish")
        self.assertIsNone(self.taxonomy.parent_category_key("peanut"))

    def test_word_boundary_blocks_substring_hits(self) -> None:
        expanded = self.taxonomy.expand_allergies(["nut"])
        self.assertIsNone(self.taxonomy.is_allergen_match("nutritional yeast", expanded))

    def test_plural_text_resolves_to_canonical(self) -> None:
        expanded = self.taxonomy.expand_allergies(["tree_nut"])
        self.assertEqual(self.taxonomy.is_allergen_match("roasted almonds", expanded), "almond")

    def test_punctuation_reads_as_phrase_separator(self) -> None:
        expanded = self.taxonomy.expand_allergies(["tree_nut"])
        self.assertEqual(self.taxonomy.is_allergen_match("brazil-nut brittle", expanded), "brazil nut")

    def test_mango_forms(self) -> None:
        expanded = self.taxonomy.expand_allergies(["mango"])
        self.assertEqual(self.taxonomy.is_allergen_match("mangos", expanded), "mango")
        self.assertEqual(self.taxonomy.is_allergen_match("dried mangoes", expanded), "mango")
        for text in ("mangrove", "mangojuice", "mangoe"):
            with self.subTest(text=text):
                self.assertIsNone(self.taxonomy.is_allergen_match(text, expanded))

    def test_alias_resolves_to_canonical(self) -> None:
        self.assertEqual(self.taxonomy.resolve_to_canonical("Prawns"), "shrimp")
        expanded = self.taxonomy.expand_allergies(["shellfish"])
        self.assertEqual(self.taxonomy.is_allergen_match("garlic prawns", expanded), "shrimp")

    def test_direct_allergy_resolves_through_alias(self) -> None:
        expanded = self.taxonomy.expand_allergies(["garbanzo beans"])
        self.assertEqual(expanded, frozenset({"chickpea"}))

    def test_longest_form_wins(self) -> None:
        expanded = self.taxonomy.expand_allergies(["soy"])
        self.assertEqual(self.taxonomy.is_allergen_match("soy sauce noodles", expanded), "soy sauce")

    def test_cross_reactive_requires_source_allergy(self) -> None:
        hit = self.taxonomy.get_cross_reactive_match(["tree_nut"], "mango smoothie")
        self.assertIsNotNone(hit)
        assert hit is not None
        self.assertEqual((hit.source, hit.matched_term, hit.modifier), ("tree_nut", "mango", 10))
        self.assertIsNone(self.taxonomy.get_cross_reactive_match(["dairy"], "mango smoothie"))

    def test_severity_lookup_prefers_direct_entry(self) -> None:
        self.assertEqual(self.taxonomy.category_for_severity("peanut"), "peanut")
        self.assertEqual(self.taxonomy.category_for_severity("pistachio"), "tree_nut")
        self.assertEqual(self.taxonomy.severity_for("tree_nut"), 90)
        self.assertEqual(self.taxonomy.severity_for("unlisted"), 50)

    def test_resolver_is_order_independent(self) -> None:
        forward = self.taxonomy.expand_allergies(["tree_nut", "shellfish", "mango"])
        backward = self.taxonomy.expand_allergies(["mango", "shellfish", "tree_nut"])
        self.assertEqual(forward, backward)


class FunctionalRegistryTests(unittest.TestCase):
    def test_strict_name_lookup(self) -> None:
        registry = get_knowledge().registry
        self.assertEqual(registry.match_functional_classes("Ibuprofen"), ["nsaids"])
        self.assertEqual(registry.match_functional_classes("aspirin"), ["anticoagulants", "nsaids"])
        self.assertEqual(registry.match_functional_classes("ibuprofen 200mg"), [])

    def test_shared_classes(self) -> None:
        registry = get_knowledge().registry
        self.assertEqual(registry.shared_classes("ibuprofen", "aspirin"), ["nsaids"])
        self.assertEqual(registry.shared_classes("omeprazole", "aspirin"), [])
        self.assertEqual(registry.label_for("nsaids"), "NSAID")


class SeedSnapshotTests(unittest.TestCase):
    def test_seed_lists_are_sorted_and_unique(self) -> None:
        snapshot = default_snapshot()
        for canonical, aliases in snapshot.aliases.items():
            with self.subTest(canonical=canonical):
                self.assertEqual(list(aliases), sorted(set(aliases)))
        for category in snapshot.categories:
            with self.subTest(category=category.key):
                self.assertEqual(list(category.children), sorted(set(category.children)))
                self.assertTrue(category.children)


if __name__ == "__main__":
    unittest.main()
