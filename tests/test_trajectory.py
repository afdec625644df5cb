from __future__ import annotations

import unittest

from inference.trajectory import analyze_trajectory, proximity_bucket_for
from tests.timeline_helpers import at, make_timeline


class ProximityBucketTests(unittest.TestCase):
    def test_bucket_edges(self) -> None:
        self.assertEqual(proximity_bucket_for(6), "strong")
        self.assertEqual(proximity_bucket_for(6.01), "medium")
        self.assertEqual(proximity_bucket_for(12), "medium")
        self.assertEqual(proximity_bucket_for(12.5), "weak")


class TrajectoryTests(unittest.TestCase):
    def test_dedup_keeps_strongest_bucket(self) -> None:
        timeline = make_timeline(
            ("c1", 0, "meal", "toast"),
            ("c2", 9, "meal", "toast"),
            ("c3", 16, "meal", "toast"),
            ("c4", 20, "symptom", "bloating"),
        )
        result = analyze_trajectory("p1", timeline, now=at(20))
        triggers = [i for i in result.insights if i.type == "trigger_symptom"]
        self.assertEqual(len(triggers), 1)
        self.assertEqual(triggers[0].proximity_bucket, "strong")
        self.assertEqual(triggers[0].hours_delta, 4.0)
        self.assertEqual(triggers[0].supporting_events, ("c3", "c4"))
        self.assertEqual(triggers[0].why_included, ("proximity_strong",))

    def test_frequent_non_specific_trigger_is_gated(self) -> None:
        timeline = make_timeline(
            ("c1", 0, "meal", "coffee"),
            ("c2", 10, "meal", "coffee"),
            ("c3", 20, "symptom", "jitters"),
        )
        result = analyze_trajectory("p1", timeline, now=at(20))
        self.assertEqual([i for i in result.insights if i.type == "trigger_symptom"], [])

    def test_rare_exposure_survives_gate(self) -> None:
        timeline = make_timeline(("c1", 0, "meal", "durian"), ("c2", 20, "symptom", "nausea"))
        result = analyze_trajectory("p1", timeline, now=at(20))
        self.assertEqual(len(result.insights), 1)
        self.assertEqual(result.insights[0].proximity_bucket, "weak")
        self.assertEqual(result.insights[0].why_included, ("unique_trigger",))

    def test_allergen_trigger_scores_bonus(self) -> None:
        timeline = make_timeline(("c1", 0, "meal", "peanut butter toast"), ("c2", 2, "symptom", "hives"))
        result = analyze_trajectory("p1", timeline, known_allergies=["peanut"], now=at(3))
        insight = result.insights[0]
        self.assertEqual(insight.why_included, ("proximity_strong", "allergen_related", "unique_trigger"))
        self.assertEqual(insight.score, 50)
        self.assertEqual(insight.label, "Meal → Symptom")

    def test_cluster_suppresses_covered_pairs_only(self) -> None:
        timeline = make_timeline(
            ("m1", 0, "medication", "ibuprofen"),
            ("s1", 2, "symptom", "headache"),
            ("s2", 3, "symptom", "nausea"),
            ("t1", 5, "meal", "trail mix"),
            ("s3", 6, "symptom", "itchy throat"),
        )
        result = analyze_trajectory("p1", timeline, now=at(7))
        clusters = [i for i in result.insights if i.type == "medication_symptom_cluster"]
        triggers = [i for i in result.insights if i.type == "trigger_symptom"]
        self.assertEqual(len(clusters), 1)
        self.assertEqual(clusters[0].supporting_events, ("m1", "s1", "s2", "s3"))
        self.assertEqual(clusters[0].why_included, ("cluster_3_distinct_symptoms",))
        self.assertEqual(
            [(i.priority_hints["triggerValue"], i.priority_hints["symptomValue"]) for i in triggers],
            [("trail mix", "itchy throat")],
        )
        # cluster 60 + support bonus 10 outranks the pairwise insight
        self.assertEqual([i.score for i in result.insights], [70, 40])

    def test_repeated_symptom_counts_distinct_checks(self) -> None:
        timeline = make_timeline(
            ("c1", 0, "symptom", "Headache"),
            ("c2", 5, "symptom", "headache"),
            ("c2", 5.5, "symptom", "headache"),
            ("c3", 10, "symptom", "headache"),
        )
        result = analyze_trajectory("p1", timeline, now=at(11))
        self.assertEqual(len(result.insights), 1)
        insight = result.insights[0]
        self.assertEqual(insight.type, "repeated_symptom")
        self.assertEqual(insight.supporting_events, ("c1", "c2", "c3"))
        self.assertEqual(insight.why_included, ("occurred_3_times_gte_3",))
        self.assertEqual(insight.score, 30)

    def test_window_excludes_old_events(self) -> None:
        timeline = make_timeline(("c1", 0, "meal", "durian"), ("c2", 2, "symptom", "nausea"))
        result = analyze_trajectory("p1", timeline, window_hours=24, now=at(72))
        self.assertEqual(result.analyzed_checks, 0)
        self.assertEqual(result.insights, [])

    def test_result_is_deterministic(self) -> None:
        rows = (
            ("m1", 0, "medication", "ibuprofen"),
            ("s1", 2, "symptom", "headache"),
            ("t1", 3, "meal", "shrimp tacos"),
            ("s2", 4, "symptom", "hives"),
        )
        first = analyze_trajectory("p1", make_timeline(*rows), known_allergies=["shellfish"], now=at(5)).as_dict()
        second = analyze_trajectory("p1", make_timeline(*rows), known_allergies=["shellfish"], now=at(5)).as_dict()
        self.assertEqual(first, second)
        self.assertEqual(first["analyzedChecks"], 4)

    def test_caller_check_count_includes_checks_without_events(self) -> None:
        timeline = make_timeline(("c1", 0, "meal", "peanut butter toast"), ("c2", 1, "symptom", "hives"))
        result = analyze_trajectory("p1", timeline, known_allergies=["peanut"], now=at(2), check_count=3)
        self.assertEqual(result.analyzed_checks, 3)
        self.assertEqual(len(result.insights), 1)
        empty = analyze_trajectory("p1", [], now=at(2), check_count=2)
        self.assertEqual(empty.analyzed_checks, 2)


if __name__ == "__main__":
    unittest.main()
