from __future__ import annotations

import os
import unittest
from unittest.mock import patch

from fastapi import HTTPException
from pydantic import ValidationError

from api.main import (
    _parse_now,
    check_risk_endpoint,
    insights_feed_endpoint,
    knowledge_version,
    recent_triggers_endpoint,
    trajectory_endpoint,
    vigilance_endpoint,
)
from api.schemas import (
    CheckEventIn,
    InsightsFeedIn,
    PersistedCheckIn,
    ProfileIn,
    RecentTriggersIn,
    RiskCheckIn,
    TimelineRowIn,
    TrajectoryIn,
    VigilanceIn,
)
from knowledge.loader import get_knowledge
from tests.timeline_helpers import at, persisted_check, timeline_row


class RiskCheckEndpointTests(unittest.TestCase):
    def test_returns_verdict_payload(self) -> None:
        payload = RiskCheckIn(
            check_id="chk-1",
            profile=ProfileIn(known_allergies=["tree_nut"]),
            events=[CheckEventIn(type="meal", event_data={"meal": "mango smoothie"})],
        )
        verdict = check_risk_endpoint(payload)
        self.assertEqual(verdict["riskLevel"], "medium")
        self.assertEqual(verdict["meta"]["traceId"], "chk-1:12.6")

    def test_medication_objects_are_accepted(self) -> None:
        payload = RiskCheckIn(
            check_id="chk-2",
            profile=ProfileIn(current_medications=[{"name": "aspirin", "dosage": "81mg"}]),
            events=[CheckEventIn(type="medication", event_data={"medication": "ibuprofen"})],
        )
        verdict = check_risk_endpoint(payload)
        self.assertEqual(verdict["matched"][0]["details"]["conflictsWith"], "aspirin")
        self.assertNotIn("advice", verdict)

    def test_allergen_verdict_carries_advice(self) -> None:
        payload = RiskCheckIn(
            check_id="chk-4",
            profile=ProfileIn(known_allergies=["tree_nut"]),
            events=[CheckEventIn(type="meal", event_data={"meal": "mango smoothie"})],
        )
        advice = check_risk_endpoint(payload)["advice"]
        self.assertEqual(advice["topTarget"], "mango")
        self.assertEqual([item["id"] for item in advice["items"]], ["term:mango"])

    def test_event_without_label_is_skipped(self) -> None:
        payload = RiskCheckIn(
            check_id="chk-3",
            profile=ProfileIn(known_allergies=["tree_nut"]),
            events=[
                CheckEventIn(type="meal", event_data={"meal": "pistachio ice cream"}),
                CheckEventIn(type="meal", event_data={}),
            ],
        )
        verdict = check_risk_endpoint(payload)
        self.assertEqual(verdict["riskLevel"], "high")
        self.assertEqual(len(verdict["matched"]), 1)

    def test_unknown_event_type_fails_validation(self) -> None:
        with self.assertRaises(ValidationError):
            CheckEventIn(type="exercise", event_data={"exercise": "run"})


class TimelineEndpointTests(unittest.TestCase):
    def _rows(self) -> list[TimelineRowIn]:
        return [
            TimelineRowIn(**timeline_row("c1", 0, "meal", "peanut butter toast")),
            TimelineRowIn(**timeline_row("c2", 1, "symptom", "hives")),
        ]

    def test_trajectory(self) -> None:
        result = trajectory_endpoint(
            TrajectoryIn(profile_id="p1", known_allergies=["peanut"], rows=self._rows(), now=at(2).isoformat())
        )
        self.assertEqual(result["analyzedChecks"], 2)
        self.assertEqual(result["insights"][0]["proximityBucket"], "strong")

    def test_feed(self) -> None:
        result = insights_feed_endpoint(
            InsightsFeedIn(profile_id="p1", known_allergies=["peanut"], rows=self._rows(), now=at(2).isoformat())
        )
        self.assertEqual(result["insights"][0]["score"], 90)
        self.assertNotIn("warnings", result)

    def test_malformed_rows_are_skipped(self) -> None:
        rows = self._rows() + [
            TimelineRowIn(check_id="c3", timestamp="yesterday", event_type="meal", event_data={"meal": "toast"}),
            TimelineRowIn(check_id="c4", timestamp=at(1.5).isoformat(), event_type="symptom", event_data={}),
        ]
        result = trajectory_endpoint(
            TrajectoryIn(profile_id="p1", known_allergies=["peanut"], rows=rows, now=at(2).isoformat())
        )
        self.assertEqual(result["analyzedChecks"], 2)
        self.assertEqual(len(result["insights"]), 1)
        feed = insights_feed_endpoint(
            InsightsFeedIn(profile_id="p1", known_allergies=["peanut"], rows=rows, now=at(2).isoformat())
        )
        self.assertEqual(feed["insights"][0]["score"], 90)

    def test_window_and_limit_bounds(self) -> None:
        with self.assertRaises(ValidationError):
            InsightsFeedIn(profile_id="p1", window_hours=169)
        with self.assertRaises(ValidationError):
            InsightsFeedIn(profile_id="p1", limit=101)
        self.assertEqual(InsightsFeedIn(profile_id="p1").window_hours, 48)

    def test_bad_now_is_rejected(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            _parse_now("not-a-time")
        self.assertEqual(ctx.exception.status_code, 400)


class VigilanceEndpointTests(unittest.TestCase):
    def test_vigilance(self) -> None:
        now = at(10)
        check = PersistedCheckIn(**persisted_check("c1", at(9.5), "medium", 80, ("mango",)))
        state = vigilance_endpoint(VigilanceIn(profile_id="p1", checks=[check], now=now.isoformat()))
        self.assertEqual(state["vigilanceScore"], 80)
        self.assertTrue(state["vigilanceActive"])
        self.assertEqual(state["windowHours"], 12)

    def test_vigilance_window_cap(self) -> None:
        with self.assertRaises(ValidationError):
            VigilanceIn(profile_id="p1", window_hours=200)

    def test_recent_triggers(self) -> None:
        checks = [PersistedCheckIn(**persisted_check("c1", at(1), "high", 95, ("peanut",)))]
        result = recent_triggers_endpoint(RecentTriggersIn(checks=checks))
        self.assertEqual([t["checkId"] for t in result["triggers"]], ["c1"])


class KnowledgeEndpointTests(unittest.TestCase):
    def test_version(self) -> None:
        self.assertEqual(knowledge_version(), {"taxonomy_version": "12.6", "registry_version": "10g.1"})

    def test_load_failure_maps_to_503(self) -> None:
        with patch.dict(os.environ, {"ALLERGEN_TAXONOMY_PATH": "/nonexistent/taxonomy.json"}):
            get_knowledge.cache_clear()
            with self.assertRaises(HTTPException) as ctx:
                knowledge_version()
        self.assertEqual(ctx.exception.status_code, 503)


if __name__ == "__main__":
    unittest.main()
