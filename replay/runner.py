# run fixed scenarios through check_risk once per knowledge snapshot and diff the results
# each side gets its own compiled Knowledge; the process-wide snapshot is never touched

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Mapping

from ingestion.normalize_event import Event, normalize_events
from inference.check_risk import Profile, check_risk
from knowledge.advice import ADVICE_REGISTRY
from knowledge.guardrails import validate_snapshot
from knowledge.loader import Knowledge
from replay.diff import ReplayReport, build_replay_report, compute_replay_diff, normalize_verdict

logger = logging.getLogger(__name__)

REPLAY_EVENT_TYPES = ("meal", "medication")


def load_scenarios(path: str | Path) -> list[dict[str, Any]]:
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, list):
        raise ValueError(f"Scenarios must be a JSON array: {path}")
    return payload


def scenario_profile(scenario: Mapping[str, Any]) -> Profile:
    raw = scenario.get("profile") or {}
    # older fixtures used "allergens"
    allergies = raw.get("known_allergies") or raw.get("allergens") or []
    return Profile.from_dict({"known_allergies": allergies, "current_medications": raw.get("current_medications") or []})


def scenario_events(scenario: Mapping[str, Any]) -> list[Event]:
    rows = []
    for index, event in enumerate(scenario.get("events") or []):
        if not isinstance(event, Mapping) or event.get("type") not in REPLAY_EVENT_TYPES:
            continue
        rows.append(
            {
                "id": f"{scenario.get('scenarioId')}-{index}",
                "event_type": event["type"],
                "event_data": event.get("event_data") or event.get("fields") or {},
            }
        )
    return normalize_events(rows)


def run_replay(
    scenarios: Iterable[Mapping[str, Any]],
    baseline: Knowledge,
    candidate: Knowledge,
) -> ReplayReport:
    diffs = []
    for scenario in scenarios:
        scenario_id = str(scenario.get("scenarioId") or "")
        if not scenario_id:
            logger.warning("skipping replay scenario without scenarioId")
            continue
        profile = scenario_profile(scenario)
        events = scenario_events(scenario)
        check_id = f"replay-{scenario_id}"
        baseline_verdict = check_risk(profile, events, check_id, knowledge=baseline)
        candidate_verdict = check_risk(profile, events, check_id, knowledge=candidate)
        diffs.append(
            compute_replay_diff(
                scenario_id,
                normalize_verdict(baseline_verdict, baseline.taxonomy_version, baseline.registry_version),
                normalize_verdict(candidate_verdict, candidate.taxonomy_version, candidate.registry_version),
            )
        )
    return build_replay_report(
        diffs,
        baseline_taxonomy_version=baseline.taxonomy_version,
        candidate_taxonomy_version=candidate.taxonomy_version,
        guardrail_violations=validate_snapshot(candidate.snapshot, ADVICE_REGISTRY.values()),
    )
