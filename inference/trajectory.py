# temporal pattern detection over a profile's recent timeline
# three independent detectors share one Insight shape; scoring + ordering happen once at the end
#   trigger_symptom            ingestible followed by a symptom, proximity-gated + deduped
#   repeated_symptom           same symptom in >= min_occurrences distinct checks
#   medication_symptom_cluster medication followed by >= 2 distinct symptoms
# nothing here persists or mutates state

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Iterable

from ingestion.normalize_event import INGESTIBLE_TYPES, TimelineEvent
from ingestion.time_utils import hours_between
from inference.rounding import round_half_up
from knowledge.loader import Knowledge, get_knowledge
from knowledge.taxonomy import normalize_plural, normalize_token

DEFAULT_WINDOW_HOURS = 48
DEFAULT_MIN_OCCURRENCES = 3

STRONG_MAX_HOURS = 6
MEDIUM_MAX_HOURS = 12
BUCKET_RANK = {"strong": 3, "medium": 2, "weak": 1}

BASE_SCORES = {
    "medication_symptom_cluster": 60,
    "trigger_symptom": 40,
    "repeated_symptom": 20,
}
SUPPORT_BONUS_MIN_EVENTS = 3
SUPPORT_BONUS = 10
ALLERGEN_BONUS = 10

TRIGGER_LABELS = {"meal": "Meal", "medication": "Medication", "supplement": "Supplement"}


@dataclass(frozen=True)
class Insight:
    type: str
    label: str
    description: str
    supporting_events: tuple[str, ...]
    priority_hints: dict[str, Any]
    why_included: tuple[str, ...]
    score: int = 0
    proximity_bucket: str | None = None
    hours_delta: float | None = None
    meta: dict[str, Any] | None = None

    @property
    def supporting_event_count(self) -> int:
        return len(self.supporting_events)

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.type,
            "label": self.label,
            "description": self.description,
            "supportingEvents": list(self.supporting_events),
            "supportingEventCount": self.supporting_event_count,
            "priorityHints": dict(self.priority_hints),
            "score": self.score,
            "whyIncluded": list(self.why_included),
        }
        if self.proximity_bucket is not None:
            payload["proximityBucket"] = self.proximity_bucket
        if self.hours_delta is not None:
            payload["hoursDelta"] = self.hours_delta
        if self.meta is not None:
            payload["meta"] = dict(self.meta)
        return payload


@dataclass(frozen=True)
class TrajectoryResult:
    profile_id: str
    window_hours: int
    analyzed_checks: int
    insights: list[Insight] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "profileId": self.profile_id,
            "windowHours": self.window_hours,
            "analyzedChecks": self.analyzed_checks,
            "insights": [insight.as_dict() for insight in self.insights],
        }


@dataclass(frozen=True)
class _Candidate:
    trigger_check_id: str
    symptom_check_id: str
    trigger_label: str
    symptom_label: str
    trigger_type: str
    hours_delta: float
    proximity_bucket: str


def proximity_bucket_for(hours: float) -> str:
    if hours <= STRONG_MAX_HOURS:
        return "strong"
    if hours <= MEDIUM_MAX_HOURS:
        return "medium"
    return "weak"


def pair_key(trigger: str | None, symptom: str | None) -> str:
    return f"{normalize_token(trigger)}→{normalize_token(symptom)}"


def _format_hours(hours: float) -> str:
    return f"{hours:g}"


def _unique(values: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(values))


def allergen_terms(known_allergies: Iterable[str] | None, knowledge: Knowledge) -> tuple[str, ...]:
    # expanded children plus the raw allergy words, so "peanuts" and "tree_nut" both count
    allergies = [a for a in known_allergies or () if normalize_token(a)]
    terms = set(knowledge.taxonomy.expand_allergies(allergies))
    terms.update(normalize_plural(a) for a in allergies)
    return tuple(sorted(t for t in terms if t))


def contains_allergen(text: str | None, terms: Iterable[str]) -> bool:
    normalized = normalize_token(text)
    if not normalized:
        return False
    return any(term and term in normalized for term in terms)


def filter_window(
    timeline: Iterable[TimelineEvent],
    window_hours: int,
    now: datetime | None,
) -> list[TimelineEvent]:
    items = sorted(timeline or (), key=lambda item: item.timestamp)
    if now is None:
        return items
    cutoff = now - timedelta(hours=window_hours)
    return [item for item in items if cutoff <= item.timestamp <= now]


def detect_trigger_symptom(
    timeline: list[TimelineEvent],
    window_hours: int,
    allergen_terms_: tuple[str, ...],
) -> list[Insight]:
    triggers = [item for item in timeline if item.event.type in INGESTIBLE_TYPES]
    symptoms = [item for item in timeline if item.event.type == "symptom"]

    candidates: list[_Candidate] = []
    for trigger in triggers:
        for symptom in symptoms:
            if symptom.timestamp <= trigger.timestamp:
                continue
            delta = hours_between(trigger.timestamp, symptom.timestamp)
            if delta > window_hours:
                continue
            candidates.append(
                _Candidate(
                    trigger_check_id=trigger.check_id,
                    symptom_check_id=symptom.check_id,
                    trigger_label=trigger.event.label,
                    symptom_label=symptom.event.label,
                    trigger_type=trigger.event.type,
                    hours_delta=round_half_up(delta, 2),
                    proximity_bucket=proximity_bucket_for(delta),
                )
            )

    # keep the strongest bucket ever observed per pair; first seen wins ties
    deduped: dict[str, _Candidate] = {}
    for candidate in candidates:
        key = pair_key(candidate.trigger_label, candidate.symptom_label)
        existing = deduped.get(key)
        if existing is None or BUCKET_RANK[candidate.proximity_bucket] > BUCKET_RANK[existing.proximity_bucket]:
            deduped[key] = candidate

    trigger_counts: dict[str, int] = {}
    for trigger in triggers:
        key = normalize_token(trigger.event.label)
        trigger_counts[key] = trigger_counts.get(key, 0) + 1

    insights: list[Insight] = []
    for candidate in deduped.values():
        why: list[str] = []
        if candidate.proximity_bucket == "strong":
            why.append("proximity_strong")
        if contains_allergen(candidate.trigger_label, allergen_terms_):
            why.append("allergen_related")
        if trigger_counts.get(normalize_token(candidate.trigger_label), 0) <= 1:
            why.append("unique_trigger")
        if not why:
            continue

        type_label = TRIGGER_LABELS[candidate.trigger_type]
        insights.append(
            Insight(
                type="trigger_symptom",
                label=f"{type_label} → Symptom",
                description=(
                    f'{type_label} "{candidate.trigger_label}" was followed by "{candidate.symptom_label}" '
                    f"within {_format_hours(candidate.hours_delta)}h ({candidate.proximity_bucket})."
                ),
                supporting_events=_unique([candidate.trigger_check_id, candidate.symptom_check_id]),
                priority_hints={
                    "triggerKind": candidate.trigger_type,
                    "triggerValue": candidate.trigger_label,
                    "symptomValue": candidate.symptom_label,
                },
                why_included=tuple(why),
                proximity_bucket=candidate.proximity_bucket,
                hours_delta=candidate.hours_delta,
            )
        )
    return insights


def detect_repeated_symptom(
    timeline: list[TimelineEvent],
    window_hours: int,
    min_occurrences: int,
) -> list[Insight]:
    groups: dict[str, tuple[str, list[str]]] = {}
    for item in timeline:
        if item.event.type != "symptom":
            continue
        key = normalize_token(item.event.label)
        label, check_ids = groups.setdefault(key, (item.event.label, []))
        if item.check_id not in check_ids:
            check_ids.append(item.check_id)

    insights: list[Insight] = []
    for label, check_ids in groups.values():
        if len(check_ids) < min_occurrences:
            continue
        insights.append(
            Insight(
                type="repeated_symptom",
                label="Repeated Symptom",
                description=f'"{label}" occurred {len(check_ids)} times within the {window_hours}-hour window.',
                supporting_events=tuple(check_ids),
                priority_hints={"symptomValue": label},
                why_included=(f"occurred_{len(check_ids)}_times_gte_{min_occurrences}",),
            )
        )
    return insights


def detect_medication_symptom_cluster(
    timeline: list[TimelineEvent],
    window_hours: int,
) -> tuple[list[Insight], set[str]]:
    """Medication followed by two or more distinct symptoms.

    Also returns the ``medication→symptom`` keys each cluster covers so the
    matching pairwise trigger_symptom insights can be suppressed.
    """
    medications = [item for item in timeline if item.event.type == "medication"]
    symptoms = [item for item in timeline if item.event.type == "symptom"]
    insights: list[Insight] = []
    covered: set[str] = set()

    for medication in medications:
        following = [
            symptom
            for symptom in symptoms
            if symptom.timestamp > medication.timestamp
            and hours_between(medication.timestamp, symptom.timestamp) <= window_hours
        ]
        distinct = list(dict.fromkeys(normalize_token(symptom.event.label) for symptom in following))
        if len(distinct) < 2:
            continue
        for symptom_key in distinct:
            covered.add(pair_key(medication.event.label, symptom_key))
        insights.append(
            Insight(
                type="medication_symptom_cluster",
                label="Medication → Symptom Cluster",
                description=(
                    f'"{medication.event.label}" was followed by {len(distinct)} distinct symptoms '
                    f"({', '.join(distinct)}) within the {window_hours}-hour window."
                ),
                supporting_events=_unique([medication.check_id, *(symptom.check_id for symptom in following)]),
                priority_hints={"triggerKind": "medication", "triggerValue": medication.event.label},
                why_included=(f"cluster_{len(distinct)}_distinct_symptoms",),
            )
        )
    return insights, covered


def suppress_clustered(insights: list[Insight], covered: set[str]) -> list[Insight]:
    if not covered:
        return insights
    kept: list[Insight] = []
    for insight in insights:
        hints = insight.priority_hints
        if hints.get("triggerKind") == "medication" and pair_key(hints.get("triggerValue"), hints.get("symptomValue")) in covered:
            continue
        kept.append(insight)
    return kept


def score_insight(insight: Insight, allergen_terms_: tuple[str, ...]) -> Insight:
    score = BASE_SCORES.get(insight.type, 0)
    if insight.supporting_event_count >= SUPPORT_BONUS_MIN_EVENTS:
        score += SUPPORT_BONUS
    trigger_value = insight.priority_hints.get("triggerValue")
    if insight.priority_hints.get("triggerKind") in INGESTIBLE_TYPES and contains_allergen(trigger_value, allergen_terms_):
        score += ALLERGEN_BONUS
    return replace(insight, score=score)


def analyze_trajectory(
    profile_id: str,
    timeline: Iterable[TimelineEvent],
    *,
    window_hours: int = DEFAULT_WINDOW_HOURS,
    min_occurrences: int = DEFAULT_MIN_OCCURRENCES,
    known_allergies: Iterable[str] | None = None,
    now: datetime | None = None,
    knowledge: Knowledge | None = None,
    check_count: int | None = None,
) -> TrajectoryResult:
    # check_count: checks stored in the window, including ones whose events were all dropped
    knowledge = knowledge or get_knowledge()
    events = filter_window(timeline, window_hours, now)
    if not events:
        return TrajectoryResult(profile_id=profile_id, window_hours=window_hours, analyzed_checks=check_count or 0)

    terms = allergen_terms(known_allergies, knowledge)
    trigger_insights = detect_trigger_symptom(events, window_hours, terms)
    repeated_insights = detect_repeated_symptom(events, window_hours, min_occurrences)
    cluster_insights, covered = detect_medication_symptom_cluster(events, window_hours)
    trigger_insights = suppress_clustered(trigger_insights, covered)

    scored = [score_insight(insight, terms) for insight in trigger_insights + repeated_insights + cluster_insights]
    # stable: more selective insights (fewer supporting checks) win ties
    scored.sort(key=lambda insight: (-insight.score, insight.supporting_event_count))
    return TrajectoryResult(
        profile_id=profile_id,
        window_hours=window_hours,
        analyzed_checks=len({item.check_id for item in events}) if check_count is None else check_count,
        insights=scored,
    )
