# exposure vs hit statistics per (trigger, symptom) pair
#   exposures  ingestible events carrying the trigger label
#   hits       symptom events within HIT_WINDOW_HOURS after one of those exposures
#   baseline   symptom count / total ingestible events
#   lift       (hits / exposures) / baseline, 0 when undefined
# built once per request, then every lookup is a dict read

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from ingestion.normalize_event import INGESTIBLE_TYPES, TimelineEvent
from ingestion.time_utils import hours_between
from inference.rounding import round_half_up
from knowledge.taxonomy import normalize_token

HIT_WINDOW_HOURS = 12


@dataclass(frozen=True)
class EvidenceStats:
    exposures: int
    hits: int
    lift: float

    def as_dict(self) -> dict[str, float | int]:
        return {"exposures": self.exposures, "hits": self.hits, "lift": self.lift}


class EvidenceContext:
    def __init__(
        self,
        total_ingestibles: int,
        exposures: dict[str, int],
        symptom_counts: dict[str, int],
        hits: dict[tuple[str, str], int],
    ) -> None:
        self.total_ingestibles = total_ingestibles
        self._exposures = exposures
        self._symptom_counts = symptom_counts
        self._hits = hits

    def get_evidence(self, trigger: str | None, symptom: str | None) -> EvidenceStats:
        trigger_key = normalize_token(trigger)
        symptom_key = normalize_token(symptom)
        exposures = self._exposures.get(trigger_key, 0)
        hits = self._hits.get((trigger_key, symptom_key), 0)
        symptom_count = self._symptom_counts.get(symptom_key, 0)
        baseline = symptom_count / self.total_ingestibles if self.total_ingestibles > 0 else 0.0
        lift = 0.0
        if exposures > 0 and baseline > 0:
            lift = round_half_up(hits / exposures / baseline, 2)
        return EvidenceStats(exposures=exposures, hits=hits, lift=lift)


def build_evidence_context(timeline: Iterable[TimelineEvent]) -> EvidenceContext:
    ingestibles = sorted(
        (item for item in timeline or () if item.event.type in INGESTIBLE_TYPES),
        key=lambda item: item.timestamp,
    )
    symptoms = sorted(
        (item for item in timeline or () if item.event.type == "symptom"),
        key=lambda item: item.timestamp,
    )

    exposures: dict[str, int] = {}
    for item in ingestibles:
        key = normalize_token(item.event.label)
        exposures[key] = exposures.get(key, 0) + 1

    symptom_counts: dict[str, int] = {}
    for item in symptoms:
        key = normalize_token(item.event.label)
        symptom_counts[key] = symptom_counts.get(key, 0) + 1

    hits: dict[tuple[str, str], int] = {}
    for ingestible in ingestibles:
        trigger_key = normalize_token(ingestible.event.label)
        for symptom in symptoms:
            if symptom.timestamp <= ingestible.timestamp:
                continue
            # symptoms are time-ordered, nothing later can fall back inside the window
            if hours_between(ingestible.timestamp, symptom.timestamp) > HIT_WINDOW_HOURS:
                break
            pair = (trigger_key, normalize_token(symptom.event.label))
            hits[pair] = hits.get(pair, 0) + 1

    return EvidenceContext(
        total_ingestibles=len(ingestibles),
        exposures=exposures,
        symptom_counts=symptom_counts,
        hits=hits,
    )
