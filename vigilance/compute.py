# vigilance state: one decayed 0-100 pressure score over a profile's recent verdicts
# reads persisted check rows {id, created_at, verdict} only, never re-runs inference
#   decay     step buckets by check age, no continuous curve
#   score     sum of the top 3 weighted severities, clamped to 100
#   trigger   single heaviest check (headline), reported only while active
#   sources   per-term attribution, ranked

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, Mapping

from ingestion.time_utils import hours_between, parse_utc
from inference.check_risk import matched_terms, verdict_dict
from inference.rounding import round_half_up_int
from knowledge.taxonomy import normalize_token

DEFAULT_WINDOW_HOURS = 12
MAX_WINDOW_HOURS = 168
ACTIVE_THRESHOLD = 50
TOP_N = 3
MAX_SOURCE_CHECK_IDS = 3

HIGH_FALLBACK_SEVERITY = 100
# older verdicts persisted before meta.severity existed
MEDIUM_FALLBACK_SEVERITY = int(os.getenv("VIGILANCE_MEDIUM_FALLBACK_SEVERITY", "50"))

DECAY_BUCKETS = (
    (1, 1.0, "0_to_1h"),
    (6, 0.75, "1_to_6h"),
    (12, 0.5, "6_to_12h"),
)
TAIL_WEIGHT = 0.25
TAIL_BUCKET = "12h_plus"


def decay_weight(hours_since: float) -> float:
    for limit, weight, _ in DECAY_BUCKETS:
        if hours_since <= limit:
            return weight
    return TAIL_WEIGHT


def age_bucket(hours_since: float) -> str:
    for limit, _, bucket in DECAY_BUCKETS:
        if hours_since <= limit:
            return bucket
    return TAIL_BUCKET


def fallback_severity(risk_level: str | None) -> int:
    if risk_level == "high":
        return HIGH_FALLBACK_SEVERITY
    if risk_level == "medium":
        return MEDIUM_FALLBACK_SEVERITY
    return 0


@dataclass(frozen=True)
class ScoredCheck:
    check_id: str
    created_at: datetime
    verdict: Mapping[str, Any]
    raw_severity: int
    weight: float
    weighted_severity: int
    hours_since: float

    @property
    def risk_level(self) -> str:
        return str(self.verdict.get("riskLevel"))

    @property
    def meta(self) -> Mapping[str, Any]:
        meta = self.verdict.get("meta")
        return meta if isinstance(meta, Mapping) else {}


@dataclass(frozen=True)
class PressureSource:
    term: str
    count: int
    weighted_score: int
    max_weighted: int
    source_check_ids: tuple[str, ...]

    def as_dict(self) -> dict[str, Any]:
        return {
            "term": self.term,
            "count": self.count,
            "weightedScore": self.weighted_score,
            "maxWeighted": self.max_weighted,
            "sourceCheckIds": list(self.source_check_ids),
        }


@dataclass(frozen=True)
class VigilanceTrigger:
    check_id: str
    risk_level: str
    severity: int | None
    matched: tuple[str, ...]
    last_seen_at: datetime
    taxonomy_version: str | None
    weight: float
    weighted_severity: int
    age_bucket: str
    raw_severity: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "checkId": self.check_id,
            "riskLevel": self.risk_level,
            "severity": self.severity,
            "matched": list(self.matched),
            "lastSeenAt": self.last_seen_at.isoformat(),
            "taxonomyVersion": self.taxonomy_version,
            "weight": self.weight,
            "weightedSeverity": self.weighted_severity,
            "ageBucket": self.age_bucket,
            "rawSeverity": self.raw_severity,
        }


@dataclass(frozen=True)
class VigilanceState:
    profile_id: str
    window_hours: int
    vigilance_score: int
    vigilance_active: bool
    components: tuple[int, ...] = ()
    pressure_sources: tuple[PressureSource, ...] = ()
    trigger: VigilanceTrigger | None = None
    decay_applied: bool = True

    def as_dict(self) -> dict[str, Any]:
        return {
            "profileId": self.profile_id,
            "windowHours": self.window_hours,
            "vigilanceActive": self.vigilance_active,
            "vigilanceScore": self.vigilance_score,
            "decayApplied": self.decay_applied,
            "aggregation": {"mode": "topN_sum", "topN": TOP_N, "components": list(self.components)},
            "pressureSources": [source.as_dict() for source in self.pressure_sources],
            "trigger": self.trigger.as_dict() if self.trigger else None,
        }


def _raw_severity(verdict: Mapping[str, Any]) -> int:
    meta = verdict.get("meta")
    severity = meta.get("severity") if isinstance(meta, Mapping) else None
    if isinstance(severity, (int, float)) and not isinstance(severity, bool):
        return int(severity)
    return fallback_severity(verdict.get("riskLevel"))


def score_checks(
    checks: Iterable[Mapping[str, Any]],
    window_hours: int,
    now: datetime,
) -> list[ScoredCheck]:
    """Non-none verdicts inside the window, each with its decayed severity.

    Future-dated checks count as age zero. Rows without an id or a parseable
    timestamp are skipped.
    """
    cutoff = now - timedelta(hours=window_hours)
    scored: list[ScoredCheck] = []
    for row in checks or ():
        if not isinstance(row, Mapping):
            continue
        verdict = verdict_dict(row.get("verdict"))
        if verdict.get("riskLevel") not in ("medium", "high"):
            continue
        created_at = parse_utc(row.get("created_at") or row.get("timestamp"))
        check_id = row.get("id") or row.get("check_id")
        if created_at is None or not check_id or created_at < cutoff:
            continue
        hours_since = max(0.0, hours_between(created_at, now))
        weight = decay_weight(hours_since)
        raw = _raw_severity(verdict)
        scored.append(
            ScoredCheck(
                check_id=str(check_id),
                created_at=created_at,
                verdict=verdict,
                raw_severity=raw,
                weight=weight,
                weighted_severity=round_half_up_int(raw * weight),
                hours_since=hours_since,
            )
        )
    return scored


def _pick_trigger(scored: list[ScoredCheck]) -> ScoredCheck | None:
    best: ScoredCheck | None = None
    for check in scored:
        if check.weighted_severity <= 0:
            continue
        if best is None:
            best = check
            continue
        # heaviest wins; ties go to the most recent check, then the lower id
        if (check.weighted_severity, check.created_at) > (best.weighted_severity, best.created_at):
            best = check
        elif (check.weighted_severity, check.created_at) == (best.weighted_severity, best.created_at) and check.check_id < best.check_id:
            best = check
    return best


def pressure_sources(scored: list[ScoredCheck]) -> list[PressureSource]:
    accum: dict[str, dict[str, Any]] = {}
    for check in scored:
        if check.weighted_severity <= 0:
            continue
        for term in matched_terms(check.verdict):
            key = normalize_token(term)
            entry = accum.setdefault(key, {"count": 0, "weighted": 0, "max": 0, "checks": []})
            entry["count"] += 1
            entry["weighted"] += check.weighted_severity
            entry["max"] = max(entry["max"], check.weighted_severity)
            entry["checks"].append(check)

    sources: list[PressureSource] = []
    for term, entry in accum.items():
        newest = sorted(entry["checks"], key=lambda c: c.check_id)
        newest.sort(key=lambda c: c.created_at, reverse=True)
        sources.append(
            PressureSource(
                term=term,
                count=entry["count"],
                weighted_score=entry["weighted"],
                max_weighted=entry["max"],
                source_check_ids=tuple(c.check_id for c in newest[:MAX_SOURCE_CHECK_IDS]),
            )
        )
    sources.sort(key=lambda s: (-s.weighted_score, -s.count, s.term))
    return sources


def compute_vigilance(
    profile_id: str,
    checks: Iterable[Mapping[str, Any]],
    window_hours: int,
    now: datetime,
) -> VigilanceState:
    scored = score_checks(checks, window_hours, now)
    components = sorted((check.weighted_severity for check in scored), reverse=True)[:TOP_N]
    score = max(0, min(100, sum(components)))
    active = score >= ACTIVE_THRESHOLD

    trigger = None
    best = _pick_trigger(scored)
    if best is not None and active:
        trigger = VigilanceTrigger(
            check_id=best.check_id,
            risk_level=best.risk_level,
            severity=best.meta.get("severity"),
            matched=tuple(matched_terms(best.verdict)),
            last_seen_at=best.created_at,
            taxonomy_version=best.meta.get("taxonomyVersion"),
            weight=best.weight,
            weighted_severity=best.weighted_severity,
            age_bucket=age_bucket(best.hours_since),
            raw_severity=best.raw_severity,
        )

    return VigilanceState(
        profile_id=profile_id,
        window_hours=window_hours,
        vigilance_score=score,
        vigilance_active=active,
        components=tuple(components),
        pressure_sources=tuple(pressure_sources(scored)),
        trigger=trigger,
    )
