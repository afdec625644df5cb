# ranked "top insights" feed
# trajectory insights are re-scored here with feed rules; the trajectory scores are not reused
# evidence, stacking and votes are best-effort: a failure becomes a warning, not a failed feed

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Iterable, Mapping

from ingestion.normalize_event import TimelineEvent
from ingestion.time_utils import hours_between
from inference.fingerprint import insight_fingerprint
from inference.functional_stacking import detect_functional_stacking
from inference.negative_evidence import EvidenceContext, EvidenceStats, build_evidence_context
from inference.rounding import clamp
from inference.trajectory import (
    DEFAULT_WINDOW_HOURS,
    Insight,
    analyze_trajectory,
    filter_window,
)
from knowledge.loader import Knowledge, get_knowledge

logger = logging.getLogger(__name__)

DEFAULT_FEED_LIMIT = 20
MAX_FEED_LIMIT = 100

FEED_BASE_SCORES = {
    "trigger_symptom": 50,
    "medication_symptom_cluster": 60,
    "repeated_symptom": 40,
    "functional_stacking": 75,
}
FALLBACK_BASE_SCORE = 30
PROXIMITY_BONUS = {"strong": 15, "medium": 5, "weak": 0}
# fixed keyword list, independent of the profile; known_allergies only feeds the trajectory allergen bonus
ALLERGY_TERMS = ("peanut", "nuts", "allergen", "allergy")
ALLERGY_BONUS = 25
CLUSTER_BONUS = 10

STRONG_EVIDENCE_MIN_EXPOSURES = 3
STRONG_EVIDENCE_MIN_LIFT = 2.0
STRONG_EVIDENCE_BONUS = 20
NO_HIT_MIN_EXPOSURES = 5
NO_HIT_PENALTY = -30
LOW_EXPOSURE_PENALTY = -10

STACKING_PROXIMITY_WINDOW_HOURS = 6
STACKING_PROXIMITY_BONUS = 20

VOTE_ADJUSTMENTS = {"relevant": 15, "not_relevant": -40}

SCORE_MIN = 0
SCORE_MAX = 150


def _debug_enabled() -> bool:
    return os.getenv("INSIGHTS_DEBUG", "").strip().lower() == "true"


def contains_allergy_term(text: str | None) -> bool:
    lowered = (text or "").lower()
    return any(term in lowered for term in ALLERGY_TERMS)


@dataclass(frozen=True)
class ScoreBreakdown:
    base: int
    proximity_bonus: int
    evidence_adjust: int
    vote_adjust: int
    clamp_applied: bool

    def as_dict(self) -> dict[str, Any]:
        return {
            "base": self.base,
            "proximityBonus": self.proximity_bonus,
            "evidenceAdjust": self.evidence_adjust,
            "voteAdjust": self.vote_adjust,
            "clampApplied": self.clamp_applied,
        }


@dataclass(frozen=True)
class FeedInsight:
    insight: Insight
    fingerprint: str
    evidence: EvidenceStats | None = None
    user_vote: str | None = None
    score_breakdown: ScoreBreakdown | None = None

    @property
    def score(self) -> int:
        return self.insight.score

    def sort_key(self) -> tuple[int, int, str]:
        return (-self.insight.score, self.insight.supporting_event_count, f"{self.insight.label}{self.insight.description}")

    def as_dict(self) -> dict[str, Any]:
        payload = self.insight.as_dict()
        if self.evidence is not None:
            payload["evidence"] = self.evidence.as_dict()
        payload["fingerprint"] = self.fingerprint
        if self.user_vote:
            payload["userVote"] = self.user_vote
        if self.score_breakdown is not None:
            payload["scoreBreakdown"] = self.score_breakdown.as_dict()
        return payload


@dataclass(frozen=True)
class FeedResult:
    profile_id: str
    window_hours: int
    analyzed_checks: int
    insights: list[FeedInsight] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "profileId": self.profile_id,
            "windowHours": self.window_hours,
            "analyzedChecks": self.analyzed_checks,
            "insights": [insight.as_dict() for insight in self.insights],
        }
        if self.warnings:
            payload["warnings"] = list(self.warnings)
        return payload


def _finish(
    insight: Insight,
    score: int,
    base: int,
    proximity_bonus: int,
    evidence_adjust: int,
    evidence: EvidenceStats | None,
    votes: Mapping[str, str],
    debug: bool,
) -> FeedInsight:
    fingerprint = insight_fingerprint(insight.type, insight.priority_hints, insight.supporting_events)
    user_vote = votes.get(fingerprint)
    vote_adjust = VOTE_ADJUSTMENTS.get(user_vote or "", 0)
    pre_clamp = score + vote_adjust
    final = int(clamp(pre_clamp, SCORE_MIN, SCORE_MAX))
    breakdown = None
    if debug:
        breakdown = ScoreBreakdown(
            base=base,
            proximity_bonus=proximity_bonus,
            evidence_adjust=evidence_adjust,
            vote_adjust=vote_adjust,
            clamp_applied=final != pre_clamp,
        )
    return FeedInsight(
        insight=replace(insight, score=final),
        fingerprint=fingerprint,
        evidence=evidence,
        user_vote=user_vote,
        score_breakdown=breakdown,
    )


def score_trajectory_insight(
    insight: Insight,
    evidence_ctx: EvidenceContext | None,
    votes: Mapping[str, str],
    debug: bool = False,
) -> FeedInsight:
    base = FEED_BASE_SCORES.get(insight.type, FALLBACK_BASE_SCORE)
    score = base
    proximity_bonus = PROXIMITY_BONUS.get(insight.proximity_bucket or "", 0)
    score += proximity_bonus

    allergy_related = contains_allergy_term(insight.label) or contains_allergy_term(insight.description)
    if allergy_related:
        score += ALLERGY_BONUS
    if insight.type == "medication_symptom_cluster":
        score += CLUSTER_BONUS

    evidence: EvidenceStats | None = None
    evidence_adjust = 0
    hints = insight.priority_hints
    if (
        insight.type == "trigger_symptom"
        and evidence_ctx is not None
        and hints.get("triggerValue")
        and hints.get("symptomValue")
    ):
        evidence = evidence_ctx.get_evidence(hints["triggerValue"], hints["symptomValue"])
        if evidence.exposures >= STRONG_EVIDENCE_MIN_EXPOSURES and evidence.lift >= STRONG_EVIDENCE_MIN_LIFT:
            evidence_adjust += STRONG_EVIDENCE_BONUS
        if evidence.exposures >= NO_HIT_MIN_EXPOSURES and evidence.hits == 0:
            evidence_adjust += NO_HIT_PENALTY
        # allergen-related insights are never penalized for being rare
        if evidence.exposures < STRONG_EVIDENCE_MIN_EXPOSURES and not allergy_related:
            evidence_adjust += LOW_EXPOSURE_PENALTY
        score += evidence_adjust

    return _finish(insight, score, base, proximity_bonus, evidence_adjust, evidence, votes, debug)


def score_stacking_insight(
    insight: Insight,
    timeline: list[TimelineEvent],
    votes: Mapping[str, str],
    debug: bool = False,
) -> FeedInsight:
    base = FEED_BASE_SCORES["functional_stacking"]
    score = base
    proximity_bonus = 0
    stack_check = insight.supporting_events[0] if insight.supporting_events else None
    stack_time = next((item.timestamp for item in timeline if item.check_id == stack_check), None)
    if stack_time is not None:
        nearby = any(
            item.event.type == "symptom"
            and item.timestamp > stack_time
            and hours_between(stack_time, item.timestamp) <= STACKING_PROXIMITY_WINDOW_HOURS
            for item in timeline
        )
        if nearby:
            proximity_bonus = STACKING_PROXIMITY_BONUS
            score += proximity_bonus
    return _finish(insight, score, base, proximity_bonus, 0, None, votes, debug)


def build_insights_feed(
    profile_id: str,
    timeline: Iterable[TimelineEvent],
    *,
    known_allergies: Iterable[str] | None = None,
    window_hours: int = DEFAULT_WINDOW_HOURS,
    limit: int = DEFAULT_FEED_LIMIT,
    votes: Mapping[str, str] | None = None,
    now: datetime | None = None,
    debug: bool | None = None,
    knowledge: Knowledge | None = None,
) -> FeedResult:
    knowledge = knowledge or get_knowledge()
    debug = _debug_enabled() if debug is None else debug
    votes = votes or {}
    events = filter_window(timeline, window_hours, now)
    trajectory = analyze_trajectory(
        profile_id,
        events,
        window_hours=window_hours,
        known_allergies=known_allergies,
        knowledge=knowledge,
    )

    warnings: list[str] = []
    evidence_ctx: EvidenceContext | None = None
    try:
        evidence_ctx = build_evidence_context(events)
    except Exception as exc:
        logger.exception("evidence computation failed for profile %s", profile_id)
        warnings.append(f"Evidence computation failed: {exc}")

    stacking: list[Insight] = []
    try:
        stacking = detect_functional_stacking(events, knowledge=knowledge)
    except Exception as exc:
        logger.exception("functional stacking detection failed for profile %s", profile_id)
        warnings.append(f"Stacking detection failed: {exc}")

    scored = [score_trajectory_insight(insight, evidence_ctx, votes, debug) for insight in trajectory.insights]
    scored.extend(score_stacking_insight(insight, events, votes, debug) for insight in stacking)
    scored.sort(key=FeedInsight.sort_key)

    return FeedResult(
        profile_id=profile_id,
        window_hours=window_hours,
        analyzed_checks=trajectory.analyzed_checks,
        insights=scored[: max(0, min(limit, MAX_FEED_LIMIT))],
        warnings=warnings,
    )
