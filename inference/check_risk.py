# deterministic risk verdict for one check's events
# rules, in order:
#   allergy_match          HIGH    meal mentions a (taxonomy-expanded) known allergen
#   cross_reactive         MEDIUM  no direct hit on that meal, but a related term of an allergy source appears
#   medication_interaction MEDIUM  medication shares a functional class with a current medication
# highest level wins; same profile + events + knowledge version always yields the same verdict

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, ClassVar, Iterable, Mapping, Union

from ingestion.normalize_event import Event
from inference.rounding import clamp
from inference.rule_codes import (
    RULE_ALLERGY_MATCH,
    RULE_CROSS_REACTIVE,
    RULE_MEDICATION_INTERACTION,
    rule_code_for,
)
from knowledge.loader import Knowledge, get_knowledge
from knowledge.taxonomy import normalize_token

logger = logging.getLogger(__name__)

MEDICATION_INTERACTION_SEVERITY = 50
NO_RISK_REASONING = "No known risks detected."

RISK_RANK = {"none": 0, "medium": 1, "high": 2}


@dataclass(frozen=True)
class Profile:
    known_allergies: tuple[str, ...] = ()
    current_medications: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> "Profile":
        payload = payload or {}
        allergies = [str(a) for a in payload.get("known_allergies") or [] if isinstance(a, str) and a.strip()]
        medications: list[str] = []
        for med in payload.get("current_medications") or []:
            # stored either as plain names or {name, dosage}
            name = med.get("name") if isinstance(med, Mapping) else med
            if isinstance(name, str) and name.strip():
                medications.append(name)
        return cls(known_allergies=tuple(allergies), current_medications=tuple(medications))


@dataclass(frozen=True)
class AllergyMatch:
    rule: ClassVar[str] = RULE_ALLERGY_MATCH
    meal: str
    allergen: str
    parent_key: str | None
    matched_category: str
    severity: int

    def details(self) -> dict[str, Any]:
        details: dict[str, Any] = {"meal": self.meal, "allergen": self.allergen}
        if self.parent_key:
            details["parentKey"] = self.parent_key
        details["matchedCategory"] = self.matched_category
        details["severity"] = self.severity
        return details

    def terms(self) -> tuple[str, ...]:
        return (self.allergen,)


@dataclass(frozen=True)
class CrossReactiveMatch:
    rule: ClassVar[str] = RULE_CROSS_REACTIVE
    meal: str
    source: str
    matched_term: str
    modifier: int
    severity: int

    def details(self) -> dict[str, Any]:
        return {
            "meal": self.meal,
            "source": self.source,
            "matchedTerm": self.matched_term,
            "modifier": self.modifier,
            "severity": self.severity,
        }

    def terms(self) -> tuple[str, ...]:
        return (self.matched_term,)


@dataclass(frozen=True)
class MedicationInteraction:
    rule: ClassVar[str] = RULE_MEDICATION_INTERACTION
    extracted: str
    conflicts_with: str
    class_key: str
    severity: int = MEDICATION_INTERACTION_SEVERITY

    def details(self) -> dict[str, Any]:
        return {
            "extracted": self.extracted,
            "conflictsWith": self.conflicts_with,
            "classKey": self.class_key,
            "severity": self.severity,
        }

    def terms(self) -> tuple[str, ...]:
        return (self.extracted, self.conflicts_with)


MatchedEntry = Union[AllergyMatch, CrossReactiveMatch, MedicationInteraction]


@dataclass(frozen=True)
class VerdictMeta:
    severity: int
    taxonomy_version: str
    trace_id: str
    cross_reactive: bool | None = None


@dataclass(frozen=True)
class Verdict:
    risk_level: str
    reasoning: str
    matched: tuple[MatchedEntry, ...]
    meta: VerdictMeta

    def as_dict(self) -> dict[str, Any]:
        meta: dict[str, Any] = {
            "severity": self.meta.severity,
            "taxonomyVersion": self.meta.taxonomy_version,
            "traceId": self.meta.trace_id,
        }
        if self.meta.cross_reactive is not None:
            meta["crossReactive"] = self.meta.cross_reactive
        return {
            "riskLevel": self.risk_level,
            "reasoning": self.reasoning,
            "matched": [
                {"rule": entry.rule, "ruleCode": rule_code_for(entry.rule), "details": entry.details()}
                for entry in self.matched
            ],
            "meta": meta,
        }


def _allergy_match(meal: str, expanded: frozenset[str], knowledge: Knowledge) -> AllergyMatch | None:
    taxonomy = knowledge.taxonomy
    allergen = taxonomy.is_allergen_match(meal, expanded)
    if allergen is None:
        return None
    matched_category = taxonomy.category_for_severity(allergen)
    return AllergyMatch(
        meal=meal,
        allergen=allergen,
        parent_key=taxonomy.parent_key_for(allergen),
        matched_category=matched_category,
        severity=taxonomy.severity_for(matched_category),
    )


def _cross_reactive_match(meal: str, allergies: tuple[str, ...], knowledge: Knowledge) -> CrossReactiveMatch | None:
    taxonomy = knowledge.taxonomy
    hit = taxonomy.get_cross_reactive_match(allergies, meal)
    if hit is None:
        return None
    return CrossReactiveMatch(
        meal=meal,
        source=hit.source,
        matched_term=hit.matched_term,
        modifier=hit.modifier,
        severity=int(clamp(taxonomy.severity_for(hit.source) + hit.modifier, 0, 100)),
    )


def _medication_interaction(medication: str, current: tuple[str, ...], knowledge: Knowledge) -> MedicationInteraction | None:
    extracted = normalize_token(medication)
    for current_name in current:
        if normalize_token(current_name) == extracted:
            continue
        shared = knowledge.registry.shared_classes(medication, current_name)
        if shared:
            return MedicationInteraction(extracted=medication, conflicts_with=current_name, class_key=shared[0])
    return None


def _describe(entry: MatchedEntry, profile: Profile, knowledge: Knowledge) -> str:
    if isinstance(entry, AllergyMatch):
        expanded_from_parent = entry.parent_key is not None and any(
            knowledge.taxonomy.parent_category_key(allergy) == entry.parent_key for allergy in profile.known_allergies
        )
        if expanded_from_parent:
            return (
                f'Meal "{entry.meal}" matches {entry.parent_key} allergy via child token '
                f'"{entry.allergen}" (severity {entry.severity}/100)'
            )
        return f'Meal "{entry.meal}" matches known allergen "{entry.allergen}" (severity {entry.severity}/100)'
    if isinstance(entry, CrossReactiveMatch):
        return f'"{entry.matched_term}" is associated with {entry.source} allergies (cross-reactive)'
    return f"{entry.extracted} may interact with current medication {entry.conflicts_with}"


def build_reasoning(matched: Iterable[MatchedEntry], profile: Profile, knowledge: Knowledge) -> str:
    parts = [_describe(entry, profile, knowledge) for entry in matched]
    if not parts:
        return NO_RISK_REASONING
    # exactly one trailing period
    return "; ".join(parts).rstrip(".") + "."


def check_risk(
    profile: Profile,
    events: Iterable[Event],
    check_id: str = "",
    knowledge: Knowledge | None = None,
) -> Verdict:
    """Evaluate one check's events against a profile.

    Uses the process-wide knowledge snapshot unless ``knowledge`` is given
    (the replay gate passes baseline/candidate snapshots explicitly).
    """
    knowledge = knowledge or get_knowledge()
    expanded = knowledge.taxonomy.expand_allergies(profile.known_allergies)
    matched: list[MatchedEntry] = []

    for event in events or ():
        if not isinstance(event, Event) or not event.label:
            continue
        if event.type == "meal":
            entry: MatchedEntry | None = _allergy_match(event.label, expanded, knowledge)
            if entry is None:
                entry = _cross_reactive_match(event.label, profile.known_allergies, knowledge)
            if entry is not None:
                matched.append(entry)
        elif event.type == "medication":
            interaction = _medication_interaction(event.label, profile.current_medications, knowledge)
            if interaction is not None:
                matched.append(interaction)

    has_allergy = any(isinstance(entry, AllergyMatch) for entry in matched)
    has_cross = any(isinstance(entry, CrossReactiveMatch) for entry in matched)
    if has_allergy:
        risk_level = "high"
    elif matched:
        # cross-reactive and interaction entries are capped at medium
        risk_level = "medium"
    else:
        risk_level = "none"

    taxonomy_version = knowledge.taxonomy_version
    meta = VerdictMeta(
        severity=max((entry.severity for entry in matched), default=0),
        taxonomy_version=taxonomy_version,
        trace_id=f"{check_id}:{taxonomy_version}",
        cross_reactive=(has_cross and not has_allergy) if (has_cross or has_allergy) else None,
    )
    verdict = Verdict(
        risk_level=risk_level,
        reasoning=build_reasoning(matched, profile, knowledge),
        matched=tuple(matched),
        meta=meta,
    )
    logger.debug("check_risk trace=%s risk=%s entries=%d", meta.trace_id, risk_level, len(matched))
    return verdict


def verdict_dict(verdict: Verdict | Mapping[str, Any] | None) -> Mapping[str, Any]:
    # persisted verdicts arrive as dicts; fresh ones as Verdict objects
    if isinstance(verdict, Verdict):
        return verdict.as_dict()
    return verdict if isinstance(verdict, Mapping) else {}


def matched_terms(verdict: Verdict | Mapping[str, Any]) -> list[str]:
    """Deduped, sorted matched terms of a verdict object or its persisted dict.

    Interaction entries contribute both medications.
    """
    if isinstance(verdict, Verdict):
        raw = [term for entry in verdict.matched for term in entry.terms()]
    else:
        raw = []
        for entry in (verdict or {}).get("matched") or []:
            if not isinstance(entry, Mapping):
                continue
            details = entry.get("details") or {}
            rule = entry.get("rule")
            if rule == RULE_ALLERGY_MATCH:
                raw.append(details.get("allergen"))
            elif rule == RULE_CROSS_REACTIVE:
                raw.append(details.get("matchedTerm"))
            elif rule == RULE_MEDICATION_INTERACTION:
                raw.extend([details.get("extracted"), details.get("conflictsWith")])
    return sorted({normalize_token(term) for term in raw if isinstance(term, str) and normalize_token(term)})
