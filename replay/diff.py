# replay diff core: normalize verdicts, diff baseline vs candidate, gate against an allowlist
# pure and deterministic; gate failures are returned as data so CI can print every mismatch

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from inference.check_risk import RISK_RANK, Verdict, verdict_dict
from inference.rule_codes import RULE_ALLERGY_MATCH, RULE_CROSS_REACTIVE


@dataclass(frozen=True)
class ReplayVerdict:
    risk_level: str
    severity: int
    matched_terms: tuple[str, ...]
    matched_categories: tuple[str, ...]
    cross_reactive: bool
    taxonomy_version: str | None = None
    registry_version: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "riskLevel": self.risk_level,
            "severity": self.severity,
            "matchedTerms": list(self.matched_terms),
            "matchedCategories": list(self.matched_categories),
            "crossReactive": self.cross_reactive,
            "taxonomyVersion": self.taxonomy_version,
            "registryVersion": self.registry_version,
        }


@dataclass(frozen=True)
class ReplayDiff:
    scenario_id: str
    baseline: ReplayVerdict
    candidate: ReplayVerdict
    risk_level_changed: bool
    severity_changed: bool
    added_matches: tuple[str, ...]
    removed_matches: tuple[str, ...]
    notes: str | None = None

    @property
    def direction(self) -> str | None:
        if not self.risk_level_changed:
            return None
        return "up" if RISK_RANK[self.candidate.risk_level] > RISK_RANK[self.baseline.risk_level] else "down"

    def as_dict(self) -> dict[str, Any]:
        changes: dict[str, Any] = {
            "riskLevelChanged": self.risk_level_changed,
            "severityChanged": self.severity_changed,
            "addedMatches": list(self.added_matches),
            "removedMatches": list(self.removed_matches),
        }
        if self.notes:
            changes["notes"] = self.notes
        return {
            "scenarioId": self.scenario_id,
            "baselineVerdict": self.baseline.as_dict(),
            "candidateVerdict": self.candidate.as_dict(),
            "changes": changes,
        }


@dataclass(frozen=True)
class ReplayReport:
    scenarios: tuple[ReplayDiff, ...]
    baseline_taxonomy_version: str | None = None
    candidate_taxonomy_version: str | None = None
    guardrail_violations: tuple[str, ...] = ()

    @property
    def summary(self) -> dict[str, int]:
        return {
            "totalScenarios": len(self.scenarios),
            "riskLevelChangesUp": sum(1 for d in self.scenarios if d.direction == "up"),
            "riskLevelChangesDown": sum(1 for d in self.scenarios if d.direction == "down"),
            "totalAddedMatches": sum(len(d.added_matches) for d in self.scenarios),
            "totalRemovedMatches": sum(len(d.removed_matches) for d in self.scenarios),
        }

    def as_dict(self) -> dict[str, Any]:
        meta: dict[str, Any] = {
            "baselineTaxonomyVersion": self.baseline_taxonomy_version,
            "candidateTaxonomyVersion": self.candidate_taxonomy_version,
        }
        if self.guardrail_violations:
            meta["guardrailViolations"] = list(self.guardrail_violations)
        return {
            "meta": meta,
            "scenarios": [d.as_dict() for d in self.scenarios],
            "summary": self.summary,
        }


@dataclass(frozen=True)
class ExpectedChange:
    risk_level_from: str
    risk_level_to: str
    added_matches: tuple[str, ...] = ()
    removed_matches: tuple[str, ...] = ()
    candidate_taxonomy_version: str | None = None


@dataclass(frozen=True)
class Allowlist:
    mode: str = "legacy"
    legacy_ids: frozenset[str] = frozenset()
    fingerprints: Mapping[str, ExpectedChange] = field(default_factory=dict)


@dataclass(frozen=True)
class GateResult:
    passed: bool
    failures: tuple[str, ...] = ()


def _sorted_set(values: Iterable[Any]) -> tuple[str, ...]:
    return tuple(sorted({str(v) for v in values if v}))


def normalize_verdict(
    verdict: Verdict | Mapping[str, Any],
    taxonomy_version: str | None = None,
    registry_version: str | None = None,
) -> ReplayVerdict:
    payload = verdict_dict(verdict)
    meta = payload.get("meta") if isinstance(payload.get("meta"), Mapping) else {}
    terms: list[str] = []
    categories: list[str] = []
    cross_reactive = False
    for entry in payload.get("matched") or []:
        details = entry.get("details") or {}
        if entry.get("rule") == RULE_ALLERGY_MATCH:
            terms.append(details.get("allergen"))
            categories.append(details.get("matchedCategory"))
        elif entry.get("rule") == RULE_CROSS_REACTIVE:
            cross_reactive = True
            terms.append(details.get("matchedTerm"))
            categories.append(details.get("source"))
    return ReplayVerdict(
        risk_level=str(payload.get("riskLevel") or "none"),
        severity=int(meta.get("severity") or 0),
        matched_terms=_sorted_set(terms),
        matched_categories=_sorted_set(categories),
        cross_reactive=cross_reactive,
        taxonomy_version=taxonomy_version,
        registry_version=registry_version,
    )


def compute_replay_diff(scenario_id: str, baseline: ReplayVerdict, candidate: ReplayVerdict) -> ReplayDiff:
    risk_changed = baseline.risk_level != candidate.risk_level
    baseline_terms = set(baseline.matched_terms)
    candidate_terms = set(candidate.matched_terms)
    notes = None
    if risk_changed:
        direction = "up" if RISK_RANK[candidate.risk_level] > RISK_RANK[baseline.risk_level] else "down"
        notes = f"riskLevel {baseline.risk_level} → {candidate.risk_level} ({direction})"
    return ReplayDiff(
        scenario_id=scenario_id,
        baseline=baseline,
        candidate=candidate,
        risk_level_changed=risk_changed,
        severity_changed=baseline.severity != candidate.severity,
        added_matches=tuple(sorted(candidate_terms - baseline_terms)),
        removed_matches=tuple(sorted(baseline_terms - candidate_terms)),
        notes=notes,
    )


def build_replay_report(
    diffs: Iterable[ReplayDiff],
    baseline_taxonomy_version: str | None = None,
    candidate_taxonomy_version: str | None = None,
    guardrail_violations: Iterable[str] = (),
) -> ReplayReport:
    return ReplayReport(
        scenarios=tuple(diffs),
        baseline_taxonomy_version=baseline_taxonomy_version,
        candidate_taxonomy_version=candidate_taxonomy_version,
        guardrail_violations=tuple(guardrail_violations),
    )


def parse_allowlist(raw: Any) -> Allowlist:
    """Read either allowlist format.

    ``{"fingerprints": [{scenarioId, expected: {...}}]}`` pins the exact
    expected diff per scenario; ``{"allowedRiskLevelChanges": [ids]}`` is the
    legacy id-only form. Anything else is an empty legacy allowlist.
    """
    if not isinstance(raw, Mapping):
        return Allowlist()
    if isinstance(raw.get("fingerprints"), list):
        fingerprints: dict[str, ExpectedChange] = {}
        for entry in raw["fingerprints"]:
            if not isinstance(entry, Mapping) or not entry.get("scenarioId"):
                continue
            expected = entry.get("expected")
            if not isinstance(expected, Mapping):
                continue
            version = expected.get("candidateTaxonomyVersion")
            fingerprints[str(entry["scenarioId"])] = ExpectedChange(
                risk_level_from=str(expected.get("riskLevelFrom") or ""),
                risk_level_to=str(expected.get("riskLevelTo") or ""),
                added_matches=_sorted_set(expected.get("addedMatches") or []),
                removed_matches=_sorted_set(expected.get("removedMatches") or []),
                candidate_taxonomy_version=version if isinstance(version, str) else None,
            )
        return Allowlist(mode="fingerprinted", fingerprints=fingerprints)
    ids = raw.get("allowedRiskLevelChanges")
    return Allowlist(mode="legacy", legacy_ids=frozenset(str(i) for i in ids or [] if i) if isinstance(ids, list) else frozenset())


def _transition(diff: ReplayDiff) -> str:
    return f"{diff.baseline.risk_level} → {diff.candidate.risk_level}"


def _gate_legacy(report: ReplayReport, allowed: frozenset[str], strict: bool) -> list[str]:
    failures: list[str] = []
    for diff in report.scenarios:
        if not diff.risk_level_changed or diff.scenario_id in allowed:
            continue
        if diff.direction == "up":
            failures.append(f"Scenario {diff.scenario_id}: riskLevel increased {_transition(diff)} (not in allowlist)")
        elif strict:
            failures.append(f"Strict mode: {diff.scenario_id} has riskLevel change ({_transition(diff)})")
    return failures


def _gate_fingerprinted(report: ReplayReport, allowlist: Allowlist, strict: bool) -> list[str]:
    failures: list[str] = []
    for diff in report.scenarios:
        sid = diff.scenario_id
        expected = allowlist.fingerprints.get(sid)
        if expected is None:
            if diff.risk_level_changed:
                failures.append(f"Scenario {sid}: riskLevel changed {_transition(diff)} (no fingerprint in allowlist)")
            elif strict and (diff.added_matches or diff.removed_matches):
                failures.append(
                    f"Strict mode: {sid} has match changes "
                    f"(added [{', '.join(diff.added_matches)}], removed [{', '.join(diff.removed_matches)}]) with no fingerprint"
                )
            continue

        if diff.baseline.risk_level != expected.risk_level_from:
            failures.append(
                f'Scenario {sid}: riskLevelFrom mismatch: expected "{expected.risk_level_from}", got "{diff.baseline.risk_level}"'
            )
        if diff.candidate.risk_level != expected.risk_level_to:
            failures.append(
                f'Scenario {sid}: riskLevelTo mismatch: expected "{expected.risk_level_to}", got "{diff.candidate.risk_level}"'
            )
        if tuple(sorted(set(diff.added_matches))) != expected.added_matches:
            failures.append(
                f"Scenario {sid}: addedMatches mismatch: expected [{', '.join(expected.added_matches)}], "
                f"got [{', '.join(diff.added_matches)}]"
            )
        if tuple(sorted(set(diff.removed_matches))) != expected.removed_matches:
            failures.append(
                f"Scenario {sid}: removedMatches mismatch: expected [{', '.join(expected.removed_matches)}], "
                f"got [{', '.join(diff.removed_matches)}]"
            )
        if expected.candidate_taxonomy_version is not None and report.candidate_taxonomy_version != expected.candidate_taxonomy_version:
            failures.append(
                f'Scenario {sid}: candidateTaxonomyVersion mismatch: expected "{expected.candidate_taxonomy_version}", '
                f'got "{report.candidate_taxonomy_version}"'
            )
    return failures


def evaluate_gate(report: ReplayReport, allowlist: Allowlist, strict: bool = False) -> GateResult:
    if allowlist.mode == "fingerprinted":
        failures = _gate_fingerprinted(report, allowlist, strict)
    else:
        failures = _gate_legacy(report, allowlist.legacy_ids, strict)
    failures.extend(f"Guardrail: {violation}" for violation in report.guardrail_violations)
    return GateResult(passed=not failures, failures=tuple(failures))
