# ontology maintenance guardrails
# violations are reported as strings so the replay gate and tests can list every problem at once

from __future__ import annotations

from typing import Iterable

from knowledge.advice import AdviceEntry, orphan_advice_targets
from knowledge.snapshot import KnowledgeSnapshot
from knowledge.taxonomy import normalize_token


def _sorted_unique_problems(values: Iterable[str], where: str) -> list[str]:
    items = list(values)
    problems: list[str] = []
    if len(set(items)) != len(items):
        dupes = sorted({item for item in items if items.count(item) > 1})
        problems.append(f"{where} has duplicates: {', '.join(dupes)}")
    if items != sorted(items):
        problems.append(f"{where} is not sorted")
    if any(item != normalize_token(item) for item in items):
        problems.append(f"{where} has non-normalized entries")
    return problems


def validate_snapshot(snapshot: KnowledgeSnapshot, advice: Iterable[AdviceEntry] = ()) -> list[str]:
    violations: list[str] = []
    if not snapshot.version.strip():
        violations.append("snapshot version is blank")

    allowed = {tuple(sorted(pair)) for pair in snapshot.allowed_overlaps}
    child_parents: dict[str, list[str]] = {}
    for category in snapshot.categories:
        if not category.children:
            violations.append(f"category {category.key} has empty children")
        violations.extend(_sorted_unique_problems(category.children, f"category {category.key} children"))
        severity = snapshot.severity.get(category.key)
        if severity is None or not 0 <= int(severity) <= 100:
            violations.append(f"category {category.key} severity {severity} not in [0,100]")
        for child in category.children:
            parents = child_parents.setdefault(normalize_token(child), [])
            if category.key not in parents:
                parents.append(category.key)

    for child, parents in sorted(child_parents.items()):
        if len(parents) < 2:
            continue
        pairs = {
            tuple(sorted((left, right)))
            for i, left in enumerate(parents)
            for right in parents[i + 1:]
        }
        undeclared = sorted(pair for pair in pairs if pair not in allowed)
        for left, right in undeclared:
            violations.append(f'duplicate child "{child}" in {left}, {right} not in allowed overlaps')

    for relation in snapshot.cross_reactive:
        violations.extend(_sorted_unique_problems(relation.related, f"cross-reactive {relation.source} related"))

    alias_owner: dict[str, str] = {}
    for canonical, aliases in sorted(snapshot.aliases.items()):
        violations.extend(_sorted_unique_problems(aliases, f"aliases for {canonical}"))
        for alias in aliases:
            owner = alias_owner.setdefault(normalize_token(alias), canonical)
            if owner != canonical:
                violations.append(f'alias "{alias}" maps to both {owner} and {canonical}')
            if normalize_token(alias) == normalize_token(canonical):
                violations.append(f'alias "{alias}" repeats its canonical id')

    for functional_class in snapshot.functional_classes:
        violations.extend(_sorted_unique_problems(functional_class.terms, f"functional class {functional_class.key} terms"))

    for target in orphan_advice_targets(snapshot, advice):
        violations.append(f"advice target {target} has no taxonomy node")

    return violations
