# allergen taxonomy + alias resolver
# deterministic phrase-safe matching over a single knowledge snapshot
# zero fuzzy matching: canonical terms tolerate a naive trailing-s plural, aliases are exact only

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from knowledge.snapshot import CrossReactiveRelation, KnowledgeSnapshot, ParentCategory

UNKNOWN_CATEGORY_SEVERITY = 50

_OPENERS = "'\"([{"
_CLOSERS = "'\")]}"
_NON_WORD = re.compile(r"[^\w\s]")


def normalize_token(value: str | None) -> str:
    # lowercase, trim, collapse whitespace, strip one layer of surrounding quotes/brackets
    if not isinstance(value, str):
        return ""
    text = " ".join(value.lower().split())
    if text and text[0] in _OPENERS:
        text = text[1:]
    if text and text[-1] in _CLOSERS:
        text = text[:-1]
    return text.strip()


def normalize_plural(value: str) -> str:
    text = normalize_token(value)
    if len(text) > 1 and text.endswith("s"):
        return text[:-1]
    return text


def _plural_variant(term: str) -> str:
    return term[:-1] if term.endswith("s") else f"{term}s"


def _match_text(text: str | None) -> str:
    # punctuation becomes whitespace so "brazil-nut" reads as the phrase "brazil nut"
    return " ".join(_NON_WORD.sub(" ", normalize_token(text)).split())


def _term_pattern(form: str) -> re.Pattern[str]:
    return re.compile(rf"\b{re.escape(form)}\b")


@dataclass(frozen=True)
class CrossReactiveHit:
    source: str
    matched_term: str
    modifier: int


class Taxonomy:
    """Read-only resolver compiled from one KnowledgeSnapshot.

    All indexes (child -> parents, alias -> canonical, literal forms per
    canonical) are built once in the constructor; nothing is recomputed or
    mutated per request.
    """

    def __init__(self, snapshot: KnowledgeSnapshot) -> None:
        self.version = snapshot.version
        self._categories: dict[str, ParentCategory] = {c.key: c for c in snapshot.categories}
        self._severity = {normalize_token(k): int(v) for k, v in snapshot.severity.items()}
        self._relations: tuple[CrossReactiveRelation, ...] = snapshot.cross_reactive
        self._parents_by_child: dict[str, list[str]] = {}
        for category in snapshot.categories:
            for child in category.children:
                parents = self._parents_by_child.setdefault(normalize_token(child), [])
                if category.key not in parents:
                    parents.append(category.key)

        self._aliases: dict[str, tuple[str, ...]] = {}
        for canonical, aliases in sorted(snapshot.aliases.items()):
            key = normalize_token(canonical)
            merged = set(self._aliases.get(key, ())) | {normalize_token(a) for a in aliases if normalize_token(a)}
            self._aliases[key] = tuple(sorted(merged))

        self._canonical_map = self._build_canonical_map()
        self._forms: dict[str, tuple[str, ...]] = {
            canonical: self._literal_forms(canonical) for canonical in set(self._canonical_map.values())
        }
        self._patterns: dict[str, re.Pattern[str]] = {
            form: _term_pattern(form) for forms in self._forms.values() for form in forms
        }

    def _build_canonical_map(self) -> dict[str, str]:
        # fold taxonomy children + cross-reactive terms + alias table into one lookup
        mapping: dict[str, str] = {}
        for child in sorted(self._parents_by_child):
            mapping.setdefault(child, child)
        for relation in self._relations:
            for term in sorted(relation.related):
                key = normalize_token(term)
                if key:
                    mapping.setdefault(key, key)
        for canonical in sorted(self._aliases):
            mapping.setdefault(canonical, canonical)
        for canonical, aliases in sorted(self._aliases.items()):
            for alias in aliases:
                # first canonical wins; conflicting aliases are reported by guardrails
                mapping.setdefault(alias, canonical)
        return mapping

    def _literal_forms(self, canonical: str) -> tuple[str, ...]:
        forms = {canonical, _plural_variant(canonical)}
        forms.update(self._aliases.get(canonical, ()))
        return tuple(sorted(f for f in forms if f))

    def _forms_for(self, canonical: str) -> tuple[str, ...]:
        known = self._forms.get(canonical)
        if known is not None:
            return known
        return tuple(sorted({canonical, _plural_variant(canonical)}))

    def _pattern_for(self, form: str) -> re.Pattern[str]:
        return self._patterns.get(form) or _term_pattern(form)

    def _find_canonical(self, text: str, canonicals: Iterable[str]) -> str | None:
        candidates: list[tuple[str, str]] = []
        for canonical in canonicals:
            key = normalize_token(canonical)
            if not key:
                continue
            for form in self._forms_for(key):
                candidates.append((form, key))
        # longest literal first so "brazil nut" is tried before "nut"
        candidates.sort(key=lambda row: (-len(row[0]), row[0], row[1]))
        for form, canonical in candidates:
            if self._pattern_for(form).search(text):
                return canonical
        return None

    # ── lookups ──────────────────────────────────────────────────────

    @property
    def categories(self) -> tuple[ParentCategory, ...]:
        return tuple(self._categories.values())

    def resolve_to_canonical(self, token: str | None) -> str | None:
        return self._canonical_map.get(normalize_token(token))

    def parent_key_for(self, term: str | None) -> str | None:
        parents = self._parents_by_child.get(normalize_token(term))
        return parents[0] if parents else None

    def category_for_severity(self, term: str) -> str:
        normalized = normalize_token(term)
        if normalized in self._severity:
            return normalized
        return self.parent_key_for(normalized) or normalized

    def severity_for(self, category: str | None) -> int:
        return self._severity.get(normalize_token(category), UNKNOWN_CATEGORY_SEVERITY)

    def parent_category_key(self, token: str | None) -> str | None:
        # accepts "tree_nut", "tree nut" and "tree nuts"
        key = normalize_token(token)
        if not key:
            return None
        for candidate in (key, key.replace(" ", "_")):
            if candidate in self._categories:
                return candidate
            singular = normalize_plural(candidate)
            if singular in self._categories:
                return singular
        return None

    # ── matching ─────────────────────────────────────────────────────

    def expand_allergies(self, profile_allergies: Iterable[str] | None) -> frozenset[str]:
        """Expand profile allergies into the set of canonical terms to match.

        Parent keys (``tree_nut``) become all of their children; every other
        entry passes through singular-normalized, resolved to its canonical
        id when the alias index knows it. Called per request, never cached.
        """
        expanded: set[str] = set()
        for allergy in profile_allergies or ():
            key = normalize_token(allergy)
            if not key:
                continue
            parent = self.parent_category_key(key)
            if parent is not None:
                expanded.update(normalize_token(c) for c in self._categories[parent].children)
                continue
            singular = normalize_plural(key)
            expanded.add(self.resolve_to_canonical(key) or self.resolve_to_canonical(singular) or singular)
        return frozenset(expanded)

    def is_allergen_match(self, text: str | None, expanded: Iterable[str]) -> str | None:
        normalized = _match_text(text)
        if not normalized:
            return None
        return self._find_canonical(normalized, expanded)

    def get_cross_reactive_match(
        self,
        user_allergies: Iterable[str] | None,
        text: str | None,
    ) -> CrossReactiveHit | None:
        normalized = _match_text(text)
        if not normalized:
            return None
        allergy_keys = {normalize_token(a).replace(" ", "_") for a in user_allergies or ()}
        allergy_keys.discard("")
        for relation in self._relations:
            source = normalize_token(relation.source)
            if not any(key == source or normalize_plural(key) == source for key in allergy_keys):
                continue
            matched = self._find_canonical(normalized, relation.related)
            if matched is not None:
                return CrossReactiveHit(
                    source=relation.source,
                    matched_term=matched,
                    modifier=int(relation.risk_modifier),
                )
        return None
