# actionable advice shown next to a verdict
# pure data keyed by matched term or parent category; term advice wins over parent advice
# advice never feeds back into risk level, vigilance or the replay gate

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

from inference.rule_codes import RULE_ALLERGY_MATCH, RULE_CROSS_REACTIVE
from knowledge.snapshot import KnowledgeSnapshot
from knowledge.taxonomy import normalize_token

# bump whenever an entry below changes
ADVICE_REGISTRY_VERSION = "14a.1"
ADVICE_CAP = 3

# targets that need no taxonomy node
SPECIAL_TARGETS = frozenset({"general"})

_EMERGENCY = "If trouble breathing, seek emergency care immediately."
_NOT_MEDICAL = "This is general guidance, not medical advice. Follow your allergist's plan."


@dataclass(frozen=True)
class AdviceEntry:
    id: str
    level: str
    target: str
    title: str
    symptoms_to_watch: tuple[str, ...]
    immediate_actions: tuple[str, ...]
    education: tuple[str, ...]
    disclaimers: tuple[str, ...]

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "level": self.level,
            "target": self.target,
            "title": self.title,
            "symptomsToWatch": list(self.symptoms_to_watch),
            "immediateActions": list(self.immediate_actions),
            "education": list(self.education),
            "disclaimers": list(self.disclaimers),
        }


@dataclass(frozen=True)
class AdviceBlock:
    version: str
    items: tuple[AdviceEntry, ...]

    @property
    def top_target(self) -> str | None:
        return self.items[0].target if self.items else None

    def as_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "items": [item.as_dict() for item in self.items],
            "topTarget": self.top_target,
        }


def _entry(level: str, target: str, title: str, symptoms, actions, education, disclaimers=(_EMERGENCY, _NOT_MEDICAL)) -> AdviceEntry:
    return AdviceEntry(
        id=f"{level}:{target}",
        level=level,
        target=target,
        title=title,
        symptoms_to_watch=tuple(symptoms),
        immediate_actions=tuple(actions),
        education=tuple(education),
        disclaimers=tuple(disclaimers),
    )


GENERAL_SAFETY_FALLBACK = AdviceEntry(
    id="fallback:general_safety",
    level="parent",
    target="general",
    title="General Safety",
    symptoms_to_watch=(
        "Hives, itching, or swelling",
        "Tingling in mouth or throat",
        "Difficulty breathing or wheezing",
        "Stomach upset or vomiting",
    ),
    immediate_actions=(
        "Stop eating immediately",
        "Rinse mouth with water",
        "Use epinephrine auto-injector if prescribed",
        "Seek emergency care for severe symptoms",
    ),
    education=(
        "When in doubt, avoid the food until you can confirm with your allergist.",
        "Check labels and ask about ingredients when dining out.",
    ),
    disclaimers=(_EMERGENCY, "Standard guidance only. Consult a professional in emergencies."),
)

_ENTRIES = (
    _entry(
        "parent",
        "tree_nut",
        "Tree Nut Allergy",
        [
            "Hives, itching, or swelling",
            "Tingling in mouth or throat",
            "Stomach pain, nausea, or vomiting",
            "Difficulty breathing or wheezing",
            "Dizziness or lightheadedness",
        ],
        [
            "Stop eating immediately",
            "Rinse mouth with water",
            "Use epinephrine auto-injector if prescribed",
            "Call 911 if severe symptoms develop",
        ],
        [
            "Tree nuts include almond, walnut, cashew, pistachio, pecan, hazelnut, Brazil nut, pine nut, macadamia.",
            'Check labels for "may contain" or "processed in facility with tree nuts."',
            "Cross-contamination is common in bakeries and ice cream shops.",
        ],
    ),
    _entry(
        "parent",
        "shellfish",
        "Shellfish Allergy",
        [
            "Hives or skin rash",
            "Swelling of lips, face, or throat",
            "Stomach cramps or diarrhea",
            "Wheezing or difficulty breathing",
            "Anaphylaxis (severe allergic reaction)",
        ],
        [
            "Stop eating immediately",
            "Use epinephrine auto-injector if prescribed",
            "Seek emergency care for severe reactions",
            "Antihistamines may help mild symptoms only",
        ],
        [
            "Shellfish includes shrimp, crab, lobster, scallop, oyster, mussel.",
            "Crustaceans (shrimp, crab, lobster) and mollusks (scallop, oyster, mussel) may differ in reactivity.",
            "Avoid fish sauce, surimi, and some Asian sauces that may contain shellfish.",
        ],
    ),
    _entry(
        "parent",
        "peanut",
        "Peanut Allergy",
        [
            "Skin reactions (hives, redness, swelling)",
            "Itching or tingling in mouth",
            "Digestive upset",
            "Shortness of breath or throat tightness",
            "Anaphylaxis",
        ],
        [
            "Stop eating immediately",
            "Use epinephrine auto-injector if prescribed",
            "Call 911 for severe reactions",
            "Stay calm; lying flat can worsen blood pressure drop",
        ],
        [
            "Peanuts are legumes, not tree nuts. Many people allergic to peanuts can safely eat tree nuts.",
            "Cross-contamination is common. Avoid shared equipment and bulk bins.",
            "Peanut oil (refined) may be tolerated by some; cold-pressed or gourmet oils may contain protein.",
        ],
    ),
    _entry(
        "parent",
        "fish",
        "Fish Allergy",
        [
            "Hives or eczema flare",
            "Swelling of lips or face",
            "Nausea, vomiting, or diarrhea",
            "Wheezing or difficulty breathing",
            "Anaphylaxis",
        ],
        [
            "Stop eating immediately",
            "Use epinephrine auto-injector if prescribed",
            "Seek emergency care for severe reactions",
        ],
        [
            "Fish allergy is distinct from shellfish allergy. Some people are allergic to one or both.",
            "Fish can be hidden in Worcestershire sauce, Caesar dressing, and some Asian dishes.",
            "Fish gelatin and fish oil supplements may contain fish protein.",
        ],
    ),
    _entry(
        "parent",
        "sesame",
        "Sesame Allergy",
        [
            "Hives or rash",
            "Swelling of face or throat",
            "Stomach pain or vomiting",
            "Wheezing or difficulty breathing",
            "Anaphylaxis",
        ],
        [
            "Stop eating immediately",
            "Use epinephrine auto-injector if prescribed",
            "Seek emergency care for severe reactions",
        ],
        [
            "Sesame is now a major allergen requiring labeling in the US.",
            "Found in tahini, hummus, bagels, crackers, and many ethnic cuisines.",
            "Sesame oil (especially toasted) can contain protein and trigger reactions.",
        ],
    ),
    _entry(
        "term",
        "mango",
        "Mango (Cross-Reactive with Latex/Tree Nut)",
        [
            "Itching or tingling in mouth (OAS)",
            "Hives or rash, especially around mouth",
            "Swelling of lips or throat",
            "Stomach upset",
        ],
        [
            "Stop eating immediately",
            "Rinse mouth with water",
            "Use epinephrine if prescribed and symptoms are severe",
        ],
        [
            "Mango can cross-react with latex or certain tree nuts due to similar proteins.",
            "Oral allergy syndrome (OAS) may cause mild mouth itching without full anaphylaxis.",
            "Peeling mango may reduce contact with allergenic compounds in the skin.",
        ],
    ),
    _entry(
        "term",
        "almond",
        "Almond Allergy",
        [
            "Hives, itching, or swelling",
            "Tingling in mouth or throat",
            "Stomach pain or vomiting",
            "Difficulty breathing",
        ],
        [
            "Stop eating immediately",
            "Rinse mouth with water",
            "Use epinephrine auto-injector if prescribed",
            "Call 911 if severe symptoms develop",
        ],
        [
            "Almond is a tree nut. Almond milk, marzipan, and many baked goods contain almond.",
            "Almond extract and almond oil may contain protein; check with your allergist.",
            "Cross-contamination is common in nut-free facilities that also process almonds.",
        ],
    ),
)

ADVICE_REGISTRY: dict[str, AdviceEntry] = {entry.id: entry for entry in _ENTRIES}


def resolve_advice(
    matched: Iterable[tuple[str, str | None]],
    parent_for_term: Callable[[str], str | None] | None = None,
    registry: Mapping[str, AdviceEntry] = ADVICE_REGISTRY,
) -> list[AdviceEntry]:
    """Resolve advice for ``(matched_term, matched_category)`` pairs.

    A term with its own entry uses it; otherwise the category (or the term's
    parent, via ``parent_for_term``) supplies parent advice. Entries are
    deduplicated and ordered term-level first, then by target.
    """
    seen: set[str] = set()
    resolved: list[AdviceEntry] = []
    for raw_term, raw_category in matched:
        term = normalize_token(raw_term)
        category = raw_category or (parent_for_term(term) if parent_for_term and term else None)

        term_entry = registry.get(f"term:{term}") if term else None
        if term_entry is not None:
            if term_entry.id not in seen:
                seen.add(term_entry.id)
                resolved.append(term_entry)
            continue

        parent_entry = registry.get(f"parent:{normalize_token(category)}") if category else None
        if parent_entry is not None and parent_entry.id not in seen:
            seen.add(parent_entry.id)
            resolved.append(parent_entry)

    resolved.sort(key=lambda entry: (0 if entry.level == "term" else 1, entry.target))
    return resolved


def _advice_pairs(verdict: Mapping[str, Any]) -> list[tuple[str, str | None]]:
    pairs: list[tuple[str, str | None]] = []
    for entry in verdict.get("matched") or ():
        if not isinstance(entry, Mapping):
            continue
        details = entry.get("details") if isinstance(entry.get("details"), Mapping) else {}
        rule = entry.get("rule")
        if rule == RULE_ALLERGY_MATCH:
            pairs.append((str(details.get("allergen") or ""), details.get("matchedCategory")))
        elif rule == RULE_CROSS_REACTIVE:
            pairs.append((str(details.get("matchedTerm") or ""), details.get("source")))
    return pairs


def build_advice(
    verdict: Mapping[str, Any],
    parent_for_term: Callable[[str], str | None] | None = None,
) -> AdviceBlock | None:
    # medication-only and clean verdicts carry no advice
    pairs = _advice_pairs(verdict)
    if not pairs:
        return None
    items = resolve_advice(pairs, parent_for_term)
    if not items:
        items = [GENERAL_SAFETY_FALLBACK]
    return AdviceBlock(version=ADVICE_REGISTRY_VERSION, items=tuple(items[:ADVICE_CAP]))


def orphan_advice_targets(
    snapshot: KnowledgeSnapshot,
    entries: Iterable[AdviceEntry],
) -> list[str]:
    """Advice targets that name no parent key, child term or cross-reactive term."""
    known = {normalize_token(category.key) for category in snapshot.categories}
    for category in snapshot.categories:
        known.update(normalize_token(child) for child in category.children)
    for relation in snapshot.cross_reactive:
        known.update(normalize_token(term) for term in relation.related)

    orphans = [
        entry.target
        for entry in entries
        if normalize_token(entry.target) not in SPECIAL_TARGETS and normalize_token(entry.target) not in known
    ]
    return sorted(orphans)
