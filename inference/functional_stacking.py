# two or more distinct items of the same functional class inside one check
# medications and supplements only; meals never stack

from __future__ import annotations

from typing import Iterable

from ingestion.normalize_event import TimelineEvent
from inference.trajectory import Insight
from knowledge.loader import Knowledge, get_knowledge
from knowledge.taxonomy import normalize_token

STACKABLE_TYPES = ("medication", "supplement")
MIN_STACK_ITEMS = 2


def detect_functional_stacking(
    timeline: Iterable[TimelineEvent],
    knowledge: Knowledge | None = None,
) -> list[Insight]:
    knowledge = knowledge or get_knowledge()
    registry = knowledge.registry

    # check ids in first-seen (timeline) order
    by_check: dict[str, list[TimelineEvent]] = {}
    for item in timeline or ():
        by_check.setdefault(item.check_id, []).append(item)

    insights: list[Insight] = []
    for check_id, items in by_check.items():
        class_items: dict[str, dict[str, str]] = {}
        for item in items:
            if item.event.type not in STACKABLE_TYPES:
                continue
            for class_key in registry.match_functional_classes(item.event.label):
                names = class_items.setdefault(class_key, {})
                names.setdefault(normalize_token(item.event.label), item.event.label)

        for class_key in sorted(class_items):
            names = list(class_items[class_key].values())
            if len(names) < MIN_STACK_ITEMS:
                continue
            label = registry.label_for(class_key)
            insights.append(
                Insight(
                    type="functional_stacking",
                    label=f"Functional Stack Detected: {label}",
                    description=(
                        f"Multiple items with {label} properties taken together "
                        f"(e.g., {names[0]} + {names[1]})."
                    ),
                    supporting_events=(check_id,),
                    priority_hints={"classKey": class_key, "items": names},
                    why_included=(f"functional_stack_{class_key}_{len(names)}_items",),
                    meta={"classKey": class_key, "items": names, "matchedBy": "registry"},
                )
            )
    return insights
