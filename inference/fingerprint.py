from __future__ import annotations

from typing import Any, Iterable, Mapping


def _clean(value: Any) -> str:
    return str(value or "").strip().lower()


# stable id for feedback votes: <type>:<trigger>:<symptom>:<sorted check ids>
def insight_fingerprint(
    insight_type: str,
    priority_hints: Mapping[str, Any] | None,
    supporting_events: Iterable[str],
) -> str:
    hints = priority_hints or {}
    events = ",".join(sorted(str(event) for event in supporting_events))
    return f"{_clean(insight_type)}:{_clean(hints.get('triggerValue'))}:{_clean(hints.get('symptomValue'))}:{events}"
