# turn event-store rows into immutable Event / TimelineEvent records
# rows look like {check_id, timestamp, event_type, event_data}; event_data is keyed by type
# malformed rows contribute nothing unless the caller asks for strict validation

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping

from ingestion.time_utils import parse_utc

EVENT_TYPES = ("meal", "medication", "supplement", "symptom")
INGESTIBLE_TYPES = ("meal", "medication", "supplement")


# lets the api separate payload validation failures from engine errors
class TimelineNormalizationError(ValueError):
    pass


@dataclass(frozen=True)
class Event:
    id: str
    type: str
    label: str
    timestamp: datetime | None = None

    @property
    def is_ingestible(self) -> bool:
        return self.type in INGESTIBLE_TYPES


@dataclass(frozen=True)
class TimelineEvent:
    check_id: str
    timestamp: datetime
    event: Event


def extract_label(event_type: str | None, event_data: Mapping[str, Any] | None) -> str | None:
    if not isinstance(event_data, Mapping):
        return None
    if event_type == "supplement":
        # older rows stored supplements under "name"
        raw = event_data.get("supplement") or event_data.get("name")
    elif event_type in EVENT_TYPES:
        raw = event_data.get(event_type)
    else:
        return None
    if raw is None:
        return None
    label = str(raw).strip()
    return label or None


def _fail(strict: bool, message: str) -> None:
    if strict:
        raise TimelineNormalizationError(message)
    return None


def normalize_event(row: Mapping[str, Any], *, index: int = 0, strict: bool = False) -> Event | None:
    if not isinstance(row, Mapping):
        return _fail(strict, "event must be an object")
    event_type = str(row.get("event_type") or row.get("type") or "").strip().lower()
    if event_type not in EVENT_TYPES:
        return _fail(strict, f"unsupported event type: {event_type or '<missing>'}")
    label = extract_label(event_type, row.get("event_data") or row.get("fields"))
    if label is None:
        return _fail(strict, f"{event_type} event requires a non-empty {event_type} field")
    try:
        timestamp = parse_utc(row.get("timestamp"), strict=strict)
    except ValueError as exc:
        raise TimelineNormalizationError(f"invalid datetime format: {row.get('timestamp')}") from exc
    event_id = str(row.get("id") or f"{event_type}-{index}")
    return Event(id=event_id, type=event_type, label=label, timestamp=timestamp)


def normalize_events(rows: Iterable[Mapping[str, Any]], *, strict: bool = False) -> list[Event]:
    events: list[Event] = []
    for index, row in enumerate(rows or ()):
        event = normalize_event(row, index=index, strict=strict)
        if event is not None:
            events.append(event)
    return events


def build_timeline(rows: Iterable[Mapping[str, Any]], *, strict: bool = False) -> list[TimelineEvent]:
    """Build a timestamp-ordered timeline from joined check/event rows.

    A row without a check id, a parseable timestamp, a known type or a label is
    dropped, or rejected with ``TimelineNormalizationError`` when ``strict``.
    Rows sharing a timestamp keep their input order.
    """
    timeline: list[TimelineEvent] = []
    for index, row in enumerate(rows or ()):
        if not isinstance(row, Mapping):
            _fail(strict, "timeline row must be an object")
            continue
        check_id = row.get("check_id")
        raw_timestamp = row.get("timestamp") or row.get("created_at")
        try:
            timestamp = parse_utc(raw_timestamp, strict=strict)
        except ValueError as exc:
            raise TimelineNormalizationError(f"invalid datetime format: {raw_timestamp}") from exc
        if not check_id or timestamp is None:
            _fail(strict, f"timeline row {index} requires check_id and timestamp")
            continue
        event = normalize_event(row, index=index, strict=strict)
        if event is None:
            continue
        if event.timestamp is None:
            event = Event(id=event.id, type=event.type, label=event.label, timestamp=timestamp)
        timeline.append(TimelineEvent(check_id=str(check_id), timestamp=timestamp, event=event))
    timeline.sort(key=lambda item: item.timestamp)
    return timeline
