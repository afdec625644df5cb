from __future__ import annotations

from datetime import datetime, timezone


def parse_utc(value: datetime | str | None, *, strict: bool = False) -> datetime | None:
    # naive values are read as UTC so the same rows always land on the same instant
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            if strict:
                raise
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_utc_iso(value: datetime | str | None, *, strict: bool = False) -> str | None:
    parsed = parse_utc(value, strict=strict)
    return parsed.isoformat() if parsed is not None else None


def hours_between(earlier: datetime, later: datetime) -> float:
    return (later - earlier).total_seconds() / 3600.0


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)
