from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping

from ingestion.time_utils import parse_utc
from inference.check_risk import matched_terms, verdict_dict

DEFAULT_RECENT_LIMIT = 10
MAX_RECENT_LIMIT = 50


@dataclass(frozen=True)
class RecentTrigger:
    check_id: str
    created_at: datetime
    risk_level: str
    severity: int | None
    matched: tuple[str, ...]
    taxonomy_version: str | None

    def as_dict(self) -> dict[str, Any]:
        return {
            "checkId": self.check_id,
            "createdAt": self.created_at.isoformat(),
            "riskLevel": self.risk_level,
            "severity": self.severity,
            "matched": list(self.matched),
            "taxonomyVersion": self.taxonomy_version,
        }


def recent_triggers(checks: Iterable[Mapping[str, Any]], limit: int = DEFAULT_RECENT_LIMIT) -> list[RecentTrigger]:
    # medium/high checks, newest first, check id ascending on equal timestamps
    triggers: list[RecentTrigger] = []
    for row in checks or ():
        if not isinstance(row, Mapping):
            continue
        verdict = verdict_dict(row.get("verdict"))
        risk_level = verdict.get("riskLevel")
        created_at = parse_utc(row.get("created_at") or row.get("timestamp"))
        if risk_level not in ("medium", "high") or created_at is None or not row.get("id"):
            continue
        meta = verdict.get("meta") if isinstance(verdict.get("meta"), Mapping) else {}
        triggers.append(
            RecentTrigger(
                check_id=str(row["id"]),
                created_at=created_at,
                risk_level=str(risk_level),
                severity=meta.get("severity"),
                matched=tuple(matched_terms(verdict)),
                taxonomy_version=meta.get("taxonomyVersion"),
            )
        )
    triggers.sort(key=lambda t: t.check_id)
    triggers.sort(key=lambda t: t.created_at, reverse=True)
    return triggers[: max(0, limit)]
