# request/response shapes for the risk engine API
# inputs use snake_case like persisted rows; engine outputs keep their camelCase keys

from typing import Any, Optional, Union

from pydantic import BaseModel, Field

from inference.feed import DEFAULT_FEED_LIMIT, MAX_FEED_LIMIT
from inference.trajectory import DEFAULT_MIN_OCCURRENCES, DEFAULT_WINDOW_HOURS as TRAJECTORY_WINDOW_HOURS
from vigilance.compute import DEFAULT_WINDOW_HOURS as VIGILANCE_WINDOW_HOURS, MAX_WINDOW_HOURS
from vigilance.recent_triggers import DEFAULT_RECENT_LIMIT, MAX_RECENT_LIMIT


class MedicationIn(BaseModel):
    name: str
    dosage: Optional[str] = None


# profile as stored on the client; medications may be plain names or {name, dosage}
class ProfileIn(BaseModel):
    known_allergies: list[str] = Field(default_factory=list)
    current_medications: list[Union[str, MedicationIn]] = Field(default_factory=list)

    def as_payload(self) -> dict[str, Any]:
        return {
            "known_allergies": list(self.known_allergies),
            "current_medications": [
                med.model_dump() if isinstance(med, MedicationIn) else med for med in self.current_medications
            ],
        }


class CheckEventIn(BaseModel):
    id: Optional[str] = None
    type: str = Field(pattern="^(meal|medication|supplement|symptom)$")
    event_data: dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[str] = None


class RiskCheckIn(BaseModel):
    check_id: Optional[str] = None
    profile: ProfileIn = Field(default_factory=ProfileIn)
    events: list[CheckEventIn] = Field(default_factory=list)


class MatchedEntryOut(BaseModel):
    rule: str
    ruleCode: str
    details: dict[str, Any]


class VerdictMetaOut(BaseModel):
    severity: int
    taxonomyVersion: str
    traceId: str
    crossReactive: Optional[bool] = None


class AdviceEntryOut(BaseModel):
    id: str
    level: str
    target: str
    title: str
    symptomsToWatch: list[str]
    immediateActions: list[str]
    education: list[str]
    disclaimers: list[str]


class AdviceOut(BaseModel):
    version: str
    items: list[AdviceEntryOut]
    topTarget: Optional[str] = None


class RiskVerdictOut(BaseModel):
    riskLevel: str
    reasoning: str
    matched: list[MatchedEntryOut]
    meta: VerdictMetaOut
    advice: Optional[AdviceOut] = None


# one joined check/event row of a profile's history
class TimelineRowIn(BaseModel):
    id: Optional[str] = None
    check_id: str
    timestamp: str
    event_type: str = Field(pattern="^(meal|medication|supplement|symptom)$")
    event_data: dict[str, Any] = Field(default_factory=dict)


class TrajectoryIn(BaseModel):
    profile_id: str
    known_allergies: list[str] = Field(default_factory=list)
    rows: list[TimelineRowIn] = Field(default_factory=list)
    window_hours: int = Field(default=TRAJECTORY_WINDOW_HOURS, ge=1, le=MAX_WINDOW_HOURS)
    min_occurrences: int = Field(default=DEFAULT_MIN_OCCURRENCES, ge=2, le=20)
    now: Optional[str] = None
    # checks stored in the window; defaults to the checks present in rows
    check_count: Optional[int] = Field(default=None, ge=0)


class InsightsFeedIn(BaseModel):
    profile_id: str
    known_allergies: list[str] = Field(default_factory=list)
    rows: list[TimelineRowIn] = Field(default_factory=list)
    window_hours: int = Field(default=TRAJECTORY_WINDOW_HOURS, ge=1, le=MAX_WINDOW_HOURS)
    limit: int = Field(default=DEFAULT_FEED_LIMIT, ge=1, le=MAX_FEED_LIMIT)
    # fingerprint -> "relevant" | "not_relevant"
    votes: dict[str, str] = Field(default_factory=dict)
    debug: Optional[bool] = None
    now: Optional[str] = None


# persisted check as written by /checks/risk callers
class PersistedCheckIn(BaseModel):
    id: str
    created_at: str
    verdict: dict[str, Any] = Field(default_factory=dict)


class VigilanceIn(BaseModel):
    profile_id: str
    checks: list[PersistedCheckIn] = Field(default_factory=list)
    window_hours: int = Field(default=VIGILANCE_WINDOW_HOURS, ge=1, le=MAX_WINDOW_HOURS)
    now: Optional[str] = None


class RecentTriggersIn(BaseModel):
    checks: list[PersistedCheckIn] = Field(default_factory=list)
    limit: int = Field(default=DEFAULT_RECENT_LIMIT, ge=1, le=MAX_RECENT_LIMIT)


class KnowledgeVersionOut(BaseModel):
    taxonomy_version: str
    registry_version: Optional[str] = None
