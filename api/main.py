import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from api.schemas import (
    InsightsFeedIn,
    KnowledgeVersionOut,
    RecentTriggersIn,
    RiskCheckIn,
    RiskVerdictOut,
    TrajectoryIn,
    VigilanceIn,
)
from inference.check_risk import Profile, check_risk
from inference.feed import build_insights_feed
from inference.trajectory import analyze_trajectory
from ingestion.normalize_event import build_timeline, normalize_events
from ingestion.time_utils import parse_utc, utc_now
from knowledge.advice import build_advice
from knowledge.loader import Knowledge, KnowledgeLoadError, get_knowledge
from vigilance.compute import compute_vigilance
from vigilance.recent_triggers import recent_triggers


@asynccontextmanager
async def _lifespan(app: FastAPI):
    _ = app
    # fail startup rather than serve verdicts from a bad snapshot
    knowledge = get_knowledge()
    logger.info(
        "knowledge loaded taxonomy=%s registry=%s",
        knowledge.taxonomy_version,
        knowledge.registry_version,
    )
    yield


app = FastAPI(
    title="Vigil Risk API",
    version="0.1.0",
    lifespan=_lifespan,
)
logger = logging.getLogger(__name__)


def _cors_allow_origins() -> list[str]:
    configured = os.getenv("CORS_ALLOW_ORIGINS", "")
    if configured.strip():
        return [origin.strip().rstrip("/") for origin in configured.split(",") if origin.strip()]
    return [
        "http://localhost:8081",
        "http://127.0.0.1:8081",
        "http://localhost:19006",
        "http://127.0.0.1:19006",
    ]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_allow_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _knowledge() -> Knowledge:
    try:
        return get_knowledge()
    except KnowledgeLoadError as exc:
        logger.exception("Knowledge snapshot unavailable")
        raise HTTPException(status_code=503, detail=str(exc))


def _parse_now(value: Optional[str]) -> datetime:
    if value is None:
        return utc_now()
    try:
        parsed = parse_utc(value, strict=True)
    except ValueError:
        parsed = None
    if parsed is None:
        raise HTTPException(status_code=400, detail="invalid datetime format: now")
    return parsed


# malformed rows are skipped, never fatal
def _log_dropped(kind: str, received: int, kept: int) -> None:
    if kept < received:
        logger.info("%s dropped %d of %d malformed rows", kind, received - kept, received)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/knowledge/version", response_model=KnowledgeVersionOut)
def knowledge_version():
    knowledge = _knowledge()
    return {
        "taxonomy_version": knowledge.taxonomy_version,
        "registry_version": knowledge.registry_version,
    }


# one risk verdict for a single check
@app.post("/checks/risk", response_model=RiskVerdictOut)
def check_risk_endpoint(payload: RiskCheckIn):
    knowledge = _knowledge()
    rows = [event.model_dump() for event in payload.events]
    events = normalize_events(rows)
    _log_dropped("risk check", len(rows), len(events))
    profile = Profile.from_dict(payload.profile.as_payload())
    verdict = check_risk(profile, events, payload.check_id or "", knowledge=knowledge).as_dict()
    advice = build_advice(verdict, knowledge.taxonomy.parent_key_for)
    if advice is not None:
        verdict["advice"] = advice.as_dict()
    return verdict


@app.post("/trajectory")
def trajectory_endpoint(payload: TrajectoryIn):
    knowledge = _knowledge()
    now = _parse_now(payload.now)
    timeline = build_timeline(row.model_dump() for row in payload.rows)
    _log_dropped("timeline", len(payload.rows), len(timeline))
    result = analyze_trajectory(
        payload.profile_id,
        timeline,
        window_hours=payload.window_hours,
        min_occurrences=payload.min_occurrences,
        known_allergies=payload.known_allergies,
        now=now,
        knowledge=knowledge,
        check_count=payload.check_count,
    )
    return result.as_dict()


@app.post("/insights/feed")
def insights_feed_endpoint(payload: InsightsFeedIn):
    knowledge = _knowledge()
    now = _parse_now(payload.now)
    timeline = build_timeline(row.model_dump() for row in payload.rows)
    _log_dropped("timeline", len(payload.rows), len(timeline))
    feed = build_insights_feed(
        payload.profile_id,
        timeline,
        known_allergies=payload.known_allergies,
        window_hours=payload.window_hours,
        limit=payload.limit,
        votes=payload.votes,
        now=now,
        debug=payload.debug,
        knowledge=knowledge,
    )
    if feed.warnings:
        logger.warning("insights feed degraded profile=%s warnings=%s", payload.profile_id, feed.warnings)
    return feed.as_dict()


@app.post("/vigilance")
def vigilance_endpoint(payload: VigilanceIn):
    now = _parse_now(payload.now)
    checks = [check.model_dump() for check in payload.checks]
    state = compute_vigilance(payload.profile_id, checks, payload.window_hours, now)
    return state.as_dict()


@app.post("/vigilance/recent")
def recent_triggers_endpoint(payload: RecentTriggersIn):
    checks = [check.model_dump() for check in payload.checks]
    return {"triggers": [trigger.as_dict() for trigger in recent_triggers(checks, payload.limit)]}
