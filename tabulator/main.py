from __future__ import annotations

from contextlib import asynccontextmanager
from io import StringIO
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from tabulator import __version__
from tabulator.config import ALLOW_ADMIN_REGISTRATION, Settings, get_settings
from tabulator.errors import (
    EventNotFound,
    LockedEvent,
    MalformedRecord,
    ParticipantNotFound,
    ProfileResolutionFailure,
    StoreBusy,
    UniquenessViolation,
    ValidationFailure,
)
from tabulator.identity import resolve_profile
from tabulator.models import Criterion, Event, EventType, JudgedFormat, Participant, QuizFormat, Round
from tabulator.ranking import rank_event, results_frame, tie_break_criterion
from tabulator.realtime import ReconciliationListener, ScoreFeed
from tabulator.repository import Repository, load_repository
from tabulator.scoring import compute_total, display_total, max_possible, validate_format
from tabulator.standings import compute_standings
from tabulator.store import RecordStore, new_id
from tabulator.submission import audit_uniqueness, submit_score
from tabulator.utils import setup_logging


# -----------------------
# Request bodies
# -----------------------
class CriterionIn(BaseModel):
    id: Optional[str] = None
    name: str
    weight: float = Field(ge=0)
    description: Optional[str] = None


class RoundIn(BaseModel):
    id: Optional[str] = None
    name: str
    points: float = Field(ge=0)
    is_tie_breaker: bool = False


class EventCreate(BaseModel):
    name: str = Field(min_length=1)
    type: EventType
    criteria: List[CriterionIn] = []
    rounds: List[RoundIn] = []
    event_admin_id: Optional[str] = None


class ParticipantCreate(BaseModel):
    name: str = Field(min_length=1)
    district: str = Field(min_length=1)


class ScoreSubmit(BaseModel):
    judge_id: str = Field(min_length=1)
    participant_id: str = Field(min_length=1)
    entries: Dict[str, Any] = {}
    deduction: Any = 0
    critique: Optional[str] = None


# -----------------------
# Dependencies
# -----------------------
def get_store(request: Request) -> RecordStore:
    return request.app.state.store


def get_repository(request: Request) -> Repository:
    return request.app.state.repository


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def require_event(repository: Repository, event_id: str) -> Event:
    event = repository.get_event(event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found.")
    return event


router = APIRouter()


# -----------------------
# Routes: Health / settings / identity
# -----------------------
@router.get("/health")
def health(request: Request, repository: Repository = Depends(get_repository)):
    return {
        "status": "ok",
        "loaded": sorted(repository.loaded),
        "failed": sorted(repository.failed),
        "feed_subscribers": request.app.state.store.feed.subscriber_count,
    }


@router.get("/settings")
def read_settings(
    repository: Repository = Depends(get_repository),
    settings: Settings = Depends(get_app_settings),
):
    stored = repository.settings
    return {
        ALLOW_ADMIN_REGISTRATION: bool(stored.get(ALLOW_ADMIN_REGISTRATION, settings.allow_admin_registration)),
        "districts": settings.districts,
    }


@router.get("/me")
def who_am_i(
    store: RecordStore = Depends(get_store),
    x_user_id: Optional[str] = Header(None),
    x_user_email: Optional[str] = Header(None),
    x_user_name: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
):
    claims = {"sub": x_user_id, "email": x_user_email, "name": x_user_name, "role": x_user_role}
    try:
        return resolve_profile(store, claims)
    except ProfileResolutionFailure as e:
        raise HTTPException(status_code=401, detail=str(e))


# -----------------------
# Routes: Events (admin)
# -----------------------
@router.get("/events")
def list_events(repository: Repository = Depends(get_repository)):
    return repository.events


@router.post("/events", status_code=201)
def create_event(
    body: EventCreate,
    store: RecordStore = Depends(get_store),
    repository: Repository = Depends(get_repository),
):
    if body.type == EventType.JUDGED:
        fmt = JudgedFormat(criteria=[
            Criterion(id=c.id or new_id(), name=c.name.strip(), weight=c.weight, description=c.description)
            for c in body.criteria
        ])
    else:
        fmt = QuizFormat(rounds=[
            Round(id=r.id or new_id(), name=r.name.strip(), points=r.points, is_tie_breaker=r.is_tie_breaker)
            for r in body.rounds
        ])
    validate_format(fmt)

    event = Event(id=new_id(), name=body.name.strip(), format=fmt, event_admin_id=body.event_admin_id)
    store.insert_event(event)
    repository.upsert_event(event)
    return event


@router.post("/events/{event_id}/lock")
def toggle_lock(
    event_id: str,
    store: RecordStore = Depends(get_store),
    repository: Repository = Depends(get_repository),
):
    event = store.toggle_event_lock(event_id)
    repository.upsert_event(event)
    return event


@router.delete("/events/{event_id}", status_code=204)
def delete_event(
    event_id: str,
    store: RecordStore = Depends(get_store),
    repository: Repository = Depends(get_repository),
):
    store.delete_event(event_id)
    repository.remove_event(event_id)
    return Response(status_code=204)


# -----------------------
# Routes: Participants
# -----------------------
@router.post("/events/{event_id}/participants", status_code=201)
def enroll_participant(
    event_id: str,
    body: ParticipantCreate,
    store: RecordStore = Depends(get_store),
    repository: Repository = Depends(get_repository),
    settings: Settings = Depends(get_app_settings),
):
    district = body.district.strip()
    if district not in settings.districts:
        raise ValidationFailure(f"Unknown district {district!r}.")
    participant = Participant(id=new_id(), name=body.name.strip(), district=district, event_id=event_id)
    store.insert_participant(participant)
    repository.add_participant(participant)
    return participant


@router.get("/events/{event_id}/participants")
def list_participants(event_id: str, search: Optional[str] = None, store: RecordStore = Depends(get_store)):
    store.get_event(event_id)
    return store.list_participants(event_id=event_id, search=search)


# -----------------------
# Routes: Scoring (judges)
# -----------------------
@router.post("/events/{event_id}/scores")
def submit(
    event_id: str,
    body: ScoreSubmit,
    store: RecordStore = Depends(get_store),
    repository: Repository = Depends(get_repository),
):
    score = submit_score(
        store,
        judge_id=body.judge_id,
        participant_id=body.participant_id,
        event_id=event_id,
        entries=body.entries,
        deduction=body.deduction,
        critique=body.critique,
        repository=repository,
    )
    event = repository.get_event(event_id) or store.get_event(event_id)
    return {"score": score, "display_total": display_total(event.format, score.total_score)}


@router.get("/events/{event_id}/scores")
def judge_scores(event_id: str, judge_id: str, repository: Repository = Depends(get_repository)):
    event = require_event(repository, event_id)
    return [
        {
            "score": s,
            "display_total": display_total(event.format, compute_total(event.format, s.entries, s.deductions)),
        }
        for s in repository.scores_by_judge(judge_id)
        if s.event_id == event_id
    ]


# -----------------------
# Routes: Results
# -----------------------
@router.get("/events/{event_id}/ranking")
def event_ranking(event_id: str, repository: Repository = Depends(get_repository)):
    event = require_event(repository, event_id)
    ranked = rank_event(event, repository.participants_for_event(event_id), repository.scores_for_event(event_id))
    return {
        "event": event,
        "tie_break_criterion": tie_break_criterion(event.format),
        "max_possible": max_possible(event.format),
        "results": [
            {**r.model_dump(), "display_score": display_total(event.format, r.aggregate_score)}
            for r in ranked
        ],
    }


@router.get("/events/{event_id}/ranking.csv")
def download_ranking(event_id: str, repository: Repository = Depends(get_repository)):
    event = require_event(repository, event_id)
    ranked = rank_event(event, repository.participants_for_event(event_id), repository.scores_for_event(event_id))

    buf = StringIO()
    results_frame(ranked).to_csv(buf, index=False)
    return Response(
        content=buf.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="event_{event_id}_results.csv"'},
    )


@router.get("/events/{event_id}/audit")
def audit_event(event_id: str, repository: Repository = Depends(get_repository)):
    require_event(repository, event_id)
    try:
        audit_uniqueness(repository.scores_for_event(event_id))
    except UniquenessViolation as e:
        return JSONResponse(
            status_code=409,
            content={
                "detail": str(e),
                "duplicates": [{"judge_id": j, "participant_id": p} for j, p in e.pairs],
            },
        )
    return {"duplicates": []}


@router.get("/standings")
def standings(
    repository: Repository = Depends(get_repository),
    settings: Settings = Depends(get_app_settings),
):
    return compute_standings(repository.events, repository.participants, repository.scores, settings.districts)


# -----------------------
# App
# -----------------------
def _error(status_code: int):
    async def handler(request: Request, exc: Exception):
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})
    return handler


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.settings
    setup_logging(settings.log_level)
    app.state.store.init_db()
    # attach first so writes landing during the load are not missed
    app.state.listener.attach(app.state.store.feed)
    await load_repository(app.state.store, app.state.repository, timeout=settings.initial_load_timeout)
    yield
    app.state.listener.detach()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title="Regional Tabulator API",
        description="Judge score submission, event rankings and regional standings",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    repository = Repository()
    app.state.settings = settings
    app.state.store = RecordStore(settings.db_path, ScoreFeed(), busy_timeout=settings.db_busy_timeout)
    app.state.repository = repository
    app.state.listener = ReconciliationListener(repository)

    app.add_exception_handler(LockedEvent, _error(423))
    app.add_exception_handler(ValidationFailure, _error(422))
    app.add_exception_handler(MalformedRecord, _error(422))
    app.add_exception_handler(EventNotFound, _error(404))
    app.add_exception_handler(ParticipantNotFound, _error(404))
    app.add_exception_handler(StoreBusy, _error(503))

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
