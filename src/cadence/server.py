import logging
import threading
import time
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Literal

from fastapi import Depends, FastAPI, HTTPException, Query
from pydantic import BaseModel

from cadence.application.scheduler_service import SchedulerService
from cadence.consts import VERSION
from cadence.domain.errors import (
    ClockSkew,
    InvalidState,
    NotFound,
    PolicyViolation,
    SchedulerError,
)
from cadence.domain.models import Card, Deck, Grade, make_content, revise_content

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("cadence.server")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Cadence Server v{VERSION} starting up...")
    yield
    logger.info("Cadence Server shutting down...")


app = FastAPI(
    title="Cadence Server",
    description="HTTP API for the cadence spaced-repetition scheduler.",
    version=VERSION,
    lifespan=lifespan,
)

start_time = time.time()

_scheduler: SchedulerService | None = None
_scheduler_lock = threading.Lock()


def get_scheduler() -> SchedulerService:
    """Process-wide scheduler, opened from the resolved config on first use."""
    global _scheduler
    with _scheduler_lock:
        if _scheduler is None:
            from cadence.application.config import resolve_config
            from cadence.application.factory import open_scheduler

            _scheduler = open_scheduler(resolve_config({}))
        return _scheduler


def _http_error(e: SchedulerError) -> HTTPException:
    if isinstance(e, NotFound):
        status = 404
    elif isinstance(e, ClockSkew | InvalidState):
        status = 409
    elif isinstance(e, PolicyViolation):
        status = 422
    else:
        status = 400
    return HTTPException(status_code=status, detail=str(e))


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------- Models ----------


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float


class CardResponse(BaseModel):
    id: str
    deck_id: str
    front: str
    back: str
    state: str
    due_at: datetime
    interval_days: float
    ease_factor: float
    lapse_count: int
    reps: int
    tags: list[str]

    @classmethod
    def from_card(cls, card: Card) -> "CardResponse":
        return cls(
            id=card.id,
            deck_id=card.deck_id,
            front=card.content.front,
            back=card.content.back,
            state=card.state.value,
            due_at=card.due_at,
            interval_days=card.interval_days,
            ease_factor=card.ease_factor,
            lapse_count=card.lapse_count,
            reps=card.reps,
            tags=list(card.tags),
        )


class DeckResponse(BaseModel):
    id: str
    name: str
    description: str | None
    card_count: int

    @classmethod
    def from_deck(cls, deck: Deck) -> "DeckResponse":
        return cls(
            id=deck.id,
            name=deck.name,
            description=deck.description,
            card_count=len(deck.card_ids),
        )


class CreateDeckRequest(BaseModel):
    name: str
    description: str | None = None
    policy: dict | None = None


class AddCardRequest(BaseModel):
    front: str
    back: str
    image: str | None = None
    tags: list[str] = []


class UpdateDeckRequest(BaseModel):
    name: str | None = None
    description: str | None = None


class EditCardRequest(BaseModel):
    front: str | None = None
    back: str | None = None
    image: str | None = None
    tags: list[str] | None = None


class GradeRequest(BaseModel):
    grade: Literal["again", "hard", "good", "easy"]


class QueueResponse(BaseModel):
    card_ids: list[str]


class StatsResponse(BaseModel):
    deck_id: str
    window_days: float
    total_reviews: int
    successful_reviews: int
    retention_rate: float
    lapse_rate: float
    forecast: list[int]
    grade_counts: dict[str, int]
    state_counts: dict[str, int]


# ---------- Endpoints ----------


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Simple health check to verify server is reachable.
    """
    return HealthResponse(status="ok", version=VERSION, uptime_seconds=time.time() - start_time)


@app.get("/version")
async def get_version():
    return {"version": VERSION}


@app.get("/decks", response_model=list[DeckResponse])
def list_decks(scheduler: SchedulerService = Depends(get_scheduler)):
    return [DeckResponse.from_deck(d) for d in scheduler.list_decks()]


@app.post("/decks", response_model=DeckResponse, status_code=201)
def create_deck(req: CreateDeckRequest, scheduler: SchedulerService = Depends(get_scheduler)):
    from cadence.application.importer import parse_policy

    try:
        policy = parse_policy(req.policy)
        deck = scheduler.create_deck(req.name, _now(), policy=policy, description=req.description)
    except SchedulerError as e:
        raise _http_error(e) from e
    return DeckResponse.from_deck(deck)


@app.get("/decks/{deck_id}", response_model=DeckResponse)
def get_deck(deck_id: str, scheduler: SchedulerService = Depends(get_scheduler)):
    try:
        return DeckResponse.from_deck(scheduler.get_deck(deck_id))
    except SchedulerError as e:
        raise _http_error(e) from e


@app.patch("/decks/{deck_id}", response_model=DeckResponse)
def update_deck(
    deck_id: str,
    req: UpdateDeckRequest,
    scheduler: SchedulerService = Depends(get_scheduler),
):
    try:
        deck = scheduler.update_deck(deck_id, name=req.name, description=req.description)
    except SchedulerError as e:
        raise _http_error(e) from e
    return DeckResponse.from_deck(deck)


@app.post("/decks/{deck_id}/cards", response_model=CardResponse, status_code=201)
def add_card(
    deck_id: str,
    req: AddCardRequest,
    scheduler: SchedulerService = Depends(get_scheduler),
):
    content = make_content(req.front, req.back, req.image)
    try:
        card = scheduler.add_card(deck_id, content, _now(), tags=req.tags)
    except SchedulerError as e:
        raise _http_error(e) from e
    return CardResponse.from_card(card)


@app.get("/decks/{deck_id}/stats", response_model=StatsResponse)
def deck_stats(
    deck_id: str,
    window_days: int = Query(30, ge=1),
    scheduler: SchedulerService = Depends(get_scheduler),
):
    """
    Retention, lapse rate and due forecast for a deck.
    """
    try:
        report = scheduler.stats(deck_id, _now(), timedelta(days=window_days))
    except SchedulerError as e:
        raise _http_error(e) from e
    return StatsResponse(
        deck_id=report.deck_id,
        window_days=report.window_days,
        total_reviews=report.total_reviews,
        successful_reviews=report.successful_reviews,
        retention_rate=report.retention_rate,
        lapse_rate=report.lapse_rate,
        forecast=report.forecast,
        grade_counts=report.grade_counts,
        state_counts=report.state_counts,
    )


@app.get("/cards/{card_id}", response_model=CardResponse)
def get_card(card_id: str, scheduler: SchedulerService = Depends(get_scheduler)):
    try:
        return CardResponse.from_card(scheduler.get_card(card_id))
    except SchedulerError as e:
        raise _http_error(e) from e


@app.patch("/cards/{card_id}", response_model=CardResponse)
def edit_card(
    card_id: str,
    req: EditCardRequest,
    scheduler: SchedulerService = Depends(get_scheduler),
):
    """
    Edit a card's content or tags. Its schedule is unchanged.
    """
    try:
        content = None
        if req.front is not None or req.back is not None or req.image:
            content = revise_content(
                scheduler.get_card(card_id).content,
                front=req.front,
                back=req.back,
                image_path=req.image,
            )
        card = scheduler.edit_card(card_id, content=content, tags=req.tags)
    except SchedulerError as e:
        raise _http_error(e) from e
    return CardResponse.from_card(card)


@app.post("/cards/{card_id}/grade", response_model=CardResponse)
def grade_card(
    card_id: str,
    req: GradeRequest,
    scheduler: SchedulerService = Depends(get_scheduler),
):
    logger.info(f"Grade requested via API: {card_id} {req.grade}")
    try:
        card = scheduler.grade_card(card_id, Grade[req.grade.upper()], _now())
    except SchedulerError as e:
        raise _http_error(e) from e
    return CardResponse.from_card(card)


@app.get("/cards/{card_id}/due")
def next_due(card_id: str, scheduler: SchedulerService = Depends(get_scheduler)):
    try:
        return {"card_id": card_id, "due_at": scheduler.next_due(card_id).isoformat()}
    except SchedulerError as e:
        raise _http_error(e) from e


@app.get("/queue", response_model=QueueResponse)
def get_queue(
    deck_id: list[str] = Query(...),
    limit: int | None = Query(None, ge=1),
    scheduler: SchedulerService = Depends(get_scheduler),
):
    """
    Review queue across the given decks, in priority order.
    """
    card_ids: list[str] = []
    for card_id in scheduler.iter_queue(deck_id, _now()):
        if limit is not None and len(card_ids) >= limit:
            break
        card_ids.append(card_id)
    return QueueResponse(card_ids=card_ids)
