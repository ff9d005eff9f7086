from datetime import datetime, timedelta, timezone

import pytest

from cadence.application.config import AppConfig, SchedulingParams
from cadence.application.scheduler_service import SchedulerService
from cadence.domain.models import Card, CardState, Deck, DeckPolicy, TextContent
from cadence.infrastructure.adapters.memory_store import InMemoryRepository


@pytest.fixture
def now():
    """Midday UTC, well clear of the 4 AM study-day rollover."""
    return datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def policy():
    return DeckPolicy()


@pytest.fixture
def no_fuzz():
    return SchedulingParams(fuzz_factor=0.0)


@pytest.fixture
def make_card(now):
    """Factory for cards with sensible defaults; override any field by keyword."""

    def _make(card_id="c1", deck_id="d1", position=0, **overrides):
        fields = {
            "id": card_id,
            "deck_id": deck_id,
            "content": TextContent(front=f"front {card_id}", back=f"back {card_id}"),
            "position": position,
            "created_at": now - timedelta(days=30),
            "due_at": now,
        }
        fields.update(overrides)
        return Card(**fields)

    return _make


@pytest.fixture
def review_card(make_card, now):
    return make_card(
        state=CardState.REVIEW,
        interval=10.0,
        ease_factor=2.5,
        reps=5,
        due_at=now,
        last_reviewed_at=now - timedelta(days=10),
    )


@pytest.fixture
def make_deck(now):
    def _make(deck_id="d1", card_ids=(), policy=None, name=None):
        return Deck(
            id=deck_id,
            name=name or f"Deck {deck_id}",
            created_at=now - timedelta(days=60),
            policy=policy or DeckPolicy(),
            card_ids=tuple(card_ids),
        )

    return _make


@pytest.fixture
def app_config(tmp_path):
    return AppConfig(data_file=tmp_path / "collection.json")


@pytest.fixture
def repo():
    return InMemoryRepository()


@pytest.fixture
def scheduler(repo, app_config):
    return SchedulerService(repo, app_config).load()


@pytest.fixture
def mock_home(tmp_path, monkeypatch):
    """Mocks Path.home() to point to a temp dir."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    return home
