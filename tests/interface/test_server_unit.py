from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from cadence.consts import VERSION
from cadence.domain.models import DeckPolicy, Grade, TextContent
from cadence.server import app, get_scheduler


@pytest.fixture
def client(scheduler):
    app.dependency_overrides[get_scheduler] = lambda: scheduler
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def deck(scheduler):
    return scheduler.create_deck("Spanish", datetime.now(timezone.utc))


@pytest.fixture
def card(scheduler, deck):
    content = TextContent(front="hola", back="hello")
    return scheduler.add_card(deck.id, content, datetime.now(timezone.utc))


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["version"] == VERSION


def test_get_version(client):
    response = client.get("/version")
    assert response.status_code == 200
    assert response.json() == {"version": VERSION}


# --- Decks ---


def test_create_and_list_decks(client):
    response = client.post("/decks", json={"name": "French", "policy": {"new_cards_per_day": 5}})
    assert response.status_code == 201
    deck_id = response.json()["id"]

    response = client.get("/decks")
    assert response.status_code == 200
    assert [d["id"] for d in response.json()] == [deck_id]


def test_create_deck_invalid_policy(client):
    response = client.post("/decks", json={"name": "Bad", "policy": {"new_cards_per_day": -1}})
    assert response.status_code == 422
    assert "new_cards_per_day" in response.json()["detail"]


def test_get_unknown_deck(client):
    response = client.get("/decks/deck_missing")
    assert response.status_code == 404


def test_add_card(client, deck):
    response = client.post(
        f"/decks/{deck.id}/cards", json={"front": "perro", "back": "dog", "tags": ["animal"]}
    )
    assert response.status_code == 201
    data = response.json()
    assert data["state"] == "new"
    assert data["tags"] == ["animal"]


def test_rename_deck(client, deck):
    response = client.patch(f"/decks/{deck.id}", json={"name": "Espanol", "description": "vocab"})
    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "Espanol"
    assert data["description"] == "vocab"

    assert client.get(f"/decks/{deck.id}").json()["name"] == "Espanol"


def test_rename_deck_empty_name(client, deck):
    response = client.patch(f"/decks/{deck.id}", json={"name": ""})
    assert response.status_code == 400


def test_rename_unknown_deck(client):
    response = client.patch("/decks/deck_missing", json={"name": "x"})
    assert response.status_code == 404


# --- Cards ---


def test_grade_card(client, card):
    response = client.post(f"/cards/{card.id}/grade", json={"grade": "easy"})
    assert response.status_code == 200
    data = response.json()
    assert data["state"] == "learning"
    assert data["reps"] == 1

    response = client.get(f"/cards/{card.id}/due")
    assert response.status_code == 200
    assert response.json()["due_at"].startswith(data["due_at"][:10])


def test_grade_card_single_step_deck_graduates(client, scheduler):
    policy = DeckPolicy(learning_steps=(timedelta(minutes=10),))
    deck = scheduler.create_deck("Quick", datetime.now(timezone.utc), policy=policy)
    card = scheduler.add_card(deck.id, TextContent(front="uno", back="one"), deck.created_at)

    response = client.post(f"/cards/{card.id}/grade", json={"grade": "easy"})
    assert response.status_code == 200
    assert response.json()["state"] == "review"
    assert response.json()["interval_days"] == pytest.approx(policy.easy_interval, rel=0.06)


def test_edit_card(client, scheduler, card):
    client.post(f"/cards/{card.id}/grade", json={"grade": "good"})
    graded = scheduler.get_card(card.id)

    response = client.patch(f"/cards/{card.id}", json={"back": "hi", "tags": ["informal"]})
    assert response.status_code == 200
    data = response.json()
    assert data["front"] == "hola"
    assert data["back"] == "hi"
    assert data["tags"] == ["informal"]
    assert data["state"] == graded.state.value
    assert scheduler.get_card(card.id).due_at == graded.due_at


def test_edit_unknown_card(client):
    response = client.patch("/cards/card_missing", json={"front": "x"})
    assert response.status_code == 404


def test_grade_unknown_card(client):
    response = client.post("/cards/card_missing/grade", json={"grade": "good"})
    assert response.status_code == 404
    assert "card not found" in response.json()["detail"]


def test_grade_invalid_value(client, card):
    response = client.post(f"/cards/{card.id}/grade", json={"grade": "meh"})
    assert response.status_code == 422


def test_grade_clock_skew(client, scheduler, card):
    future = datetime.now(timezone.utc) + timedelta(days=1)
    scheduler.grade_card(card.id, Grade.GOOD, future)

    response = client.post(f"/cards/{card.id}/grade", json={"grade": "good"})
    assert response.status_code == 409


# --- Queue and stats ---


def test_queue(client, scheduler, deck, card):
    second = scheduler.add_card(deck.id, TextContent(front="b", back="b"), card.created_at)

    response = client.get("/queue", params={"deck_id": [deck.id]})
    assert response.status_code == 200
    assert response.json()["card_ids"] == [card.id, second.id]

    response = client.get("/queue", params={"deck_id": [deck.id], "limit": 1})
    assert response.json()["card_ids"] == [card.id]


def test_queue_requires_deck(client):
    response = client.get("/queue")
    assert response.status_code == 422


def test_stats(client, deck, card):
    client.post(f"/cards/{card.id}/grade", json={"grade": "good"})

    response = client.get(f"/decks/{deck.id}/stats", params={"window_days": 7})
    assert response.status_code == 200
    data = response.json()
    assert data["total_reviews"] == 1
    assert data["retention_rate"] == 1.0
    assert data["window_days"] == 7.0


def test_stats_empty_log(client, deck):
    response = client.get(f"/decks/{deck.id}/stats")
    assert response.status_code == 200
    assert response.json()["retention_rate"] == 0.0


def test_stats_unknown_deck(client):
    response = client.get("/decks/deck_missing/stats")
    assert response.status_code == 404
