import json
from datetime import timedelta
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from cadence.application.scheduler_service import SchedulerService
from cadence.domain.models import (
    CardState,
    CollectionSnapshot,
    DeckPolicy,
    Grade,
    ImageContent,
    TextContent,
)
from cadence.infrastructure.adapters.json_store import (
    JsonFileRepository,
    dump_snapshot,
    parse_snapshot,
)


@pytest.fixture
def path(tmp_path):
    return tmp_path / "data" / "collection.json"


def _populate(scheduler, now):
    policy = DeckPolicy(learning_steps=(timedelta(minutes=1), timedelta(minutes=10)))
    spanish = scheduler.create_deck("Spanish", now, policy=policy, description="vocab")
    french = scheduler.create_deck("French", now, policy=DeckPolicy(new_cards_per_day=2))

    for i in range(4):
        scheduler.add_card(spanish.id, TextContent(front=f"es{i}", back="-"), now, tags=["a"])
    for i in range(3):
        content = ImageContent(front=f"fr{i}", back="-", image_path=f"img/{i}.png")
        scheduler.add_card(french.id, content, now)

    cards = scheduler.cards_in_deck(spanish.id)
    scheduler.grade_card(cards[0].id, Grade.EASY, now)
    scheduler.grade_card(cards[0].id, Grade.EASY, now)
    scheduler.grade_card(cards[1].id, Grade.GOOD, now)
    scheduler.grade_card(cards[2].id, Grade.AGAIN, now)
    return [spanish.id, french.id]


def test_missing_file_is_empty_collection(path):
    assert JsonFileRepository(path).load() == CollectionSnapshot()


def test_round_trip_preserves_queue(path, app_config, now):
    original = SchedulerService(JsonFileRepository(path), app_config).load()
    deck_ids = _populate(original, now)
    later = now + timedelta(minutes=5)

    reloaded = SchedulerService(JsonFileRepository(path), app_config).load()

    assert reloaded.snapshot() == original.snapshot()
    assert reloaded.build_queue(deck_ids, later) == original.build_queue(deck_ids, later)


def test_snapshot_codec_round_trip(scheduler, now):
    _populate(scheduler, now)
    snapshot = scheduler.snapshot()

    restored = parse_snapshot(dump_snapshot(snapshot))

    assert restored == snapshot
    card = next(c for c in restored.cards if c.state is CardState.REVIEW)
    assert card.due_at.utcoffset() == timedelta(0)
    assert restored.decks[0].policy.learning_steps[1] == timedelta(minutes=10)


def test_file_is_readable_json(path, app_config, now):
    scheduler = SchedulerService(JsonFileRepository(path), app_config).load()
    _populate(scheduler, now)

    data = json.loads(path.read_text())
    assert {"cards", "decks", "events"} <= set(data)
    assert data["events"][0]["grade"] == Grade.EASY.value
    assert data["cards"][0]["state"] in {s.value for s in CardState}


def test_corrupt_file_raises(path):
    path.parent.mkdir(parents=True)
    path.write_text('{"cards": [{"id": 1}]}')
    with pytest.raises(ValidationError):
        JsonFileRepository(path).load()


def test_failed_write_keeps_previous_file(path, app_config, now):
    repo = JsonFileRepository(path)
    scheduler = SchedulerService(repo, app_config).load()
    deck = scheduler.create_deck("D", now)
    card = scheduler.add_card(deck.id, TextContent(front="q", back="a"), now)
    before = path.read_bytes()

    with patch("cadence.infrastructure.adapters.json_store.os.replace", side_effect=OSError):
        with pytest.raises(OSError):
            scheduler.grade_card(card.id, Grade.GOOD, now)

    assert path.read_bytes() == before
    assert list(path.parent.glob(".collection-*")) == []
    assert scheduler.get_card(card.id) == card

    # Mirror unchanged: the next save must not include the failed grading
    scheduler.grade_card(card.id, Grade.AGAIN, now)
    reloaded = JsonFileRepository(path).load()
    assert len(reloaded.events) == 1
    assert reloaded.events[0].grade is Grade.AGAIN


def test_failed_add_card_never_reaches_disk(path, app_config, now):
    scheduler = SchedulerService(JsonFileRepository(path), app_config).load()
    deck = scheduler.create_deck("D", now)

    with patch("cadence.infrastructure.adapters.json_store.os.replace", side_effect=OSError):
        with pytest.raises(OSError):
            scheduler.add_card(deck.id, TextContent(front="q", back="a"), now)

    # Any later write must not carry the failed card along
    scheduler.create_deck("E", now)
    snapshot = JsonFileRepository(path).load()
    assert snapshot.cards == ()
    assert sum(len(d.card_ids) for d in snapshot.decks) == 0


def test_add_card_does_not_depend_on_separate_deck_write(path, app_config, now):
    repo = JsonFileRepository(path)
    scheduler = SchedulerService(repo, app_config).load()
    deck = scheduler.create_deck("D", now)

    with patch.object(repo, "save_deck", side_effect=OSError):
        card = scheduler.add_card(deck.id, TextContent(front="q", back="a"), now)

    snapshot = JsonFileRepository(path).load()
    assert [c.id for c in snapshot.cards] == [card.id]
    assert sum(len(d.card_ids) for d in snapshot.decks) == len(snapshot.cards)


def test_move_card_is_single_write(path, app_config, now):
    repo = JsonFileRepository(path)
    scheduler = SchedulerService(repo, app_config).load()
    source = scheduler.create_deck("A", now)
    target = scheduler.create_deck("B", now)
    card = scheduler.add_card(source.id, TextContent(front="q", back="a"), now)

    with patch.object(repo, "_write", wraps=repo._write) as write:
        scheduler.move_card(card.id, target.id)
    assert write.call_count == 1

    snapshot = JsonFileRepository(path).load()
    decks = {d.id: d for d in snapshot.decks}
    assert decks[source.id].card_ids == ()
    assert decks[target.id].card_ids == (card.id,)
    assert snapshot.cards[0].deck_id == target.id
