import logging
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from cadence.application.queue_builder import (
    DailyCounts,
    QueueSettings,
    build_queue,
    count_studied_today,
    iter_queue,
    partition_deck,
)
from cadence.domain.models import CardState, DeckPolicy, Grade, ReviewEvent


def _event(card_id, deck_id, ts, prior=CardState.NEW, grade=Grade.GOOD):
    return ReviewEvent(
        card_id=card_id,
        deck_id=deck_id,
        timestamp=ts,
        grade=grade,
        prior_state=prior,
        resulting_state=CardState.LEARNING,
        resulting_interval=10.0,
        resulting_ease=2.5,
    )


def _new_cards(make_card, deck_id, count, start=0):
    return [
        make_card(f"{deck_id}-{i}", deck_id=deck_id, position=start + i) for i in range(count)
    ]


def test_tier_priority_within_deck(make_card, make_deck, now):
    cards = [
        make_card("new", position=0),
        make_card("rev", position=1, state=CardState.REVIEW, interval=3.0,
                  due_at=now - timedelta(days=1)),
        make_card("learn", position=2, state=CardState.LEARNING, interval=10.0,
                  due_at=now + timedelta(minutes=5)),
    ]
    deck = make_deck(card_ids=[c.id for c in cards])

    assert build_queue([deck], {c.id: c for c in cards}, [], now) == ["learn", "rev", "new"]


def test_due_reviews_oldest_first(make_card, make_deck, now):
    cards = [
        make_card("a", position=0, state=CardState.REVIEW, due_at=now - timedelta(days=1)),
        make_card("b", position=1, state=CardState.LAPSED, due_at=now - timedelta(days=3)),
        make_card("c", position=2, state=CardState.REVIEW, due_at=now - timedelta(days=2)),
        make_card("future", position=3, state=CardState.REVIEW, due_at=now + timedelta(days=1)),
    ]
    deck = make_deck(card_ids=[c.id for c in cards])

    assert build_queue([deck], {c.id: c for c in cards}, [], now) == ["b", "c", "a"]


def test_new_cards_in_import_order(make_card, make_deck, now):
    cards = [make_card("x", position=2), make_card("y", position=0), make_card("z", position=1)]
    deck = make_deck(card_ids=["x", "y", "z"])

    assert build_queue([deck], {c.id: c for c in cards}, [], now) == ["y", "z", "x"]


def test_learning_horizon(make_card, make_deck, now):
    cards = [
        make_card("soon", state=CardState.LEARNING, due_at=now + timedelta(minutes=15)),
        make_card("later", state=CardState.LEARNING, due_at=now + timedelta(minutes=30)),
    ]
    deck = make_deck(card_ids=["soon", "later"], policy=DeckPolicy(new_cards_per_day=0))

    assert build_queue([deck], {c.id: c for c in cards}, [], now) == ["soon"]


def test_output_is_deterministic(make_card, make_deck, now):
    cards = _new_cards(make_card, "d1", 10) + _new_cards(make_card, "d2", 10)
    decks = [
        make_deck("d1", [c.id for c in cards if c.deck_id == "d1"]),
        make_deck("d2", [c.id for c in cards if c.deck_id == "d2"]),
    ]
    by_id = {c.id: c for c in cards}

    first = build_queue(decks, by_id, [], now)
    second = build_queue(decks, by_id, [], now)
    assert first == second


def test_round_robin_across_decks(make_card, make_deck, now):
    cards = _new_cards(make_card, "a", 3) + _new_cards(make_card, "b", 2, start=3)
    decks = [
        make_deck("a", [c.id for c in cards if c.deck_id == "a"]),
        make_deck("b", [c.id for c in cards if c.deck_id == "b"]),
    ]

    queue = build_queue(decks, {c.id: c for c in cards}, [], now)
    assert queue == ["a-0", "b-0", "a-1", "b-1", "a-2"]


def test_two_decks_only_one_with_cards_due(make_card, make_deck, now):
    policy = DeckPolicy(new_cards_per_day=5)
    due = _new_cards(make_card, "full", 8)
    idle = make_card("idle-0", deck_id="idle", state=CardState.REVIEW,
                     due_at=now + timedelta(days=3))
    decks = [
        make_deck("idle", ["idle-0"], policy=policy),
        make_deck("full", [c.id for c in due], policy=policy),
    ]

    queue = build_queue(decks, {c.id: c for c in [*due, idle]}, [], now)
    assert queue == [f"full-{i}" for i in range(5)]


def test_new_cap_counts_todays_events(make_card, make_deck, now):
    cards = _new_cards(make_card, "d1", 8)
    deck = make_deck("d1", [c.id for c in cards], policy=DeckPolicy(new_cards_per_day=5))
    events = [_event("other", "d1", now - timedelta(hours=1)) for _ in range(3)]

    queue = build_queue([deck], {c.id: c for c in cards}, events, now)
    assert queue == ["d1-0", "d1-1"]


def test_review_cap_counts_todays_events(make_card, make_deck, now):
    cards = [
        make_card(f"r{i}", position=i, state=CardState.REVIEW, due_at=now - timedelta(days=1))
        for i in range(4)
    ]
    deck = make_deck(card_ids=[c.id for c in cards], policy=DeckPolicy(max_reviews_per_day=3))
    events = [_event("x", "d1", now - timedelta(hours=2), prior=CardState.REVIEW)]

    queue = build_queue([deck], {c.id: c for c in cards}, events, now)
    assert queue == ["r0", "r1"]


def test_yesterdays_events_do_not_count(make_card, make_deck, now):
    cards = _new_cards(make_card, "d1", 3)
    deck = make_deck("d1", [c.id for c in cards], policy=DeckPolicy(new_cards_per_day=2))
    events = [_event("old", "d1", now - timedelta(days=1)) for _ in range(5)]

    assert len(build_queue([deck], {c.id: c for c in cards}, events, now)) == 2


def test_study_day_rollover():
    settings = QueueSettings()
    now = datetime(2025, 3, 10, 5, 0, tzinfo=timezone.utc)
    events = [
        _event("a", "d1", datetime(2025, 3, 10, 3, 30, tzinfo=timezone.utc)),
        _event("b", "d1", datetime(2025, 3, 10, 4, 30, tzinfo=timezone.utc)),
    ]

    counts = count_studied_today(events, now, settings)
    assert counts["d1"].new_studied == 1


def test_study_day_uses_timezone():
    settings = QueueSettings(tz=ZoneInfo("America/New_York"))
    # 03:00 UTC on the 11th is 23:00 on the 10th in New York
    now = datetime(2025, 3, 11, 3, 0, tzinfo=timezone.utc)
    events = [_event("a", "d1", datetime(2025, 3, 10, 15, 0, tzinfo=timezone.utc))]

    assert count_studied_today(events, now, settings)["d1"].new_studied == 1


def test_learning_events_do_not_count_toward_caps(now):
    events = [_event("a", "d1", now, prior=CardState.LEARNING)]
    counts = count_studied_today(events, now, QueueSettings())
    assert counts["d1"] == DailyCounts()


def test_invalid_policy_deck_is_skipped(make_card, make_deck, now, caplog):
    bad = make_deck("bad", ["bad-0"], policy=DeckPolicy(new_cards_per_day=-1))
    good = make_deck("good", ["good-0"])
    cards = {
        "bad-0": make_card("bad-0", deck_id="bad"),
        "good-0": make_card("good-0", deck_id="good"),
    }

    with caplog.at_level(logging.WARNING):
        queue = build_queue([bad, good], cards, [], now)

    assert queue == ["good-0"]
    assert "Skipping deck bad" in caplog.text


def test_missing_and_misfiled_cards_are_skipped(make_card, make_deck, now, caplog):
    cards = {
        "ok": make_card("ok", position=0),
        "stray": make_card("stray", deck_id="elsewhere", position=1),
    }
    deck = make_deck(card_ids=["ghost", "ok", "stray"])

    with caplog.at_level(logging.WARNING):
        queue = build_queue([deck], cards, [], now)

    assert queue == ["ok"]
    assert "unknown card ghost" in caplog.text
    assert "owned by elsewhere" in caplog.text


def test_duplicate_deck_ids_are_ignored(make_card, make_deck, now):
    deck = make_deck(card_ids=["c1"])
    assert build_queue([deck, deck], {"c1": make_card()}, [], now) == ["c1"]


def test_iter_queue_is_lazy(make_card, make_deck, now):
    cards = _new_cards(make_card, "d1", 5)
    deck = make_deck("d1", [c.id for c in cards])

    queue = iter_queue([deck], {c.id: c for c in cards}, [], now)
    assert next(queue) == "d1-0"
    queue.close()


def test_partition_deck_applies_caps(make_card, make_deck, now):
    cards = _new_cards(make_card, "d1", 4)
    deck = make_deck("d1", [c.id for c in cards], policy=DeckPolicy(new_cards_per_day=10))

    result = partition_deck(
        deck, {c.id: c for c in cards}, DailyCounts(new_studied=9), now, QueueSettings()
    )
    assert [c.id for c in result.new] == ["d1-0"]
    assert len(result) == 1
