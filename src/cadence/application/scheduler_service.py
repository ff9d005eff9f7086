"""
Scheduler service: the single owner of the in-memory collection.

Implements the operations collaborators call (grade_card, next_due,
build_queue, stats) on top of the pure scheduling algorithm and queue
builder.

Concurrency model:
    - Each card has its own lock; only one grading (or other mutation) per
      card is in flight at a time.
    - The collection lock guards the card/deck/event maps. Reads copy a
      snapshot under it; writes replace records under it. No observer sees
      a half-updated card.
    - The algorithm runs outside the collection lock, and the repository is
      written before the result is published, so a failure anywhere leaves
      the prior state intact.
"""

import logging
import threading
from collections.abc import Iterator, Sequence
from dataclasses import replace
from datetime import datetime, timedelta

from cadence.application import scheduling
from cadence.application.config import AppConfig
from cadence.application.id_service import generate_card_id, generate_deck_id
from cadence.application.queue_builder import QueueSettings, iter_queue
from cadence.application.stats import (
    CardMetrics,
    MetricsCalculator,
    RetentionReport,
    StatsService,
)
from cadence.application.utils.clock import ensure_aware
from cadence.domain.constants import DEFAULT_STATS_WINDOW_DAYS
from cadence.domain.errors import NotFound, SchedulerError
from cadence.domain.models import (
    Card,
    CardContent,
    CollectionSnapshot,
    Deck,
    DeckPolicy,
    Grade,
    ReviewEvent,
)
from cadence.domain.ports import CollectionRepository

logger = logging.getLogger(__name__)


class SchedulerService:
    def __init__(self, repository: CollectionRepository, config: AppConfig | None = None):
        """
        Args:
            repository: Persistence port; written before any change is published.
            config: Resolved application config; defaults if not provided.
        """
        self._repo = repository
        self.config = config or AppConfig()
        self.queue_settings = QueueSettings.from_config(self.config)
        self._calc = MetricsCalculator()
        self._stats = StatsService(self._calc, self.queue_settings)

        self._lock = threading.RLock()
        self._card_locks: dict[str, threading.Lock] = {}
        self._cards: dict[str, Card] = {}
        self._decks: dict[str, Deck] = {}
        self._events: list[ReviewEvent] = []
        self._loaded = False

    # ---------- Loading ----------

    def load(self) -> "SchedulerService":
        """Load the full collection from the repository. Returns self."""
        snapshot = self._repo.load()
        with self._lock:
            self._cards = {c.id: c for c in snapshot.cards}
            self._decks = {d.id: d for d in snapshot.decks}
            self._events = sorted(snapshot.events, key=lambda e: e.timestamp)
            self._loaded = True
        logger.info(
            f"Loaded {len(self._cards)} cards, {len(self._decks)} decks, "
            f"{len(self._events)} review events"
        )
        return self

    def snapshot(self) -> CollectionSnapshot:
        with self._lock:
            return CollectionSnapshot(
                cards=tuple(self._cards.values()),
                decks=tuple(self._decks.values()),
                events=tuple(self._events),
            )

    # ---------- Grading ----------

    def grade_card(self, card_id: str, grade: Grade, now: datetime) -> Card:
        """
        Grade a card and publish the result.

        Args:
            card_id: Card being graded.
            grade: Again/Hard/Good/Easy.
            now: Injected clock reading.

        Returns:
            The updated card, already persisted.

        Raises:
            NotFound: Unknown card or owning deck.
            ClockSkew: now precedes the card's last review.
            PolicyViolation: The deck policy is invalid.
        """
        with self._card_lock(card_id):
            with self._lock:
                card = self._require_card(card_id)
                deck = self._require_deck(card.deck_id)

            updated, event = scheduling.grade(
                card, deck.policy, grade, now, self.config.scheduling
            )

            try:
                self._repo.save_grading(updated, event)
            except Exception as e:
                logger.error(f"Failed to persist grading of {card_id}: {e}")
                raise

            with self._lock:
                self._cards[card_id] = updated
                self._events.append(event)

        return updated

    def next_due(self, card_id: str) -> datetime:
        with self._lock:
            return self._require_card(card_id).due_at

    def reschedule(self, card_id: str, due_at: datetime) -> Card:
        """Explicitly move a card's due date, outside of grading."""
        with self._card_lock(card_id):
            with self._lock:
                card = replace(self._require_card(card_id), due_at=ensure_aware(due_at))
            self._repo.save_card(card)
            with self._lock:
                self._cards[card_id] = card
        logger.info(f"Rescheduled {card_id} to {card.due_at.isoformat()}")
        return card

    # ---------- Queue ----------

    def iter_queue(self, deck_ids: Sequence[str], now: datetime) -> Iterator[str]:
        """
        Lazily yield card ids due for review across the given decks.

        The queue is computed from a snapshot taken now; stop iterating at
        any point to cancel. Unknown deck ids are skipped with a warning.
        """
        with self._lock:
            self._require_loaded()
            decks = []
            for deck_id in deck_ids:
                deck = self._decks.get(deck_id)
                if deck is None:
                    logger.warning(f"Queue requested for unknown deck {deck_id}; skipping")
                    continue
                decks.append(deck)
            cards = dict(self._cards)
            events = tuple(self._events)

        return iter_queue(decks, cards, events, now, self.queue_settings)

    def build_queue(self, deck_ids: Sequence[str], now: datetime) -> list[str]:
        return list(self.iter_queue(deck_ids, now))

    # ---------- Statistics ----------

    def stats(
        self,
        deck_id: str,
        now: datetime,
        window: timedelta = timedelta(days=DEFAULT_STATS_WINDOW_DAYS),
    ) -> RetentionReport:
        """Retention report for one deck over (now - window, now]."""
        with self._lock:
            self._require_deck(deck_id)
            cards = list(self._cards.values())
            events = list(self._events)
        return self._stats.report(deck_id, cards, events, window, ensure_aware(now))

    def card_metrics(self, card_id: str, now: datetime) -> CardMetrics:
        with self._lock:
            card = self._require_card(card_id)
            events = [e for e in self._events if e.card_id == card_id]
        return self._calc.card_metrics(card, events, ensure_aware(now))

    def history(self, card_id: str) -> list[ReviewEvent]:
        with self._lock:
            self._require_card(card_id)
            return [e for e in self._events if e.card_id == card_id]

    def cards_by_last_grade(self, deck_id: str, grade: Grade) -> list[Card]:
        """Cards in a deck whose most recent grading was `grade`."""
        with self._lock:
            deck = self._require_deck(deck_id)
            last: dict[str, Grade] = {}
            for event in self._events:
                last[event.card_id] = event.grade
            return [
                self._cards[cid]
                for cid in deck.card_ids
                if cid in self._cards and last.get(cid) is grade
            ]

    # ---------- Decks and cards ----------

    def create_deck(
        self,
        name: str,
        now: datetime,
        policy: DeckPolicy | None = None,
        description: str | None = None,
    ) -> Deck:
        with self._lock:
            self._require_loaded()
        policy = (policy or DeckPolicy()).validate()
        deck = Deck(
            id=generate_deck_id(),
            name=name,
            created_at=ensure_aware(now),
            policy=policy,
            description=description,
        )
        self._repo.save_deck(deck)
        with self._lock:
            self._decks[deck.id] = deck
        logger.info(f"Created deck {deck.id} ({name})")
        return deck

    def update_policy(self, deck_id: str, policy: DeckPolicy) -> Deck:
        policy.validate()
        with self._lock:
            deck = replace(self._require_deck(deck_id), policy=policy)
            self._repo.save_deck(deck)
            self._decks[deck_id] = deck
        return deck

    def update_deck(
        self,
        deck_id: str,
        name: str | None = None,
        description: str | None = None,
    ) -> Deck:
        """Rename a deck or change its description. Policy and cards are untouched."""
        if name is not None and not name.strip():
            raise SchedulerError("Deck name must not be empty")
        with self._lock:
            deck = self._require_deck(deck_id)
            changes = {}
            if name is not None:
                changes["name"] = name
            if description is not None:
                changes["description"] = description
            if not changes:
                return deck
            deck = replace(deck, **changes)
            self._repo.save_deck(deck)
            self._decks[deck_id] = deck
        logger.info(f"Updated deck {deck_id}: {', '.join(changes)}")
        return deck

    def add_card(
        self,
        deck_id: str,
        content: CardContent,
        now: datetime,
        tags: Sequence[str] = (),
    ) -> Card:
        """Import a new card at the end of the deck, due immediately."""
        return self.add_cards(deck_id, [(content, tags)], now)[0]

    def add_cards(
        self,
        deck_id: str,
        items: Sequence[tuple[CardContent, Sequence[str]]],
        now: datetime,
    ) -> list[Card]:
        """
        Import several cards into one deck with a single repository write.

        Args:
            deck_id: Target deck.
            items: (content, tags) pairs, in the order the cards should be studied.
            now: Creation time; every card is due immediately.

        Returns:
            The new cards, already persisted.
        """
        now = ensure_aware(now)
        with self._lock:
            deck = self._require_deck(deck_id)
            if not items:
                return []
            start = max((c.position for c in self._cards.values()), default=-1) + 1
            cards = [
                Card(
                    id=generate_card_id(),
                    deck_id=deck_id,
                    content=content,
                    position=start + offset,
                    created_at=now,
                    due_at=now,
                    ease_factor=self.config.scheduling.starting_ease,
                    tags=tuple(tags),
                )
                for offset, (content, tags) in enumerate(items)
            ]
            deck = replace(deck, card_ids=(*deck.card_ids, *(c.id for c in cards)))
            self._repo.save_records(cards=cards, decks=[deck])
            self._cards.update((c.id, c) for c in cards)
            self._decks[deck_id] = deck
        return cards

    def edit_card(
        self,
        card_id: str,
        content: CardContent | None = None,
        tags: Sequence[str] | None = None,
    ) -> Card:
        """Replace a card's content or tags. Its scheduling state is kept."""
        with self._card_lock(card_id):
            with self._lock:
                card = self._require_card(card_id)
            changes = {}
            if content is not None:
                changes["content"] = content
            if tags is not None:
                changes["tags"] = tuple(tags)
            if not changes:
                return card
            card = replace(card, **changes)
            self._repo.save_card(card)
            with self._lock:
                self._cards[card_id] = card
        logger.info(f"Edited card {card_id}: {', '.join(changes)}")
        return card

    def move_card(self, card_id: str, deck_id: str) -> Card:
        """Move a card to another deck; its scheduling state is kept."""
        with self._card_lock(card_id):
            with self._lock:
                card = self._require_card(card_id)
                target = self._require_deck(deck_id)
                if card.deck_id == deck_id:
                    return card
                source = self._decks.get(card.deck_id)

                moved = replace(card, deck_id=deck_id)
                decks = [replace(target, card_ids=(*target.card_ids, card_id))]
                if source is not None:
                    decks.append(
                        replace(source, card_ids=tuple(c for c in source.card_ids if c != card_id))
                    )
                self._repo.save_records(cards=[moved], decks=decks)

                self._cards[card_id] = moved
                self._decks.update((d.id, d) for d in decks)
        logger.info(f"Moved {card_id} to deck {deck_id}")
        return moved

    def get_card(self, card_id: str) -> Card:
        with self._lock:
            return self._require_card(card_id)

    def get_deck(self, deck_id: str) -> Deck:
        with self._lock:
            return self._require_deck(deck_id)

    def find_deck(self, name: str) -> Deck | None:
        with self._lock:
            return next((d for d in self._decks.values() if d.name == name), None)

    def list_decks(self) -> list[Deck]:
        with self._lock:
            return list(self._decks.values())

    def cards_in_deck(self, deck_id: str) -> list[Card]:
        with self._lock:
            deck = self._require_deck(deck_id)
            return [self._cards[cid] for cid in deck.card_ids if cid in self._cards]

    # ---------- Internals ----------

    def _card_lock(self, card_id: str) -> threading.Lock:
        with self._lock:
            return self._card_locks.setdefault(card_id, threading.Lock())

    def _require_loaded(self) -> None:
        if not self._loaded:
            raise SchedulerError("Collection not loaded; call load() first")

    def _require_card(self, card_id: str) -> Card:
        self._require_loaded()
        card = self._cards.get(card_id)
        if card is None:
            raise NotFound("card", card_id)
        return card

    def _require_deck(self, deck_id: str) -> Deck:
        self._require_loaded()
        deck = self._decks.get(deck_id)
        if deck is None:
            raise NotFound("deck", deck_id)
        return deck
