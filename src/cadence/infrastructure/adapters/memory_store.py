"""
In-memory repository, for tests and throwaway sessions.
"""

import threading
from collections.abc import Sequence

from cadence.domain.models import Card, CollectionSnapshot, Deck, ReviewEvent
from cadence.domain.ports import CollectionRepository


class InMemoryRepository(CollectionRepository):
    """Keeps the collection in process memory. Nothing survives a restart."""

    def __init__(self, snapshot: CollectionSnapshot | None = None):
        snapshot = snapshot or CollectionSnapshot()
        self._lock = threading.Lock()
        self.cards: dict[str, Card] = {c.id: c for c in snapshot.cards}
        self.decks: dict[str, Deck] = {d.id: d for d in snapshot.decks}
        self.events: list[ReviewEvent] = list(snapshot.events)

    def load(self) -> CollectionSnapshot:
        with self._lock:
            return CollectionSnapshot(
                cards=tuple(self.cards.values()),
                decks=tuple(self.decks.values()),
                events=tuple(self.events),
            )

    def save_grading(self, card: Card, event: ReviewEvent) -> None:
        with self._lock:
            self.cards[card.id] = card
            self.events.append(event)

    def save_card(self, card: Card) -> None:
        with self._lock:
            self.cards[card.id] = card

    def save_deck(self, deck: Deck) -> None:
        with self._lock:
            self.decks[deck.id] = deck

    def save_records(self, cards: Sequence[Card], decks: Sequence[Deck]) -> None:
        with self._lock:
            self.cards.update((c.id, c) for c in cards)
            self.decks.update((d.id, d) for d in decks)
