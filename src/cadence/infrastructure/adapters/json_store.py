"""
JSON File Repository: infrastructure adapter for a single-file collection.

Implements CollectionRepository by keeping a mirror of the collection and
rewriting the whole document on every save. Writes go to a temporary file
in the same directory and are moved into place with os.replace, so a crash
never leaves a truncated collection behind.
"""

import logging
import os
import tempfile
import threading
from collections.abc import Sequence
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from cadence.domain.models import Card, CollectionSnapshot, Deck, ReviewEvent
from cadence.domain.ports import CollectionRepository

logger = logging.getLogger(__name__)

SNAPSHOT_ADAPTER = TypeAdapter(CollectionSnapshot)


def dump_snapshot(snapshot: CollectionSnapshot) -> bytes:
    return SNAPSHOT_ADAPTER.dump_json(snapshot, indent=2)


def parse_snapshot(data: bytes | str) -> CollectionSnapshot:
    return SNAPSHOT_ADAPTER.validate_json(data)


class JsonFileRepository(CollectionRepository):
    """
    Stores cards, decks and the review log as one JSON document.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._cards: dict[str, Card] | None = None
        self._decks: dict[str, Deck] = {}
        self._events: list[ReviewEvent] = []

    def load(self) -> CollectionSnapshot:
        with self._lock:
            snapshot = self._read()
            self._cards = {c.id: c for c in snapshot.cards}
            self._decks = {d.id: d for d in snapshot.decks}
            self._events = list(snapshot.events)
            return snapshot

    def save_grading(self, card: Card, event: ReviewEvent) -> None:
        with self._lock:
            self._ensure_loaded()
            self._commit(
                cards={**self._cards, card.id: card},
                decks=self._decks,
                events=[*self._events, event],
            )

    def save_card(self, card: Card) -> None:
        with self._lock:
            self._ensure_loaded()
            self._commit(
                cards={**self._cards, card.id: card}, decks=self._decks, events=self._events
            )

    def save_deck(self, deck: Deck) -> None:
        with self._lock:
            self._ensure_loaded()
            self._commit(
                cards=self._cards, decks={**self._decks, deck.id: deck}, events=self._events
            )

    def save_records(self, cards: Sequence[Card], decks: Sequence[Deck]) -> None:
        with self._lock:
            self._ensure_loaded()
            self._commit(
                cards={**self._cards, **{c.id: c for c in cards}},
                decks={**self._decks, **{d.id: d for d in decks}},
                events=self._events,
            )

    def _ensure_loaded(self) -> None:
        if self._cards is None:
            snapshot = self._read()
            self._cards = {c.id: c for c in snapshot.cards}
            self._decks = {d.id: d for d in snapshot.decks}
            self._events = list(snapshot.events)

    def _read(self) -> CollectionSnapshot:
        if not self.path.exists():
            logger.info(f"No collection at {self.path}; starting empty")
            return CollectionSnapshot()
        try:
            return parse_snapshot(self.path.read_bytes())
        except ValidationError as e:
            logger.error(f"Corrupt collection file {self.path}: {e}")
            raise

    def _commit(
        self,
        cards: dict[str, Card],
        decks: dict[str, Deck],
        events: list[ReviewEvent],
    ) -> None:
        """Write the new state to disk, then adopt it. On failure nothing changes."""
        snapshot = CollectionSnapshot(
            cards=tuple(cards.values()),
            decks=tuple(decks.values()),
            events=tuple(events),
        )
        self._write(dump_snapshot(snapshot))
        self._cards, self._decks, self._events = dict(cards), dict(decks), list(events)

    def _write(self, payload: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".collection-", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
