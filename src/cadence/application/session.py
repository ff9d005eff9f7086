"""
Review session: pull one card at a time from a live queue.

Grading the head card can change queue membership (a lapsed card may
re-enter the learning tier within the same session), so the queue is
recomputed on every pull instead of being materialized once.
"""

import logging
from collections.abc import Sequence
from datetime import datetime

from cadence.application.scheduler_service import SchedulerService
from cadence.domain.errors import NotFound

logger = logging.getLogger(__name__)


class ReviewSession:
    """
    A restartable, lazily evaluated review session over a set of decks.

    A card handed out by next_card() is not handed out again in the same
    pass until it has been graded (its reps count changed). restart()
    begins a new pass.
    """

    def __init__(self, scheduler: SchedulerService, deck_ids: Sequence[str]):
        self.scheduler = scheduler
        self.deck_ids = list(deck_ids)
        self._served: dict[str, int] = {}

    def next_card(self, now: datetime) -> str | None:
        """Return the next card id to show, or None when the session is done."""
        for card_id in self.scheduler.iter_queue(self.deck_ids, now):
            if self._is_fresh(card_id):
                try:
                    self._served[card_id] = self.scheduler.get_card(card_id).reps
                except NotFound:
                    logger.warning(f"Card {card_id} vanished mid-session; skipping")
                    continue
                return card_id
        return None

    def remaining(self, now: datetime) -> int:
        """Number of cards still to be served in this pass."""
        queue = self.scheduler.iter_queue(self.deck_ids, now)
        return sum(1 for cid in queue if self._is_fresh(cid))

    def restart(self) -> None:
        self._served.clear()

    def _is_fresh(self, card_id: str) -> bool:
        served_reps = self._served.get(card_id)
        if served_reps is None:
            return True
        try:
            return self.scheduler.get_card(card_id).reps != served_reps
        except NotFound:
            return False
