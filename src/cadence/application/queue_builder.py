"""
Queue builder for review sessions.

Builds ordered review queues by:
1. Partitioning each deck's cards into learning, due review and new tiers
2. Capping review and new tiers by what was already studied today
3. Interleaving decks round-robin so no deck starves the others

The output is a deterministic function of (decks, cards, events, now).
Cards are never mutated, so a caller may stop consuming the lazy form at
any point.
"""

import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone, tzinfo

from cadence.application.config import AppConfig
from cadence.application.utils.clock import ensure_aware, study_day
from cadence.domain.constants import DAY_ROLLOVER_HOUR, LEARN_AHEAD_MINUTES
from cadence.domain.errors import PolicyViolation
from cadence.domain.models import REVIEW_STATES, Card, CardState, Deck, ReviewEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueueSettings:
    """Study-day and learn-ahead settings used when building a queue."""

    tz: tzinfo = timezone.utc
    rollover_hour: int = DAY_ROLLOVER_HOUR
    learn_ahead: timedelta = timedelta(minutes=LEARN_AHEAD_MINUTES)

    @classmethod
    def from_config(cls, config: AppConfig) -> "QueueSettings":
        return cls(
            tz=config.tz,
            rollover_hour=config.day_rollover_hour,
            learn_ahead=config.learn_ahead,
        )


@dataclass
class DailyCounts:
    """Gradings already logged for one deck on the current study day."""

    new_studied: int = 0
    reviews_studied: int = 0


@dataclass
class DeckQueue:
    """One deck's candidates, each tier already ordered and capped."""

    deck_id: str
    learning: list[Card] = field(default_factory=list)
    due_review: list[Card] = field(default_factory=list)
    new: list[Card] = field(default_factory=list)

    def ordered(self) -> list[str]:
        return [c.id for c in (*self.learning, *self.due_review, *self.new)]

    def __len__(self) -> int:
        return len(self.learning) + len(self.due_review) + len(self.new)


def count_studied_today(
    events: Iterable[ReviewEvent],
    now: datetime,
    settings: QueueSettings,
) -> dict[str, DailyCounts]:
    """
    Count today's new-card and review gradings per deck from the review log.
    """
    today = study_day(now, settings.tz, settings.rollover_hour)
    counts: dict[str, DailyCounts] = {}

    for event in events:
        if _event_day(event, settings) != today:
            continue
        deck_counts = counts.setdefault(event.deck_id, DailyCounts())
        if event.prior_state is CardState.NEW:
            deck_counts.new_studied += 1
        elif event.prior_state in REVIEW_STATES:
            deck_counts.reviews_studied += 1

    return counts


def partition_deck(
    deck: Deck,
    cards: Mapping[str, Card],
    counts: DailyCounts,
    now: datetime,
    settings: QueueSettings,
) -> DeckQueue:
    """
    Split a deck's cards into ordered, capped tiers.

    Cards the deck references but the collection lacks, or that claim a
    different deck, are skipped with a warning.

    Raises:
        PolicyViolation: If the deck policy is invalid.
    """
    policy = deck.policy.validate()
    queue = DeckQueue(deck_id=deck.id)
    horizon = now + settings.learn_ahead

    for card_id in deck.card_ids:
        card = cards.get(card_id)
        if card is None:
            logger.warning(f"Deck {deck.id} references unknown card {card_id}; skipping")
            continue
        if card.deck_id != deck.id:
            logger.warning(
                f"Card {card_id} listed in deck {deck.id} but owned by {card.deck_id}; skipping"
            )
            continue

        if card.state is CardState.LEARNING:
            if card.due_at <= horizon:
                queue.learning.append(card)
        elif card.state in REVIEW_STATES:
            if card.due_at <= now:
                queue.due_review.append(card)
        elif card.state is CardState.NEW:
            queue.new.append(card)

    queue.learning.sort(key=lambda c: (c.due_at, c.position, c.id))
    queue.due_review.sort(key=lambda c: (c.due_at, c.position, c.id))
    queue.new.sort(key=lambda c: (c.position, c.id))

    review_left = max(0, policy.max_reviews_per_day - counts.reviews_studied)
    new_left = max(0, policy.new_cards_per_day - counts.new_studied)
    queue.due_review = queue.due_review[:review_left]
    queue.new = queue.new[:new_left]

    return queue


def iter_queue(
    decks: Sequence[Deck],
    cards: Mapping[str, Card],
    events: Iterable[ReviewEvent],
    now: datetime,
    settings: QueueSettings | None = None,
) -> Iterator[str]:
    """
    Lazily yield card ids in review order.

    Within a deck: learning, then due reviews (oldest due first), then new
    cards (import order). Decks take turns, one card each per round, in the
    order given. Decks with an invalid policy are skipped with a warning.

    Args:
        decks: Decks to draw from, in priority order.
        cards: All cards by id.
        events: The review log (used only for today's caps).
        now: Injected clock reading.
        settings: Study-day settings; UTC with a 4 AM rollover by default.

    Yields:
        Card ids.
    """
    settings = settings or QueueSettings()
    now = ensure_aware(now)
    counts = count_studied_today(events, now, settings)

    lanes: list[Iterator[str]] = []
    seen: set[str] = set()
    for deck in decks:
        if deck.id in seen:
            continue
        seen.add(deck.id)
        studied = counts.get(deck.id, DailyCounts())
        try:
            deck_queue = partition_deck(deck, cards, studied, now, settings)
        except PolicyViolation as e:
            logger.warning(f"Skipping deck {deck.id} ({deck.name}): {e}")
            continue
        if deck_queue:
            lanes.append(iter(deck_queue.ordered()))

    while lanes:
        for lane in list(lanes):
            card_id = next(lane, None)
            if card_id is None:
                lanes.remove(lane)
                continue
            yield card_id


def build_queue(
    decks: Sequence[Deck],
    cards: Mapping[str, Card],
    events: Iterable[ReviewEvent],
    now: datetime,
    settings: QueueSettings | None = None,
) -> list[str]:
    """Materialize the full review queue. See iter_queue for ordering rules."""
    return list(iter_queue(decks, cards, events, now, settings))


def _event_day(event: ReviewEvent, settings: QueueSettings) -> date:
    return study_day(event.timestamp, settings.tz, settings.rollover_hour)
