"""
Metrics calculator for deriving insights from cards and the review log.

This is a pure computation module with no I/O. Every method tolerates
empty input and returns zeroed results instead of failing.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from cadence.application.queue_builder import QueueSettings
from cadence.application.utils.clock import ensure_aware, study_day
from cadence.domain.constants import VOLATILITY_WINDOW
from cadence.domain.models import REVIEW_STATES, Card, CardState, Grade, ReviewEvent


@dataclass
class CardMetrics:
    """
    Per-card metrics computed from the card and its own review events.
    """

    card_id: str
    state: CardState
    reps: int
    lapses: int
    ease_factor: float
    interval_days: float

    lapse_rate: float | None  # lapses / reps
    days_overdue: float | None  # Negative if not yet due
    volatility: float | None  # Interval variance over recent reviews
    last_grade: Grade | None


class MetricsCalculator:
    """
    Computes derived metrics from cards and review events.

    Stateless and side-effect free.
    """

    def card_metrics(
        self, card: Card, events: Iterable[ReviewEvent], now: datetime
    ) -> CardMetrics:
        """
        Compute metrics for a single card.

        Args:
            card: The card.
            events: Review events; only those for this card are considered.
            now: Injected clock reading.
        """
        history = sorted(
            (e for e in events if e.card_id == card.id), key=lambda e: e.timestamp
        )
        return CardMetrics(
            card_id=card.id,
            state=card.state,
            reps=card.reps,
            lapses=card.lapse_count,
            ease_factor=card.ease_factor,
            interval_days=card.interval_days,
            lapse_rate=self._compute_lapse_rate(card),
            days_overdue=self._compute_days_overdue(card, now),
            volatility=self._compute_volatility(history),
            last_grade=history[-1].grade if history else None,
        )

    def retention_rate(
        self, events: Iterable[ReviewEvent], window: timedelta, now: datetime
    ) -> float:
        """
        Successful gradings divided by all gradings in (now - window, now].
        """
        windowed = list(self._in_window(events, window, now))
        if not windowed:
            return 0.0
        return sum(1 for e in windowed if e.grade.successful) / len(windowed)

    def lapse_rate(self, events: Iterable[ReviewEvent], window: timedelta, now: datetime) -> float:
        """
        Again gradings of review/lapsed cards divided by all their gradings.
        """
        reviews = [
            e for e in self._in_window(events, window, now) if e.prior_state in REVIEW_STATES
        ]
        if not reviews:
            return 0.0
        return sum(1 for e in reviews if e.grade is Grade.AGAIN) / len(reviews)

    def grade_counts(
        self, events: Iterable[ReviewEvent], window: timedelta, now: datetime
    ) -> dict[str, int]:
        counts = {g.name.lower(): 0 for g in Grade}
        for e in self._in_window(events, window, now):
            counts[e.grade.name.lower()] += 1
        return counts

    def forecast(
        self,
        cards: Iterable[Card],
        now: datetime,
        days: int,
        settings: QueueSettings | None = None,
    ) -> list[int]:
        """
        Count cards due on each of the next `days` study days.

        Derived from current due_at values, not from events. New cards are
        excluded; overdue cards count toward today (index 0).
        """
        if days <= 0:
            return []
        settings = settings or QueueSettings()
        today = study_day(now, settings.tz, settings.rollover_hour)
        buckets = [0] * days

        for card in cards:
            if card.state is CardState.NEW:
                continue
            offset = (study_day(card.due_at, settings.tz, settings.rollover_hour) - today).days
            if offset < days:
                buckets[max(0, offset)] += 1

        return buckets

    def _in_window(
        self, events: Iterable[ReviewEvent], window: timedelta, now: datetime
    ) -> Iterable[ReviewEvent]:
        now = ensure_aware(now)
        start = now - window
        return (e for e in events if start < e.timestamp <= now)

    def _compute_lapse_rate(self, card: Card) -> float | None:
        """
        Compute lapse rate as lapses / total reviews.
        """
        if card.reps == 0:
            return None
        return card.lapse_count / card.reps

    def _compute_volatility(self, history: list[ReviewEvent]) -> float | None:
        """
        Compute variance in day intervals over recent reviews.

        High volatility indicates unstable learning.
        """
        if len(history) < 3:
            return None

        recent = history[-VOLATILITY_WINDOW:]
        intervals = [
            e.resulting_interval
            for e in recent
            if e.resulting_state in REVIEW_STATES and e.resulting_interval > 0
        ]

        if len(intervals) < 2:
            return None

        mean = sum(intervals) / len(intervals)
        return sum((i - mean) ** 2 for i in intervals) / len(intervals)

    def _compute_days_overdue(self, card: Card, now: datetime) -> float | None:
        """
        Compute days overdue (negative if not yet due). None for new cards.
        """
        if card.state is CardState.NEW:
            return None
        return (ensure_aware(now) - card.due_at).total_seconds() / 86400.0
