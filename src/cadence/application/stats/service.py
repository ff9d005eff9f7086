"""
Stats Service: application layer orchestrator.

Builds per-deck retention reports from a collection snapshot. Read-only:
it never touches the scheduler's cards or the review log.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from cadence.application.queue_builder import QueueSettings
from cadence.domain.constants import DEFAULT_FORECAST_DAYS
from cadence.domain.models import Card, CardState, ReviewEvent

from .metrics_calculator import MetricsCalculator

logger = logging.getLogger(__name__)


@dataclass
class RetentionReport:
    deck_id: str
    window_days: float
    total_reviews: int = 0
    successful_reviews: int = 0
    retention_rate: float = 0.0
    lapse_rate: float = 0.0
    forecast: list[int] = field(default_factory=list)
    grade_counts: dict[str, int] = field(default_factory=dict)
    state_counts: dict[str, int] = field(default_factory=dict)


class StatsService:
    """
    Application service for deck-level statistics.

    Depends only on a MetricsCalculator; callers hand it the cards and
    events to summarize.
    """

    def __init__(
        self,
        calculator: MetricsCalculator | None = None,
        settings: QueueSettings | None = None,
    ):
        """
        Args:
            calculator: Optional custom calculator; uses default if not provided.
            settings: Study-day settings used to bucket the forecast.
        """
        self._calc = calculator or MetricsCalculator()
        self._settings = settings or QueueSettings()

    def report(
        self,
        deck_id: str,
        cards: Iterable[Card],
        events: Iterable[ReviewEvent],
        window: timedelta,
        now: datetime,
        forecast_days: int = DEFAULT_FORECAST_DAYS,
    ) -> RetentionReport:
        """
        Summarize one deck.

        Args:
            deck_id: Deck to report on; cards and events of other decks are ignored.
            cards: Cards to consider.
            events: Review log to consider.
            window: How far back retention and lapse rates look.
            now: Injected clock reading.
            forecast_days: Number of study days in the due forecast.

        Returns:
            RetentionReport; all zeros for an empty log.
        """
        deck_cards = [c for c in cards if c.deck_id == deck_id]
        deck_events = [e for e in events if e.deck_id == deck_id]

        grade_counts = self._calc.grade_counts(deck_events, window, now)
        total = sum(grade_counts.values())
        successful = total - grade_counts["again"]

        state_counts = {s.value: 0 for s in CardState}
        for card in deck_cards:
            state_counts[card.state.value] += 1

        report = RetentionReport(
            deck_id=deck_id,
            window_days=window.total_seconds() / 86400.0,
            total_reviews=total,
            successful_reviews=successful,
            retention_rate=self._calc.retention_rate(deck_events, window, now),
            lapse_rate=self._calc.lapse_rate(deck_events, window, now),
            forecast=self._calc.forecast(deck_cards, now, forecast_days, self._settings),
            grade_counts=grade_counts,
            state_counts=state_counts,
        )
        logger.debug(f"Stats for {deck_id}: {total} reviews, retention={report.retention_rate:.2f}")
        return report
