"""
Domain models for cards, decks and the review log.

These are pure data structures with no I/O or external dependencies.
All records are frozen: the scheduler replaces a record rather than
mutating it, so an observer never sees a half-updated card.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum, IntEnum
from typing import Literal

from .constants import (
    DEFAULT_INTERVAL_MODIFIER,
    DEFAULT_LAPSE_RATIO,
    DEFAULT_LEARNING_STEPS,
    DEFAULT_NEW_PER_DAY,
    DEFAULT_RELEARNING_STEPS,
    DEFAULT_REVIEWS_PER_DAY,
    EASY_INTERVAL_DAYS,
    GRADUATING_INTERVAL_DAYS,
    MINIMUM_INTERVAL_DAYS,
    MINUTES_PER_DAY,
    STARTING_EASE,
)
from .errors import PolicyViolation


class Grade(IntEnum):
    """Four-button answer grade."""

    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 4

    @property
    def successful(self) -> bool:
        return self is not Grade.AGAIN


class CardState(str, Enum):
    NEW = "new"
    LEARNING = "learning"
    REVIEW = "review"
    LAPSED = "lapsed"


REVIEW_STATES = frozenset({CardState.REVIEW, CardState.LAPSED})


@dataclass(frozen=True)
class TextContent:
    front: str
    back: str
    kind: Literal["text"] = "text"


@dataclass(frozen=True)
class ImageContent:
    front: str
    back: str
    image_path: str
    kind: Literal["image"] = "image"


# Opaque to the scheduler; only collaborators look inside.
CardContent = TextContent | ImageContent


def make_content(front: str, back: str, image_path: str | None = None) -> CardContent:
    if image_path:
        return ImageContent(front=front, back=back, image_path=image_path)
    return TextContent(front=front, back=back)


def revise_content(
    content: CardContent,
    front: str | None = None,
    back: str | None = None,
    image_path: str | None = None,
) -> CardContent:
    """Copy of `content` with the given sides replaced; an image is kept unless replaced."""
    return make_content(
        front if front is not None else content.front,
        back if back is not None else content.back,
        image_path or getattr(content, "image_path", None),
    )


@dataclass(frozen=True)
class Card:
    """
    A flashcard: immutable identity plus scheduling state.

    Attributes:
        id: Stable unique identifier.
        deck_id: Owning deck (back-reference).
        content: Front/back payload, never inspected by the scheduler.
        position: Import order within the collection.
        created_at: When the card was imported.
        due_at: When the card becomes eligible for review.
        state: Scheduling state.
        step_index: Current learning step (only meaningful while learning).
        ease_factor: Interval growth multiplier, floored.
        interval: Days for review/lapsed cards (unrounded), minutes while learning.
        lapse_count: Number of failed recalls of a reviewed card.
        reps: Total completed gradings.
        relearn_interval: Penalized day interval a relearning card returns to.
        last_reviewed_at: Timestamp of the most recent grading.
        tags: Free-form labels.
    """

    id: str
    deck_id: str
    content: CardContent
    position: int
    created_at: datetime
    due_at: datetime
    state: CardState = CardState.NEW
    step_index: int = 0
    ease_factor: float = STARTING_EASE
    interval: float = 0.0
    lapse_count: int = 0
    reps: int = 0
    relearn_interval: float | None = None
    last_reviewed_at: datetime | None = None
    tags: tuple[str, ...] = ()

    @property
    def interval_days(self) -> float:
        """Interval expressed in days regardless of state."""
        if self.state is CardState.LEARNING:
            return self.interval / MINUTES_PER_DAY
        return self.interval

    @property
    def is_relearning(self) -> bool:
        return self.state is CardState.LEARNING and self.relearn_interval is not None

    def is_due(self, now: datetime) -> bool:
        return self.due_at <= now


@dataclass(frozen=True)
class ReviewEvent:
    """
    A single grading, appended to the review log and never rewritten.

    resulting_interval follows the unit rules of Card.interval for
    resulting_state (minutes when learning, days otherwise).
    """

    card_id: str
    deck_id: str
    timestamp: datetime
    grade: Grade
    prior_state: CardState
    resulting_state: CardState
    resulting_interval: float
    resulting_ease: float


@dataclass(frozen=True)
class DeckPolicy:
    learning_steps: tuple[timedelta, ...] = DEFAULT_LEARNING_STEPS
    new_cards_per_day: int = DEFAULT_NEW_PER_DAY
    max_reviews_per_day: int = DEFAULT_REVIEWS_PER_DAY
    interval_modifier: float = DEFAULT_INTERVAL_MODIFIER
    lapse_interval_ratio: float = DEFAULT_LAPSE_RATIO
    lapsed_cards_relearn: bool = False
    relearning_steps: tuple[timedelta, ...] = DEFAULT_RELEARNING_STEPS
    hard_step: timedelta | None = None
    graduating_interval: float = GRADUATING_INTERVAL_DAYS
    easy_interval: float = EASY_INTERVAL_DAYS
    minimum_interval: float = MINIMUM_INTERVAL_DAYS

    def validate(self) -> "DeckPolicy":
        """Raise PolicyViolation if any value is out of range; return self otherwise."""
        problems: list[str] = []

        if not self.learning_steps:
            problems.append("learning_steps must not be empty")
        if any(step <= timedelta(0) for step in self.learning_steps):
            problems.append("learning_steps must be positive durations")
        if not self.relearning_steps:
            problems.append("relearning_steps must not be empty")
        if any(step <= timedelta(0) for step in self.relearning_steps):
            problems.append("relearning_steps must be positive durations")
        if self.hard_step is not None and self.hard_step <= timedelta(0):
            problems.append("hard_step must be a positive duration")
        if self.new_cards_per_day < 0:
            problems.append(f"new_cards_per_day must be >= 0, got {self.new_cards_per_day}")
        if self.max_reviews_per_day < 0:
            problems.append(
                f"max_reviews_per_day must be >= 0, got {self.max_reviews_per_day}"
            )
        if self.interval_modifier <= 0:
            problems.append(f"interval_modifier must be > 0, got {self.interval_modifier}")
        if not 0 <= self.lapse_interval_ratio <= 1:
            problems.append(
                f"lapse_interval_ratio must be within [0, 1], got {self.lapse_interval_ratio}"
            )
        if self.minimum_interval < 1:
            problems.append(f"minimum_interval must be >= 1 day, got {self.minimum_interval}")
        if self.graduating_interval < 1:
            problems.append(
                f"graduating_interval must be >= 1 day, got {self.graduating_interval}"
            )
        if self.easy_interval < self.graduating_interval:
            problems.append("easy_interval must not be shorter than graduating_interval")

        if problems:
            raise PolicyViolation("; ".join(problems))
        return self


@dataclass(frozen=True)
class Deck:
    id: str
    name: str
    created_at: datetime
    policy: DeckPolicy = field(default_factory=DeckPolicy)
    description: str | None = None
    card_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class CollectionSnapshot:
    """Everything the scheduler needs loaded before the first queue build."""

    cards: tuple[Card, ...] = ()
    decks: tuple[Deck, ...] = ()
    events: tuple[ReviewEvent, ...] = ()
