"""
Scheduling algorithm for graded cards.

Maps (card, deck policy, grade, now) to the card's next scheduling state and
the review event describing the transition. The module is pure: it never
reads the wall clock or global random state, so identical inputs always
produce identical outputs.

State machine (a new card is treated as standing on learning step 0):

    new/learning --Again--> learning step 0
    new/learning --Hard---> same step (hard_step if the policy defines one)
    new/learning --Good---> next step, or review after the final step
    new/learning --Easy---> next step, or review with the easy interval
    review       --Again--> lapsed (or relearning), interval penalized
    review       --other--> review, interval grown by ease and grade
    lapsed       --Again--> lapsed (or relearning), penalized again
    lapsed       --other--> review from the penalized baseline

Intervals stay floats across reviews; they are rounded to whole days only
when due_at is computed.
"""

import hashlib
import logging
import random
from dataclasses import replace
from datetime import datetime, timedelta

from cadence.application.config import SchedulingParams
from cadence.application.utils.clock import ensure_aware, round_days
from cadence.domain.errors import ClockSkew, InvalidState
from cadence.domain.models import Card, CardState, DeckPolicy, Grade, ReviewEvent

logger = logging.getLogger(__name__)

DEFAULT_PARAMS = SchedulingParams()
SECONDS_PER_DAY = 86400.0


def grade(
    card: Card,
    policy: DeckPolicy,
    rating: Grade,
    now: datetime,
    params: SchedulingParams = DEFAULT_PARAMS,
) -> tuple[Card, ReviewEvent]:
    """
    Apply a grade to a card.

    Args:
        card: Current card record.
        policy: Policy of the card's deck.
        rating: Grade given by the user.
        now: Injected clock reading for this grading.
        params: Algorithm-wide constants.

    Returns:
        Tuple of (updated card, review event). The input card is untouched.

    Raises:
        ClockSkew: If now precedes the card's last review.
        InvalidState: If the state/grade pair has no transition.
        PolicyViolation: If the deck policy is out of range.
    """
    now = ensure_aware(now)
    if card.last_reviewed_at is not None and now < ensure_aware(card.last_reviewed_at):
        raise ClockSkew(card.id, now, card.last_reviewed_at)

    policy.validate()

    try:
        rating = Grade(rating)
    except ValueError as e:
        raise InvalidState(f"Card {card.id}: undefined grade {rating!r}") from e

    transition = _TRANSITIONS.get(card.state)
    if transition is None:
        raise InvalidState(f"Card {card.id}: no transition from state {card.state!r}")

    updated = transition(card, policy, rating, now, params)
    updated = replace(updated, reps=card.reps + 1, last_reviewed_at=now)

    event = ReviewEvent(
        card_id=card.id,
        deck_id=card.deck_id,
        timestamp=now,
        grade=rating,
        prior_state=card.state,
        resulting_state=updated.state,
        resulting_interval=updated.interval,
        resulting_ease=updated.ease_factor,
    )

    logger.debug(
        f"Graded {card.id} {rating.name}: {card.state.value} -> {updated.state.value} "
        f"interval={updated.interval:.2f} ease={updated.ease_factor:.2f}"
    )
    return updated, event


def preview(
    card: Card,
    policy: DeckPolicy,
    now: datetime,
    params: SchedulingParams = DEFAULT_PARAMS,
) -> dict[Grade, datetime]:
    """Due date each grade would produce, for labelling answer buttons."""
    return {g: grade(card, policy, g, now, params)[0].due_at for g in Grade}


def overdue_bonus(card: Card, now: datetime, params: SchedulingParams = DEFAULT_PARAMS) -> float:
    """
    Extra days credited for reviewing a card late.

    bonus = min(overdue_days * overdue_bonus_ratio, overdue_bonus_cap * interval)

    A card recalled after a longer gap than scheduled earns a slightly
    larger next interval. Cards reviewed on time or early get nothing.
    """
    overdue_days = (ensure_aware(now) - ensure_aware(card.due_at)).total_seconds() / SECONDS_PER_DAY
    if overdue_days <= 0:
        return 0.0
    return min(overdue_days * params.overdue_bonus_ratio, params.overdue_bonus_cap * card.interval)


def fuzz_interval(
    card_id: str,
    interval: float,
    now: datetime,
    params: SchedulingParams = DEFAULT_PARAMS,
) -> float:
    """
    Jitter an interval by up to +/- fuzz_factor so cards do not cluster.

    The jitter comes from a generator seeded with a hash of
    (fuzz_seed, card id, now), never from global random state.
    """
    if params.fuzz_factor == 0 or interval < params.fuzz_min_days:
        return interval
    rng = random.Random(_fuzz_seed(card_id, now, params.fuzz_seed))
    return interval * (1.0 + rng.uniform(-params.fuzz_factor, params.fuzz_factor))


def _fuzz_seed(card_id: str, now: datetime, seed: int) -> int:
    key = f"{seed}:{card_id}:{ensure_aware(now).timestamp()!r}"
    return int.from_bytes(hashlib.sha256(key.encode("utf-8")).digest()[:8], "big")


# ---------- Transitions ----------


def _from_learning(
    card: Card, policy: DeckPolicy, rating: Grade, now: datetime, params: SchedulingParams
) -> Card:
    steps = _steps_for(card, policy)
    # Steps may have been shortened since the card entered its current one
    index = 0 if card.state is CardState.NEW else min(card.step_index, len(steps) - 1)

    if rating is Grade.AGAIN:
        return _enter_step(card, steps[0], 0, now)

    if rating is Grade.HARD:
        return _enter_step(card, policy.hard_step or steps[index], index, now)

    # Good and Easy both advance; only the final step graduates
    if index + 1 < len(steps):
        return _enter_step(card, steps[index + 1], index + 1, now)

    return _graduate(card, policy, easy=rating is Grade.EASY, now=now, params=params)


def _from_review(
    card: Card, policy: DeckPolicy, rating: Grade, now: datetime, params: SchedulingParams
) -> Card:
    if rating is Grade.AGAIN:
        return _lapse(card, policy, now, params)

    base = card.interval
    multiplier = {
        Grade.HARD: params.hard_multiplier,
        Grade.GOOD: params.good_multiplier,
        Grade.EASY: params.easy_multiplier,
    }[rating]

    interval = base * card.ease_factor * policy.interval_modifier * multiplier
    if rating is not Grade.HARD:
        interval += overdue_bonus(card, now, params)

    # A successful recall never shortens the interval
    interval = max(interval, base)
    interval = max(base, fuzz_interval(card.id, interval, now, params))

    return _schedule_review(card, interval, _nudge_ease(card.ease_factor, rating, params), now)


def _from_lapsed(
    card: Card, policy: DeckPolicy, rating: Grade, now: datetime, params: SchedulingParams
) -> Card:
    if rating is Grade.AGAIN:
        return _lapse(card, policy, now, params)

    base = card.interval
    interval = base * params.easy_multiplier if rating is Grade.EASY else base
    interval = max(base, fuzz_interval(card.id, interval, now, params))

    return _schedule_review(card, interval, _nudge_ease(card.ease_factor, rating, params), now)


_TRANSITIONS = {
    CardState.NEW: _from_learning,
    CardState.LEARNING: _from_learning,
    CardState.REVIEW: _from_review,
    CardState.LAPSED: _from_lapsed,
}


# ---------- Helpers ----------


def _steps_for(card: Card, policy: DeckPolicy) -> tuple[timedelta, ...]:
    if card.relearn_interval is not None:
        return policy.relearning_steps
    return policy.learning_steps


def _enter_step(card: Card, step: timedelta, index: int, now: datetime) -> Card:
    return replace(
        card,
        state=CardState.LEARNING,
        step_index=index,
        interval=step.total_seconds() / 60.0,
        due_at=now + step,
    )


def _graduate(
    card: Card, policy: DeckPolicy, easy: bool, now: datetime, params: SchedulingParams
) -> Card:
    if card.relearn_interval is not None:
        floor = card.relearn_interval
        interval = floor * params.easy_multiplier if easy else floor
        ease = _clamp_ease(card.ease_factor, params)
    else:
        floor = policy.graduating_interval
        interval = policy.easy_interval if easy else policy.graduating_interval
        ease = params.starting_ease

    interval = max(floor, fuzz_interval(card.id, interval, now, params))
    return _schedule_review(card, interval, ease, now)


def _lapse(card: Card, policy: DeckPolicy, now: datetime, params: SchedulingParams) -> Card:
    penalized = min(
        card.interval,
        max(policy.minimum_interval, card.interval * policy.lapse_interval_ratio),
    )
    ease = _clamp_ease(card.ease_factor - params.lapse_penalty, params)
    lapsed = replace(card, ease_factor=ease, lapse_count=card.lapse_count + 1)

    if policy.lapsed_cards_relearn:
        lapsed = replace(lapsed, relearn_interval=penalized)
        return _enter_step(lapsed, policy.relearning_steps[0], 0, now)

    return replace(
        lapsed,
        state=CardState.LAPSED,
        step_index=0,
        interval=penalized,
        relearn_interval=None,
        due_at=now + timedelta(days=round_days(penalized)),
    )


def _schedule_review(card: Card, interval: float, ease: float, now: datetime) -> Card:
    return replace(
        card,
        state=CardState.REVIEW,
        step_index=0,
        interval=interval,
        ease_factor=ease,
        relearn_interval=None,
        due_at=now + timedelta(days=round_days(interval)),
    )


def _nudge_ease(ease: float, rating: Grade, params: SchedulingParams) -> float:
    if rating is Grade.EASY:
        ease += params.easy_bonus
    elif rating is Grade.HARD:
        ease -= params.hard_penalty
    return _clamp_ease(ease, params)


def _clamp_ease(ease: float, params: SchedulingParams) -> float:
    return max(params.ease_floor, ease)
