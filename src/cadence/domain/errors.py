"""
Error taxonomy for the scheduler.

Every failure surfaced to collaborators is one of these types. None of them
is retried internally.
"""


class SchedulerError(Exception):
    """Base class for all scheduler errors."""


class InvalidState(SchedulerError):
    """A (state, grade) pair with no defined transition."""


class ClockSkew(SchedulerError):
    """The supplied clock reading precedes the card's last review."""

    def __init__(self, card_id: str, now, last_reviewed_at):
        self.card_id = card_id
        self.now = now
        self.last_reviewed_at = last_reviewed_at
        super().__init__(
            f"Card {card_id}: now={now.isoformat()} precedes last review "
            f"at {last_reviewed_at.isoformat()}"
        )


class PolicyViolation(SchedulerError):
    """Deck policy values outside their valid ranges."""


class NotFound(SchedulerError):
    """Unknown card or deck id."""

    def __init__(self, kind: str, ident: str):
        self.kind = kind
        self.ident = ident
        super().__init__(f"{kind} not found: {ident}")
