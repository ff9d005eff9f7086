"""Service for generating stable ids for cards and decks."""

from ulid import ULID


def generate_card_id() -> str:
    """Generate a stable card ID using ULID."""
    return f"card_{ULID()}"


def generate_deck_id() -> str:
    """Generate a stable deck ID using ULID."""
    return f"deck_{ULID()}"
