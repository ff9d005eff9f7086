"""
Ports (interfaces) for persistence.

These define the contract that infrastructure adapters must implement.
The scheduler service depends on this abstraction, not on a storage format.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence

from .models import Card, CollectionSnapshot, Deck, ReviewEvent


class CollectionRepository(ABC):
    """
    Port for loading and durably storing cards, decks and review events.

    Implementations:
        - InMemoryRepository: Keeps everything in process memory.
        - JsonFileRepository: Stores the collection as a single JSON document.
    """

    @abstractmethod
    def load(self) -> CollectionSnapshot:
        """
        Load the full card set, all decks and the complete review log.
        """
        pass

    @abstractmethod
    def save_grading(self, card: Card, event: ReviewEvent) -> None:
        """
        Durably store an updated card together with its review event.

        Must either persist both or raise; the scheduler only publishes the
        grading once this returns.
        """
        pass

    @abstractmethod
    def save_card(self, card: Card) -> None:
        pass

    @abstractmethod
    def save_deck(self, deck: Deck) -> None:
        pass

    @abstractmethod
    def save_records(self, cards: Sequence[Card], decks: Sequence[Deck]) -> None:
        """
        Durably store several cards and decks as one write.

        Used for changes that touch more than one record (adding a card
        updates its deck's card list). Must either persist all of them or
        raise, leaving the stored collection as it was.
        """
        pass
