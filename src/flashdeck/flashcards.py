"""Card selection queries: due, new, mixed, custom and note-scoped sets."""
import logging
import random
from datetime import date
from typing import Iterable

from flashdeck.models import CardStatus, Cloze, DeckStats, Flashcard, FrontBack, Review
from flashdeck.settings import StudySettings
from flashdeck.store import CardFilters, CardStore

logger = logging.getLogger(__name__)


class CardRepository:
    """Read/write access to cards and decks for one learner."""

    def __init__(self, store: CardStore, settings: StudySettings | None = None):
        self.store = store
        self.settings = settings or StudySettings()

    def _check_deck(self, deck_id: int | None) -> None:
        if deck_id is not None:
            self.store.get_deck(deck_id)

    def get_due_cards(self, deck_id: int | None = None, limit: int | None = None,
                      today: date | None = None) -> list[Flashcard]:
        """Cards due on or before today, plus every new card; never suspended."""
        self._check_deck(deck_id)
        return self.store.list_cards(CardFilters(
            deck_id=deck_id,
            exclude_suspended=True,
            due_before=today or date.today(),
            include_new=True,
            order_by="next_review",
            limit=limit,
        ))

    def get_new_cards(self, deck_id: int | None = None, limit: int | None = None) -> list[Flashcard]:
        self._check_deck(deck_id)
        return self.store.list_cards(CardFilters(
            deck_id=deck_id,
            status=CardStatus.NEW,
            order_by="created_at",
            limit=self.settings.new_card_limit if limit is None else limit,
        ))

    def get_study_cards(self, deck_id: int | None = None, max_due: int | None = None,
                        max_new: int | None = None, today: date | None = None,
                        rng: random.Random | None = None) -> list[Flashcard]:
        """Due and new cards combined and shuffled."""
        max_due = self.settings.mixed_due_limit if max_due is None else max_due
        max_new = self.settings.mixed_new_limit if max_new is None else max_new
        due = self.get_due_cards(deck_id, limit=max_due, today=today)
        new = self.get_new_cards(deck_id, limit=max_new)
        # New cards are also due, so the two sets overlap.
        seen = {c.id for c in due}
        cards = due + [c for c in new if c.id not in seen]
        (rng or random).shuffle(cards)
        return cards

    def _custom_filters(self, deck_id: int, tags: Iterable[str] | None, due_only: bool,
                        today: date | None) -> CardFilters:
        return CardFilters(
            deck_id=deck_id,
            exclude_suspended=True,
            due_before=(today or date.today()) if due_only else None,
            include_new=True,
            tags=tuple(tags or ()),
            order_by="next_review",
        )

    def get_custom_study_cards(self, deck_id: int, tags: Iterable[str] | None = None,
                               due_only: bool = True, today: date | None = None) -> list[Flashcard]:
        """Cards of one deck matching any of ``tags``, capped at the soonest-due."""
        self.store.get_deck(deck_id)
        filters = self._custom_filters(deck_id, tags, due_only, today)
        filters.limit = self.settings.custom_session_cap
        return self.store.list_cards(filters)

    def get_custom_study_count(self, deck_id: int, tags: Iterable[str] | None = None,
                               due_only: bool = True, today: date | None = None) -> int:
        self.store.get_deck(deck_id)
        return self.store.count_cards(self._custom_filters(deck_id, tags, due_only, today))

    def get_note_due_cards(self, note_id: int, limit: int | None = None,
                           today: date | None = None) -> list[Flashcard]:
        self.store.get_note(note_id)
        return self.store.list_cards(CardFilters(
            note_id=note_id,
            exclude_suspended=True,
            due_before=today or date.today(),
            include_new=True,
            order_by="next_review",
            limit=limit,
        ))

    def deck_stats(self, deck_id: int, today: date | None = None) -> DeckStats:
        self.store.get_deck(deck_id)
        today = today or date.today()
        stats = DeckStats()
        for card in self.store.list_cards(CardFilters(deck_id=deck_id)):
            stats.total += 1
            if card.status == CardStatus.SUSPENDED:
                stats.suspended += 1
                continue
            if card.status == CardStatus.NEW:
                stats.new += 1
            elif card.status == CardStatus.LEARNING:
                stats.learning += 1
            elif card.status == CardStatus.MATURE:
                stats.mature += 1
            if card.is_due(today):
                stats.due += 1
        return stats

    # --- card management ---

    def create_card(self, deck_id: int, content: FrontBack | Cloze, note_id: int | None = None,
                    tags: Iterable[str] = ()) -> Flashcard:
        return self.store.create_card(deck_id, content, note_id=note_id, tags=tags)

    def bulk_create_cards(self, deck_id: int, contents: Iterable[FrontBack | Cloze],
                          tags: Iterable[str] = ()) -> list[Flashcard]:
        tags = tuple(tags)
        return [self.store.create_card(deck_id, c, tags=tags) for c in contents]

    def suspend_cards(self, card_ids: Iterable[int]) -> int:
        count = self.store.set_status(card_ids, CardStatus.SUSPENDED)
        logger.info("suspended %d cards", count)
        return count

    def unsuspend_cards(self, card_ids: Iterable[int]) -> int:
        """Return suspended cards to the new queue."""
        ids = []
        for card_id in card_ids:
            if self.store.get_card(card_id).status == CardStatus.SUSPENDED:
                ids.append(card_id)
        count = self.store.set_status(ids, CardStatus.NEW)
        logger.info("unsuspended %d cards", count)
        return count

    def get_flashcard_tags(self) -> list[str]:
        return self.store.list_tags()

    def search_cards(self, text: str, deck_id: int | None = None) -> list[Flashcard]:
        self._check_deck(deck_id)
        return self.store.list_cards(CardFilters(deck_id=deck_id, search_text=text))

    def get_review_history(self, card_id: int) -> list[Review]:
        """Reviews of one card, newest first."""
        self.store.get_card(card_id)
        return list(reversed(self.store.list_reviews(flashcard_id=card_id)))

