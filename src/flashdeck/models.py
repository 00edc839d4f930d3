"""Data classes for the flashcard domain model."""
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional

from flashdeck.errors import InvariantViolation

MIN_EASE_FACTOR = 1.3
DEFAULT_EASE_FACTOR = 2.5


class CardStatus(str, Enum):
    NEW = "new"
    LEARNING = "learning"
    REVIEW = "review"
    MATURE = "mature"
    SUSPENDED = "suspended"


class SessionType(str, Enum):
    REVIEW = "review"
    NEW = "new"
    MIXED = "mixed"


@dataclass(frozen=True)
class FrontBack:
    front: str
    back: str

    card_type = "front_back"


@dataclass(frozen=True)
class Cloze:
    text: str

    card_type = "cloze"


@dataclass
class Deck:
    id: int
    name: str
    description: str = ""
    color: str = "#3B82F6"
    created_at: Optional[str] = None


@dataclass
class Note:
    id: int
    title: str = ""


@dataclass
class Flashcard:
    """A reviewable unit of knowledge plus its scheduling state.

    ``content`` is exactly one of :class:`FrontBack` or :class:`Cloze`.
    """
    id: int
    deck_id: int
    content: FrontBack | Cloze
    note_id: Optional[int] = None
    status: CardStatus = CardStatus.NEW
    ease_factor: float = DEFAULT_EASE_FACTOR
    interval_days: int = 0
    repetitions: int = 0
    last_reviewed: Optional[datetime] = None
    next_review: Optional[date] = None
    total_reviews: int = 0
    correct_reviews: int = 0
    tags: frozenset = field(default_factory=frozenset)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 1

    def __post_init__(self):
        if not isinstance(self.content, (FrontBack, Cloze)):
            raise InvariantViolation(
                f"card {self.id}: content must be FrontBack or Cloze, got {type(self.content).__name__}"
            )
        self.status = CardStatus(self.status)
        self.tags = frozenset(self.tags)
        if self.ease_factor < MIN_EASE_FACTOR:
            raise InvariantViolation(f"card {self.id}: ease factor {self.ease_factor} below {MIN_EASE_FACTOR}")
        if self.interval_days < 0 or self.repetitions < 0:
            raise InvariantViolation(f"card {self.id}: negative interval or repetitions")
        if not 0 <= self.correct_reviews <= self.total_reviews:
            raise InvariantViolation(f"card {self.id}: correct_reviews exceeds total_reviews")

    @property
    def card_type(self) -> str:
        return self.content.card_type

    @property
    def is_cloze(self) -> bool:
        return isinstance(self.content, Cloze)

    def is_due(self, today: date) -> bool:
        if self.status == CardStatus.SUSPENDED:
            return False
        if self.status == CardStatus.NEW:
            return True
        return self.next_review is None or self.next_review <= today


@dataclass(frozen=True)
class Review:
    """Immutable review log entry with before/after scheduling snapshots."""
    flashcard_id: int
    reviewed_at: datetime
    quality: int
    previous_ease_factor: float
    previous_interval: int
    previous_repetitions: int
    new_ease_factor: float
    new_interval: int
    new_repetitions: int
    response_time_ms: Optional[int] = None
    session_id: Optional[int] = None
    id: Optional[int] = None

    @property
    def is_correct(self) -> bool:
        return self.quality >= 3


@dataclass
class StudySession:
    id: int
    session_type: SessionType
    started_at: datetime
    deck_id: Optional[int] = None
    note_id: Optional[int] = None
    ended_at: Optional[datetime] = None
    cards_studied: int = 0
    cards_correct: int = 0
    total_time_seconds: float = 0.0

    def __post_init__(self):
        self.session_type = SessionType(self.session_type)

    @property
    def is_ended(self) -> bool:
        return self.ended_at is not None


@dataclass(frozen=True)
class StudyUnit:
    """One presentable quiz instance derived from a card. Never persisted."""
    flashcard: Flashcard
    target_marker: Optional[int] = None
    total_markers: int = 1

    @property
    def flashcard_id(self) -> int:
        return self.flashcard.id


@dataclass
class StudySessionStats:
    total_cards: int = 0
    correct_cards: int = 0
    accuracy: float = 0.0
    average_time: float = 0.0
    new_cards: int = 0
    review_cards: int = 0
    learning_cards: int = 0


@dataclass
class DeckStats:
    total: int = 0
    new: int = 0
    due: int = 0
    learning: int = 0
    mature: int = 0
    suspended: int = 0


@dataclass
class DailyStat:
    date: str
    reviews: int
    accuracy: float
