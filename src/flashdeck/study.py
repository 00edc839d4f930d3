"""Study session management: one learner's pass over a set of study units.

A session moves through ``Idle -> Initializing -> Presenting <-> AnswerRevealed``
and ends either ``Complete`` (every unit answered) or ``Paused``. Each answer
is scheduled with SM-2 and written together with its review record before the
session advances.
"""
import logging
import random
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from flashdeck import analytics
from flashdeck.cloze import decompose_all, render_answer, render_question
from flashdeck.errors import SessionStateError, StoreWriteFailure
from flashdeck.flashcards import CardRepository
from flashdeck.models import (
    CardStatus, Cloze, DeckStats, Flashcard, Review, SessionType, StudySession, StudySessionStats,
    StudyUnit,
)
from flashdeck.settings import StudySettings
from flashdeck.sm2 import PASSING_QUALITY, determine_status, sm2_update
from flashdeck.store import CardStore

logger = logging.getLogger(__name__)


class SessionPhase(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    PRESENTING = "presenting"
    ANSWER_REVEALED = "answer_revealed"
    FINALIZING = "finalizing"
    PAUSED = "paused"
    COMPLETE = "complete"


@dataclass(frozen=True)
class SessionScope:
    """What a session studies: one deck, one note, or everything.

    ``custom`` (or any ``tags``) selects the filtered custom session, which
    needs a deck.
    """
    deck_id: Optional[int] = None
    note_id: Optional[int] = None
    tags: tuple = ()
    due_only: bool = True
    custom: bool = False

    @property
    def is_custom(self) -> bool:
        return self.custom or bool(self.tags)


@dataclass
class RevealedAnswer:
    flashcard_id: int
    question: str
    answer: str
    target_marker: Optional[int] = None
    total_markers: int = 1


@dataclass
class SessionComplete:
    session: StudySession
    stats: StudySessionStats


@dataclass
class SessionHandle:
    session: StudySession
    scope: SessionScope
    mode: SessionType
    units: list = field(default_factory=list)
    index: int = 0
    phase: SessionPhase = SessionPhase.IDLE
    cards_studied: int = 0
    cards_correct: int = 0
    total_time_seconds: float = 0.0
    presented_at: Optional[datetime] = None
    answer_seconds: Optional[float] = None
    counters_dirty: bool = False
    result: Optional[SessionComplete] = None

    @property
    def session_id(self) -> int:
        return self.session.id

    @property
    def remaining(self) -> int:
        return max(0, len(self.units) - self.index)


def question_text(unit: StudyUnit) -> str:
    content = unit.flashcard.content
    if isinstance(content, Cloze):
        return render_question(content.text, unit.target_marker)
    return content.front


def answer_text(unit: StudyUnit, reveal_all: bool = True) -> str:
    content = unit.flashcard.content
    if isinstance(content, Cloze):
        return render_answer(content.text, unit.target_marker, reveal_all=reveal_all)
    return content.back


def schedule_card(card: Flashcard, quality: int, now: datetime, session_id: int | None = None,
                  response_time_ms: int | None = None) -> tuple[dict, Review]:
    """New card state and the review that records the transition."""
    updated = sm2_update(
        quality=quality,
        repetitions=card.repetitions,
        ease_factor=card.ease_factor,
        interval=card.interval_days,
        today=now.date(),
    )
    status = determine_status(updated["repetitions"], quality)
    if card.status == CardStatus.SUSPENDED:
        # Suspended mid-session: the answer is logged but the card stays out of rotation.
        status = CardStatus.SUSPENDED
    changes = {
        "status": status,
        "ease_factor": updated["ease_factor"],
        "interval_days": updated["interval"],
        "repetitions": updated["repetitions"],
        "last_reviewed": now,
        "next_review": updated["next_review"],
        "total_reviews": card.total_reviews + 1,
        "correct_reviews": card.correct_reviews + (1 if quality >= PASSING_QUALITY else 0),
    }
    review = Review(
        flashcard_id=card.id,
        session_id=session_id,
        reviewed_at=now,
        quality=quality,
        response_time_ms=response_time_ms,
        previous_ease_factor=card.ease_factor,
        previous_interval=card.interval_days,
        previous_repetitions=card.repetitions,
        new_ease_factor=updated["ease_factor"],
        new_interval=updated["interval"],
        new_repetitions=updated["repetitions"],
    )
    return changes, review


class StudySessionManager:
    """Drives study sessions against an injected repository and store."""

    def __init__(
        self,
        repository: CardRepository,
        store: CardStore | None = None,
        settings: StudySettings | None = None,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ):
        self.repository = repository
        self.store = store or repository.store
        self.settings = settings or repository.settings
        self.clock = clock
        self.sleep = sleep
        self.rng = rng or random.Random()

    # --- lifecycle ---

    def start_session(self, scope: SessionScope | None = None,
                      mode: SessionType | str = SessionType.REVIEW) -> SessionHandle:
        """Select, expand and shuffle the study set, then present the first unit.

        An empty selection completes the session immediately with zero stats.
        """
        scope = scope or SessionScope()
        mode = SessionType(mode)
        now = self.clock()
        cards = self._select_cards(scope, mode, now)
        session = self._with_retries(
            "create session",
            lambda: self.store.create_session(mode, deck_id=scope.deck_id, note_id=scope.note_id, started_at=now),
        )
        handle = SessionHandle(session=session, scope=scope, mode=mode, phase=SessionPhase.INITIALIZING)
        units = decompose_all(cards)
        self.rng.shuffle(units)
        handle.units = units
        logger.info("session %s started: %d cards, %d units (%s)", session.id, len(cards), len(units), mode.value)
        if not units:
            handle.phase = SessionPhase.FINALIZING
            self.complete_session(handle)
            return handle
        self._present(handle)
        return handle

    def _select_cards(self, scope: SessionScope, mode: SessionType, now: datetime) -> list[Flashcard]:
        today = now.date()
        if scope.note_id is not None:
            return self.repository.get_note_due_cards(scope.note_id, today=today)
        if scope.is_custom:
            if scope.deck_id is None:
                raise ValueError("a custom session needs a deck")
            return self.repository.get_custom_study_cards(
                scope.deck_id, tags=scope.tags, due_only=scope.due_only, today=today,
            )
        if mode == SessionType.NEW:
            return self.repository.get_new_cards(scope.deck_id)
        if mode == SessionType.MIXED:
            return self.repository.get_study_cards(scope.deck_id, today=today, rng=self.rng)
        return self.repository.get_due_cards(scope.deck_id, limit=self.settings.due_card_limit, today=today)

    def _present(self, handle: SessionHandle) -> None:
        handle.phase = SessionPhase.PRESENTING
        handle.presented_at = self.clock()
        handle.answer_seconds = None

    def current_unit(self, handle: SessionHandle) -> StudyUnit | None:
        if handle.phase in (SessionPhase.PRESENTING, SessionPhase.ANSWER_REVEALED):
            return handle.units[handle.index]
        return None

    def current_question(self, handle: SessionHandle) -> str | None:
        unit = self.current_unit(handle)
        return question_text(unit) if unit else None

    def reveal_answer(self, handle: SessionHandle) -> RevealedAnswer:
        if handle.phase not in (SessionPhase.PRESENTING, SessionPhase.ANSWER_REVEALED):
            raise SessionStateError(f"cannot reveal an answer while {handle.phase.value}")
        unit = handle.units[handle.index]
        handle.phase = SessionPhase.ANSWER_REVEALED
        return RevealedAnswer(
            flashcard_id=unit.flashcard_id,
            question=question_text(unit),
            answer=answer_text(unit, reveal_all=self.settings.reveal_all_markers),
            target_marker=unit.target_marker,
            total_markers=unit.total_markers,
        )

    def submit_answer(self, handle: SessionHandle, quality: int,
                      response_time_ms: int | None = None) -> StudyUnit | SessionComplete:
        """Schedule the current unit's card and advance.

        Raises StoreWriteFailure when the card and review could not be
        written; the session stays on the same unit with its counters intact
        so the same answer can be submitted again.
        """
        if handle.phase != SessionPhase.ANSWER_REVEALED:
            raise SessionStateError(f"cannot submit an answer while {handle.phase.value}")
        unit = handle.units[handle.index]
        now = self.clock()
        if response_time_ms is not None:
            elapsed = response_time_ms / 1000
        else:
            if handle.answer_seconds is None:
                # Measured once; a retried submit reuses it.
                handle.answer_seconds = (now - handle.presented_at).total_seconds() if handle.presented_at else 0.0
            elapsed = handle.answer_seconds
            response_time_ms = int(elapsed * 1000)

        def write():
            # Re-read so units of the same cloze card see each other's updates.
            card = self.store.get_card(unit.flashcard_id)
            changes, review = schedule_card(card, quality, now, handle.session_id, response_time_ms)
            return self.store.record_review(card.id, card.version, changes, review)

        card, review = self._with_retries(f"record review of flashcard {unit.flashcard_id}", write)
        logger.debug(
            "flashcard %s q=%d: interval %d -> %d, ease %.2f -> %.2f, status %s",
            card.id, quality, review.previous_interval, review.new_interval,
            review.previous_ease_factor, review.new_ease_factor, card.status.value,
        )

        handle.cards_studied += 1
        if quality >= PASSING_QUALITY:
            handle.cards_correct += 1
        handle.total_time_seconds += elapsed
        handle.index += 1
        handle.counters_dirty = True
        try:
            self._flush_counters(handle)
        except StoreWriteFailure as exc:
            logger.warning("session %s counters kept in memory: %s", handle.session_id, exc)

        if handle.index >= len(handle.units):
            handle.phase = SessionPhase.FINALIZING
            return self.complete_session(handle)
        self._present(handle)
        return handle.units[handle.index]

    def pause_session(self, handle: SessionHandle) -> None:
        """Persist counters without ending the session."""
        if handle.phase == SessionPhase.PAUSED:
            return
        if handle.phase in (SessionPhase.COMPLETE, SessionPhase.FINALIZING):
            raise SessionStateError(f"cannot pause while {handle.phase.value}")
        handle.counters_dirty = True
        self._flush_counters(handle)
        handle.phase = SessionPhase.PAUSED
        logger.info(
            "session %s paused after %d of %d units", handle.session_id, handle.index, len(handle.units)
        )

    def complete_session(self, handle: SessionHandle) -> SessionComplete:
        """End the session and summarise it.

        Called automatically after the last answer; call it again to retry
        when finalising failed on a store error.
        """
        if handle.phase == SessionPhase.COMPLETE:
            return handle.result
        if handle.phase != SessionPhase.FINALIZING:
            raise SessionStateError(f"cannot complete while {handle.phase.value}")
        self._flush_counters(handle)
        ended_at = self.clock()
        handle.session = self._with_retries(
            f"end session {handle.session_id}",
            lambda: self.store.end_session(handle.session_id, ended_at=ended_at),
        )
        reviews = self.store.list_reviews(session_id=handle.session_id)
        handle.result = SessionComplete(
            session=handle.session, stats=analytics.session_stats(handle.session, reviews)
        )
        handle.phase = SessionPhase.COMPLETE
        logger.info(
            "session %s complete: %d studied, %.0f%% correct",
            handle.session_id, handle.result.stats.total_cards, handle.result.stats.accuracy,
        )
        return handle.result

    # --- stats ---

    def session_stats(self, handle: SessionHandle) -> StudySessionStats:
        if handle.result is not None:
            return handle.result.stats
        live = replace(
            handle.session,
            cards_studied=handle.cards_studied,
            cards_correct=handle.cards_correct,
            total_time_seconds=handle.total_time_seconds,
        )
        return analytics.session_stats(live, self.store.list_reviews(session_id=handle.session_id))

    def deck_stats(self, deck_id: int) -> DeckStats:
        return self.repository.deck_stats(deck_id, today=self.clock().date())

    # --- persistence helpers ---

    def _flush_counters(self, handle: SessionHandle) -> None:
        if not handle.counters_dirty:
            return
        handle.session = self._with_retries(
            f"update session {handle.session_id}",
            lambda: self.store.update_session(
                handle.session_id, handle.cards_studied, handle.cards_correct, handle.total_time_seconds,
            ),
        )
        handle.counters_dirty = False

    def _with_retries(self, description: str, write: Callable):
        """Run ``write``, retrying store write failures with exponential backoff."""
        attempts = max(1, self.settings.write_retries + 1)
        delay = self.settings.retry_initial_delay
        for attempt in range(1, attempts + 1):
            try:
                return write()
            except StoreWriteFailure as exc:
                if attempt == attempts:
                    logger.error("%s failed after %d attempts: %s", description, attempts, exc)
                    raise
                logger.warning("%s failed (attempt %d of %d), retrying in %.2fs: %s",
                               description, attempt, attempts, delay, exc)
                self.sleep(delay)
                delay *= 2
