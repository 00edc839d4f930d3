# tests/test_study.py
import pytest

from flashdeck.errors import SessionStateError, StaleWriteError, StoreWriteFailure
from flashdeck.models import CardStatus, Cloze, Flashcard, FrontBack, SessionType, StudySessionStats
from flashdeck.study import (
    SessionComplete, SessionPhase, SessionScope, StudySessionManager, schedule_card,
)


def _answer(manager, handle, quality=4, **kwargs):
    manager.reveal_answer(handle)
    return manager.submit_answer(handle, quality, **kwargs)


def test_empty_selection_completes_immediately(manager, deck):
    handle = manager.start_session(SessionScope(deck_id=deck.id))
    assert handle.phase == SessionPhase.COMPLETE
    assert handle.result.stats == StudySessionStats()
    assert handle.session.is_ended
    assert manager.current_question(handle) is None


def test_front_back_session_flow(manager, repository, deck):
    repository.create_card(deck.id, FrontBack("Capital of France?", "Paris"))
    repository.create_card(deck.id, FrontBack("Capital of Spain?", "Madrid"))
    handle = manager.start_session(SessionScope(deck_id=deck.id))
    assert handle.phase == SessionPhase.PRESENTING
    assert handle.remaining == 2
    assert manager.current_question(handle).startswith("Capital of")

    revealed = manager.reveal_answer(handle)
    assert revealed.answer in ("Paris", "Madrid")
    nxt = manager.submit_answer(handle, 4)
    assert nxt is handle.units[1]
    assert handle.phase == SessionPhase.PRESENTING

    result = _answer(manager, handle, 0)
    assert isinstance(result, SessionComplete)
    assert handle.phase == SessionPhase.COMPLETE
    assert result.stats.total_cards == 2
    assert result.stats.correct_cards == 1
    assert result.stats.accuracy == 50.0
    assert result.stats.learning_cards == 1
    assert result.stats.new_cards == 2
    assert result.session.is_ended


def test_answer_updates_card_and_logs_review(manager, repository, store, deck, clock):
    card = repository.create_card(deck.id, FrontBack("Q", "A"))
    handle = manager.start_session(SessionScope(deck_id=deck.id))
    _answer(manager, handle, 3)
    updated = store.get_card(card.id)
    assert updated.repetitions == 1
    assert updated.interval_days == 1
    assert updated.ease_factor == 2.36
    assert updated.status == CardStatus.LEARNING
    assert updated.total_reviews == 1
    assert updated.correct_reviews == 1
    assert updated.last_reviewed == clock.now
    [review] = store.list_reviews(session_id=handle.session_id)
    assert (review.previous_ease_factor, review.new_ease_factor) == (2.5, 2.36)
    assert (review.previous_interval, review.new_interval) == (0, 1)


def test_failed_answer_resets_card(manager, repository, store, deck):
    card = repository.create_card(deck.id, FrontBack("Q", "A"))
    store.update_card(card.id, {"status": CardStatus.REVIEW, "repetitions": 3, "interval_days": 15,
                                "ease_factor": 2.2})
    handle = manager.start_session(SessionScope(deck_id=deck.id))
    _answer(manager, handle, 0)
    updated = store.get_card(card.id)
    assert updated.repetitions == 0
    assert updated.interval_days == 1
    assert updated.ease_factor == 2.2
    assert updated.status == CardStatus.LEARNING
    assert updated.correct_reviews == 0


def test_cloze_card_expands_into_units(manager, repository, store, deck):
    card = repository.create_card(deck.id, Cloze("{{c1::Na}} and {{c2::Cl}} form {{c3::salt}}"))
    handle = manager.start_session(SessionScope(deck_id=deck.id))
    assert len(handle.units) == 3
    assert sorted(u.target_marker for u in handle.units) == [1, 2, 3]
    assert all(u.flashcard_id == card.id for u in handle.units)

    questions = set()
    for _ in range(3):
        unit = manager.current_unit(handle)
        questions.add(manager.current_question(handle))
        revealed = manager.reveal_answer(handle)
        assert revealed.target_marker == unit.target_marker
        assert revealed.total_markers == 3
        assert revealed.answer == "Na and Cl form salt"
        result = manager.submit_answer(handle, 4)
    assert len(questions) == 3

    assert isinstance(result, SessionComplete)
    updated = store.get_card(card.id)
    assert updated.repetitions == 3
    assert updated.interval_days == 15
    assert updated.total_reviews == 3
    assert updated.status == CardStatus.REVIEW
    reviews = store.list_reviews(session_id=handle.session_id)
    assert [r.previous_repetitions for r in reviews] == [0, 1, 2]
    assert result.stats.new_cards == 1
    assert result.stats.review_cards == 2


def test_cloze_question_hides_only_target(manager, repository, deck):
    repository.create_card(deck.id, Cloze("The {{c1::heart}} pumps {{c2::blood}}"))
    handle = manager.start_session(SessionScope(deck_id=deck.id))
    unit = manager.current_unit(handle)
    expected = {1: "The [...] pumps blood", 2: "The heart pumps [...]"}
    assert manager.current_question(handle) == expected[unit.target_marker]


def test_answer_reveals_only_target_when_configured(repository, deck, clock):
    repository.settings.reveal_all_markers = False
    mgr = StudySessionManager(repository, clock=clock, sleep=lambda s: None)
    repository.create_card(deck.id, Cloze("{{c1::a}} {{c2::b}}"))
    handle = mgr.start_session(SessionScope(deck_id=deck.id))
    unit = mgr.current_unit(handle)
    answer = mgr.reveal_answer(handle).answer
    assert answer == ("a [...]" if unit.target_marker == 1 else "[...] b")


def test_time_is_accounted_per_answer(manager, repository, store, deck, clock):
    repository.create_card(deck.id, FrontBack("Q1", "A1"))
    repository.create_card(deck.id, FrontBack("Q2", "A2"))
    handle = manager.start_session(SessionScope(deck_id=deck.id))
    clock.advance(12)
    _answer(manager, handle, 4)
    clock.advance(8)
    result = _answer(manager, handle, 4)
    assert handle.total_time_seconds == 20.0
    assert result.stats.average_time == 10.0
    assert [r.response_time_ms for r in store.list_reviews(session_id=handle.session_id)] == [12000, 8000]


def test_explicit_response_time(manager, repository, store, deck):
    repository.create_card(deck.id, FrontBack("Q", "A"))
    handle = manager.start_session(SessionScope(deck_id=deck.id))
    _answer(manager, handle, 4, response_time_ms=2500)
    assert handle.total_time_seconds == 2.5
    assert store.list_reviews()[0].response_time_ms == 2500


def test_counters_are_persisted_after_each_answer(manager, repository, store, deck):
    for i in range(3):
        repository.create_card(deck.id, FrontBack(f"Q{i}", f"A{i}"))
    handle = manager.start_session(SessionScope(deck_id=deck.id))
    _answer(manager, handle, 4)
    _answer(manager, handle, 1)
    session = store.get_session(handle.session_id)
    assert (session.cards_studied, session.cards_correct) == (2, 1)
    live = manager.session_stats(handle)
    assert live.total_cards == 2
    assert live.accuracy == 50.0


def test_submit_before_reveal_is_rejected(manager, repository, deck):
    repository.create_card(deck.id, FrontBack("Q", "A"))
    handle = manager.start_session(SessionScope(deck_id=deck.id))
    with pytest.raises(SessionStateError):
        manager.submit_answer(handle, 4)
    assert handle.cards_studied == 0


def test_complete_requires_finished_units(manager, repository, deck):
    repository.create_card(deck.id, FrontBack("Q", "A"))
    handle = manager.start_session(SessionScope(deck_id=deck.id))
    with pytest.raises(SessionStateError):
        manager.complete_session(handle)


def test_complete_is_idempotent(manager, repository, deck):
    repository.create_card(deck.id, FrontBack("Q", "A"))
    handle = manager.start_session(SessionScope(deck_id=deck.id))
    result = _answer(manager, handle, 4)
    assert manager.complete_session(handle) is result
    with pytest.raises(SessionStateError):
        manager.pause_session(handle)


def test_pause_keeps_session_open(manager, repository, store, deck):
    for i in range(3):
        repository.create_card(deck.id, FrontBack(f"Q{i}", f"A{i}"))
    handle = manager.start_session(SessionScope(deck_id=deck.id))
    _answer(manager, handle, 4)
    manager.reveal_answer(handle)
    manager.pause_session(handle)
    assert handle.phase == SessionPhase.PAUSED
    manager.pause_session(handle)  # no-op

    session = store.get_session(handle.session_id)
    assert session.cards_studied == 1
    assert not session.is_ended
    assert len(store.list_reviews(session_id=handle.session_id)) == 1
    with pytest.raises(SessionStateError):
        manager.submit_answer(handle, 4)
    with pytest.raises(SessionStateError):
        manager.reveal_answer(handle)


def test_new_mode_selects_only_new_cards(manager, repository, store, deck):
    new = repository.create_card(deck.id, FrontBack("new", "card"))
    seen = repository.create_card(deck.id, FrontBack("seen", "card"))
    store.update_card(seen.id, {"status": CardStatus.REVIEW})
    handle = manager.start_session(SessionScope(deck_id=deck.id), mode="new")
    assert handle.mode == SessionType.NEW
    assert [u.flashcard_id for u in handle.units] == [new.id]
    assert store.get_session(handle.session_id).session_type == SessionType.NEW


def test_mixed_mode_has_no_duplicates(manager, repository, store, deck):
    cards = [repository.create_card(deck.id, FrontBack(f"Q{i}", f"A{i}")) for i in range(4)]
    store.update_card(cards[0].id, {"status": CardStatus.REVIEW})
    handle = manager.start_session(SessionScope(deck_id=deck.id), mode=SessionType.MIXED)
    ids = [u.flashcard_id for u in handle.units]
    assert sorted(ids) == sorted(c.id for c in cards)


def test_custom_session_filters_by_tag(manager, repository, deck):
    tagged = repository.create_card(deck.id, FrontBack("Q1", "A1"), tags=["exam"])
    repository.create_card(deck.id, FrontBack("Q2", "A2"), tags=["other"])
    handle = manager.start_session(SessionScope(deck_id=deck.id, tags=("exam",)))
    assert [u.flashcard_id for u in handle.units] == [tagged.id]


def test_custom_session_needs_deck(manager):
    with pytest.raises(ValueError):
        manager.start_session(SessionScope(custom=True))


def test_note_session(manager, repository, store, deck):
    note = store.create_note("Lecture 3")
    linked = repository.create_card(deck.id, FrontBack("Q1", "A1"), note_id=note.id)
    repository.create_card(deck.id, FrontBack("Q2", "A2"))
    handle = manager.start_session(SessionScope(note_id=note.id))
    assert [u.flashcard_id for u in handle.units] == [linked.id]
    assert handle.session.note_id == note.id


def test_suspended_cards_are_never_presented(manager, repository, deck):
    card = repository.create_card(deck.id, FrontBack("Q", "A"))
    repository.suspend_cards([card.id])
    handle = manager.start_session(SessionScope(deck_id=deck.id))
    assert handle.phase == SessionPhase.COMPLETE


def test_write_failure_is_retried(make_flaky, repository, store, deck):
    repository.create_card(deck.id, FrontBack("Q", "A"))
    mgr, flaky, sleeps = make_flaky(record_review=2)
    handle = mgr.start_session(SessionScope(deck_id=deck.id))
    result = _answer(mgr, handle, 4)
    assert isinstance(result, SessionComplete)
    assert flaky.calls["record_review"] == 3
    assert sleeps == [0.1, 0.2]
    assert len(store.list_reviews()) == 1


def test_write_failure_keeps_position_and_counters(make_flaky, repository, store, deck):
    card = repository.create_card(deck.id, FrontBack("Q", "A"))
    mgr, flaky, sleeps = make_flaky(record_review=10)
    handle = mgr.start_session(SessionScope(deck_id=deck.id))
    mgr.reveal_answer(handle)
    with pytest.raises(StoreWriteFailure):
        mgr.submit_answer(handle, 4)
    assert flaky.calls["record_review"] == 4
    assert sleeps == [0.1, 0.2, 0.4]
    assert handle.phase == SessionPhase.ANSWER_REVEALED
    assert handle.index == 0
    assert handle.cards_studied == 0
    assert store.get_card(card.id).total_reviews == 0
    assert store.list_reviews() == []

    flaky.failures["record_review"] = 0
    result = mgr.submit_answer(handle, 4)
    assert isinstance(result, SessionComplete)
    assert result.stats.total_cards == 1
    assert store.get_card(card.id).total_reviews == 1


def test_counter_write_failure_does_not_lose_answer(make_flaky, repository, store, deck):
    repository.create_card(deck.id, FrontBack("Q1", "A1"))
    repository.create_card(deck.id, FrontBack("Q2", "A2"))
    mgr, flaky, _ = make_flaky(update_session=4)
    handle = mgr.start_session(SessionScope(deck_id=deck.id))
    nxt = _answer(mgr, handle, 4)
    assert nxt is handle.units[1]
    assert handle.counters_dirty
    assert handle.cards_studied == 1
    assert store.get_session(handle.session_id).cards_studied == 0

    result = _answer(mgr, handle, 4)
    assert not handle.counters_dirty
    assert result.session.cards_studied == 2


def test_finalize_failure_can_be_retried(make_flaky, repository, store, deck):
    repository.create_card(deck.id, FrontBack("Q", "A"))
    mgr, flaky, _ = make_flaky(end_session=4)
    handle = mgr.start_session(SessionScope(deck_id=deck.id))
    mgr.reveal_answer(handle)
    with pytest.raises(StoreWriteFailure):
        mgr.submit_answer(handle, 4)
    assert handle.phase == SessionPhase.FINALIZING
    assert handle.cards_studied == 1
    assert len(store.list_reviews()) == 1

    result = mgr.complete_session(handle)
    assert handle.phase == SessionPhase.COMPLETE
    assert result.session.is_ended
    assert result.stats.total_cards == 1


class RacingStore:
    """Changes the card behind the session's back before the first write."""

    def __init__(self, inner, changes):
        self.inner = inner
        self.changes = changes
        self.raced = False

    def __getattr__(self, name):
        return getattr(self.inner, name)

    def record_review(self, card_id, expected_version, changes, review):
        if not self.raced:
            self.raced = True
            self.inner.update_card(card_id, self.changes)
        return self.inner.record_review(card_id, expected_version, changes, review)


def test_stale_write_is_recomputed(repository, store, deck, clock):
    card = repository.create_card(deck.id, FrontBack("Q", "A"))
    store.update_card(card.id, {"status": CardStatus.REVIEW, "repetitions": 3, "interval_days": 6})
    racing = RacingStore(store, {"repetitions": 4, "interval_days": 10})
    mgr = StudySessionManager(repository, store=racing, clock=clock, sleep=lambda s: None)
    handle = mgr.start_session(SessionScope(deck_id=deck.id))
    _answer(mgr, handle, 4)
    updated = store.get_card(card.id)
    assert updated.repetitions == 5
    assert updated.interval_days == 25
    assert updated.status == CardStatus.MATURE
    [review] = store.list_reviews()
    assert review.previous_repetitions == 4


def test_stale_write_is_a_store_failure():
    assert issubclass(StaleWriteError, StoreWriteFailure)


def test_schedule_card_is_pure(clock):
    card = Flashcard(id=9, deck_id=1, content=FrontBack("Q", "A"), repetitions=2, interval_days=6,
                     status="review", total_reviews=2, correct_reviews=2)
    changes, review = schedule_card(card, 5, clock.now, session_id=3)
    assert changes["interval_days"] == 15
    assert changes["ease_factor"] == 2.6
    assert changes["repetitions"] == 3
    assert changes["correct_reviews"] == 3
    assert review.session_id == 3
    assert review.reviewed_at == clock.now
    assert card.repetitions == 2


def test_deck_stats_through_manager(manager, repository, deck):
    repository.create_card(deck.id, FrontBack("Q", "A"))
    stats = manager.deck_stats(deck.id)
    assert stats.total == 1
    assert stats.due == 1


def test_card_suspended_mid_session_stays_suspended(manager, repository, store, deck):
    card = repository.create_card(deck.id, FrontBack("Q", "A"))
    handle = manager.start_session(SessionScope(deck_id=deck.id))
    repository.suspend_cards([card.id])
    _answer(manager, handle, 4)
    updated = store.get_card(card.id)
    assert updated.status == CardStatus.SUSPENDED
    assert updated.repetitions == 1
    assert len(store.list_reviews(session_id=handle.session_id)) == 1
    assert repository.get_due_cards(deck.id) == []


def test_retried_answer_keeps_original_response_time(make_flaky, repository, store, deck, clock):
    repository.create_card(deck.id, FrontBack("Q", "A"))
    mgr, flaky, _ = make_flaky(record_review=4)
    handle = mgr.start_session(SessionScope(deck_id=deck.id))
    clock.advance(5)
    mgr.reveal_answer(handle)
    with pytest.raises(StoreWriteFailure):
        mgr.submit_answer(handle, 4)
    clock.advance(300)
    result = mgr.submit_answer(handle, 4)
    assert handle.total_time_seconds == 5.0
    assert result.stats.average_time == 5.0
    assert store.list_reviews()[0].response_time_ms == 5000
