"""Card and review log store.

``CardStore`` is the persistence interface the repository and the session
manager depend on. ``SqliteCardStore`` implements it on top of the schema in
:mod:`flashdeck.db`.
"""
import logging
import sqlite3
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Iterable, Optional, Protocol

from flashdeck.db import get_connection
from flashdeck.errors import NotFound, StaleWriteError, StoreWriteFailure
from flashdeck.models import (
    CardStatus, Cloze, Deck, Flashcard, FrontBack, Note, Review, SessionType, StudySession,
)

logger = logging.getLogger(__name__)

TAG_SEPARATOR = "\x1f"

CARD_COLUMNS = {
    "status", "ease_factor", "interval_days", "repetitions", "last_reviewed",
    "next_review", "total_reviews", "correct_reviews", "note_id", "deck_id",
}

CARD_SELECT = f"""SELECT f.*,
    (SELECT GROUP_CONCAT(t.tag, '{TAG_SEPARATOR}') FROM flashcard_tags t
     WHERE t.flashcard_id = f.id) AS tag_list
FROM flashcards f"""


@dataclass
class CardFilters:
    """Filters accepted by :meth:`CardStore.list_cards`.

    ``due_before`` keeps cards whose ``next_review`` is on or before the
    date; with ``include_new`` cards in status ``new`` pass regardless of
    their date. ``tags`` match when a card carries any of them.
    """
    deck_id: Optional[int] = None
    note_id: Optional[int] = None
    status: Optional[CardStatus] = None
    exclude_suspended: bool = False
    due_before: Optional[date] = None
    include_new: bool = True
    tags: tuple = ()
    search_text: Optional[str] = None
    order_by: str = "next_review"
    limit: Optional[int] = None


class CardStore(Protocol):
    def get_deck(self, deck_id: int) -> Deck: ...
    def get_note(self, note_id: int) -> Note: ...
    def create_card(self, deck_id: int, content: FrontBack | Cloze, note_id: int | None = None,
                    tags: Iterable[str] = (), today: date | None = None) -> Flashcard: ...
    def get_card(self, card_id: int) -> Flashcard: ...
    def list_cards(self, filters: CardFilters) -> list[Flashcard]: ...
    def count_cards(self, filters: CardFilters) -> int: ...
    def list_tags(self) -> list[str]: ...
    def update_card(self, card_id: int, changes: dict, expected_version: int | None = None) -> Flashcard: ...
    def set_status(self, card_ids: Iterable[int], status: CardStatus) -> int: ...
    def append_review(self, review: Review) -> Review: ...
    def record_review(self, card_id: int, expected_version: int, changes: dict,
                      review: Review) -> tuple[Flashcard, Review]: ...
    def list_reviews(self, since: datetime | None = None, until: datetime | None = None,
                     session_id: int | None = None, flashcard_id: int | None = None) -> list[Review]: ...
    def list_review_dates(self) -> list[date]: ...
    def create_session(self, session_type: SessionType, deck_id: int | None = None,
                       note_id: int | None = None, started_at: datetime | None = None) -> StudySession: ...
    def update_session(self, session_id: int, cards_studied: int, cards_correct: int,
                       total_time_seconds: float) -> StudySession: ...
    def end_session(self, session_id: int, ended_at: datetime | None = None) -> StudySession: ...
    def get_session(self, session_id: int) -> StudySession: ...


def _to_db(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _parse_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def card_from_row(row: sqlite3.Row) -> Flashcard:
    if row["card_type"] == "cloze":
        content = Cloze(row["cloze_content"] or "")
    else:
        content = FrontBack(row["front_content"] or "", row["back_content"] or "")
    tag_list = row["tag_list"]
    return Flashcard(
        id=row["id"],
        deck_id=row["deck_id"],
        note_id=row["note_id"],
        content=content,
        status=CardStatus(row["status"]),
        ease_factor=row["ease_factor"],
        interval_days=row["interval_days"],
        repetitions=row["repetitions"],
        last_reviewed=_parse_datetime(row["last_reviewed"]),
        next_review=date.fromisoformat(row["next_review"]),
        total_reviews=row["total_reviews"],
        correct_reviews=row["correct_reviews"],
        tags=frozenset(tag_list.split(TAG_SEPARATOR)) if tag_list else frozenset(),
        created_at=_parse_datetime(row["created_at"]),
        updated_at=_parse_datetime(row["updated_at"]),
        version=row["version"],
    )


def review_from_row(row: sqlite3.Row) -> Review:
    return Review(
        id=row["id"],
        flashcard_id=row["flashcard_id"],
        session_id=row["session_id"],
        reviewed_at=datetime.fromisoformat(row["reviewed_at"]),
        quality=row["quality"],
        response_time_ms=row["response_time"],
        previous_ease_factor=row["previous_ease_factor"],
        previous_interval=row["previous_interval"],
        previous_repetitions=row["previous_repetitions"],
        new_ease_factor=row["new_ease_factor"],
        new_interval=row["new_interval"],
        new_repetitions=row["new_repetitions"],
    )


def session_from_row(row: sqlite3.Row) -> StudySession:
    return StudySession(
        id=row["id"],
        deck_id=row["deck_id"],
        note_id=row["note_id"],
        session_type=SessionType(row["session_type"]),
        started_at=datetime.fromisoformat(row["started_at"]),
        ended_at=_parse_datetime(row["ended_at"]),
        cards_studied=row["cards_studied"],
        cards_correct=row["cards_correct"],
        total_time_seconds=row["total_time"],
    )


def _where_clause(filters: CardFilters) -> tuple[str, list]:
    clauses, params = [], []
    if filters.deck_id is not None:
        clauses.append("f.deck_id = ?")
        params.append(filters.deck_id)
    if filters.note_id is not None:
        clauses.append("f.note_id = ?")
        params.append(filters.note_id)
    if filters.status is not None:
        clauses.append("f.status = ?")
        params.append(_to_db(filters.status))
    if filters.exclude_suspended:
        clauses.append("f.status != 'suspended'")
    if filters.due_before is not None:
        if filters.include_new:
            clauses.append("(f.status = 'new' OR f.next_review <= ?)")
        else:
            clauses.append("f.next_review <= ?")
        params.append(filters.due_before.isoformat())
    if filters.tags:
        marks = ", ".join("?" for _ in filters.tags)
        clauses.append(
            f"EXISTS (SELECT 1 FROM flashcard_tags t WHERE t.flashcard_id = f.id AND t.tag IN ({marks}))"
        )
        params.extend(filters.tags)
    if filters.search_text:
        clauses.append("(f.front_content LIKE ? OR f.back_content LIKE ? OR f.cloze_content LIKE ?)")
        pattern = f"%{filters.search_text}%"
        params.extend([pattern, pattern, pattern])
    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, params


ORDERINGS = {
    "next_review": "f.next_review ASC, f.created_at ASC, f.id ASC",
    "created_at": "f.created_at ASC, f.id ASC",
}


class SqliteCardStore:
    """SQLite implementation of :class:`CardStore`. One connection per call."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    # --- decks and notes ---

    def create_deck(self, name: str, description: str = "", color: str = "#3B82F6") -> Deck:
        conn = get_connection(self.db_path)
        cur = conn.execute(
            "INSERT INTO decks (name, description, color, created_at) VALUES (?, ?, ?, ?)",
            (name, description, color, datetime.now().isoformat()),
        )
        conn.commit()
        deck_id = cur.lastrowid
        conn.close()
        return self.get_deck(deck_id)

    def get_deck(self, deck_id: int) -> Deck:
        conn = get_connection(self.db_path)
        row = conn.execute("SELECT * FROM decks WHERE id = ?", (deck_id,)).fetchone()
        conn.close()
        if row is None:
            raise NotFound("deck", deck_id)
        return Deck(**dict(row))

    def list_decks(self) -> list[Deck]:
        conn = get_connection(self.db_path)
        rows = conn.execute("SELECT * FROM decks ORDER BY created_at, id").fetchall()
        conn.close()
        return [Deck(**dict(r)) for r in rows]

    def create_note(self, title: str = "") -> Note:
        conn = get_connection(self.db_path)
        cur = conn.execute("INSERT INTO notes (title) VALUES (?)", (title,))
        conn.commit()
        note = Note(id=cur.lastrowid, title=title)
        conn.close()
        return note

    def get_note(self, note_id: int) -> Note:
        conn = get_connection(self.db_path)
        row = conn.execute("SELECT * FROM notes WHERE id = ?", (note_id,)).fetchone()
        conn.close()
        if row is None:
            raise NotFound("note", note_id)
        return Note(id=row["id"], title=row["title"])

    # --- cards ---

    def create_card(
        self,
        deck_id: int,
        content: FrontBack | Cloze,
        note_id: int | None = None,
        tags: Iterable[str] = (),
        today: date | None = None,
    ) -> Flashcard:
        self.get_deck(deck_id)
        if note_id is not None:
            self.get_note(note_id)
        now = datetime.now().isoformat()
        next_review = (today or date.today()).isoformat()
        if isinstance(content, Cloze):
            front, back, cloze, card_type = None, None, content.text, "cloze"
        else:
            front, back, cloze, card_type = content.front, content.back, None, "front_back"
        conn = get_connection(self.db_path)
        cur = conn.execute(
            """INSERT INTO flashcards (deck_id, note_id, card_type, front_content, back_content,
            cloze_content, next_review, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (deck_id, note_id, card_type, front, back, cloze, next_review, now, now),
        )
        card_id = cur.lastrowid
        conn.executemany(
            "INSERT OR IGNORE INTO flashcard_tags (flashcard_id, tag) VALUES (?, ?)",
            [(card_id, tag) for tag in sorted(set(tags))],
        )
        conn.commit()
        conn.close()
        return self.get_card(card_id)

    def get_card(self, card_id: int) -> Flashcard:
        conn = get_connection(self.db_path)
        row = conn.execute(f"{CARD_SELECT} WHERE f.id = ?", (card_id,)).fetchone()
        conn.close()
        if row is None:
            raise NotFound("flashcard", card_id)
        return card_from_row(row)

    def list_cards(self, filters: CardFilters) -> list[Flashcard]:
        where, params = _where_clause(filters)
        sql = f"{CARD_SELECT}{where} ORDER BY {ORDERINGS[filters.order_by]}"
        if filters.limit is not None:
            sql += " LIMIT ?"
            params.append(filters.limit)
        conn = get_connection(self.db_path)
        rows = conn.execute(sql, params).fetchall()
        conn.close()
        return [card_from_row(r) for r in rows]

    def count_cards(self, filters: CardFilters) -> int:
        where, params = _where_clause(filters)
        conn = get_connection(self.db_path)
        count = conn.execute(f"SELECT COUNT(*) FROM flashcards f{where}", params).fetchone()[0]
        conn.close()
        return count

    def list_tags(self) -> list[str]:
        conn = get_connection(self.db_path)
        rows = conn.execute("SELECT DISTINCT tag FROM flashcard_tags ORDER BY tag").fetchall()
        conn.close()
        return [r["tag"] for r in rows]

    def _apply_card_changes(self, conn: sqlite3.Connection, card_id: int, changes: dict,
                            expected_version: int | None) -> None:
        unknown = set(changes) - CARD_COLUMNS
        if unknown:
            raise ValueError(f"cannot update flashcard columns: {sorted(unknown)}")
        assignments = [f"{col} = ?" for col in changes]
        params = [_to_db(v) for v in changes.values()]
        assignments += ["updated_at = ?", "version = version + 1"]
        params.append(datetime.now().isoformat())
        sql = f"UPDATE flashcards SET {', '.join(assignments)} WHERE id = ?"
        params.append(card_id)
        if expected_version is not None:
            sql += " AND version = ?"
            params.append(expected_version)
        cur = conn.execute(sql, params)
        if cur.rowcount == 0:
            exists = conn.execute("SELECT version FROM flashcards WHERE id = ?", (card_id,)).fetchone()
            if exists is None:
                raise NotFound("flashcard", card_id)
            raise StaleWriteError(
                f"flashcard {card_id} is at version {exists['version']}, expected {expected_version}"
            )

    def update_card(self, card_id: int, changes: dict, expected_version: int | None = None) -> Flashcard:
        conn = get_connection(self.db_path)
        try:
            self._apply_card_changes(conn, card_id, changes, expected_version)
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StoreWriteFailure(f"updating flashcard {card_id} failed", exc) from exc
        except (NotFound, StaleWriteError):
            conn.rollback()
            raise
        finally:
            conn.close()
        return self.get_card(card_id)

    def set_status(self, card_ids: Iterable[int], status: CardStatus) -> int:
        ids = list(card_ids)
        if not ids:
            return 0
        marks = ", ".join("?" for _ in ids)
        conn = get_connection(self.db_path)
        cur = conn.execute(
            f"""UPDATE flashcards SET status = ?, updated_at = ?, version = version + 1
            WHERE id IN ({marks})""",
            [_to_db(status), datetime.now().isoformat(), *ids],
        )
        conn.commit()
        conn.close()
        return cur.rowcount

    # --- reviews ---

    @staticmethod
    def _insert_review(conn: sqlite3.Connection, review: Review) -> int:
        cur = conn.execute(
            """INSERT INTO flashcard_reviews (flashcard_id, session_id, reviewed_at, quality,
            response_time, previous_ease_factor, previous_interval, previous_repetitions,
            new_ease_factor, new_interval, new_repetitions)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                review.flashcard_id, review.session_id, review.reviewed_at.isoformat(),
                review.quality, review.response_time_ms, review.previous_ease_factor,
                review.previous_interval, review.previous_repetitions, review.new_ease_factor,
                review.new_interval, review.new_repetitions,
            ),
        )
        return cur.lastrowid

    def _get_review(self, review_id: int) -> Review:
        conn = get_connection(self.db_path)
        row = conn.execute("SELECT * FROM flashcard_reviews WHERE id = ?", (review_id,)).fetchone()
        conn.close()
        return review_from_row(row)

    def append_review(self, review: Review) -> Review:
        conn = get_connection(self.db_path)
        try:
            review_id = self._insert_review(conn, review)
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StoreWriteFailure(f"appending review for flashcard {review.flashcard_id} failed", exc) from exc
        finally:
            conn.close()
        return self._get_review(review_id)

    def record_review(self, card_id: int, expected_version: int, changes: dict,
                      review: Review) -> tuple[Flashcard, Review]:
        """Write the new card state and its review in one transaction."""
        conn = get_connection(self.db_path)
        try:
            self._apply_card_changes(conn, card_id, changes, expected_version)
            review_id = self._insert_review(conn, review)
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StoreWriteFailure(f"recording review for flashcard {card_id} failed", exc) from exc
        except (NotFound, StaleWriteError):
            conn.rollback()
            raise
        finally:
            conn.close()
        logger.debug("recorded review %s for flashcard %s", review_id, card_id)
        return self.get_card(card_id), self._get_review(review_id)

    def list_reviews(
        self,
        since: datetime | None = None,
        until: datetime | None = None,
        session_id: int | None = None,
        flashcard_id: int | None = None,
    ) -> list[Review]:
        clauses, params = [], []
        if since is not None:
            clauses.append("reviewed_at >= ?")
            params.append(since.isoformat())
        if until is not None:
            clauses.append("reviewed_at <= ?")
            params.append(until.isoformat())
        if session_id is not None:
            clauses.append("session_id = ?")
            params.append(session_id)
        if flashcard_id is not None:
            clauses.append("flashcard_id = ?")
            params.append(flashcard_id)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        conn = get_connection(self.db_path)
        rows = conn.execute(
            f"SELECT * FROM flashcard_reviews{where} ORDER BY reviewed_at ASC, id ASC", params
        ).fetchall()
        conn.close()
        return [review_from_row(r) for r in rows]

    def list_review_dates(self) -> list[date]:
        """Distinct calendar dates with at least one review, newest first."""
        conn = get_connection(self.db_path)
        rows = conn.execute(
            "SELECT DISTINCT substr(reviewed_at, 1, 10) AS day FROM flashcard_reviews ORDER BY day DESC"
        ).fetchall()
        conn.close()
        return [date.fromisoformat(r["day"]) for r in rows]

    # --- sessions ---

    def create_session(
        self,
        session_type: SessionType,
        deck_id: int | None = None,
        note_id: int | None = None,
        started_at: datetime | None = None,
    ) -> StudySession:
        started_at = started_at or datetime.now()
        conn = get_connection(self.db_path)
        try:
            cur = conn.execute(
                "INSERT INTO study_sessions (deck_id, note_id, session_type, started_at) VALUES (?, ?, ?, ?)",
                (deck_id, note_id, _to_db(session_type), started_at.isoformat()),
            )
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StoreWriteFailure("creating study session failed", exc) from exc
        finally:
            conn.close()
        return self.get_session(cur.lastrowid)

    def get_session(self, session_id: int) -> StudySession:
        conn = get_connection(self.db_path)
        row = conn.execute("SELECT * FROM study_sessions WHERE id = ?", (session_id,)).fetchone()
        conn.close()
        if row is None:
            raise NotFound("study session", session_id)
        return session_from_row(row)

    def _write_session(self, session_id: int, sql: str, params: tuple) -> StudySession:
        conn = get_connection(self.db_path)
        try:
            cur = conn.execute(sql, params)
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StoreWriteFailure(f"updating study session {session_id} failed", exc) from exc
        finally:
            conn.close()
        if cur.rowcount == 0:
            raise NotFound("study session", session_id)
        return self.get_session(session_id)

    def update_session(self, session_id: int, cards_studied: int, cards_correct: int,
                       total_time_seconds: float) -> StudySession:
        return self._write_session(
            session_id,
            "UPDATE study_sessions SET cards_studied = ?, cards_correct = ?, total_time = ? WHERE id = ?",
            (cards_studied, cards_correct, total_time_seconds, session_id),
        )

    def end_session(self, session_id: int, ended_at: datetime | None = None) -> StudySession:
        ended_at = ended_at or datetime.now()
        return self._write_session(
            session_id,
            "UPDATE study_sessions SET ended_at = ? WHERE id = ?",
            (ended_at.isoformat(), session_id),
        )
