"""Cloze deletion parsing and decomposition into study units.

Markers use the Anki form ``{{c1::answer}}`` or ``{{c1::answer::hint}}``.
The bare ``{{1::answer}}`` form is accepted too. Several markers may share
an id, in which case they are hidden and revealed together.
"""
import re

from flashdeck.models import Cloze, Flashcard, StudyUnit

MARKER_RE = re.compile(r"\{\{c?(\d+)::(.*?)(?:::(.*?))?\}\}", re.DOTALL)
BLANK = "[...]"


def extract_marker_ids(text: str) -> list[int]:
    """Sorted distinct positive marker ids found in ``text``."""
    ids = {int(m.group(1)) for m in MARKER_RE.finditer(text)}
    ids.discard(0)
    return sorted(ids)


def decompose(card: Flashcard) -> list[StudyUnit]:
    """Split a card into the study units it represents.

    Front/back cards and cloze cards with at most one distinct marker id
    yield a single unit; every other cloze card yields one unit per id.
    """
    if not isinstance(card.content, Cloze):
        return [StudyUnit(flashcard=card)]
    ids = extract_marker_ids(card.content.text)
    if not ids:
        return [StudyUnit(flashcard=card, target_marker=None, total_markers=1)]
    if len(ids) == 1:
        return [StudyUnit(flashcard=card, target_marker=ids[0], total_markers=1)]
    return [StudyUnit(flashcard=card, target_marker=i, total_markers=len(ids)) for i in ids]


def decompose_all(cards: list[Flashcard]) -> list[StudyUnit]:
    units = []
    for card in cards:
        units.extend(decompose(card))
    return units


def render_question(text: str, target: int | None) -> str:
    """Hide the target marker and show the answers of every other marker.

    With no target every marker is hidden.
    """
    def replace(m: re.Match) -> str:
        marker_id = int(m.group(1))
        if target is None or marker_id == target:
            hint = m.group(3)
            return f"[{hint}]" if hint else BLANK
        return m.group(2)

    return MARKER_RE.sub(replace, text)


def render_answer(text: str, target: int | None, reveal_all: bool = True) -> str:
    """Fill in markers for the answer side.

    With ``reveal_all`` every marker shows its answer; otherwise only the
    target is filled in and the rest stay hidden.
    """
    def replace(m: re.Match) -> str:
        marker_id = int(m.group(1))
        if reveal_all or target is None or marker_id == target:
            return m.group(2)
        return BLANK

    return MARKER_RE.sub(replace, text)


def get_cloze_answer(text: str, marker_id: int) -> str:
    """Answers for one marker id, joined when the id repeats."""
    return ", ".join(m.group(2) for m in MARKER_RE.finditer(text) if int(m.group(1)) == marker_id)


def get_cloze_hint(text: str, marker_id: int) -> str | None:
    for m in MARKER_RE.finditer(text):
        if int(m.group(1)) == marker_id and m.group(3):
            return m.group(3)
    return None


def is_valid_cloze(text: str) -> bool:
    """True when the text has at least one non-empty marker and balanced braces."""
    if not any(m.group(2) for m in MARKER_RE.finditer(text)):
        return False
    return text.count("{{") == text.count("}}")
