"""Bulk card import from JSON, YAML or tab-separated text files."""
import json
import logging
from pathlib import Path

from flashdeck.cloze import MARKER_RE
from flashdeck.flashcards import CardRepository
from flashdeck.models import Cloze, FrontBack

logger = logging.getLogger(__name__)


def _entry_to_card(entry: dict) -> tuple[FrontBack | Cloze, list[str]]:
    tags = entry.get("tags") or []
    if isinstance(tags, str):
        tags = [t.strip() for t in tags.split(",") if t.strip()]
    if entry.get("cloze"):
        return Cloze(entry["cloze"]), tags
    if "front" in entry and "back" in entry:
        return FrontBack(str(entry["front"]), str(entry["back"])), tags
    raise ValueError(f"card entry needs 'front' and 'back' or 'cloze': {entry!r}")


def _parse_line(line: str) -> tuple[FrontBack | Cloze, list[str]] | None:
    line = line.strip()
    if not line or line.startswith("#"):
        return None
    parts = line.split("\t")
    if MARKER_RE.search(parts[0]):
        tags = parts[1].split(",") if len(parts) > 1 else []
        return Cloze(parts[0]), [t.strip() for t in tags if t.strip()]
    if len(parts) < 2:
        raise ValueError(f"expected 'front<TAB>back' or a cloze line, got {line!r}")
    tags = parts[2].split(",") if len(parts) > 2 else []
    return FrontBack(parts[0], parts[1]), [t.strip() for t in tags if t.strip()]


def read_cards(file_path: str) -> list[tuple[FrontBack | Cloze, list[str]]]:
    path = Path(file_path)
    suffix = path.suffix.lower()

    if suffix in (".json", ".yaml", ".yml"):
        if suffix == ".json":
            data = json.loads(path.read_text(encoding="utf-8"))
        else:
            import yaml
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        if isinstance(data, dict):
            data = data.get("cards", [])
        return [_entry_to_card(entry) for entry in data]
    else:
        # Tab-separated text, one card per line
        cards = []
        for line in path.read_text(encoding="utf-8").splitlines():
            parsed = _parse_line(line)
            if parsed:
                cards.append(parsed)
        return cards


def import_file(repository: CardRepository, file_path: str, deck_id: int) -> dict:
    """Create every card found in ``file_path`` in the given deck."""
    cards = read_cards(file_path)
    created = [repository.create_card(deck_id, content, tags=tags) for content, tags in cards]
    logger.info("imported %d cards from %s into deck %s", len(created), file_path, deck_id)
    return {"filename": Path(file_path).name, "deck_id": deck_id, "created": len(created)}
