"""Whole-file JSON persistence for the card collection.

The file is a JSON array of cards. Small structures (evals, tags, lines) are
written inline and ``otherAnswers`` one item per line, so diffs stay
readable. A legacy ``{"cards": [...]}`` wrapper is read but never written.

There is no locking: ``load`` then ``save`` is a plain read-modify-write and
the last writer wins. Callers that may run concurrently must serialize.
"""

import json
import logging
import os
import tempfile
from typing import Any, List, Optional, Tuple

from cardgen.core.models import Card
from cardgen.errors import CollectionError

logger = logging.getLogger(__name__)

# rendered on a single line
_INLINE_KEYS = {"eval", "tags", "children", "descendants", "exampleLine"}
# one compact item per line
_ITEM_PER_LINE_KEYS = {"otherAnswers"}

SHAPE_EMPTY = "empty"
SHAPE_ARRAY = "array"
SHAPE_WRAPPED = "wrapped"


def read_shape(text: str) -> Tuple[str, List[Any]]:
    """Classify raw file text and return ``(shape, items)``."""
    if not text.strip():
        return SHAPE_EMPTY, []
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise CollectionError(f"Collection is not valid JSON: {e}") from e
    if isinstance(parsed, list):
        return SHAPE_ARRAY, parsed
    if isinstance(parsed, dict) and isinstance(parsed.get("cards"), list):
        return SHAPE_WRAPPED, parsed["cards"]
    raise CollectionError("Collection root must be an array or an object with a \"cards\" array")


def _compact(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(", ", ": "))


def _render(value: Any, indent: int, key: Optional[str] = None) -> str:
    pad = "  " * indent
    inner = "  " * (indent + 1)
    if key in _INLINE_KEYS:
        return _compact(value)
    if isinstance(value, dict):
        if not value:
            return "{}"
        items = [f"{inner}{json.dumps(k, ensure_ascii=False)}: {_render(v, indent + 1, k)}" for k, v in value.items()]
        return "{\n" + ",\n".join(items) + "\n" + pad + "}"
    if isinstance(value, list):
        if not value:
            return "[]"
        if key in _ITEM_PER_LINE_KEYS:
            items = [inner + _compact(v) for v in value]
        else:
            items = [inner + _render(v, indent + 1) for v in value]
        return "[\n" + ",\n".join(items) + "\n" + pad + "]"
    return json.dumps(value, ensure_ascii=False)


def render_collection(cards: List[Card]) -> str:
    return _render([c.to_dict() for c in cards], 0) + "\n"


def atomic_write(path: str, text: str, prefix: str = ".cards-"):
    """Write ``text`` to ``path`` so a crash leaves either the old or the new file."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=prefix, suffix=".json", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


class CardStore:
    def __init__(self, path: str):
        self.path = path

    def load(self) -> List[Card]:
        if not os.path.exists(self.path):
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            shape, items = read_shape(f.read())
        if shape == SHAPE_WRAPPED:
            logger.debug("Reading legacy wrapped collection %s", self.path)
        cards = []
        for i, raw in enumerate(items):
            if not isinstance(raw, dict):
                raise CollectionError(f"Collection entry {i} is not an object")
            cards.append(Card.from_dict(raw))
        return cards

    def save(self, cards: List[Card]):
        atomic_write(self.path, render_collection(cards))
        logger.info("Saved %d card(s) to %s", len(cards), self.path)

    def get(self, card_id: str) -> Optional[Card]:
        for c in self.load():
            if c.id == card_id:
                return c
        return None

    def upsert(self, card: Card) -> bool:
        """Insert ``card`` or replace the entry with its id. Returns True on replace."""
        cards = self.load()
        for i, c in enumerate(cards):
            if c.id == card.id:
                cards[i] = card
                self.save(cards)
                return True
        cards.append(card)
        self.save(cards)
        return False
