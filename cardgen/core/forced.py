"""Forced answers: caller-declared replies that replace the engine's best move.

The backing file is a JSON object mapping a position (canonical key, or a
full FEN in older files) to either a bare SAN move or ``{"move", "pgn"}``.
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from cardgen.core.board import normalize_san, pgn_to_sans
from cardgen.core.store import atomic_write
from cardgen.core.transposition import canonical_key
from cardgen.errors import CardGenError, CollectionError

logger = logging.getLogger(__name__)


@dataclass
class ForcedAnswer:
    move: str  # SAN, normalized against the review position
    key: str  # entry key it was found under
    pgn: Optional[str] = None

    def as_criteria(self, original_best: Optional[str]) -> Dict[str, Any]:
        return {"move": self.move, "originalBest": original_best, "key": self.key, "pgn": self.pgn}


def _entry_parts(value: Any):
    if isinstance(value, str):
        return value, None
    if isinstance(value, dict) and isinstance(value.get("move"), str):
        pgn = value.get("pgn")
        return value["move"], pgn if isinstance(pgn, str) and pgn.strip() else None
    return None, None


class ForcedAnswers:
    def __init__(self, entries: Optional[Dict[str, Any]] = None, path: Optional[str] = None):
        self.entries: Dict[str, Any] = dict(entries or {})
        self.path = path

    @classmethod
    def load(cls, path: str) -> "ForcedAnswers":
        if not os.path.exists(path):
            return cls(path=path)
        with open(path, "r", encoding="utf-8") as f:
            text = f.read().strip()
        if not text:
            return cls(path=path)
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as e:
            raise CollectionError(f"Forced answers file {path} is not valid JSON: {e}") from e
        if not isinstance(raw, dict):
            raise CollectionError(f"Forced answers file {path} must hold a JSON object")
        return cls(raw, path=path)

    def save(self, path: Optional[str] = None):
        target = path or self.path
        if not target:
            raise ValueError("No path to save forced answers to")
        atomic_write(target, json.dumps(self.entries, indent=2, ensure_ascii=False) + "\n", prefix=".forced-")

    def set(self, position: str, move: str, pgn: Optional[str] = None):
        key = canonical_key(position) if "/" in position else position
        self.entries[key] = {"move": move, "pgn": pgn} if pgn else move

    def remove(self, position: str) -> bool:
        for key in (position, canonical_key(position)):
            if key in self.entries:
                del self.entries[key]
                return True
        return False

    def _candidates(self, fen: str, moves: List[str]):
        key = canonical_key(fen)
        if key in self.entries:
            yield key
        if fen in self.entries and fen != key:
            yield fen
        for k in self.entries:
            if k not in (key, fen) and "/" in k and canonical_key(k) == key:
                yield k
        if not moves:
            return
        for k, value in self.entries.items():
            _, pgn = _entry_parts(value)
            if not pgn:
                continue
            try:
                if pgn_to_sans(pgn) == list(moves):
                    yield k
            except CardGenError:
                continue

    def lookup(self, fen: str, moves: Optional[List[str]] = None) -> Optional[ForcedAnswer]:
        """Forced reply for the review position, or None.

        Entries whose move is not legal from ``fen`` are skipped.
        """
        for k in self._candidates(fen, list(moves or [])):
            move, pgn = _entry_parts(self.entries[k])
            san = normalize_san(fen, move) if move else None
            if san is None:
                logger.warning("Ignoring forced answer %r for %s: not a legal move", move, k)
                continue
            return ForcedAnswer(san, k, pgn)
        return None
