"""Card records and their persisted (camelCase JSON) shape.

A card reviews one position: ``fields.fen`` is reached by playing
``fields.move_sequence`` from the start position (or is given directly for
position-only cards), and ``fields.answer`` is the reply to learn.

Legacy data is accepted on read:
  - ``moveSequence`` as a list instead of a space-joined string
  - ``otherAnswers`` items as bare SAN strings instead of ``{move, eval}``
Unknown keys are kept in ``extra`` so a load/save cycle never drops them.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

WHITE_DECK = "white-other"
BLACK_DECK = "black-other"

_FIELD_KEYS = {
    "moveSequence", "fen", "answer", "answerFen", "eval", "exampleLine",
    "otherAnswers", "depth", "parent", "children", "creationCriteria",
}
_CARD_KEYS = {"id", "deck", "tags", "fields", "due"}


def deck_for_side(side: str) -> str:
    """Deck bucket for a FEN side-to-move field ('w' or 'b')."""
    return WHITE_DECK if side == "w" else BLACK_DECK


def depth_from_plies(plies: int) -> int:
    """Move number of the review position after ``plies`` half-moves."""
    if plies < 0:
        plies = 0
    if plies % 2 == 0:
        return plies // 2 + 1
    return (plies + 1) // 2


@dataclass
class Eval:
    kind: str  # "cp" | "mate"
    value: int
    depth: Optional[int] = None

    @property
    def is_mate(self) -> bool:
        return self.kind == "mate"

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"kind": self.kind, "value": self.value}
        if self.depth is not None:
            out["depth"] = self.depth
        return out

    @staticmethod
    def from_dict(raw: Any) -> Optional["Eval"]:
        if not isinstance(raw, dict) or raw.get("kind") not in ("cp", "mate"):
            return None
        try:
            value = int(raw["value"])
        except (KeyError, TypeError, ValueError):
            return None
        depth = raw.get("depth")
        return Eval(raw["kind"], value, int(depth) if isinstance(depth, (int, float)) else None)


@dataclass
class OtherAnswer:
    move: str
    eval: Optional[Eval] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"move": self.move}
        if self.eval is not None:
            out["eval"] = self.eval.to_dict()
        return out

    @staticmethod
    def from_raw(raw: Any) -> Optional["OtherAnswer"]:
        if isinstance(raw, str):
            return OtherAnswer(raw) if raw else None
        if isinstance(raw, dict) and isinstance(raw.get("move"), str) and raw["move"]:
            return OtherAnswer(raw["move"], Eval.from_dict(raw.get("eval")))
        return None


@dataclass
class CardFields:
    fen: str
    move_sequence: List[str] = field(default_factory=list)
    answer: str = ""
    answer_fen: Optional[str] = None
    eval: Optional[Eval] = None
    example_line: List[str] = field(default_factory=list)
    other_answers: List[OtherAnswer] = field(default_factory=list)
    depth: int = 1
    parent: Optional[str] = None
    children: List[str] = field(default_factory=list)
    creation_criteria: Optional[Dict[str, Any]] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def path_key(self) -> str:
        return " ".join(self.move_sequence)

    def other_moves(self) -> List[str]:
        return [o.move for o in self.other_answers]

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "moveSequence": self.path_key,
            "fen": self.fen,
            "answer": self.answer,
        }
        if self.answer_fen:
            out["answerFen"] = self.answer_fen
        if self.eval is not None:
            out["eval"] = self.eval.to_dict()
        out["exampleLine"] = list(self.example_line)
        out["otherAnswers"] = [o.to_dict() for o in self.other_answers]
        out["depth"] = self.depth
        if self.parent:
            out["parent"] = self.parent
        out["children"] = list(self.children)
        if self.creation_criteria is not None:
            out["creationCriteria"] = self.creation_criteria
        out.update(self.extra)
        return out

    @staticmethod
    def from_dict(raw: Dict[str, Any]) -> "CardFields":
        seq = raw.get("moveSequence") or ""
        if isinstance(seq, list):
            moves = [str(s) for s in seq if s]
        else:
            moves = str(seq).split()
        others = [o for o in (OtherAnswer.from_raw(r) for r in raw.get("otherAnswers") or []) if o]
        depth = raw.get("depth")
        return CardFields(
            fen=str(raw.get("fen") or ""),
            move_sequence=moves,
            answer=str(raw.get("answer") or ""),
            answer_fen=raw.get("answerFen") or None,
            eval=Eval.from_dict(raw.get("eval")),
            example_line=[str(s) for s in raw.get("exampleLine") or []],
            other_answers=others,
            depth=int(depth) if isinstance(depth, (int, float)) else depth_from_plies(len(moves)),
            parent=raw.get("parent") or None,
            children=[str(c) for c in raw.get("children") or []],
            creation_criteria=raw.get("creationCriteria"),
            extra={k: v for k, v in raw.items() if k not in _FIELD_KEYS},
        )


@dataclass
class Card:
    id: str
    deck: str
    fields: CardFields
    tags: List[str] = field(default_factory=list)
    due: Optional[str] = "new"
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "deck": self.deck,
            "tags": list(self.tags),
            "fields": self.fields.to_dict(),
        }
        if self.due is not None:
            out["due"] = self.due
        out.update(self.extra)
        return out

    @staticmethod
    def from_dict(raw: Dict[str, Any]) -> "Card":
        return Card(
            id=str(raw.get("id") or ""),
            deck=str(raw.get("deck") or ""),
            fields=CardFields.from_dict(raw.get("fields") or {}),
            tags=list(dict.fromkeys(str(t) for t in raw.get("tags") or [])),
            due=raw.get("due"),
            extra={k: v for k, v in raw.items() if k not in _CARD_KEYS},
        )
