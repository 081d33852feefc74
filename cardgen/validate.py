# cardgen/validate.py
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List

import chess

from cardgen.core.transposition import canonical_key


@dataclass
class CardReport:
    card_id: str
    deck: str
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def _is_iso(s: Any) -> bool:
    if not isinstance(s, str):
        return False
    try:
        datetime.fromisoformat(s.replace("Z", "+00:00"))
        return True
    except ValueError:
        return False


def _is_str_list(v: Any) -> bool:
    return isinstance(v, list) and all(isinstance(x, str) for x in v)


def _eval_error(ev: Any):
    if not isinstance(ev, dict):
        return "fields.eval is missing"
    if ev.get("kind") not in ("cp", "mate"):
        return 'fields.eval.kind must be "cp" or "mate"'
    value = ev.get("value")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return "fields.eval.value must be a number"
    depth = ev.get("depth")
    if depth is not None and (not isinstance(depth, (int, float)) or depth < 0):
        return "fields.eval.depth must be a non-negative number if present"
    return None


def _load_board(fen: str):
    try:
        board = chess.Board(fen)
    except ValueError:
        return None
    return board if board.is_valid() else None


def _push(board: chess.Board, san: str) -> bool:
    try:
        move = board.parse_san(san)
    except ValueError:
        return False
    if not move:
        # "--" parses as a null move, which is never a legal card move
        return False
    board.push(move)
    return True


def validate_card(raw: Any) -> CardReport:
    if not isinstance(raw, dict):
        return CardReport("(no id)", "unknown", errors=["Malformed card object"])
    rep = CardReport(str(raw.get("id") or "(no id)"), str(raw.get("deck") or "unknown"))
    errs, warns = rep.errors, rep.warnings

    if not isinstance(raw.get("id"), str) or not raw["id"].strip():
        errs.append("id is required (string, non-empty)")
    if not isinstance(raw.get("deck"), str) or not raw["deck"].strip():
        errs.append("deck is required (string, non-empty)")
    if not _is_str_list(raw.get("tags")):
        errs.append("tags must be an array of strings")
    due = raw.get("due")
    if due is not None and due != "new" and not _is_iso(due):
        errs.append('due must be "new" or an ISO datetime string')

    f = raw.get("fields")
    if not isinstance(f, dict):
        errs.append("fields is required (object)")
        return rep
    if not isinstance(f.get("fen"), str) or not f["fen"].strip():
        errs.append("fields.fen is required (string, non-empty)")
    if not isinstance(f.get("moveSequence", ""), (str, list)):
        errs.append("fields.moveSequence must be a string (can be empty)")
    if not isinstance(f.get("answer"), str) or not f["answer"].strip():
        errs.append("fields.answer is required (SAN string)")
    eval_err = _eval_error(f.get("eval"))
    criteria = f.get("creationCriteria") if isinstance(f.get("creationCriteria"), dict) else {}
    if eval_err and f.get("eval") is None and criteria.get("forcedAnswer"):
        # forced moves the engine never scored carry no eval
        warns.append(eval_err + " (forced answer without an engine score)")
    elif eval_err:
        errs.append(eval_err)
    if f.get("exampleLine") is not None and not _is_str_list(f["exampleLine"]):
        errs.append("fields.exampleLine must be an array of SAN strings if present")
    others = f.get("otherAnswers")
    if others is not None and not (
        isinstance(others, list)
        and all(isinstance(o, str) or (isinstance(o, dict) and isinstance(o.get("move"), str)) for o in others)
    ):
        errs.append("fields.otherAnswers must be SAN strings or {move, eval} objects")
    if errs:
        return rep

    review = _load_board(f["fen"])
    if review is None:
        errs.append(f'fields.fen is not a legal position: "{f["fen"]}"')
        return rep

    seq = f.get("moveSequence") or ""
    sans = seq.split() if isinstance(seq, str) else list(seq)
    if sans:
        replayed = chess.Board()
        if not all(_push(replayed, s) for s in sans):
            errs.append("fields.moveSequence failed to replay from the start position")
        elif canonical_key(replayed.fen()) != canonical_key(review.fen()):
            warns.append(
                "moveSequence end position != review FEN (core mismatch)\n"
                f"    Moves:  {canonical_key(replayed.fen())}\n"
                f"    Review: {canonical_key(review.fen())}"
            )

    after = review.copy()
    if not _push(after, f["answer"]):
        errs.append(f'fields.answer "{f["answer"]}" is not legal from review FEN')
    elif isinstance(f.get("answerFen"), str) and f["answerFen"].strip():
        if canonical_key(after.fen()) != canonical_key(f["answerFen"]):
            warns.append(
                "answerFen mismatch with actual post-answer position\n"
                f"    Given:  {canonical_key(f['answerFen'])}\n"
                f"    Actual: {canonical_key(after.fen())}"
            )

    line_board = review.copy()
    for i, san in enumerate(f.get("exampleLine") or []):
        if not _push(line_board, san):
            errs.append(f'exampleLine move {i + 1} "{san}" is not legal from the review FEN')
            break
    return rep


def validate_cards(cards: List[Dict[str, Any]]) -> List[CardReport]:
    """Check raw card dicts for shape and chess legality, one report per card."""
    return [validate_card(c) for c in cards]
