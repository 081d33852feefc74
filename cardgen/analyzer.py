# cardgen/analyzer.py
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from cardgen.core.forced import ForcedAnswer
from cardgen.core.models import Card, Eval, OtherAnswer
from cardgen.core.pv import uci_line_to_san
from cardgen.core.session import AnalysisResult


@dataclass
class AnswerSet:
    answer: str
    eval: Optional[Eval] = None
    example_line: List[str] = field(default_factory=list)
    other_answers: List[OtherAnswer] = field(default_factory=list)
    engine_results: List[Dict[str, Any]] = field(default_factory=list)
    forced: Optional[Dict[str, Any]] = None
    anchor_id: Optional[str] = None


def accepts(best: Eval, candidate: Eval, window_cp: int) -> bool:
    """Whether ``candidate`` is close enough to ``best`` to count as an answer.

    Both scores are from the side to move, so a candidate is never better
    than the best line:
      - cp vs cp: keep if it trails by at most ``window_cp``
      - mate vs mate: keep if same sign and the mate is not shorter
      - mixed kinds never qualify
    """
    if best.kind == "cp" and candidate.kind == "cp":
        return best.value - candidate.value <= window_cp
    if best.kind == "mate" and candidate.kind == "mate":
        same_sign = (best.value >= 0) == (candidate.value >= 0)
        return same_sign and abs(candidate.value) >= abs(best.value)
    return False


class AnswerSelector:
    def __init__(self, acceptance: float = 0.20, max_other_answers: int = 4):
        self.window_cp = round(100 * acceptance)
        self.max_other_answers = max(0, max_other_answers)

    def _lines(self, fen: str, result: Optional[AnalysisResult]) -> List[Tuple[int, Eval, List[str]]]:
        """(slot, score, SAN line) for every slot whose PV converts to at least one move."""
        if result is None:
            return []
        out = []
        for s in result.slots:
            if s.score is None:
                continue
            line = uci_line_to_san(fen, s.pv)
            if line:
                out.append((s.slot, s.score, line))
        return out

    def from_engine(self, fen: str, result: Optional[AnalysisResult]) -> Optional[AnswerSet]:
        """Best reply plus bounded alternatives, or None with no usable slot."""
        lines = self._lines(fen, result)
        if not lines:
            return None
        # rank slot 1 normally; the lowest usable slot if its PV was garbage
        _, best_eval, best_line = lines[0]
        answer = best_line[0]

        others: List[OtherAnswer] = []
        seen = {answer}
        for _, score, line in lines[1:]:
            if len(others) >= self.max_other_answers:
                break
            move = line[0]
            if move in seen:
                continue
            if accepts(best_eval, score, self.window_cp):
                seen.add(move)
                others.append(OtherAnswer(move, score))

        return AnswerSet(
            answer=answer,
            eval=best_eval,
            example_line=best_line,
            other_answers=others,
            engine_results=[
                {"slot": slot, "depth": score.depth, "score": score.to_dict(), "move": line[0]}
                for slot, score, line in lines
            ],
        )

    def from_card(self, card: Card) -> AnswerSet:
        """Reuse an existing card's answer set (transposition anchor or kept overwrite).

        Alternative evals are re-tagged from the card's recorded engine results
        when it has them, so older cards with bare-string alternatives regain
        their scores.
        """
        f = card.fields
        recorded = (f.creation_criteria or {}).get("engineResults") or []
        eval_map = {}
        for r in recorded:
            if isinstance(r, dict) and r.get("move"):
                ev = Eval.from_dict(r.get("score"))
                if ev is not None:
                    eval_map[r["move"]] = ev
        others = [OtherAnswer(o.move, eval_map.get(o.move, o.eval)) for o in f.other_answers]
        return AnswerSet(
            answer=f.answer,
            eval=f.eval,
            example_line=list(f.example_line),
            other_answers=others,
            engine_results=list(recorded),
            anchor_id=card.id,
        )

    def apply_forced(
        self,
        answers: Optional[AnswerSet],
        forced: ForcedAnswer,
        fen: str,
        result: Optional[AnalysisResult] = None,
    ) -> AnswerSet:
        """Commit ``forced.move`` as the answer without losing the engine's choice.

        When the forced move differs from the engine's best, the best moves to
        the front of ``otherAnswers``. The forced move's own line and score are
        used when the engine reported one.
        """
        original = answers.answer if answers else None
        if answers is None:
            answers = AnswerSet(answer=forced.move)
        answers.forced = forced.as_criteria(original)
        if original == forced.move:
            return answers

        forced_eval, forced_line = next(
            ((score, line) for _, score, line in self._lines(fen, result) if line[0] == forced.move),
            (None, None),
        )

        others = [o for o in answers.other_answers if o.move not in (forced.move, original)]
        if original:
            others.insert(0, OtherAnswer(original, answers.eval))
        # the displaced best is always kept, even with a zero bound
        answers.other_answers = others[: max(1, self.max_other_answers)]
        answers.answer = forced.move
        answers.eval = forced_eval
        answers.example_line = forced_line or [forced.move]
        return answers
