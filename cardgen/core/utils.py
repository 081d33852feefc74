from typing import Optional

import chess.engine

from cardgen.core.models import Eval


def score_to_eval(score: chess.engine.Score, depth: Optional[int] = None) -> Eval:
    # score is already relative to the side to move
    if score.is_mate():
        return Eval("mate", score.mate(), depth)
    return Eval("cp", score.score(), depth)


def format_eval(ev: Optional[Eval]) -> str:
    if ev is None:
        return ""
    if ev.is_mate:
        sign = "+" if ev.value >= 0 else "-"
        return f"{sign}M{abs(ev.value)}"
    pawns = ev.value / 100
    shown = f"{pawns:.1f}" if abs(pawns) >= 1 else f"{pawns:.2f}"
    return f"+{shown}" if pawns >= 0 else shown
