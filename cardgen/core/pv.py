"""Principal-variation interpreter: engine coordinate moves to SAN."""

import re
from typing import Iterable, List

import chess

_UCI_TOKEN = re.compile(r"^[a-h][1-8][a-h][1-8][qrbn]?$", re.IGNORECASE)


def uci_line_to_san(fen: str, uci_moves: Iterable[str]) -> List[str]:
    """Convert a UCI move list to SAN, starting from ``fen``.

    Stops at the first token that is malformed or illegal, so a truncated or
    drifting engine line yields its valid prefix instead of an error.
    """
    board = chess.Board(fen)
    out: List[str] = []
    for token in uci_moves or []:
        if not _UCI_TOKEN.match(token):
            break
        move = chess.Move.from_uci(token.lower())
        if move not in board.legal_moves:
            break
        out.append(board.san(move))
        board.push(move)
    return out
