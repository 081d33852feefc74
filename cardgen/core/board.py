"""Board wrapper over python-chess: the rules and notation layer.

Everything that needs chess knowledge (legality, FEN, SAN/UCI conversion,
PGN movetext) goes through here so the rest of the package only handles
strings.
"""

import io
import re
from typing import List, Optional

import chess
import chess.pgn

from cardgen.errors import InvalidFEN, InvalidMoveSequence

START_PLACEMENT = chess.STARTING_BOARD_FEN


class ChessBoard:
    def __init__(self, fen: str = None):
        """Initialize from FEN or the standard starting position."""
        self.board = chess.Board(validate_fen(fen)) if fen else chess.Board()
        self.move_history: List[str] = []

    def get_fen(self) -> str:
        """Return the current FEN."""
        return self.board.fen()

    def parse_move(self, move_str: str) -> Optional[chess.Move]:
        """Resolve a SAN or UCI token to a legal move, or None.

        Null moves ("--", "0000") are never legal here.
        """
        token = (move_str or "").strip()
        if not token:
            return None
        try:
            move = self.board.parse_san(token)
        except ValueError:
            move = None
        if move is not None:
            return move or None
        try:
            move = chess.Move.from_uci(token.lower())
        except ValueError:
            return None
        return move if move in self.board.legal_moves else None

    def make_move(self, move_str: str) -> bool:
        """Push a SAN or UCI move. Returns True if legal."""
        move = self.parse_move(move_str)
        if move is None:
            return False
        self.move_history.append(self.board.san(move))
        self.board.push(move)
        return True

    def push_san(self, move_str: str) -> str:
        """Push a move and return its normalized SAN; raise on illegal input."""
        if not self.make_move(move_str):
            raise InvalidMoveSequence(f"Invalid move in moves/PGN: {move_str}")
        return self.move_history[-1]


# ---------------------------------------------------------------------------
# Input helpers
# ---------------------------------------------------------------------------

def validate_fen(fen: str) -> str:
    """Return the normalized FEN or raise InvalidFEN."""
    text = (fen or "").strip()
    if not text:
        raise InvalidFEN("Enter a FEN.")
    try:
        board = chess.Board(text)
    except ValueError as e:
        raise InvalidFEN(f"Invalid FEN: {e}") from e
    if not board.is_valid():
        raise InvalidFEN(f"Illegal position: {text} ({board.status()!r})")
    return board.fen()


def normalize_start_fen(fen: str, keep_side: bool = False) -> str:
    """Flip a black-to-move start placement back to white to move.

    The initial placement with black to move is almost always a typo for
    the start position; ``keep_side`` keeps it as given.
    """
    parts = fen.split()
    if not keep_side and len(parts) >= 2 and parts[0] == START_PLACEMENT and parts[1] == "b":
        parts[1] = "w"
        return " ".join(parts)
    return fen


def split_moves(text: str) -> List[str]:
    """Split a move list given with spaces and/or commas."""
    return [t for t in re.split(r"[\s,]+", text or "") if t]


def pgn_to_sans(pgn: str) -> List[str]:
    """Parse PGN movetext into normalized SAN tokens of the mainline."""
    if not pgn or not pgn.strip():
        return []
    game = chess.pgn.read_game(io.StringIO(pgn))
    if game is None:
        return []
    if game.errors:
        raise InvalidMoveSequence(f"Invalid PGN: {game.errors[0]}")
    if game.board().fen() != chess.STARTING_FEN:
        raise InvalidMoveSequence("PGN must start from the initial position")
    board = game.board()
    sans = []
    for move in game.mainline_moves():
        if not move:
            raise InvalidMoveSequence("Null moves are not allowed in PGN")
        sans.append(board.san(move))
        board.push(move)
    return sans


def replay(moves: List[str]) -> ChessBoard:
    """Play ``moves`` from the start position; raise InvalidMoveSequence."""
    b = ChessBoard()
    for token in moves:
        b.push_san(token)
    return b


def normalize_san(fen: str, move_str: str) -> Optional[str]:
    """SAN of ``move_str`` (SAN or UCI) from ``fen``, or None if illegal."""
    b = ChessBoard(fen)
    move = b.parse_move(move_str)
    return b.board.san(move) if move is not None else None


def fen_after(fen: str, san: str) -> Optional[str]:
    """FEN after playing ``san`` from ``fen``, or None if illegal."""
    if not san:
        return None
    b = ChessBoard(fen)
    return b.get_fen() if b.make_move(san) else None
