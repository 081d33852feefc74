"""Canonical position keys, duplicate detection and transposition handling.

Two cards transpose when their review positions agree on the first four FEN
fields (placement, side to move, castling rights, en-passant target). Move
clocks are left out so positions reached through a different number of
reversible moves unify.

Usage:

    resolver = TranspositionResolver(cards)
    dup = resolver.find_duplicate(deck, sans, fen)
    siblings = resolver.siblings(deck, fen)

    # after the final answer is known
    touched = propagate_answer(cards, new_card)
"""
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Tuple

from cardgen.core.board import fen_after
from cardgen.core.models import Card, OtherAnswer

logger = logging.getLogger(__name__)

SKIP = "skip"
OVERWRITE = "overwrite"


def canonical_key(fen: str) -> str:
    return " ".join((fen or "").split()[:4])


def duplicate_key(deck: str, moves: Iterable[str], fen: str) -> Tuple[str, str, str]:
    """Identity of a card request: deck plus move path.

    Position-only cards all share the empty path, so they are told apart by
    their canonical position instead.
    """
    path = " ".join(moves)
    return deck, path, "" if path else canonical_key(fen)


def normalize_strategy(strategy: Optional[str]) -> str:
    return OVERWRITE if strategy == OVERWRITE else SKIP


class TranspositionResolver:
    """Index over a loaded collection for duplicate and transposition checks."""

    def __init__(self, cards: List[Card]):
        self._by_identity: Dict[Tuple[str, str, str], Card] = {}
        self._by_position: Dict[Tuple[str, str], List[Card]] = defaultdict(list)
        for card in cards:
            f = card.fields
            self._by_identity.setdefault(duplicate_key(card.deck, f.move_sequence, f.fen), card)
            self._by_position[(card.deck, canonical_key(f.fen))].append(card)

    def find_duplicate(self, deck: str, moves: Iterable[str], fen: str) -> Optional[Card]:
        return self._by_identity.get(duplicate_key(deck, moves, fen))

    def siblings(self, deck: str, fen: str, exclude_id: Optional[str] = None) -> List[Card]:
        """Cards in ``deck`` whose review position transposes to ``fen``."""
        return [
            c for c in self._by_position.get((deck, canonical_key(fen)), [])
            if c.id != exclude_id
        ]

    def anchor_for(self, deck: str, fen: str, overwrite: bool, forced: bool) -> Optional[Card]:
        """Sibling whose analysis can be reused, or None when the engine must run."""
        if overwrite or forced:
            return None
        siblings = self.siblings(deck, fen)
        return siblings[0] if siblings else None


def propagate_answer(cards: List[Card], source: Card) -> List[str]:
    """Copy ``source``'s answer set onto every transposing card in its deck.

    ``answerFen`` is recomputed from each sibling's own FEN since move clocks
    may differ. Returns the ids that were rewritten.
    """
    key = canonical_key(source.fields.fen)
    touched = []
    for card in cards:
        if card.id == source.id or card.deck != source.deck:
            continue
        if canonical_key(card.fields.fen) != key:
            continue
        f = card.fields
        f.answer = source.fields.answer
        f.answer_fen = fen_after(f.fen, f.answer)
        f.eval = source.fields.eval
        f.example_line = list(source.fields.example_line)
        f.other_answers = [OtherAnswer(o.move, o.eval) for o in source.fields.other_answers]
        touched.append(card.id)
    if touched:
        logger.info("Synced answer %s to transposing card(s) %s", source.fields.answer, ", ".join(touched))
    return touched
