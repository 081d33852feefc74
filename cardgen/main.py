"""Card generation: from a requested position to a committed study card.

Flow for one request:
  1. validate the input and compute the review position (no engine yet)
  2. duplicate check on (deck, move path): skip, or mark for overwrite
  3. reuse a transposing sibling's analysis, or run the engine
  4. pick answer and alternatives, apply any forced answer
  5. reload the collection, link the parent, sync transposing siblings, save
"""

import asyncio
import logging
import random
import string
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from cardgen.analyzer import AnswerSelector, AnswerSet
from cardgen.config import AnalysisConfig, Config, EngineConfig
from cardgen.core.board import (
    ChessBoard,
    fen_after,
    normalize_start_fen,
    pgn_to_sans,
    replay,
    split_moves,
    validate_fen,
)
from cardgen.core.forced import ForcedAnswers
from cardgen.core.lineage import find_parent, register_child, unregister_child
from cardgen.core.models import Card, CardFields, deck_for_side, depth_from_plies
from cardgen.core.session import AnalysisRequest, AnalysisResult, Analyzer, make_analyzer
from cardgen.core.store import CardStore
from cardgen.core.transposition import (
    OVERWRITE,
    TranspositionResolver,
    normalize_strategy,
    propagate_answer,
)
from cardgen.errors import CardGenError, EngineNoPrincipalVariations

logger = logging.getLogger(__name__)

CREATED = "created"
OVERWRITTEN = "overwritten"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class CardRequest:
    moves: Optional[Union[str, List[str]]] = None
    pgn: Optional[str] = None
    fen: Optional[str] = None
    keep_side: bool = False
    duplicate_strategy: Optional[str] = None
    analysis: Optional[AnalysisConfig] = None
    tags: List[str] = field(default_factory=list)


@dataclass
class ReviewPosition:
    sans: List[str]
    fen: str
    deck: str
    depth: int
    input: Dict[str, Any]


@dataclass
class CardResult:
    status: str
    card_id: Optional[str] = None
    message: str = ""
    error_kind: Optional[str] = None
    card: Optional[Card] = None
    analysis: Optional[AnalysisResult] = None
    synced: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status != FAILED

    @staticmethod
    def failed(err: CardGenError) -> "CardResult":
        return CardResult(FAILED, message=str(err), error_kind=err.kind)


def build_review(request: CardRequest) -> ReviewPosition:
    """Validate the request and compute the position to review.

    Moves win over PGN, PGN over FEN; with none of them the start position
    is reviewed.
    """
    moves = request.moves
    if isinstance(moves, str):
        moves = split_moves(moves)
    if moves:
        board = replay(moves)
        sans, fen = list(board.move_history), board.get_fen()
    elif request.pgn and request.pgn.strip():
        sans = pgn_to_sans(request.pgn)
        fen = replay(sans).get_fen()
    elif request.fen and request.fen.strip():
        sans = []
        fen = normalize_start_fen(validate_fen(request.fen), request.keep_side)
    else:
        sans, fen = [], ChessBoard().get_fen()

    parts = fen.split()
    if sans:
        depth = depth_from_plies(len(sans))
    else:
        # position-only: count plies from the FEN's own move number
        plies = (int(parts[5]) - 1) * 2 + (1 if parts[1] == "b" else 0)
        depth = depth_from_plies(plies)
    return ReviewPosition(
        sans=sans,
        fen=fen,
        deck=deck_for_side(parts[1]),
        depth=depth,
        input={"movesSAN": list(sans), "pgn": request.pgn or "", "fen": fen},
    )


def new_card_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=4))
    return f"c_{int(time.time() * 1000)}_{suffix}"


class CardGenerator:
    def __init__(
        self,
        store: CardStore,
        forced_answers: Optional[ForcedAnswers] = None,
        analysis: Optional[AnalysisConfig] = None,
        engine: Optional[EngineConfig] = None,
        analyzer: Optional[Analyzer] = None,
        duplicate_strategy: str = "skip",
        id_factory=new_card_id,
    ):
        self.store = store
        self.forced_answers = forced_answers or ForcedAnswers()
        self.analysis = analysis or AnalysisConfig()
        self.engine = engine or EngineConfig()
        self.analyzer = analyzer
        self.duplicate_strategy = duplicate_strategy
        self.id_factory = id_factory

    @classmethod
    def from_config(cls, cfg: Config, analyzer: Optional[Analyzer] = None) -> "CardGenerator":
        return cls(
            CardStore(cfg.store.cards_path),
            ForcedAnswers.load(cfg.store.forced_answers_path),
            analysis=cfg.analysis,
            engine=cfg.engine,
            analyzer=analyzer,
            duplicate_strategy=cfg.store.duplicate_strategy,
        )

    async def create_card(self, request: CardRequest) -> CardResult:
        """Create, overwrite or skip one card. Never raises CardGenError."""
        try:
            return await self._create(request)
        except CardGenError as e:
            logger.error("Card generation failed (%s): %s", e.kind, e)
            return CardResult.failed(e)

    def create_card_sync(self, request: CardRequest) -> CardResult:
        return asyncio.run(self.create_card(request))

    async def _create(self, request: CardRequest) -> CardResult:
        review = build_review(request)
        cfg = (request.analysis or self.analysis).sanitized()
        strategy = normalize_strategy(request.duplicate_strategy or self.duplicate_strategy)

        resolver = TranspositionResolver(self.store.load())
        duplicate = resolver.find_duplicate(review.deck, review.sans, review.fen)
        if duplicate is not None and strategy != OVERWRITE:
            logger.info("Skipped: %s already reviews this path in %s", duplicate.id, review.deck)
            return CardResult(
                SKIPPED,
                duplicate.id,
                f"Review position already exists in deck \"{review.deck}\" as card {duplicate.id}",
                card=duplicate,
            )

        forced = self.forced_answers.lookup(review.fen, review.sans)
        anchor = resolver.anchor_for(review.deck, review.fen, overwrite=duplicate is not None, forced=forced is not None)

        selector = AnswerSelector(cfg.acceptance, cfg.max_other_answers)
        result = None
        if anchor is not None:
            logger.info("Reusing analysis of transposing card %s", anchor.id)
            answers = selector.from_card(anchor)
        else:
            result = await self._analyse(review.fen, cfg)
            answers = selector.from_engine(review.fen, result)

        if forced is not None:
            logger.info("Forced answer %s applies (%s)", forced.move, forced.key)
            answers = selector.apply_forced(answers, forced, review.fen, result)

        if answers is None:
            if duplicate is None:
                raise EngineNoPrincipalVariations(f"Engine returned no usable lines for {review.fen}")
            logger.warning("No engine lines; keeping previous answers of %s", duplicate.id)
            answers = selector.from_card(duplicate)
            answers.anchor_id = None

        return self._commit(review, answers, cfg, request, result, duplicate.id if duplicate else None)

    async def _analyse(self, fen: str, cfg: AnalysisConfig) -> AnalysisResult:
        analyzer = self.analyzer or make_analyzer(self.engine, cfg.timeout_ms)
        return await analyzer(AnalysisRequest.from_config(fen, cfg))

    def _new_id(self, cards: List[Card]) -> str:
        taken = {c.id for c in cards}
        card_id = self.id_factory()
        while card_id in taken:
            card_id = self.id_factory()
        return card_id

    def _commit(
        self,
        review: ReviewPosition,
        answers: AnswerSet,
        cfg: AnalysisConfig,
        request: CardRequest,
        result: Optional[AnalysisResult],
        overwrite_id: Optional[str],
    ) -> CardResult:
        # reload: the engine may have run for a while
        cards = self.store.load()
        target = next((c for c in cards if c.id == overwrite_id), None) if overwrite_id else None
        message = ""
        if overwrite_id and target is None:
            logger.warning("Overwrite target %s vanished; inserting a new card", overwrite_id)
            message = f"Overwrite target {overwrite_id} no longer exists; created a new card. "

        card_id = target.id if target else self._new_id(cards)
        parent = find_parent(cards, review.sans, exclude_id=card_id)
        fields = CardFields(
            fen=review.fen,
            move_sequence=list(review.sans),
            answer=answers.answer,
            answer_fen=fen_after(review.fen, answers.answer),
            eval=answers.eval,
            example_line=list(answers.example_line),
            other_answers=list(answers.other_answers),
            depth=review.depth,
            parent=parent.id if parent else None,
            children=list(target.fields.children) if target else [],
            creation_criteria={
                "input": review.input,
                "configUsed": cfg.as_criteria(),
                "engineMs": result.elapsed_ms if result else 0,
                "timedOut": result.timed_out if result else False,
                "enginePath": result.engine_path if result else None,
                "forcedAnswer": answers.forced,
                "transpositionOf": answers.anchor_id,
                "engineResults": answers.engine_results,
            },
            extra=dict(target.fields.extra) if target else {},
        )

        if target is not None:
            old_parent_id = target.fields.parent
            target.fields = fields
            target.tags = list(dict.fromkeys(target.tags + list(request.tags)))
            card, status = target, OVERWRITTEN
            if old_parent_id and old_parent_id != fields.parent:
                old_parent = next((c for c in cards if c.id == old_parent_id), None)
                if old_parent is not None:
                    unregister_child(old_parent, card.id)
        else:
            card = Card(id=card_id, deck=review.deck, fields=fields, tags=list(dict.fromkeys(request.tags)), due="new")
            cards.append(card)
            status = CREATED

        if parent is not None:
            register_child(parent, card.id)
        synced = propagate_answer(cards, card)
        self.store.save(cards)

        verb = "Overwrote" if status == OVERWRITTEN else "Added"
        logger.info("%s card %s (%s) answer=%s", verb, card.id, review.deck, fields.answer)
        return CardResult(
            status,
            card.id,
            message + f"{verb} card {card.id} in deck \"{review.deck}\"",
            card=card,
            analysis=result,
            synced=synced,
        )
