"""One-shot UCI analysis session against an external engine process.

Usage:

    session = EngineSession("/usr/bin/stockfish", timeout_ms=30000)
    result = await session.analyse(AnalysisRequest(fen, depth=20, slot_count=5))
    for slot in result.slots:
        print(slot.slot, slot.score, slot.pv)

The session owns exactly one process. It is started on ``analyse`` and is
always stopped before ``analyse`` returns or raises, including when the
awaiting task is cancelled. A search that outlives ``timeout_ms`` is not an
error: the slots collected so far are returned with ``timed_out=True``.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

import chess
import chess.engine

from cardgen.config import DEFAULT_TIMEOUT_MS, AnalysisConfig, EngineConfig
from cardgen.core.engine_path import resolve_engine_path
from cardgen.core.models import Eval
from cardgen.core.utils import score_to_eval
from cardgen.errors import EngineSpawnFailure

logger = logging.getLogger(__name__)

# time the engine gets to honour "quit" before it is killed
_QUIT_TIMEOUT_S = 1.0
# grace period for the process to exit after kill
_REAP_TIMEOUT_S = 5.0


@dataclass
class AnalysisRequest:
    fen: str
    depth: int
    threads: int = 1
    hash_mb: int = 1024
    slot_count: int = 1

    @staticmethod
    def from_config(fen: str, cfg: AnalysisConfig) -> "AnalysisRequest":
        cfg = cfg.sanitized()
        return AnalysisRequest(fen, cfg.depth, cfg.threads, cfg.hash_mb, cfg.slot_count)


@dataclass
class SlotResult:
    slot: int
    depth: Optional[int]
    score: Eval
    pv: List[str]  # UCI tokens


@dataclass
class AnalysisResult:
    fen: str
    slots: List[SlotResult] = field(default_factory=list)
    timed_out: bool = False
    elapsed_ms: int = 0
    engine_path: Optional[str] = None
    best_move: Optional[str] = None

    @property
    def reached_depth(self) -> Optional[int]:
        depths = [s.depth for s in self.slots if s.depth is not None]
        return min(depths) if depths else None


# Anything that turns a request into a result; the generator only needs this.
Analyzer = Callable[[AnalysisRequest], Awaitable[AnalysisResult]]


class EngineSession:
    def __init__(self, engine_path: str, args: Sequence[str] = (), timeout_ms: int = DEFAULT_TIMEOUT_MS):
        self.engine_path = engine_path
        self.args = list(args)
        self.timeout_ms = timeout_ms

    async def analyse(self, request: AnalysisRequest) -> AnalysisResult:
        slots: Dict[int, SlotResult] = {}
        result = AnalysisResult(fen=request.fen, engine_path=self.engine_path)
        start = time.monotonic()

        transport, engine = await self._spawn()
        try:
            try:
                result.best_move = await asyncio.wait_for(
                    self._run(engine, request, slots), timeout=self.timeout_ms / 1000
                )
            except asyncio.TimeoutError:
                result.timed_out = True
                logger.warning(
                    "Engine timed out after %d ms with %d slot(s) collected",
                    self.timeout_ms, len(slots),
                )
            except chess.engine.EngineError as e:
                raise EngineSpawnFailure(f"Engine failed during analysis: {e}") from e
        finally:
            await self._terminate(transport, engine)

        result.slots = [slots[k] for k in sorted(slots)]
        result.elapsed_ms = int((time.monotonic() - start) * 1000)
        return result

    async def _run(self, engine, request: AnalysisRequest, slots: Dict[int, SlotResult]) -> Optional[str]:
        await engine.configure({"Threads": request.threads, "Hash": request.hash_mb})
        board = chess.Board(request.fen)
        # a fresh game object makes python-chess send ucinewgame and wait for readyok
        with await engine.analysis(
            board, chess.engine.Limit(depth=request.depth), multipv=request.slot_count, game=object()
        ) as analysis:
            async for info in analysis:
                self._record(info, slots)
            best = await analysis.wait()
        return best.move.uci() if best.move else None

    @staticmethod
    def _record(info: chess.engine.InfoDict, slots: Dict[int, SlotResult]):
        score, pv = info.get("score"), info.get("pv")
        if score is None or not pv:
            return
        slot = info.get("multipv", 1)
        depth = info.get("depth")
        prev = slots.get(slot)
        # a shallower report never replaces a deeper one for the same slot
        if prev is not None and prev.depth is not None and depth is not None and depth < prev.depth:
            return
        slots[slot] = SlotResult(slot, depth, score_to_eval(score.relative, depth), [m.uci() for m in pv])

    async def _spawn(self):
        logger.debug("Starting engine %s", self.engine_path)
        try:
            return await chess.engine.popen_uci([self.engine_path, *self.args])
        except (OSError, chess.engine.EngineError) as e:
            raise EngineSpawnFailure(f"Failed to start engine {self.engine_path}: {e}") from e

    async def _terminate(self, transport, engine):
        if not engine.returncode.done():
            try:
                await asyncio.wait_for(engine.quit(), timeout=_QUIT_TIMEOUT_S)
            except (asyncio.TimeoutError, chess.engine.EngineError):
                logger.debug("Engine ignored quit; killing it")
        # closing the transport kills a process that is still running
        transport.close()
        try:
            await asyncio.wait_for(asyncio.shield(engine.returncode), timeout=_REAP_TIMEOUT_S)
        except asyncio.TimeoutError:
            logger.error("Engine process %s did not exit after kill", transport.get_pid())


async def analyse_position(
    request: AnalysisRequest,
    engine: EngineConfig,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
) -> AnalysisResult:
    """Resolve the engine binary and run one session for ``request``."""
    path = resolve_engine_path(engine.path, engine.base_dir, engine.packaged)
    logger.info("Analysing %s with %s (depth %d, %d slot(s))", request.fen, path, request.depth, request.slot_count)
    return await EngineSession(path, timeout_ms=timeout_ms).analyse(request)


def make_analyzer(engine: EngineConfig, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> Analyzer:
    async def _analyse(request: AnalysisRequest) -> AnalysisResult:
        return await analyse_position(request, engine, timeout_ms)

    return _analyse
