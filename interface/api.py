"""FastAPI REST interface for card generation."""

import threading
from typing import Dict, List, Optional, Union

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from cardgen.config import CONFIG, Config
from cardgen.core.forced import ForcedAnswers
from cardgen.core.lineage import rebuild_relations
from cardgen.core.session import Analyzer
from cardgen.core.store import CardStore
from cardgen.errors import CardGenError
from cardgen.main import FAILED, CardGenerator, CardRequest

app = FastAPI(title="cardgen", version="1.0.0")

# Replaced in tests; analyzer=None runs the real engine.
settings: Config = CONFIG
analyzer: Optional[Analyzer] = None

# One writer at a time within this process.
_store_lock = threading.Lock()

_STATUS_BY_KIND = {
    "invalid_move_sequence": 400,
    "invalid_fen": 400,
    "engine_not_found": 503,
    "engine_spawn_failure": 502,
    "engine_no_principal_variations": 502,
    "collection_error": 500,
}


class CardCreateRequest(BaseModel):
    moves: Optional[Union[str, List[str]]] = None
    pgn: Optional[str] = None
    fen: Optional[str] = None
    keep_side: bool = False
    overwrite: bool = False
    depth: Optional[int] = None
    threads: Optional[int] = None
    hash: Optional[int] = None
    accept: Optional[float] = None
    moac: Optional[int] = None
    timeout: Optional[int] = None
    tags: List[str] = []


class ForcedAnswersRequest(BaseModel):
    entries: Dict[str, Union[str, Dict[str, Optional[str]]]]


def _http_error(err: CardGenError) -> HTTPException:
    return HTTPException(status_code=_STATUS_BY_KIND.get(err.kind, 500), detail={"kind": err.kind, "message": str(err)})


def _store() -> CardStore:
    return CardStore(settings.store.cards_path)


def _analysis_for(req: CardCreateRequest):
    cfg = settings.analysis.sanitized()
    overrides = {
        "depth": req.depth,
        "threads": req.threads,
        "hash_mb": req.hash,
        "acceptance": req.accept,
        "max_other_answers": req.moac,
        "timeout_ms": req.timeout,
    }
    for k, v in overrides.items():
        if v is not None:
            setattr(cfg, k, v)
    return cfg


@app.post("/cards")
def create_card(req: CardCreateRequest):
    with _store_lock:
        try:
            generator = CardGenerator.from_config(settings, analyzer=analyzer)
        except CardGenError as e:
            raise _http_error(e)
        result = generator.create_card_sync(
            CardRequest(
                moves=req.moves,
                pgn=req.pgn,
                fen=req.fen,
                keep_side=req.keep_side,
                duplicate_strategy="overwrite" if req.overwrite else None,
                analysis=_analysis_for(req),
                tags=req.tags,
            )
        )
    if result.status == FAILED:
        raise HTTPException(
            status_code=_STATUS_BY_KIND.get(result.error_kind, 500),
            detail={"kind": result.error_kind, "message": result.message},
        )
    return {
        "status": result.status,
        "id": result.card_id,
        "message": result.message,
        "card": result.card.to_dict() if result.card else None,
        "synced": result.synced,
        "timed_out": result.analysis.timed_out if result.analysis else False,
    }


@app.get("/cards")
def list_cards(deck: Optional[str] = None):
    try:
        cards = _store().load()
    except CardGenError as e:
        raise _http_error(e)
    return [c.to_dict() for c in cards if deck is None or c.deck == deck]


@app.get("/cards/{card_id}")
def get_card(card_id: str):
    try:
        card = _store().get(card_id)
    except CardGenError as e:
        raise _http_error(e)
    if card is None:
        raise HTTPException(status_code=404, detail=f"No card {card_id}")
    return card.to_dict()


@app.post("/relations/rebuild")
def rebuild():
    with _store_lock:
        store = _store()
        try:
            cards = store.load()
        except CardGenError as e:
            raise _http_error(e)
        descendants = rebuild_relations(cards)
        store.save(cards)
    return {"cards": len(cards), "descendants": descendants}


@app.get("/forced-answers")
def get_forced_answers():
    try:
        return ForcedAnswers.load(settings.store.forced_answers_path).entries
    except CardGenError as e:
        raise _http_error(e)


@app.put("/forced-answers")
def put_forced_answers(req: ForcedAnswersRequest):
    forced = ForcedAnswers(path=settings.store.forced_answers_path)
    for position, value in req.entries.items():
        if isinstance(value, str):
            forced.set(position, value)
        elif value.get("move"):
            forced.set(position, value["move"], value.get("pgn"))
        else:
            raise HTTPException(status_code=400, detail=f"Entry for {position} has no move")
    with _store_lock:
        forced.save()
    return forced.entries
