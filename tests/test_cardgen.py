"""
Unit tests for the card generator building blocks.

Covers:
- Board wrapper and input helpers (moves, PGN, FEN)
- Card model and depth numbering
- Engine output parsing, PV conversion and eval display
- Answer selection (acceptance window, mate policy, forced answers)
- Transposition keys, duplicate identity and sibling sync
- Forced answers file, lineage, collection store and validation
- Engine path resolution and TOML config
"""

import json
import os
import stat

import chess
import chess.engine
import pytest

from cardgen.analyzer import AnswerSelector, accepts
from cardgen.config import AnalysisConfig, Config, load_config
from cardgen.core.board import (
    ChessBoard,
    fen_after,
    normalize_san,
    normalize_start_fen,
    pgn_to_sans,
    replay,
    split_moves,
    validate_fen,
)
from cardgen.core.engine_path import default_engine_path, resolve_engine_path, scan_for_engine
from cardgen.core.forced import ForcedAnswer, ForcedAnswers
from cardgen.core.lineage import find_parent, rebuild_relations, register_child, unregister_child
from cardgen.core.models import BLACK_DECK, WHITE_DECK, Card, CardFields, Eval, OtherAnswer, deck_for_side, depth_from_plies
from cardgen.core.pv import uci_line_to_san
from cardgen.core.session import AnalysisRequest, AnalysisResult, SlotResult
from cardgen.core.store import CardStore, read_shape, render_collection
from cardgen.core.transposition import TranspositionResolver, canonical_key, duplicate_key, propagate_answer
from cardgen.core.utils import format_eval, score_to_eval
from cardgen.errors import CollectionError, EngineNotFound, InvalidFEN, InvalidMoveSequence
from cardgen.validate import validate_card, validate_cards


def fen_of(moves: str) -> str:
    board = chess.Board()
    for san in moves.split():
        board.push_san(san)
    return board.fen()


def make_card(card_id, moves, answer, parent=None):
    fen = fen_of(moves)
    return Card(
        id=card_id,
        deck=deck_for_side(fen.split()[1]),
        fields=CardFields(
            fen=fen,
            move_sequence=moves.split(),
            answer=answer,
            answer_fen=fen_after(fen, answer),
            eval=Eval("cp", 20, 18),
            example_line=[answer],
            depth=depth_from_plies(len(moves.split())),
            parent=parent,
        ),
    )


E4E5 = fen_of("e4 e5")
START_BLACK = "rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR b KQkq - 0 1"


# ════════════════════════════════════════════════════════════════════════════
#  BOARD TESTS
# ════════════════════════════════════════════════════════════════════════════

class TestChessBoard:
    def test_initial_position(self):
        b = ChessBoard()
        assert b.get_fen() == chess.STARTING_FEN
        assert b.move_history == []

    def test_make_move_san_and_uci(self):
        b = ChessBoard()
        assert b.make_move("e4") is True
        assert b.make_move("e7e5") is True
        assert b.move_history == ["e4", "e5"]

    def test_make_garbage_input(self):
        b = ChessBoard()
        assert b.make_move("zzzz") is False
        assert b.make_move("") is False
        assert b.make_move("e5") is False

    @pytest.mark.parametrize("token", ["--", "0000", "Z0"])
    def test_null_move_rejected(self, token):
        b = ChessBoard()
        assert b.parse_move(token) is None
        assert b.make_move(token) is False
        assert b.get_fen() == chess.STARTING_FEN

    def test_push_san_raises_on_illegal(self):
        with pytest.raises(InvalidMoveSequence):
            ChessBoard().push_san("Ke2")

    def test_invalid_fen_rejected(self):
        with pytest.raises(InvalidFEN):
            ChessBoard("not a fen")


class TestInputHelpers:
    def test_split_moves_spaces_and_commas(self):
        assert split_moves("e4, e5,Nf3  Nc6") == ["e4", "e5", "Nf3", "Nc6"]
        assert split_moves("") == []

    def test_replay_normalizes_san(self):
        b = replay(["e4", "e7e5", "Ng1f3"])
        assert b.move_history == ["e4", "e5", "Nf3"]

    def test_replay_illegal_move(self):
        with pytest.raises(InvalidMoveSequence):
            replay(["e4", "e4"])

    def test_replay_rejects_null_move(self):
        with pytest.raises(InvalidMoveSequence):
            replay(["e4", "--", "Nf3"])

    def test_pgn_rejects_null_move(self):
        with pytest.raises(InvalidMoveSequence):
            pgn_to_sans("1. e4 -- 2. Nf3 *")

    def test_pgn_ignores_numbers_comments_and_result(self):
        pgn = "1. e4 {king pawn} e5 2. Nf3 $1 Nc6 (2... d6) 1-0"
        assert pgn_to_sans(pgn) == ["e4", "e5", "Nf3", "Nc6"]

    def test_pgn_illegal_move(self):
        with pytest.raises(InvalidMoveSequence):
            pgn_to_sans("1. e4 e5 2. Ke3")

    def test_validate_fen(self):
        assert validate_fen(E4E5) == E4E5
        with pytest.raises(InvalidFEN):
            validate_fen("")
        with pytest.raises(InvalidFEN):
            # two white kings
            validate_fen("4k3/8/8/8/8/8/8/K3K3 w - - 0 1")

    def test_start_placement_black_to_move_normalized(self):
        assert normalize_start_fen(START_BLACK).split()[1] == "w"
        assert normalize_start_fen(START_BLACK, keep_side=True) == START_BLACK
        assert normalize_start_fen(E4E5) == E4E5

    def test_normalize_san(self):
        assert normalize_san(E4E5, "g1f3") == "Nf3"
        assert normalize_san(E4E5, "Nf3") == "Nf3"
        assert normalize_san(E4E5, "Ke3") is None
        assert normalize_san(E4E5, "--") is None

    def test_fen_after(self):
        assert fen_after(E4E5, "Nf3") == fen_of("e4 e5 Nf3")
        assert fen_after(E4E5, "Ke3") is None
        assert fen_after(E4E5, "") is None


# ════════════════════════════════════════════════════════════════════════════
#  MODEL TESTS
# ════════════════════════════════════════════════════════════════════════════

class TestModels:
    @pytest.mark.parametrize("plies,depth", [(0, 1), (1, 1), (2, 2), (3, 2), (4, 3), (9, 5)])
    def test_depth_from_plies(self, plies, depth):
        assert depth_from_plies(plies) == depth

    def test_deck_for_side(self):
        assert deck_for_side("w") == WHITE_DECK
        assert deck_for_side("b") == BLACK_DECK

    def test_card_dict_shape(self):
        card = make_card("c_1", "e4 e5", "Nf3")
        card.tags = ["open"]
        d = card.to_dict()
        assert list(d) == ["id", "deck", "tags", "fields", "due"]
        assert d["fields"]["moveSequence"] == "e4 e5"
        assert d["fields"]["eval"] == {"kind": "cp", "value": 20, "depth": 18}
        assert "parent" not in d["fields"]
        assert Card.from_dict(d) == card

    def test_legacy_fields_accepted(self):
        raw = {
            "id": "old",
            "deck": WHITE_DECK,
            "tags": ["a", "b", "a"],
            "fields": {
                "fen": E4E5,
                "moveSequence": ["e4", "e5"],
                "answer": "Nf3",
                "otherAnswers": ["Bc4", {"move": "d4", "eval": {"kind": "cp", "value": 10}}, 7],
                "note": "kept",
            },
            "custom": 1,
        }
        card = Card.from_dict(raw)
        assert card.fields.move_sequence == ["e4", "e5"]
        assert card.fields.other_moves() == ["Bc4", "d4"]
        assert card.fields.other_answers[1].eval == Eval("cp", 10)
        assert card.fields.depth == 2
        assert card.tags == ["a", "b"]
        out = card.to_dict()
        assert out["custom"] == 1
        assert out["fields"]["note"] == "kept"
        assert out["fields"]["otherAnswers"][0] == {"move": "Bc4"}

    def test_eval_from_dict_rejects_garbage(self):
        assert Eval.from_dict({"kind": "mate", "value": -3}) == Eval("mate", -3)
        assert Eval.from_dict({"kind": "pawns", "value": 1}) is None
        assert Eval.from_dict({"kind": "cp", "value": "x"}) is None
        assert Eval.from_dict(None) is None


# ════════════════════════════════════════════════════════════════════════════
#  ENGINE OUTPUT TESTS
# ════════════════════════════════════════════════════════════════════════════

class TestEngineOutput:
    def test_score_to_eval_centipawns(self):
        assert score_to_eval(chess.engine.Cp(-35), 20) == Eval("cp", -35, 20)
        assert score_to_eval(chess.engine.Cp(0)) == Eval("cp", 0, None)

    def test_score_to_eval_mate(self):
        assert score_to_eval(chess.engine.Mate(3), 9) == Eval("mate", 3, 9)
        assert score_to_eval(chess.engine.Mate(-2), 9) == Eval("mate", -2, 9)

    def test_score_to_eval_relative_to_mover(self):
        pov = chess.engine.PovScore(chess.engine.Cp(20), chess.BLACK)
        assert score_to_eval(pov.relative, 12) == Eval("cp", 20, 12)
        assert score_to_eval(pov.white(), 12) == Eval("cp", -20, 12)

    def test_pv_to_san(self):
        assert uci_line_to_san(chess.STARTING_FEN, ["e2e4", "e7e5", "g1f3"]) == ["e4", "e5", "Nf3"]

    def test_pv_stops_at_malformed_token(self):
        assert uci_line_to_san(chess.STARTING_FEN, ["e2e4", "e7e5", "zz99", "g1f3"]) == ["e4", "e5"]

    def test_pv_stops_at_illegal_move(self):
        assert uci_line_to_san(chess.STARTING_FEN, ["e2e4", "e2e4"]) == ["e4"]
        assert uci_line_to_san(chess.STARTING_FEN, []) == []

    def test_pv_promotion(self):
        fen = "8/P7/8/8/8/8/8/4K2k w - - 0 1"
        assert uci_line_to_san(fen, ["a7a8q"]) == ["a8=Q+"]

    @pytest.mark.parametrize("ev,text", [
        (Eval("cp", 25), "+0.25"),
        (Eval("cp", 0), "+0.00"),
        (Eval("cp", -40), "-0.40"),
        (Eval("cp", 150), "+1.5"),
        (Eval("cp", -230), "-2.3"),
        (Eval("mate", 3), "+M3"),
        (Eval("mate", -2), "-M2"),
        (None, ""),
    ])
    def test_format_eval(self, ev, text):
        assert format_eval(ev) == text

    def test_reached_depth_is_shallowest_slot(self):
        result = AnalysisResult(E4E5, [
            SlotResult(2, 18, Eval("cp", 10, 18), ["f1c4"]),
            SlotResult(1, 20, Eval("cp", 30, 20), ["g1f3"]),
        ])
        assert result.reached_depth == 18
        assert AnalysisResult(E4E5).reached_depth is None

    def test_request_from_config(self):
        req = AnalysisRequest.from_config(E4E5, AnalysisConfig(depth=0, hash_mb=1, max_other_answers=2))
        assert req.depth == 25
        assert req.hash_mb == 32
        assert req.slot_count == 3


# ════════════════════════════════════════════════════════════════════════════
#  ANSWER SELECTION TESTS
# ════════════════════════════════════════════════════════════════════════════

def scripted_result():
    return AnalysisResult(E4E5, [
        SlotResult(1, 20, Eval("cp", 40, 20), ["g1f3", "b8c6"]),
        SlotResult(2, 20, Eval("cp", 30, 20), ["f1c4"]),
        SlotResult(3, 20, Eval("cp", 10, 20), ["b1c3"]),
        SlotResult(4, 20, Eval("cp", 25, 20), ["d2d4", "e5d4"]),
        SlotResult(5, 20, Eval("cp", 39, 20), ["g1f3", "g8f6"]),
    ])


class TestAnswerSelection:
    def test_cp_window(self):
        assert accepts(Eval("cp", 30), Eval("cp", 10), 20)
        assert not accepts(Eval("cp", 30), Eval("cp", 9), 20)

    def test_mate_policy(self):
        assert accepts(Eval("mate", 3), Eval("mate", 5), 20)
        assert accepts(Eval("mate", -3), Eval("mate", -3), 20)
        assert not accepts(Eval("mate", 3), Eval("mate", -5), 20)
        assert not accepts(Eval("mate", 3), Eval("mate", 2), 20)

    def test_mixed_kinds_never_accepted(self):
        assert not accepts(Eval("mate", 2), Eval("cp", 900), 20)
        assert not accepts(Eval("cp", 900), Eval("mate", 9), 20)

    def test_window_rounding(self):
        assert AnswerSelector(0.20).window_cp == 20
        assert AnswerSelector(0.5).window_cp == 50
        assert AnswerSelector(0).window_cp == 0

    def test_from_engine(self):
        answers = AnswerSelector(0.20, 4).from_engine(E4E5, scripted_result())
        assert answers.answer == "Nf3"
        assert answers.eval == Eval("cp", 40, 20)
        assert answers.example_line == ["Nf3", "Nc6"]
        # Nc3 trails by 30, the second Nf3 is a duplicate
        assert [o.move for o in answers.other_answers] == ["Bc4", "d4"]
        assert len(answers.engine_results) == 5
        assert answers.engine_results[0] == {"slot": 1, "depth": 20, "score": {"kind": "cp", "value": 40, "depth": 20}, "move": "Nf3"}

    def test_from_engine_bounded(self):
        answers = AnswerSelector(0.20, 1).from_engine(E4E5, scripted_result())
        assert [o.move for o in answers.other_answers] == ["Bc4"]
        assert AnswerSelector(0.20, 0).from_engine(E4E5, scripted_result()).other_answers == []

    def test_unusable_first_slot(self):
        result = scripted_result()
        result.slots[0].pv = ["e2e5"]
        answers = AnswerSelector(0.20, 4).from_engine(E4E5, result)
        assert answers.answer == "Bc4"

    def test_no_usable_slots(self):
        result = AnalysisResult(E4E5, [SlotResult(1, 5, Eval("cp", 0, 5), ["a1a8"])])
        assert AnswerSelector().from_engine(E4E5, result) is None
        assert AnswerSelector().from_engine(E4E5, None) is None

    def test_from_card_retags_evals(self):
        card = make_card("c_1", "e4 e5", "Nf3")
        card.fields.other_answers = [OtherAnswer("Bc4")]
        card.fields.creation_criteria = {
            "engineResults": [{"slot": 2, "depth": 20, "score": {"kind": "cp", "value": 30}, "move": "Bc4"}],
        }
        answers = AnswerSelector().from_card(card)
        assert answers.answer == "Nf3"
        assert answers.other_answers[0].eval == Eval("cp", 30)
        assert answers.anchor_id == "c_1"

    def test_apply_forced_keeps_engine_best(self):
        selector = AnswerSelector(0.20, 4)
        result = scripted_result()
        answers = selector.apply_forced(selector.from_engine(E4E5, result), ForcedAnswer("Bc4", "k"), E4E5, result)
        assert answers.answer == "Bc4"
        assert answers.eval == Eval("cp", 30, 20)
        assert answers.example_line == ["Bc4"]
        assert [o.move for o in answers.other_answers] == ["Nf3", "d4"]
        assert answers.forced == {"move": "Bc4", "originalBest": "Nf3", "key": "k", "pgn": None}

    def test_apply_forced_unreported_move(self):
        selector = AnswerSelector(0.20, 0)
        result = scripted_result()
        answers = selector.apply_forced(selector.from_engine(E4E5, result), ForcedAnswer("h3", "k"), E4E5, result)
        assert answers.answer == "h3"
        assert answers.eval is None
        assert answers.example_line == ["h3"]
        assert [o.move for o in answers.other_answers] == ["Nf3"]

    def test_apply_forced_same_as_best(self):
        selector = AnswerSelector()
        result = scripted_result()
        answers = selector.apply_forced(selector.from_engine(E4E5, result), ForcedAnswer("Nf3", "k"), E4E5, result)
        assert answers.answer == "Nf3"
        assert answers.forced["originalBest"] == "Nf3"
        assert [o.move for o in answers.other_answers] == ["Bc4", "d4"]


# ════════════════════════════════════════════════════════════════════════════
#  TRANSPOSITION TESTS
# ════════════════════════════════════════════════════════════════════════════

class TestTransposition:
    def test_canonical_key_drops_clocks(self):
        a, b = fen_of("e4 e5 Nf3 Nc6"), fen_of("Nf3 Nc6 e4 e5")
        assert a != b
        assert canonical_key(a) == canonical_key(b)
        assert len(canonical_key(a).split()) == 4

    def test_duplicate_key(self):
        assert duplicate_key(WHITE_DECK, ["e4", "e5"], E4E5) == (WHITE_DECK, "e4 e5", "")
        assert duplicate_key(WHITE_DECK, [], E4E5) == (WHITE_DECK, "", canonical_key(E4E5))

    def test_position_only_cards_do_not_collide(self):
        a = make_card("a", "e4 e5", "Nf3")
        a.fields.move_sequence = []
        resolver = TranspositionResolver([a])
        assert resolver.find_duplicate(WHITE_DECK, [], E4E5) is a
        assert resolver.find_duplicate(WHITE_DECK, [], fen_of("d4 d5")) is None

    def test_siblings_and_anchor(self):
        a = make_card("a", "e4 e5 Nf3 Nc6", "Bb5")
        resolver = TranspositionResolver([a])
        fen = fen_of("Nf3 Nc6 e4 e5")
        assert resolver.find_duplicate(WHITE_DECK, "Nf3 Nc6 e4 e5".split(), fen) is None
        assert resolver.siblings(WHITE_DECK, fen) == [a]
        assert resolver.siblings(WHITE_DECK, fen, exclude_id="a") == []
        assert resolver.siblings(BLACK_DECK, fen) == []
        assert resolver.anchor_for(WHITE_DECK, fen, overwrite=False, forced=False) is a
        assert resolver.anchor_for(WHITE_DECK, fen, overwrite=True, forced=False) is None
        assert resolver.anchor_for(WHITE_DECK, fen, overwrite=False, forced=True) is None

    def test_propagate_answer(self):
        a = make_card("a", "e4 e5 Nf3 Nc6", "Bb5")
        b = make_card("b", "Nf3 Nc6 e4 e5", "Bc4")
        other = make_card("c", "e4 e5", "Nf3")
        a.fields.other_answers = [OtherAnswer("Bc4", Eval("cp", 15))]
        touched = propagate_answer([a, b, other], a)
        assert touched == ["b"]
        assert b.fields.answer == "Bb5"
        assert b.fields.answer_fen == fen_after(b.fields.fen, "Bb5")
        assert b.fields.other_moves() == ["Bc4"]
        assert other.fields.answer == "Nf3"


# ════════════════════════════════════════════════════════════════════════════
#  FORCED ANSWERS TESTS
# ════════════════════════════════════════════════════════════════════════════

class TestForcedAnswers:
    def test_missing_and_empty_files(self, tmp_path):
        assert ForcedAnswers.load(str(tmp_path / "none.json")).entries == {}
        p = tmp_path / "empty.json"
        p.write_text("  \n")
        assert ForcedAnswers.load(str(p)).entries == {}

    def test_corrupt_file(self, tmp_path):
        p = tmp_path / "answers.json"
        p.write_text("{nope")
        with pytest.raises(CollectionError):
            ForcedAnswers.load(str(p))
        p.write_text("[1, 2]")
        with pytest.raises(CollectionError):
            ForcedAnswers.load(str(p))

    def test_lookup_by_canonical_key(self):
        forced = ForcedAnswers({canonical_key(E4E5): "g1f3"})
        hit = forced.lookup(E4E5)
        assert hit.move == "Nf3"
        assert hit.key == canonical_key(E4E5)

    def test_lookup_by_full_fen_with_other_clocks(self):
        parts = E4E5.split()
        parts[4], parts[5] = "7", "12"
        forced = ForcedAnswers({" ".join(parts): "Bc4"})
        assert forced.lookup(E4E5).move == "Bc4"

    def test_lookup_by_pgn(self):
        forced = ForcedAnswers({"italian": {"move": "Bc4", "pgn": "1. e4 e5"}})
        hit = forced.lookup(E4E5, ["e4", "e5"])
        assert hit.move == "Bc4"
        assert hit.pgn == "1. e4 e5"
        assert forced.lookup(E4E5, ["d4"]) is None

    def test_illegal_entry_ignored(self):
        forced = ForcedAnswers({canonical_key(E4E5): "Ke3"})
        assert forced.lookup(E4E5) is None

    def test_null_move_entry_ignored(self):
        forced = ForcedAnswers({canonical_key(chess.STARTING_FEN): "--"})
        assert forced.lookup(chess.STARTING_FEN) is None

    def test_set_save_remove(self, tmp_path):
        path = str(tmp_path / "sub" / "answers.json")
        forced = ForcedAnswers(path=path)
        forced.set(E4E5, "Nf3")
        forced.set("other", "d4", pgn="1. d4")
        forced.save()
        data = json.loads(open(path, encoding="utf-8").read())
        assert data == {canonical_key(E4E5): "Nf3", "other": {"move": "d4", "pgn": "1. d4"}}
        assert forced.remove(E4E5) is True
        assert forced.remove(E4E5) is False

    def test_save_leaves_no_temp_files(self, tmp_path):
        forced = ForcedAnswers({"k": "e4"}, path=str(tmp_path / "answers.json"))
        forced.save()
        forced.set("k", "d4")
        forced.save()
        assert os.listdir(tmp_path) == ["answers.json"]
        assert ForcedAnswers.load(str(tmp_path / "answers.json")).entries == {"k": "d4"}


# ════════════════════════════════════════════════════════════════════════════
#  LINEAGE TESTS
# ════════════════════════════════════════════════════════════════════════════

class TestLineage:
    def test_find_parent(self):
        parent = make_card("p", "e4 e5", "Nf3")
        wrong = make_card("w", "e4 e5", "Bc4")
        assert find_parent([wrong, parent], ["e4", "e5", "Nf3", "Nc6"]) is parent
        assert find_parent([parent], ["e4", "e5", "Bc4", "Nc6"]) is None
        assert find_parent([parent], ["e4"]) is None

    def test_first_black_card_parent(self):
        root = make_card("r", "", "e4")
        assert find_parent([root], ["e4", "e5"]) is root
        assert find_parent([root], ["e4", "e5"], exclude_id="r") is None

    def test_register_child_idempotent(self):
        parent = make_card("p", "e4 e5", "Nf3")
        assert register_child(parent, "c") is True
        assert register_child(parent, "c") is False
        assert parent.fields.children == ["c"]
        assert unregister_child(parent, "c") is True
        assert unregister_child(parent, "c") is False

    def test_rebuild_relations(self):
        a = make_card("a", "e4 e5", "Nf3")
        b = make_card("b", "e4 e5 Nf3 Nc6", "Bb5", parent="a")
        c = make_card("c", "e4 e5 Nf3 Nc6 Bb5 a6", "Ba4", parent="b")
        d = make_card("d", "e4 e5 Nf3 Nf6", "Nxe5", parent="a")
        orphan = make_card("o", "d4 d5", "c4", parent="gone")
        a.fields.children = ["stale"]
        descendants = rebuild_relations([a, b, c, d, orphan])
        assert a.fields.children == ["b", "d"]
        assert descendants["a"] == ["b", "c", "d"]
        assert descendants["c"] == []
        assert b.fields.extra["descendants"] == ["c"]
        assert orphan.fields.children == []


# ════════════════════════════════════════════════════════════════════════════
#  STORE TESTS
# ════════════════════════════════════════════════════════════════════════════

class TestCardStore:
    def test_missing_file_is_empty(self, tmp_path):
        assert CardStore(str(tmp_path / "cards.json")).load() == []

    def test_read_shapes(self):
        assert read_shape("") == ("empty", [])
        assert read_shape("[]") == ("array", [])
        assert read_shape('{"cards": [{"id": "x"}]}') == ("wrapped", [{"id": "x"}])
        with pytest.raises(CollectionError):
            read_shape("{oops")
        with pytest.raises(CollectionError):
            read_shape('{"deck": []}')

    def test_round_trip(self, tmp_path):
        store = CardStore(str(tmp_path / "data" / "cards.json"))
        cards = [make_card("a", "e4 e5", "Nf3"), make_card("b", "e4", "c5")]
        store.save(cards)
        assert store.load() == cards
        assert store.get("b").fields.answer == "c5"
        assert store.get("zzz") is None

    def test_legacy_wrapper_rewritten_as_array(self, tmp_path):
        path = tmp_path / "cards.json"
        path.write_text(json.dumps({"cards": [make_card("a", "e4 e5", "Nf3").to_dict()]}))
        store = CardStore(str(path))
        cards = store.load()
        assert [c.id for c in cards] == ["a"]
        store.save(cards)
        assert path.read_text().startswith("[")

    def test_non_object_entry(self, tmp_path):
        path = tmp_path / "cards.json"
        path.write_text('[{"id": "a"}, 3]')
        with pytest.raises(CollectionError):
            CardStore(str(path)).load()

    def test_layout(self):
        card = make_card("a", "e4 e5", "Nf3")
        card.tags = ["open", "main"]
        card.fields.other_answers = [OtherAnswer("Bc4", Eval("cp", 30)), OtherAnswer("d4")]
        text = render_collection([card])
        assert '"tags": ["open", "main"]' in text
        assert '"eval": {"kind": "cp", "value": 20, "depth": 18}' in text
        assert '"exampleLine": ["Nf3"]' in text
        assert '        {"move": "Bc4", "eval": {"kind": "cp", "value": 30}},\n' in text
        assert '        {"move": "d4"}\n' in text
        assert json.loads(text)[0] == card.to_dict()

    def test_upsert(self, tmp_path):
        store = CardStore(str(tmp_path / "cards.json"))
        card = make_card("a", "e4 e5", "Nf3")
        assert store.upsert(card) is False
        card.fields.answer = "Bc4"
        assert store.upsert(card) is True
        assert [c.fields.answer for c in store.load()] == ["Bc4"]

    def test_save_leaves_no_temp_files(self, tmp_path):
        store = CardStore(str(tmp_path / "cards.json"))
        store.save([make_card("a", "e4 e5", "Nf3")])
        assert os.listdir(tmp_path) == ["cards.json"]


# ════════════════════════════════════════════════════════════════════════════
#  VALIDATION TESTS
# ════════════════════════════════════════════════════════════════════════════

class TestValidate:
    def good(self):
        return make_card("a", "e4 e5", "Nf3").to_dict()

    def test_good_card(self):
        rep = validate_card(self.good())
        assert rep.ok
        assert rep.warnings == []

    def test_missing_fields(self):
        raw = self.good()
        del raw["fields"]["answer"]
        raw["tags"] = "x"
        rep = validate_card(raw)
        assert "tags must be an array of strings" in rep.errors
        assert "fields.answer is required (SAN string)" in rep.errors

    def test_illegal_answer(self):
        raw = self.good()
        raw["fields"]["answer"] = "Ke3"
        assert any("not legal from review FEN" in e for e in validate_card(raw).errors)

    def test_null_moves_rejected(self):
        raw = self.good()
        raw["fields"]["moveSequence"] = "e4 -- Nf3"
        assert "fields.moveSequence failed to replay from the start position" in validate_card(raw).errors
        raw = self.good()
        raw["fields"]["answer"] = "--"
        assert any("not legal from review FEN" in e for e in validate_card(raw).errors)
        raw = self.good()
        raw["fields"]["exampleLine"] = ["Nf3", "Z0"]
        assert any('move 2 "Z0"' in e for e in validate_card(raw).errors)

    def test_answer_fen_mismatch_warns(self):
        raw = self.good()
        raw["fields"]["answerFen"] = E4E5
        rep = validate_card(raw)
        assert rep.ok
        assert any("answerFen mismatch" in w for w in rep.warnings)

    def test_move_sequence_mismatch_warns(self):
        raw = self.good()
        raw["fields"]["moveSequence"] = "d4 d5"
        raw["fields"]["answer"] = "Nf3"
        rep = validate_card(raw)
        assert any("core mismatch" in w for w in rep.warnings)

    def test_bad_due_and_eval(self):
        raw = self.good()
        raw["due"] = "tomorrow"
        raw["fields"]["eval"] = {"kind": "cp", "value": "high"}
        errors = validate_card(raw).errors
        assert 'due must be "new" or an ISO datetime string' in errors
        assert "fields.eval.value must be a number" in errors
        raw["due"] = "2026-10-18T09:00:00Z"
        raw["fields"]["eval"] = {"kind": "mate", "value": 2}
        assert validate_card(raw).ok

    def test_missing_eval(self):
        raw = self.good()
        del raw["fields"]["eval"]
        assert validate_card(raw).errors == ["fields.eval is missing"]
        raw["fields"]["creationCriteria"] = {"forcedAnswer": {"move": "Nf3", "originalBest": "Bc4"}}
        rep = validate_card(raw)
        assert rep.ok
        assert "forced answer" in rep.warnings[0]

    def test_illegal_example_line(self):
        raw = self.good()
        raw["fields"]["exampleLine"] = ["Nf3", "Nf3"]
        assert any('move 2 "Nf3"' in e for e in validate_card(raw).errors)

    def test_malformed_entries(self):
        reports = validate_cards([self.good(), "junk"])
        assert reports[0].ok
        assert reports[1].errors == ["Malformed card object"]


# ════════════════════════════════════════════════════════════════════════════
#  ENGINE PATH TESTS
# ════════════════════════════════════════════════════════════════════════════

def touch_exe(path):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#!/bin/sh\n")
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return path


class TestEnginePath:
    @pytest.fixture(autouse=True)
    def no_path_engine(self, monkeypatch):
        monkeypatch.setattr("shutil.which", lambda name: None)

    def test_override_wins(self, tmp_path):
        exe = touch_exe(tmp_path / "bin" / "sf")
        env = {"STOCKFISH_PATH": str(touch_exe(tmp_path / "other"))}
        assert resolve_engine_path(str(exe), str(tmp_path), env=env) == str(exe)

    def test_env_var(self, tmp_path):
        exe = touch_exe(tmp_path / "sf-env")
        assert resolve_engine_path(None, str(tmp_path), env={"STOCKFISH_PATH": str(exe)}) == str(exe)

    def test_platform_default(self, tmp_path):
        exe = touch_exe(tmp_path / "engines" / "linux-x64" / "stockfish")
        found = resolve_engine_path(None, str(tmp_path), plat="linux", machine="x86_64", env={})
        assert found == str(exe)
        assert default_engine_path(str(tmp_path), "win32", "AMD64").endswith(os.path.join("win-x64", "stockfish.exe"))
        assert default_engine_path(str(tmp_path), "sunos5", "sparc") is None

    def test_scan_fallback(self, tmp_path):
        exe = touch_exe(tmp_path / "engines" / "custom" / "stockfish-17")
        assert scan_for_engine(str(tmp_path)) == str(exe)
        assert resolve_engine_path(None, str(tmp_path), plat="sunos5", machine="sparc", env={}) == str(exe)

    def test_not_found(self, tmp_path):
        with pytest.raises(EngineNotFound):
            resolve_engine_path(str(tmp_path / "missing"), str(tmp_path), env={})


# ════════════════════════════════════════════════════════════════════════════
#  CONFIG TESTS
# ════════════════════════════════════════════════════════════════════════════

class TestConfig:
    def test_defaults(self):
        cfg = Config()
        assert cfg.analysis.depth == 25
        assert cfg.analysis.acceptance == 0.20
        assert cfg.analysis.slot_count == 5
        assert cfg.store.duplicate_strategy == "skip"

    def test_load_from_toml(self, tmp_path):
        p = tmp_path / "cardgen.toml"
        p.write_text(
            'log_level = "DEBUG"\n'
            "[analysis]\ndepth = 12\nmax_other_answers = 2\nunknown = 1\n"
            '[store]\nduplicate_strategy = "overwrite"\n'
        )
        cfg = Config.load_from_toml(str(p))
        assert cfg.analysis.depth == 12
        assert cfg.analysis.slot_count == 3
        assert cfg.store.duplicate_strategy == "overwrite"
        assert cfg.log_level == "DEBUG"

    def test_env_depth_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CARDGEN_DEPTH", "7")
        assert load_config(str(tmp_path / "absent.toml")).analysis.depth == 7
        monkeypatch.setenv("CARDGEN_DEPTH", "deep")
        assert load_config(str(tmp_path / "absent.toml")).analysis.depth == 25

    def test_criteria(self):
        crit = AnalysisConfig(depth=18, max_other_answers=3).as_criteria()
        assert crit == {
            "otherAnswersAcceptance": 0.20,
            "maxOtherAnswerCount": 3,
            "depth": 18,
            "threads": 1,
            "hash": 1024,
            "multipv": 4,
        }
