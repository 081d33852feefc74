"""Command line entry point: make cards, validate and relink the collection."""

import argparse
import dataclasses
import logging
import sys
from typing import List, Optional

from cardgen.config import CONFIG, Config
from cardgen.core.lineage import rebuild_relations
from cardgen.core.pv import uci_line_to_san
from cardgen.core.store import CardStore, read_shape
from cardgen.core.utils import format_eval
from cardgen.errors import CardGenError
from cardgen.main import FAILED, SKIPPED, CardGenerator, CardRequest
from cardgen.validate import validate_cards


def _config_from_args(args: argparse.Namespace, base: Config) -> Config:
    cfg = dataclasses.replace(
        base,
        analysis=dataclasses.replace(base.analysis),
        store=dataclasses.replace(base.store),
    )
    overrides = {
        "acceptance": args.accept,
        "max_other_answers": args.moac,
        "depth": args.depth,
        "threads": args.threads,
        "hash_mb": args.hash,
        "timeout_ms": args.timeout,
    }
    for k, v in overrides.items():
        if v is not None:
            setattr(cfg.analysis, k, v)
    if args.cards:
        cfg.store.cards_path = args.cards
    if args.answers:
        cfg.store.forced_answers_path = args.answers
    if args.overwrite:
        cfg.store.duplicate_strategy = "overwrite"
    return cfg


def cmd_make_card(args: argparse.Namespace) -> int:
    cfg = _config_from_args(args, CONFIG)
    try:
        generator = CardGenerator.from_config(cfg)
    except CardGenError as e:
        print(f"[make-card] {e}", file=sys.stderr)
        return 1
    request = CardRequest(moves=args.moves, pgn=args.pgn, fen=args.fen, keep_side=args.keep_side)
    result = generator.create_card_sync(request)

    if result.status == FAILED:
        print(f"[make-card] Failed ({result.error_kind}): {result.message}", file=sys.stderr)
        return 1
    print(f"[make-card] {result.message}")
    if result.status == SKIPPED:
        print(f"  FEN: {result.card.fields.fen}")
        return 0

    f = result.card.fields
    print(f"  Review FEN: {f.fen}")
    print(f"  Depth (move number): {f.depth}")
    print(f"  Parent: {f.parent or '(none)'}")
    print(f"  Answer: {f.answer}")
    print(f"  Example line: {' '.join(f.example_line) or '(none)'}")
    print(f"  Other answers: {', '.join(f.other_moves()) or '(none)'}")
    if result.synced:
        print(f"  Synced transpositions: {', '.join(result.synced)}")
    if result.analysis is not None:
        opts = []
        for slot in result.analysis.slots:
            line = uci_line_to_san(f.fen, slot.pv)
            opts.append(f"{line[0] if line else '?'} {format_eval(slot.score)}")
        depth = result.analysis.reached_depth or cfg.analysis.depth
        suffix = " (timed out)" if result.analysis.timed_out else ""
        print(f"  Options (d={depth}){suffix}: {', '.join(opts)}")
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    path = args.cards or CONFIG.store.cards_path
    try:
        with open(path, "r", encoding="utf-8") as f:
            _, items = read_shape(f.read())
    except FileNotFoundError:
        items = []
    except CardGenError as e:
        print(f"Validator failed: {e}", file=sys.stderr)
        return 1

    if not items:
        print("Collection is empty (0 cards). Nothing to validate.")
        return 0
    reports = validate_cards(items)
    errors = warnings = 0
    for rep in reports:
        label = f"{rep.card_id} [deck: {rep.deck}]"
        errors += len(rep.errors)
        warnings += len(rep.warnings)
        if not rep.errors and not rep.warnings:
            print(f"- {label} OK")
            continue
        print(f"- {label}")
        for e in rep.errors:
            print(f"   ERROR: {e}")
        for w in rep.warnings:
            print(f"   WARNING: {w}")
    print(f"\nSummary: {len(reports)} cards, {errors} errors, {warnings} warnings.")
    return 1 if errors else 0


def cmd_relink(args: argparse.Namespace) -> int:
    store = CardStore(args.cards or CONFIG.store.cards_path)
    try:
        cards = store.load()
    except CardGenError as e:
        print(f"Relink failed: {e}", file=sys.stderr)
        return 1
    rebuild_relations(cards)
    store.save(cards)
    linked = sum(1 for c in cards if c.fields.parent)
    print(f"Rebuilt relations for {len(cards)} cards ({linked} with a parent).")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(prog="cardgen")
    ap.add_argument("--log-level", default=None)
    sub = ap.add_subparsers(dest="cmd", required=True)

    mk = sub.add_parser("make-card", help="Analyse a position and add a card")
    src = mk.add_mutually_exclusive_group()
    src.add_argument("--moves", type=str, default=None, help='SAN moves, e.g. "e4 e5" or e4,e5')
    src.add_argument("--pgn", type=str, default=None, help='PGN movetext, e.g. "1. e4 e5"')
    src.add_argument("--fen", type=str, default=None, help="Review position as FEN")
    mk.add_argument("--keep-side", action="store_true", help="Do not normalize a black-to-move start FEN")
    mk.add_argument("--accept", type=float, default=None, help="Alternative window in pawns")
    mk.add_argument("--moac", type=int, default=None, help="Max other answer count")
    mk.add_argument("--depth", type=int, default=None)
    mk.add_argument("--threads", type=int, default=None)
    mk.add_argument("--hash", type=int, default=None, help="MB")
    mk.add_argument("--timeout", type=int, default=None, help="ms")
    mk.add_argument("--overwrite", action="store_true", help="Replace an existing card for the same path")
    mk.add_argument("--cards", type=str, default=None)
    mk.add_argument("--answers", type=str, default=None, help="Forced answers file")
    mk.set_defaults(fn=cmd_make_card)

    va = sub.add_parser("validate", help="Check the collection for errors")
    va.add_argument("--cards", type=str, default=None)
    va.set_defaults(fn=cmd_validate)

    rl = sub.add_parser("relink", help="Recompute children/descendants from parent links")
    rl.add_argument("--cards", type=str, default=None)
    rl.set_defaults(fn=cmd_relink)

    args = ap.parse_args(argv)
    logging.basicConfig(level=(args.log_level or CONFIG.log_level).upper(), format="%(levelname)s %(name)s: %(message)s")
    return int(args.fn(args))


if __name__ == "__main__":
    raise SystemExit(main())
