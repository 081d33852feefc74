"""Error taxonomy for card generation.

Soft outcomes (search timeout, duplicate skip, overwrite target missing) are
reported through result objects and never raised.
"""


class CardGenError(Exception):
    """Base exception for all card generation failures."""

    kind = "card_gen_error"


class EngineNotFound(CardGenError):
    """No usable engine binary could be resolved."""

    kind = "engine_not_found"


class EngineSpawnFailure(CardGenError):
    """The engine process could not be started or died mid-session."""

    kind = "engine_spawn_failure"


class EngineNoPrincipalVariations(CardGenError):
    """The engine produced no usable lines for the position."""

    kind = "engine_no_principal_variations"


class InvalidMoveSequence(CardGenError):
    """A move path or PGN could not be replayed from the start position."""

    kind = "invalid_move_sequence"


class InvalidFEN(CardGenError):
    """A FEN string was rejected by the rules layer."""

    kind = "invalid_fen"


class CollectionError(CardGenError):
    """The persisted collection is unreadable or has an unknown shape."""

    kind = "collection_error"
