"""Core components: rules wrapper, engine session, transpositions, lineage and storage."""

from .board import ChessBoard
from .models import Card, CardFields, Eval, OtherAnswer
from .session import AnalysisRequest, AnalysisResult, EngineSession
from .store import CardStore
from .transposition import TranspositionResolver, canonical_key
