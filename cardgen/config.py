# cardgen/config.py
from dataclasses import dataclass, field
from typing import Optional
import os
import tomllib  # python >=3.11

# Defaults for engine-assisted card generation
DEFAULT_DEPTH = 25
DEFAULT_HASH_MB = 1024
MIN_HASH_MB = 32
DEFAULT_TIMEOUT_MS = 30000


@dataclass
class AnalysisConfig:
    depth: int = DEFAULT_DEPTH
    threads: int = 1
    hash_mb: int = DEFAULT_HASH_MB
    acceptance: float = 0.20  # pawns an alternative may trail the best reply
    max_other_answers: int = 4
    timeout_ms: int = DEFAULT_TIMEOUT_MS  # wall-clock safety net, search itself is depth-bounded

    def sanitized(self) -> "AnalysisConfig":
        """Return a copy clamped to values the engine accepts."""
        return AnalysisConfig(
            depth=max(1, int(self.depth or DEFAULT_DEPTH)),
            threads=max(1, int(self.threads or 1)),
            hash_mb=max(MIN_HASH_MB, int(self.hash_mb or DEFAULT_HASH_MB)),
            acceptance=float(self.acceptance if self.acceptance is not None else 0.20),
            max_other_answers=max(0, int(self.max_other_answers or 0)),
            timeout_ms=max(1, int(self.timeout_ms or DEFAULT_TIMEOUT_MS)),
        )

    @property
    def slot_count(self) -> int:
        # one slot for the best reply plus one per possible alternative
        return 1 + max(0, self.max_other_answers)

    def as_criteria(self) -> dict:
        return {
            "otherAnswersAcceptance": self.acceptance,
            "maxOtherAnswerCount": self.max_other_answers,
            "depth": self.depth,
            "threads": self.threads,
            "hash": self.hash_mb,
            "multipv": self.slot_count,
        }


@dataclass
class EngineConfig:
    path: Optional[str] = None  # explicit binary, wins over STOCKFISH_PATH and defaults
    base_dir: str = "."  # directory holding engines/<platform-arch>/
    packaged: bool = False


@dataclass
class StoreConfig:
    cards_path: str = os.path.join("data", "cards.json")
    forced_answers_path: str = os.path.join("data", "answers.json")
    duplicate_strategy: str = "skip"  # "skip" | "overwrite"


@dataclass
class Config:
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    log_level: str = "INFO"

    @staticmethod
    def load_from_toml(path: str = "cardgen.toml") -> "Config":
        cfg = Config()
        if not os.path.exists(path):
            return cfg
        with open(path, "rb") as f:
            raw = tomllib.load(f)
        for section in ("analysis", "engine", "store"):
            if section in raw:
                target = getattr(cfg, section)
                for k, v in raw[section].items():
                    if hasattr(target, k):
                        setattr(target, k, v)
        if "log_level" in raw:
            cfg.log_level = str(raw["log_level"])
        return cfg


def load_config(path: Optional[str] = None) -> Config:
    """Load the TOML config and apply environment overrides."""
    cfg = Config.load_from_toml(path or os.environ.get("CARDGEN_CONFIG_TOML", "cardgen.toml"))
    override_depth = os.environ.get("CARDGEN_DEPTH")
    if override_depth:
        try:
            cfg.analysis.depth = int(override_depth)
        except ValueError:
            pass
    return cfg


# single globally importable config instance, used by the outer surfaces only
CONFIG = load_config()
