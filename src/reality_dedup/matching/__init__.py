"""Fingerprinting, candidate search, scoring and duplicate grouping."""

import importlib
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from reality_dedup.matching.candidates import Candidate, CandidateSearch  # noqa: F401
    from reality_dedup.matching.fingerprint import generate_fingerprint  # noqa: F401
    from reality_dedup.matching.master_record import MasterRecordService  # noqa: F401
    from reality_dedup.matching.scorer import MatchScorer, PersistOutcome  # noqa: F401
    from reality_dedup.matching.scoring import (  # noqa: F401
        MatchScore,
        ScoreResult,
        calculate_match_score,
    )
    from reality_dedup.matching.tiebreaker import AnthropicTieBreaker, TieBreaker  # noqa: F401

__all__ = [
    "AnthropicTieBreaker",
    "Candidate",
    "CandidateSearch",
    "calculate_match_score",
    "generate_fingerprint",
    "MasterRecordService",
    "MatchScore",
    "MatchScorer",
    "PersistOutcome",
    "ScoreResult",
    "TieBreaker",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "AnthropicTieBreaker": (".tiebreaker", "AnthropicTieBreaker"),
    "Candidate": (".candidates", "Candidate"),
    "CandidateSearch": (".candidates", "CandidateSearch"),
    "calculate_match_score": (".scoring", "calculate_match_score"),
    "generate_fingerprint": (".fingerprint", "generate_fingerprint"),
    "MasterRecordService": (".master_record", "MasterRecordService"),
    "MatchScore": (".scoring", "MatchScore"),
    "MatchScorer": (".scorer", "MatchScorer"),
    "PersistOutcome": (".scorer", "PersistOutcome"),
    "ScoreResult": (".scoring", "ScoreResult"),
    "TieBreaker": (".tiebreaker", "TieBreaker"),
}


def __getattr__(name: str) -> type:
    if name in _LAZY_IMPORTS:
        module_path, attr = _LAZY_IMPORTS[name]
        mod = importlib.import_module(module_path, __name__)
        val = getattr(mod, attr)
        globals()[name] = val  # Cache so __getattr__ is only called once
        return val  # type: ignore[no-any-return]
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:
    return __all__
