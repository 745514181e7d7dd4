"""
Module: inventory_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines: name and
    phone similarity, and owner candidate scoring for checks and
    installments.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import inventory_kernel.domain and inventory_kernel.logging_config.
    MUST NOT import inventory_services or inventory_config.

Invariants enforced:
    - Purity: engines never read the clock; dates arrive as parameters.
    - Determinism: identical inputs always produce identical outputs.
"""

from inventory_engines.matching import (
    DebtAmountStrategy,
    ExactNameStrategy,
    FuzzyNameStrategy,
    MatchContext,
    MatchPolicy,
    MatchSignal,
    MatchStrategy,
    OwnerCandidate,
    OwnerMatchingEngine,
    PhoneStrategy,
    default_strategies,
)
from inventory_engines.similarity import (
    levenshtein,
    levenshtein_ratio,
    name_similarity,
    normalize_name,
    normalize_phone,
    phone_match_strength,
    token_overlap,
)
from inventory_engines.tracer import traced_engine

__all__ = [
    "DebtAmountStrategy",
    "ExactNameStrategy",
    "FuzzyNameStrategy",
    "MatchContext",
    "MatchPolicy",
    "MatchSignal",
    "MatchStrategy",
    "OwnerCandidate",
    "OwnerMatchingEngine",
    "PhoneStrategy",
    "default_strategies",
    "levenshtein",
    "levenshtein_ratio",
    "name_similarity",
    "normalize_name",
    "normalize_phone",
    "phone_match_strength",
    "token_overlap",
    "traced_engine",
]
