"""
inventory_engines.matching -- Owner candidate scoring for checks and installments.

Responsibility:
    Given one instrument (check or installment) and the owner directory,
    score every owner and return the plausible candidates, each with a
    confidence tier.  Evidence comes from pluggable strategies:

        exact_name   normalized names are identical
        phone        digits identical, or the trailing N digits agree
        debt_amount  an open debt of that owner matches the amount
        fuzzy_name   max(Levenshtein ratio, token overlap) of the names

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import inventory_kernel.domain (and sibling engine modules).

Invariants enforced:
    - Determinism: identical inputs give an identical, totally ordered
      candidate list.  Sort key: tier desc, score desc, owner-type priority,
      most recent transaction desc, owner_id asc.
    - Never guess: an owner with no signal at or above the low threshold is
      not a candidate, and a phone match alone never ranks above LOW.

Confidence tiers:
    HIGH    exact name + phone, or an open debt of exactly the amount
    MEDIUM  exact name only, or fuzzy >= fuzzy_threshold with a debt
            amount inside the tolerance window
    LOW     fuzzy >= low_threshold only, or a phone match with no name
            evidence strong enough for a higher tier

Score:
    0-100, the weighted sum of strategy strengths.  With the default
    weights a name match is worth 70 and a phone match 30, so HIGH
    candidates with both signals score at or near 100.  The score only
    orders candidates inside a tier.

Usage:
    engine = OwnerMatchingEngine()
    candidates = engine.match_candidates(
        entity=check, owners=directory.list_owners(),
        debts=directory.outstanding_debts(), policy=MatchPolicy(),
    )
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol, runtime_checkable

from inventory_engines.similarity import (
    name_similarity,
    normalize_name,
    phone_match_strength,
)
from inventory_engines.tracer import traced_engine
from inventory_kernel.domain.linking import (
    Confidence,
    DebtRecord,
    LinkableEntity,
    LinkOwnerType,
    OwnerRecord,
)
from inventory_kernel.logging_config import get_logger

logger = get_logger("engines.matching")

_ZERO = Decimal("0")
_ONE = Decimal("1")
_HUNDRED = Decimal("100")

EXACT_NAME = "exact_name"
PHONE = "phone"
DEBT_AMOUNT = "debt_amount"
FUZZY_NAME = "fuzzy_name"


@dataclass(frozen=True)
class MatchPolicy:
    """
    Thresholds for owner matching.

    ``amount_tolerance`` is a fraction of the instrument amount; a debt
    within ``exact_amount_epsilon`` of the amount is an exact match.
    """

    fuzzy_threshold: Decimal = Decimal("0.85")
    low_threshold: Decimal = Decimal("0.60")
    amount_tolerance: Decimal = Decimal("0.05")
    exact_amount_epsilon: Decimal = Decimal("0.01")
    phone_tail_digits: int = 9
    owner_type_priority: tuple[LinkOwnerType, ...] = (
        LinkOwnerType.CUSTOMER,
        LinkOwnerType.SUPPLIER,
        LinkOwnerType.EMPLOYEE,
    )

    def __post_init__(self) -> None:
        if not (_ZERO < self.low_threshold <= self.fuzzy_threshold <= _ONE):
            raise ValueError(
                "Thresholds must satisfy 0 < low_threshold <= fuzzy_threshold <= 1, "
                f"got low={self.low_threshold} fuzzy={self.fuzzy_threshold}"
            )
        if self.amount_tolerance < 0 or self.exact_amount_epsilon < 0:
            raise ValueError("Amount tolerances must be >= 0")
        if self.phone_tail_digits < 1:
            raise ValueError("phone_tail_digits must be >= 1")
        if len(set(self.owner_type_priority)) != len(self.owner_type_priority):
            raise ValueError("owner_type_priority must not repeat owner types")

    def priority_of(self, owner_type: LinkOwnerType) -> int:
        try:
            return self.owner_type_priority.index(owner_type)
        except ValueError:
            return len(self.owner_type_priority)


@dataclass(frozen=True)
class MatchSignal:
    """One piece of evidence.  ``strength`` is in [0, 1]."""

    strategy: str
    strength: Decimal
    debt: DebtRecord | None = None
    exact: bool = False


@dataclass(frozen=True)
class MatchContext:
    """Per-run inputs shared by all strategies."""

    policy: MatchPolicy
    debts_by_owner: dict[tuple[LinkOwnerType, str], tuple[DebtRecord, ...]] = field(
        default_factory=dict
    )
    entity_name: str = ""

    def debts_for(self, owner: OwnerRecord) -> tuple[DebtRecord, ...]:
        return self.debts_by_owner.get((owner.owner_type, owner.owner_id), ())


@runtime_checkable
class MatchStrategy(Protocol):
    """Scores one kind of evidence for one (entity, owner) pair."""

    name: str
    weight: Decimal

    def evaluate(
        self, entity: LinkableEntity, owner: OwnerRecord, context: MatchContext
    ) -> MatchSignal | None: ...


class ExactNameStrategy:
    name = EXACT_NAME
    weight = Decimal("0.35")

    def evaluate(self, entity, owner, context):
        if context.entity_name and context.entity_name == normalize_name(owner.name):
            return MatchSignal(self.name, _ONE, exact=True)
        return None


class PhoneStrategy:
    name = PHONE
    weight = Decimal("0.30")

    def evaluate(self, entity, owner, context):
        if not entity.counterparty_phone or not owner.phone:
            return None
        strength = phone_match_strength(
            entity.counterparty_phone, owner.phone, context.policy.phone_tail_digits
        )
        if strength == _ZERO:
            return None
        return MatchSignal(self.name, strength, exact=strength == _ONE)


class DebtAmountStrategy:
    """
    Closest open debt of the owner to the instrument amount.

    Strength is 1 for an exact amount and falls linearly to 0.5 at the edge
    of the tolerance window.
    """

    name = DEBT_AMOUNT
    weight = Decimal("0.10")

    def evaluate(self, entity, owner, context):
        debts = context.debts_for(owner)
        if not debts or entity.amount <= 0:
            return None
        policy = context.policy
        window = entity.amount * policy.amount_tolerance
        best = min(
            debts,
            key=lambda d: (abs(d.amount - entity.amount), d.document_ref or ""),
        )
        diff = abs(best.amount - entity.amount)
        if diff <= policy.exact_amount_epsilon:
            return MatchSignal(self.name, _ONE, debt=best, exact=True)
        if window > 0 and diff <= window:
            strength = _ONE - (diff / window) / 2
            return MatchSignal(self.name, strength.quantize(Decimal("0.0001")), debt=best)
        return None


class FuzzyNameStrategy:
    name = FUZZY_NAME
    weight = Decimal("0.35")

    def evaluate(self, entity, owner, context):
        similarity = name_similarity(entity.counterparty_name, owner.name)
        if similarity < context.policy.low_threshold:
            return None
        return MatchSignal(self.name, similarity, exact=similarity == _ONE)


def default_strategies() -> tuple[MatchStrategy, ...]:
    return (ExactNameStrategy(), PhoneStrategy(), DebtAmountStrategy(), FuzzyNameStrategy())


@dataclass(frozen=True)
class OwnerCandidate:
    """A scored owner for one instrument."""

    owner: OwnerRecord
    confidence: Confidence
    score: Decimal
    signals: tuple[MatchSignal, ...]
    matched_debt: DebtRecord | None = None

    @property
    def owner_id(self) -> str:
        return self.owner.owner_id

    @property
    def owner_type(self) -> LinkOwnerType:
        return self.owner.owner_type

    @property
    def signal_names(self) -> tuple[str, ...]:
        return tuple(s.strategy for s in self.signals)


def classify(signals: dict[str, MatchSignal], policy: MatchPolicy) -> Confidence | None:
    """Map the collected signals to a confidence tier (None = not a candidate)."""
    exact_name = EXACT_NAME in signals
    phone = PHONE in signals
    fuzzy = signals[FUZZY_NAME].strength if FUZZY_NAME in signals else _ZERO
    debt = signals.get(DEBT_AMOUNT)
    strong_fuzzy = exact_name or fuzzy >= policy.fuzzy_threshold

    if exact_name and phone:
        return Confidence.HIGH
    if debt is not None and debt.exact:
        return Confidence.HIGH
    if exact_name:
        return Confidence.MEDIUM
    if strong_fuzzy and debt is not None:
        return Confidence.MEDIUM
    # a phone on its own only ever reaches review, never the auto-link floor
    if phone or fuzzy >= policy.low_threshold:
        return Confidence.LOW
    return None


def candidate_sort_key(candidate: OwnerCandidate, policy: MatchPolicy) -> tuple:
    last = candidate.owner.last_transaction_at
    recency = (0, -last.timestamp()) if last is not None else (1, 0.0)
    return (
        -candidate.confidence.rank,
        -candidate.score,
        policy.priority_of(candidate.owner_type),
        recency,
        candidate.owner_id,
    )


class OwnerMatchingEngine:
    """
    Owner matching engine.

    Contract:
        Pure -- no I/O, no clock.  Owners and debts are passed in.
    Guarantees:
        - The result is sorted by ``candidate_sort_key`` and contains only
          owners with a confidence tier.
        - Duplicate directory rows (same owner_type and owner_id) are scored
          once.
    Non-goals:
        - Does not decide whether to link; the reconciliation service applies
          the auto-link floor.
    """

    def __init__(self, strategies: Sequence[MatchStrategy] | None = None):
        self._strategies = tuple(strategies) if strategies is not None else default_strategies()
        names = [s.name for s in self._strategies]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate strategy names: {names}")

    @property
    def strategies(self) -> tuple[MatchStrategy, ...]:
        return self._strategies

    def score_owner(
        self, entity: LinkableEntity, owner: OwnerRecord, context: MatchContext
    ) -> OwnerCandidate | None:
        signals: dict[str, MatchSignal] = {}
        for strategy in self._strategies:
            signal = strategy.evaluate(entity, owner, context)
            if signal is not None:
                signals[strategy.name] = signal

        confidence = classify(signals, context.policy)
        if confidence is None:
            return None

        weights = {s.name: s.weight for s in self._strategies}
        raw = sum((weights[name] * sig.strength for name, sig in signals.items()), _ZERO)
        score = min(raw * _HUNDRED, _HUNDRED).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        debt_signal = signals.get(DEBT_AMOUNT)
        return OwnerCandidate(
            owner=owner,
            confidence=confidence,
            score=score,
            signals=tuple(signals[s.name] for s in self._strategies if s.name in signals),
            matched_debt=debt_signal.debt if debt_signal is not None else None,
        )

    @traced_engine("owner_matching", "1.0", fingerprint_fields=("entity", "policy"))
    def match_candidates(
        self,
        entity: LinkableEntity,
        owners: Sequence[OwnerRecord],
        debts: Sequence[DebtRecord] = (),
        policy: MatchPolicy | None = None,
    ) -> list[OwnerCandidate]:
        t0 = time.monotonic()
        policy = policy or MatchPolicy()

        debts_by_owner: dict[tuple[LinkOwnerType, str], list[DebtRecord]] = {}
        for debt in debts:
            debts_by_owner.setdefault((debt.owner_type, debt.owner_id), []).append(debt)
        context = MatchContext(
            policy=policy,
            debts_by_owner={k: tuple(v) for k, v in debts_by_owner.items()},
            entity_name=normalize_name(entity.counterparty_name),
        )

        seen: set[tuple[LinkOwnerType, str]] = set()
        candidates: list[OwnerCandidate] = []
        for owner in owners:
            key = (owner.owner_type, owner.owner_id)
            if key in seen:
                continue
            seen.add(key)
            candidate = self.score_owner(entity, owner, context)
            if candidate is not None:
                candidates.append(candidate)

        candidates.sort(key=lambda c: candidate_sort_key(c, policy))

        logger.debug(
            "owner_match_completed",
            extra={
                "entity_id": entity.entity_id,
                "entity_type": entity.entity_type.value,
                "owners_evaluated": len(seen),
                "candidates_found": len(candidates),
                "top_confidence": candidates[0].confidence.value if candidates else None,
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            },
        )
        return candidates
