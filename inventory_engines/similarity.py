"""
inventory_engines.similarity -- Name and phone normalization and similarity.

Responsibility:
    Turn the free-text counterparty written on a check into a comparable
    key and score it against directory names.  Names are normalized with
    NFKC, case folding, Arabic letter folding, punctuation stripping and
    whitespace collapsing.  Phones are reduced to digits and compared on
    their trailing digits.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Every score is a Decimal in [0, 1], quantized to 4 places, so the
      same pair of strings always scores the same on every platform.
    - normalize_name is idempotent.
"""

from __future__ import annotations

import re
import unicodedata
from decimal import ROUND_HALF_UP, Decimal

_ZERO = Decimal("0")
_ONE = Decimal("1")
_Q = Decimal("0.0001")

# Hamza and alef variants, alef maqsura, taa marbuta.
_ARABIC_FOLD = str.maketrans(
    {
        "\u0623": "\u0627",  # alef with hamza above
        "\u0625": "\u0627",  # alef with hamza below
        "\u0622": "\u0627",  # alef with madda
        "\u0671": "\u0627",  # alef wasla
        "\u0649": "\u064a",  # alef maqsura -> yeh
        "\u0629": "\u0647",  # taa marbuta -> heh
        "\u0624": "\u0648",  # waw with hamza
        "\u0626": "\u064a",  # yeh with hamza
    }
)

# Harakat, superscript alef and tatweel carry no identity.
_ARABIC_MARKS = re.compile("[\u064b-\u0652\u0670\u0640]")
_NON_WORD = re.compile(r"[\W_]+", re.UNICODE)
_NON_DIGIT = re.compile(r"\D")


def _ratio(value: Decimal) -> Decimal:
    return min(max(value, _ZERO), _ONE).quantize(_Q, rounding=ROUND_HALF_UP)


def normalize_name(name: str | None) -> str:
    if not name:
        return ""
    text = unicodedata.normalize("NFKC", name).casefold()
    text = _ARABIC_MARKS.sub("", text).translate(_ARABIC_FOLD)
    text = _NON_WORD.sub(" ", text)
    return " ".join(text.split())


def normalize_phone(phone: str | None) -> str:
    if not phone:
        return ""
    return _NON_DIGIT.sub("", unicodedata.normalize("NFKC", phone))


def phone_match_strength(a: str | None, b: str | None, tail_digits: int = 9) -> Decimal:
    """
    1 for identical digit strings, 0.9 when the trailing ``tail_digits``
    agree (country code or trunk prefix differs), otherwise 0.

    Numbers shorter than ``tail_digits`` only match exactly.
    """
    da, db = normalize_phone(a), normalize_phone(b)
    if not da or not db:
        return _ZERO
    if da == db:
        return _ONE
    if len(da) >= tail_digits and len(db) >= tail_digits and da[-tail_digits:] == db[-tail_digits:]:
        return Decimal("0.9")
    return _ZERO


def levenshtein(a: str, b: str) -> int:
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (ca != cb),
                )
            )
        previous = current
    return previous[-1]


def levenshtein_ratio(a: str, b: str) -> Decimal:
    longest = max(len(a), len(b))
    if longest == 0:
        return _ONE
    return _ratio(Decimal(longest - levenshtein(a, b)) / Decimal(longest))


def token_overlap(a: str, b: str) -> Decimal:
    """Shared tokens over the larger token set; order-insensitive."""
    ta, tb = set(a.split()), set(b.split())
    if not ta or not tb:
        return _ZERO
    return _ratio(Decimal(len(ta & tb)) / Decimal(max(len(ta), len(tb))))


def name_similarity(a: str | None, b: str | None) -> Decimal:
    """max(Levenshtein ratio, token overlap) over normalized names."""
    na, nb = normalize_name(a), normalize_name(b)
    if not na or not nb:
        return _ZERO
    if na == nb:
        return _ONE
    return max(levenshtein_ratio(na, nb), token_overlap(na, nb))
