from __future__ import annotations

from typing import List

GS1_GTIN_AI = "01"
GTIN14_LENGTH = 14
EAN13_LENGTH = 13
_DIGITS = frozenset("0123456789")


def _add_candidate(candidates: List[str], value: str) -> None:
    if not value or not value.strip():
        return
    if value in candidates:
        return
    candidates.append(value)


def build_lookup_candidates(raw: str | None) -> List[str]:
    """Expand one scanned or typed value into ordered, distinct lookup keys.

    The trimmed input always comes first, followed by its digits-only form and
    the GS1/GTIN variants derived from it:

    - a GS1-128 payload (``01`` + GTIN-14, at least 16 digits) adds the GTIN-14
      and, when it is zero-led, the EAN-13 inside it;
    - a zero-led GTIN-14 adds its EAN-13;
    - an EAN-13 adds its zero-padded GTIN-14.
    """
    value = (raw or "").strip()
    if not value:
        return []

    candidates: List[str] = []
    _add_candidate(candidates, value)

    digits = "".join(ch for ch in value if ch in _DIGITS)
    _add_candidate(candidates, digits)

    if len(digits) >= GTIN14_LENGTH + len(GS1_GTIN_AI) and digits.startswith(GS1_GTIN_AI):
        gtin14 = digits[len(GS1_GTIN_AI):len(GS1_GTIN_AI) + GTIN14_LENGTH]
        _add_candidate(candidates, gtin14)
        if gtin14.startswith("0"):
            _add_candidate(candidates, gtin14[1:])
    elif len(digits) == GTIN14_LENGTH and digits.startswith("0"):
        _add_candidate(candidates, digits[1:])
    elif len(digits) == EAN13_LENGTH:
        _add_candidate(candidates, f"0{digits}")

    return candidates


def count_digits(value: str) -> int:
    return sum(1 for ch in value if ch in _DIGITS)
