from __future__ import annotations

from typing import Optional, Protocol

from .candidates import count_digits
from .models import LookupContext, LookupMatch
from .repository import ProductLookupSource
from .sql import BARCODE_TABLE_LABEL

FUNCTION_FALLBACK_LABEL = "fn_strunitptype(B)"
COMPOSITE_FALLBACK_LABEL = "LegacyCompositeLike"
MIN_COMPOSITE_DIGITS = 8


class ProductLookupStrategy(Protocol):
    async def attempt(self, candidate: str, context: LookupContext) -> Optional[LookupMatch]: ...


class BarcodeTableExactStrategy:
    """Exact match through the barcode cross-reference table."""

    def __init__(self, source: ProductLookupSource, barcode_column: Optional[str]) -> None:
        self._source = source
        self._matched_by = (barcode_column or "").strip() or BARCODE_TABLE_LABEL

    async def attempt(self, candidate: str, context: LookupContext) -> Optional[LookupMatch]:
        if not context.use_barcode_table:
            return None
        row = await self._source.lookup_by_barcode_table(candidate, context)
        if row is None:
            return None
        return LookupMatch(row, self._matched_by, candidate)


class BarcodeFieldExactStrategy:
    """Exact match on the product table's own barcode-like columns, in configured order."""

    def __init__(self, source: ProductLookupSource) -> None:
        self._source = source

    async def attempt(self, candidate: str, context: LookupContext) -> Optional[LookupMatch]:
        for field_name in context.barcode_fields:
            row = await self._source.lookup_by_field(candidate, field_name, context)
            if row is not None:
                return LookupMatch(row, field_name, candidate)
        return None


class FunctionFallbackStrategy:
    """Compares the candidate with the barcode the legacy database function derives."""

    def __init__(self, source: ProductLookupSource) -> None:
        self._source = source

    async def attempt(self, candidate: str, context: LookupContext) -> Optional[LookupMatch]:
        if not context.can_use_function_fallback:
            return None
        row = await self._source.lookup_by_function(candidate, context)
        return LookupMatch(row, FUNCTION_FALLBACK_LABEL, candidate) if row is not None else None


class CompatibilityCompositeStrategy:
    """Fuzzy "contains" match over the old system's concatenated keyword columns.

    Kept apart from the exact chain: it only runs once every candidate has
    missed every exact strategy, and only for candidates carrying at least
    eight digits.
    """

    def __init__(self, source: ProductLookupSource, min_digits: int = MIN_COMPOSITE_DIGITS) -> None:
        self._source = source
        self._min_digits = min_digits

    def accepts(self, candidate: str) -> bool:
        return len(candidate) >= self._min_digits and count_digits(candidate) >= self._min_digits

    async def attempt(self, candidate: str, context: LookupContext) -> Optional[LookupMatch]:
        if not self.accepts(candidate):
            return None
        row = await self._source.lookup_by_composite_keyword(candidate, context)
        return LookupMatch(row, COMPOSITE_FALLBACK_LABEL, candidate) if row is not None else None
