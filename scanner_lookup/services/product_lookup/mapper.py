from __future__ import annotations

from typing import Iterable, List, Optional

from ...config import Settings
from ...schemas import LookupResult, PricingMeta, ProductUnit
from .models import RawMatchRow, UnitRow
from .repository import ProductLookupSource


def split_barcodes(barcode_list: Optional[str]) -> List[str]:
    if not barcode_list or not barcode_list.strip():
        return []
    barcodes: List[str] = []
    for part in barcode_list.split(","):
        value = part.strip()
        if value and value not in barcodes:
            barcodes.append(value)
    return barcodes


def select_current_unit(
    units: Iterable[ProductUnit], matched_unit_id: Optional[str]
) -> Optional[ProductUnit]:
    """Flagged unit, else the unit named by the matched unit id, else the first one."""
    units = list(units)
    for unit in units:
        if unit.isMatchedUnit:
            return unit
    if matched_unit_id and matched_unit_id.strip():
        wanted = matched_unit_id.strip().lower()
        for unit in units:
            if unit.unitId.lower() == wanted:
                return unit
    return units[0] if units else None


def build_pricing_meta(settings: Settings) -> PricingMeta:
    if settings.price_table and settings.price_column:
        source_table, source_field = settings.price_table, settings.price_column
    else:
        source_table, source_field = settings.product_table, " | ".join(settings.price_fields)
    return PricingMeta(
        sourceTable=source_table,
        sourceField=source_field,
        unitScoped=settings.uses_barcode_table and settings.uses_price_table,
        priceTypeId=(settings.price_type_id or None),
    )


def _to_unit(row: UnitRow) -> ProductUnit:
    return ProductUnit(
        unitId=row.unit_id,
        unitName=row.unit_name,
        unitRate=row.unit_rate,
        price=row.price,
        barcodes=split_barcodes(row.barcode_list),
        isMatchedUnit=row.is_matched_unit,
    )


class ProductLookupResultMapper:
    def __init__(self, source: ProductLookupSource, settings: Settings) -> None:
        self._source = source
        self._pricing = build_pricing_meta(settings)

    async def map(self, row: RawMatchRow, matched_by: str) -> LookupResult:
        if not row.product_id:
            # Legacy-only hit without a product key: nothing to load units by.
            return LookupResult(
                productId=None,
                productName=row.product_name,
                productCode=row.product_code,
                productShortCode=row.product_short_code,
                specification=row.specification,
                price=row.price,
                matchedBy=matched_by,
                pricing=self._pricing,
            )

        unit_rows = await self._source.get_units(row.product_id, row.matched_barcode)
        units = [_to_unit(unit) for unit in unit_rows]
        current = select_current_unit(units, row.matched_unit_id)

        return LookupResult(
            productId=row.product_id,
            productName=row.product_name,
            productCode=row.product_code,
            productShortCode=row.product_short_code,
            specification=row.specification,
            price=current.price if current is not None else row.price,
            matchedBy=matched_by,
            pricing=self._pricing,
            currentUnit=current,
            units=units,
        )
