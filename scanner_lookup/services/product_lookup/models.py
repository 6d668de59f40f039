from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Tuple


def to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text.strip() else None


@dataclass(frozen=True)
class SchemaSnapshot:
    """Columns and functions the product table exposes right now.

    ``columns`` maps the lower-cased column name to the database's own
    spelling, so membership is case-insensitive while generated SQL keeps
    the real identifier.
    """

    columns: Mapping[str, str]
    has_barcode_function: bool
    expires_at: float = 0.0

    @classmethod
    def build(
        cls,
        column_names: Iterable[str],
        has_barcode_function: bool,
        expires_at: float = 0.0,
    ) -> "SchemaSnapshot":
        columns: dict[str, str] = {}
        for name in column_names:
            if name:
                columns.setdefault(name.lower(), name)
        return cls(
            columns=MappingProxyType(columns),
            has_barcode_function=bool(has_barcode_function),
            expires_at=expires_at,
        )

    def has_column(self, name: Optional[str]) -> bool:
        return bool(name) and name.lower() in self.columns

    def column_name(self, name: Optional[str]) -> Optional[str]:
        if not name:
            return None
        return self.columns.get(name.lower())

    def is_fresh(self, now: float) -> bool:
        return self.expires_at > now


@dataclass(frozen=True)
class LookupContext:
    schema: SchemaSnapshot
    price_field: Optional[str]
    specification_field: Optional[str]
    barcode_fields: Tuple[str, ...]
    use_barcode_table: bool
    can_use_function_fallback: bool


@dataclass(frozen=True)
class RawMatchRow:
    product_id: Optional[str]
    product_name: str
    price: Decimal
    product_code: str = ""
    product_short_code: str = ""
    specification: Optional[str] = None
    matched_unit_id: Optional[str] = None
    matched_barcode: Optional[str] = None

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any]) -> "RawMatchRow":
        return cls(
            product_id=_optional_text(row.get("product_id")),
            product_name=str(row.get("product_name") or ""),
            price=to_decimal(row.get("price")),
            product_code=str(row.get("product_code") or ""),
            product_short_code=str(row.get("product_short_code") or ""),
            specification=row.get("specification"),
            matched_unit_id=_optional_text(row.get("matched_unit_id")),
            matched_barcode=_optional_text(row.get("matched_barcode")),
        )


@dataclass(frozen=True)
class UnitRow:
    unit_id: str
    unit_name: str = ""
    unit_rate: str = ""
    price: Decimal = Decimal("0")
    barcode_list: str = ""
    is_matched_unit: bool = False

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any]) -> "UnitRow":
        return cls(
            unit_id=str(row.get("unit_id") or ""),
            unit_name=str(row.get("unit_name") or ""),
            unit_rate=str(row.get("unit_rate") or ""),
            price=to_decimal(row.get("price")),
            barcode_list=str(row.get("barcode_list") or ""),
            is_matched_unit=bool(row.get("is_matched_unit")),
        )


@dataclass(frozen=True)
class SearchRow:
    product_id: Optional[str]
    product_name: str
    price: Decimal
    barcode: str
    matched_by: str
    product_code: str = ""
    product_short_code: str = ""
    specification: Optional[str] = None

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any]) -> "SearchRow":
        return cls(
            product_id=_optional_text(row.get("product_id")),
            product_name=str(row.get("product_name") or ""),
            price=to_decimal(row.get("price")),
            barcode=str(row.get("barcode") or ""),
            matched_by=str(row.get("matched_by") or ""),
            product_code=str(row.get("product_code") or ""),
            product_short_code=str(row.get("product_short_code") or ""),
            specification=row.get("specification"),
        )


@dataclass(frozen=True)
class LookupMatch:
    row: RawMatchRow
    matched_by: str
    candidate: str = field(default="", compare=False)
