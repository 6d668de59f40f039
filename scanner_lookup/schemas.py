from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_SEARCH_LIMIT = 20
MAX_SEARCH_LIMIT = 50
MIN_SEARCH_KEYWORD_LENGTH = 2


class ProductUnit(BaseModel):
    model_config = ConfigDict(frozen=True)

    unitId: str
    unitName: str = ""
    unitRate: str = ""
    price: Decimal = Decimal("0")
    barcodes: List[str] = Field(default_factory=list)
    isMatchedUnit: bool = False


class PricingMeta(BaseModel):
    model_config = ConfigDict(frozen=True)

    sourceTable: str
    sourceField: str
    unitScoped: bool = False
    priceTypeId: Optional[str] = None


class LookupResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    productId: Optional[str] = None
    productName: str
    productCode: str = ""
    productShortCode: str = ""
    specification: Optional[str] = None
    price: Decimal
    matchedBy: str
    pricing: Optional[PricingMeta] = None
    currentUnit: Optional[ProductUnit] = None
    units: List[ProductUnit] = Field(default_factory=list)


class SearchResultItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    productId: Optional[str] = None
    productName: str
    productCode: str = ""
    productShortCode: str = ""
    specification: Optional[str] = None
    price: Decimal
    barcode: str
    matchedBy: str
