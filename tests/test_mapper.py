from __future__ import annotations

from decimal import Decimal

from scanner_lookup.config import Settings
from scanner_lookup.schemas import ProductUnit
from scanner_lookup.services.product_lookup.mapper import (
    build_pricing_meta,
    select_current_unit,
    split_barcodes,
)


def _unit(unit_id: str, price: str = "1.00", matched: bool = False) -> ProductUnit:
    return ProductUnit(unitId=unit_id, price=Decimal(price), isMatchedUnit=matched)


def test_flagged_unit_beats_matched_unit_id():
    units = [_unit("1"), _unit("2"), _unit("3", matched=True)]
    assert select_current_unit(units, "2").unitId == "3"


def test_matched_unit_id_is_case_insensitive():
    units = [_unit("pc"), _unit("BOX")]
    assert select_current_unit(units, " box ").unitId == "BOX"


def test_first_unit_is_the_fallback():
    units = [_unit("1"), _unit("2")]
    assert select_current_unit(units, "9").unitId == "1"
    assert select_current_unit(units, None).unitId == "1"


def test_no_units_means_no_current_unit():
    assert select_current_unit([], "1") is None


def test_split_barcodes_trims_and_dedups():
    assert split_barcodes(" 690, 691 ,690,,") == ["690", "691"]
    assert split_barcodes("") == []
    assert split_barcodes(None) == []


def test_pricing_meta_for_product_price_fields():
    settings = Settings(product_table="Ptype", price_fields=["RetailPrice", "Price1"])
    meta = build_pricing_meta(settings)
    assert meta.sourceTable == "Ptype"
    assert meta.sourceField == "RetailPrice | Price1"
    assert meta.unitScoped is False
    assert meta.priceTypeId is None


def test_pricing_meta_for_unit_scoped_price_table():
    settings = Settings(
        barcode_table="xw_PtypeBarcode",
        barcode_column="Barcode",
        price_table="xw_P_PtypePrice",
        price_column="RetailPrice",
        price_type_id="0002",
    )
    meta = build_pricing_meta(settings)
    assert meta.sourceTable == "xw_P_PtypePrice"
    assert meta.sourceField == "RetailPrice"
    assert meta.unitScoped is True
    assert meta.priceTypeId == "0002"
