from __future__ import annotations

from scanner_lookup.services.product_lookup.candidates import (
    build_lookup_candidates,
    count_digits,
)


def test_blank_input_yields_no_candidates():
    assert build_lookup_candidates("") == []
    assert build_lookup_candidates("   ") == []
    assert build_lookup_candidates(None) == []


def test_ean13_adds_zero_padded_gtin14():
    assert build_lookup_candidates(" 6901234567892 ") == ["6901234567892", "06901234567892"]


def test_zero_led_gtin14_adds_ean13():
    assert build_lookup_candidates("06901234567892") == ["06901234567892", "6901234567892"]


def test_gtin14_without_leading_zero_adds_nothing_else():
    assert build_lookup_candidates("16901234567899") == ["16901234567899"]


def test_gs1_payload_adds_gtin14_and_ean13():
    raw = "(01)06901234567892(17)251231"
    assert build_lookup_candidates(raw) == [
        raw,
        "010690123456789217251231",
        "06901234567892",
        "6901234567892",
    ]


def test_gs1_payload_with_non_zero_gtin_stops_at_gtin14():
    assert build_lookup_candidates("0116901234567899") == [
        "0116901234567899",
        "16901234567899",
    ]


def test_digits_only_form_follows_raw_input():
    assert build_lookup_candidates("ABC-1234") == ["ABC-1234", "1234"]


def test_text_without_digits_is_kept_as_is():
    assert build_lookup_candidates("cola") == ["cola"]


def test_candidates_are_distinct():
    candidates = build_lookup_candidates("4006381333931")
    assert len(candidates) == len(set(candidates))
    assert candidates[0] == "4006381333931"


def test_count_digits_ignores_non_ascii_digits():
    assert count_digits("A1B2C3") == 3
    assert count_digits("١٢٣") == 0
