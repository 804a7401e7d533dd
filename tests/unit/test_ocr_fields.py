from __future__ import annotations

import pytest

from backoffice.domain.ocr_fields import (
    extract_fields,
    extract_value,
    is_numeric_field,
    jaro_winkler,
    normalize_match_text,
    normalize_numeric_value,
)


@pytest.mark.unit
@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("$1,250,000.00", "1250000"),
        ("(5,000)", "-5000"),
        ("12.50", "12.5"),
        ("n/a", "n/a"),
    ],
)
def test_numeric_values_are_normalized(raw: str, expected: str) -> None:
    assert normalize_numeric_value(raw) == expected


@pytest.mark.unit
def test_match_text_is_lowercased_and_stripped_of_punctuation() -> None:
    assert normalize_match_text("  Cash-on  Hand: ") == "cash on hand"


@pytest.mark.unit
def test_jaro_winkler_bounds() -> None:
    assert jaro_winkler("tax id", "tax id") == 1.0
    assert jaro_winkler("", "tax id") == 0.0
    assert jaro_winkler("martha", "marhta") == pytest.approx(0.9611, abs=1e-3)


@pytest.mark.unit
def test_extract_value_prefers_label_then_separator() -> None:
    assert extract_value("Tax ID: 12-3456789", "Tax ID") == "12-3456789"
    assert extract_value("Taks Id - 99", "Tax ID") == "99"
    assert extract_value("Owner", "Owner Name") is None


@pytest.mark.unit
def test_extract_fields_exact_and_fuzzy_matches() -> None:
    text = "\n".join(
        [
            "ACME STATEMENT",
            "Business Name: Acme Corp",
            "Net Incme: (12,500.00)",
            "Cash on Hand: $40,000",
        ]
    )

    fields = {item.field_key: item for item in extract_fields(text)}

    assert fields["business_name"].value == "Acme Corp"
    assert fields["business_name"].confidence == 1.0
    assert fields["cash_on_hand"].value == "40000"
    assert fields["net_income"].value == "-12500"
    assert 0.85 <= fields["net_income"].confidence < 1.0
    assert "business_address" not in fields


@pytest.mark.unit
def test_numeric_categories() -> None:
    assert is_numeric_field("total_revenue") is True
    assert is_numeric_field("business_name") is False
    assert is_numeric_field("unknown") is False
