from decimal import Decimal

import pytest

from app.harvester import config
from app.harvester.error_codes import ErrorCode
from app.harvester.faults import NormalizationError
from app.harvester.records import (
    FIELD_NAMES,
    composite_key,
    contract_key,
    normalize,
    parse_number,
    resolve_key_strategy,
    strip_zero_decimal,
)

RAW = ["1", "2024010203040506", "NABIL", "21", "42", "1,000", "1,200.00", "1,200,000.00"]


@pytest.mark.parametrize(
    "value, expected",
    [
        ("1,200.00", "1,200"),
        ("500.0", "500"),
        ("12.50", "12.50"),
        ("500", "500"),
        ("NABIL", "NABIL"),
        ("-3.00", "-3"),
    ],
)
def test_strip_zero_decimal(value: str, expected: str) -> None:
    assert strip_zero_decimal(value) == expected


def test_parse_number_accepts_thousands_separators() -> None:
    assert parse_number("1,200,000.50") == Decimal("1200000.50")
    with pytest.raises(ValueError):
        parse_number("12a")


def test_normalize_cleans_cells() -> None:
    raw = [" 1 ", "2024010203040506", '"NABIL"', "21&amp;", " 42\n", "1,000", "1,200.00", "1,200,000.00"]

    record = normalize(raw, key_strategy=contract_key)

    assert record.as_row() == ("1", "2024010203040506", "NABIL", "21&", "42", "1,000", "1,200", "1,200,000")
    assert record.identity_key == "2024010203040506"
    assert list(record.to_dict()) == list(FIELD_NAMES)
    assert record.numeric("rate") == Decimal("1200")


@pytest.mark.parametrize("cells", [RAW[:7], RAW + ["extra"], []])
def test_wrong_arity_is_rejected(cells) -> None:
    with pytest.raises(NormalizationError) as excinfo:
        normalize(cells, key_strategy=contract_key)
    assert excinfo.value.error_code == ErrorCode.ROW_ARITY


def test_blank_contract_is_rejected() -> None:
    raw = list(RAW)
    raw[1] = "  "
    with pytest.raises(NormalizationError) as excinfo:
        normalize(raw, key_strategy=contract_key)
    assert excinfo.value.error_code == ErrorCode.ROW_MALFORMED


def test_unparseable_number_is_rejected() -> None:
    raw = list(RAW)
    raw[5] = "n/a"
    with pytest.raises(NormalizationError):
        normalize(raw, key_strategy=contract_key)


def test_composite_key_is_stable_across_number_formatting() -> None:
    first = normalize(RAW, key_strategy=composite_key)
    reformatted = list(RAW)
    reformatted[5] = "1000.00"
    reformatted[6] = "1200"
    reformatted[2] = "nabil"
    second = normalize(reformatted, key_strategy=composite_key)

    assert first.identity_key == second.identity_key
    assert len(first.identity_key) == 40


def test_composite_key_separates_distinct_trades() -> None:
    other = list(RAW)
    other[4] = "43"
    assert normalize(RAW, key_strategy=composite_key).identity_key != normalize(
        other, key_strategy=composite_key
    ).identity_key


def test_identity_key_does_not_affect_equality() -> None:
    assert normalize(RAW, key_strategy=composite_key) == normalize(RAW, key_strategy=contract_key)


def test_resolve_key_strategy_uses_config(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "IDENTITY_KEY_STRATEGY", "contract")
    assert resolve_key_strategy() is contract_key
    assert resolve_key_strategy("Composite") is composite_key
    with pytest.raises(ValueError):
        resolve_key_strategy("row_number")
