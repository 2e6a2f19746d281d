"""Tests for figure parsing and VIN normalization."""

from __future__ import annotations

from auto_eval.normalization import (
    clean_numeric_string,
    normalize_vin,
    parse_amount_range,
    parse_amounts,
    parse_int,
    parse_price,
)


class TestParsePrice:
    def test_dollar_string(self):
        assert parse_price("$6,000") == 6000.0

    def test_k_suffix(self):
        assert parse_price("6.5k") == 6500.0

    def test_numbers_pass_through(self):
        assert parse_price(4200) == 4200.0

    def test_blank_and_garbage(self):
        assert parse_price("") is None
        assert parse_price("call me") is None
        assert parse_price(None) is None
        assert parse_price(True) is None

    def test_clean_numeric_string(self):
        assert clean_numeric_string("$-1,234.50 USD") == "-1234.50"


class TestParseInt:
    def test_mileage_string(self):
        assert parse_int("120,000") == 120000

    def test_float_truncates(self):
        assert parse_int(99.9) == 99


class TestAmounts:
    def test_amounts_in_order(self):
        assert parse_amounts("Repairs $800 to $1,200 plus $400 fees") == [800.0, 1200.0, 400.0]

    def test_k_suffix_does_not_eat_words(self):
        assert parse_amounts("about 15k miles") == [15000.0]
        assert parse_amounts("12 kittens") == [12.0]

    def test_range_with_spaced_dash(self):
        assert parse_amount_range("$800 - $1,200") == (800.0, 1200.0)

    def test_range_with_tight_dash(self):
        assert parse_amount_range("$800-$1,200") == (800.0, 1200.0)

    def test_range_reversed(self):
        assert parse_amount_range("$1,200 – $800") == (800.0, 1200.0)

    def test_single_amount_is_degenerate_range(self):
        assert parse_amount_range("$400") == (400.0, 400.0)

    def test_no_amount(self):
        assert parse_amount_range("n/a") is None


class TestNormalizeVin:
    def test_uppercases_valid_vin(self):
        assert normalize_vin(" 1ftfw1et1efa00001 ") == "1FTFW1ET1EFA00001"

    def test_rejects_wrong_length(self):
        assert normalize_vin("1FTFW1ET1EFA0000") is None

    def test_rejects_forbidden_letters(self):
        assert normalize_vin("1FTFW1ET1EFA0000O") is None

    def test_empty(self):
        assert normalize_vin(None) is None
        assert normalize_vin("") is None
