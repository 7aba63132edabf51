"""Tests for amount and date normalization."""

import pytest

from receipt_recon.schemas.normalize import (
    MAX_CENTS,
    days_between,
    format_cents,
    parse_cents,
    parse_receipt_date,
    parse_statement_date,
)


class TestParseCents:
    """Money strings become integer cents."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("44.04", 4404),
            ("$44.04", 4404),
            (" $ 44.04 ", 4404),
            ("6.39", 639),
            ("1,234.56", 123456),
            ("12", 1200),
            ("12.5", 1250),
            ("-3.00", -300),
            ("(12.00)", -1200),
        ],
    )
    def test_valid_amounts(self, text, expected):
        assert parse_cents(text) == expected

    def test_result_is_int(self):
        assert isinstance(parse_cents("44.04"), int)

    def test_half_up_rounding(self):
        """Sub-cent values round half up, never via float."""
        assert parse_cents("0.005") == 1
        assert parse_cents("0.004") == 0
        assert parse_cents("1.115") == 112

    @pytest.mark.parametrize("text", [None, "", "   ", "$", "abc", "12.3.4", "NaN", "Infinity"])
    def test_invalid_amounts(self, text):
        assert parse_cents(text) is None

    @pytest.mark.parametrize("text", ["1e30", "1E30", "4.404e1", "(1e5)", "1e-2"])
    def test_exponent_notation_rejected(self, text):
        """Only plain decimal notation is a money amount."""
        assert parse_cents(text) is None

    @pytest.mark.parametrize(
        "text",
        [
            "99999999999999999999.99",
            "92233720368547758.08",
            "1" + "0" * 40,
        ],
    )
    def test_out_of_range_rejected(self, text):
        """Amounts that do not fit a 64-bit cents column are not amounts."""
        assert parse_cents(text) is None

    def test_largest_storable_amount(self):
        assert parse_cents("92233720368547758.07") == MAX_CENTS
        assert parse_cents("-92233720368547758.07") == -MAX_CENTS

    @pytest.mark.parametrize("text", [".5", "5.", "+5.00"])
    def test_plain_decimal_shapes(self, text):
        assert parse_cents(text) is not None


class TestFormatCents:
    def test_format(self):
        assert format_cents(4404) == "$44.04"
        assert format_cents(123456) == "$1,234.56"
        assert format_cents(-639) == "-$6.39"

    def test_none(self):
        assert format_cents(None) == "-"


class TestStatementDates:
    def test_default_format(self):
        assert parse_statement_date("02/19/2024") == "2024-02-19"

    def test_custom_format(self):
        assert parse_statement_date("2024-02-19", "%Y-%m-%d") == "2024-02-19"

    def test_invalid_raises(self):
        with pytest.raises(ValueError):
            parse_statement_date("19/02/2024")

    def test_empty_raises(self):
        with pytest.raises(ValueError):
            parse_statement_date("")


class TestReceiptDates:
    """Extracted dates come in many shapes."""

    @pytest.mark.parametrize(
        "text",
        [
            "02/19/2024",
            "2/19/2024",
            "2024-02-19",
            "02/19/24",
            "02-19-2024",
            "2024/02/19",
            "Feb 19, 2024",
            "Feb. 19, 2024",
            "February 19 2024",
            " 02/19/2024 ",
        ],
    )
    def test_shapes(self, text):
        assert parse_receipt_date(text) == "2024-02-19"

    @pytest.mark.parametrize("text", [None, "", "yesterday", "19/02/2024", "13/45/2024"])
    def test_unrecognised(self, text):
        assert parse_receipt_date(text) is None


class TestDaysBetween:
    def test_absolute(self):
        assert days_between("2024-02-19", "2024-02-21") == 2
        assert days_between("2024-02-21", "2024-02-19") == 2

    def test_month_boundary(self):
        assert days_between("2024-02-28", "2024-03-01") == 2  # leap year

    def test_same_day(self):
        assert days_between("2024-02-19", "2024-02-19") == 0
