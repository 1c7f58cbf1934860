from __future__ import annotations

import pytest

from zemdocs.utils.numbers import parse_int, parse_locale_float


class TestParseLocaleFloat:
    def test_comma_decimal(self):
        assert parse_locale_float("1234,56") == pytest.approx(1234.56)

    def test_dot_decimal(self):
        assert parse_locale_float("10.5") == pytest.approx(10.5)

    def test_empty_is_zero(self):
        assert parse_locale_float("") == 0.0
        assert parse_locale_float("   ") == 0.0

    def test_surrounding_whitespace(self):
        assert parse_locale_float(" 50,00 ") == pytest.approx(50.0)

    def test_invalid_raises(self):
        with pytest.raises(ValueError):
            parse_locale_float("abc")

    @pytest.mark.parametrize("raw", ["1_000,5", "1_000"])
    def test_underscore_separator_raises(self, raw):
        with pytest.raises(ValueError):
            parse_locale_float(raw)


class TestParseInt:
    def test_valid(self):
        assert parse_int(" 1 ") == 1

    def test_invalid(self):
        with pytest.raises(ValueError):
            parse_int("um")

    def test_underscore_separator_raises(self):
        with pytest.raises(ValueError):
            parse_int("1_000")
