"""Tests for the built-in city extraction patterns."""

import pytest

from spendmap.patterns import (
    DEFAULT_PATTERNS,
    get_pattern,
    regex_pattern,
    validate_patterns,
)


def _match(pattern_id, text):
    return get_pattern(pattern_id).match(text)


class TestDefaultPatterns:
    """Tests for each statement layout."""

    def test_priority_order(self):
        """Patterns are ordered by decreasing base confidence."""
        ids = [p.id for p in DEFAULT_PATTERNS]
        assert ids == [
            'prefixed-comma-city',
            'prefixed-trailing-city',
            'glued-country-code',
            'quoted-city',
            'city-suffix-comma',
        ]

    def test_prefixed_comma_city(self):
        """'BY NAME, CITY' yields the city and the name."""
        m = _match('prefixed-comma-city', 'BY KEBAB FACTORY, MINSK')
        assert m.raw == 'MINSK'
        assert m.base_confidence == 0.9
        assert m.remainder == 'KEBAB FACTORY'

    def test_prefixed_comma_city_needs_prefix(self):
        """Without a country prefix the layout does not apply."""
        assert _match('prefixed-comma-city', 'KEBAB FACTORY, MINSK') is None

    def test_prefixed_trailing_city(self):
        """'BY NAME CITY' takes the last word."""
        m = _match('prefixed-trailing-city', 'BY SUPERMARKET LOGOYSK')
        assert m.raw == 'LOGOYSK'
        assert m.remainder == 'SUPERMARKET'

    def test_glued_country_code(self):
        """A city glued to an uppercase BY/MN code is found."""
        m = _match('glued-country-code', 'MN LOGOYSKBY SHOP MAYAK')
        assert m.raw == 'LOGOYSK'
        assert m.remainder == 'SHOP MAYAK'

    def test_glued_country_code_is_case_sensitive(self):
        """Lowercase 'by' inside a word is not a country code."""
        assert _match('glued-country-code', 'mn hobby shop') is None

    def test_quoted_city(self):
        """A quoted word is a city candidate."""
        m = _match('quoted-city', 'SHOP "MINSK" 24')
        assert m.raw == 'MINSK'
        assert m.remainder == 'SHOP 24'

    def test_city_suffix_comma(self):
        """The first word after a comma is a candidate."""
        m = _match('city-suffix-comma', 'COFFEEBAR, MINSK 220000')
        assert m.raw == 'MINSK'
        assert m.remainder == 'COFFEEBAR 220000'

    def test_cyrillic_city(self):
        """Cyrillic city names match."""
        m = _match('prefixed-comma-city', 'BY МАГАЗИН, Минск')
        assert m.raw == 'Минск'

    def test_no_match(self):
        """Descriptions without a layout produce no candidates."""
        for pattern in DEFAULT_PATTERNS:
            assert pattern.match('Оплата услуг такси') is None


class TestCustomPatterns:
    """Tests for building and validating pattern lists."""

    def test_regex_pattern_default_remainder(self):
        """Without remainder groups the city span is cut out."""
        pattern = regex_pattern('at-city', 'At city', r'@(?P<city>\w+)', 'city', 0.4)
        m = pattern.match('PAYMENT @GOMEL ONLINE')
        assert m.raw == 'GOMEL'
        assert m.remainder.split() == ['PAYMENT', '@', 'ONLINE']

    def test_validate_rejects_duplicates(self):
        """Duplicate ids are rejected."""
        p = regex_pattern('dup', 'Dup', r'(?P<city>\w+)', 'city', 0.5)
        with pytest.raises(ValueError):
            validate_patterns([p, p])

    def test_get_pattern_unknown(self):
        """Unknown ids return None."""
        assert get_pattern('nope') is None
