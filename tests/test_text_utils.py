"""Tests for description text helpers - normalization, cleanup and tokenizing."""

from spendmap.text_utils import (
    clean_description,
    extract_keywords,
    format_display,
    is_valid_keyword,
    normalize_alias,
    normalize_keyword,
    strip_fragment,
)


class TestNormalize:
    """Tests for alias and keyword normalization."""

    def test_alias_casefold_and_whitespace(self):
        """Aliases compare case- and whitespace-insensitively."""
        assert normalize_alias('  Marina   GORKA ') == 'marina gorka'
        assert normalize_alias('МИНСК') == normalize_alias('минск')

    def test_alias_non_string(self):
        """None and non-strings normalize to empty."""
        assert normalize_alias(None) == ''
        assert normalize_alias(42) == ''

    def test_keyword(self):
        """Keywords are trimmed and lowercased."""
        assert normalize_keyword('  Такси ') == 'такси'
        assert normalize_keyword(None) == ''

    def test_format_display(self):
        """Display names are capitalized per word."""
        assert format_display('MINSK') == 'Minsk'
        assert format_display('марьина горка') == 'Марьина Горка'
        assert format_display(None) == ''


class TestCleanDescription:
    """Tests for bank-statement boilerplate cleanup."""

    def test_strip_country_prefix(self):
        """Leading BY/MN codes are removed."""
        assert clean_description('BY KEBAB FACTORY') == 'Kebab Factory'
        assert clean_description('MN SHOP') == 'Shop'

    def test_prefix_only_at_start(self):
        """A country code inside the text is kept."""
        assert clean_description('SHOP BY THE SEA') == 'Shop By The Sea'

    def test_quotes_and_commas(self):
        """Quotes, guillemets, commas and brackets become spaces."""
        assert clean_description('SHOP "MAYAK", «ROZA» (24)') == 'Shop Mayak Roza 24'

    def test_idempotent(self):
        """Cleaning clean text changes nothing."""
        once = clean_description('BY SHOP "MAYAK",  CENTER')
        assert clean_description(once) == once

    def test_non_string(self):
        """Non-strings clean to empty."""
        assert clean_description(None) == ''


class TestStripFragment:
    """Tests for removing the matched city from a description."""

    def test_whole_word_only(self):
        """Fragments inside longer words are kept."""
        assert strip_fragment('MINSKY MINSK SHOP', 'MINSK').split() == ['MINSKY', 'SHOP']

    def test_glued_country_code(self):
        """A fragment glued to BY/MN is removed with its code."""
        assert strip_fragment('LOGOYSKBY SHOP', 'LOGOYSK').split() == ['SHOP']

    def test_case_insensitive(self):
        """Matching ignores case."""
        assert strip_fragment('shop minsk', 'MINSK').split() == ['shop']

    def test_empty_inputs(self):
        """Empty text or fragment is handled."""
        assert strip_fragment('', 'MINSK') == ''
        assert strip_fragment('SHOP', '') == 'SHOP'


class TestExtractKeywords:
    """Tests for splitting descriptions into candidate keywords."""

    def test_basic(self):
        """Words are lowercased and punctuation dropped."""
        assert extract_keywords('Оплата услуг такси!') == ['оплата', 'услуг', 'такси']

    def test_short_words_and_stop_words(self):
        """Short tokens and stop words are skipped."""
        assert extract_keywords('кофе на вынос для всех') == ['кофе', 'вынос', 'всех']

    def test_min_length(self):
        """min_length controls the shortest accepted token."""
        assert extract_keywords('bus to work', min_length=4) == ['work']

    def test_dedupe_keeps_order(self):
        """Repeated tokens appear once, in first-seen order."""
        assert extract_keywords('taxi TAXI airport taxi') == ['taxi', 'airport']

    def test_custom_stop_words(self):
        """Extra stop words are honored."""
        assert extract_keywords('оплата такси', stop_words={'оплата'}) == ['такси']

    def test_empty(self):
        """Blank and non-string input yields no tokens."""
        assert extract_keywords('   ') == []
        assert extract_keywords(None) == []

    def test_is_valid_keyword(self):
        """Valid keywords are long enough and not stop words."""
        assert is_valid_keyword('такси')
        assert not is_valid_keyword('для')
        assert not is_valid_keyword('ab')
