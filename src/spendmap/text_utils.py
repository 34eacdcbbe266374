"""
Text normalization utilities for expense descriptions.

This module provides the helpers shared by the city and category resolvers:
alias normalization, display formatting, boilerplate cleanup of bank-statement
descriptions and tokenization of descriptions into candidate keywords.
"""

import re


# Country / bank codes that prefix or get glued to Belarusian card statements
COUNTRY_CODES = ('BY', 'MN')

# Letters accepted in a city fragment (Latin + Cyrillic, incl. Ё and Belarusian Ў/І)
CITY_LETTERS = r'A-Za-zА-Яа-яЁёЎўІі'

# =============================================================================
# STOP WORDS
# Tokens never worth queueing as unrecognized keywords.
# =============================================================================
STOP_WORDS = frozenset([
    # Prepositions and conjunctions
    'и', 'в', 'на', 'с', 'по', 'для', 'от', 'до', 'из', 'к', 'о', 'об', 'за',
    'под', 'над', 'при', 'без', 'через', 'между', 'среди', 'около', 'возле',
    'вокруг', 'после', 'перед', 'во', 'со', 'ко', 'ото',
    # Question words
    'что', 'как', 'где', 'когда', 'почему', 'зачем', 'куда', 'откуда',
    'сколько', 'который', 'какой',
    # Pronouns and determiners
    'чей', 'чья', 'чьё', 'чьи', 'этот', 'эта', 'это', 'эти', 'тот', 'та',
    'то', 'те', 'такой', 'такая', 'такое', 'такие', 'весь', 'вся', 'всё',
    'все', 'каждый', 'каждая', 'каждое', 'каждые', 'любой', 'любая', 'любое',
    'любые', 'другой', 'другая', 'другое', 'другие',
    # Numerals
    'один', 'одна', 'одно', 'одни', 'два', 'две', 'три', 'четыре', 'пять',
    'шесть', 'семь', 'восемь', 'девять', 'десять',
])

_PUNCTUATION_RE = re.compile(r'[^\w\s]')
_WHITESPACE_RE = re.compile(r'\s+')


def normalize_alias(value):
    """Normalize a name for lookup: trim, collapse whitespace, case-fold.

    Returns an empty string for None and non-string values.
    """
    if not isinstance(value, str):
        return ''
    return _WHITESPACE_RE.sub(' ', value).strip().casefold()


def normalize_keyword(keyword):
    """Normalize a category keyword (lowercase, trimmed)."""
    if not isinstance(keyword, str):
        return ''
    return keyword.strip().lower()


def format_display(value):
    """Format a name for display: each word capitalized, rest lowercase.

    'MINSK' -> 'Minsk', 'марьина горка' -> 'Марьина Горка'
    """
    if not isinstance(value, str):
        return ''
    words = value.lower().split()
    return ' '.join(word[:1].upper() + word[1:] for word in words)


def strip_fragment(text, fragment):
    """Remove every whole-word occurrence of fragment from text.

    A fragment glued to a trailing country code ('LOGOYSKBY') is removed too,
    so cleaned output never carries the matched city a second time.
    """
    if not text or not fragment:
        return text or ''
    codes = '|'.join(COUNTRY_CODES)
    pattern = r'\b' + re.escape(fragment.strip()) + r'(?:' + codes + r')?\b'
    return re.sub(pattern, ' ', text, flags=re.IGNORECASE)


def clean_description(description):
    """Clean a bank-statement description for display.

    Strips the leading BY/MN country prefix, replaces quotes, commas and
    brackets with spaces, normalizes whitespace and title-cases the words.
    """
    if not isinstance(description, str):
        return ''

    codes = '|'.join(COUNTRY_CODES)
    cleaned = re.sub(r'^(?:' + codes + r')\s+', '', description.strip(), flags=re.IGNORECASE)
    cleaned = re.sub(r'["\'«»,()\[\]]', ' ', cleaned)
    cleaned = _WHITESPACE_RE.sub(' ', cleaned).strip()

    return format_display(cleaned)


def extract_keywords(description, min_length=3, stop_words=STOP_WORDS):
    """Split a description into candidate keyword tokens.

    Lowercases, drops punctuation (letters and digits of any script are kept),
    splits on whitespace, discards tokens shorter than min_length and stop
    words, and removes duplicates while keeping first-seen order.
    """
    if not isinstance(description, str) or not description.strip():
        return []

    text = _PUNCTUATION_RE.sub('', description.lower())
    seen = set()
    words = []
    for word in text.split():
        if len(word) < min_length or word in stop_words or word in seen:
            continue
        seen.add(word)
        words.append(word)
    return words


def is_valid_keyword(keyword, min_length=3, stop_words=STOP_WORDS):
    """True if a keyword is long enough and not a stop word."""
    normalized = normalize_keyword(keyword)
    return len(normalized) >= min_length and normalized not in stop_words
