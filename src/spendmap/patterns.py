"""
City extraction patterns for bank-statement descriptions.

Each pattern recognizes one common statement layout and yields the raw city
fragment, a base confidence and the description with the fragment removed.
Patterns are tried in definition order; that order is the tie-break priority.

Built-in layouts (Belarusian card statements):

    BY KEBAB FACTORY, MINSK          prefixed-comma-city     0.9
    BY SUPERMARKET LOGOYSK           prefixed-trailing-city  0.8
    MN LOGOYSKBY SHOP MAYAK          glued-country-code      0.7
    SHOP "MINSK" 24                  quoted-city             0.6
    COFFEEBAR, MINSK 220000          city-suffix-comma       0.5
"""

import re
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Tuple

from .text_utils import CITY_LETTERS, COUNTRY_CODES


@dataclass(frozen=True)
class PatternMatch:
    """A single candidate produced by a pattern."""

    raw: str  # City fragment as it appears in the description
    base_confidence: float
    remainder: str  # Description with the city fragment cut out


Matcher = Callable[[str], Optional[PatternMatch]]


@dataclass(frozen=True)
class PatternDefinition:
    """A named city extraction rule."""

    id: str
    label: str
    matcher: Matcher
    description: str = ""

    def match(self, description: str) -> Optional[PatternMatch]:
        return self.matcher(description)


def regex_pattern(
    pattern_id: str,
    label: str,
    regex: str,
    city_group: str,
    base_confidence: float,
    remainder_groups: Tuple[str, ...] = (),
    description: str = "",
) -> PatternDefinition:
    """
    Build a regex-backed pattern.

    Args:
        pattern_id: Stable identifier (used in weights and for display)
        label: Human-readable name
        regex: Regular expression, matched case-insensitively with re.search
        city_group: Name of the group holding the city fragment
        base_confidence: Confidence in [0, 1] assigned to every match
        remainder_groups: Groups joined (space-separated) to form the
            description without the city; defaults to the whole text with
            the city span removed
        description: Longer help text

    Returns:
        PatternDefinition whose matcher returns at most one PatternMatch
    """
    compiled = re.compile(regex, re.IGNORECASE)

    def matcher(text: str) -> Optional[PatternMatch]:
        m = compiled.search(text)
        if not m:
            return None
        city = (m.group(city_group) or '').strip()
        if not city:
            return None
        if remainder_groups:
            parts = [(m.group(g) or '').strip() for g in remainder_groups]
            remainder = ' '.join(p for p in parts if p)
        else:
            start, end = m.span(city_group)
            remainder = f"{text[:start]} {text[end:]}".strip()
        return PatternMatch(raw=city, base_confidence=base_confidence, remainder=remainder)

    return PatternDefinition(id=pattern_id, label=label, matcher=matcher, description=description)


_CODES = '|'.join(COUNTRY_CODES)
_CITY = rf'[{CITY_LETTERS}]+'

DEFAULT_PATTERNS: Tuple[PatternDefinition, ...] = (
    regex_pattern(
        'prefixed-comma-city',
        'Country code, name, city',
        rf'^(?:{_CODES})\s+(?P<name>.+?),\s*(?P<city>{_CITY})$',
        'city', 0.9,
        remainder_groups=('name',),
        description='"BY NAME, CITY" - city after the last comma of a prefixed line',
    ),
    regex_pattern(
        'prefixed-trailing-city',
        'Country code, name, trailing city',
        rf'^(?:{_CODES})\s+(?P<name>.+?)\s+(?P<city>{_CITY})$',
        'city', 0.8,
        remainder_groups=('name',),
        description='"BY NAME CITY" - city is the last word of a prefixed line',
    ),
    regex_pattern(
        'glued-country-code',
        'City glued to country code',
        rf'^(?:(?P<prefix>.*?)\s+)?(?P<city>{_CITY}?)(?-i:{_CODES})\s+(?P<name>.+)$',
        'city', 0.7,
        remainder_groups=('name',),
        description='"MN CITYBY NAME" - city directly followed by an uppercase BY/MN code',
    ),
    regex_pattern(
        'quoted-city',
        'Quoted city',
        rf'^(?P<before>.+?)\s*["\'(](?P<city>{_CITY})["\')](?P<after>.*)$',
        'city', 0.6,
        remainder_groups=('before', 'after'),
        description='City inside quotes or parentheses',
    ),
    regex_pattern(
        'city-suffix-comma',
        'City after comma',
        rf'^(?P<before>.+?),\s*(?P<city>{_CITY})(?P<after>.*)$',
        'city', 0.5,
        remainder_groups=('before', 'after'),
        description='First word after a comma anywhere in the line',
    ),
)


def validate_patterns(patterns: Iterable[PatternDefinition]) -> Tuple[PatternDefinition, ...]:
    """Check pattern ids are unique. Returns the patterns as a tuple."""
    patterns = tuple(patterns)
    seen = set()
    for pattern in patterns:
        if not pattern.id:
            raise ValueError("Pattern id cannot be empty")
        if pattern.id in seen:
            raise ValueError(f"Duplicate pattern id: '{pattern.id}'")
        seen.add(pattern.id)
    return patterns


def get_pattern(pattern_id: str, patterns: Iterable[PatternDefinition] = DEFAULT_PATTERNS) -> Optional[PatternDefinition]:
    """Look up a pattern by id."""
    for pattern in patterns:
        if pattern.id == pattern_id:
            return pattern
    return None


validate_patterns(DEFAULT_PATTERNS)
