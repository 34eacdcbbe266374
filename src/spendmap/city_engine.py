"""
City extraction engine.

Runs the ordered city patterns against a description, resolves each
candidate through the city synonym registry and scores it:

    confidence = base_confidence * weight
                 [+ synonym_boost      if resolved through an alias]
                 [+ known_city_boost   if resolved in the registry at all]

clamped to [0, 1]. Only candidates that resolve in the registry can win; the
highest score wins and ties keep the earliest pattern. A fragment that
resolves nowhere is never returned as the city, only as unknown_candidate
when no known city was found.

The engine is a pure function of (description, options, registry, patterns).
min_confidence is advisory: results below it are still returned and the
caller decides whether to treat the city as recognized.
"""

import logging
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from .patterns import DEFAULT_PATTERNS, PatternDefinition
from .synonyms import SynonymRegistry, seed_city_registry
from .text_utils import clean_description, format_display, strip_fragment

logger = logging.getLogger(__name__)

_DEFAULT_REGISTRY: Optional[SynonymRegistry] = None


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


@dataclass(frozen=True)
class ExtractionOptions:
    """Per-call configuration for extract_city."""

    pattern_weights: Dict[str, float] = field(default_factory=dict)
    synonym_boost: float = 0.2
    known_city_boost: float = 0.1
    min_confidence: float = 0.6
    clean_result: bool = True

    def weight_for(self, pattern_id: str) -> float:
        """Weight of a pattern; unlisted patterns weigh 1, negatives clamp to 0."""
        try:
            weight = float(self.pattern_weights.get(pattern_id, 1.0))
        except (TypeError, ValueError):
            return 1.0
        return max(0.0, weight)


@dataclass(frozen=True)
class ExtractionResult:
    """Outcome of a city extraction. Confidence is derivable from the fields."""

    original_description: str = ""
    city: Optional[str] = None
    display_city: Optional[str] = None
    clean_description: Optional[str] = None
    confidence: float = 0.0
    base_confidence: float = 0.0
    applied_weight: float = 0.0
    pattern_id: Optional[str] = None
    matched_synonym: Optional[str] = None
    raw_match: Optional[str] = None
    unknown_candidate: Optional[str] = None  # Unresolved fragment, only when city is None

    def is_recognized(self, min_confidence: float) -> bool:
        """True if a city was found with confidence at or above min_confidence."""
        return self.city is not None and self.confidence >= min_confidence


@dataclass
class _Candidate:
    pattern: PatternDefinition
    raw: str
    remainder: str
    base_confidence: float
    weight: float
    score: float
    city: str
    display: str
    matched_synonym: Optional[str]
    is_known: bool


def default_registry() -> SynonymRegistry:
    """Shared seed registry used when the caller passes none."""
    global _DEFAULT_REGISTRY
    if _DEFAULT_REGISTRY is None:
        _DEFAULT_REGISTRY = seed_city_registry()
    return _DEFAULT_REGISTRY


def _score_candidate(pattern, match, weight, options, registry) -> _Candidate:
    base = _clamp(float(match.base_confidence))
    score = base * weight
    entity = registry.resolve(match.raw)

    if entity is None:
        city = ' '.join(match.raw.split()).upper()
        return _Candidate(
            pattern=pattern, raw=match.raw, remainder=match.remainder,
            base_confidence=base, weight=weight, score=score,
            city=city, display=format_display(city),
            matched_synonym=None, is_known=False,
        )

    if entity.is_alias:
        score += _clamp(options.synonym_boost)
    score += _clamp(options.known_city_boost)

    return _Candidate(
        pattern=pattern, raw=match.raw, remainder=match.remainder,
        base_confidence=base, weight=weight, score=score,
        city=entity.canonical_id, display=entity.display,
        matched_synonym=entity.matched_alias, is_known=True,
    )


def _collect_candidates(description, options, registry, patterns) -> List[_Candidate]:
    candidates = []
    for pattern in patterns:
        weight = options.weight_for(pattern.id)
        if weight == 0:
            continue
        try:
            match = pattern.match(description)
        except (TypeError, ValueError, IndexError, re.error) as e:
            logger.debug("Pattern %s failed on %r: %s", pattern.id, description, e)
            continue
        if match is None or not match.raw.strip():
            continue

        candidate = _score_candidate(pattern, match, weight, options, registry)
        logger.debug(
            "Pattern %s: %r -> %s (score %.3f%s)",
            pattern.id, match.raw, candidate.city, candidate.score,
            "" if candidate.is_known else ", unknown",
        )
        candidates.append(candidate)
    return candidates


def _best(candidates: List[_Candidate]) -> Optional[_Candidate]:
    """Highest score wins; ties keep the earliest pattern."""
    best = None
    for candidate in candidates:
        if best is None or candidate.score > best.score:
            best = candidate
    return best


def _clean(candidate: _Candidate) -> str:
    remainder = strip_fragment(candidate.remainder, candidate.raw)
    return clean_description(remainder)


def extract_city(
    description,
    options: Optional[ExtractionOptions] = None,
    registry: Optional[SynonymRegistry] = None,
    patterns: Sequence[PatternDefinition] = DEFAULT_PATTERNS,
) -> ExtractionResult:
    """
    Extract the city from an expense description.

    Args:
        description: Raw description (any value; non-strings yield no match)
        options: ExtractionOptions (defaults if None)
        registry: City SynonymRegistry (seed cities if None)
        patterns: Ordered pattern definitions

    Returns:
        ExtractionResult; city is None and confidence 0 when no candidate
        resolved to a known city. In that case unknown_candidate holds the
        best unresolved fragment, if any.
    """
    options = options or ExtractionOptions()
    registry = registry if registry is not None else default_registry()

    if not isinstance(description, str) or not description.strip():
        original = description if isinstance(description, str) else ""
        return ExtractionResult(original_description=original)

    original = description.strip()
    candidates = _collect_candidates(original, options, registry, patterns)
    best = _best([c for c in candidates if c.is_known])
    if best is None:
        unknown = _best(candidates)
        return ExtractionResult(
            original_description=original,
            unknown_candidate=" ".join(unknown.raw.split()) if unknown else None,
        )

    return ExtractionResult(
        original_description=original,
        city=best.city,
        display_city=best.display,
        clean_description=_clean(best) if options.clean_result else None,
        confidence=_clamp(best.score),
        base_confidence=best.base_confidence,
        applied_weight=best.weight,
        pattern_id=best.pattern.id,
        matched_synonym=best.matched_synonym,
        raw_match=best.raw,
    )


def batch_extract_cities(descriptions: Iterable, options=None, registry=None, patterns=DEFAULT_PATTERNS) -> List[ExtractionResult]:
    """Extract cities from many descriptions."""
    registry = registry if registry is not None else default_registry()
    return [extract_city(d, options, registry, patterns) for d in descriptions]


def city_stats(descriptions: Iterable, options=None, registry=None, patterns=DEFAULT_PATTERNS) -> Dict[str, int]:
    """
    Count recognized cities across descriptions.

    Only cities with confidence >= options.min_confidence are counted.
    Keys are display names, in first-seen order.
    """
    options = options or ExtractionOptions()
    counts: Dict[str, int] = OrderedDict()
    for result in batch_extract_cities(descriptions, options, registry, patterns):
        if not result.is_recognized(options.min_confidence):
            continue
        counts[result.display_city] = counts.get(result.display_city, 0) + 1
    return dict(counts)
