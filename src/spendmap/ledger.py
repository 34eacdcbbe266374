"""
Unrecognized-term ledger and reclassification sweep.

Terms that no keyword matched are queued here with a frequency count so the
user can assign them a category later. Assigning a category creates the
keyword, drops the ledger entry and retroactively categorizes every stored
uncategorized expense whose description contains the term.

The same ledger type tracks city names that did not resolve to a known city.

All outcomes of the assign workflow are reported as AssignResult values;
store exceptions are converted, never propagated.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from .errors import KeywordExistsError, StoreError, UnknownCityError
from .text_utils import STOP_WORDS, extract_keywords, normalize_alias, normalize_keyword

logger = logging.getLogger(__name__)

SOURCE_MANUAL = 'manual'
SOURCE_BULK = 'bulk'


@dataclass(frozen=True)
class UnrecognizedTerm:
    """A term that failed resolution."""

    id: int
    term: str
    frequency: int
    first_seen: datetime
    last_seen: datetime
    source_type: Optional[str] = None


class UnrecognizedLedger:
    """
    Append/increment store of unresolved terms.

    Terms are matched case-insensitively; the first spelling seen is kept.
    """

    def __init__(self, entries: Iterable[UnrecognizedTerm] = ()):
        self._entries: Dict[str, UnrecognizedTerm] = {}
        self._next_id = 1
        for entry in entries:
            self._entries[normalize_alias(entry.term)] = entry
            self._next_id = max(self._next_id, entry.id + 1)

    def __len__(self):
        return len(self._entries)

    def __contains__(self, term):
        return normalize_alias(term) in self._entries

    def get(self, term: str) -> Optional[UnrecognizedTerm]:
        return self._entries.get(normalize_alias(term))

    def record(self, term: str, now: datetime, source_type: Optional[str] = None, occurrences: int = 1) -> Optional[UnrecognizedTerm]:
        """
        Insert a term or bump its frequency.

        Returns the updated entry, or None for a blank term or a
        non-positive occurrence count.
        """
        key = normalize_alias(term)
        if not key or occurrences <= 0:
            return None

        existing = self._entries.get(key)
        if existing is not None:
            entry = replace(existing, frequency=existing.frequency + occurrences, last_seen=now)
        else:
            entry = UnrecognizedTerm(
                id=self._next_id,
                term=' '.join(term.split()),
                frequency=occurrences,
                first_seen=now,
                last_seen=now,
                source_type=source_type,
            )
            self._next_id += 1
        self._entries[key] = entry
        return entry

    def discard(self, term: str) -> bool:
        """Remove a term. Returns True if it was present."""
        return self._entries.pop(normalize_alias(term), None) is not None

    def entries(self, order: str = 'frequency') -> List[UnrecognizedTerm]:
        """
        Ledger entries.

        order='frequency': most frequent first, then most recent.
        order='recent': most recently seen first, then most frequent.
        """
        entries = list(self._entries.values())
        if order == 'recent':
            entries.sort(key=lambda e: (e.last_seen, e.frequency), reverse=True)
        else:
            entries.sort(key=lambda e: (e.frequency, e.last_seen), reverse=True)
        return entries


def terms_to_record(description, known_terms: Iterable[str] = (), min_length: int = 3, stop_words=STOP_WORDS) -> List[str]:
    """Candidate terms of a description that are not already known keywords."""
    known = {t.lower() for t in known_terms}
    return [
        word for word in extract_keywords(description, min_length, stop_words)
        if word not in known
    ]


def record_unrecognized(
    description,
    ledger: UnrecognizedLedger,
    known_terms: Iterable[str],
    now: datetime,
    source_type: Optional[str] = SOURCE_MANUAL,
    min_length: int = 3,
    stop_words=STOP_WORDS,
) -> List[str]:
    """
    Queue the unknown terms of a description in the ledger.

    Returns the terms that were recorded (new or incremented).
    """
    terms = terms_to_record(description, known_terms, min_length, stop_words)
    for term in terms:
        ledger.record(term, now, source_type)
    if terms:
        logger.info("Recorded %d unrecognized term(s): %s", len(terms), ', '.join(terms))
    return terms


def discard_term(ledger: UnrecognizedLedger, term: str) -> bool:
    """Drop a term the user decided to ignore."""
    return ledger.discard(term)


# =============================================================================
# RECLASSIFICATION
# =============================================================================

def reclassify(expenses: Iterable, term: str, category_id: str, now: datetime) -> List:
    """
    Sweep: categorize uncategorized expenses whose description contains term.

    Pure function. Returns the updated expense records; each one is built in
    a single step so category and status always change together.
    """
    needle = normalize_keyword(term)
    if not needle:
        return []

    updated = []
    for expense in expenses:
        if expense.is_categorized:
            continue
        if needle not in (expense.description or '').lower():
            continue
        updated.append(expense.categorized_as(category_id, [needle], auto=True, now=now))
    return updated


@dataclass(frozen=True)
class AssignResult:
    """Outcome of assigning a category to an unrecognized term."""

    ASSIGNED = 'assigned'
    SWEEP_FAILED = 'sweep_failed'
    KEYWORD_EXISTS = 'keyword_exists'
    INVALID_TERM = 'invalid_term'

    status: str
    term: str
    category_id: Optional[str] = None
    recategorized_count: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == self.ASSIGNED

    @property
    def keyword_created(self) -> bool:
        """True when the keyword now exists because of this call."""
        return self.status in (self.ASSIGNED, self.SWEEP_FAILED)


def _sweep(store, term, category_id, now) -> AssignResult:
    try:
        pending = store.find_expenses(status='uncategorized')
        updated = reclassify(pending, term, category_id, now)
        store.update_expenses(updated)
    except StoreError as e:
        logger.error("Sweep for %r failed: %s", term, e)
        return AssignResult(AssignResult.SWEEP_FAILED, term, category_id, error=str(e))

    logger.info("Recategorized %d expense(s) with %r", len(updated), term)
    return AssignResult(AssignResult.ASSIGNED, term, category_id, recategorized_count=len(updated))


def assign_category(store, term: str, category_id: str, now: datetime) -> AssignResult:
    """
    Turn an unrecognized term into a keyword and re-categorize past expenses.

    Steps: create keyword -> remove ledger entry -> sweep. If the keyword
    already exists nothing changes. If the sweep fails the keyword stays
    created and the result says so; call retry_sweep to finish.
    """
    keyword = normalize_keyword(term)
    if not keyword or not category_id:
        return AssignResult(AssignResult.INVALID_TERM, keyword, category_id, error="Term and category are required")

    try:
        store.add_keyword(keyword, category_id, now)
    except KeywordExistsError as e:
        return AssignResult(AssignResult.KEYWORD_EXISTS, keyword, category_id, error=str(e))
    except StoreError as e:
        return AssignResult(AssignResult.INVALID_TERM, keyword, category_id, error=str(e))

    try:
        store.discard_term(keyword)
    except StoreError as e:
        logger.warning("Keyword %r created but ledger entry not removed: %s", keyword, e)
    return _sweep(store, keyword, category_id, now)


def retry_sweep(store, term: str, category_id: str, now: datetime) -> AssignResult:
    """Re-run only the sweep step after a SWEEP_FAILED result."""
    keyword = normalize_keyword(term)
    if not keyword or not category_id:
        return AssignResult(AssignResult.INVALID_TERM, keyword, category_id, error="Term and category are required")
    return _sweep(store, keyword, category_id, now)


@dataclass(frozen=True)
class AttachResult:
    """Outcome of attaching an unrecognized city name to a known city."""

    ATTACHED = 'attached'
    ALIAS_ADDED_LEDGER_STALE = 'alias_added_ledger_stale'
    UNKNOWN_CITY = 'unknown_city'
    INVALID_NAME = 'invalid_name'

    status: str
    name: str
    city: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == self.ATTACHED


def attach_unrecognized_city(store, name: str, city: str) -> AttachResult:
    """Register an unrecognized city name as an alias of a known city."""
    name = ' '.join((name or '').split())
    if not name:
        return AttachResult(AttachResult.INVALID_NAME, name, city, error="City name is required")

    try:
        store.add_city_alias(city, name)
    except UnknownCityError as e:
        return AttachResult(AttachResult.UNKNOWN_CITY, name, city, error=str(e))
    except StoreError as e:
        return AttachResult(AttachResult.INVALID_NAME, name, city, error=str(e))

    try:
        store.discard_unrecognized_city(name)
    except StoreError as e:
        logger.error("Alias %r added but ledger not updated: %s", name, e)
        return AttachResult(AttachResult.ALIAS_ADDED_LEDGER_STALE, name, city, error=str(e))

    return AttachResult(AttachResult.ATTACHED, name, store.city_registry.canonical_for(name))
