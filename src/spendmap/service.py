"""
Expense resolution workflow.

Glues the pure resolvers to a store:

    description -> extract_city -> categorize (cleaned text first)
                -> Resolution
                -> persist expense
                -> on a category miss: queue unknown terms
                -> no known city but an unresolved fragment: queue it as a city name

Timestamps are taken here, never inside the resolvers.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .category_engine import CategorizationResult, categorize
from .city_engine import ExtractionOptions, ExtractionResult, extract_city
from .ledger import (
    SOURCE_BULK,
    SOURCE_MANUAL,
    AssignResult,
    AttachResult,
    assign_category,
    attach_unrecognized_city,
    record_unrecognized,
    retry_sweep,
)
from .patterns import DEFAULT_PATTERNS
from .store import Expense
from .text_utils import STOP_WORDS, normalize_keyword

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Resolution:
    """City and category resolved from one description."""

    description: str
    city: ExtractionResult
    category: CategorizationResult
    city_recognized: bool = False
    matched_terms: List[str] = field(default_factory=list)

    @property
    def category_id(self) -> Optional[str]:
        return self.category.category_id


class ExpenseResolver:
    """
    Resolve, store and learn from expense descriptions for one user.

    assign() calls for the same term are serialized; different terms may
    run concurrently.
    """

    def __init__(self, store, options: Optional[ExtractionOptions] = None, patterns=DEFAULT_PATTERNS,
                 word_boundary: bool = False, min_term_length: int = 3, stop_words=STOP_WORDS, clock=utcnow):
        self.store = store
        self.options = options or ExtractionOptions()
        self.patterns = patterns
        self.word_boundary = word_boundary
        self.min_term_length = min_term_length
        self.stop_words = stop_words
        self.clock = clock
        self._locks: Dict[str, list] = {}  # term -> [lock, holders]
        self._locks_guard = threading.Lock()

    @classmethod
    def from_config(cls, store, config):
        """Build a resolver from a config dict (see config_loader.load_config)."""
        from .config_loader import build_extraction_options

        return cls(
            store,
            options=build_extraction_options(config),
            word_boundary=config.get('word_boundary', False),
            min_term_length=config.get('min_term_length', 3),
            stop_words=config.get('stop_words', STOP_WORDS),
        )

    def resolve(self, description) -> Resolution:
        """Resolve city and category without touching the store."""
        city = extract_city(description, self.options, self.store.city_registry, self.patterns)
        text = description if isinstance(description, str) else ''

        # Category keywords are matched against the cleaned text first so the
        # city name itself doesn't trigger a keyword; fall back to the raw text.
        category = CategorizationResult()
        if city.clean_description:
            category = categorize(city.clean_description, self.store.keywords, self.word_boundary)
        if not category.auto_categorized:
            category = categorize(text, self.store.keywords, self.word_boundary)

        return Resolution(
            description=text,
            city=city,
            category=category,
            city_recognized=city.is_recognized(self.options.min_confidence),
            matched_terms=list(category.matched_keywords),
        )

    def add_expense(self, description: str, amount: float = 0.0, source_type: str = SOURCE_MANUAL) -> Expense:
        """Resolve a description, store the expense and learn from misses."""
        now = self.clock()
        resolution = self.resolve(description)

        fields = {
            'city': resolution.city.city if resolution.city_recognized else None,
            'input_method': source_type,
        }
        expense = self.store.add_expense(description, amount, now, **fields)
        if resolution.category_id is not None:
            expense = expense.categorized_as(
                resolution.category_id, resolution.matched_terms, auto=True, now=now
            )
            self.store.update_expenses([expense])

        self._learn(resolution, now, source_type)
        return expense

    def add_expenses(self, descriptions, source_type: str = SOURCE_BULK) -> List[Expense]:
        """Bulk variant of add_expense; descriptions may be (text, amount) pairs."""
        expenses = []
        for item in descriptions:
            if isinstance(item, (tuple, list)):
                text, amount = item[0], item[1]
            else:
                text, amount = item, 0.0
            expenses.append(self.add_expense(text, amount, source_type))
        return expenses

    def _learn(self, resolution: Resolution, now: datetime, source_type: str) -> None:
        changed = False
        if not resolution.category.auto_categorized:
            # Record terms from the cleaned text so the city doesn't become a "keyword"
            text = resolution.city.clean_description or resolution.description
            terms = record_unrecognized(
                text,
                self.store.term_ledger,
                self.store.keywords.known_terms(),
                now,
                source_type,
                self.min_term_length,
                self.stop_words,
            )
            changed = bool(terms)

        city = resolution.city
        if city.unknown_candidate:
            self.store.record_unrecognized_city(city.unknown_candidate, now, source_type)
            logger.info("Unrecognized city %r", city.unknown_candidate)
        elif changed:
            self.store.flush()

    @contextmanager
    def _term_lock(self, term: str):
        """Hold the lock for one term; the entry is dropped once no caller holds it."""
        with self._locks_guard:
            entry = self._locks.setdefault(term, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[term]

    def assign(self, term: str, category_id: str) -> AssignResult:
        """Assign a category to an unrecognized term and sweep past expenses."""
        key = normalize_keyword(term)
        with self._term_lock(key):
            return assign_category(self.store, key, category_id, self.clock())

    def retry(self, term: str, category_id: str) -> AssignResult:
        """Finish a sweep that previously failed."""
        key = normalize_keyword(term)
        with self._term_lock(key):
            return retry_sweep(self.store, key, category_id, self.clock())

    def discard(self, term: str) -> bool:
        """Drop a term from the unrecognized ledger."""
        return self.store.discard_term(term)

    def attach_city(self, name: str, city: str) -> AttachResult:
        """Make an unrecognized city name an alias of a known city."""
        return attach_unrecognized_city(self.store, name, city)
