"""
Storage for keywords, synonyms, ledgers and expenses.

MemoryStore keeps everything in process. FileStore has the same API and
writes the whole state to a YAML file after every mutation.

State file layout (state.yaml):

    keywords:
      - {keyword: такси, category: transport, created_at: ..., synonyms: [taxi]}
    cities:
      Минск: [Minsk, MSK]
    unrecognized_terms:
      - {id: 1, term: кофейня, frequency: 3, first_seen: ..., last_seen: ..., source_type: manual}
    unrecognized_cities: [...]
    expenses:
      - {id: 1, description: ..., amount: 12.5, status: categorized, ...}
"""

import logging
import os
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

import yaml

from .category_engine import CategoryKeyword, KeywordIndex
from .errors import KeywordExistsError, StoreError, UnknownCityError
from .ledger import UnrecognizedLedger, UnrecognizedTerm
from .synonyms import SynonymRegistry, seed_city_registry

logger = logging.getLogger(__name__)

STATUS_CATEGORIZED = 'categorized'
STATUS_UNCATEGORIZED = 'uncategorized'


@dataclass(frozen=True)
class Expense:
    """A stored expense.

    category_id is set exactly when status is 'categorized'. Use
    categorized_as() / uncategorized() to change either.
    """

    id: int
    description: str
    amount: float = 0.0
    status: str = STATUS_UNCATEGORIZED
    category_id: Optional[str] = None
    auto_categorized: bool = False
    matched_keywords: List[str] = field(default_factory=list)
    city: Optional[str] = None
    input_method: str = 'manual'
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if (self.category_id is not None) != (self.status == STATUS_CATEGORIZED):
            raise ValueError(
                f"Expense {self.id}: status '{self.status}' inconsistent with category {self.category_id!r}"
            )

    @property
    def is_categorized(self) -> bool:
        return self.status == STATUS_CATEGORIZED

    def categorized_as(self, category_id: str, matched_keywords=(), auto: bool = False, now: Optional[datetime] = None) -> 'Expense':
        return replace(
            self,
            status=STATUS_CATEGORIZED,
            category_id=category_id,
            auto_categorized=auto,
            matched_keywords=list(matched_keywords),
            updated_at=now or self.updated_at,
        )

    def uncategorized(self, now: Optional[datetime] = None) -> 'Expense':
        return replace(
            self,
            status=STATUS_UNCATEGORIZED,
            category_id=None,
            auto_categorized=False,
            matched_keywords=[],
            updated_at=now or self.updated_at,
        )


class MemoryStore:
    """In-process store for a single user."""

    def __init__(self, city_registry: Optional[SynonymRegistry] = None, keywords: Optional[KeywordIndex] = None):
        self.city_registry = city_registry if city_registry is not None else seed_city_registry()
        self.keywords = keywords if keywords is not None else KeywordIndex()
        self.term_ledger = UnrecognizedLedger()
        self.city_ledger = UnrecognizedLedger()
        self._expenses: Dict[int, Expense] = {}
        self._next_expense_id = 1

    # -- keywords ---------------------------------------------------------

    def add_keyword(self, keyword: str, category_id: str, now: datetime) -> CategoryKeyword:
        entry = CategoryKeyword(keyword, category_id, now)
        if not entry.keyword:
            raise StoreError("Keyword cannot be empty")
        if entry.keyword in self.keywords:
            raise KeywordExistsError(entry.keyword)
        self.keywords.add(entry)
        return entry

    def remove_keyword(self, keyword: str) -> bool:
        return self.keywords.remove(keyword)

    def add_keyword_synonym(self, keyword: str, synonym: str) -> None:
        try:
            self.keywords.add_synonym(keyword, synonym)
        except ValueError as e:
            raise StoreError(str(e)) from e

    # -- cities -----------------------------------------------------------

    def add_city(self, city: str) -> str:
        try:
            return self.city_registry.register_canonical(city)
        except ValueError as e:
            raise StoreError(str(e)) from e

    def add_city_alias(self, city: str, alias: str) -> Optional[str]:
        canonical = self.city_registry.canonical_for(city)
        if canonical is None:
            raise UnknownCityError(city)
        try:
            return self.city_registry.register(canonical, alias)
        except ValueError as e:
            raise StoreError(str(e)) from e

    # -- ledgers ----------------------------------------------------------

    def flush(self) -> None:
        """Persist changes made directly to the ledgers (no-op in memory)."""

    def discard_term(self, term: str) -> bool:
        return self.term_ledger.discard(term)

    def record_unrecognized_city(self, name: str, now: datetime, source_type: Optional[str] = None, occurrences: int = 1) -> Optional[UnrecognizedTerm]:
        return self.city_ledger.record(name, now, source_type, occurrences)

    def discard_unrecognized_city(self, name: str) -> bool:
        return self.city_ledger.discard(name)

    # -- expenses ---------------------------------------------------------

    def add_expense(self, description: str, amount: float = 0.0, now: Optional[datetime] = None, **fields) -> Expense:
        expense = Expense(
            id=self._next_expense_id,
            description=description,
            amount=amount,
            created_at=now,
            updated_at=now,
            **fields,
        )
        self._expenses[expense.id] = expense
        self._next_expense_id += 1
        return expense

    def get_expense(self, expense_id: int) -> Optional[Expense]:
        return self._expenses.get(expense_id)

    def find_expenses(self, status: Optional[str] = None) -> List[Expense]:
        """Expenses in insertion order, optionally filtered by status."""
        return [e for e in self._expenses.values() if status is None or e.status == status]

    def update_expenses(self, expenses: Iterable[Expense]) -> int:
        """Replace stored expenses by id. Returns the number updated."""
        expenses = list(expenses)
        for expense in expenses:
            if expense.id not in self._expenses:
                raise StoreError(f"Unknown expense id: {expense.id}")
        for expense in expenses:
            self._expenses[expense.id] = expense
        return len(expenses)


# =============================================================================
# YAML persistence
# =============================================================================

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value) -> Optional[datetime]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _ledger_to_data(ledger: UnrecognizedLedger) -> List[dict]:
    return [
        {
            'id': e.id,
            'term': e.term,
            'frequency': e.frequency,
            'first_seen': _iso(e.first_seen),
            'last_seen': _iso(e.last_seen),
            'source_type': e.source_type,
        }
        for e in sorted(ledger.entries(), key=lambda e: e.id)
    ]


def _ledger_from_data(rows) -> UnrecognizedLedger:
    return UnrecognizedLedger(
        UnrecognizedTerm(
            id=int(row['id']),
            term=row['term'],
            frequency=int(row.get('frequency', 1)),
            first_seen=_parse_dt(row.get('first_seen')),
            last_seen=_parse_dt(row.get('last_seen')),
            source_type=row.get('source_type'),
        )
        for row in rows or []
    )


def dump_state(store: MemoryStore) -> dict:
    """Serialize a store to plain data."""
    keywords = [
        {
            'keyword': k.keyword,
            'category': k.category_id,
            'created_at': _iso(k.created_at),
            'synonyms': store.keywords.synonyms.all_aliases_for(k.keyword),
        }
        for k in reversed(store.keywords.keywords)
    ]
    cities = {
        city: store.city_registry.all_aliases_for(city)
        for city in store.city_registry.canonical_ids()
    }
    expenses = [
        {
            'id': e.id,
            'description': e.description,
            'amount': e.amount,
            'status': e.status,
            'category_id': e.category_id,
            'auto_categorized': e.auto_categorized,
            'matched_keywords': list(e.matched_keywords),
            'city': e.city,
            'input_method': e.input_method,
            'created_at': _iso(e.created_at),
            'updated_at': _iso(e.updated_at),
        }
        for e in store.find_expenses()
    ]
    return {
        'keywords': keywords,
        'cities': cities,
        'unrecognized_terms': _ledger_to_data(store.term_ledger),
        'unrecognized_cities': _ledger_to_data(store.city_ledger),
        'expenses': expenses,
    }


def load_state(data: dict, store: MemoryStore) -> MemoryStore:
    """Populate a store from plain data (as produced by dump_state)."""
    data = data or {}

    # User cities are layered over whatever the store was seeded with
    for city, aliases in (data.get('cities') or {}).items():
        store.city_registry.register_canonical(city)
        for alias in aliases or []:
            store.city_registry.register(city, alias)

    keywords = KeywordIndex()
    for row in data.get('keywords') or []:
        keywords.add(CategoryKeyword(row['keyword'], row['category'], _parse_dt(row.get('created_at'))))
        for synonym in row.get('synonyms') or []:
            keywords.add_synonym(row['keyword'], synonym)
    store.keywords = keywords

    store.term_ledger = _ledger_from_data(data.get('unrecognized_terms'))
    store.city_ledger = _ledger_from_data(data.get('unrecognized_cities'))

    store._expenses = {}
    for row in data.get('expenses') or []:
        expense = Expense(
            id=int(row['id']),
            description=row.get('description') or '',
            amount=float(row.get('amount') or 0.0),
            status=row.get('status', STATUS_UNCATEGORIZED),
            category_id=row.get('category_id'),
            auto_categorized=bool(row.get('auto_categorized')),
            matched_keywords=list(row.get('matched_keywords') or []),
            city=row.get('city'),
            input_method=row.get('input_method', 'manual'),
            created_at=_parse_dt(row.get('created_at')),
            updated_at=_parse_dt(row.get('updated_at')),
        )
        store._expenses[expense.id] = expense
    store._next_expense_id = max(store._expenses, default=0) + 1
    return store


class FileStore(MemoryStore):
    """MemoryStore persisted to a YAML state file after each mutation."""

    def __init__(self, path, city_registry: Optional[SynonymRegistry] = None):
        super().__init__(city_registry=city_registry)
        self.path = path
        if os.path.exists(path):
            with open(path, 'r', encoding='utf-8') as f:
                try:
                    data = yaml.safe_load(f) or {}
                except yaml.YAMLError as e:
                    raise StoreError(f"Invalid state file {path}: {e}") from e
            load_state(data, self)
            logger.debug("Loaded state from %s (%d expenses)", path, len(self._expenses))

    def save(self) -> None:
        tmp_path = self.path + '.tmp'
        try:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                yaml.safe_dump(dump_state(self), f, allow_unicode=True, sort_keys=False)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StoreError(f"Could not write {self.path}: {e}") from e

    def _save_or_undo(self, undo) -> None:
        """Save, or run undo() to restore memory when the write fails."""
        try:
            self.save()
        except StoreError:
            undo()
            raise

    def add_keyword(self, keyword, category_id, now):
        entry = super().add_keyword(keyword, category_id, now)
        self._save_or_undo(lambda: self.keywords.remove(entry.keyword))
        return entry

    def remove_keyword(self, keyword):
        removed = super().remove_keyword(keyword)
        self.save()
        return removed

    def add_keyword_synonym(self, keyword, synonym):
        super().add_keyword_synonym(keyword, synonym)
        self.save()

    def add_city(self, city):
        canonical = super().add_city(city)
        self.save()
        return canonical

    def add_city_alias(self, city, alias):
        previous = super().add_city_alias(city, alias)
        self.save()
        return previous

    def flush(self):
        self.save()

    def discard_term(self, term):
        removed = super().discard_term(term)
        self.save()
        return removed

    def record_unrecognized_city(self, name, now, source_type=None, occurrences=1):
        entry = super().record_unrecognized_city(name, now, source_type, occurrences)
        self.save()
        return entry

    def discard_unrecognized_city(self, name):
        removed = super().discard_unrecognized_city(name)
        self.save()
        return removed

    def add_expense(self, description, amount=0.0, now=None, **fields):
        expense = super().add_expense(description, amount, now, **fields)

        def undo():
            del self._expenses[expense.id]
            self._next_expense_id = expense.id

        self._save_or_undo(undo)
        return expense

    def update_expenses(self, expenses):
        expenses = list(expenses)
        previous = [self._expenses[e.id] for e in expenses if e.id in self._expenses]
        count = super().update_expenses(expenses)
        self._save_or_undo(lambda: self._expenses.update((e.id, e) for e in previous))
        return count
