"""Tests for expense records and the memory/file stores."""

import os
import tempfile
from datetime import datetime, timezone

import pytest

from spendmap.errors import KeywordExistsError, StoreError, UnknownCityError
from spendmap.store import (
    STATUS_CATEGORIZED,
    STATUS_UNCATEGORIZED,
    Expense,
    FileStore,
    MemoryStore,
    dump_state,
    load_state,
)
from spendmap.synonyms import SynonymRegistry

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
T1 = datetime(2025, 3, 2, 9, 30, tzinfo=timezone.utc)


class TestExpense:
    """Tests for the expense record."""

    def test_status_requires_category(self):
        """A categorized expense must have a category and vice versa."""
        with pytest.raises(ValueError):
            Expense(1, 'x', status=STATUS_CATEGORIZED)
        with pytest.raises(ValueError):
            Expense(1, 'x', category_id='food')

    def test_categorized_as_and_back(self):
        """Category and status change together."""
        expense = Expense(1, 'кофейня', created_at=T0, updated_at=T0)
        categorized = expense.categorized_as('food', ['кофейня'], auto=True, now=T1)
        assert categorized.is_categorized
        assert categorized.category_id == 'food'
        assert categorized.auto_categorized
        assert categorized.updated_at == T1
        assert categorized.created_at == T0

        reverted = categorized.uncategorized(T1)
        assert reverted.status == STATUS_UNCATEGORIZED
        assert reverted.category_id is None
        assert reverted.matched_keywords == []


class TestMemoryStore:
    """Tests for the in-process store."""

    def test_add_keyword(self):
        """Keywords are stored normalized; duplicates and blanks fail."""
        store = MemoryStore()
        entry = store.add_keyword(' Такси ', 'transport', T0)
        assert entry.keyword == 'такси'
        with pytest.raises(KeywordExistsError):
            store.add_keyword('ТАКСИ', 'other', T0)
        with pytest.raises(StoreError):
            store.add_keyword('   ', 'other', T0)

    def test_keyword_synonym_unknown_keyword(self):
        """Aliases for unknown keywords fail with StoreError."""
        with pytest.raises(StoreError):
            MemoryStore().add_keyword_synonym('такси', 'taxi')

    def test_seeded_by_default(self):
        """A new store knows the built-in cities."""
        assert MemoryStore().city_registry.canonical_for('MINSK') == 'Минск'

    def test_city_alias(self):
        """Aliases need a known city; moving one returns the old city."""
        store = MemoryStore(city_registry=SynonymRegistry())
        with pytest.raises(UnknownCityError):
            store.add_city_alias('Минск', 'MSK')

        store.add_city('Минск')
        store.add_city('Москва')
        assert store.add_city_alias('минск', 'MSK') is None
        assert store.add_city_alias('Москва', 'MSK') == 'Минск'

    def test_expenses(self):
        """Expenses get sequential ids and can be filtered by status."""
        store = MemoryStore()
        first = store.add_expense('BY CAFE, MINSK', 12.5, T0)
        second = store.add_expense('Gomel shop', 3.0, T0, city='Гомель')
        assert (first.id, second.id) == (1, 2)
        assert second.city == 'Гомель'

        store.update_expenses([first.categorized_as('food', now=T1)])
        assert [e.id for e in store.find_expenses(STATUS_CATEGORIZED)] == [1]
        assert [e.id for e in store.find_expenses(STATUS_UNCATEGORIZED)] == [2]
        assert len(store.find_expenses()) == 2

    def test_update_unknown_expense(self):
        """Updating an expense that was never added fails."""
        with pytest.raises(StoreError):
            MemoryStore().update_expenses([Expense(99, 'ghost')])


class TestPersistence:
    """Tests for dumping, loading and the YAML file store."""

    def _populate(self, store):
        store.add_keyword('такси', 'transport', T0)
        store.add_keyword_synonym('такси', 'taxi')
        store.add_keyword('кофе', 'food', T1)
        store.add_city('Марьина Горка')
        store.add_city_alias('Марьина Горка', 'MARINA GORKA')
        store.term_ledger.record('кофейня', T0)
        store.term_ledger.record('кофейня', T1)
        store.flush()
        store.record_unrecognized_city('GORODOK', T0)
        expense = store.add_expense('Оплата услуг такси', 7.0, T0)
        store.update_expenses([expense.categorized_as('transport', ['такси'], auto=True, now=T1)])
        store.add_expense('кофейня у дома', 4.0, T1)

    def _check(self, store):
        assert [k.keyword for k in store.keywords] == ['кофе', 'такси']
        assert store.keywords.get('такси').created_at == T0
        assert store.keywords.synonyms.all_aliases_for('такси') == ['taxi']
        assert store.city_registry.canonical_for('marina gorka') == 'Марьина Горка'
        assert store.city_registry.canonical_for('MINSK') == 'Минск'

        term = store.term_ledger.get('кофейня')
        assert term.frequency == 2
        assert term.first_seen == T0
        assert term.last_seen == T1
        assert store.city_ledger.get('gorodok').frequency == 1

        expense = store.get_expense(1)
        assert expense.category_id == 'transport'
        assert expense.matched_keywords == ['такси']
        assert expense.auto_categorized
        assert expense.updated_at == T1
        assert store.get_expense(2).status == STATUS_UNCATEGORIZED

    def test_dump_load_roundtrip(self):
        """dump_state output restores an equivalent store."""
        store = MemoryStore()
        self._populate(store)

        restored = load_state(dump_state(store), MemoryStore())

        self._check(restored)
        assert restored.add_expense('next').id == 3

    def test_file_store_roundtrip(self):
        """State written by one FileStore is read back by the next."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, 'state.yaml')
            self._populate(FileStore(path))

            assert os.path.exists(path)
            assert not os.path.exists(path + '.tmp')
            with open(path, encoding='utf-8') as f:
                assert 'Марьина Горка' in f.read()

            self._check(FileStore(path))

    def test_missing_file_is_empty(self):
        """A FileStore without a state file starts empty."""
        with tempfile.TemporaryDirectory() as tmpdir:
            store = FileStore(os.path.join(tmpdir, 'state.yaml'))
            assert store.find_expenses() == []
            assert len(store.keywords) == 0

    def test_invalid_yaml(self):
        """A corrupt state file raises StoreError."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, 'state.yaml')
            with open(path, 'w', encoding='utf-8') as f:
                f.write('keywords: [unclosed\n')
            with pytest.raises(StoreError):
                FileStore(path)

    def test_unwritable_path(self):
        """Write failures surface as StoreError."""
        with tempfile.TemporaryDirectory() as tmpdir:
            store = FileStore(os.path.join(tmpdir, 'missing-dir', 'state.yaml'))
            with pytest.raises(StoreError):
                store.add_expense('кофейня', 1.0, T0)
            assert store.find_expenses() == []

    def test_failed_save_rolls_back(self):
        """A mutation whose save fails leaves memory as it was."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, 'state.yaml')
            store = FileStore(path)
            expense = store.add_expense('такси домой', 6.0, T0)
            store.path = os.path.join(tmpdir, 'missing-dir', 'state.yaml')

            with pytest.raises(StoreError):
                store.add_keyword('такси', 'transport', T0)
            assert 'такси' not in store.keywords
            assert store.keywords.synonyms.canonical_for('такси') is None

            with pytest.raises(StoreError):
                store.update_expenses([expense.categorized_as('transport', ['такси'], now=T1)])
            assert store.get_expense(1).status == STATUS_UNCATEGORIZED

            with pytest.raises(StoreError):
                store.add_expense('кофе', 2.0, T1)
            assert [e.id for e in store.find_expenses()] == [1]

            store.path = path
            assert store.add_expense('кофе', 2.0, T1).id == 2
            store.add_keyword('такси', 'transport', T1)
            assert 'такси' in FileStore(path).keywords
