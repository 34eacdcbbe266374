"""Tests for the expense resolution workflow."""

import os
import tempfile
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

from spendmap.config_loader import load_config
from spendmap.ledger import SOURCE_BULK, SOURCE_MANUAL, AssignResult, AttachResult
from spendmap.service import ExpenseResolver
from spendmap.store import STATUS_CATEGORIZED, FileStore, MemoryStore

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class _Clock:
    """Deterministic clock advancing one minute per call."""

    def __init__(self):
        self.now = T0

    def __call__(self):
        current = self.now
        self.now += timedelta(minutes=1)
        return current


def _resolver(store=None, **kwargs):
    return ExpenseResolver(store if store is not None else MemoryStore(), clock=_Clock(), **kwargs)


class TestResolve:
    """Tests for resolving without storing."""

    def test_city_and_category(self):
        """City and category come back together."""
        resolver = _resolver()
        resolver.store.add_keyword('kebab', 'food', T0)

        resolution = resolver.resolve('BY KEBAB FACTORY, MINSK')

        assert resolution.city.city == 'Минск'
        assert resolution.city_recognized
        assert resolution.category_id == 'food'
        assert resolution.matched_terms == ['kebab']
        assert resolver.store.find_expenses() == []

    def test_city_name_is_not_a_keyword_hit_first(self):
        """Keywords are tried on the cleaned text before the raw text."""
        resolver = _resolver()
        resolver.store.add_keyword('minsk', 'travel', T0)
        resolver.store.add_keyword('cafe', 'food', T0 - timedelta(days=1))

        assert resolver.resolve('BY CAFE, MINSK').category_id == 'food'
        assert resolver.resolve('BY SHOP, MINSK').category_id == 'travel'

    def test_uncertain_city_not_recognized(self):
        """Unknown cities are never treated as recognized."""
        resolution = _resolver().resolve('BY SHOP, GORODOK')
        assert resolution.city.city is None
        assert resolution.city.unknown_candidate == 'GORODOK'
        assert not resolution.city_recognized

    def test_non_string(self):
        """Non-string input resolves to nothing."""
        resolution = _resolver().resolve(None)
        assert resolution.city.city is None
        assert resolution.category_id is None


class TestAddExpense:
    """Tests for storing expenses and learning from misses."""

    def test_categorized_expense(self):
        """A keyword hit stores a categorized expense with its city."""
        resolver = _resolver()
        resolver.store.add_keyword('kebab', 'food', T0)

        expense = resolver.add_expense('BY KEBAB FACTORY, MINSK', 12.5)

        assert expense.status == STATUS_CATEGORIZED
        assert expense.category_id == 'food'
        assert expense.auto_categorized
        assert expense.city == 'Минск'
        assert expense.amount == 12.5
        assert len(resolver.store.term_ledger) == 0

    def test_miss_records_terms_without_city(self):
        """Unmatched expenses queue their words, minus the city."""
        resolver = _resolver()

        expense = resolver.add_expense('BY KEBAB FACTORY, MINSK')

        assert not expense.is_categorized
        assert expense.city == 'Минск'
        ledger = resolver.store.term_ledger
        assert 'kebab' in ledger
        assert 'factory' in ledger
        assert 'minsk' not in ledger
        assert ledger.get('kebab').source_type == SOURCE_MANUAL

    def test_taxi_scenario(self):
        """'Оплата услуг такси' queues 'такси' with frequency 1."""
        resolver = _resolver()
        expense = resolver.add_expense('Оплата услуг такси', 8.0)

        assert not expense.is_categorized
        assert resolver.store.term_ledger.get('такси').frequency == 1

    def test_unknown_city_recorded(self):
        """An unknown city candidate goes to the city ledger."""
        resolver = _resolver()
        expense = resolver.add_expense('BY SHOP, GORODOK')

        assert expense.city is None
        assert 'GORODOK' in resolver.store.city_ledger

    def test_known_city_not_queued_beside_unknown_fragment(self):
        """A known city wins over an unknown fragment and nothing is queued."""
        resolver = _resolver()
        expense = resolver.add_expense('BY SHOP "МИНСК" GROCERY')

        assert expense.city == 'Минск'
        assert len(resolver.store.city_ledger) == 0

    def test_bulk(self):
        """Bulk adds accept plain text and (text, amount) pairs."""
        resolver = _resolver()
        expenses = resolver.add_expenses(['Оплата услуг такси', ('такси домой', 6.0)])

        assert [e.amount for e in expenses] == [0.0, 6.0]
        assert all(e.input_method == SOURCE_BULK for e in expenses)
        entry = resolver.store.term_ledger.get('такси')
        assert entry.frequency == 2
        assert entry.source_type == SOURCE_BULK
        assert entry.last_seen > entry.first_seen


class TestLearning:
    """Tests for assign, discard and attach through the resolver."""

    def test_assign_recategorizes(self):
        """Assigning a queued term fixes past and future expenses."""
        resolver = _resolver()
        resolver.add_expense('Оплата услуг такси')
        resolver.add_expense('такси в аэропорт')

        result = resolver.assign('Такси', 'transport')

        assert result.status == AssignResult.ASSIGNED
        assert result.recategorized_count == 2
        assert 'такси' not in resolver.store.term_ledger
        assert all(e.category_id == 'transport' for e in resolver.store.find_expenses())
        assert resolver.add_expense('такси домой').category_id == 'transport'

    def test_concurrent_assign_same_term(self):
        """Concurrent assigns of one term create a single keyword."""
        resolver = _resolver()
        resolver.add_expense('такси домой')

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: resolver.assign('такси', 'transport'), range(8)))

        statuses = [r.status for r in results]
        assert statuses.count(AssignResult.ASSIGNED) == 1
        assert statuses.count(AssignResult.KEYWORD_EXISTS) == 7
        assert len(resolver.store.keywords) == 1

    def test_term_locks_released(self):
        """Per-term locks are dropped once no assign holds them."""
        resolver = _resolver()
        resolver.add_expense('такси домой')
        resolver.add_expense('кофе с собой')

        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(lambda t: resolver.assign(t, 'misc'), ['такси', 'кофе', 'такси', 'хлеб']))
        resolver.retry('такси', 'misc')

        assert resolver._locks == {}

    def test_discard(self):
        """Discarded terms leave the ledger."""
        resolver = _resolver()
        resolver.add_expense('Оплата услуг такси')
        assert resolver.discard('такси')
        assert 'такси' not in resolver.store.term_ledger

    def test_attach_city(self):
        """An attached city name resolves on the next expense."""
        resolver = _resolver()
        resolver.add_expense('BY SHOP, GORODOK')

        result = resolver.attach_city('GORODOK', 'Витебск')

        assert result.status == AttachResult.ATTACHED
        assert len(resolver.store.city_ledger) == 0
        assert resolver.add_expense('BY SHOP, GORODOK').city == 'Витебск'


class TestFromConfig:
    """Tests for building a resolver from settings."""

    def test_from_config_with_file_store(self):
        """Settings and state files drive the resolver."""
        with tempfile.TemporaryDirectory() as tmpdir:
            with open(os.path.join(tmpdir, 'settings.yaml'), 'w', encoding='utf-8') as f:
                f.write('min_term_length: 5\nstop_words: [оплата, услуг]\nword_boundary: true\n')
            config = load_config(tmpdir)

            store = FileStore(config['state_path'])
            resolver = ExpenseResolver.from_config(store, config)
            resolver.add_expense('Оплата услуг такси')

            assert resolver.word_boundary
            assert 'такси' in store.term_ledger
            assert 'услуг' not in store.term_ledger
            assert 'оплата' not in store.term_ledger

            reloaded = FileStore(config['state_path'])
            assert reloaded.term_ledger.get('такси').frequency == 1
            assert len(reloaded.find_expenses()) == 1
