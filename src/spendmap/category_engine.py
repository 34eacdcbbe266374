"""
Category keyword resolver.

Matches user keywords against a description by case-insensitive substring
containment (optionally whole-word). Keywords are checked most recently
created first, so newer and more specific corrections override older broad
keywords: the first match decides the category, every match is reported.

Keyword CSV format (for imports):
    Keyword,Category,Synonyms
    такси,transport,taxi|uber
    кофе,food,
"""

import csv
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from .synonyms import SynonymRegistry
from .text_utils import normalize_keyword

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class CategoryKeyword:
    """A keyword bound to a category."""

    keyword: str
    category_id: str
    created_at: datetime = _EPOCH

    def __post_init__(self):
        object.__setattr__(self, 'keyword', normalize_keyword(self.keyword))
        if self.created_at is None:
            object.__setattr__(self, 'created_at', _EPOCH)
        elif self.created_at.tzinfo is None:
            # Naive timestamps are taken as UTC so they order against aware ones
            object.__setattr__(self, 'created_at', self.created_at.replace(tzinfo=timezone.utc))


@dataclass(frozen=True)
class CategorizationResult:
    """Result of categorizing a description."""

    category_id: Optional[str] = None
    matched_keywords: List[str] = field(default_factory=list)
    auto_categorized: bool = False


class KeywordIndex:
    """
    Ordered keyword snapshot for one user.

    Keywords are kept most-recently-created first; equal timestamps keep the
    later-added keyword first. Keyword aliases live in a SynonymRegistry.
    """

    def __init__(self, keywords: Iterable[CategoryKeyword] = (), synonyms: Optional[SynonymRegistry] = None):
        self._keywords: List[CategoryKeyword] = []
        self.synonyms = synonyms if synonyms is not None else SynonymRegistry()
        for keyword in keywords:
            self.add(keyword)

    def __len__(self):
        return len(self._keywords)

    def __iter__(self):
        return iter(self._keywords)

    def __contains__(self, keyword):
        return self.get(keyword) is not None

    def add(self, keyword: CategoryKeyword) -> None:
        """Insert a keyword in recency order. Raises ValueError on duplicates."""
        if not keyword.keyword:
            raise ValueError("Keyword cannot be empty")
        if keyword.keyword in self:
            raise ValueError(f"Keyword already exists: '{keyword.keyword}'")

        position = 0
        for position, existing in enumerate(self._keywords):
            if keyword.created_at >= existing.created_at:
                break
        else:
            position = len(self._keywords)
        self._keywords.insert(position, keyword)
        self.synonyms.register_canonical(keyword.keyword)

    def remove(self, keyword: str) -> bool:
        normalized = normalize_keyword(keyword)
        for i, existing in enumerate(self._keywords):
            if existing.keyword == normalized:
                del self._keywords[i]
                self.synonyms.remove_canonical(normalized)
                return True
        return False

    def get(self, keyword: str) -> Optional[CategoryKeyword]:
        normalized = normalize_keyword(keyword)
        for existing in self._keywords:
            if existing.keyword == normalized:
                return existing
        return None

    def add_synonym(self, keyword: str, synonym: str) -> None:
        """Attach an alias to an existing keyword."""
        existing = self.get(keyword)
        if existing is None:
            raise ValueError(f"Unknown keyword: '{keyword}'")
        self.synonyms.register(existing.keyword, synonym)

    def known_terms(self) -> set:
        """Lowercase keywords and keyword aliases, for ledger filtering."""
        terms = {k.keyword for k in self._keywords}
        for keyword in self._keywords:
            terms.update(a.lower() for a in self.synonyms.all_aliases_for(keyword.keyword))
        return terms

    @property
    def keywords(self) -> List[CategoryKeyword]:
        return list(self._keywords)


def _contains(text: str, needle: str, word_boundary: bool) -> bool:
    if not needle:
        return False
    if not word_boundary:
        return needle in text
    return re.search(r'(?<!\w)' + re.escape(needle) + r'(?!\w)', text) is not None


def categorize(description, keywords: KeywordIndex, word_boundary: bool = False) -> CategorizationResult:
    """
    Categorize a description against a keyword index.

    Args:
        description: Expense description (non-strings yield no match)
        keywords: KeywordIndex snapshot
        word_boundary: Match whole words only instead of substrings

    Returns:
        CategorizationResult. category_id comes from the first matching
        keyword in recency order; matched_keywords lists all matches. An
        alias match is labelled "keyword (alias)".
    """
    if not isinstance(description, str) or not description.strip():
        return CategorizationResult()

    text = description.lower()
    category_id = None
    matched: List[str] = []

    for keyword in keywords:
        label = None
        if _contains(text, keyword.keyword, word_boundary):
            label = keyword.keyword
        else:
            for alias in keywords.synonyms.all_aliases_for(keyword.keyword):
                if _contains(text, alias.lower(), word_boundary):
                    label = f"{keyword.keyword} ({alias})"
                    break

        if label is None or label in matched:
            continue
        matched.append(label)
        if category_id is None:
            category_id = keyword.category_id

    if not matched:
        return CategorizationResult()
    return CategorizationResult(category_id=category_id, matched_keywords=matched, auto_categorized=True)


def categorization_stats(results: Iterable[CategorizationResult]) -> Dict[str, float]:
    """Summary counts over categorization results."""
    results = list(results)
    total = len(results)
    categorized = sum(1 for r in results if r.category_id is not None)
    return {
        'total': total,
        'categorized': categorized,
        'uncategorized': total - categorized,
        'categorization_rate': (categorized / total) * 100 if total else 0.0,
    }


def load_keyword_rules(csv_path):
    """Load keyword rules from a CSV file.

    CSV format: Keyword,Category[,Synonyms]

    Blank lines and lines starting with # are skipped. Synonyms are
    separated by '|'.

    Returns list of tuples: (keyword, category, [synonyms])
    """
    if not os.path.exists(csv_path):
        return []

    rules = []
    with open(csv_path, 'r', encoding='utf-8') as f:
        lines = [line for line in f if line.strip() and not line.strip().startswith('#')]
        reader = csv.DictReader(lines)
        for row in reader:
            keyword = normalize_keyword(row.get('Keyword') or '')
            category = (row.get('Category') or '').strip()
            if not keyword or not category:
                continue
            synonyms = [s.strip() for s in (row.get('Synonyms') or '').split('|') if s.strip()]
            rules.append((keyword, category, synonyms))
    return rules
