"""
Synonym registry: alias strings -> canonical entities.

Used for city names (canonical city + alternate spellings) and for category
keywords (canonical keyword + its aliases). Lookups are case and whitespace
insensitive. Canonical names resolve to themselves.

Conflict policy: an alias maps to exactly one canonical entity. Registering
an alias that already belongs to another entity moves it (last write wins)
and logs a warning.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from .text_utils import format_display, normalize_alias

logger = logging.getLogger(__name__)


# =============================================================================
# SEED CITIES
# Well-known Belarusian cities: (canonical name, Latin statement spelling).
# User records are layered on top of these.
# =============================================================================
SEED_CITIES = [
    ('Минск', 'Minsk'),
    ('Гомель', 'Gomel'),
    ('Могилев', 'Mogilev'),
    ('Витебск', 'Vitebsk'),
    ('Гродно', 'Grodno'),
    ('Брест', 'Brest'),
    ('Логойск', 'Logoysk'),
    ('Борисов', 'Borisov'),
    ('Барановичи', 'Baranovichi'),
    ('Пинск', 'Pinsk'),
    ('Орша', 'Orsha'),
    ('Мозырь', 'Mozyr'),
    ('Новополоцк', 'Novopolotsk'),
    ('Лида', 'Lida'),
    ('Молодечно', 'Molodechno'),
    ('Солигорск', 'Soligorsk'),
    ('Слуцк', 'Slutsk'),
    ('Жлобин', 'Zhlobin'),
    ('Светлогорск', 'Svetlogorsk'),
    ('Речица', 'Rechitsa'),
    ('Бобруйск', 'Bobruisk'),
    ('Полоцк', 'Polotsk'),
]


@dataclass(frozen=True)
class CanonicalEntity:
    """Result of resolving a name through the registry."""

    canonical_id: str
    display: str
    matched_alias: Optional[str] = None  # Alias as registered, None for canonical hits

    @property
    def is_alias(self) -> bool:
        return self.matched_alias is not None


class SynonymRegistry:
    """
    Bidirectional lookup between aliases and canonical entities.

    Forward index: normalized alias -> canonical id.
    Reverse index: canonical id -> aliases in registration order.
    """

    def __init__(self):
        self._canonical: Dict[str, str] = {}  # normalized canonical -> canonical id
        self._aliases: Dict[str, Tuple[str, str]] = {}  # normalized alias -> (canonical id, alias)
        self._by_canonical: Dict[str, List[str]] = {}

    def __len__(self):
        return len(self._canonical)

    def __contains__(self, name):
        return self.resolve(name) is not None

    def register_canonical(self, canonical_id: str) -> str:
        """Add a canonical entity (no-op if already known). Returns its id."""
        key = normalize_alias(canonical_id)
        if not key:
            raise ValueError("Canonical name cannot be empty")
        if key in self._canonical:
            return self._canonical[key]
        canonical_id = canonical_id.strip()
        self._canonical[key] = canonical_id
        self._by_canonical[canonical_id] = []
        return canonical_id

    def register(self, canonical_id: str, alias: str) -> Optional[str]:
        """
        Register alias for canonical_id, adding the canonical entity if needed.

        Returns the canonical id the alias previously pointed to when it was
        moved from a different entity, otherwise None.
        """
        canonical_id = self.register_canonical(canonical_id)
        key = normalize_alias(alias)
        if not key:
            raise ValueError("Alias cannot be empty")
        if key == normalize_alias(canonical_id):
            return None

        previous = None
        existing = self._aliases.get(key)
        if existing:
            previous_id, previous_alias = existing
            if previous_id == canonical_id:
                return None
            logger.warning(
                "Alias %r moved from %r to %r", alias, previous_id, canonical_id
            )
            self._by_canonical[previous_id].remove(previous_alias)
            previous = previous_id

        alias = ' '.join(alias.split())
        self._aliases[key] = (canonical_id, alias)
        self._by_canonical[canonical_id].append(alias)
        return previous

    def remove_alias(self, alias: str) -> bool:
        """Remove an alias. Returns True if it was registered."""
        key = normalize_alias(alias)
        existing = self._aliases.pop(key, None)
        if existing is None:
            return False
        canonical_id, registered = existing
        self._by_canonical[canonical_id].remove(registered)
        return True

    def remove_canonical(self, canonical_id: str) -> bool:
        """Remove a canonical entity and all of its aliases."""
        key = normalize_alias(canonical_id)
        canonical_id = self._canonical.pop(key, None)
        if canonical_id is None:
            return False
        for alias in self._by_canonical.pop(canonical_id):
            self._aliases.pop(normalize_alias(alias), None)
        return True

    def resolve(self, name) -> Optional[CanonicalEntity]:
        """Resolve a name or alias. Canonical names take precedence over aliases."""
        key = normalize_alias(name)
        if not key:
            return None

        canonical_id = self._canonical.get(key)
        if canonical_id is not None:
            return CanonicalEntity(canonical_id, format_display(canonical_id))

        existing = self._aliases.get(key)
        if existing is not None:
            canonical_id, alias = existing
            return CanonicalEntity(canonical_id, format_display(canonical_id), alias)

        return None

    def canonical_for(self, name) -> Optional[str]:
        """Canonical id for a name or alias, or None."""
        entity = self.resolve(name)
        return entity.canonical_id if entity else None

    def all_aliases_for(self, canonical_id: str) -> List[str]:
        """Aliases of a canonical entity in registration order."""
        canonical_id = self.canonical_for(canonical_id) or canonical_id
        return list(self._by_canonical.get(canonical_id, []))

    def canonical_ids(self) -> List[str]:
        """All canonical ids in registration order."""
        return list(self._by_canonical)

    def records(self) -> List[Tuple[str, str]]:
        """(canonical_id, alias) pairs, for persistence."""
        return [
            (canonical_id, alias)
            for canonical_id, aliases in self._by_canonical.items()
            for alias in aliases
        ]

    def copy(self) -> 'SynonymRegistry':
        clone = SynonymRegistry()
        clone._canonical = dict(self._canonical)
        clone._aliases = dict(self._aliases)
        clone._by_canonical = {k: list(v) for k, v in self._by_canonical.items()}
        return clone

    @classmethod
    def from_records(cls, records: Iterable, canonical: Iterable[str] = ()) -> 'SynonymRegistry':
        """
        Build a registry from (canonical_id, alias) pairs.

        Records with an empty canonical or alias are skipped, mirroring how
        user data is loaded. Later records win on alias conflicts.
        """
        registry = cls()
        for name in canonical:
            if normalize_alias(name):
                registry.register_canonical(name)
        for canonical_id, alias in records:
            if not normalize_alias(canonical_id):
                continue
            if not normalize_alias(alias):
                registry.register_canonical(canonical_id)
                continue
            registry.register(canonical_id, alias)
        return registry


def seed_city_registry(extra_cities=None) -> SynonymRegistry:
    """Registry with the built-in city list plus optional user cities.

    Args:
        extra_cities: Optional mapping of canonical city -> list of aliases

    Returns:
        SynonymRegistry with seed cities registered first
    """
    registry = SynonymRegistry.from_records(SEED_CITIES)
    for city, aliases in (extra_cities or {}).items():
        registry.register_canonical(city)
        for alias in aliases or []:
            registry.register(city, alias)
    return registry
