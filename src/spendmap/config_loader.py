"""
Configuration loader for expense resolution.

Loads settings from YAML config files.
"""

import os

import yaml

from .city_engine import ExtractionOptions
from .patterns import DEFAULT_PATTERNS
from .text_utils import STOP_WORDS

DEFAULTS = {
    'pattern_weights': {},
    'synonym_boost': 0.2,
    'known_city_boost': 0.1,
    'min_confidence': 0.6,
    'clean_result': True,
    'word_boundary': False,
    'min_term_length': 3,
    'stop_words': [],
    'seed_cities': True,
    'cities': {},
    'state_file': 'state.yaml',
}


def load_settings(config_dir, settings_file='settings.yaml'):
    """Load main settings from settings.yaml (or specified file)."""
    settings_path = os.path.join(config_dir, settings_file)

    if not os.path.exists(settings_path):
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with open(settings_path, 'r', encoding='utf-8') as f:
        settings = yaml.safe_load(f)

    if settings is None:
        return {}
    if not isinstance(settings, dict):
        raise ValueError(f"Settings file must contain a mapping: {settings_path}")
    return settings


def _unit_float(config, key):
    """Read a float setting that must lie in [0, 1]."""
    value = config[key]
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"'{key}' must be a number, got {value!r}")
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"'{key}' must be between 0 and 1, got {value}")
    return value


def resolve_pattern_weights(weights):
    """
    Validate pattern weights.

    Unknown pattern ids are rejected so typos don't silently do nothing.
    Negative weights are kept; the engine clamps them to 0.
    """
    if not weights:
        return {}
    if not isinstance(weights, dict):
        raise ValueError("'pattern_weights' must be a mapping of pattern id to weight")

    known_ids = {p.id for p in DEFAULT_PATTERNS}
    resolved = {}
    for pattern_id, weight in weights.items():
        if pattern_id not in known_ids:
            raise ValueError(
                f"Unknown pattern id in pattern_weights: '{pattern_id}'. "
                f"Valid ids: {', '.join(sorted(known_ids))}"
            )
        try:
            resolved[pattern_id] = float(weight)
        except (TypeError, ValueError):
            raise ValueError(f"Weight for '{pattern_id}' must be a number, got {weight!r}")
    return resolved


def resolve_cities(cities):
    """Normalize the 'cities' setting to {canonical: [aliases]}."""
    if not cities:
        return {}
    if isinstance(cities, list):
        # Plain list of canonical names without aliases
        return {str(city).strip(): [] for city in cities if str(city).strip()}
    if not isinstance(cities, dict):
        raise ValueError("'cities' must be a mapping of city to aliases")

    resolved = {}
    for city, aliases in cities.items():
        if isinstance(aliases, str):
            aliases = [aliases]
        resolved[str(city).strip()] = [str(a).strip() for a in aliases or [] if str(a).strip()]
    return resolved


def load_config(config_dir, settings_file='settings.yaml'):
    """Load all configuration files.

    Args:
        config_dir: Path to config directory containing settings.yaml.
        settings_file: Name of the settings file to load (default: settings.yaml)

    Returns:
        dict with all configuration values (defaults filled in)
    """
    config_dir = os.path.abspath(config_dir)

    if not os.path.isdir(config_dir):
        raise FileNotFoundError(f"Config directory not found: {config_dir}")

    config = dict(DEFAULTS)
    config.update(load_settings(config_dir, settings_file))

    config['pattern_weights'] = resolve_pattern_weights(config.get('pattern_weights'))
    for key in ('synonym_boost', 'known_city_boost', 'min_confidence'):
        config[key] = _unit_float(config, key)

    for key in ('clean_result', 'word_boundary', 'seed_cities'):
        config[key] = bool(config[key])

    try:
        config['min_term_length'] = int(config['min_term_length'])
    except (TypeError, ValueError):
        raise ValueError(f"'min_term_length' must be an integer, got {config['min_term_length']!r}")
    if config['min_term_length'] < 1:
        raise ValueError("'min_term_length' must be at least 1")

    # Extra stop words extend the built-in list
    extra = config.get('stop_words') or []
    if isinstance(extra, str):
        extra = [extra]
    config['stop_words'] = frozenset(STOP_WORDS | {str(w).strip().lower() for w in extra})

    config['cities'] = resolve_cities(config.get('cities'))

    config['state_path'] = os.path.join(config_dir, config['state_file'])
    config['_config_dir'] = config_dir

    return config


def build_extraction_options(config):
    """ExtractionOptions from a loaded config dict."""
    return ExtractionOptions(
        pattern_weights=dict(config.get('pattern_weights') or {}),
        synonym_boost=config.get('synonym_boost', DEFAULTS['synonym_boost']),
        known_city_boost=config.get('known_city_boost', DEFAULTS['known_city_boost']),
        min_confidence=config.get('min_confidence', DEFAULTS['min_confidence']),
        clean_result=config.get('clean_result', DEFAULTS['clean_result']),
    )
