"""
spendmap CLI - Command-line interface.

Usage:
    spendmap init                                   # Create ./spendmap/config
    spendmap parse "BY KEBAB FACTORY, MINSK"        # Explain city + category
    spendmap add "BY KEBAB FACTORY, MINSK" -a 12.5  # Store an expense
    spendmap unknown                                # Terms waiting for a category
    spendmap assign кофейня food                    # Teach a keyword, re-categorize
"""

import argparse
import json
import logging
import os
import sys

from ._version import VERSION
from .category_engine import load_keyword_rules
from .config_loader import load_config
from .errors import StoreError
from .ledger import SOURCE_BULK, SOURCE_MANUAL, AssignResult
from .patterns import DEFAULT_PATTERNS
from .service import ExpenseResolver
from .store import FileStore
from .synonyms import SynonymRegistry, seed_city_registry


# Terminal color support
def _supports_color():
    """Check if the terminal supports color output."""
    if not sys.stdout.isatty():
        return False
    if os.environ.get('NO_COLOR'):
        return False
    if os.environ.get('FORCE_COLOR'):
        return True
    term = os.environ.get('TERM', '')
    return term != 'dumb'


class _Colors:
    """ANSI color codes with automatic detection."""
    def __init__(self):
        if _supports_color():
            self.RESET = '\033[0m'
            self.BOLD = '\033[1m'
            self.DIM = '\033[2m'
            self.GREEN = '\033[32m'
            self.CYAN = '\033[36m'
            self.YELLOW = '\033[33m'
            self.RED = '\033[31m'
        else:
            self.RESET = ''
            self.BOLD = ''
            self.DIM = ''
            self.GREEN = ''
            self.CYAN = ''
            self.YELLOW = ''
            self.RED = ''

C = _Colors()


STARTER_SETTINGS = '''# spendmap settings

# City extraction scoring
#   confidence = base * weight + synonym_boost (alias hit) + known_city_boost (any registry hit)
synonym_boost: 0.2
known_city_boost: 0.1

# Cities at or above this confidence are shown as recognized
min_confidence: 0.6

# Strip the matched city and BY/MN prefixes from descriptions
clean_result: true

# Per-pattern multipliers (0 disables a pattern)
# pattern_weights:
#   city-suffix-comma: 0.5
#   quoted-city: 0

# Match keywords as whole words instead of substrings
word_boundary: false

# Unknown terms shorter than this are not queued
min_term_length: 3

# Extra words never queued as unknown terms
# stop_words:
#   - оплата

# Built-in Belarusian city list
seed_cities: true

# Your own cities and their spellings on statements
# cities:
#   Марьина Горка: [MARINA GORKA, M.GORKA]
'''

STARTER_KEYWORDS = '''# Keyword rules to import
#
# This file is not read automatically. Add rules below, then run:
#   spendmap keyword --import config/keywords.csv
# Imported keywords are stored in state.yaml; importing again skips
# keywords that already exist.
#
# Format: Keyword,Category,Synonyms
# - Keyword: matched case-insensitively anywhere in the description
# - Synonyms: alternative spellings separated by |
# - Newer keywords win over older ones

Keyword,Category,Synonyms
'''


def find_config_dir():
    """Find the config directory.

    Resolution order:
    1. SPENDMAP_CONFIG environment variable (if set and exists)
    2. ./config
    3. ./spendmap/config

    Returns None if no config directory is found.
    """
    env_config = os.environ.get('SPENDMAP_CONFIG')
    if env_config:
        env_path = os.path.abspath(env_config)
        if os.path.isdir(env_path):
            return env_path

    for candidate in ('config', os.path.join('spendmap', 'config')):
        path = os.path.abspath(candidate)
        if os.path.isdir(path):
            return path

    return None


def init_config(target_dir):
    """Initialize a new config directory with starter files."""
    config_dir = os.path.join(target_dir, 'config')
    os.makedirs(config_dir, exist_ok=True)

    files_created = []
    files_skipped = []

    for name, content in (('settings.yaml', STARTER_SETTINGS), ('keywords.csv', STARTER_KEYWORDS)):
        path = os.path.join(config_dir, name)
        if not os.path.exists(path):
            with open(path, 'w', encoding='utf-8') as f:
                f.write(content)
            files_created.append(f'config/{name}')
        else:
            files_skipped.append(f'config/{name}')

    return files_created, files_skipped


def _build_registry(config):
    if config.get('seed_cities', True):
        return seed_city_registry(config.get('cities'))
    registry = SynonymRegistry()
    for city, aliases in config.get('cities', {}).items():
        registry.register_canonical(city)
        for alias in aliases:
            registry.register(city, alias)
    return registry


def _open_resolver(args):
    """Load config and state for a command. Exits with a message on failure."""
    config_dir = os.path.abspath(args.config) if args.config else find_config_dir()

    if not config_dir or not os.path.isdir(config_dir):
        print("Error: Config directory not found.", file=sys.stderr)
        print("Looked for: $SPENDMAP_CONFIG, ./config and ./spendmap/config", file=sys.stderr)
        print("\nRun 'spendmap init' to create one.", file=sys.stderr)
        sys.exit(1)

    try:
        config = load_config(config_dir, args.settings)
        store = FileStore(config['state_path'], city_registry=_build_registry(config))
    except (FileNotFoundError, ValueError, StoreError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    return ExpenseResolver.from_config(store, config), config


def _result_to_dict(resolution):
    city = resolution.city
    return {
        'description': resolution.description,
        'city': city.city,
        'display_city': city.display_city,
        'recognized': resolution.city_recognized,
        'confidence': round(city.confidence, 4),
        'base_confidence': city.base_confidence,
        'applied_weight': city.applied_weight,
        'pattern_id': city.pattern_id,
        'matched_synonym': city.matched_synonym,
        'unknown_candidate': city.unknown_candidate,
        'clean_description': city.clean_description,
        'category_id': resolution.category.category_id,
        'matched_keywords': resolution.category.matched_keywords,
        'auto_categorized': resolution.category.auto_categorized,
    }


def _print_resolution(resolution, options):
    city = resolution.city
    print(f"{C.BOLD}{resolution.description}{C.RESET}")

    if city.city is None:
        print(f"  City:       {C.DIM}(none){C.RESET}")
        if city.unknown_candidate:
            print(f"  Unknown:    {C.YELLOW}{city.unknown_candidate}{C.RESET} "
                  f"{C.DIM}(not in the city list; see spendmap unknown --cities){C.RESET}")
    else:
        color = C.GREEN if resolution.city_recognized else C.YELLOW
        status = 'recognized' if resolution.city_recognized else 'uncertain'
        print(f"  City:       {color}{city.display_city}{C.RESET} ({status})")
        print(f"  Confidence: {city.confidence:.2f} "
              f"{C.DIM}= {city.base_confidence:.2f} x {city.applied_weight:g}"
              f"{' + synonym' if city.matched_synonym else ''}"
              f" + known"
              f" [min {options.min_confidence:.2f}]{C.RESET}")
        print(f"  Pattern:    {city.pattern_id}")
        if city.matched_synonym:
            print(f"  Synonym:    {city.matched_synonym}")
        if city.clean_description is not None:
            print(f"  Cleaned:    {city.clean_description}")

    category = resolution.category
    if category.auto_categorized:
        print(f"  Category:   {C.GREEN}{category.category_id}{C.RESET}")
        print(f"  Keywords:   {', '.join(category.matched_keywords)}")
    else:
        print(f"  Category:   {C.YELLOW}uncategorized{C.RESET}")


def cmd_init(args):
    """Handle the 'init' subcommand."""
    target_dir = os.path.abspath(args.dir)
    rel_target = os.path.relpath(target_dir)

    print(f"Initializing spendmap directory: {C.BOLD}{rel_target}{C.RESET}")
    print()

    created, skipped = init_config(target_dir)
    all_files = sorted([(f, True) for f in created] + [(f, False) for f in skipped])
    for f, was_created in all_files:
        if was_created:
            print(f"  {C.GREEN}✓{C.RESET} {f}")
        else:
            print(f"  {C.YELLOW}→{C.RESET} {C.DIM}{f} (exists){C.RESET}")

    keywords_csv = os.path.join(os.path.relpath(target_dir), 'config', 'keywords.csv')
    print()
    print(f"Next: add rules to {keywords_csv}, then run "
          f"{C.BOLD}spendmap keyword --import {keywords_csv}{C.RESET}")


def cmd_parse(args):
    """Handle the 'parse' subcommand - explain resolution without storing."""
    resolver, _ = _open_resolver(args)
    results = [resolver.resolve(d) for d in args.description]

    if args.format == 'json':
        print(json.dumps([_result_to_dict(r) for r in results], ensure_ascii=False, indent=2))
        return

    for i, resolution in enumerate(results):
        if i:
            print()
        _print_resolution(resolution, resolver.options)


def cmd_add(args):
    """Handle the 'add' subcommand - store expenses."""
    resolver, _ = _open_resolver(args)

    try:
        if args.file:
            with open(args.file, 'r', encoding='utf-8') as f:
                lines = [line.strip() for line in f if line.strip() and not line.startswith('#')]
            expenses = resolver.add_expenses(lines, SOURCE_BULK)
        else:
            expenses = [resolver.add_expense(' '.join(args.description), args.amount, SOURCE_MANUAL)]
    except (OSError, StoreError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    for expense in expenses:
        category = expense.category_id or f"{C.YELLOW}uncategorized{C.RESET}"
        city = expense.city or f"{C.DIM}-{C.RESET}"
        print(f"  #{expense.id}  {expense.description}  [{category}]  {city}")

    uncategorized = sum(1 for e in expenses if not e.is_categorized)
    if uncategorized:
        print(f"\n{uncategorized} uncategorized. Run {C.GREEN}spendmap unknown{C.RESET} to review new terms.")


def cmd_unknown(args):
    """Handle the 'unknown' subcommand - list unrecognized terms or cities."""
    resolver, _ = _open_resolver(args)
    store = resolver.store

    if args.cities:
        entries = store.city_ledger.entries(order='recent')
        title = 'Unrecognized cities'
    else:
        entries = store.term_ledger.entries()
        title = 'Unrecognized terms'

    if args.limit:
        entries = entries[:args.limit]

    if args.format == 'json':
        print(json.dumps([
            {
                'term': e.term,
                'frequency': e.frequency,
                'first_seen': e.first_seen.isoformat() if e.first_seen else None,
                'last_seen': e.last_seen.isoformat() if e.last_seen else None,
                'source_type': e.source_type,
            }
            for e in entries
        ], ensure_ascii=False, indent=2))
        return

    if not entries:
        print(f"{title}: none")
        return

    print(f"{C.BOLD}{title}{C.RESET}")
    for e in entries:
        last = e.last_seen.strftime('%Y-%m-%d') if e.last_seen else '-'
        print(f"  {e.frequency:>4}x  {e.term:<30} {C.DIM}last seen {last}{C.RESET}")


def cmd_assign(args):
    """Handle the 'assign' subcommand - turn a term into a keyword."""
    resolver, _ = _open_resolver(args)

    if args.retry:
        result = resolver.retry(args.term, args.category)
    else:
        result = resolver.assign(args.term, args.category)

    if result.status == AssignResult.ASSIGNED:
        print(f"{C.GREEN}✓{C.RESET} '{result.term}' → {result.category_id}; "
              f"{result.recategorized_count} expense(s) re-categorized")
    elif result.status == AssignResult.SWEEP_FAILED:
        print(f"Error: keyword '{result.term}' created, but expenses were not updated: {result.error}",
              file=sys.stderr)
        print(f"\nRun 'spendmap assign --retry {result.term} {result.category_id}' to finish.", file=sys.stderr)
        sys.exit(1)
    else:
        print(f"Error: {result.error}", file=sys.stderr)
        sys.exit(1)


def cmd_discard(args):
    """Handle the 'discard' subcommand."""
    resolver, _ = _open_resolver(args)
    if args.cities:
        removed = resolver.store.discard_unrecognized_city(args.term)
    else:
        removed = resolver.discard(args.term)

    if not removed:
        print(f"Error: '{args.term}' is not in the unrecognized list", file=sys.stderr)
        sys.exit(1)
    print(f"{C.GREEN}✓{C.RESET} Discarded '{args.term}'")


def cmd_keyword(args):
    """Handle the 'keyword' subcommand - add keywords directly or from CSV."""
    resolver, _ = _open_resolver(args)

    if args.import_file:
        if not os.path.exists(args.import_file):
            print(f"Error: File not found: {args.import_file}", file=sys.stderr)
            sys.exit(1)
        rules = load_keyword_rules(args.import_file)
    elif args.keyword and args.category:
        rules = [(args.keyword, args.category, args.synonym or [])]
    else:
        print("Error: Provide KEYWORD CATEGORY or --import FILE", file=sys.stderr)
        sys.exit(1)

    added = 0
    for keyword, category, synonyms in rules:
        result = resolver.assign(keyword, category)
        if result.status == AssignResult.KEYWORD_EXISTS:
            print(f"  {C.YELLOW}→{C.RESET} {C.DIM}{keyword} (exists){C.RESET}")
        elif not result.keyword_created:
            print(f"Error: {result.error}", file=sys.stderr)
            continue
        else:
            added += 1
            print(f"  {C.GREEN}✓{C.RESET} {keyword} → {category} "
                  f"({result.recategorized_count} re-categorized)")
        for synonym in synonyms:
            try:
                resolver.store.add_keyword_synonym(keyword, synonym)
            except StoreError as e:
                print(f"Error: {e}", file=sys.stderr)

    print(f"\n{added} keyword(s) added")


def cmd_city_alias(args):
    """Handle the 'city-alias' subcommand."""
    resolver, _ = _open_resolver(args)
    try:
        resolver.store.add_city(args.city)
        previous = resolver.store.add_city_alias(args.city, args.alias)
    except StoreError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if previous:
        print(f"{C.YELLOW}!{C.RESET} '{args.alias}' moved from {previous} to {args.city}")
    else:
        print(f"{C.GREEN}✓{C.RESET} '{args.alias}' → {args.city}")


def cmd_attach_city(args):
    """Handle the 'attach-city' subcommand."""
    resolver, _ = _open_resolver(args)
    result = resolver.attach_city(args.name, args.city)
    if not result.ok:
        print(f"Error: {result.error}", file=sys.stderr)
        sys.exit(1)
    print(f"{C.GREEN}✓{C.RESET} '{result.name}' is now a spelling of {result.city}")


def cmd_patterns(args):
    """Handle the 'patterns' subcommand - show patterns and effective weights."""
    resolver, _ = _open_resolver(args)
    options = resolver.options

    print(f"{C.BOLD}City patterns{C.RESET} (in priority order)")
    for pattern in DEFAULT_PATTERNS:
        weight = options.weight_for(pattern.id)
        state = f"{C.DIM}disabled{C.RESET}" if weight == 0 else f"weight {weight:g}"
        print(f"  {C.CYAN}{pattern.id:<24}{C.RESET} {pattern.label:<36} {state}")
        if args.verbose and pattern.description:
            print(f"      {C.DIM}{pattern.description}{C.RESET}")
    print()
    print(f"  synonym_boost={options.synonym_boost:g}  known_city_boost={options.known_city_boost:g}  "
          f"min_confidence={options.min_confidence:g}")


def _add_config_args(parser):
    parser.add_argument(
        '--config', '-c',
        help='Path to config directory (default: ./config)'
    )
    parser.add_argument(
        '--settings', '-s',
        default='settings.yaml',
        help='Settings file name (default: settings.yaml)'
    )


def main(argv=None):
    """Main entry point for spendmap CLI."""
    parser = argparse.ArgumentParser(
        prog='spendmap',
        description='Resolve city and category from expense descriptions.',
    )
    parser.add_argument(
        '-v', '--verbose',
        action='count',
        default=0,
        help='Increase log output (-v info, -vv debug)'
    )

    subparsers = parser.add_subparsers(dest='command', title='commands', metavar='<command>')

    init_parser = subparsers.add_parser('init', help='Create a config directory with starter files')
    init_parser.add_argument('dir', nargs='?', default='spendmap', help='Directory to initialize (default: ./spendmap)')

    parse_parser = subparsers.add_parser('parse', help='Show how descriptions resolve (nothing is stored)')
    parse_parser.add_argument('description', nargs='+', help='Description(s) to resolve')
    parse_parser.add_argument('--format', '-f', choices=['text', 'json'], default='text')
    _add_config_args(parse_parser)

    add_parser = subparsers.add_parser('add', help='Store an expense (or --file for one description per line)')
    add_parser.add_argument('description', nargs='*', help='Expense description')
    add_parser.add_argument('--amount', '-a', type=float, default=0.0, help='Amount')
    add_parser.add_argument('--file', help='Bulk import: text file with one description per line')
    _add_config_args(add_parser)

    unknown_parser = subparsers.add_parser('unknown', help='List terms (or --cities) waiting for review')
    unknown_parser.add_argument('--cities', action='store_true', help='Show unrecognized cities')
    unknown_parser.add_argument('--limit', '-n', type=int, default=0, help='Maximum entries (0 for all)')
    unknown_parser.add_argument('--format', '-f', choices=['text', 'json'], default='text')
    _add_config_args(unknown_parser)

    assign_parser = subparsers.add_parser('assign', help='Assign a category to a term and re-categorize past expenses')
    assign_parser.add_argument('term')
    assign_parser.add_argument('category')
    assign_parser.add_argument('--retry', action='store_true', help='Only re-run the re-categorization step')
    _add_config_args(assign_parser)

    discard_parser = subparsers.add_parser('discard', help='Remove a term (or --cities name) from the review list')
    discard_parser.add_argument('term')
    discard_parser.add_argument('--cities', action='store_true')
    _add_config_args(discard_parser)

    keyword_parser = subparsers.add_parser('keyword', help='Add a keyword, or import keywords from CSV')
    keyword_parser.add_argument('keyword', nargs='?')
    keyword_parser.add_argument('category', nargs='?')
    keyword_parser.add_argument('--synonym', action='append', help='Alternative spelling (repeatable)')
    keyword_parser.add_argument('--import', dest='import_file', help='CSV file: Keyword,Category,Synonyms')
    _add_config_args(keyword_parser)

    alias_parser = subparsers.add_parser('city-alias', help='Add a spelling for a city')
    alias_parser.add_argument('city')
    alias_parser.add_argument('alias')
    _add_config_args(alias_parser)

    attach_parser = subparsers.add_parser('attach-city', help='Make an unrecognized city name a spelling of a known city')
    attach_parser.add_argument('name')
    attach_parser.add_argument('city')
    _add_config_args(attach_parser)

    patterns_parser = subparsers.add_parser('patterns', help='Show city patterns and their weights')
    _add_config_args(patterns_parser)

    subparsers.add_parser('version', help='Show version information')

    args = parser.parse_args(argv)

    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format='%(levelname)s %(name)s: %(message)s', stream=sys.stderr)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    commands = {
        'init': cmd_init,
        'parse': cmd_parse,
        'add': cmd_add,
        'unknown': cmd_unknown,
        'assign': cmd_assign,
        'discard': cmd_discard,
        'keyword': cmd_keyword,
        'city-alias': cmd_city_alias,
        'attach-city': cmd_attach_city,
        'patterns': cmd_patterns,
    }

    if args.command == 'version':
        print(f"spendmap {VERSION}")
    elif args.command == 'add' and not args.description and not args.file:
        print("Error: Provide a description or --file", file=sys.stderr)
        sys.exit(1)
    else:
        commands[args.command](args)


if __name__ == '__main__':
    main()
