"""
Command-line interface for the hybrid health data engine.

Subcommands:
    get <category>   Fetch and reconcile data for a category
    sources          List configured sources
    categories       List categories and whether they are compromised
    check-keys       Report credential status per source
"""

import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from .config.secrets import check_keys
from .config.settings import get_engine_settings, load_engine_config
from .errors import HybridHealthError
from .logging_config import configure_logging
from .reconcile.engine import ReconciliationEngine
from .sources.catalog import SourceCatalog, load_sources_config
from .sources.health import load_health_tracker, save_health_tracker

logger = logging.getLogger(__name__)


def _settings(args: argparse.Namespace) -> Dict[str, Any]:
    settings = get_engine_settings(load_engine_config(args.engine_config))
    if args.catalog:
        settings['catalog_path'] = args.catalog
    if args.health_file:
        settings['health_file'] = args.health_file
    if args.cache_dir:
        settings['cache_dir'] = args.cache_dir
    return settings


def _parse_params(pairs: Optional[List[str]]) -> Dict[str, str]:
    params = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Invalid --param '{pair}' (expected key=value)")
        params[key] = value
    return params


def cmd_get(args: argparse.Namespace) -> int:
    """Fetch and reconcile one category."""
    try:
        settings = _settings(args)
        params = _parse_params(args.param)
        sources_config = load_sources_config(settings['catalog_path'])
        health = load_health_tracker(settings['health_file'])

        engine = ReconciliationEngine.from_config(sources_config, settings, health=health)
        try:
            result = engine.get_category_data(args.category, params, compare=not args.no_compare)
        finally:
            save_health_tracker(health, settings['health_file'])

        print(json.dumps(result.to_dict(), indent=2, default=str))
        return 0

    except HybridHealthError as e:
        print(f"Error ({e.kind}): {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


def cmd_sources(args: argparse.Namespace) -> int:
    """List configured sources with their health."""
    try:
        settings = _settings(args)
        catalog = SourceCatalog.from_config(load_sources_config(settings['catalog_path']))
        health = load_health_tracker(settings['health_file'])

        print(f"{'Source':<24} {'Kind':<12} {'Auth':<8} {'Rel.':<6} {'Status':<12}")
        print("-" * 64)
        for descriptor in catalog:
            status = "available" if health.is_available(descriptor.source_id) else "unavailable"
            print(f"{descriptor.source_id:<24} {descriptor.kind.value:<12} "
                  f"{descriptor.auth_mode.value:<8} {descriptor.reliability:<6.2f} {status:<12}")

        if args.verbose:
            print()
            print(json.dumps(health.get_summary([d.source_id for d in catalog]), indent=2))
        return 0

    except HybridHealthError as e:
        print(f"Error ({e.kind}): {e}", file=sys.stderr)
        return 1


def cmd_categories(args: argparse.Namespace) -> int:
    """List categories served by the catalog."""
    try:
        settings = _settings(args)
        catalog = SourceCatalog.from_config(load_sources_config(settings['catalog_path']))

        for category in catalog.categories():
            flag = " [compromised]" if catalog.is_compromised(category) else ""
            sources = ", ".join(d.source_id for d in catalog.for_category(category))
            print(f"{category}{flag}: {sources}")
        return 0

    except HybridHealthError as e:
        print(f"Error ({e.kind}): {e}", file=sys.stderr)
        return 1


def cmd_check_keys(args: argparse.Namespace) -> int:
    """Report credential status; non-zero exit if any required key is missing."""
    try:
        settings = _settings(args)
        catalog = SourceCatalog.from_config(load_sources_config(settings['catalog_path']))
    except HybridHealthError as e:
        print(f"Error ({e.kind}): {e}", file=sys.stderr)
        return 1

    status = check_keys(catalog)
    print("Credential Status:")
    print("-" * 40)
    for source_id, state in status.items():
        print(f"  {source_id}: {state}")
    return 1 if "MISSING" in status.values() else 0


def main(argv: Optional[list] = None) -> int:
    """Main CLI entrypoint."""
    parser = argparse.ArgumentParser(
        prog="hybrid-health",
        description="Hybrid health data source selection and reconciliation"
    )

    # Global options
    parser.add_argument("--catalog", help="Path to sources YAML (default from engine config)")
    parser.add_argument("--engine-config", help="Path to engine YAML (default config/engine.yaml)")
    parser.add_argument("--health-file", help="Path to source health JSON")
    parser.add_argument("--cache-dir", help="Offline cache directory")
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # get command
    get_parser = subparsers.add_parser("get", help="Fetch and reconcile a category")
    get_parser.add_argument("category", help="Data category, e.g. lgbtq-health")
    get_parser.add_argument("--param", action="append", metavar="KEY=VALUE",
                            help="Query parameter passed to sources (repeatable)")
    get_parser.add_argument("--no-compare", action="store_true",
                            help="Return the first valid dataset without cross-source comparison")
    get_parser.set_defaults(func=cmd_get)

    # sources command
    sources_parser = subparsers.add_parser("sources", help="List configured sources")
    sources_parser.set_defaults(func=cmd_sources)

    # categories command
    categories_parser = subparsers.add_parser("categories", help="List categories")
    categories_parser.set_defaults(func=cmd_categories)

    # check-keys command
    keys_parser = subparsers.add_parser("check-keys", help="Check credential configuration")
    keys_parser.set_defaults(func=cmd_check_keys)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    configure_logging(logging.DEBUG if args.verbose else logging.WARNING)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
