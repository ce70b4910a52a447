"""Engine tuning loaded from config/engine.yaml with module defaults."""

import logging
import os
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)


# Defaults (can be overridden by config/engine.yaml)
DEFAULT_FETCH_TIMEOUT_SECONDS = 15
DEFAULT_TOKEN_TIMEOUT_SECONDS = 10
DEFAULT_TOKEN_EXPIRY_MARGIN_SECONDS = 60
DEFAULT_MAX_PARALLEL_FETCHES = 3
DEFAULT_MAX_COMPARISON_SOURCES = 2
DEFAULT_COMPARISON_WINDOW_SECONDS = 20
DEFAULT_REPROBE_AFTER_MINUTES = 10
DEFAULT_CACHE_MAX_AGE_DAYS = 30
DEFAULT_CACHE_DIR = "runs/_meta/offline_cache"
DEFAULT_HEALTH_FILE = "runs/_meta/sources_health.json"
DEFAULT_CATALOG_PATH = "config/sources.yaml"


def _candidate_paths(filename: str):
    return [
        os.path.join("config", filename),
        os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))), "config", filename),
    ]


def load_engine_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load engine configuration from config/engine.yaml.

    Args:
        path: Explicit config path; searched in the working directory and the
            project root when omitted

    Returns:
        Config dict or empty dict if no file is found
    """
    paths = [path] if path else _candidate_paths("engine.yaml")

    for p in paths:
        if p and os.path.exists(p):
            try:
                with open(p, 'r') as f:
                    return yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                logger.warning(f"Failed to load engine config from {p}: {e}")

    return {}


def get_engine_settings(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Resolve engine settings, preferring config values over defaults.

    Returns:
        Flat dict of every tunable the engine and CLI read
    """
    if config is None:
        config = load_engine_config()

    fetch = config.get('fetch', {})
    auth = config.get('auth', {})
    reconcile = config.get('reconcile', {})
    health = config.get('health', {})
    cache = config.get('cache', {})

    return {
        'fetch_timeout_seconds': fetch.get('timeout_seconds', DEFAULT_FETCH_TIMEOUT_SECONDS),
        'max_parallel_fetches': fetch.get('max_parallel', DEFAULT_MAX_PARALLEL_FETCHES),
        'token_timeout_seconds': auth.get('token_timeout_seconds', DEFAULT_TOKEN_TIMEOUT_SECONDS),
        'token_expiry_margin_seconds': auth.get('expiry_margin_seconds', DEFAULT_TOKEN_EXPIRY_MARGIN_SECONDS),
        'max_comparison_sources': reconcile.get('max_comparison_sources', DEFAULT_MAX_COMPARISON_SOURCES),
        'comparison_window_seconds': reconcile.get('comparison_window_seconds', DEFAULT_COMPARISON_WINDOW_SECONDS),
        'reprobe_after_minutes': health.get('reprobe_after_minutes', DEFAULT_REPROBE_AFTER_MINUTES),
        'health_file': health.get('path', DEFAULT_HEALTH_FILE),
        'cache_dir': cache.get('path', DEFAULT_CACHE_DIR),
        'cache_max_age_days': cache.get('max_age_days', DEFAULT_CACHE_MAX_AGE_DAYS),
        'catalog_path': config.get('catalog_path', DEFAULT_CATALOG_PATH),
    }
