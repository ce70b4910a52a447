"""
Hybrid Health - source selection, fetch, validation and reconciliation
for public-health data drawn from government and alternative providers.

Modules:
    sources.catalog - Source registry loaded from config/sources.yaml
    sources.selector - Candidate ordering per category
    sources.auth - API key and OAuth credential resolution
    sources.health - Per-source availability tracking
    sources.fetcher - Single authenticated, time-bounded fetch
    validation.validator - Structural and baseline-drift checks
    validation.comparator - Cross-source sampling comparison
    reconcile.engine - Public entry point (get_category_data)
    cache.offline - Last-known-good snapshots per category
"""

__version__ = "0.1.0"
