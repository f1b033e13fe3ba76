"""
Crawler module for map listing harvesting.

Module Structure:
- url_utils: item-link canonicalization, search URLs, relay URL parsing
- selectors: selector sets kept as data
- dedup: run-wide ledger of extracted links
- session: Session wrapper and bootstrapper (requires playwright)
- consent: navigation / consent state machine
- collector: scroll-based pagination with stall recovery
- extractor: default field extractor for place pages
- scheduler: deadline-aware per-query extraction loop
- file_manager: result / debug sinks and query files
- harvest: run orchestration (entry point)
"""

# Export URL utilities directly (no playwright dependency)
from mapsharvest.crawler.url_utils import (
    domain_of,
    canonical_item_link,
    build_search_url,
    root_url,
    is_valid_maps_url,
    is_item_link,
    parse_coordinates,
    parse_place_id,
    parse_relay_url,
    redact_relay_url,
)

from mapsharvest.crawler.selectors import (
    CONSENT_SELECTORS,
    RESULTS_SELECTORS,
    PLACE_SELECTORS,
)
from mapsharvest.crawler.dedup import DedupLedger


_LAZY = {
    "Session": "mapsharvest.crawler.session",
    "ConnectionMode": "mapsharvest.crawler.session",
    "PlaywrightLauncher": "mapsharvest.crawler.session",
    "bootstrap": "mapsharvest.crawler.session",
    "ConsentNavigator": "mapsharvest.crawler.consent",
    "ConsentState": "mapsharvest.crawler.consent",
    "PaginationCollector": "mapsharvest.crawler.collector",
    "CollectResult": "mapsharvest.crawler.collector",
    "PlaceExtractor": "mapsharvest.crawler.extractor",
    "ExtractionScheduler": "mapsharvest.crawler.scheduler",
    "JsonlResultSink": "mapsharvest.crawler.file_manager",
    "DirectoryDebugSink": "mapsharvest.crawler.file_manager",
    "harvest": "mapsharvest.crawler.harvest",
}


# Lazy loading for playwright-dependent modules and for modules that import
# the data model (which itself imports url_utils from this package).
def __getattr__(name):
    """Lazy loading for playwright-dependent names."""
    module_name = _LAZY.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    import importlib

    return getattr(importlib.import_module(module_name), name)


__all__ = [
    # URL utilities (no playwright dependency)
    "domain_of",
    "canonical_item_link",
    "build_search_url",
    "root_url",
    "is_valid_maps_url",
    "is_item_link",
    "parse_coordinates",
    "parse_place_id",
    "parse_relay_url",
    "redact_relay_url",
    # Selectors and ledger (no playwright dependency)
    "CONSENT_SELECTORS",
    "RESULTS_SELECTORS",
    "PLACE_SELECTORS",
    "DedupLedger",
    # Lazy loaded
    *_LAZY.keys(),
]
