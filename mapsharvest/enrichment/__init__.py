"""
Secondary enrichment of extracted records (contact emails).

- EmailLookupProvider: plain-HTTP email lookup with aiohttp + BeautifulSoup
- EnrichmentSubsystem: background scheduling and deadline-bounded reconcile
"""

from mapsharvest.enrichment.email_lookup import (
    DEFAULT_CANDIDATE_PATHS,
    EmailLookupProvider,
    extract_emails,
    is_plausible_email,
)
from mapsharvest.enrichment.enricher import EnrichmentSubsystem, EnrichmentSummary

__all__ = [
    "DEFAULT_CANDIDATE_PATHS",
    "EmailLookupProvider",
    "extract_emails",
    "is_plausible_email",
    "EnrichmentSubsystem",
    "EnrichmentSummary",
]
