"""
Data model for a harvest run: queries, extraction records, enrichment jobs
and the final run report.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from mapsharvest.crawler.url_utils import build_search_url, is_valid_maps_url
from mapsharvest.utils.date_utils import get_current_timestamp


class Query(BaseModel):
    """
    One unit of search work: a term plus location hint, or a direct URL.

    Example:
        >>> Query(term="coffee", location="Berlin").label
        'coffee in Berlin'
        >>> Query(url="https://www.google.com/maps/search/pizza").label
        'https://www.google.com/maps/search/pizza'
    """
    term: Optional[str] = None
    location: Optional[str] = None
    url: Optional[str] = None

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    @field_validator("term", "location", "url")
    @classmethod
    def empty_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def check_one_form(self) -> "Query":
        if self.url and self.term:
            raise ValueError("a query is either a term or a direct url, not both")
        if not self.url and not self.term:
            raise ValueError("a query needs a search term or a direct url")
        if self.term and not self.location:
            raise ValueError("location is required when using a search term")
        if self.url and not is_valid_maps_url(self.url):
            raise ValueError(f"not a maps url: {self.url}")
        return self

    @property
    def is_direct(self) -> bool:
        return self.url is not None

    @property
    def label(self) -> str:
        if self.url:
            return self.url
        return f"{self.term} in {self.location}"

    def target_url(self, language: str = "en") -> str:
        if self.url:
            return self.url
        return build_search_url(self.term, self.location, language)


class ExtractionRecord(BaseModel):
    """
    Output unit: extractor fields plus metadata added by the scheduler.

    Only ``emails`` (the secondary attribute) may change after the record is
    appended to the run's result list.
    """
    fields: Dict[str, Any] = Field(default_factory=dict)
    source_link: str
    query_label: str
    extracted_at: str = Field(default_factory=get_current_timestamp)
    emails: List[str] = Field(default_factory=list)
    lookup_key: Optional[str] = None

    @property
    def name(self) -> str:
        return str(self.fields.get("name") or "")

    @property
    def review_count(self) -> int:
        reviews = self.fields.get("reviews") or []
        return len(reviews) if isinstance(reviews, list) else 0

    @property
    def needs_enrichment(self) -> bool:
        return not self.emails and bool(self.lookup_key)

    def to_dict(self) -> Dict[str, Any]:
        out = dict(self.fields)
        out["url"] = self.source_link
        out["query"] = self.query_label
        out["emails"] = list(self.emails)
        out["scraped_at"] = self.extracted_at
        return out


class EnrichmentOutcome(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


@dataclass
class EnrichmentJob:
    """One in-flight secondary lookup bound to a result-list index."""

    record_index: int
    lookup_key: str
    task: Optional["asyncio.Task"] = None
    outcome: EnrichmentOutcome = EnrichmentOutcome.PENDING
    values: List[str] = field(default_factory=list)


class RunStatus(str, Enum):
    COMPLETED = "completed"
    COMPLETED_PARTIAL = "completed_partial"
    FAILED = "failed"


@dataclass
class QueryOutcome:
    """Counters for one query; the run report keeps one per query in input order."""

    label: str
    candidates: int = 0
    trimmed_to: int = 0
    attempted: int = 0
    extracted: int = 0
    skipped_duplicates: int = 0
    failures: int = 0
    enriched: int = 0
    enrichment_abandoned: int = 0
    collect_stop_reason: str = ""
    deadline_hit: bool = False
    skipped: bool = False
    note: str = ""

    @property
    def partial(self) -> bool:
        return self.skipped or self.deadline_hit or self.trimmed_to < self.candidates - self.skipped_duplicates


@dataclass
class RunReport:
    run_id: str
    status: RunStatus = RunStatus.COMPLETED
    records: List[ExtractionRecord] = field(default_factory=list)
    queries: List[QueryOutcome] = field(default_factory=list)
    error: Optional[str] = None
    elapsed_ms: float = 0.0

    def summary(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "records": len(self.records),
            "queries": len(self.queries),
            "partial_queries": sum(1 for q in self.queries if q.partial),
            "error": self.error,
            "elapsed_ms": round(self.elapsed_ms),
        }
