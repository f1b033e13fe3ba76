"""
Process log model: run_start, session_ready, then query_start,
links_collected, extraction_complete and enrichment_complete per query,
and finally run_complete.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from mapsharvest.core.log_store import json_safe


class ProcessStep(str, Enum):
    RUN_START = "run_start"
    SESSION_READY = "session_ready"
    QUERY_START = "query_start"
    LINKS_COLLECTED = "links_collected"
    EXTRACTION_COMPLETE = "extraction_complete"
    ENRICHMENT_COMPLETE = "enrichment_complete"
    RUN_COMPLETE = "run_complete"


class ProcessStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProcessLogRecord(BaseModel):
    """One step of one run; ``query`` is "-" for run-level steps."""
    run_id: str = Field(..., min_length=1)
    step: ProcessStep
    query: str = Field(default="-", max_length=500)

    started_at: str = Field(default_factory=_utc_now)
    completed_at: Optional[str] = None
    duration_seconds: Optional[float] = Field(None, ge=0)

    status: ProcessStatus = ProcessStatus.SUCCESS
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Counts, budgets, stop reasons")
    created_at: str = Field(default_factory=_utc_now)

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        use_enum_values=True,
    )

    @field_validator("query", mode="before")
    @classmethod
    def default_query(cls, v: Optional[str]) -> str:
        return (v or "").strip()[:500] or "-"

    @field_validator("metadata")
    @classmethod
    def sanitize_metadata(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        return json_safe(v)

    def calculate_duration(self) -> Optional[float]:
        """Seconds between started_at and completed_at; None while the step is open."""
        if not self.completed_at:
            return None
        try:
            start = datetime.fromisoformat(self.started_at.replace("Z", "+00:00"))
            end = datetime.fromisoformat(self.completed_at.replace("Z", "+00:00"))
        except ValueError:
            return None
        return round((end - start).total_seconds(), 3)


STEP_DESCRIPTIONS = {
    ProcessStep.RUN_START: "Starting harvest of {queries} queries",
    ProcessStep.SESSION_READY: "Session ready ({mode})",
    ProcessStep.QUERY_START: "Query {position} started, allowance {allowance_ms}ms",
    ProcessStep.LINKS_COLLECTED: "Collected {links} links ({stop_reason})",
    ProcessStep.EXTRACTION_COMPLETE: "Extracted {extracted}/{attempted} items",
    ProcessStep.ENRICHMENT_COMPLETE: "Enrichment resolved {resolved}, abandoned {timed_out}",
    ProcessStep.RUN_COMPLETE: "Run finished: {status}, {records} records",
}


def get_step_description(step: ProcessStep, **kwargs) -> str:
    """Step description filled from metadata; the raw template if keys are missing."""
    template = STEP_DESCRIPTIONS.get(step, str(step))
    try:
        return template.format(**kwargs)
    except (KeyError, ValueError, IndexError):
        return template
