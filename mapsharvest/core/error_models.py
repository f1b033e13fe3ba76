"""
Pydantic models for structured error logging.

An ``ErrorRecord`` is one validated row of the error log. Records built from
exceptions are classified automatically: harvest exceptions by type,
third-party ones (Playwright, aiohttp) by name and message.
"""

import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator

from mapsharvest.core.errors import (
    ConsentUnresolved,
    EnrichmentTimeout,
    ExtractionFailure,
    NavigationFailed,
    NavigationTimeout,
    SessionConnectionError,
)
from mapsharvest.core.log_store import json_safe

MAX_MESSAGE_CHARS = 5_000
MAX_STACK_CHARS = 10_000


class ErrorComponent(str, Enum):
    """Harvest components that can generate errors."""
    BOOTSTRAP = "bootstrap"
    NAVIGATION = "navigation"
    COLLECTOR = "collector"
    SCHEDULER = "scheduler"
    ENRICHMENT = "enrichment"
    SINK = "sink"
    CONFIG = "config"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorType(str, Enum):
    """Error categories used for grouping in the log."""
    # Session / browser
    CONNECTION_ERROR = "connection_error"
    BROWSER_ERROR = "browser_error"
    NAVIGATION_ERROR = "navigation_error"
    TIMEOUT = "timeout"
    CONSENT_UNRESOLVED = "consent_unresolved"
    ELEMENT_NOT_FOUND = "element_not_found"

    # Extraction
    EXTRACTION_ERROR = "extraction_error"
    MISSING_FIELD = "missing_field"

    # Enrichment
    HTTP_ERROR = "http_error"
    RATE_LIMIT = "rate_limit"

    # Output
    SINK_ERROR = "sink_error"
    FILE_ERROR = "file_error"

    CONFIG_ERROR = "config_error"
    UNKNOWN = "unknown"


class ErrorStage:
    """Stage names, one per place in the run where errors are logged."""
    # Bootstrap
    LAUNCH_SESSION = "launch_session"
    RELAY_READINESS = "relay_readiness"
    DIRECT_READINESS = "direct_readiness"

    # Navigation / consent
    NAVIGATE_ROOT = "navigate_root"
    NAVIGATE_QUERY = "navigate_query"
    RESOLVE_CONSENT = "resolve_consent"
    WAIT_FOR_RESULTS = "wait_for_results"

    # Collector
    HARVEST_LINKS = "harvest_links"
    SCROLL_ADVANCE = "scroll_advance"
    STALL_RECOVERY = "stall_recovery"

    # Scheduler
    NAVIGATE_ITEM = "navigate_item"
    EXTRACT_ITEM = "extract_item"
    SECONDARY_PASS = "secondary_pass"

    # Enrichment
    LOOKUP = "lookup"
    RECONCILE = "reconcile"

    # Output
    PUSH_RECORD = "push_record"
    CHARGE_EVENT = "charge_event"
    SAVE_ARTIFACT = "save_artifact"

    # Config
    LOAD_CONFIG = "load_config"
    VALIDATE_CONFIG = "validate_config"


# Checked in order; SessionConnectionError is also a ConnectionError and
# TimeoutError is an OSError, so the narrow classes come first.
_CLASSIFIED: Tuple[Tuple[Type[BaseException], ErrorType], ...] = (
    (ConsentUnresolved, ErrorType.CONSENT_UNRESOLVED),
    (NavigationTimeout, ErrorType.TIMEOUT),
    (EnrichmentTimeout, ErrorType.TIMEOUT),
    (TimeoutError, ErrorType.TIMEOUT),
    (SessionConnectionError, ErrorType.CONNECTION_ERROR),
    (NavigationFailed, ErrorType.NAVIGATION_ERROR),
    (ExtractionFailure, ErrorType.EXTRACTION_ERROR),
)

# Errors the run expects and handles; their stack traces add nothing.
_EXPECTED: Tuple[Type[BaseException], ...] = (
    NavigationTimeout,
    ConsentUnresolved,
    ExtractionFailure,
    EnrichmentTimeout,
    TimeoutError,
    ValueError,
)


class ErrorRecord(BaseModel):
    """One error log row, validated before it is written."""
    component: ErrorComponent
    stage: str = Field(..., min_length=1, max_length=100)
    error_type: ErrorType
    severity: ErrorSeverity = ErrorSeverity.ERROR
    domain: str = Field(..., min_length=1, max_length=255, description="Host the error relates to")
    message: str = Field(..., min_length=1)

    run_id: Optional[str] = Field(None, max_length=64)
    url: Optional[str] = Field(None, max_length=2048)
    exception_type: Optional[str] = Field(None, max_length=255)
    stack_trace: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    created_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        use_enum_values=True,
    )

    @field_validator("stage")
    @classmethod
    def normalize_stage(cls, v: str) -> str:
        return v.strip().lower().replace(" ", "_") or "unknown"

    @field_validator("message")
    @classmethod
    def truncate_message(cls, v: str) -> str:
        return v.strip()[:MAX_MESSAGE_CHARS] or "No error message provided"

    @field_validator("metadata")
    @classmethod
    def sanitize_metadata(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        return json_safe(v)

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        component: ErrorComponent,
        stage: str,
        domain: str,
        url: Optional[str] = None,
        run_id: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        error_type: Optional[ErrorType] = None,
        include_stack_trace: Optional[bool] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "ErrorRecord":
        """
        Build a record from an exception, classifying it unless ``error_type``
        is given. Stack traces are kept for CRITICAL errors and for unexpected
        exception types logged at ERROR.

        Example:
            >>> record = ErrorRecord.from_exception(
            ...     NavigationTimeout("item page did not commit"),
            ...     component=ErrorComponent.SCHEDULER,
            ...     stage=ErrorStage.NAVIGATE_ITEM,
            ...     domain="www.google.com",
            ... )
            >>> record.error_type
            'timeout'
        """
        if include_stack_trace is None:
            include_stack_trace = cls._should_include_stack(exc, severity)
        stack_trace = None
        if include_stack_trace:
            stack_trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
            if len(stack_trace) > MAX_STACK_CHARS:
                stack_trace = stack_trace[:MAX_STACK_CHARS] + "\n... (truncated)"

        return cls(
            component=component,
            stage=stage,
            error_type=error_type or cls._classify_exception(exc),
            severity=severity,
            domain=domain or "unknown",
            url=url,
            run_id=run_id,
            message=str(exc) or f"{type(exc).__name__} occurred",
            exception_type=f"{type(exc).__module__}.{type(exc).__name__}",
            stack_trace=stack_trace,
            metadata=metadata or {},
        )

    @staticmethod
    def _classify_exception(exc: BaseException) -> ErrorType:
        for exc_class, error_type in _CLASSIFIED:
            if isinstance(exc, exc_class):
                return error_type

        name = type(exc).__name__.lower()
        module = type(exc).__module__ or ""
        msg = str(exc).lower()
        if "timeout" in name or "timeout" in msg or "timed out" in msg:
            return ErrorType.TIMEOUT
        if "429" in msg or "rate limit" in msg:
            return ErrorType.RATE_LIMIT
        # aiohttp's ClientError family
        if module.startswith("aiohttp") or "http" in name:
            return ErrorType.HTTP_ERROR
        if isinstance(exc, ConnectionError):
            return ErrorType.CONNECTION_ERROR
        if module.startswith("playwright") or "target closed" in msg:
            return ErrorType.BROWSER_ERROR
        if isinstance(exc, OSError):
            return ErrorType.FILE_ERROR
        if "selector" in msg:
            return ErrorType.ELEMENT_NOT_FOUND
        return ErrorType.UNKNOWN

    @staticmethod
    def _should_include_stack(exc: BaseException, severity: ErrorSeverity) -> bool:
        if severity == ErrorSeverity.CRITICAL:
            return True
        if severity != ErrorSeverity.ERROR:
            return False
        return not isinstance(exc, _EXPECTED)
