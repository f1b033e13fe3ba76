"""
Run-wide structured error log.

Every component reports handled failures here as well as to its module
logger, so a run's degradations (relay fallback, unresolved consent, skipped
items, abandoned lookups) can be queried afterwards. Rows go to Supabase when
configured and to ``<log_dir>/errors/errors_YYYYMMDD.jsonl`` otherwise.
"""

from pathlib import Path
from typing import Any, Dict, Optional

from mapsharvest.core.error_models import ErrorComponent, ErrorRecord, ErrorSeverity, ErrorType
from mapsharvest.core.log_store import StructuredLogStore
from mapsharvest.core.logging import get_logger

logger = get_logger(__name__)

ERROR_LOG_TABLE = "harvest_error_logs"

_error_logger: Optional["ErrorLogger"] = None


class ErrorLogger:
    """
    Writes validated ErrorRecords. Neither method ever raises.

    Usage:
        >>> error_logger = get_error_logger()
        >>> error_logger.log_error(
        ...     component=ErrorComponent.NAVIGATION,
        ...     stage=ErrorStage.RESOLVE_CONSENT,
        ...     error_type=ErrorType.CONSENT_UNRESOLVED,
        ...     domain="consent.google.com",
        ...     message="No consent strategy succeeded",
        ... )
    """

    def __init__(
        self,
        fallback_dir: Path,
        supabase_url: Optional[str] = None,
        supabase_key: Optional[str] = None,
        table: str = ERROR_LOG_TABLE,
    ):
        self._store = StructuredLogStore(table, fallback_dir, "errors", supabase_url, supabase_key)

    async def drain(self, timeout_s: float = 5.0) -> int:
        """Wait for rows still being shipped to the database."""
        return await self._store.drain(timeout_s)

    def log_error(
        self,
        component: ErrorComponent,
        stage: str,
        error_type: ErrorType,
        domain: str,
        message: str,
        url: Optional[str] = None,
        run_id: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Log an error that has no exception object behind it."""
        try:
            record = ErrorRecord(
                component=component,
                stage=stage,
                error_type=error_type,
                severity=severity,
                domain=domain or "unknown",
                url=url,
                run_id=run_id,
                message=message,
                metadata=metadata or {},
            )
        except Exception as e:
            logger.error(f"Error logger rejected record: {e} - Original error: {message}")
            return False
        return self._store.append(record.model_dump())

    def log_exception(
        self,
        exc: BaseException,
        component: ErrorComponent,
        stage: str,
        domain: str,
        url: Optional[str] = None,
        run_id: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        error_type: Optional[ErrorType] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Log a caught exception, classified unless ``error_type`` is given.

        Example:
            >>> try:
            ...     await session.navigate(url, timeout_ms=45000)
            ... except Exception as e:
            ...     error_logger.log_exception(
            ...         e,
            ...         component=ErrorComponent.SCHEDULER,
            ...         stage=ErrorStage.NAVIGATE_ITEM,
            ...         domain=domain_of(url),
            ...         url=url,
            ...     )
        """
        try:
            record = ErrorRecord.from_exception(
                exc,
                component=component,
                stage=stage,
                domain=domain,
                url=url,
                run_id=run_id,
                severity=severity,
                error_type=error_type,
                metadata=metadata,
            )
        except Exception as e:
            logger.error(f"Error logger rejected record: {e} - Original exception: {type(exc).__name__}")
            return False
        return self._store.append(record.model_dump())


def get_error_logger() -> ErrorLogger:
    """Global ErrorLogger, built from the global config on first use."""
    global _error_logger
    if _error_logger is None:
        from mapsharvest.core.config import get_config

        config = get_config()
        _error_logger = ErrorLogger(
            fallback_dir=config.log_dir / "errors",
            supabase_url=config.supabase_url,
            supabase_key=config.supabase_service_role_key,
        )
    return _error_logger
