"""
Run progress log: one structured row per major step, correlated by run_id.

Each step is also echoed to the module logger as a one-line description.
"""

import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from mapsharvest.core.log_store import StructuredLogStore
from mapsharvest.core.logging import get_logger
from mapsharvest.core.process_models import ProcessLogRecord, ProcessStatus, ProcessStep, get_step_description

logger = get_logger(__name__)

PROCESS_LOG_TABLE = "harvest_process_logs"

_process_logger: Optional["ProcessLogger"] = None


class ProcessLogger:
    """
    Usage:
        >>> process_logger = get_process_logger()
        >>> run_id = ProcessLogger.generate_run_id()
        >>> process_logger.log_step(run_id, ProcessStep.RUN_START, metadata={"queries": 3})
    """

    def __init__(
        self,
        fallback_dir: Path,
        supabase_url: Optional[str] = None,
        supabase_key: Optional[str] = None,
        table: str = PROCESS_LOG_TABLE,
    ):
        self._store = StructuredLogStore(table, fallback_dir, "process", supabase_url, supabase_key)

    async def drain(self, timeout_s: float = 5.0) -> int:
        return await self._store.drain(timeout_s)

    @staticmethod
    def generate_run_id() -> str:
        return str(uuid.uuid4())

    def log_step(
        self,
        run_id: str,
        step: ProcessStep,
        query: str = "-",
        started_at: Optional[str] = None,
        completed_at: Optional[str] = None,
        status: ProcessStatus = ProcessStatus.SUCCESS,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Record one step. Never raises; returns whether the row was stored."""
        metadata = metadata or {}
        try:
            record = ProcessLogRecord(
                run_id=run_id,
                step=step,
                query=query,
                started_at=started_at or datetime.now(timezone.utc).isoformat(),
                completed_at=completed_at,
                status=status,
                metadata=metadata,
            )
            record.duration_seconds = record.calculate_duration()
        except Exception as e:
            logger.error(f"Process logger rejected step {step}: {e}")
            return False

        logger.info(f"[Process] {record.query} | {record.step} | {get_step_description(step, **metadata)}")
        return self._store.append(record.model_dump())


def get_process_logger() -> ProcessLogger:
    """Global ProcessLogger, built from the global config on first use."""
    global _process_logger
    if _process_logger is None:
        from mapsharvest.core.config import get_config

        config = get_config()
        _process_logger = ProcessLogger(
            fallback_dir=config.log_dir / "process",
            supabase_url=config.supabase_url,
            supabase_key=config.supabase_service_role_key,
        )
    return _process_logger
