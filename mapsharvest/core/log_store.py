"""
Append-only storage for structured log rows.

Rows are inserted into a Supabase table when credentials are configured.
Without credentials, or whenever an insert fails, they are appended to a dated
JSONL file (``<prefix>_YYYYMMDD.jsonl``) under the fallback directory.
``append`` never raises: losing a log row must not take a run down.

Inside a running event loop, database inserts are handed to the loop's default
executor so a slow round-trip never stalls concurrent work; ``drain()`` waits
for the rows still in flight.
"""

import asyncio
import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Set

from mapsharvest.core.logging import get_logger
from mapsharvest.utils.date_utils import format_date

logger = get_logger(__name__)


def json_safe(metadata: Dict[str, Any]) -> Dict[str, Any]:
    """Stringify metadata values that json cannot encode."""
    out = {}
    for key, value in metadata.items():
        try:
            json.dumps(value)
            out[key] = value
        except (TypeError, ValueError):
            out[key] = str(value)
    return out


class StructuredLogStore:
    """One table (or one family of dated JSONL files) of structured rows."""

    def __init__(
        self,
        table: str,
        fallback_dir: Path,
        file_prefix: str,
        supabase_url: Optional[str] = None,
        supabase_key: Optional[str] = None,
    ):
        self.table = table
        self.file_prefix = file_prefix
        self.fallback_dir = Path(fallback_dir)
        self.fallback_dir.mkdir(exist_ok=True, parents=True)
        self._client = None
        self._pending: Set[asyncio.Future] = set()
        self._file_lock = threading.Lock()
        if supabase_url and supabase_key:
            self._connect(supabase_url, supabase_key)
        else:
            logger.debug(f"{table}: Supabase credentials missing, using file fallback")

    def _connect(self, url: str, key: str) -> None:
        try:
            from supabase import create_client

            self._client = create_client(url, key)
            logger.info(f"{self.table}: logging to Supabase")
        except Exception as e:
            logger.warning(f"{self.table}: Supabase init failed ({e}), using file fallback")

    @property
    def uses_database(self) -> bool:
        return self._client is not None

    def file_path(self, when: Optional[datetime] = None) -> Path:
        stamp = format_date(when or datetime.now(timezone.utc))
        return self.fallback_dir / f"{self.file_prefix}_{stamp}.jsonl"

    @property
    def in_flight(self) -> int:
        return len(self._pending)

    def append(self, row: Dict[str, Any]) -> bool:
        """Store one row; True when it landed somewhere or was queued for the database."""
        if self._client is None:
            return self._append_file(row)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return self._insert(row)

        future = loop.run_in_executor(None, self._insert, row)
        self._pending.add(future)
        future.add_done_callback(self._pending.discard)
        return True

    async def drain(self, timeout_s: float = 5.0) -> int:
        """Wait up to ``timeout_s`` for queued inserts; returns how many are still in flight."""
        pending = list(self._pending)
        if not pending:
            return 0
        _, not_done = await asyncio.wait(pending, timeout=timeout_s)
        if not_done:
            logger.warning(f"{self.table}: {len(not_done)} rows still in flight after {timeout_s}s")
        return len(not_done)

    def _insert(self, row: Dict[str, Any]) -> bool:
        try:
            self._client.table(self.table).insert(row).execute()
            return True
        except Exception as e:
            logger.warning(f"{self.table}: insert failed ({e}), writing to file")
        return self._append_file(row)

    def _append_file(self, row: Dict[str, Any]) -> bool:
        try:
            with self._file_lock, open(self.file_path(), "a", encoding="utf-8") as f:
                f.write(json.dumps(row, default=str) + "\n")
            return True
        except OSError as e:
            logger.error(f"{self.table}: file write failed: {e}")
            return False
