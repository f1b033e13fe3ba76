"""
File I/O for harvest outputs.

This module holds the result and debug sinks, the per-run output directory
layout and the query-file reader used by the CLI.
"""

import json
import re
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from mapsharvest.core.error_logger import get_error_logger
from mapsharvest.core.error_models import ErrorComponent, ErrorSeverity, ErrorStage
from mapsharvest.core.logging import get_logger
from mapsharvest.core.models import ExtractionRecord
from mapsharvest.crawler.url_utils import domain_of
from mapsharvest.utils.date_utils import get_current_timestamp

logger = get_logger(__name__)

EVENT_PLACE_SCRAPED = "place-scraped"
EVENT_REVIEW_SCRAPED = "review-scraped"
EVENT_RUN_STARTED = "run-started"


def run_dir(run_id: str, base_dir: Path = Path("out")) -> Path:
    """
    Output directory for one run, created on demand.

    Example:
        >>> run_dir("3f2c")
        Path('out/3f2c')
    """
    d = Path(base_dir) / run_id
    d.mkdir(parents=True, exist_ok=True)
    return d


class ResultSink(Protocol):
    def push(self, record: ExtractionRecord) -> None:
        ...

    def charge_event(self, name: str, count: int = 1) -> None:
        ...


class JsonlResultSink:
    """
    Appends records to ``out/<run_id>/results.jsonl`` and metered events to
    ``charges.jsonl`` next to it.

    Example:
        >>> sink = JsonlResultSink("3f2c")
        >>> sink.push(record)
        >>> sink.charge_event("place-scraped")
        >>> sink.charges
        {'place-scraped': 1}
    """

    def __init__(self, run_id: str, base_dir: Path = Path("out")):
        self.run_id = run_id
        self.dir = run_dir(run_id, base_dir)
        self.results_path = self.dir / "results.jsonl"
        self.charges_path = self.dir / "charges.jsonl"
        self.pushed = 0
        self.charges: Dict[str, int] = {}

    def push(self, record: ExtractionRecord) -> None:
        with open(self.results_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record.to_dict(), ensure_ascii=False))
            f.write("\n")
        self.pushed += 1

    def charge_event(self, name: str, count: int = 1) -> None:
        if count <= 0:
            return
        self.charges[name] = self.charges.get(name, 0) + count
        with open(self.charges_path, "a", encoding="utf-8") as f:
            json.dump({"event": name, "count": count, "ts": get_current_timestamp()}, f)
            f.write("\n")

    def write_summary(self, summary: Dict[str, Any]) -> Path:
        """Write the run summary (status, counters, charges) as ``summary.json``."""
        payload = dict(summary)
        payload["charges"] = dict(self.charges)
        payload["ts"] = int(time.time())
        path = self.dir / "summary.json"
        path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), "utf-8")
        return path


class DirectoryDebugSink:
    """Saves checkpoint screenshots as numbered PNGs under ``out/<run_id>/debug``."""

    def __init__(self, run_id: str, base_dir: Path = Path("out")):
        self.dir = run_dir(run_id, base_dir) / "debug"
        self.dir.mkdir(parents=True, exist_ok=True)
        self._seq = 0

    def save_artifact(self, label: str, data: bytes) -> Path:
        self._seq += 1
        safe = re.sub(r"[^A-Za-z0-9_.-]+", "-", label).strip("-") or "artifact"
        path = self.dir / f"{self._seq:03d}-{safe[:80]}.png"
        path.write_bytes(data)
        logger.info(f"[debug] saved {path.name}")
        return path


async def capture_checkpoint(session, debug_sink: Optional[DirectoryDebugSink], label: str,
                             run_id: Optional[str] = None) -> Optional[Path]:
    """Screenshot the session into the debug sink. Never raises."""
    if debug_sink is None:
        return None
    try:
        data = await session.screenshot()
        return debug_sink.save_artifact(label, data)
    except Exception as e:
        logger.warning(f"[debug] checkpoint {label} failed: {e}")
        url = session.current_url()
        get_error_logger().log_exception(
            e,
            component=ErrorComponent.SINK,
            stage=ErrorStage.SAVE_ARTIFACT,
            domain=domain_of(url),
            url=url,
            run_id=run_id,
            severity=ErrorSeverity.WARNING,
            metadata={"label": label},
        )
        return None


def read_queries_from_file(path: Path) -> List[str]:
    """
    Read query lines from a text file, one per line.

    Filters out comments (lines starting with #) and duplicates. A line is
    either a maps URL or ``term | location``.

    Example:
        >>> read_queries_from_file(Path("queries.txt"))
        ['coffee | Berlin', 'https://www.google.com/maps/search/pizza']
    """
    out: List[str] = []
    seen = set()
    for line in Path(path).read_text("utf-8").splitlines():
        s = line.strip()
        if s and not s.startswith("#") and s not in seen:
            seen.add(s)
            out.append(s)
    return out
