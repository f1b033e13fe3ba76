"""
Post-extraction record filters (minimum rating, open/closed status).
"""

from typing import Iterable, List, Optional

from mapsharvest.core.models import ExtractionRecord

STATUS_OPEN = "open"
STATUS_CLOSED_PERMANENT = "closed_permanent"
STATUS_CLOSED_TEMPORARY = "closed_temporary"

VALID_STATUSES = {STATUS_OPEN, STATUS_CLOSED_PERMANENT, STATUS_CLOSED_TEMPORARY}


def filter_by_rating(records: Iterable[ExtractionRecord], min_rating: Optional[float]) -> List[ExtractionRecord]:
    """
    Keep records whose rating is at least ``min_rating``.

    Records without a rating are dropped once a minimum is set.
    """
    records = list(records)
    if not min_rating:
        return records
    out = []
    for r in records:
        rating = r.fields.get("rating")
        if isinstance(rating, (int, float)) and rating >= min_rating:
            out.append(r)
    return out


def filter_by_status(records: Iterable[ExtractionRecord], status: Optional[str]) -> List[ExtractionRecord]:
    """Keep records matching an open/closed status; unknown statuses keep everything."""
    records = list(records)
    if not status:
        return records

    def _keep(r: ExtractionRecord) -> bool:
        permanent = bool(r.fields.get("permanently_closed"))
        temporary = bool(r.fields.get("temporarily_closed"))
        if status == STATUS_OPEN:
            return not permanent and not temporary
        if status == STATUS_CLOSED_PERMANENT:
            return permanent
        if status == STATUS_CLOSED_TEMPORARY:
            return temporary
        return True

    return [r for r in records if _keep(r)]
