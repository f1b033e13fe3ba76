"""Run-wide ledger of item links that were already extracted."""

from typing import Iterator, Optional, Set

from mapsharvest.crawler.url_utils import canonical_item_link


class DedupLedger:
    """
    Append-only set of canonical item links, shared by every query in a run.

    Links are marked only after a successful extraction, so a link whose
    extraction failed can still be picked up by a later query.

    Example:
        >>> ledger = DedupLedger()
        >>> ledger.mark("https://www.google.com/maps/place/Cafe?authuser=0")
        >>> ledger.seen("https://WWW.google.com/maps/place/Cafe")
        True
    """

    def __init__(self):
        self._links: Set[str] = set()

    @staticmethod
    def _key(link: str) -> Optional[str]:
        return canonical_item_link(link)

    def seen(self, link: str) -> bool:
        key = self._key(link)
        return key is not None and key in self._links

    def mark(self, link: str) -> None:
        key = self._key(link)
        if key is None:
            raise ValueError(f"cannot mark an empty or invalid link: {link!r}")
        self._links.add(key)

    def __contains__(self, link: object) -> bool:
        return isinstance(link, str) and self.seen(link)

    def __len__(self) -> int:
        return len(self._links)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._links))
