"""
Default field extractor for a loaded listing detail page.

The browser side only gathers raw strings (text content, aria labels, hrefs)
for each field, using the candidate selector lists in ``selectors.py``. All
parsing of those strings happens here in Python so it can be tested without a
browser. The orchestrator treats the extractor as a black box: it only checks
that ``name`` is present.
"""

import math
import re
from typing import Any, Dict, List, Optional, Protocol, Union

from mapsharvest.core.logging import get_logger
from mapsharvest.crawler.selectors import PLACE_SELECTORS, PlaceSelectors
from mapsharvest.crawler.url_utils import parse_coordinates, parse_place_id

logger = get_logger(__name__)

RAW_FIELDS_JS = """
(cfg) => {
  const first = (sels) => {
    for (const s of sels) {
      try {
        const el = document.querySelector(s);
        if (el) return el;
      } catch (e) {}
    }
    return null;
  };
  const text = (sels) => (first(sels)?.textContent || '').trim();
  const attr = (sels, name) => (first(sels)?.getAttribute(name) || '').trim();

  const r = {};
  r.name = text(cfg.name);
  r.rating_label = attr(cfg.rating, 'aria-label');
  r.review_labels = [];
  for (const s of cfg.review_count) {
    document.querySelectorAll(s).forEach(el => r.review_labels.push(el.getAttribute('aria-label') || ''));
  }
  r.category = text(cfg.category);
  r.phone = text(cfg.phone);
  r.website = attr(cfg.website, 'href');
  r.address = text(cfg.address);
  r.email = text(cfg.email);
  const mailto = document.querySelector('a[href^="mailto:"]');
  r.mailto = mailto ? mailto.getAttribute('href') : '';
  const price = first(cfg.price);
  r.price_raw = price ? ((price.getAttribute('aria-label') || '') + ' ' + (price.textContent || '')).trim() : '';
  r.description = text(cfg.description);

  r.hours_label = '';
  r.hours_status = '';
  const oh = first(cfg.hours);
  if (oh) {
    let el = oh;
    for (let i = 0; i < 5 && el; i++) {
      const al = el.getAttribute('aria-label') || '';
      if (al.includes(',') && /AM|PM|am|pm|Open|Closed/.test(al)) { r.hours_label = al; break; }
      el = el.parentElement;
    }
    r.hours_status = (oh.querySelector('.fontBodyMedium')?.textContent || '').trim();
  }
  r.plus_code = text(cfg.plus_code);
  const body = document.body ? document.body.innerText || '' : '';
  r.permanently_closed = body.includes('Permanently closed');
  r.temporarily_closed = body.includes('Temporarily closed');
  return r;
}
"""

HOURS_TABLE_JS = """
(rowsSel) => {
  const schedule = {};
  for (const s of rowsSel) {
    document.querySelectorAll(s).forEach(row => {
      const cells = row.querySelectorAll('td, th');
      if (cells.length >= 2) {
        const day = (cells[0].textContent || '').trim();
        const time = (cells[1].textContent || '').trim();
        if (day) schedule[day] = time;
      }
    });
    if (Object.keys(schedule).length) return schedule;
  }
  return null;
}
"""

COUNT_JS = "(sel) => document.querySelectorAll(sel).length"

SCROLL_PANE_JS = """
(panes) => {
  for (const s of panes) {
    const c = document.querySelector(s);
    if (c && c.scrollHeight > c.clientHeight) { c.scrollBy(0, 800); return true; }
  }
  return false;
}
"""

EXPAND_REVIEWS_JS = """
(sel) => {
  const btns = Array.from(document.querySelectorAll(sel)).slice(0, 20);
  btns.forEach(b => b.click());
  return btns.length;
}
"""

REVIEWS_JS = """
(cfg) => {
  const els = document.querySelectorAll(cfg.item);
  const out = [];
  for (let i = 0; i < Math.min(els.length, cfg.limit); i++) {
    const el = els[i];
    const author = el.querySelector('button[data-href*="/maps/contrib/"]') || el.querySelector('.d4r55');
    const star = el.querySelector('[role="img"][aria-label*="star" i]');
    const body = el.querySelector('.wiI7pd') || el.querySelector('div[tabindex="-1"][id][lang]') || el.querySelector('.MyEned span');
    const date = el.querySelector('.rsqaWe');
    out.push({
      review_id: el.getAttribute('data-review-id') || '',
      author: (author?.textContent || '').trim(),
      rating_label: star ? (star.getAttribute('aria-label') || '') : '',
      text: (body?.textContent || '').trim(),
      date: (date?.textContent || '').trim(),
    });
  }
  return out;
}
"""

_NUMBER_RE = re.compile(r"(\d+(?:[.,]\d+)?)")
_REVIEW_COUNT_RE = re.compile(r"([\d,.\s]+)\s*review", re.I)
_PRICE_RE = re.compile(r"([$€£¥]{1,4})")


def parse_rating(label: str) -> Optional[float]:
    """
    Example:
        >>> parse_rating("4,6 stars")
        4.6
        >>> parse_rating("") is None
        True
    """
    m = _NUMBER_RE.search(label or "")
    if not m:
        return None
    try:
        return float(m.group(1).replace(",", "."))
    except ValueError:
        return None


def parse_review_count(labels: List[str]) -> Optional[int]:
    """
    First "<n> reviews" label wins.

    Example:
        >>> parse_review_count(["Directions", "1,284 reviews"])
        1284
    """
    for label in labels or []:
        m = _REVIEW_COUNT_RE.search(label or "")
        if m:
            digits = re.sub(r"\D", "", m.group(1))
            if digits:
                return int(digits)
    return None


def parse_price_level(raw: str) -> Optional[str]:
    """
    Example:
        >>> parse_price_level("Price: Moderate $$")
        '$$'
    """
    if not raw:
        return None
    m = _PRICE_RE.search(raw)
    return m.group(1) if m else raw.strip() or None


def parse_hours_label(label: str) -> Union[Dict[str, str], str, None]:
    """
    Turn an hours aria-label into a day -> hours mapping.

    Falls back to the raw label when no day/time pairs are found.

    Example:
        >>> parse_hours_label("Monday, 9 AM to 5 PM; Tuesday, Closed")
        {'Monday': '9 AM to 5 PM', 'Tuesday': 'Closed'}
    """
    if not label:
        return None
    schedule: Dict[str, str] = {}
    for part in (p.strip() for p in label.split(";")):
        day, sep, hours = part.partition(",")
        if sep and day.strip():
            schedule[day.strip()] = hours.strip().rstrip(".")
    return schedule or label


def clean_email(raw: str) -> str:
    """
    Example:
        >>> clean_email("mailto:Info@Cafe.de?subject=hi")
        'info@cafe.de'
    """
    value = re.sub(r"^mailto:", "", (raw or "").strip(), flags=re.I)
    return value.split("?")[0].strip().lower()


def build_fields(raw: Dict[str, Any], url: str) -> Dict[str, Any]:
    """Normalize the raw browser-side values into the record's field mapping."""
    hours = parse_hours_label(raw.get("hours_label") or "") or (raw.get("hours_status") or None)
    email = clean_email(raw.get("email") or "") or clean_email(raw.get("mailto") or "")
    return {
        "name": (raw.get("name") or "").strip(),
        "rating": parse_rating(raw.get("rating_label") or ""),
        "review_count": parse_review_count(raw.get("review_labels") or []),
        "category": raw.get("category") or None,
        "phone": raw.get("phone") or None,
        "website": raw.get("website") or None,
        "address": raw.get("address") or None,
        "email": email or None,
        "price_level": parse_price_level(raw.get("price_raw") or ""),
        "description": raw.get("description") or None,
        "opening_hours": hours,
        "plus_code": raw.get("plus_code") or None,
        "permanently_closed": bool(raw.get("permanently_closed")),
        "temporarily_closed": bool(raw.get("temporarily_closed")),
        "coordinates": parse_coordinates(url),
        "place_id": parse_place_id(url),
    }


class FieldExtractor(Protocol):
    async def extract(self, session) -> Optional[Dict[str, Any]]:
        ...


class PlaceExtractor:
    """
    Selector-driven extractor for listing detail pages.

    ``extract`` is a single evaluate; the secondary passes are separate calls
    so the scheduler can skip them when time runs short.

    Example:
        >>> extractor = PlaceExtractor()
        >>> # fields = await extractor.extract(session)
        >>> # fields["name"], fields["rating"]
    """

    def __init__(self, selectors: PlaceSelectors = PLACE_SELECTORS):
        self.selectors = selectors

    def _cfg(self) -> Dict[str, Any]:
        s = self.selectors
        return {
            "name": list(s.name),
            "rating": list(s.rating),
            "review_count": list(s.review_count),
            "category": list(s.category),
            "phone": list(s.phone),
            "website": list(s.website),
            "address": list(s.address),
            "email": list(s.email),
            "price": list(s.price),
            "description": list(s.description),
            "hours": list(s.hours),
            "plus_code": list(s.plus_code),
        }

    async def extract(self, session) -> Optional[Dict[str, Any]]:
        raw = await session.evaluate(RAW_FIELDS_JS, self._cfg())
        if not raw:
            return None
        return build_fields(raw, session.current_url())

    async def extract_opening_hours(self, session) -> Optional[Dict[str, str]]:
        """Expand the hours section and read the full weekly table."""
        clicked = await session.click_first_visible(self.selectors.hours, probe_ms=1000)
        if not clicked:
            return None
        await session.sleep(1000)
        schedule = await session.evaluate(HOURS_TABLE_JS, list(self.selectors.hours_rows))
        return schedule or None

    async def extract_reviews(self, session, limit: int) -> List[Dict[str, Any]]:
        """Open the reviews tab, scroll until ``limit`` reviews are loaded and read them."""
        if limit <= 0:
            return []
        clicked = await session.click_first_visible(self.selectors.reviews_tab, probe_ms=1000)
        if not clicked:
            return []
        await session.sleep(2000)
        await session.wait_for_selector(self.selectors.review_item, timeout_ms=5000)

        for _ in range(min(math.ceil(limit / 3), 15)):
            count = await session.evaluate(COUNT_JS, self.selectors.review_item) or 0
            if count >= limit:
                break
            await session.evaluate(SCROLL_PANE_JS, list(self.selectors.review_pane))
            await session.sleep(1200)

        await session.evaluate(EXPAND_REVIEWS_JS, self.selectors.review_expand)
        await session.sleep(500)

        raw = await session.evaluate(REVIEWS_JS, {"item": self.selectors.review_item, "limit": limit}) or []
        reviews = []
        for r in raw:
            if not (r.get("author") or r.get("text")):
                continue
            rating = parse_rating(r.get("rating_label") or "")
            reviews.append({
                "review_id": r.get("review_id") or None,
                "author": r.get("author") or "",
                "rating": int(rating) if rating is not None else None,
                "text": r.get("text") or "",
                "date": r.get("date") or "",
            })
        logger.debug(f"[extract] {len(reviews)} reviews")
        return reviews
