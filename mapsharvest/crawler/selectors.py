"""Selector sets for the listing application, kept as data.

Every tuple is ordered: earlier entries are tried first. Orchestration code
only iterates these lists, so a markup change means editing this file and
nothing else.
"""

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class ConsentSelectors:
    """Consent redirect page and in-app overlay controls."""

    redirect_url_markers: Tuple[str, ...] = (
        "consent.google.",
        "consent.youtube.",
    )
    accept_buttons: Tuple[str, ...] = (
        'button:has-text("Accept all")',
        'button:has-text("Reject all")',
        'button:has-text("I agree")',
        'button:has-text("Agree")',
        'button:has-text("Aceptar todo")',
        'button:has-text("Tout accepter")',
        'button:has-text("Alle akzeptieren")',
        'button:has-text("Accetta tutto")',
        'button[aria-label*="Accept" i]',
        "#L2AGLb",
        '[data-id="EGeslb"]',
        'form[action*="consent"] button',
        'form[action*="consent"] input[type="submit"]',
    )
    overlay_buttons: Tuple[str, ...] = (
        'button[aria-label*="Accept" i]',
        'button:has-text("Accept all")',
        'button:has-text("Reject all")',
        '[role="dialog"] button:first-of-type',
        '.VfPpkd-LgbsSe[data-mdc-dialog-action="accept"]',
    )
    app_url_pattern: str = r"https?://[^/]*google\.[^/]+/maps"
    app_url_glob: str = "**/maps**"


@dataclass(frozen=True)
class ResultsSelectors:
    """Results feed: item links, scroll containers, end markers, show-more."""

    item_link: str = 'a[href*="/maps/place/"]'
    containers: Tuple[str, ...] = (
        '[role="feed"]',
        ".m6QErb.DxyBCb",
        '[role="main"] [tabindex="-1"]',
        ".m6QErb",
        '[role="main"] div[aria-label]',
    )
    end_markers: Tuple[str, ...] = (".HlvSq", ".PbZDve", ".lXJj5c")
    end_texts: Tuple[str, ...] = ("You've reached the end", "end of list")
    no_results: Tuple[str, ...] = (".Q2vNVc", ".section-no-result-title")
    show_more: Tuple[str, ...] = (
        'button:has-text("More results")',
        'button:has-text("Show more")',
        'button:has-text("Load more")',
        '[role="feed"] button[jsaction*="more"]',
    )


@dataclass(frozen=True)
class PlaceSelectors:
    """Detail page fields; each entry is an ordered candidate list."""

    content_ready: str = "h1"
    name: Tuple[str, ...] = ("h1", '[role="main"] h1', '[role="heading"]')
    rating: Tuple[str, ...] = ('[role="img"][aria-label*="star" i]',)
    review_count: Tuple[str, ...] = ('[aria-label*="review" i]', 'button[aria-label*="review" i]')
    category: Tuple[str, ...] = ('button[jsaction*="category"]',)
    phone: Tuple[str, ...] = ('[data-item-id*="phone"] .Io6YTe', '[data-item-id*="phone"] .rogA2c')
    website: Tuple[str, ...] = ('[data-item-id="authority"] a', 'a[data-item-id="authority"]')
    address: Tuple[str, ...] = ('[data-item-id="address"] .Io6YTe', '[data-item-id="address"] .rogA2c')
    email: Tuple[str, ...] = ('[data-item-id*="email"] .Io6YTe', '[data-item-id*="email"] .rogA2c')
    price: Tuple[str, ...] = ('[aria-label*="Price" i]',)
    description: Tuple[str, ...] = ("div.PYvSYb", ".WeS02d", '[data-attrid="description"]')
    hours: Tuple[str, ...] = ('[data-item-id*="oh"]', '[aria-label*="hours" i]')
    plus_code: Tuple[str, ...] = ('[data-item-id="oloc"] .Io6YTe', '[data-item-id="oloc"] .rogA2c')
    hours_rows: Tuple[str, ...] = ("table.eK4R0e tr", "table.WgFkxc tr", "table tr")
    reviews_tab: Tuple[str, ...] = ('button[role="tab"][aria-label*="review" i]', 'button[aria-label*="review" i]')
    review_item: str = "div[data-review-id], div.jftiEf"
    review_pane: Tuple[str, ...] = (".m6QErb.DxyBCb.kA9KIf", ".m6QErb.DxyBCb", '[role="main"] [tabindex="-1"]')
    review_expand: str = 'button[aria-label="See more"], button.w8nwRe'


CONSENT_SELECTORS = ConsentSelectors()
RESULTS_SELECTORS = ResultsSelectors()
PLACE_SELECTORS = PlaceSelectors()

__all__ = [
    "ConsentSelectors",
    "ResultsSelectors",
    "PlaceSelectors",
    "CONSENT_SELECTORS",
    "RESULTS_SELECTORS",
    "PLACE_SELECTORS",
]
