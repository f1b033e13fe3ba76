"""
Unit tests for place-page field parsing and the default extractor.
"""

import asyncio

import pytest

from mapsharvest.crawler.extractor import (
    COUNT_JS,
    HOURS_TABLE_JS,
    RAW_FIELDS_JS,
    REVIEWS_JS,
    PlaceExtractor,
    build_fields,
    clean_email,
    parse_hours_label,
    parse_price_level,
    parse_rating,
    parse_review_count,
)
from mapsharvest.crawler.selectors import PLACE_SELECTORS
from tests.fakes import FakeSession

PLACE_URL = "https://www.google.com/maps/place/Cafe+Luna/@52.5200,13.4050,17z/data=!3m1!1s0x47a851:0x9c2e"


class TestParsers:
    """Tests for the raw-string parsers."""

    @pytest.mark.parametrize("label,expected", [
        ("4.6 stars", 4.6),
        ("4,6 Sterne", 4.6),
        ("Rated 5 out of 5", 5.0),
        ("", None),
        ("no rating", None),
    ])
    def test_parse_rating(self, label, expected):
        """Test rating labels in several locales."""
        assert parse_rating(label) == expected

    def test_parse_review_count(self):
        """Test the first '<n> reviews' label wins and separators are dropped."""
        assert parse_review_count(["Directions", "1,284 reviews", "12 reviews"]) == 1284
        assert parse_review_count(["Share"]) is None
        assert parse_review_count([]) is None

    def test_parse_price_level(self):
        """Test currency symbols are pulled out of price labels."""
        assert parse_price_level("Price: Moderate $$") == "$$"
        assert parse_price_level("€€€") == "€€€"
        assert parse_price_level("") is None

    def test_parse_hours_label(self):
        """Test hours labels become a day -> hours mapping."""
        label = "Monday, 9 AM to 5 PM; Tuesday, Closed."
        assert parse_hours_label(label) == {"Monday": "9 AM to 5 PM", "Tuesday": "Closed"}

    def test_parse_hours_label_fallback(self):
        """Test labels without day/time pairs are kept as-is."""
        assert parse_hours_label("Open 24 hours") == "Open 24 hours"
        assert parse_hours_label("") is None

    def test_clean_email(self):
        """Test mailto prefixes and query strings are stripped."""
        assert clean_email("MAILTO:Info@Cafe.de?subject=hi") == "info@cafe.de"
        assert clean_email("") == ""


class TestBuildFields:
    """Tests for build_fields."""

    def test_full_record(self):
        """Test raw values become the normalized field mapping."""
        raw = {
            "name": "  Cafe Luna ",
            "rating_label": "4.6 stars",
            "review_labels": ["312 reviews"],
            "category": "Coffee shop",
            "phone": "+49 30 1234567",
            "website": "https://cafe-luna.de/",
            "address": "Torstr. 1, Berlin",
            "email": "",
            "mailto": "mailto:hello@cafe-luna.de",
            "price_raw": "Price: Inexpensive €",
            "hours_label": "Monday, 8 AM to 6 PM",
            "plus_code": "G9C3+2X Berlin",
            "permanently_closed": False,
            "temporarily_closed": True,
        }
        fields = build_fields(raw, PLACE_URL)

        assert fields["name"] == "Cafe Luna"
        assert fields["rating"] == 4.6
        assert fields["review_count"] == 312
        assert fields["email"] == "hello@cafe-luna.de"
        assert fields["price_level"] == "€"
        assert fields["opening_hours"] == {"Monday": "8 AM to 6 PM"}
        assert fields["temporarily_closed"] is True
        assert fields["permanently_closed"] is False
        assert fields["coordinates"] == {"latitude": 52.52, "longitude": 13.405}
        assert fields["place_id"] == "0x47a851:0x9c2e"

    def test_missing_values_are_none(self):
        """Test absent raw values map to None rather than empty strings."""
        fields = build_fields({"name": "X"}, "https://www.google.com/maps/place/X")
        assert fields["website"] is None
        assert fields["email"] is None
        assert fields["rating"] is None
        assert fields["opening_hours"] is None
        assert fields["coordinates"] is None


class TestPlaceExtractor:
    """Tests for PlaceExtractor against a scripted session."""

    def test_extract(self):
        """Test a single evaluate is turned into fields for the current URL."""
        session = FakeSession(url=PLACE_URL)
        session.evaluate_handlers[RAW_FIELDS_JS] = lambda cfg: {"name": "Cafe Luna", "website": "cafe-luna.de"}

        fields = asyncio.run(PlaceExtractor().extract(session))
        assert fields["name"] == "Cafe Luna"
        assert fields["website"] == "cafe-luna.de"
        assert fields["coordinates"]["latitude"] == 52.52

    def test_extract_nothing(self):
        """Test an empty evaluate result yields None."""
        session = FakeSession(url=PLACE_URL)
        assert asyncio.run(PlaceExtractor().extract(session)) is None

    def test_opening_hours_pass(self):
        """Test the hours section is expanded and the weekly table read."""
        session = FakeSession(url=PLACE_URL)
        session.visible = [PLACE_SELECTORS.hours[0]]
        session.evaluate_handlers[HOURS_TABLE_JS] = {"Monday": "8 AM-6 PM", "Sunday": "Closed"}

        schedule = asyncio.run(PlaceExtractor().extract_opening_hours(session))
        assert schedule == {"Monday": "8 AM-6 PM", "Sunday": "Closed"}

    def test_opening_hours_without_control(self):
        """Test None when the hours control is not on the page."""
        session = FakeSession(url=PLACE_URL)
        assert asyncio.run(PlaceExtractor().extract_opening_hours(session)) is None

    def test_reviews_pass(self):
        """Test reviews are read, normalized and entries without content dropped."""
        session = FakeSession(url=PLACE_URL)
        session.visible = [PLACE_SELECTORS.reviews_tab[0]]
        session.evaluate_handlers[COUNT_JS] = 5
        session.evaluate_handlers[REVIEWS_JS] = [
            {"review_id": "r1", "author": "Ana", "rating_label": "5 stars", "text": "Great", "date": "a week ago"},
            {"review_id": "r2", "author": "", "rating_label": "", "text": ""},
            {"author": "Ben", "rating_label": "3 stars", "text": "", "date": "2 months ago"},
        ]

        reviews = asyncio.run(PlaceExtractor().extract_reviews(session, 3))
        assert [r["author"] for r in reviews] == ["Ana", "Ben"]
        assert reviews[0]["rating"] == 5
        assert reviews[1]["review_id"] is None

    def test_reviews_disabled(self):
        """Test a zero limit skips the pass entirely."""
        session = FakeSession(url=PLACE_URL)
        assert asyncio.run(PlaceExtractor().extract_reviews(session, 0)) == []
        assert session.clicks == []
