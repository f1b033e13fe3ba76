"""
Unit tests for website email lookup.
"""

import asyncio

import pytest

from mapsharvest.enrichment.email_lookup import (
    EmailLookupProvider,
    candidate_urls,
    extract_emails,
    is_plausible_email,
)


class PagesProvider(EmailLookupProvider):
    """Provider serving canned HTML instead of fetching over the network."""

    def __init__(self, pages):
        super().__init__()
        self.pages = pages
        self.fetched = []

    async def _fetch(self, url, timeout_ms):
        self.fetched.append(url)
        return self.pages.get(url)


class TestEmailParsing:
    """Tests for email extraction from HTML."""

    @pytest.mark.parametrize("email,expected", [
        ("hello@cafe-luna.de", True),
        ("logo@2x.png", False),
        ("user@example.com", False),
        ("bundle@site.js", False),
        ("not-an-email", False),
        ("a" * 90 + "@x.de", False),
    ])
    def test_is_plausible_email(self, email, expected):
        """Test placeholders, asset names and overlong matches are rejected."""
        assert is_plausible_email(email) is expected

    def test_mailto_and_text(self):
        """Test mailto links and plain-text addresses are both found, in order."""
        html = """
        <html><body>
          <a href="mailto:Info@Cafe-Luna.de?subject=Hallo">Write us</a>
          <p>Events: events@cafe-luna.de</p>
          <img src="hero@2x.png">
          <p>Again: info@cafe-luna.de</p>
        </body></html>
        """
        assert extract_emails(html) == ["info@cafe-luna.de", "events@cafe-luna.de"]

    def test_empty_html(self):
        """Test empty pages give no emails."""
        assert extract_emails("") == []


class TestCandidateUrls:
    """Tests for candidate URL generation."""

    def test_bare_domain(self):
        """Test a bare domain gets https and the contact paths."""
        assert candidate_urls("cafe-luna.de") == [
            "https://cafe-luna.de",
            "https://cafe-luna.de/contact",
            "https://cafe-luna.de/contact-us",
        ]

    def test_full_url_keeps_scheme(self):
        """Test an http website keeps its scheme and contact paths resolve from the root."""
        urls = candidate_urls("http://cafe-luna.de/menu", ("", "/kontakt"))
        assert urls == ["http://cafe-luna.de/menu", "http://cafe-luna.de/kontakt"]

    def test_empty_key(self):
        """Test an empty key gives nothing to fetch."""
        assert candidate_urls("  ") == []


class TestLookup:
    """Tests for EmailLookupProvider.lookup."""

    def test_first_page_with_hits_wins(self):
        """Test the lookup stops at the first page that yields an address."""
        provider = PagesProvider({
            "https://cafe-luna.de": "<p>No contact here</p>",
            "https://cafe-luna.de/contact": '<a href="mailto:hello@cafe-luna.de">mail</a>',
            "https://cafe-luna.de/contact-us": "<p>other@cafe-luna.de</p>",
        })
        emails = asyncio.run(provider.lookup("https://cafe-luna.de"))
        assert emails == ["hello@cafe-luna.de"]
        assert provider.fetched == ["https://cafe-luna.de", "https://cafe-luna.de/contact"]

    def test_unreachable_site(self):
        """Test failed fetches give an empty result rather than raising."""
        provider = PagesProvider({})
        assert asyncio.run(provider.lookup("cafe-luna.de")) == []
        assert len(provider.fetched) == 3

    def test_aclose_without_session(self):
        """Test closing a provider that never opened a session is safe."""
        asyncio.run(EmailLookupProvider().aclose())
