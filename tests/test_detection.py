from __future__ import annotations

import pytest

from conftest import FakeFetcher
from policy_scraper.detection import (
    DetectionMethod,
    PlatformDetector,
    detect_platform,
    detect_platform_from_html,
    detect_platform_from_url,
)
from policy_scraper.models import Platform

LISTING_URL = "https://www.district.example.org/policies"

ACCORDION_HTML = (
    '<div class="fsPanelGroup fsAccordion"><section class="fsPanel">'
    '<h2 class="fsElementTitle"><a href="#">Series 500 Students</a></h2>'
    '<div class="fsElementContent"><a href="/files/501.pdf">501 Weapons</a></div>'
    "</section></div>"
)

TABLE_HTML = (
    "<table><tr><th>Policy Number</th><th>Name of Policy</th></tr>"
    '<tr><td>1.01</td><td><a href="/policies/1-01">1.01 School Board</a></td></tr></table>'
)


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://go.boarddocs.com/in/blm/Board.nsf/Public", Platform.BOARDDOCS),
        ("https://boarddocs.com/x", Platform.BOARDDOCS),
        ("https://district.example.org/mirror/board.nsf/Public", Platform.BOARDDOCS),
        ("https://notboarddocs.com/policies", None),
        (LISTING_URL, None),
    ],
)
def test_detect_platform_from_url(url: str, expected: Platform | None) -> None:
    assert detect_platform_from_url(url) == expected


def test_accordion_checked_before_table() -> None:
    both = ACCORDION_HTML + TABLE_HTML

    assert detect_platform_from_html(both, LISTING_URL) == Platform.ACCORDION_PDF
    assert detect_platform_from_html(TABLE_HTML, LISTING_URL) == Platform.TABLE_LINK
    assert detect_platform_from_html("<p>Welcome</p>", LISTING_URL) is None


@pytest.mark.asyncio
async def test_boarddocs_detected_without_fetching() -> None:
    fetcher = FakeFetcher()

    result = await PlatformDetector(fetcher).detect("go.boarddocs.com/in/blm/Board.nsf/Public")

    assert result.platform == Platform.BOARDDOCS
    assert result.method == DetectionMethod.URL
    assert result.listing_html is None
    assert fetcher.requests == []


@pytest.mark.asyncio
async def test_listing_fetched_once_and_returned() -> None:
    fetcher = FakeFetcher(pages={LISTING_URL: ACCORDION_HTML})

    result = await detect_platform(LISTING_URL, fetcher)

    assert result.platform == Platform.ACCORDION_PDF
    assert result.method == DetectionMethod.HTML
    assert result.listing_html == ACCORDION_HTML
    assert fetcher.requests == [("GET", LISTING_URL)]


@pytest.mark.asyncio
async def test_undetermined_listing() -> None:
    fetcher = FakeFetcher(pages={LISTING_URL: "<p>Welcome</p>"})

    result = await detect_platform(LISTING_URL, fetcher)

    assert result.platform is None
    assert result.listing_html == "<p>Welcome</p>"


@pytest.mark.asyncio
async def test_requested_platform_is_a_hint_without_fetching() -> None:
    fetcher = FakeFetcher()

    result = await PlatformDetector(fetcher).resolve("district.example.org/policies", Platform.ACCORDION_PDF)

    assert result.platform == Platform.ACCORDION_PDF
    assert result.method == DetectionMethod.HINT
    assert result.listing_url == "https://district.example.org/policies"
    assert fetcher.requests == []


@pytest.mark.asyncio
async def test_undetected_listing_resolves_to_table_link_fallback(caplog) -> None:
    fetcher = FakeFetcher(pages={LISTING_URL: "<p>Welcome</p>"})

    with caplog.at_level("WARNING", logger="policy_scraper.detection"):
        result = await PlatformDetector(fetcher).resolve(LISTING_URL)

    assert result.platform == Platform.TABLE_LINK
    assert result.method == DetectionMethod.FALLBACK
    assert result.listing_html == "<p>Welcome</p>"
    assert "falling back to table-link" in caplog.text


@pytest.mark.asyncio
async def test_detected_listing_resolves_unchanged() -> None:
    fetcher = FakeFetcher(pages={LISTING_URL: TABLE_HTML})

    result = await PlatformDetector(fetcher).resolve(LISTING_URL)

    assert result.platform == Platform.TABLE_LINK
    assert result.method == DetectionMethod.HTML
