"""
Platform Detection Module

Decides which platform publishes a district's policies:
- URL heuristics (BoardDocs hosts and /Board.nsf paths, no fetch needed)
- Listing HTML inspection (accordion "Series N" panels, then "Name of Policy" tables)

The listing HTML fetched for inspection is returned with the result so the
listing parser does not fetch it again.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import urlsplit

from policy_scraper.fetcher import Fetcher
from policy_scraper.models import Platform
from policy_scraper.platforms.accordion_pdf import is_accordion_pdf_listing_html
from policy_scraper.platforms.table_link import is_table_linked_listing_html
from policy_scraper.utils import normalize_source_url

logger = logging.getLogger(__name__)

BOARDDOCS_HOST = "boarddocs.com"
BOARDDOCS_PATH_MARKER = "/board.nsf"


class DetectionMethod(Enum):
    """How a platform was decided."""
    HINT = "hint"
    URL = "url"
    HTML = "html"
    FALLBACK = "fallback"


@dataclass
class DetectionResult:
    """Detected platform plus the listing HTML fetched along the way."""
    platform: Optional[Platform]
    method: DetectionMethod
    listing_url: str
    listing_html: Optional[str] = None


def detect_platform_from_url(url: str) -> Optional[Platform]:
    """BoardDocs is recognizable from the URL alone."""
    parsed = urlsplit(url)
    host = (parsed.hostname or "").lower()
    if host == BOARDDOCS_HOST or host.endswith("." + BOARDDOCS_HOST):
        return Platform.BOARDDOCS
    if BOARDDOCS_PATH_MARKER in parsed.path.lower():
        return Platform.BOARDDOCS
    return None


def detect_platform_from_html(html: str, listing_url: str) -> Optional[Platform]:
    """
    Inspect listing HTML.

    Accordion panels are checked before "Name of Policy" tables.

    Returns:
        Platform, or None when the page matches neither layout
    """
    if is_accordion_pdf_listing_html(html, listing_url):
        return Platform.ACCORDION_PDF
    if is_table_linked_listing_html(html):
        return Platform.TABLE_LINK
    return None


class PlatformDetector:
    """Detects the platform of a listing URL, fetching it at most once."""

    def __init__(self, fetcher: Optional[Fetcher] = None):
        self.fetcher = fetcher or Fetcher()

    async def detect(self, source_url: str) -> DetectionResult:
        """
        Detect the platform of a listing.

        Args:
            source_url: Listing URL as supplied by the caller

        Returns:
            DetectionResult; platform is None when undetermined
        """
        listing_url = normalize_source_url(source_url)

        platform = detect_platform_from_url(listing_url)
        if platform is not None:
            logger.info(f"Detected {platform.value} from URL {listing_url}")
            return DetectionResult(platform=platform, method=DetectionMethod.URL, listing_url=listing_url)

        listing_html = await self.fetcher.fetch_text(listing_url)
        platform = detect_platform_from_html(listing_html, listing_url)
        if platform is not None:
            logger.info(f"Detected {platform.value} from listing HTML at {listing_url}")
        else:
            logger.debug(f"No known policy layout found at {listing_url}")

        return DetectionResult(
            platform=platform,
            method=DetectionMethod.HTML,
            listing_url=listing_url,
            listing_html=listing_html,
        )

    async def resolve(self, source_url: str, requested: Optional[Platform] = None) -> DetectionResult:
        """
        Settle the platform to scrape a listing with.

        Args:
            source_url: Listing URL as supplied by the caller
            requested: Platform named by the caller, if any

        Returns:
            DetectionResult with a platform always set. A requested platform
            is taken as is (HINT, no fetch); an undetected listing falls back
            to table-link (FALLBACK) and keeps the HTML already fetched.
        """
        if requested is not None:
            return DetectionResult(
                platform=requested,
                method=DetectionMethod.HINT,
                listing_url=normalize_source_url(source_url),
            )

        detection = await self.detect(source_url)
        if detection.platform is not None:
            return detection

        logger.warning(
            f"Could not detect the policy platform of {detection.listing_url}, "
            f"falling back to {Platform.TABLE_LINK.value}"
        )
        return DetectionResult(
            platform=Platform.TABLE_LINK,
            method=DetectionMethod.FALLBACK,
            listing_url=detection.listing_url,
            listing_html=detection.listing_html,
        )


async def detect_platform(source_url: str, fetcher: Optional[Fetcher] = None) -> DetectionResult:
    """
    Convenience function to detect a listing's platform.

    Args:
        source_url: Listing URL
        fetcher: Optional shared fetcher

    Returns:
        DetectionResult
    """
    return await PlatformDetector(fetcher).detect(source_url)
