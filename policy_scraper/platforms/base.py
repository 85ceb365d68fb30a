"""
Common scraper flow shared by every platform.

A platform scraper turns a listing into ListingReferences (discover) and one
reference into a PolicyRecord (extract_one). The shared scrape() method fans
the references out through the scheduler and aggregates both buckets.
"""

import logging
from abc import ABC, abstractmethod
from typing import ClassVar, Iterable, List, Optional, Tuple
from urllib.parse import urlsplit

from policy_scraper.config import settings
from policy_scraper.errors import DocumentParseError, NoPoliciesParsedError
from policy_scraper.fetcher import Fetcher
from policy_scraper.models import ExtractionResult, ListingReference, Platform, PolicyRecord
from policy_scraper.scheduler import run_all
from policy_scraper.utils import clamp, normalize_source_url

logger = logging.getLogger(__name__)


class PlatformScraper(ABC):
    """Listing parser + document extractor for one publishing platform."""

    platform: ClassVar[Platform]
    empty_result_message: ClassVar[str] = "Scrape completed, but no policy items could be parsed."

    def __init__(self, fetcher: Optional[Fetcher] = None):
        """Initialize with a shared fetcher (one per request)."""
        self.fetcher = fetcher or Fetcher()
        self.selected_books: List[str] = []

    @property
    def default_concurrency(self) -> int:
        return settings.default_concurrency

    def resolve_concurrency(self, requested: Optional[int]) -> int:
        """Clamp a caller override (or the platform default) to the safe range."""
        value = self.default_concurrency if requested is None else int(requested)
        return clamp(value, 1, settings.max_concurrency)

    def resolve_urls(self, source_url: str) -> Tuple[str, str]:
        """
        Normalize the caller's URL.

        Returns:
            (base_url, listing_url)
        """
        listing_url = normalize_source_url(source_url)
        return _origin(listing_url), listing_url

    @abstractmethod
    async def discover(self, listing_url: str, listing_html: Optional[str] = None) -> List[ListingReference]:
        """Produce the document references of a listing; raises ListingParseError when empty."""

    @abstractmethod
    async def extract_one(self, reference: ListingReference) -> PolicyRecord:
        """Fetch and parse one document."""

    async def extract_checked(self, reference: ListingReference) -> PolicyRecord:
        """extract_one, rejecting records with neither title nor wording."""
        record = await self.extract_one(reference)
        if not record.has_identity():
            raise DocumentParseError("Document has no extractable title or wording.")
        return record

    async def scrape(
        self,
        source_url: str,
        concurrency: Optional[int] = None,
        listing_html: Optional[str] = None,
    ) -> ExtractionResult:
        """
        Discover and extract every policy of a listing.

        Args:
            source_url: Listing URL as supplied by the caller
            concurrency: Optional concurrency override
            listing_html: Listing HTML already fetched by the detector

        Returns:
            ExtractionResult with rows and failed items

        Raises:
            ListingParseError: if the listing yields no references
            NoPoliciesParsedError: if every document failed
        """
        base_url, listing_url = self.resolve_urls(source_url)
        limit = self.resolve_concurrency(concurrency)

        references = await self.discover(listing_url, listing_html)
        logger.info(
            f"Discovered {len(references)} {self.platform.value} policies at {listing_url} "
            f"(concurrency {limit})"
        )

        outcome = await run_all(
            references,
            limit,
            self.extract_checked,
            describe=lambda reference: reference.label,
            name=f"Extracting {self.platform.value} policies",
        )

        if not outcome.results:
            raise NoPoliciesParsedError(
                self.empty_result_message,
                {"failed_items": [item.to_dict() for item in outcome.failures]},
            )

        logger.info(
            f"Extracted {len(outcome.results)} policies, {len(outcome.failures)} failed "
            f"({listing_url})"
        )

        return ExtractionResult(
            platform=self.platform,
            base_url=base_url,
            listing_url=listing_url,
            rows=outcome.results,
            discovered_count=len(references),
            failed_items=outcome.failures,
            selected_books=list(self.selected_books),
        )


def dedupe_references(references: Iterable[ListingReference]) -> List[ListingReference]:
    """Keep the first reference for every canonical key."""
    seen = set()
    deduped = []
    for reference in references:
        if reference.key in seen:
            continue
        seen.add(reference.key)
        deduped.append(reference)
    return deduped


def _origin(url: str) -> str:
    parsed = urlsplit(url)
    return f"{parsed.scheme}://{parsed.netloc}"
