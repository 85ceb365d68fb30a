"""
Main Orchestration Module

Coordinates detection, listing parsing, per-document extraction and CSV
export for one district policy source.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, Optional

from policy_scraper.config import get_settings
from policy_scraper.csv_export import CSV_CONTENT_TYPE, build_csv_filename, platform_records_to_csv
from policy_scraper.detection import PlatformDetector
from policy_scraper.fetcher import Fetcher
from policy_scraper.models import ExtractionResult, Platform, parse_platform_hint
from policy_scraper.platforms import SCRAPERS, BoardDocsScraper, PlatformScraper
from policy_scraper.utils import normalize_source_url, setup_logging, timeit

logger = logging.getLogger(__name__)


@dataclass
class PolicyExport:
    """An extraction result rendered as a downloadable CSV."""
    result: ExtractionResult
    csv_text: str
    filename: str
    content_type: str = CSV_CONTENT_TYPE

    def summary_headers(self) -> Dict[str, str]:
        """Count headers to send alongside the CSV download."""
        headers = {
            "x-policy-count": str(self.result.row_count),
            "x-discovered-count": str(self.result.discovered_count),
            "x-failed-count": str(self.result.failed_count),
        }
        if self.result.platform == Platform.BOARDDOCS:
            headers["x-book-count"] = str(len(self.result.selected_books))
        return headers


class PolicyExtractionPipeline:
    """Main pipeline for extracting a district's policies."""

    def __init__(self, fetcher: Optional[Fetcher] = None):
        """Initialize pipeline with one fetcher shared by every stage."""
        self.settings = get_settings()
        self.fetcher = fetcher or Fetcher()
        self.detector = PlatformDetector(self.fetcher)

    def create_scraper(self, platform: Platform, include_all_books: bool = False) -> PlatformScraper:
        if platform == Platform.BOARDDOCS:
            return BoardDocsScraper(self.fetcher, include_all_books=include_all_books)
        return SCRAPERS[platform](self.fetcher)

    @timeit
    async def run(
        self,
        source_url: str,
        platform: Optional[str] = "auto",
        include_all_books: bool = False,
        concurrency: Optional[int] = None,
    ) -> ExtractionResult:
        """
        Extract every policy published at a source URL.

        Args:
            source_url: District listing URL
            platform: "auto" or one of boarddocs, table-link, accordion-pdf
            include_all_books: BoardDocs only, scrape every policy book
            concurrency: Optional override of the per-platform concurrency

        Returns:
            ExtractionResult

        Raises:
            ConfigurationError: for a missing or invalid URL or platform
            TransportError: if the listing cannot be fetched
            ListingParseError: if the listing yields no policies
            NoPoliciesParsedError: if every policy failed to parse
        """
        # Both validate before any network I/O
        requested_platform = parse_platform_hint(platform)
        normalize_source_url(source_url)

        detection = await self.detector.resolve(source_url, requested_platform)
        logger.info(
            f"Extracting {detection.platform.value} policies from {source_url} "
            f"(platform by {detection.method.value})"
        )

        scraper = self.create_scraper(detection.platform, include_all_books=include_all_books)
        result = await scraper.scrape(source_url, concurrency=concurrency, listing_html=detection.listing_html)

        logger.info(result.summary())
        return result

    async def export(
        self,
        source_url: str,
        platform: Optional[str] = "auto",
        include_all_books: bool = False,
        concurrency: Optional[int] = None,
        today: Optional[date] = None,
    ) -> PolicyExport:
        """Run the pipeline and render the rows as CSV."""
        result = await self.run(
            source_url,
            platform=platform,
            include_all_books=include_all_books,
            concurrency=concurrency,
        )
        return PolicyExport(
            result=result,
            csv_text=platform_records_to_csv(result.platform, result.rows),
            filename=build_csv_filename(result.base_url, result.platform, today=today),
        )

    def cleanup(self):
        """Release pipeline resources."""
        self.fetcher.close()


async def export_policies(
    source_url: str,
    platform: Optional[str] = "auto",
    include_all_books: bool = False,
    concurrency: Optional[int] = None,
    fetcher: Optional[Fetcher] = None,
) -> PolicyExport:
    """
    Convenience function to extract a district's policies as CSV.

    Args:
        source_url: District listing URL
        platform: "auto" or a platform name
        include_all_books: BoardDocs only, scrape every policy book
        concurrency: Optional concurrency override
        fetcher: Optional fetcher (a new one is created and closed otherwise)

    Returns:
        PolicyExport
    """
    pipeline = PolicyExtractionPipeline(fetcher)
    try:
        return await pipeline.export(
            source_url,
            platform=platform,
            include_all_books=include_all_books,
            concurrency=concurrency,
        )
    finally:
        if fetcher is None:
            pipeline.cleanup()


def extract_policies(
    source_url: str,
    platform: Optional[str] = "auto",
    include_all_books: bool = False,
    concurrency: Optional[int] = None,
) -> ExtractionResult:
    """
    Convenience function to extract a district's policies synchronously.

    Args:
        source_url: District listing URL
        platform: "auto" or a platform name
        include_all_books: BoardDocs only, scrape every policy book
        concurrency: Optional concurrency override

    Returns:
        ExtractionResult
    """
    setup_logging()
    pipeline = PolicyExtractionPipeline()

    async def run() -> ExtractionResult:
        return await pipeline.run(
            source_url,
            platform=platform,
            include_all_books=include_all_books,
            concurrency=concurrency,
        )

    try:
        return asyncio.run(run())
    finally:
        pipeline.cleanup()
