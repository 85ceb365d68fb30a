"""
Platform-specific listing parsers and document extractors.
"""

from policy_scraper.models import Platform
from policy_scraper.platforms.accordion_pdf import AccordionPdfScraper
from policy_scraper.platforms.base import PlatformScraper
from policy_scraper.platforms.boarddocs import BoardDocsScraper
from policy_scraper.platforms.table_link import TableLinkScraper

SCRAPERS = {
    Platform.BOARDDOCS: BoardDocsScraper,
    Platform.TABLE_LINK: TableLinkScraper,
    Platform.ACCORDION_PDF: AccordionPdfScraper,
}

__all__ = [
    "AccordionPdfScraper",
    "BoardDocsScraper",
    "PlatformScraper",
    "SCRAPERS",
    "TableLinkScraper",
]
