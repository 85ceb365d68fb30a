"""
PDF text extraction.

The pypdf-backed extractor is created lazily on first use and then shared by
every concurrent extraction in the process. It keeps no per-document state,
so concurrent read-only use is safe.
"""

import asyncio
import io
import logging
from functools import lru_cache

from policy_scraper.errors import DocumentParseError

logger = logging.getLogger(__name__)


class PdfTextExtractor:
    """Turns PDF bytes into plain text, one page after another."""

    def __init__(self):
        """Load the PDF backend."""
        from pypdf import PdfReader

        self._reader_class = PdfReader
        logger.debug("Initialized pypdf text extractor")

    def extract_text(self, data: bytes) -> str:
        """
        Extract text from a PDF document.

        Args:
            data: Raw PDF bytes

        Returns:
            Text of all pages joined with newlines

        Raises:
            DocumentParseError: if the bytes are not a readable PDF
        """
        if not data:
            raise DocumentParseError("Downloaded policy document is empty.")

        try:
            reader = self._reader_class(io.BytesIO(data))
            pages = [page.extract_text() or "" for page in reader.pages]
        except Exception as e:  # pypdf raises a wide range of error types
            raise DocumentParseError(f"Could not read policy PDF: {e}") from e

        return "\n".join(pages)

    async def extract_text_async(self, data: bytes) -> str:
        """Run extract_text in a worker thread."""
        return await asyncio.to_thread(self.extract_text, data)


@lru_cache(maxsize=1)
def get_pdf_text_extractor() -> PdfTextExtractor:
    """
    Get the process-wide PDF text extractor (created on first call).

    Returns:
        PdfTextExtractor: Shared extractor instance
    """
    return PdfTextExtractor()
