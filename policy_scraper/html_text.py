"""
HTML-to-text helpers shared by the platform scrapers.
"""

from typing import List, Optional

from bs4 import BeautifulSoup, Tag

from policy_scraper.utils import normalize_inline_text, normalize_multiline_text

BLOCK_SELECTOR = "p,li,h1,h2,h3,h4,h5,h6,blockquote"


def make_soup(html: str) -> BeautifulSoup:
    """Parse HTML with the stdlib parser."""
    return BeautifulSoup(html or "", "html.parser")


def block_segments(element: Optional[Tag]) -> List[str]:
    """
    Collect the text of leaf block elements under an element.

    Blocks containing other blocks are skipped so nested lists and quotes
    are not emitted twice.

    Args:
        element: Container element

    Returns:
        Non-empty, whitespace-normalized block texts in document order
    """
    if element is None:
        return []

    segments = []
    for block in element.select(BLOCK_SELECTOR):
        if block.select_one(BLOCK_SELECTOR) is not None:
            continue
        text = normalize_inline_text(block.get_text())
        if text:
            segments.append(text)
    return segments


def extract_block_text(element: Optional[Tag]) -> str:
    """
    Text of an element as paragraphs separated by blank lines.

    Falls back to the element's whole text when it has no block children.
    """
    if element is None:
        return ""

    segments = block_segments(element)
    if segments:
        return "\n\n".join(segments)
    return normalize_multiline_text(element.get_text())


def html_fragment_text(html: str) -> str:
    """Paragraph text of an HTML fragment."""
    soup = make_soup(f'<div id="fragment-root">{html}</div>')
    return extract_block_text(soup.find(id="fragment-root"))


def table_header_cells(table: Tag) -> List[str]:
    """Lower-cased, non-empty texts of a table's first row."""
    first_row = table.find("tr")
    if first_row is None:
        return []
    headers = [normalize_inline_text(cell.get_text()).lower() for cell in first_row.find_all(["th", "td"])]
    return [header for header in headers if header]


def table_html_header_cells(table_html: str) -> List[str]:
    """table_header_cells for a table given as HTML text."""
    soup = make_soup(table_html)
    table = soup.find("table") or soup
    return table_header_cells(table)
