"""
BoardDocs Policy Scraper

BoardDocs listings are not a single page: policies live in "books" served by
AJAX endpoints under the district's Board.nsf path.
- BD-GetPolicyBooks lists the books
- BD-GetPolicies returns the navigation tree of one book for one status
  partition (active, under consideration, retired)
- BD-GetPolicyItem returns one policy by its unique id
"""

import asyncio
import copy
import logging
import random
import re
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlsplit

from policy_scraper.config import settings
from policy_scraper.errors import InvalidSourceUrlError, ListingParseError
from policy_scraper.html_text import extract_block_text, make_soup
from policy_scraper.models import BoardDocsPolicy, ListingReference, Platform
from policy_scraper.platforms.base import PlatformScraper, dedupe_references
from policy_scraper.utils import normalize_inline_text, normalize_source_url

logger = logging.getLogger(__name__)

STATUS_REQUEST_ORDER = ("active", "other", "retired")

STATUS_LABELS = {
    "active": "Active",
    "other": "Under Consideration",
    "retired": "Retired",
}

BOARD_PATH_MARKER = "/board.nsf"


def normalize_boarddocs_base_url(source_url: str) -> str:
    """
    Reduce any BoardDocs URL to the district base ending in /Board.nsf.

    Args:
        source_url: e.g. "go.boarddocs.com/in/blm/Board.nsf/Public#tab"

    Returns:
        e.g. "https://go.boarddocs.com/in/blm/Board.nsf"

    Raises:
        InvalidSourceUrlError: if the URL has no /Board.nsf segment
    """
    url = normalize_source_url(source_url)
    parsed = urlsplit(url)

    marker_index = parsed.path.lower().find(BOARD_PATH_MARKER)
    if marker_index < 0:
        raise InvalidSourceUrlError(
            "URL does not appear to be a BoardDocs district page (missing /Board.nsf).",
            {"url": source_url},
        )

    board_path = parsed.path[: marker_index + len(BOARD_PATH_MARKER)].rstrip("/")
    return f"{parsed.scheme}://{parsed.netloc}{board_path}"


def select_books(all_books: List[str], include_all_books: bool = False) -> List[str]:
    """
    Pick the policy book(s) to scrape.

    Preference: every book when asked, else the book named "Policy Manual",
    else books whose name mentions policy/bylaw, else every book.
    """
    if include_all_books:
        return list(all_books)

    for book in all_books:
        if normalize_inline_text(book).lower() == "policy manual":
            return [book]

    likely_policy_books = [book for book in all_books if re.search(r"polic(?:y|ies)|bylaw", book, re.IGNORECASE)]
    if likely_policy_books:
        return likely_policy_books

    return list(all_books)


def parse_policy_books(html: str) -> List[str]:
    """Book names from a BD-GetPolicyBooks fragment, in page order."""
    soup = make_soup(html)
    books: List[str] = []

    for link in soup.select("#policy-book-select a"):
        value = normalize_inline_text(link.get_text())
        if value and value not in books:
            books.append(value)

    book_menu = soup.select_one("#book-menu")
    fallback_book = normalize_inline_text(book_menu.get_text()) if book_menu is not None else ""
    if fallback_book and fallback_book not in books:
        books.append(fallback_book)

    return books


def parse_policy_navigation(html: str, status_key: str) -> List[ListingReference]:
    """
    Flatten a BD-GetPolicies navigation tree.

    <section> children of #policy-accordion open a new section heading;
    the <div> that follows holds the a.policy links of that section.
    """
    soup = make_soup(html)
    accordion = soup.select_one("#policy-accordion")
    if accordion is None:
        return []

    references: List[ListingReference] = []
    current_section = ""

    for child in accordion.find_all(recursive=False):
        tag = (child.name or "").lower()

        if tag == "section":
            section_link = child.select_one("a.lefMenu")
            current_section = normalize_inline_text(section_link.get_text()) if section_link is not None else ""
            continue

        if tag != "div":
            continue

        for link in child.select("a.policy"):
            unique_id = normalize_inline_text(link.get("unique", ""))
            if not unique_id:
                continue

            code_tag = link.find("b")
            code = normalize_inline_text(code_tag.get_text()) if code_tag is not None else ""

            references.append(
                ListingReference(
                    key=unique_id,
                    item_id=unique_id,
                    fallback_title=_navigation_title(link),
                    fallback_code=code,
                    hints={"status_key": status_key, "section": current_section},
                )
            )

    return references


def _navigation_title(link) -> str:
    """Title text of a navigation link: its second <div>, icons removed."""
    divs = link.find_all("div", recursive=False)
    if len(divs) < 2:
        return ""

    title_container = copy.copy(divs[1])
    for icon in title_container.select(".icons"):
        icon.decompose()
    return normalize_inline_text(title_container.get_text())


def normalize_detail_key(value: str) -> str:
    """'Adopted Date:' -> 'adopted date'."""
    return re.sub(r":$", "", normalize_inline_text(value)).lower()


def first_detail(details: Dict[str, str], *keys: str) -> Optional[str]:
    """Value of the first key present in details."""
    for key in keys:
        if key in details:
            return details[key]
    return None


def parse_policy_item(html: str, reference: ListingReference) -> BoardDocsPolicy:
    """
    Parse a BD-GetPolicyItem fragment into a record.

    Labelled rows win; the navigation item fills section, code, title and
    status when a label is missing.
    """
    soup = make_soup(html)
    details: Dict[str, str] = {}

    for row in soup.select("#view-policy-item .container .row"):
        left = row.select_one(".leftcol")
        right = row.select_one(".rightcol")
        key = normalize_detail_key(left.get_text()) if left is not None else ""
        value = normalize_inline_text(right.get_text()) if right is not None else ""
        if key and value:
            details[key] = value

    status_key = reference.hints.get("status_key", "")

    return BoardDocsPolicy(
        section=first_detail(details, "section") or reference.hints.get("section", ""),
        code=first_detail(details, "code") or reference.fallback_code,
        adopted_date=first_detail(details, "adopted", "adopted date") or "",
        revised_date=first_detail(details, "last revised", "revised", "revised date", "last updated") or "",
        status=first_detail(details, "status") or STATUS_LABELS.get(status_key, ""),
        policy_title=first_detail(details, "title") or reference.fallback_title,
        policy_wording=extract_block_text(soup.select_one("#forcopy")),
    )


class BoardDocsScraper(PlatformScraper):
    """Scrapes every policy of the selected BoardDocs book(s)."""

    platform = Platform.BOARDDOCS

    def __init__(self, fetcher=None, include_all_books: bool = False):
        """Initialize scraper."""
        super().__init__(fetcher)
        self.include_all_books = include_all_books
        self.base_url = ""

    def resolve_urls(self, source_url: str) -> Tuple[str, str]:
        base_url = normalize_boarddocs_base_url(source_url)
        self.base_url = base_url
        return base_url, f"{base_url}/Public"

    async def post(self, endpoint: str, payload: Optional[Dict[str, str]] = None) -> str:
        """POST to a BoardDocs AJAX endpoint the way the public site does."""
        parsed = urlsplit(self.base_url)
        # The site appends a random number to defeat caches
        target_url = f"{self.base_url}/{endpoint}?open&{random.random()}"
        return await self.fetcher.post_form(
            target_url,
            data=payload,
            headers={
                "Origin": f"{parsed.scheme}://{parsed.netloc}",
                "Referer": f"{self.base_url}/Public",
                "X-Requested-With": "XMLHttpRequest",
            },
            timeout=settings.boarddocs_timeout,
        )

    async def get_policy_books(self) -> List[str]:
        html = await self.post("BD-GetPolicyBooks")
        return parse_policy_books(html)

    async def get_book_navigation(self, book: str) -> List[ListingReference]:
        """Navigation items of one book across all status partitions."""
        fragments = await asyncio.gather(
            *(self.post("BD-GetPolicies", {"status": status_key, "book": book}) for status_key in STATUS_REQUEST_ORDER)
        )
        references: List[ListingReference] = []
        for status_key, html in zip(STATUS_REQUEST_ORDER, fragments):
            references.extend(parse_policy_navigation(html, status_key))
        return references

    async def discover(self, listing_url: str, listing_html: Optional[str] = None) -> List[ListingReference]:
        if not self.base_url:
            self.resolve_urls(listing_url)

        all_books = await self.get_policy_books()
        if not all_books:
            raise ListingParseError("No policy books were found for this district URL.")

        selected_books = select_books(all_books, self.include_all_books)
        if not selected_books:
            raise ListingParseError("Could not determine which policy books to scrape.")
        self.selected_books = selected_books
        logger.info(f"Scraping BoardDocs book(s) {selected_books} of {all_books}")

        by_book = await asyncio.gather(*(self.get_book_navigation(book) for book in selected_books))
        references = dedupe_references(reference for book_references in by_book for reference in book_references)

        if not references:
            raise ListingParseError("No policies were found in the selected policy book(s).")
        return references

    async def extract_one(self, reference: ListingReference) -> BoardDocsPolicy:
        html = await self.post("BD-GetPolicyItem", {"id": reference.item_id or reference.key})
        return parse_policy_item(html, reference)
