"""
Accordion PDF Policy Scraper

District sites built on accordion panels group policies by "Series N" panels;
each panel links one PDF per policy, either hosted on the site or shared
through Google Drive. The PDF text has no structure beyond its lines, so
the fields are recovered with label anchors (BOARD POLICY, SERIES:, ADOPTED:,
REVISION HISTORY:, Legal References:, Cross References:) and the remaining
lines become the policy wording.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Pattern, Sequence, Set
from urllib.parse import parse_qs, urljoin, urlsplit

from policy_scraper.config import settings
from policy_scraper.errors import ListingParseError
from policy_scraper.html_text import make_soup
from policy_scraper.models import AccordionPdfPolicy, ListingReference, Platform
from policy_scraper.pdf_text import PdfTextExtractor, get_pdf_text_extractor
from policy_scraper.platforms.base import PlatformScraper
from policy_scraper.utils import canonical_url, dedupe_adjacent, normalize_inline_text, normalize_multiline_text

logger = logging.getLogger(__name__)

PANEL_SELECTOR = ".fsPanelGroup.fsAccordion section.fsPanel"
FALLBACK_PANEL_SELECTOR = "section.fsPanel"
PANEL_HEADING_SELECTOR = "h2 a, h2.fsElementTitle a"
PANEL_LINK_SELECTOR = ".fsElementContent a[href]"

DRIVE_HOST = "drive.google.com"
DRIVE_DOWNLOAD_URL = "https://drive.google.com/uc?export=download&id={file_id}"

# Label anchors
BOARD_POLICY_LABEL = re.compile(r"^BOARD POLICY\b", re.IGNORECASE)
SERIES_LABEL = re.compile(r"^SERIES\s*:", re.IGNORECASE)
ADOPTED_LABEL = re.compile(r"^ADOPTED\s*:", re.IGNORECASE)
REVISION_HISTORY_LABEL = re.compile(r"^REVISION HISTORY\s*:", re.IGNORECASE)
LEGAL_REFERENCES_LABEL = re.compile(r"^Legal References\s*:", re.IGNORECASE)
CROSS_REFERENCES_LABEL = re.compile(r"^Cross References\s*:", re.IGNORECASE)

ALL_LABELS = (
    BOARD_POLICY_LABEL,
    SERIES_LABEL,
    ADOPTED_LABEL,
    REVISION_HISTORY_LABEL,
    LEGAL_REFERENCES_LABEL,
    CROSS_REFERENCES_LABEL,
)

_SERIES_HEADING = re.compile(r"^series\s+\d+\s*(.*)$", re.IGNORECASE)
_POLICY_PREFIX = re.compile(r"^[0-9]{1,4}(?:\.[0-9a-z]+)?[a-z]?\b", re.IGNORECASE)
_NUMBER = r"[0-9]{1,4}(?:\.[0-9A-Za-z-]+)?[A-Za-z]?"
_NUMBER_AND_TITLE = re.compile(rf"^({_NUMBER})\s*(?:[-:]\s*|\s+)(.+)$")
_NUMBER_ONLY = re.compile(rf"^({_NUMBER})$")
_DRIVE_FILE_PATH = re.compile(r"/file/d/([^/?#]+)", re.IGNORECASE)

_REVISION_CONTINUATIONS = (
    re.compile(r"\b\d{1,2}/\d{1,2}/\d{2,4}\b"),
    re.compile(r"\b(?:jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\s+\d{1,2},\s+\d{4}\b", re.IGNORECASE),
    re.compile(r"^FORMERLY\s*:", re.IGNORECASE),
    re.compile(r"^REVISED?\s*:", re.IGNORECASE),
    re.compile(r"^\(reviewed", re.IGNORECASE),
)
_PAGE_MARKERS = (
    re.compile(r"^Page\s+\d+\s+of\s+\d+$", re.IGNORECASE),
    re.compile(r"^Policy\s+[0-9A-Za-z.-]+$", re.IGNORECASE),
)
_LETTERHEADS = (
    re.compile(r"^INDEPENDENT SCHOOL DISTRICT", re.IGNORECASE),
    re.compile(r"^[A-Z][A-Z ,.'&-]{6,}PUBLIC SCHOOLS$", re.IGNORECASE),
)
_PARAGRAPH_START = re.compile(r"^([IVXLC]+\.\s+[A-Z]|[A-Z]\.\s+|[0-9]+\.\s+)")


@dataclass
class PolicyNumberAndTitle:
    number: str = ""
    title: str = ""


@dataclass
class TextBlock:
    """A labelled value and the line indexes it used up."""
    value: str = ""
    consumed: List[int] = field(default_factory=list)


# ============================================================================
# Line predicates
# ============================================================================

def matches_any(line: str, patterns: Sequence[Pattern]) -> bool:
    return any(pattern.search(line) for pattern in patterns)


def is_label_line(line: str) -> bool:
    return matches_any(line, ALL_LABELS)


def is_revision_continuation_line(line: str) -> bool:
    """Dates, FORMERLY:/REVISED: notes and "(reviewed ...)" lines."""
    return matches_any(line, _REVISION_CONTINUATIONS)


def is_page_marker_line(line: str) -> bool:
    """"Page 2 of 3" or a running "Policy 501" header."""
    return matches_any(line, _PAGE_MARKERS)


def is_letterhead_line(line: str) -> bool:
    """District letterhead repeated on every page."""
    return matches_any(line, _LETTERHEADS)


def is_boilerplate_line(line: str) -> bool:
    return is_page_marker_line(line) or is_letterhead_line(line)


def should_force_paragraph_break(line: str) -> bool:
    """Outline items (I. A, B. , 3. ) always start a new paragraph."""
    return bool(_PARAGRAPH_START.match(line))


# ============================================================================
# Listing
# ============================================================================

def extract_series_name(heading: str) -> str:
    """'Series 500 Students' -> 'Students'."""
    normalized = normalize_inline_text(heading)
    match = _SERIES_HEADING.match(normalized)
    if match and match.group(1):
        return normalize_inline_text(match.group(1))
    return normalized


def has_policy_number_prefix(text: str) -> bool:
    return bool(_POLICY_PREFIX.match(normalize_inline_text(text)))


def extract_drive_file_id(url: str) -> str:
    """
    Google Drive file id from a /file/d/<id>/ path or an ?id= query.

    Returns:
        File id, or "" when the URL does not name a Drive file
    """
    match = _DRIVE_FILE_PATH.search(url)
    if match:
        return match.group(1)

    parsed = urlsplit(url)
    if DRIVE_HOST not in (parsed.hostname or ""):
        return ""
    ids = parse_qs(parsed.query).get("id")
    return normalize_inline_text(ids[0]) if ids else ""


def is_likely_policy_document_link(url: str, link_text: str) -> bool:
    """
    A link is a policy document when any of these hold:
    - its path ends in .pdf
    - it is a Drive /file/d/ or /uc link
    - it is any Drive link whose text starts with a policy number
    """
    parsed = urlsplit(url)
    if parsed.scheme not in ("http", "https"):
        return False

    path = parsed.path.lower()
    host = (parsed.hostname or "").lower()

    if path.endswith(".pdf"):
        return True
    if DRIVE_HOST in host and ("/file/d/" in path or path.startswith("/uc")):
        return True
    return DRIVE_HOST in host and has_policy_number_prefix(link_text)


def canonical_document_key(url: str) -> str:
    """drive:<file id> for Drive links, else the canonical URL."""
    file_id = extract_drive_file_id(url)
    if file_id:
        return f"drive:{file_id}"
    return canonical_url(url)


def to_download_url(url: str) -> str:
    """Rewrite Drive viewer links to their direct-download form."""
    file_id = extract_drive_file_id(url)
    if not file_id:
        return url
    return DRIVE_DOWNLOAD_URL.format(file_id=file_id)


def parse_policy_number_and_title(value: str) -> PolicyNumberAndTitle:
    """
    Split "<number> <title>".

    Numbers look like 2.10, 501, 524A or 410.1; text without a number is
    all title.
    """
    normalized = normalize_inline_text(value)
    if not normalized:
        return PolicyNumberAndTitle()

    match = _NUMBER_AND_TITLE.match(normalized)
    if match:
        return PolicyNumberAndTitle(
            number=normalize_inline_text(match.group(1)),
            title=normalize_inline_text(match.group(2)),
        )

    match = _NUMBER_ONLY.match(normalized)
    if match:
        return PolicyNumberAndTitle(number=match.group(1))

    return PolicyNumberAndTitle(title=normalized)


def find_panel_sections(soup):
    panels = soup.select(PANEL_SELECTOR)
    if panels:
        return panels
    return soup.select(FALLBACK_PANEL_SELECTOR)


def _panel_heading(panel) -> str:
    heading = panel.select_one(PANEL_HEADING_SELECTOR)
    return normalize_inline_text(heading.get_text()) if heading is not None else ""


def is_accordion_pdf_listing_html(html: str, listing_url: str = "") -> bool:
    """True for accordion pages with a "Series N" panel and a policy document link."""
    soup = make_soup(html)
    panels = find_panel_sections(soup)
    if not panels:
        return False

    series_count = 0
    document_links = 0
    for panel in panels:
        if _SERIES_HEADING.match(_panel_heading(panel)):
            series_count += 1

        for link in panel.select(PANEL_LINK_SELECTOR):
            href = normalize_inline_text(link.get("href"))
            text = normalize_inline_text(link.get_text())
            if href and text and is_likely_policy_document_link(urljoin(listing_url, href), text):
                document_links += 1

    return series_count > 0 and document_links > 0


def parse_policy_links(html: str, listing_url: str) -> List[ListingReference]:
    """
    Policy document references of an accordion listing.

    Raises:
        ListingParseError: if the page has no accordion panels
    """
    soup = make_soup(html)
    panels = find_panel_sections(soup)
    if not panels:
        raise ListingParseError("Could not find accordion policy sections on this page.")

    references: List[ListingReference] = []
    seen_keys: Set[str] = set()

    for panel in panels:
        series_heading = _panel_heading(panel)
        series_name = extract_series_name(series_heading)

        for link in panel.select(PANEL_LINK_SELECTOR):
            href = normalize_inline_text(link.get("href"))
            link_text = normalize_inline_text(link.get_text())
            if not href or not link_text:
                continue

            resolved_url = urljoin(listing_url, href)
            if not is_likely_policy_document_link(resolved_url, link_text):
                continue

            key = canonical_document_key(resolved_url)
            if key in seen_keys:
                continue

            identity = parse_policy_number_and_title(link_text)
            seen_keys.add(key)
            references.append(
                ListingReference(
                    key=key,
                    url=resolved_url,
                    fallback_title=identity.title or link_text,
                    fallback_code=identity.number,
                    hints={
                        "download_url": to_download_url(resolved_url),
                        "series_heading": series_heading,
                        "series_name": series_name,
                    },
                )
            )

    return references


# ============================================================================
# PDF text
# ============================================================================

def split_pdf_lines(text: str) -> List[str]:
    """Normalize line endings and inline whitespace, one entry per line."""
    normalized = (text or "").replace("\u00a0", " ").replace("\r\n", "\n").replace("\r", "\n")
    return [re.sub(r"[ \t]+", " ", line).strip() for line in normalized.split("\n")]


def find_line_index(lines: List[str], pattern: Pattern) -> int:
    for index, line in enumerate(lines):
        if pattern.search(line):
            return index
    return -1


def strip_label(line: str, label: Pattern) -> str:
    return normalize_inline_text(label.sub("", line, count=1))


def normalize_block_value(values: List[str]) -> str:
    cleaned = [normalize_inline_text(value) for value in values]
    return normalize_multiline_text("\n".join(dedupe_adjacent([value for value in cleaned if value])))


def extract_revision_history(lines: List[str], start_index: int) -> TextBlock:
    """
    Value of REVISION HISTORY: plus its continuation lines.

    Continues over dates, FORMERLY:/REVISED: notes and boilerplate; stops at
    the next label or the first line that looks like body text.
    """
    if start_index < 0:
        return TextBlock()

    consumed = [start_index]
    values = [strip_label(lines[start_index], REVISION_HISTORY_LABEL)]

    for index in range(start_index + 1, len(lines)):
        line = lines[index]
        if not line:
            continue
        if is_label_line(line):
            break
        if is_boilerplate_line(line):
            consumed.append(index)
            continue
        if not is_revision_continuation_line(line):
            break
        values.append(line)
        consumed.append(index)

    return TextBlock(value=normalize_block_value(values), consumed=consumed)


def extract_reference_block(lines: List[str], start_index: int, label: Pattern) -> TextBlock:
    """Value of a references label plus every line up to the next label."""
    if start_index < 0:
        return TextBlock()

    consumed = [start_index]
    values = [strip_label(lines[start_index], label)]

    for index in range(start_index + 1, len(lines)):
        line = lines[index]
        if not line:
            continue
        if is_label_line(line):
            break
        if not is_boilerplate_line(line):
            values.append(line)
        consumed.append(index)

    return TextBlock(value=normalize_block_value(values), consumed=consumed)


def parse_board_policy_line(line: str) -> PolicyNumberAndTitle:
    """'BOARD POLICY: 2.10 Attendance' -> ('2.10', 'Attendance')."""
    value = re.sub(r"^BOARD POLICY\s*:?\s*", "", line, flags=re.IGNORECASE)
    return parse_policy_number_and_title(value.replace("_", " "))


def join_lines_into_paragraphs(lines: List[str]) -> str:
    """
    Rejoin wrapped PDF lines.

    Blank lines end a paragraph; outline items start a new one.
    """
    paragraphs: List[str] = []
    current: List[str] = []

    for line in lines:
        if not line:
            if current:
                paragraphs.append(normalize_inline_text(" ".join(current)))
                current = []
            continue
        if current and should_force_paragraph_break(line):
            paragraphs.append(normalize_inline_text(" ".join(current)))
            current = []
        current.append(line)

    if current:
        paragraphs.append(normalize_inline_text(" ".join(current)))

    return normalize_multiline_text("\n\n".join(paragraphs))


def build_policy_wording(lines: List[str], consumed: Set[int]) -> str:
    """Every line not used by a label block, minus label and boilerplate lines."""
    remaining = []
    for index, line in enumerate(lines):
        if index in consumed:
            continue
        if line and (is_label_line(line) or is_boilerplate_line(line)):
            continue
        remaining.append(line)
    return join_lines_into_paragraphs(remaining)


def parse_policy_pdf_text(text: str, reference: ListingReference) -> AccordionPdfPolicy:
    """
    Turn the text of one policy PDF into a record.

    Listing data fills a missing number or title, and the panel's series
    name fills a missing SERIES: line.
    """
    lines = split_pdf_lines(text)

    board_policy_index = find_line_index(lines, BOARD_POLICY_LABEL)
    series_index = find_line_index(lines, SERIES_LABEL)
    adopted_index = find_line_index(lines, ADOPTED_LABEL)

    revision_history = extract_revision_history(lines, find_line_index(lines, REVISION_HISTORY_LABEL))
    legal_references = extract_reference_block(
        lines, find_line_index(lines, LEGAL_REFERENCES_LABEL), LEGAL_REFERENCES_LABEL
    )
    cross_references = extract_reference_block(
        lines, find_line_index(lines, CROSS_REFERENCES_LABEL), CROSS_REFERENCES_LABEL
    )

    consumed = {index for index in (board_policy_index, series_index, adopted_index) if index >= 0}
    for block in (revision_history, legal_references, cross_references):
        consumed.update(block.consumed)

    identity = (
        parse_board_policy_line(lines[board_policy_index]) if board_policy_index >= 0 else PolicyNumberAndTitle()
    )
    series = (
        strip_label(lines[series_index], SERIES_LABEL)
        if series_index >= 0
        else normalize_inline_text(reference.hints.get("series_name", ""))
    )

    return AccordionPdfPolicy(
        board_policy_number=identity.number or reference.fallback_code,
        title=identity.title or reference.fallback_title,
        series=series,
        adopted_date=strip_label(lines[adopted_index], ADOPTED_LABEL) if adopted_index >= 0 else "",
        revision_history=revision_history.value,
        policy_wording=build_policy_wording(lines, consumed),
        legal_references=legal_references.value,
        cross_references=cross_references.value,
    )


class AccordionPdfScraper(PlatformScraper):
    """Downloads and parses every policy PDF linked from the accordion panels."""

    platform = Platform.ACCORDION_PDF
    empty_result_message = "Scrape completed, but no policy PDFs could be parsed."

    def __init__(self, fetcher=None, pdf_extractor: Optional[PdfTextExtractor] = None):
        """Initialize scraper; the PDF extractor defaults to the shared one."""
        super().__init__(fetcher)
        self._pdf_extractor = pdf_extractor

    @property
    def pdf_extractor(self) -> PdfTextExtractor:
        if self._pdf_extractor is None:
            self._pdf_extractor = get_pdf_text_extractor()
        return self._pdf_extractor

    @property
    def default_concurrency(self) -> int:
        return settings.pdf_concurrency

    async def discover(self, listing_url: str, listing_html: Optional[str] = None) -> List[ListingReference]:
        html = listing_html if listing_html is not None else await self.fetcher.fetch_text(listing_url)
        references = parse_policy_links(html, listing_url)
        if not references:
            raise ListingParseError("No policy PDF links were found in the accordion sections.")
        return references

    async def extract_one(self, reference: ListingReference) -> AccordionPdfPolicy:
        download_url = reference.hints.get("download_url") or reference.url
        data = await self.fetcher.fetch_bytes(download_url, timeout=settings.pdf_timeout)
        text = await self.pdf_extractor.extract_text_async(data)
        logger.debug(f"Read {len(text)} characters from {download_url}")
        return parse_policy_pdf_text(text, reference)
