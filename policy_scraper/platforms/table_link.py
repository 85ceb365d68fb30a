"""
Table-Linked Policy Scraper

Site-builder district pages list policies in a table with a "Name of Policy"
column; each row links to a detail page. Detail pages embed their content as
a JSON tree assigned to window.clientWorkStateTemp, made of typed
CONTENT_NODE_* fragments (headings, rich text, tables).
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin, urlsplit

import trafilatura
from bs4 import Tag

from policy_scraper.errors import DocumentParseError, ListingParseError
from policy_scraper.html_text import (
    block_segments,
    html_fragment_text,
    make_soup,
    table_header_cells,
    table_html_header_cells,
)
from policy_scraper.models import ListingReference, Platform, TableLinkedPolicy
from policy_scraper.platforms.base import PlatformScraper
from policy_scraper.utils import canonical_url, dedupe_adjacent, normalize_inline_text, normalize_multiline_text

logger = logging.getLogger(__name__)

LISTING_HEADER = "name of policy"

CONTENT_NODE_PREFIX = "CONTENT_NODE_"
CONTENT_NODE_HEADING = "CONTENT_NODE_HEADING"
CONTENT_NODE_TABLE = "CONTENT_NODE_TABLE"

PAYLOAD_PATTERN = re.compile(r'window\.clientWorkStateTemp\s*=\s*JSON\.parse\(("(?:\\.|[^"\\])*")\)')

_JS_ESCAPE = re.compile(r"\\(x[0-9A-Fa-f]{2}|u[0-9A-Fa-f]{4}|.)", re.DOTALL)
_JSON_SIMPLE_ESCAPES = set('"\\/bfnrt')

_IDENTITY_PATTERN = re.compile(r"^(\d+)\s*\.\s*([0-9][0-9A-Za-z.-]*)\s*(.*)$")

STATIC_NOISE_TAGS = ["script", "style", "noscript", "nav", "header", "footer"]


@dataclass
class PolicyIdentity:
    """Chapter, dotted number and title parsed from a heading."""
    chapter: str
    number: str
    title: str


@dataclass
class TableMetadata:
    """Values of the statutory metadata table under a policy."""
    statutory_authority: str = ""
    laws_implemented: str = ""
    history: str = ""
    notes: str = ""


# ============================================================================
# Embedded payload
# ============================================================================

def find_payload_literal(html: str) -> Optional[str]:
    """The quoted string passed to JSON.parse for clientWorkStateTemp, if any."""
    soup = make_soup(html)
    for script in soup.find_all("script"):
        text = script.string or script.get_text()
        if not text or "clientWorkStateTemp" not in text:
            continue
        match = PAYLOAD_PATTERN.search(text)
        if match:
            return match.group(1)
    return None


def _js_escape_to_json(match: re.Match) -> str:
    token = match.group(1)
    if token[0] == "x" and len(token) == 3:
        return "\\u00" + token[1:]
    if token[0] == "u" and len(token) == 5:
        return "\\" + token
    if token in _JSON_SIMPLE_ESCAPES:
        return "\\" + token
    if token == "v":
        return "\\u000b"
    if token == "0":
        return "\\u0000"
    if token == "\n":
        return ""
    # \' and any other identity escape
    return token


def decode_js_string_literal(literal: str) -> str:
    """
    Decode a double-quoted JavaScript string literal.

    JSON covers most literals; JS-only escapes (\\x41, \\', \\v, \\0) are
    rewritten to their JSON equivalents first.

    Raises:
        DocumentParseError: if the literal cannot be decoded
    """
    try:
        return json.loads(literal, strict=False)
    except ValueError:
        pass

    try:
        return json.loads(_JS_ESCAPE.sub(_js_escape_to_json, literal), strict=False)
    except ValueError as e:
        raise DocumentParseError("Could not parse embedded policy payload expression.") from e


def extract_client_work_state(html: str) -> Optional[Dict[str, Any]]:
    """
    Decode the embedded page payload.

    Returns:
        Payload dict, or None when the page has no embedded payload

    Raises:
        DocumentParseError: if a payload is present but cannot be decoded
    """
    literal = find_payload_literal(html)
    if literal is None:
        return None

    decoded = decode_js_string_literal(literal)
    try:
        payload = json.loads(decoded)
    except ValueError as e:
        raise DocumentParseError("Embedded policy payload could not be decoded.") from e

    if not isinstance(payload, dict):
        raise DocumentParseError("Embedded policy payload could not be decoded.")
    return payload


def collect_content_nodes(root: Any) -> List[Dict[str, Any]]:
    """
    Every dict in a JSON tree whose "type" starts with CONTENT_NODE_.

    Nodes are returned in document order (parents before their children).
    """
    nodes: List[Dict[str, Any]] = []

    def visit(value: Any) -> None:
        if isinstance(value, list):
            for item in value:
                visit(item)
            return
        if not isinstance(value, dict):
            return

        node_type = value.get("type")
        if isinstance(node_type, str) and node_type.startswith(CONTENT_NODE_PREFIX):
            nodes.append(value)

        for child in value.values():
            visit(child)

    visit(root)
    return nodes


def node_text(node: Optional[Dict[str, Any]]) -> str:
    """Readable text of a content node (its html, else its plain text)."""
    if not node:
        return ""
    content = node.get("content")
    if not isinstance(content, dict):
        return ""

    if isinstance(content.get("html"), str):
        return html_fragment_text(content["html"])
    if isinstance(content.get("text"), str):
        return normalize_multiline_text(content["text"])
    return ""


def node_table_html(node: Dict[str, Any]) -> Optional[str]:
    """HTML of a table node, None for any other node."""
    if node.get("type") != CONTENT_NODE_TABLE:
        return None
    content = node.get("content")
    if not isinstance(content, dict) or not isinstance(content.get("html"), str):
        return None
    return content["html"]


# ============================================================================
# Listing
# ============================================================================

def find_policy_listing_table(html: str) -> Optional[Tag]:
    """First <table> whose header row has a "Name of Policy" cell."""
    soup = make_soup(html)
    for table in soup.find_all("table"):
        if any(LISTING_HEADER in header for header in table_header_cells(table)):
            return table
    return None


def find_listing_table_html_in_payload(html: str) -> Optional[str]:
    """Same search over the table nodes of the embedded payload."""
    try:
        payload = extract_client_work_state(html)
    except DocumentParseError as e:
        logger.debug(f"Ignoring undecodable listing payload: {e}")
        return None
    if not payload:
        return None

    page = payload.get("page") or {}
    for node in collect_content_nodes(page.get("content")):
        table_html = node_table_html(node)
        if table_html is None:
            continue
        if any(LISTING_HEADER in header for header in table_html_header_cells(table_html)):
            return table_html
    return None


def is_table_linked_listing_html(html: str) -> bool:
    """True when a page carries a "Name of Policy" listing table."""
    if find_policy_listing_table(html) is not None:
        return True
    return find_listing_table_html_in_payload(html) is not None


def is_likely_policy_detail_url(url: str, listing_url: str) -> bool:
    """Same host as the listing, not a PDF, and a /page/ path."""
    parsed = urlsplit(url)
    if parsed.hostname != urlsplit(listing_url).hostname:
        return False
    if parsed.path.lower().endswith(".pdf"):
        return False
    return "/page/" in parsed.path


def parse_policy_links_from_table(table: Tag, listing_url: str) -> List[ListingReference]:
    """
    Policy detail links of a listing table, one per row.

    The first cell's link is the policy; its text is the fallback title and
    the second cell's text the fallback code.
    """
    references: List[ListingReference] = []
    seen_urls = set()

    for row in table.find_all("tr"):
        cells = row.find_all(["th", "td"], recursive=False)
        if not cells:
            continue

        anchor = cells[0].find("a", href=True)
        if anchor is None:
            continue

        fallback_title = normalize_inline_text(anchor.get_text() or cells[0].get_text())
        if not fallback_title or fallback_title.lower() == "table of contents":
            continue

        href = normalize_inline_text(anchor["href"])
        if not href:
            continue

        resolved_url = canonical_url(urljoin(listing_url, href))
        if resolved_url in seen_urls or not is_likely_policy_detail_url(resolved_url, listing_url):
            continue
        seen_urls.add(resolved_url)

        fallback_code = normalize_inline_text(cells[1].get_text()) if len(cells) > 1 else ""
        references.append(
            ListingReference(
                key=resolved_url,
                url=resolved_url,
                fallback_title=fallback_title,
                fallback_code=fallback_code,
            )
        )

    return references


def parse_policy_links(html: str, listing_url: str) -> List[ListingReference]:
    """
    Policy references of a listing page.

    Raises:
        ListingParseError: if the page has no "Name of Policy" table
    """
    table = find_policy_listing_table(html)
    if table is None:
        table_html = find_listing_table_html_in_payload(html)
        if table_html is not None:
            table = make_soup(table_html)

    if table is None:
        raise ListingParseError("Could not find a policy table with a 'Name of Policy' column on this page.")

    return parse_policy_links_from_table(table, listing_url)


# ============================================================================
# Detail page
# ============================================================================

def parse_policy_identity(value: Optional[str]) -> Optional[PolicyIdentity]:
    """
    Parse "<chapter>.<number> <title>".

    >>> parse_policy_identity("1.01 Dress Code")
    PolicyIdentity(chapter='1', number='1.01', title='Dress Code')
    """
    normalized = normalize_inline_text(value)
    match = _IDENTITY_PATTERN.match(normalized)
    if not match:
        return None

    chapter, suffix, remainder = match.groups()
    return PolicyIdentity(
        chapter=chapter,
        number=f"{chapter}.{suffix}",
        title=normalize_inline_text(remainder.lstrip("-:")),
    )


def strip_policy_prefix(value: Optional[str]) -> str:
    """Drop a leading "<chapter>.<number>" from a heading."""
    identity = parse_policy_identity(value)
    if identity is None:
        return normalize_inline_text(value)
    return identity.title


def is_metadata_table_html(table_html: str) -> bool:
    """
    Statutory metadata tables have a "statutory authority" column together
    with laws implemented and history, or with notes.
    """
    headers = table_html_header_cells(table_html)

    def has(*candidates: str) -> bool:
        return any(candidate in header for header in headers for candidate in candidates)

    has_statutory = has("statutory authority")
    has_law = has("law(s) implemented", "laws implemented")
    return (has_statutory and has_law and has("history")) or (has_statutory and has("notes"))


def is_metadata_table_node(node: Dict[str, Any]) -> bool:
    table_html = node_table_html(node)
    return table_html is not None and is_metadata_table_html(table_html)


def _find_header_index(headers: List[str], candidates: List[str]) -> int:
    for index, header in enumerate(headers):
        if any(candidate in header for candidate in candidates):
            return index
    return -1


def _read_cell(cells: List[Tag], preferred_index: int, fallback_index: int) -> str:
    index = preferred_index if preferred_index >= 0 else fallback_index
    if index >= len(cells):
        return ""

    cell = cells[index]
    lines = [normalize_inline_text(element.get_text()) for element in cell.select("p,li")]
    lines = [line for line in lines if line]
    if lines:
        return "\n".join(lines)
    return normalize_inline_text(cell.get_text())


def _join_unique(values: List[str]) -> str:
    deduped: List[str] = []
    for value in values:
        normalized = normalize_multiline_text(value)
        if normalized and normalized not in deduped:
            deduped.append(normalized)
    return "\n\n".join(deduped)


def parse_metadata_table(table_html: str) -> TableMetadata:
    """
    Read statutory authority, laws implemented, history and notes.

    Columns are matched by header text; without a recognizable header row
    the first four columns are read positionally.
    """
    soup = make_soup(table_html)
    rows = soup.find_all("tr")
    if not rows:
        return TableMetadata()

    headers = [
        normalize_inline_text(cell.get_text()).lower()
        for cell in rows[0].find_all(["th", "td"], recursive=False)
    ]
    indexes = [
        _find_header_index(headers, ["statutory authority"]),
        _find_header_index(headers, ["law(s) implemented", "laws implemented"]),
        _find_header_index(headers, ["history"]),
        _find_header_index(headers, ["notes"]),
    ]
    start_row = 1 if any(index >= 0 for index in indexes) else 0

    columns: List[List[str]] = [[], [], [], []]
    for row in rows[start_row:]:
        cells = row.find_all(["th", "td"], recursive=False)
        if not cells:
            continue
        for position, preferred_index in enumerate(indexes):
            value = _read_cell(cells, preferred_index, position)
            if value:
                columns[position].append(value)

    return TableMetadata(
        statutory_authority=_join_unique(columns[0]),
        laws_implemented=_join_unique(columns[1]),
        history=_join_unique(columns[2]),
        notes=_join_unique(columns[3]),
    )


def extract_policy_wording(nodes: List[Dict[str, Any]], metadata_index: int, heading_text: str) -> str:
    """
    Text of every node before the metadata table.

    The identity heading itself is skipped; adjacent duplicate segments
    (a heading repeated by a text node) are collapsed.
    """
    limit = metadata_index if metadata_index >= 0 else len(nodes)
    normalized_heading = normalize_inline_text(heading_text)
    segments: List[str] = []

    for node in nodes[:limit]:
        if node.get("type") == CONTENT_NODE_HEADING:
            heading = normalize_inline_text(node_text(node))
            if heading and heading != normalized_heading:
                segments.append(heading)
            continue

        text = node_text(node)
        if text:
            segments.append(text)

    return "\n\n".join(dedupe_adjacent(segments)).strip()


def resolve_identity(reference: ListingReference, *candidates: str) -> Optional[PolicyIdentity]:
    """First parseable identity among the candidates, then the listing fallbacks."""
    for value in (*candidates, reference.fallback_code, reference.fallback_title):
        identity = parse_policy_identity(value)
        if identity is not None:
            return identity
    return None


def parse_policy_page(html: str, reference: ListingReference) -> TableLinkedPolicy:
    """
    Parse a policy detail page.

    Raises:
        DocumentParseError: if the embedded payload is unusable
    """
    payload = extract_client_work_state(html)
    if payload is None:
        return parse_static_policy_page(html, reference)

    page = payload.get("page") or {}
    page_content = page.get("content")
    if not page_content:
        raise DocumentParseError("Missing embedded page content in policy page payload.")

    nodes = collect_content_nodes(page_content)
    if not nodes:
        raise DocumentParseError("No parseable content nodes were found in policy page payload.")

    page_name = normalize_inline_text(page.get("name") or "")
    heading_node = next((node for node in nodes if node.get("type") == CONTENT_NODE_HEADING), None)
    heading_text = normalize_inline_text(node_text(heading_node))

    identity = resolve_identity(reference, heading_text, page_name)
    title = normalize_inline_text(
        (identity.title if identity else "")
        or strip_policy_prefix(heading_text)
        or strip_policy_prefix(page_name)
        or strip_policy_prefix(reference.fallback_title)
    )

    metadata_index = next((index for index, node in enumerate(nodes) if is_metadata_table_node(node)), -1)
    metadata = parse_metadata_table(node_table_html(nodes[metadata_index])) if metadata_index >= 0 else TableMetadata()

    return TableLinkedPolicy(
        policy_chapter=identity.chapter if identity else "",
        policy_number=identity.number if identity else "",
        policy_title=title,
        policy_wording=extract_policy_wording(nodes, metadata_index, heading_text),
        statutory_authority=metadata.statutory_authority,
        laws_implemented=metadata.laws_implemented,
        history=metadata.history,
        notes=metadata.notes,
    )


def parse_static_policy_page(html: str, reference: ListingReference) -> TableLinkedPolicy:
    """
    Fallback for detail pages rendered as plain HTML.

    Only pages whose own <h1> (or <title>) reads "<chapter>.<number> <title>"
    qualify; anything else (sign-in pages, error pages) is a missing payload.
    The body comes from trafilatura's main content extraction, else the
    page's leaf blocks.

    Raises:
        DocumentParseError: if the page carries no policy identity of its own
    """
    soup = make_soup(html)
    identity = None
    heading_text = ""
    for tag in (soup.find("h1"), soup.find("title")):
        text = normalize_inline_text(tag.get_text()) if tag is not None else ""
        identity = parse_policy_identity(text)
        if identity is not None:
            heading_text = text
            break

    if identity is None:
        raise DocumentParseError(
            "Could not find embedded policy page payload.",
            {"url": reference.url or ""},
        )

    extracted = trafilatura.extract(html)
    if extracted:
        segments = [normalize_inline_text(line) for line in extracted.splitlines()]
    else:
        for tag in soup.find_all(STATIC_NOISE_TAGS):
            tag.decompose()
        segments = block_segments(soup.body or soup)
    segments = [segment for segment in segments if segment and segment != heading_text]

    return TableLinkedPolicy(
        policy_chapter=identity.chapter,
        policy_number=identity.number,
        policy_title=identity.title or strip_policy_prefix(reference.fallback_title),
        policy_wording="\n\n".join(dedupe_adjacent(segments)),
    )


class TableLinkScraper(PlatformScraper):
    """Scrapes every detail page linked from a "Name of Policy" table."""

    platform = Platform.TABLE_LINK
    empty_result_message = "Scrape completed, but no policy pages could be parsed."

    async def discover(self, listing_url: str, listing_html: Optional[str] = None) -> List[ListingReference]:
        html = listing_html if listing_html is not None else await self.fetcher.fetch_text(listing_url)
        references = parse_policy_links(html, listing_url)
        if not references:
            raise ListingParseError("No policy links were found in the listing table.")
        return references

    async def extract_one(self, reference: ListingReference) -> TableLinkedPolicy:
        html = await self.fetcher.fetch_text(reference.url)
        return parse_policy_page(html, reference)
