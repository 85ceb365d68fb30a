from __future__ import annotations

import json
from operator import attrgetter

import pytest

from conftest import FakeFetcher, client_state_page, heading_node, html_node, table_node
from policy_scraper.errors import DocumentParseError, ListingParseError, NoPoliciesParsedError
from policy_scraper.models import ListingReference, Platform
from policy_scraper.platforms import table_link
from policy_scraper.platforms.table_link import (
    TableLinkScraper,
    collect_content_nodes,
    decode_js_string_literal,
    extract_client_work_state,
    extract_policy_wording,
    is_metadata_table_html,
    is_table_linked_listing_html,
    parse_metadata_table,
    parse_policy_identity,
    parse_policy_links,
    parse_policy_page,
    strip_policy_prefix,
)

LISTING_URL = "https://www.district.example.org/page/policies"

METADATA_TABLE = (
    "<table>"
    "<tr><th>Statutory Authority</th><th>Law(s) Implemented</th><th>History</th></tr>"
    "<tr><td><p>1001.41</p><p>1001.42</p></td><td>1006.07</td><td>New 7-1-2010</td></tr>"
    "<tr><td><p>1001.41</p><p>1001.42</p></td><td></td><td>Amended 2-2-2020</td></tr>"
    "</table>"
)


def listing_html(rows: str, header: str = "Name of Policy") -> str:
    return (
        "<html><body><table>"
        f"<tr><th>{header}</th><th>Policy Number</th></tr>"
        f"{rows}"
        "</table></body></html>"
    )


def reference(url: str = "https://www.district.example.org/page/123", **kwargs) -> ListingReference:
    return ListingReference(key=url, url=url, **kwargs)


class TestPayload:
    """Embedded clientWorkStateTemp payload decoding."""

    def test_decode_plain_json_literal(self) -> None:
        assert decode_js_string_literal('"{\\"a\\": 1}"') == '{"a": 1}'

    def test_decode_javascript_only_escapes(self) -> None:
        assert decode_js_string_literal("\"\\x41 it\\'s\\v\"") == "A it's\x0b"

    def test_decode_failure(self) -> None:
        with pytest.raises(DocumentParseError):
            decode_js_string_literal('"unterminated')

    def test_extract_client_work_state(self) -> None:
        html = client_state_page([heading_node("1.01 Dress Code")], name="Dress Code")

        payload = extract_client_work_state(html)

        assert payload["page"]["name"] == "Dress Code"
        assert payload["page"]["content"][0]["type"] == "CONTENT_NODE_HEADING"

    def test_page_without_payload(self) -> None:
        assert extract_client_work_state("<html><script>var x = 1;</script></html>") is None

    def test_escaped_closing_tags(self) -> None:
        literal = json.dumps(json.dumps({"page": {"content": [html_node("<p>Hello</p>")]}})).replace("</", "<\\/")
        html = f"<script>window.clientWorkStateTemp = JSON.parse({literal});</script>"

        payload = extract_client_work_state(html)

        assert payload["page"]["content"][0]["content"]["html"] == "<p>Hello</p>"

    def test_collect_content_nodes_walks_nested_values(self) -> None:
        tree = {
            "sections": [
                {"type": "SECTION", "children": [heading_node("A"), {"layout": {"inner": html_node("<p>B</p>")}}]},
                {"type": "CONTENT_NODE_TABLE", "content": {"html": "<table></table>"}},
            ]
        }

        types = [node["type"] for node in collect_content_nodes(tree)]

        assert types == ["CONTENT_NODE_HEADING", "CONTENT_NODE_RICH_TEXT", "CONTENT_NODE_TABLE"]


class TestIdentity:
    """Policy number/title heuristics."""

    def test_parse_policy_identity(self) -> None:
        identity = parse_policy_identity("1.01 Dress Code")
        assert (identity.chapter, identity.number, identity.title) == ("1", "1.01", "Dress Code")

        identity = parse_policy_identity("3 . 10A - Fees")
        assert (identity.chapter, identity.number, identity.title) == ("3", "3.10A", "Fees")

    def test_parse_policy_identity_rejects_plain_titles(self) -> None:
        assert parse_policy_identity("Dress Code") is None
        assert parse_policy_identity("1. Introduction") is None
        assert parse_policy_identity("") is None

    def test_strip_policy_prefix(self) -> None:
        assert strip_policy_prefix("2.05: Student Records") == "Student Records"
        assert strip_policy_prefix("Student Records") == "Student Records"


class TestListing:
    """Listing table parsing."""

    def test_parse_policy_links_filters_rows(self) -> None:
        rows = (
            '<tr><td><a href="/page/123">1.01 Dress Code</a></td><td>1.01</td></tr>'
            '<tr><td><a href="/page/toc">Table of Contents</a></td><td></td></tr>'
            '<tr><td><a href="/files/policy.pdf">1.02 PDF</a></td><td>1.02</td></tr>'
            '<tr><td><a href="https://other.example.org/page/9">1.03 Elsewhere</a></td><td></td></tr>'
            '<tr><td><a href="/about">About</a></td><td></td></tr>'
            '<tr><td><a href="/page/123">1.01 Again</a></td><td></td></tr>'
            '<tr><td>No link</td><td></td></tr>'
            '<tr><td><a href="page/124">1.04 Uniforms</a></td><td>1.04</td></tr>'
        )

        references = parse_policy_links(listing_html(rows), LISTING_URL)

        assert [ref.url for ref in references] == [
            "https://www.district.example.org/page/123",
            "https://www.district.example.org/page/page/124",
        ]
        assert references[0].fallback_title == "1.01 Dress Code"
        assert references[0].fallback_code == "1.01"

    def test_differently_encoded_links_collapse(self) -> None:
        rows = (
            '<tr><td><a href="/page/101">1.01 Dress Code</a></td></tr>'
            '<tr><td><a href="/page/101#top">1.01 Dress Code</a></td></tr>'
            '<tr><td><a href="https://WWW.District.example.org/page/101">1.01 Dress Code</a></td></tr>'
            '<tr><td><a href="/page/%31%30%31">1.01 Dress Code</a></td></tr>'
        )

        references = parse_policy_links(listing_html(rows), LISTING_URL)

        assert [ref.key for ref in references] == ["https://www.district.example.org/page/101"]

    def test_listing_table_inside_payload(self) -> None:
        table = '<table><tr><td>Name of Policy</td></tr><tr><td><a href="/page/5">2.01 Fees</a></td></tr></table>'
        html = client_state_page([heading_node("Policies"), table_node(table)])

        assert is_table_linked_listing_html(html)
        references = parse_policy_links(html, LISTING_URL)
        assert [ref.url for ref in references] == ["https://www.district.example.org/page/5"]

    def test_page_without_listing_table(self) -> None:
        html = listing_html("", header="Something Else")

        assert not is_table_linked_listing_html(html)
        with pytest.raises(ListingParseError, match="Name of Policy"):
            parse_policy_links(html, LISTING_URL)

    @pytest.mark.asyncio
    async def test_empty_listing_table_is_fatal(self) -> None:
        fetcher = FakeFetcher(pages={LISTING_URL: listing_html("")})

        with pytest.raises(ListingParseError, match="No policy links were found"):
            await TableLinkScraper(fetcher).scrape(LISTING_URL)


class TestMetadata:
    """Statutory metadata table handling."""

    def test_is_metadata_table_html(self) -> None:
        assert is_metadata_table_html(METADATA_TABLE)
        assert is_metadata_table_html("<table><tr><td>Statutory Authority</td><td>Notes</td></tr></table>")
        assert not is_metadata_table_html("<table><tr><td>Statutory Authority</td><td>History</td></tr></table>")
        assert not is_metadata_table_html("<table><tr><td>Name of Policy</td></tr></table>")

    def test_parse_metadata_table_by_header(self) -> None:
        metadata = parse_metadata_table(METADATA_TABLE)

        assert metadata.statutory_authority == "1001.41\n1001.42"
        assert metadata.laws_implemented == "1006.07"
        assert metadata.history == "New 7-1-2010\n\nAmended 2-2-2020"
        assert metadata.notes == ""

    def test_parse_metadata_table_positional(self) -> None:
        metadata = parse_metadata_table("<table><tr><td>A</td><td>B</td><td>C</td><td>D</td></tr></table>")

        assert (metadata.statutory_authority, metadata.laws_implemented, metadata.history, metadata.notes) == (
            "A",
            "B",
            "C",
            "D",
        )

    def test_wording_stops_at_metadata_table(self) -> None:
        nodes = [
            heading_node("1.01 Dress Code"),
            heading_node("Purpose"),
            {"type": "CONTENT_NODE_TEXT", "content": {"text": "Purpose"}},
            html_node("<p>Students shall dress appropriately.</p><ul><li>No hats</li></ul>"),
            table_node(METADATA_TABLE),
            html_node("<p>Footer text</p>"),
        ]

        wording = extract_policy_wording(nodes, 4, "1.01 Dress Code")

        assert wording == "Purpose\n\nStudents shall dress appropriately.\n\nNo hats"


class TestDetailPage:
    """Detail page parsing."""

    def test_full_detail_page(self) -> None:
        html = client_state_page(
            [
                heading_node("1.01 Dress Code"),
                html_node("<p>Students shall dress appropriately.</p>"),
                table_node(METADATA_TABLE),
            ],
            name="1.01 Dress Code",
        )

        policy = parse_policy_page(html, reference(fallback_title="ignored"))

        assert policy.policy_chapter == "1"
        assert policy.policy_number == "1.01"
        assert policy.policy_title == "Dress Code"
        assert policy.policy_wording == "Students shall dress appropriately."
        assert policy.laws_implemented == "1006.07"

    def test_identity_falls_back_to_page_name_then_listing(self) -> None:
        html = client_state_page([heading_node("Dress Code"), html_node("<p>Body</p>")], name="4.20 Dress Code")
        policy = parse_policy_page(html, reference())
        assert (policy.policy_number, policy.policy_title) == ("4.20", "Dress Code")

        html = client_state_page([html_node("<p>Body</p>")])
        policy = parse_policy_page(html, reference(fallback_title="Uniforms", fallback_code="5.10"))
        assert (policy.policy_chapter, policy.policy_number, policy.policy_title) == ("5", "5.10", "Uniforms")

    def test_payload_without_content(self) -> None:
        with pytest.raises(DocumentParseError, match="Missing embedded page content"):
            parse_policy_page(client_state_page([]), reference())

    def test_payload_without_content_nodes(self) -> None:
        with pytest.raises(DocumentParseError, match="No parseable content nodes"):
            parse_policy_page(client_state_page([{"type": "SECTION"}]), reference())

    def test_static_page_with_block_fallback(self, monkeypatch) -> None:
        monkeypatch.setattr(table_link.trafilatura, "extract", lambda html: None)
        html = (
            "<html><head><title>District</title></head><body>"
            "<nav><p>Menu</p></nav><h1>2.03 Field Trips</h1>"
            "<p>Trips require approval.</p><footer><p>Contact us</p></footer>"
            "</body></html>"
        )

        policy = parse_policy_page(html, reference())

        assert policy.policy_number == "2.03"
        assert policy.policy_title == "Field Trips"
        assert policy.policy_wording == "Trips require approval."

    def test_static_page_uses_main_content_extraction(self, monkeypatch) -> None:
        monkeypatch.setattr(
            table_link.trafilatura,
            "extract",
            lambda html: "2.03 Field Trips\nTrips require approval.\n\nParents sign forms.",
        )
        html = "<html><body><h1>2.03 Field Trips</h1><p>ignored</p></body></html>"

        policy = parse_policy_page(html, reference())

        assert policy.policy_wording == "Trips require approval.\n\nParents sign forms."

    def test_page_without_payload_or_identity_fails(self) -> None:
        html = (
            "<html><head><title>Sign in</title></head><body>"
            "<h1>Sign in</h1><p>Please sign in to continue.</p></body></html>"
        )
        listed = reference(fallback_title="1.01 Dress Code", fallback_code="1.01")

        with pytest.raises(DocumentParseError, match="Could not find embedded policy page payload"):
            parse_policy_page(html, listed)


@pytest.mark.asyncio
async def test_interstitial_detail_page_is_a_failed_item() -> None:
    fetcher = FakeFetcher(
        pages={
            LISTING_URL: listing_html(
                '<tr><td><a href="/page/1">1.01 Dress Code</a></td></tr>'
                '<tr><td><a href="/page/2">1.02 Uniforms</a></td></tr>'
            ),
            "https://www.district.example.org/page/1": "<html><body><p>Please sign in to continue.</p></body></html>",
            "https://www.district.example.org/page/2": client_state_page([html_node("<p>Wear uniforms.</p>")]),
        }
    )

    result = await TableLinkScraper(fetcher).scrape(LISTING_URL)

    assert [row.policy_number for row in result.rows] == ["1.02"]
    assert result.failed_items[0].reference == "https://www.district.example.org/page/1"
    assert result.failed_items[0].reason == "Could not find embedded policy page payload."


@pytest.mark.asyncio
async def test_scenario_dress_code_end_to_end() -> None:
    detail_url = "https://www.district.example.org/page/123"
    fetcher = FakeFetcher(
        pages={
            LISTING_URL: listing_html('<tr><td><a href="/page/123">1.01 Dress Code</a></td><td></td></tr>'),
            detail_url: client_state_page([html_node("<p>Students shall dress appropriately.</p>")]),
        }
    )

    result = await TableLinkScraper(fetcher).scrape(LISTING_URL)

    assert result.platform == Platform.TABLE_LINK
    assert result.base_url == "https://www.district.example.org"
    assert result.discovered_count == 1
    row = result.rows[0]
    assert row.policy_number == "1.01"
    assert row.policy_title == "Dress Code"
    assert "Students shall dress appropriately." in row.policy_wording


@pytest.mark.asyncio
async def test_all_detail_pages_failing() -> None:
    fetcher = FakeFetcher(
        pages={LISTING_URL: listing_html('<tr><td><a href="/page/404">1.01 Gone</a></td></tr>')}
    )

    with pytest.raises(NoPoliciesParsedError, match="no policy pages could be parsed") as excinfo:
        await TableLinkScraper(fetcher).scrape(LISTING_URL)

    assert excinfo.value.details["failed_items"][0]["reference"] == "https://www.district.example.org/page/404"


@pytest.mark.asyncio
async def test_rerun_yields_same_rows() -> None:
    pages = {
        LISTING_URL: listing_html(
            '<tr><td><a href="/page/1">1.01 A</a></td></tr><tr><td><a href="/page/2">1.02 B</a></td></tr>'
        ),
        "https://www.district.example.org/page/1": client_state_page([html_node("<p>First.</p>")]),
        "https://www.district.example.org/page/2": client_state_page([html_node("<p>Second.</p>")]),
    }

    first = await TableLinkScraper(FakeFetcher(pages=pages)).scrape(LISTING_URL)
    second = await TableLinkScraper(FakeFetcher(pages=pages)).scrape(LISTING_URL)

    by_number = attrgetter("policy_number")
    assert sorted(first.rows, key=by_number) == sorted(second.rows, key=by_number)
