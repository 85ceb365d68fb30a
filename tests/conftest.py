from __future__ import annotations

import json
from typing import Any, Callable
from urllib.parse import urlsplit

from requests.structures import CaseInsensitiveDict

from policy_scraper.errors import HttpStatusError


class FakeFetcher:
    """In-memory stand-in for Fetcher keyed by URL (GET) or endpoint name (POST)."""

    def __init__(
        self,
        pages: dict[str, Any] | None = None,
        documents: dict[str, Any] | None = None,
        post_handler: Callable[[str, dict[str, str]], str] | None = None,
    ) -> None:
        self.pages = pages or {}
        self.documents = documents or {}
        self.post_handler = post_handler
        self.requests: list[tuple] = []
        self.closed = False

    @staticmethod
    def _lookup(table: dict[str, Any], url: str) -> Any:
        value = table.get(url)
        if value is None:
            raise HttpStatusError(404, url)
        if isinstance(value, Exception):
            raise value
        return value

    async def fetch_text(self, url: str, accept: str | None = None, timeout: float | None = None) -> str:
        self.requests.append(("GET", url))
        return self._lookup(self.pages, url)

    async def fetch_bytes(self, url: str, accept: str | None = None, timeout: float | None = None) -> bytes:
        self.requests.append(("GET", url))
        return self._lookup(self.documents, url)

    async def post_form(
        self,
        url: str,
        data: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> str:
        payload = dict(data or {})
        self.requests.append(("POST", url, payload, dict(headers or {})))
        endpoint = urlsplit(url).path.rsplit("/", 1)[-1]
        if self.post_handler is None:
            raise HttpStatusError(404, url)
        return self.post_handler(endpoint, payload)

    def close(self) -> None:
        self.closed = True


class FakeResponse:
    def __init__(self, status_code: int = 200, content: bytes = b"", headers: dict[str, str] | None = None) -> None:
        self.status_code = status_code
        self.content = content
        self.headers = CaseInsensitiveDict(headers or {})
        self.closed = False

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Replays queued responses (or raises queued exceptions) in order."""

    def __init__(self, responses: list[Any]) -> None:
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.responses:
            raise AssertionError(f"unexpected request {method} {url}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self) -> None:
        self.closed = True


def client_state_page(content: Any, name: str = "") -> str:
    """Detail page HTML embedding a clientWorkStateTemp payload."""
    payload = json.dumps({"page": {"name": name, "content": content}})
    literal = json.dumps(payload)
    return (
        "<html><head><script>"
        f"window.clientWorkStateTemp = JSON.parse({literal});"
        "</script></head><body><div id='app'></div></body></html>"
    )


def heading_node(text: str) -> dict[str, Any]:
    return {"type": "CONTENT_NODE_HEADING", "content": {"text": text}}


def html_node(html: str) -> dict[str, Any]:
    return {"type": "CONTENT_NODE_RICH_TEXT", "content": {"html": html}}


def table_node(html: str) -> dict[str, Any]:
    return {"type": "CONTENT_NODE_TABLE", "content": {"html": html}}
