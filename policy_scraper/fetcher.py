"""
HTTP Fetcher Module

Fetches listing pages, detail pages, BoardDocs AJAX fragments and policy PDFs:
- Manual redirect following with a bounded depth
- Per-call timeouts
- 403 retry with a browser user agent (anti-bot gating on district sites)
- Linear-backoff retry for transient failures
"""

import asyncio
import logging
from typing import Dict, Mapping, Optional
from urllib.parse import urljoin

import requests

from policy_scraper.config import settings
from policy_scraper.errors import (
    HttpStatusError,
    RequestTimeoutError,
    TooManyRedirectsError,
    TransportError,
)
from policy_scraper.utils import sleep_backoff

logger = logging.getLogger(__name__)

HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
PDF_ACCEPT = "application/pdf,application/octet-stream,*/*;q=0.8"
AJAX_ACCEPT = "text/html, */*; q=0.01"

REDIRECT_STATUSES = {301, 302, 303, 307, 308}


class Fetcher:
    """Blocking requests.Session wrapped in an asyncio-friendly retry loop."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
        max_redirects: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_backoff: Optional[float] = None,
        browser_user_agent: Optional[str] = None,
    ):
        """Initialize fetcher; unspecified limits come from settings."""
        self.session = session or requests.Session()
        self.timeout = settings.http_timeout if timeout is None else timeout
        self.max_redirects = settings.max_redirects if max_redirects is None else max_redirects
        self.max_retries = settings.max_retries if max_retries is None else max_retries
        self.retry_backoff = settings.retry_backoff_seconds if retry_backoff is None else retry_backoff
        self.browser_user_agent = browser_user_agent or settings.browser_user_agent

    async def fetch_text(
        self,
        url: str,
        accept: str = HTML_ACCEPT,
        timeout: Optional[float] = None,
    ) -> str:
        """
        GET a URL and decode the body as UTF-8.

        Args:
            url: Absolute URL
            accept: Accept header
            timeout: Optional per-call timeout in seconds

        Returns:
            Response body text
        """
        content = await self.fetch_bytes(url, accept=accept, timeout=timeout)
        return decode_body(content)

    async def fetch_bytes(
        self,
        url: str,
        accept: str = PDF_ACCEPT,
        timeout: Optional[float] = None,
    ) -> bytes:
        """
        GET a URL and return the raw body.

        Args:
            url: Absolute URL
            accept: Accept header
            timeout: Optional per-call timeout in seconds

        Returns:
            Response body bytes
        """
        return await self._fetch_with_retries(
            "GET",
            url,
            headers={"Accept": accept, "Accept-Encoding": "identity"},
            timeout=timeout,
        )

    async def post_form(
        self,
        url: str,
        data: Optional[Mapping[str, str]] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """
        POST a urlencoded form with the browser user agent and decode the reply.

        Args:
            url: Absolute URL
            data: Form fields
            headers: Extra request headers
            timeout: Optional per-call timeout in seconds

        Returns:
            Response body text
        """
        request_headers = {
            "Accept": AJAX_ACCEPT,
            "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
        }
        request_headers.update(headers or {})
        content = await self._fetch_with_retries(
            "POST",
            url,
            headers=request_headers,
            data=dict(data or {}),
            timeout=timeout,
            browser_first=True,
        )
        return decode_body(content)

    async def _fetch_with_retries(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        data: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        browser_first: bool = False,
    ) -> bytes:
        attempts = self.max_retries + 1
        last_error: Optional[TransportError] = None

        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.to_thread(
                    self._request_with_fallback,
                    method,
                    url,
                    headers,
                    data,
                    self.timeout if timeout is None else timeout,
                    browser_first,
                )
            except TransportError as e:
                last_error = e
                if attempt >= attempts:
                    break
                logger.debug(
                    f"Attempt {attempt}/{attempts} failed for {url}, "
                    f"retrying in {self.retry_backoff * attempt:.2f}s: {e}"
                )
                await sleep_backoff(attempt, self.retry_backoff)

        logger.debug(f"Giving up on {url} after {attempts} attempts: {last_error}")
        raise last_error

    def _request_with_fallback(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        data: Optional[Dict[str, str]],
        timeout: float,
        browser_first: bool,
    ) -> bytes:
        """One attempt: plain request first, browser user agent on 403."""
        if browser_first:
            return self._request(method, url, headers, data, timeout, use_browser_user_agent=True)

        try:
            return self._request(method, url, headers, data, timeout, use_browser_user_agent=False)
        except HttpStatusError as e:
            if not e.is_blocked:
                raise
            logger.debug(f"403 from {url}, retrying with browser user agent")
            return self._request(method, url, headers, data, timeout, use_browser_user_agent=True)

    def _request(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        data: Optional[Dict[str, str]],
        timeout: float,
        use_browser_user_agent: bool,
    ) -> bytes:
        """Issue a request, following redirects by hand."""
        request_headers = dict(headers)
        # None removes the session default so no user agent is sent
        request_headers["User-Agent"] = self.browser_user_agent if use_browser_user_agent else None

        current_url = url
        current_method = method
        current_data = data

        for _ in range(self.max_redirects + 1):
            logger.debug(f"{current_method} {current_url}")
            try:
                response = self.session.request(
                    current_method,
                    current_url,
                    headers=request_headers,
                    data=current_data,
                    timeout=timeout,
                    allow_redirects=False,
                )
            except requests.Timeout as e:
                raise RequestTimeoutError(f"Request timed out for {current_url}", current_url) from e
            except requests.RequestException as e:
                raise TransportError(f"Request error for {current_url}: {e}", current_url) from e

            status_code = response.status_code
            location = response.headers.get("Location") or response.headers.get("location")

            if status_code in REDIRECT_STATUSES and location:
                response.close()
                current_url = urljoin(current_url, location)
                if current_method == "POST" and status_code in (301, 302, 303):
                    current_method = "GET"
                    current_data = None
                continue

            if status_code < 200 or status_code >= 300:
                response.close()
                raise HttpStatusError(status_code, current_url)

            return response.content

        raise TooManyRedirectsError(f"Too many redirects while fetching {url}", url)

    def close(self):
        """Close the underlying session."""
        self.session.close()


def decode_body(content: bytes) -> str:
    """Decode a response body as UTF-8 (BOM tolerant, lossy on bad bytes)."""
    return content.decode("utf-8-sig", errors="replace")
