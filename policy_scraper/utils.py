"""
Utility functions and helpers for the policy scraper.
"""

import asyncio
import logging
import logging.handlers
import re
import time
from datetime import datetime
from functools import wraps
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

from requests.utils import requote_uri

from policy_scraper.config import settings, LOGS_DIR
from policy_scraper.errors import InvalidSourceUrlError, MissingSourceUrlError

logger = logging.getLogger(__name__)


# ============================================================================
# Logging Setup
# ============================================================================

def setup_logging(name: str = "policy_scraper", level: Optional[str] = None) -> logging.Logger:
    """
    Configure and return a logger instance.

    Args:
        name: Logger name (the package root by default so every module inherits it)
        level: Optional level name overriding settings.log_level

    Returns:
        logging.Logger: Configured logger
    """
    log_level = getattr(logging, (level or settings.log_level).upper())
    logger_ = logging.getLogger(name)
    logger_.setLevel(log_level)

    # Re-running setup only adjusts levels
    if logger_.handlers:
        for handler in logger_.handlers:
            handler.setLevel(log_level)
        return logger_

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_format = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    console_handler.setFormatter(console_format)
    logger_.addHandler(console_handler)

    # File handler
    if settings.log_to_file:
        LOGS_DIR.mkdir(exist_ok=True)
        log_file = LOGS_DIR / f"pipeline_{datetime.now().strftime('%Y%m%d')}.log"
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,  # 10 MB
            backupCount=5,
        )
        file_handler.setLevel(log_level)
        file_format = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        file_handler.setFormatter(file_format)
        logger_.addHandler(file_handler)

    return logger_


# ============================================================================
# Decorators
# ============================================================================

def timeit(func):
    """Decorator to measure execution time of a coroutine function."""
    @wraps(func)
    async def wrapper(*args, **kwargs):
        start = time.time()
        try:
            return await func(*args, **kwargs)
        finally:
            elapsed = time.time() - start
            logger.info(f"{func.__name__} took {elapsed:.2f}s")
    return wrapper


async def sleep_backoff(attempt: int, delay: float) -> None:
    """Sleep for a linear backoff interval (delay * attempt)."""
    if delay > 0:
        await asyncio.sleep(delay * attempt)


# ============================================================================
# String Utilities
# ============================================================================

_INLINE_WHITESPACE = re.compile(r"\s+")


def normalize_inline_text(value: Optional[str]) -> str:
    """
    Collapse all whitespace (including non-breaking spaces) to single spaces.

    Args:
        value: Raw text

    Returns:
        Single-line, trimmed text
    """
    if not value:
        return ""
    return _INLINE_WHITESPACE.sub(" ", value.replace("\u00a0", " ")).strip()


def normalize_multiline_text(value: Optional[str]) -> str:
    """
    Normalize line endings and indentation while keeping paragraph breaks.

    Args:
        value: Raw multi-line text

    Returns:
        Text with LF line endings and at most one blank line between blocks
    """
    if not value:
        return ""
    text = value.replace("\u00a0", " ").replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n[ \t]+", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def dedupe_adjacent(values: list[str]) -> list[str]:
    """Drop values equal to the value right before them."""
    deduped: list[str] = []
    for value in values:
        if deduped and deduped[-1] == value:
            continue
        deduped.append(value)
    return deduped


def sanitize_slug(value: str, default: str = "policies", max_length: int = 80) -> str:
    """
    Turn arbitrary text into a lowercase, dash-separated filename slug.

    Args:
        value: Original text
        default: Returned when nothing survives sanitizing
        max_length: Maximum slug length

    Returns:
        Sanitized slug
    """
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug[:max_length].strip("-") or default


def normalize_source_url(source_url: Optional[str]) -> str:
    """
    Normalize a caller-supplied URL (ensure a scheme, drop the fragment).

    Args:
        source_url: Raw URL as typed by the user

    Returns:
        Absolute http(s) URL

    Raises:
        MissingSourceUrlError: if the URL is empty
        InvalidSourceUrlError: if the URL cannot be parsed or has no host
    """
    trimmed = (source_url or "").strip()
    if not trimmed:
        raise MissingSourceUrlError("Please provide a district policy URL.")

    if not re.match(r"^https?://", trimmed, re.IGNORECASE):
        trimmed = f"https://{trimmed}"

    try:
        parsed = urlsplit(trimmed)
        hostname = parsed.hostname
        # Accessing the port validates it
        parsed.port
    except ValueError as e:
        raise InvalidSourceUrlError(
            "Invalid URL. Please enter a full district policy URL.", {"url": source_url}
        ) from e

    if not hostname or " " in parsed.netloc:
        raise InvalidSourceUrlError(
            "Invalid URL. Please enter a full district policy URL.", {"url": source_url}
        )

    path = parsed.path or "/"
    return urlunsplit((parsed.scheme.lower(), parsed.netloc.lower(), path, parsed.query, ""))


def canonical_url(url: str) -> str:
    """
    Dedupe form of an absolute URL.

    Scheme and host are lower-cased, the fragment is dropped and
    percent-encoding is normalized, so differently-encoded links to one
    document compare equal.
    """
    parsed = urlsplit(requote_uri(url.strip()))
    path = parsed.path or "/"
    return urlunsplit((parsed.scheme.lower(), parsed.netloc.lower(), path, parsed.query, ""))


def clamp(value: int, minimum: int, maximum: int) -> int:
    """Clamp value into [minimum, maximum]."""
    return max(minimum, min(maximum, value))


# ============================================================================
# Progress and Reporting
# ============================================================================

class ProgressTracker:
    """Track progress of batch operations."""

    def __init__(self, total: int, name: str = "Processing"):
        self.total = total
        self.name = name
        self.current = 0
        self.failed = 0
        self.start_time = datetime.now()

    def update(self, increment: int = 1, failed: bool = False):
        """Update progress."""
        self.current += increment
        if failed:
            self.failed += increment
        elapsed = (datetime.now() - self.start_time).total_seconds()
        rate = self.current / elapsed if elapsed > 0 else 0
        remaining = (self.total - self.current) / rate if rate > 0 else 0

        percentage = (self.current / self.total) * 100 if self.total else 100.0
        logger.debug(
            f"{self.name}: {self.current}/{self.total} ({percentage:.1f}%) - "
            f"Rate: {rate:.1f} items/s - ETA: {remaining:.0f}s"
        )

    def finish(self):
        """Mark as finished."""
        elapsed = (datetime.now() - self.start_time).total_seconds()
        logger.info(
            f"{self.name} completed in {elapsed:.1f}s "
            f"({self.current - self.failed} ok, {self.failed} failed)"
        )
