"""
CSV rendering for extracted policy records.

Output is written by the csv module with minimal quoting and LF row
separators, and prefixed with a UTF-8 byte-order mark so spreadsheet
applications detect the encoding.
"""

import csv
import io
from datetime import date
from typing import Iterable, List, Optional, Sequence, Type
from urllib.parse import urlsplit

from policy_scraper.models import Platform, PolicyRecord, RECORD_TYPES
from policy_scraper.utils import sanitize_slug

BOM = "\ufeff"
CSV_CONTENT_TYPE = "text/csv; charset=utf-8"


def _normalize_field(value: Optional[str]) -> str:
    # csv keeps a bare CR inside quoted fields; rows must only carry LF
    return (value or "").replace("\r\n", "\n").replace("\r", "\n")


def to_csv(headers: Sequence[str], rows: Iterable[Sequence[str]]) -> str:
    """
    Render a header row and data rows as CSV text with a leading BOM.

    Args:
        headers: Column headers
        rows: Row values in header order (None is written as empty)

    Returns:
        CSV text, rows separated by "\\n" with no trailing newline
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow([_normalize_field(value) for value in headers])
    writer.writerows([_normalize_field(value) for value in row] for row in rows)

    text = buffer.getvalue()
    if text.endswith("\n"):
        text = text[:-1]
    return BOM + text


def records_to_csv(records: Sequence[PolicyRecord], record_type: Optional[Type[PolicyRecord]] = None) -> str:
    """
    Render policy records with their platform's fixed column order.

    Args:
        records: Records of a single platform type
        record_type: Record class to take headers from when records is empty

    Returns:
        CSV text
    """
    if record_type is None:
        if not records:
            raise ValueError("record_type is required to render an empty record list")
        record_type = type(records[0])
    return to_csv(record_type.csv_headers(), (record.csv_values() for record in records))


def platform_records_to_csv(platform: Platform, records: Sequence[PolicyRecord]) -> str:
    """Render records using the column schema registered for a platform."""
    return records_to_csv(records, RECORD_TYPES[platform])


def build_csv_filename(base_url: str, platform: Platform, today: Optional[date] = None) -> str:
    """
    Build a download filename from the source URL, platform and date.

    Args:
        base_url: Resolved base URL of the district source
        platform: Platform the rows came from
        today: Date stamp (defaults to today)

    Returns:
        Filename such as "in-blm-boarddocs-policies-2024-05-01.csv"
    """
    parsed = urlsplit(base_url)
    segments: List[str] = [segment for segment in parsed.path.split("/") if segment]
    path_slug = "-".join(segments[:2])
    source_slug = sanitize_slug(path_slug or parsed.hostname or "")
    date_slug = (today or date.today()).isoformat()
    return f"{source_slug}-{platform.value}-policies-{date_slug}.csv"
