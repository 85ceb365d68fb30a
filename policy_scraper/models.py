"""
Data model shared by the detector, the platform scrapers and the exporter.

Every value here is request-scoped: references are produced by a listing
parser, records by a document extractor, and an ExtractionResult collects
both buckets for one run.
"""

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from policy_scraper.errors import UnsupportedPlatformError


class Platform(Enum):
    """Supported policy publishing platforms."""
    BOARDDOCS = "boarddocs"
    TABLE_LINK = "table-link"
    ACCORDION_PDF = "accordion-pdf"


AUTO_PLATFORM = "auto"


def parse_platform_hint(hint: Optional[str]) -> Optional[Platform]:
    """
    Parse a caller-supplied platform hint.

    Args:
        hint: "auto", a Platform value, or None

    Returns:
        Platform, or None when detection should run

    Raises:
        UnsupportedPlatformError: for any other value
    """
    if hint is None:
        return None
    if isinstance(hint, Platform):
        return hint

    normalized = hint.strip().lower().replace("_", "-")
    if not normalized or normalized == AUTO_PLATFORM:
        return None

    for platform in Platform:
        if platform.value == normalized:
            return platform

    valid = ", ".join([AUTO_PLATFORM] + [p.value for p in Platform])
    raise UnsupportedPlatformError(
        f"Unsupported platform '{hint}'. Expected one of: {valid}.",
        {"platform": hint},
    )


@dataclass
class ListingReference:
    """Pointer to one policy document discovered on a listing."""
    key: str  # canonical dedupe key
    url: Optional[str] = None
    item_id: Optional[str] = None
    fallback_title: str = ""
    fallback_code: str = ""
    hints: Dict[str, str] = field(default_factory=dict)

    @property
    def label(self) -> str:
        """Human-readable identifier used in failure reports."""
        return self.url or self.item_id or self.key


@dataclass
class FailedItem:
    """A document reference that could not be turned into a record."""
    reference: str
    reason: str

    def to_dict(self) -> Dict[str, str]:
        return {"reference": self.reference, "reason": self.reason}


class PolicyRecord:
    """
    Mixin for the per-platform record dataclasses.

    Subclasses declare CSV_COLUMNS as (header, attribute) pairs in output
    order, plus the attributes holding the record's title and wording.
    """
    CSV_COLUMNS: ClassVar[Tuple[Tuple[str, str], ...]] = ()
    TITLE_FIELD: ClassVar[str] = "policy_title"
    WORDING_FIELD: ClassVar[str] = "policy_wording"

    @classmethod
    def csv_headers(cls) -> List[str]:
        return [header for header, _ in cls.CSV_COLUMNS]

    def csv_values(self) -> List[str]:
        return [getattr(self, attribute) or "" for _, attribute in self.CSV_COLUMNS]

    @property
    def record_title(self) -> str:
        return getattr(self, self.TITLE_FIELD)

    @property
    def record_wording(self) -> str:
        return getattr(self, self.WORDING_FIELD)

    def has_identity(self) -> bool:
        """A record is worth keeping when it has a title or a body."""
        return bool(self.record_title.strip() or self.record_wording.strip())

    def to_dict(self) -> Dict[str, str]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class BoardDocsPolicy(PolicyRecord):
    """One BoardDocs policy item."""
    section: str = ""
    code: str = ""
    adopted_date: str = ""
    revised_date: str = ""
    status: str = ""
    policy_title: str = ""
    policy_wording: str = ""

    CSV_COLUMNS: ClassVar[Tuple[Tuple[str, str], ...]] = (
        ("Section", "section"),
        ("Code", "code"),
        ("Adopted Date", "adopted_date"),
        ("Revised Date", "revised_date"),
        ("Status", "status"),
        ("Policy Title", "policy_title"),
        ("Policy Wording", "policy_wording"),
    )


@dataclass
class TableLinkedPolicy(PolicyRecord):
    """One policy detail page reached from a "Name of Policy" table."""
    policy_chapter: str = ""
    policy_number: str = ""
    policy_title: str = ""
    policy_wording: str = ""
    statutory_authority: str = ""
    laws_implemented: str = ""
    history: str = ""
    notes: str = ""

    CSV_COLUMNS: ClassVar[Tuple[Tuple[str, str], ...]] = (
        ("Policy Chapter", "policy_chapter"),
        ("Policy Number", "policy_number"),
        ("Policy Title", "policy_title"),
        ("Policy Wording", "policy_wording"),
        ("Statutory Authority", "statutory_authority"),
        ("Law(s) Implemented", "laws_implemented"),
        ("History", "history"),
        ("Notes", "notes"),
    )


@dataclass
class AccordionPdfPolicy(PolicyRecord):
    """One policy PDF linked from an accordion "Series" panel."""
    board_policy_number: str = ""
    title: str = ""
    series: str = ""
    adopted_date: str = ""
    revision_history: str = ""
    policy_wording: str = ""
    legal_references: str = ""
    cross_references: str = ""

    CSV_COLUMNS: ClassVar[Tuple[Tuple[str, str], ...]] = (
        ("Board Policy Number", "board_policy_number"),
        ("Title", "title"),
        ("Series", "series"),
        ("Adopted Date", "adopted_date"),
        ("Revision History", "revision_history"),
        ("Policy Wording", "policy_wording"),
        ("Legal References", "legal_references"),
        ("Cross References", "cross_references"),
    )
    TITLE_FIELD: ClassVar[str] = "title"


RECORD_TYPES = {
    Platform.BOARDDOCS: BoardDocsPolicy,
    Platform.TABLE_LINK: TableLinkedPolicy,
    Platform.ACCORDION_PDF: AccordionPdfPolicy,
}


@dataclass
class ExtractionResult:
    """Outcome of one extraction request."""
    platform: Platform
    base_url: str
    listing_url: str
    rows: List[Any] = field(default_factory=list)
    discovered_count: int = 0
    failed_items: List[FailedItem] = field(default_factory=list)
    selected_books: List[str] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def failed_count(self) -> int:
        return len(self.failed_items)

    def summary(self) -> str:
        """One-line, human-readable summary of the run."""
        text = (
            f"Extracted {self.row_count} of {self.discovered_count} "
            f"{self.platform.value} policies"
        )
        if self.selected_books:
            text += f" from {len(self.selected_books)} book(s)"
        if self.failed_items:
            text += f"; {self.failed_count} failed"
        return text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform.value,
            "base_url": self.base_url,
            "listing_url": self.listing_url,
            "rows": [row.to_dict() for row in self.rows],
            "discovered_count": self.discovered_count,
            "failed_items": [item.to_dict() for item in self.failed_items],
            "selected_books": list(self.selected_books),
        }
