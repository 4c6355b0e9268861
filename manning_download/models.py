"""Plain data types shared by the session, catalog and download steps."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .errors import ConfigurationError


class BookFormat(str, Enum):
    PDF = "PDF"
    EPUB = "EPUB"

    @property
    def extension(self) -> str:
        return self.value.lower()

    @classmethod
    def parse(cls, value: str) -> "BookFormat":
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ConfigurationError(
                f"Unknown format '{value}'. Expected one of: "
                f"{', '.join(f.value for f in cls)}"
            ) from None


# Download order when both formats are present.
FORMAT_ORDER = (BookFormat.PDF, BookFormat.EPUB)


@dataclass(frozen=True)
class Credentials:
    identifier: str
    secret: str = field(repr=False)


@dataclass
class SessionToken:
    """Cookies captured after a successful login, keyed by site."""

    site: str
    cookies: List[Dict[str, Any]]
    captured_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {"cookies": self.cookies, "captured_at": self.captured_at}

    @classmethod
    def from_dict(cls, site: str, data: Dict[str, Any]) -> "SessionToken":
        cookies = data.get("cookies")
        if not isinstance(cookies, list):
            raise ValueError(f"Saved session for {site} has no cookie list")
        return cls(site=site, cookies=cookies, captured_at=data.get("captured_at", ""))


@dataclass
class CatalogEntry:
    """
    One purchased title as seen in the dashboard listing.

    Only formats with a non-empty token are kept, so ``available_formats``
    never claims a format the page gave no link for. ``candidate_controls``
    are live Playwright locators and go stale once the page reloads.
    """

    title: str
    row_index: int
    format_tokens: Dict[BookFormat, str] = field(default_factory=dict)
    product_id: Optional[str] = None
    candidate_controls: List[Any] = field(default_factory=list, repr=False, compare=False)

    def __post_init__(self):
        self.format_tokens = {
            BookFormat(fmt): token for fmt, token in self.format_tokens.items() if token
        }

    @property
    def available_formats(self) -> frozenset:
        return frozenset(self.format_tokens)

    def token_for(self, fmt: BookFormat) -> Optional[str]:
        return self.format_tokens.get(fmt)

    def formats_in_order(self, requested: Sequence[BookFormat] = FORMAT_ORDER) -> List[BookFormat]:
        wanted = set(requested)
        return [fmt for fmt in FORMAT_ORDER if fmt in wanted and fmt in self.format_tokens]


@dataclass(frozen=True)
class FormatResolution:
    success: bool
    consumed_control_index: int = -1

    @classmethod
    def failed(cls) -> "FormatResolution":
        return cls(success=False, consumed_control_index=-1)


@dataclass
class DownloadOutcome:
    title: str
    format: BookFormat
    success: bool
    saved_path: Optional[str] = None
    error: Optional[str] = None


@dataclass
class RunSummary:
    """Aggregated result of one run."""

    entries: int = 0
    outcomes: List[DownloadOutcome] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    per_entry: List[Tuple[str, List[DownloadOutcome]]] = field(default_factory=list)

    def record_entry(self, entry: CatalogEntry, outcomes: Sequence[DownloadOutcome]) -> None:
        self.entries += 1
        if not outcomes:
            self.skipped.append(entry.title)
            return
        self.outcomes.extend(outcomes)
        self.per_entry.append((entry.title, list(outcomes)))

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.success)

    def by_entry(self) -> List[Tuple[str, Dict[str, int]]]:
        """Counts per processed book in run order. Books sharing a title stay separate."""
        rows = []
        for title, outcomes in self.per_entry:
            succeeded = sum(1 for outcome in outcomes if outcome.success)
            rows.append((title, {"success": succeeded, "failed": len(outcomes) - succeeded}))
        return rows
