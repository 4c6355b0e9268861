"""Run the whole flow: session, catalog scan, then every format of every book in turn."""

from typing import Callable, List, Optional

from .browser import BrowserSession
from .catalog import CatalogScanner
from .errors import CatalogNotFoundError, ResolutionFailure, StaleRowError
from .executor import DownloadExecutor
from .models import BookFormat, CatalogEntry, Credentials, DownloadOutcome, RunSummary
from .resolver import FormatResolver
from .session import SessionManager


class Orchestrator:
    def __init__(
        self,
        browser: BrowserSession,
        sessions: Optional[SessionManager] = None,
        scanner: Optional[CatalogScanner] = None,
        resolver: Optional[FormatResolver] = None,
        executor: Optional[DownloadExecutor] = None,
    ):
        self.browser = browser
        self.settings = browser.settings
        self.events = browser.events
        self.sessions = sessions or SessionManager(browser)
        self.scanner = scanner or CatalogScanner(browser)
        self.resolver = resolver or FormatResolver(browser)
        self.executor = executor or DownloadExecutor(browser)
        # The first book reuses the rows from the scan, later ones reload.
        self._listing_fresh = False

    def run(self, credentials: Callable[[], Credentials]) -> RunSummary:
        """AuthenticationError and CatalogNotFoundError propagate; nothing else does."""
        self.sessions.establish(credentials)
        self.scanner.open_listing()
        entries = self.scanner.scan()
        self._listing_fresh = True

        if self.settings.max_entries:
            entries = entries[: self.settings.max_entries]
        self.events.info(f"Found {len(entries)} books to download", books=len(entries))

        summary = RunSummary()
        for position, entry in enumerate(entries, start=1):
            self.events.info(f"Downloading book {position}/{len(entries)}: {entry.title}")
            try:
                outcomes = self.process_entry(entry)
            except Exception as e:
                self.events.error(
                    f"Unexpected error while processing {entry.title}: {e}",
                    title=entry.title,
                    error_type=type(e).__name__,
                )
                outcomes = self._fail_all(entry, self._requested(entry), str(e))
                self.browser.close_menus()
            summary.record_entry(entry, outcomes)
            self.browser.pause(self.settings.entry_pacing_ms)

        self.events.info(
            f"Run finished: {summary.succeeded} downloaded, {summary.failed} failed",
            succeeded=summary.succeeded,
            failed=summary.failed,
            skipped=len(summary.skipped),
        )
        return summary

    def process_entry(self, entry: CatalogEntry) -> List[DownloadOutcome]:
        formats = self._requested(entry)
        if not formats:
            self.events.warning(f"No downloadable formats detected for {entry.title}, skipping")
            return []

        if self._listing_fresh:
            self._listing_fresh = False
        else:
            try:
                self.scanner.open_listing()
                row = self.scanner.relocate(entry)
            except (StaleRowError, CatalogNotFoundError) as e:
                self.events.warning(f"Could not find {entry.title} after reload: {e}", title=entry.title)
                return self._fail_all(entry, formats, str(e))
            entry = self.scanner.refresh_controls(entry, row)

        outcomes = []
        consumed = -1
        for fmt in formats:
            self.events.info(f"Downloading {fmt.value}: {entry.title}")
            resolution = self.resolver.resolve(entry, fmt, exclude_control_index=consumed)
            if resolution.success:
                consumed = resolution.consumed_control_index
                control = entry.candidate_controls[consumed]
                outcome = self.executor.execute(entry, fmt, control)
            else:
                failure = ResolutionFailure(f"No dropdown exposes the {fmt.value} link")
                outcome = DownloadOutcome(entry.title, fmt, False, error=str(failure))

            if outcome.success:
                self.events.success(
                    f"{fmt.value} SUCCESS (used dropdown {consumed + 1})", title=entry.title
                )
            else:
                self.events.error(f"{fmt.value} FAILED", title=entry.title, error=outcome.error)
            outcomes.append(outcome)
            self.browser.pause(self.settings.format_pacing_ms)
        return outcomes

    def _requested(self, entry: CatalogEntry) -> List[BookFormat]:
        return entry.formats_in_order(self.settings.formats)

    def _fail_all(self, entry, formats, reason) -> List[DownloadOutcome]:
        return [DownloadOutcome(entry.title, fmt, False, error=reason) for fmt in formats]
