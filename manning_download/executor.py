"""
Trigger a download from an open dropdown and save the file.

The download listener is armed before the link is clicked, otherwise a fast
transfer could start before anyone is waiting for it.
"""

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from .errors import ResolutionFailure, TransferTimeout
from .models import BookFormat, CatalogEntry, DownloadOutcome
from .naming import build_filename, sanitize_filename


class DownloadExecutor:
    def __init__(self, browser):
        self.browser = browser
        self.settings = browser.settings
        self.events = browser.events

    def execute(self, entry: CatalogEntry, fmt: BookFormat, control) -> DownloadOutcome:
        page = self.browser.page
        token = entry.token_for(fmt)
        target = self.settings.download_directory / build_filename(entry.title, fmt)
        timeout_ms = self.settings.transfer_timeout_ms(fmt)

        try:
            with page.expect_download(timeout=timeout_ms) as download_info:
                link = self._reveal_link(control, token, fmt)
                self.browser.pause(self.settings.click_delay_ms)
                self._click_link(link, fmt)
                self.events.debug(f"Download link clicked, waiting up to {timeout_ms // 1000}s")
            download = download_info.value
            self.events.debug("Download started!")
            download.save_as(target)
        except PlaywrightTimeoutError:
            failure = TransferTimeout(f"No {fmt.value} download started within {timeout_ms // 1000}s")
            self.events.warning(str(failure), title=entry.title)
            self._close_stray_pages()
            return DownloadOutcome(entry.title, fmt, False, error=str(failure))
        except ResolutionFailure as e:
            self.events.error(f"Failed to download {fmt.value}: {e}", title=entry.title)
            self._snapshot(entry, fmt)
            return DownloadOutcome(entry.title, fmt, False, error=str(e))
        except Exception as e:
            self.events.error(
                f"Failed to download {fmt.value}: {e}",
                title=entry.title,
                error_type=type(e).__name__,
            )
            self._snapshot(entry, fmt)
            return DownloadOutcome(entry.title, fmt, False, error=str(e))
        finally:
            self.browser.close_menus()

        self.events.success(f"Saved: {target.name}", path=str(target))
        return DownloadOutcome(entry.title, fmt, True, saved_path=str(target))

    def _reveal_link(self, control, token: str, fmt: BookFormat):
        """Make the format's link visible, re-opening the control once if needed."""
        link = self.browser.visible_link(token)
        if self._is_ready(link):
            return link

        self.events.warning(f"Link not visible, re-opening the dropdown for {fmt.value}")
        self.browser.close_menus()
        try:
            control.click(timeout=self.settings.field_timeout_ms)
        except PlaywrightError as e:
            raise ResolutionFailure(f"Could not re-open the dropdown for {fmt.value}: {e}") from e
        self.browser.pause(self.settings.menu_settle_ms)
        link = self.browser.visible_link(token)
        if self._is_ready(link):
            return link
        raise ResolutionFailure(f"Could not find {fmt.value} link after retry")

    def _click_link(self, link, fmt: BookFormat) -> None:
        try:
            # Forced: the open menu itself can cover part of the link.
            link.click(force=True, delay=100, timeout=self.settings.field_timeout_ms)
        except PlaywrightError as e:
            raise ResolutionFailure(f"Could not click the {fmt.value} link: {e}") from e

    def _snapshot(self, entry: CatalogEntry, fmt: BookFormat) -> None:
        self.browser.snapshot(
            self.settings.debug_directory
            / f"debug-{sanitize_filename(entry.title)}-{fmt.extension}.png"
        )

    def _is_ready(self, link) -> bool:
        timeout = self.settings.link_visible_timeout_ms
        try:
            link.scroll_into_view_if_needed(timeout=timeout)
            link.wait_for(state="visible", timeout=timeout)
        except PlaywrightTimeoutError:
            return False
        return True

    def _close_stray_pages(self) -> None:
        """Close tabs the click may have opened. They are not treated as downloads."""
        strays = self.browser.secondary_pages()
        self.events.debug(f"Total pages/tabs: {len(strays) + 1}")
        for other in strays:
            self.events.debug(f"Closing extra tab: {other.url}")
            try:
                other.close()
            except PlaywrightError as e:
                self.events.debug(f"Could not close tab {other.url}: {e}")
