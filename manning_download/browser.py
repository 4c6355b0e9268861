"""
Browser launch and the page capability handed to every step.

There is one page for the whole run. Opening a dropdown, navigating or
clicking a download link all mutate it, so each step closes any open menu
before it hands the page back.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright
from playwright_stealth import Stealth

from .config import Settings
from .events import EventSink


def link_selector(token: str) -> str:
    """CSS selector for a visible link whose href is exactly ``token``."""
    escaped = token.replace("\\", "\\\\").replace('"', '\\"')
    return f'a[href="{escaped}"]:visible'


class BrowserSession:
    def __init__(self, page, settings: Settings, events: EventSink):
        self.page = page
        self.settings = settings
        self.events = events

    @property
    def context(self):
        return self.page.context

    def goto(self, url: str) -> None:
        self.page.goto(url, wait_until="domcontentloaded")

    def pause(self, milliseconds: int) -> None:
        if milliseconds > 0:
            self.page.wait_for_timeout(milliseconds)

    def close_menus(self) -> None:
        """Click an empty spot of the page so no dropdown stays open."""
        try:
            self.page.click("body", position={"x": 1, "y": 1}, timeout=self.settings.field_timeout_ms)
        except PlaywrightError as e:
            self.events.debug(f"Could not close open menus: {e}")
            return
        self.pause(self.settings.menu_close_ms)

    def visible_link(self, token: str):
        return self.page.locator(link_selector(token)).first

    def secondary_pages(self) -> List:
        return [other for other in self.context.pages if other is not self.page]

    def snapshot(self, path) -> Optional[Path]:
        """Save a full-page screenshot. Failures are logged, never raised."""
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            self.page.screenshot(path=str(path), full_page=True)
        except (PlaywrightError, OSError) as e:
            self.events.warning(f"Could not save debug screenshot {path.name}: {e}")
            return None
        self.events.debug(f"Saved debug screenshot to {path}", path=str(path))
        return path


@contextmanager
def open_browser(settings: Settings, events: EventSink) -> Iterator[BrowserSession]:
    """Launch a stealth Chromium with downloads enabled and yield its single page."""
    with Stealth().use_sync(sync_playwright()) as p:
        events.info("Launching browser...")
        browser = p.chromium.launch(
            headless=settings.headless,
            args=["--no-sandbox", "--disable-setuid-sandbox"],
        )
        try:
            context = browser.new_context(accept_downloads=True, user_agent=settings.user_agent)
            page = context.new_page()
            yield BrowserSession(page, settings, events)
        finally:
            events.debug("Closing browser...")
            browser.close()
