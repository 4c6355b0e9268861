"""Shared fixtures and a small fake of the Playwright page used by the downloader."""

import logging
from contextlib import contextmanager
from pathlib import Path

import pytest
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from manning_download.browser import BrowserSession, link_selector
from manning_download.catalog import CONTROL_SELECTOR, LOADING_ROW, ROW_SELECTOR
from manning_download.config import Settings
from manning_download.events import LOGGER_NAME, EventSink

PDF_HREF = "/dashboard/download?productId=1001&downloadFormat=PDF"
EPUB_HREF = "/dashboard/download?productId=1001&downloadFormat=EPUB"


# ============================================================================
# Fake DOM
# ============================================================================

class FakeElement:
    """A DOM node. Controls have ``reveals`` (hrefs their menu shows), links do not."""

    def __init__(self, page=None, text="", attrs=None, children=None, reveals=None, fail_click=False):
        self.page = page
        self.text = text
        self.attrs = attrs or {}
        self.children = children or {}
        self.reveals = reveals
        self.fail_click = fail_click
        self.clicks = []

    def get_attribute(self, name):
        return self.attrs.get(name)

    def text_content(self):
        return self.text

    def click(self, **kwargs):
        if isinstance(self.fail_click, Exception):
            raise self.fail_click
        if self.fail_click:
            raise PlaywrightError("Element is not attached to the DOM")
        self.clicks.append(kwargs)
        if self.page is not None:
            self.page.element_clicked(self, kwargs)


class FakeLocator:
    def __init__(self, elements):
        self.elements = list(elements)

    def _one(self):
        if not self.elements:
            raise PlaywrightTimeoutError("Timeout 3000ms exceeded: locator resolved to 0 elements")
        return self.elements[0]

    def all(self):
        return [FakeLocator([element]) for element in self.elements]

    def count(self):
        return len(self.elements)

    @property
    def first(self):
        return FakeLocator(self.elements[:1])

    def nth(self, index):
        return FakeLocator(self.elements[index:index + 1])

    def locator(self, selector):
        return FakeLocator(
            [child for element in self.elements for child in element.children.get(selector, [])]
        )

    def get_attribute(self, name):
        return self._one().get_attribute(name)

    def text_content(self):
        return self._one().text_content()

    def click(self, **kwargs):
        self._one().click(**kwargs)

    def scroll_into_view_if_needed(self, timeout=None):
        self._one()

    def wait_for(self, state="visible", timeout=None):
        self._one()


class FakeDownload:
    def __init__(self, payload):
        self.payload = payload

    def save_as(self, path):
        Path(path).write_bytes(self.payload)


class FakeDownloadInfo:
    def __init__(self):
        self.download = None

    @property
    def value(self):
        return self.download


class FakePopup:
    def __init__(self, context, url):
        self.context = context
        self.url = url
        self.closed = False

    def close(self):
        self.closed = True
        self.context.pages.remove(self)


class FakeContext:
    def __init__(self, page):
        self.pages = [page]
        self.cookie_jar = []
        self.added = []
        self.cleared = 0

    def cookies(self):
        return list(self.cookie_jar)

    def add_cookies(self, cookies):
        self.added.append(cookies)
        self.cookie_jar = list(cookies)

    def clear_cookies(self):
        self.cleared += 1
        self.cookie_jar = []


class FakePage:
    def __init__(self):
        self.context = FakeContext(self)
        self.url = "about:blank"
        self.rows = []
        self.present = set()
        self.fillable = set()
        self.filled = {}
        self.visited = []
        self.log = []
        self.screenshots = []
        self.downloads = {}
        self.popup_on_click = {}
        self.login_accepted = True
        self.cookies_after_login = [{"name": "session", "value": "fresh", "domain": ".manning.com", "path": "/"}]
        self.open_control = None
        self.goto_error = None
        self.click_errors = {}
        self.link_click_errors = {}
        self._pending = None
        self._links = {}

    # --- navigation and waits ---
    def goto(self, url, **kwargs):
        self.visited.append(url)
        if self.goto_error is not None:
            raise self.goto_error
        self.url = url
        self.open_control = None

    def wait_for_selector(self, selector, timeout=None):
        if selector not in self.present:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {selector}")

    def wait_for_timeout(self, milliseconds):
        pass

    def wait_for_url(self, pattern, timeout=None):
        self.log.append(("wait_for_url", pattern))
        if not self.login_accepted:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {pattern}")
        self.url = "https://www.manning.com/dashboard"
        self.context.cookie_jar = list(self.cookies_after_login)

    # --- input ---
    def fill(self, selector, value, timeout=None):
        if selector not in self.fillable:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded filling {selector}")
        self.filled[selector] = value

    def click(self, selector, **kwargs):
        if selector in self.click_errors:
            raise self.click_errors[selector]
        if selector == "body":
            self.open_control = None
            self.log.append(("close_menus",))
        else:
            self.log.append(("click", selector))

    def screenshot(self, path=None, full_page=False):
        self.screenshots.append(path)

    # --- DOM queries ---
    def locator(self, selector):
        if selector == ROW_SELECTOR:
            return FakeLocator(self.rows)
        if selector == f"{ROW_SELECTOR} {LOADING_ROW}":
            return FakeLocator([c for row in self.rows for c in row.children.get(LOADING_ROW, [])])
        if self.open_control is not None:
            for href in self.open_control.reveals:
                if link_selector(href) == selector:
                    return FakeLocator([self._link(href)])
        return FakeLocator([])

    def _link(self, href):
        if href not in self._links:
            self._links[href] = FakeElement(
                self, attrs={"href": href}, fail_click=self.link_click_errors.get(href, False)
            )
        return self._links[href]

    def element_clicked(self, element, kwargs):
        if element.reveals is not None:
            self.open_control = element
            self.log.append(("open", element.text))
            return
        href = element.attrs.get("href")
        self.log.append(("click_link", href))
        if href in self.popup_on_click:
            self.context.pages.append(FakePopup(self.context, self.popup_on_click[href]))
        if self._pending is not None and href in self.downloads:
            self._pending.download = FakeDownload(self.downloads[href])

    @contextmanager
    def expect_download(self, timeout=None):
        info = FakeDownloadInfo()
        self.log.append(("armed", timeout))
        self._pending = info
        try:
            yield info
        finally:
            self._pending = None
        if info.download is None:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded while waiting for event \"download\"")


# ============================================================================
# Builders
# ============================================================================

def make_control(page, label, reveals, fail_click=False):
    return FakeElement(page, text=label, reveals=list(reveals), fail_click=fail_click)


def make_row(page, slug_href="/books/grokking-algorithms", link_text="", alt=None,
             links=(), controls=(), loading=False):
    """Build a product table row. ``links`` are dicts of attributes plus optional ``text``."""
    title_links = [FakeElement(page, text=link_text, attrs={"href": slug_href})] if slug_href else []
    images = [FakeElement(page, attrs={"alt": alt})] if alt else []
    first_cell = FakeElement(page, children={"a": title_links, "img": images})
    download_links = []
    for link in links:
        attrs = dict(link)
        text = attrs.pop("text", "")
        download_links.append(FakeElement(page, text=text, attrs=attrs))
    return FakeElement(
        page,
        children={
            "td": [first_cell, FakeElement(page)],
            "a": title_links + download_links,
            CONTROL_SELECTOR: list(controls),
            LOADING_ROW: [FakeElement(page)] if loading else [],
        },
    )


def grokking_row(page):
    controls = [make_control(page, "pdf", [PDF_HREF]), make_control(page, "epub", [EPUB_HREF])]
    links = [{"href": PDF_HREF, "class": "dropdown-item"}, {"href": EPUB_HREF, "class": "dropdown-item"}]
    return make_row(page, links=links, controls=controls)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def restore_package_logger():
    logger = logging.getLogger(LOGGER_NAME)
    level, propagate = logger.level, logger.propagate
    yield logger
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(level)
    logger.propagate = propagate


@pytest.fixture
def settings(tmp_path):
    out = tmp_path / "downloads"
    out.mkdir()
    return Settings(
        download_directory=out,
        session_file=tmp_path / "cookies.json",
        debug_directory=tmp_path / "debug",
        log_directory=None,
        row_poll_interval_ms=1,
        row_stable_checks=2,
        row_settle_max_ms=50,
    )


@pytest.fixture
def events():
    return EventSink(logging.getLogger("tests.manning_download"))


@pytest.fixture
def page():
    return FakePage()


@pytest.fixture
def browser(page, settings, events):
    return BrowserSession(page, settings, events)
