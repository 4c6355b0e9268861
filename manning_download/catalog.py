"""
Dashboard listing scanner.

The product table is filled in by AJAX with no "done" signal, so the scanner
polls the row count until it stops changing. Each row is then parsed into a
``CatalogEntry``: a title, one download href per format it could identify,
the product id when a download link carries one, and the row's dropdown
toggles in document order.
"""

import re
from collections import namedtuple
from dataclasses import replace
from typing import Dict, Iterable, List, Optional
from urllib.parse import parse_qs, urlsplit

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from .errors import CatalogNotFoundError, RowProcessingError, StaleRowError
from .models import BookFormat, CatalogEntry

LISTING_TABLE = "#productTable"
ROW_SELECTOR = "#productTable tbody tr"
LOADING_ROW = ".infinite-scroll-loading"
CONTROL_SELECTOR = (
    'button.dropdown-toggle, .dropdown-toggle, button[data-toggle="dropdown"], .btn-group button'
)

LinkInfo = namedtuple("LinkInfo", ["href", "text", "css_class", "title", "aria_label"])
FormatScan = namedtuple("FormatScan", ["tokens", "ambiguous_href"])

# How sure we are that a link belongs to a format. Higher wins.
GENERIC, MARKED, EXPLICIT = 1, 2, 3

_FORMAT_PARAM = re.compile(r"[?&]downloadFormat=(PDF|EPUB)\b", re.IGNORECASE)
_SLUG_MARKERS = ("/books/", "/book/")
_NON_NAVIGATING = ("#", "javascript:")
_SPACES = re.compile(r"\s+")


def product_id_from_href(href: str) -> Optional[str]:
    values = parse_qs(urlsplit(href or "").query).get("productId")
    if values and values[0].strip():
        return values[0].strip()
    return None


def is_generic_download(href: str) -> bool:
    return "/download" in (href or "") and product_id_from_href(href) is not None


def is_download_target(info: LinkInfo) -> bool:
    """False for links that only open a menu or go nowhere, such as ``#`` toggles."""
    href = (info.href or "").strip()
    if not href or href.startswith(_NON_NAVIGATING):
        return False
    return "dropdown-toggle" not in (info.css_class or "").split()


def classify_link(info: LinkInfo):
    """Return ``[(format, confidence), ...]`` for one link."""
    if not is_download_target(info):
        return []
    href = info.href.strip()

    match = _FORMAT_PARAM.search(href)
    if match:
        return [(BookFormat(match.group(1).upper()), EXPLICIT)]

    haystack = " ".join([href, info.text, info.css_class, info.title, info.aria_label]).lower()
    marked = [(fmt, MARKED) for fmt in BookFormat if fmt.extension in haystack]
    if marked:
        return marked

    if is_generic_download(href):
        return [(fmt, GENERIC) for fmt in BookFormat]
    return []


def detect_format_tokens(links: Iterable[LinkInfo], allow_generic: bool = False) -> FormatScan:
    """
    Pick one href per format out of a row's links.

    An explicit ``downloadFormat=`` parameter beats a "pdf"/"epub" mention in
    the link's attributes, which beats a bare ``/download?productId=`` link.
    Ties go to the first link in document order. Bare download links only
    count for both formats when ``allow_generic`` is set.
    """
    best: Dict[BookFormat, tuple] = {}
    ambiguous_href = None
    for info in links:
        for fmt, confidence in classify_link(info):
            if confidence == GENERIC and not allow_generic:
                ambiguous_href = ambiguous_href or info.href
                continue
            current = best.get(fmt)
            if current is None or confidence > current[0]:
                best[fmt] = (confidence, info.href)

    tokens = {fmt: href for fmt, (_, href) in best.items()}
    if allow_generic:
        generic = [href for confidence, href in best.values() if confidence == GENERIC]
        ambiguous_href = generic[0] if generic else None
    return FormatScan(tokens, ambiguous_href)


def title_from_slug(href: str) -> Optional[str]:
    """``/books/grokking-algorithms`` -> ``Grokking Algorithms``."""
    for marker in _SLUG_MARKERS:
        if marker in (href or ""):
            slug = href.split(marker, 1)[1].split("/")[0].split("?")[0].split("#")[0]
            words = slug.replace("-", " ").strip()
            if words:
                return re.sub(r"\b\w", lambda m: m.group(0).upper(), words)
    return None


def choose_title(link_text, href, alt_text, index: int) -> str:
    """Link text, then the href slug, then the cover's alt text, then ``Book {n}``."""
    text = _SPACES.sub(" ", link_text or "").strip()
    if text:
        return text
    from_slug = title_from_slug(href)
    if from_slug:
        return from_slug
    alt = _SPACES.sub(" ", alt_text or "").strip()
    if len(alt) > 3:
        return alt
    return f"Book {index + 1}"


def read_link(link) -> LinkInfo:
    return LinkInfo(
        href=link.get_attribute("href") or "",
        text=(link.text_content() or "").strip(),
        css_class=link.get_attribute("class") or "",
        title=link.get_attribute("title") or "",
        aria_label=link.get_attribute("aria-label") or "",
    )


class CatalogScanner:
    def __init__(self, browser):
        self.browser = browser
        self.settings = browser.settings
        self.events = browser.events

    def open_listing(self) -> int:
        """(Re)load the dashboard and wait until its rows settle."""
        try:
            self.browser.goto(self.settings.dashboard_url)
        except PlaywrightError as e:
            raise CatalogNotFoundError(f"Could not open the dashboard: {e}") from e
        return self.wait_for_listing()

    def wait_for_listing(self) -> int:
        page = self.browser.page
        try:
            page.wait_for_selector(LISTING_TABLE, timeout=self.settings.listing_timeout_ms)
        except PlaywrightTimeoutError as e:
            self.events.error("Product table not found on the dashboard, taking screenshot...")
            self.browser.snapshot(self.settings.debug_directory / "debug-no-books.png")
            raise CatalogNotFoundError("No product table found on the dashboard") from e
        self.events.debug("Product table found")
        return self._wait_for_stable_rows()

    def _wait_for_stable_rows(self) -> int:
        """Poll until the row count is unchanged for a few checks in a row."""
        page = self.browser.page
        rows = page.locator(ROW_SELECTOR)
        loading = page.locator(f"{ROW_SELECTOR} {LOADING_ROW}")
        interval = max(self.settings.row_poll_interval_ms, 1)
        polls = max(self.settings.row_settle_max_ms // interval, 1)

        self.events.info("Waiting for books to load...")
        last_count, stable = -1, 0
        for _ in range(polls):
            count = rows.count()
            if count > 0 and count == last_count and loading.count() == 0:
                stable += 1
                if stable >= self.settings.row_stable_checks:
                    self.events.debug(f"Row count settled at {count}")
                    return count
            else:
                stable = 0
            last_count = count
            self.browser.pause(interval)

        self.events.warning(
            "Product listing did not settle in time, continuing with what is loaded",
            rows=max(last_count, 0),
        )
        return max(last_count, 0)

    def rows(self) -> List:
        return self.browser.page.locator(ROW_SELECTOR).all()

    def scan(self) -> List[CatalogEntry]:
        self.events.info("Discovering books...")
        rows = self.rows()
        self.events.info(f"Found {len(rows)} rows in product table", rows=len(rows))

        entries = []
        for index, row in enumerate(rows):
            try:
                entry = self.parse_row(row, index)
            except (RowProcessingError, PlaywrightError) as e:
                self.events.warning(f"Could not process book row {index}: {e}", row=index)
                continue
            if entry is None:
                self.events.debug(f"Skipping loading row {index}")
                continue

            entries.append(entry)
            formats = ", ".join(fmt.value for fmt in entry.formats_in_order()) or "none"
            self.events.info(
                f"{entry.title} - formats: {formats}, dropdowns: {len(entry.candidate_controls)}",
                row=index,
                product_id=entry.product_id,
                tokens={fmt.value: token for fmt, token in entry.format_tokens.items()},
            )

        self.events.info(f"Catalog contains {len(entries)} books", books=len(entries))
        return entries

    def parse_row(self, row, index: int) -> Optional[CatalogEntry]:
        if row.locator(LOADING_ROW).count() > 0:
            return None
        cells = row.locator("td")
        if cells.count() == 0:
            raise RowProcessingError("row has no cells")

        title = self._row_title(cells.first, index)
        links = [read_link(link) for link in row.locator("a").all()]
        scan = detect_format_tokens(links, allow_generic=self.settings.generic_link_fallback)
        if scan.ambiguous_href:
            verdict = "used for both PDF and EPUB" if self.settings.generic_link_fallback else "ignored"
            self.events.warning(
                f"Download link without a format marker for {title} ({verdict})",
                href=scan.ambiguous_href,
            )

        product_id = next(
            (pid for pid in (product_id_from_href(link.href) for link in links) if pid), None
        )
        return CatalogEntry(
            title=title,
            row_index=index,
            format_tokens=scan.tokens,
            product_id=product_id,
            candidate_controls=row.locator(CONTROL_SELECTOR).all(),
        )

    def _row_title(self, cell, index: int) -> str:
        links = cell.locator("a").all()
        product_link = next(
            (link for link in links if "/book" in (link.get_attribute("href") or "")),
            links[0] if links else None,
        )
        link_text = href = alt_text = None
        if product_link is not None:
            link_text = product_link.text_content()
            href = product_link.get_attribute("href")
        images = cell.locator("img")
        if images.count() > 0:
            alt_text = images.first.get_attribute("alt")
        return choose_title(link_text, href, alt_text, index)

    def relocate(self, entry: CatalogEntry):
        """Find the entry's row again after a reload, by product id when known."""
        rows = self.rows()
        if entry.product_id:
            for row in rows:
                if self._row_product_id(row) == entry.product_id:
                    return row
            raise StaleRowError(f"Product {entry.product_id} ({entry.title}) is no longer listed")
        if entry.row_index >= len(rows):
            raise StaleRowError(
                f"Book index {entry.row_index} out of range ({len(rows)} rows after reload)"
            )
        return rows[entry.row_index]

    def refresh_controls(self, entry: CatalogEntry, row) -> CatalogEntry:
        return replace(entry, candidate_controls=row.locator(CONTROL_SELECTOR).all())

    def _row_product_id(self, row) -> Optional[str]:
        for link in row.locator("a").all():
            product_id = product_id_from_href(link.get_attribute("href") or "")
            if product_id:
                return product_id
        return None
