"""Tests for picking the right dropdown control per format."""

import pytest

from conftest import EPUB_HREF, PDF_HREF, FakeLocator, make_control
from manning_download.models import BookFormat, CatalogEntry
from manning_download.resolver import FormatResolver


@pytest.fixture
def resolver(browser):
    return FormatResolver(browser)


def entry_with(controls, tokens=None):
    if tokens is None:
        tokens = {BookFormat.PDF: PDF_HREF, BookFormat.EPUB: EPUB_HREF}
    return CatalogEntry(
        title="Grokking Algorithms",
        row_index=0,
        format_tokens=tokens,
        product_id="1001",
        candidate_controls=[FakeLocator([control]) for control in controls],
    )


def test_labelled_controls_are_never_cross_assigned(resolver, page):
    pdf = make_control(page, "pdf", [PDF_HREF])
    epub = make_control(page, "epub", [EPUB_HREF])
    entry = entry_with([pdf, epub])

    first = resolver.resolve(entry, BookFormat.PDF)
    second = resolver.resolve(entry, BookFormat.EPUB, exclude_control_index=first.consumed_control_index)

    assert (first.success, first.consumed_control_index) == (True, 0)
    assert (second.success, second.consumed_control_index) == (True, 1)


def test_label_filter_avoids_opening_wrong_control(resolver, page):
    epub = make_control(page, "EPUB", [EPUB_HREF])
    pdf = make_control(page, "PDF", [PDF_HREF])
    entry = entry_with([epub, pdf])

    result = resolver.resolve(entry, BookFormat.PDF)

    assert result.consumed_control_index == 1
    assert epub.clicks == []
    # Menu stays open for the download step.
    assert page.open_control is pdf


def test_identical_controls_are_told_apart_by_opening_them(resolver, page):
    first = make_control(page, "pdf, epub, kindle", [EPUB_HREF])
    second = make_control(page, "pdf, epub, kindle", [PDF_HREF])
    entry = entry_with([first, second])

    result = resolver.resolve(entry, BookFormat.PDF)

    assert result.consumed_control_index == 1
    assert len(first.clicks) == 1


def test_exclusion_prevents_reusing_a_control(resolver, page):
    # Both unlabeled toggles show both links; only exclusion keeps them apart.
    both = [PDF_HREF, EPUB_HREF]
    entry = entry_with([make_control(page, "", both), make_control(page, "", both)])

    pdf = resolver.resolve(entry, BookFormat.PDF)
    epub = resolver.resolve(entry, BookFormat.EPUB, exclude_control_index=pdf.consumed_control_index)

    assert pdf.consumed_control_index == 0
    assert epub.consumed_control_index == 1


def test_excluded_only_candidate_fails(resolver, page):
    entry = entry_with([make_control(page, "", [PDF_HREF, EPUB_HREF])])

    result = resolver.resolve(entry, BookFormat.EPUB, exclude_control_index=0)

    assert result.success is False
    assert result.consumed_control_index == -1


def test_no_controls(resolver, page):
    result = resolver.resolve(entry_with([], tokens={BookFormat.PDF: PDF_HREF}), BookFormat.PDF)

    assert result.success is False
    assert result.consumed_control_index == -1


def test_missing_token_fails_fast(resolver, page):
    control = make_control(page, "epub", [EPUB_HREF])
    entry = entry_with([control], tokens={BookFormat.PDF: PDF_HREF})

    result = resolver.resolve(entry, BookFormat.EPUB)

    assert result.success is False
    assert control.clicks == []


def test_detached_control_is_skipped(resolver, page):
    broken = make_control(page, "pdf", [PDF_HREF], fail_click=True)
    working = make_control(page, "pdf", [PDF_HREF])
    entry = entry_with([broken, working])

    result = resolver.resolve(entry, BookFormat.PDF)

    assert result.consumed_control_index == 1


def test_unmatched_link_closes_menus(resolver, page):
    entry = entry_with([make_control(page, "pdf", ["/somewhere/else"])])

    result = resolver.resolve(entry, BookFormat.PDF)

    assert result.success is False
    assert page.open_control is None
    assert page.log[-1] == ("close_menus",)
