"""Filename helpers for saved books."""

import re

from .models import BookFormat

MAX_FILENAME_LENGTH = 150
FALLBACK_NAME = "Unknown_Book"

# Characters Windows refuses in filenames, plus ASCII control characters.
_FORBIDDEN = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_WHITESPACE = re.compile(r"\s+")
_REPEATED_UNDERSCORES = re.compile(r"_{2,}")


def sanitize_filename(name, max_length=MAX_FILENAME_LENGTH):
    """
    Turn a book title into a safe file stem.

    Forbidden characters and whitespace become underscores, runs of
    underscores collapse, and the result is trimmed and capped. Applying it
    twice gives the same result as applying it once.
    """
    if not name or not isinstance(name, str):
        return FALLBACK_NAME

    cleaned = _FORBIDDEN.sub("_", name)
    cleaned = _WHITESPACE.sub("_", cleaned)
    cleaned = _REPEATED_UNDERSCORES.sub("_", cleaned)
    cleaned = cleaned.strip("_")
    # Truncation can expose a trailing underscore again.
    cleaned = cleaned[:max_length].rstrip("_")
    return cleaned or FALLBACK_NAME


def build_filename(title, fmt: BookFormat):
    return f"{sanitize_filename(title)}.{fmt.extension}"
