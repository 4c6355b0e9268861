"""Download purchased Manning ebooks (PDF/EPUB) through a real browser session."""

__version__ = "0.3.0"
