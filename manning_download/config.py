"""
Configuration file handling and run settings.

The JSON file only stores where things go and how patient to be. Credentials
are asked for at run time and never written to disk.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import urlsplit

from .errors import ConfigurationError
from .models import FORMAT_ORDER, BookFormat, Credentials

log = logging.getLogger(__name__)

# --- Configuration File Path ---
CONFIG_FILE = "manning_config.json"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_PATH_FIELDS = ("download_directory", "session_file", "debug_directory", "log_directory")


@dataclass
class Settings:
    download_directory: Path
    base_url: str = "https://www.manning.com"
    session_file: Path = Path("manning-cookies.json")
    debug_directory: Path = Path("debug")
    log_directory: Optional[Path] = Path("logs")
    headless: bool = False
    user_agent: str = DEFAULT_USER_AGENT
    formats: Tuple[BookFormat, ...] = FORMAT_ORDER
    max_entries: Optional[int] = None
    generic_link_fallback: bool = False

    # Timeouts and pacing, all in milliseconds.
    login_timeout_ms: int = 15000
    login_form_timeout_ms: int = 10000
    field_timeout_ms: int = 3000
    probe_timeout_ms: int = 10000
    listing_timeout_ms: int = 30000
    row_poll_interval_ms: int = 1000
    row_stable_checks: int = 3
    row_settle_max_ms: int = 30000
    menu_settle_ms: int = 800
    menu_close_ms: int = 300
    link_visible_timeout_ms: int = 3000
    click_delay_ms: int = 500
    pdf_transfer_timeout_ms: int = 30000
    epub_transfer_timeout_ms: int = 45000
    format_pacing_ms: int = 1000
    entry_pacing_ms: int = 800

    @property
    def dashboard_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/dashboard"

    @property
    def site(self) -> str:
        return urlsplit(self.base_url).hostname or self.base_url

    def transfer_timeout_ms(self, fmt: BookFormat) -> int:
        if fmt is BookFormat.EPUB:
            return self.epub_transfer_timeout_ms
        return self.pdf_transfer_timeout_ms

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        """Build settings from a loaded config dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in data.items() if key in known}

        if not values.get("download_directory"):
            raise ConfigurationError("download_directory is not configured")

        for key in _PATH_FIELDS:
            if key in values and values[key] is not None:
                values[key] = Path(values[key]).expanduser()

        if "formats" in values:
            formats = tuple(BookFormat.parse(item) for item in values["formats"] or ())
            if not formats:
                raise ConfigurationError("At least one format must be requested")
            values["formats"] = formats

        max_entries = values.get("max_entries")
        if max_entries is not None:
            if not isinstance(max_entries, int) or max_entries < 1:
                raise ConfigurationError("max_entries must be a positive integer")

        for key, value in values.items():
            if key.endswith("_ms") and (not isinstance(value, int) or value < 0):
                raise ConfigurationError(f"{key} must be a non-negative integer")

        return cls(**values)


# --- Configuration Management Functions ---
def load_config(path=CONFIG_FILE, prompt: Optional[Callable[..., str]] = None) -> Dict[str, Any]:
    """
    Load the JSON config, prompting for a download directory if none is set.

    A corrupt file is reported and treated as empty. When ``prompt`` is given
    and the directory is missing, the answer is saved back to the file.
    """
    path = Path(path)
    config: Dict[str, Any] = {}
    if path.exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                config = json.load(f)
        except json.JSONDecodeError:
            log.warning("Error reading %s. It might be corrupted, ignoring it.", path)
            config = {}
        if not isinstance(config, dict):
            raise ConfigurationError(f"{path} must contain a JSON object")

    if not config.get("download_directory") and prompt is not None:
        default_dir = os.path.join(os.getcwd(), "downloads", "manning")
        config["download_directory"] = prompt("Enter download directory", default=default_dir)
        save_config(config, path)

    return config


def save_config(config_data: Dict[str, Any], path=CONFIG_FILE) -> None:
    """Saves configuration to a JSON file."""
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config_data, f, indent=4)


def validate_credentials(identifier: str, secret: str) -> Credentials:
    identifier = (identifier or "").strip()
    if not _EMAIL.match(identifier):
        raise ConfigurationError("Please enter a valid email address")
    if not secret:
        raise ConfigurationError("Password cannot be empty")
    return Credentials(identifier=identifier, secret=secret)
