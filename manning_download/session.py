"""
Login and cookie reuse.

A saved cookie set is either trusted completely (the dashboard shows the
product table) or thrown away for the rest of the run, after which the
normal login form is used and the fresh cookies replace the old ones.
"""

import json
from pathlib import Path
from typing import Callable, Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from .browser import BrowserSession
from .catalog import LISTING_TABLE
from .errors import AuthenticationError
from .models import Credentials, SessionToken

LOGIN_FORM = 'input[type="email"], input[name="email"], input[type="password"]'

# Tried in order until one of them accepts the value.
IDENTIFIER_FIELDS = (
    'input[type="email"]',
    'input[name="email"]',
    'input:not([type="hidden"]) >> nth=0',
)
SECRET_FIELDS = (
    'input[type="password"]',
    'input[name="password"]',
    'input:not([type="hidden"]) >> nth=1',
)
SUBMIT_BUTTON = 'button:has-text("log in now"), input[type="submit"], button[type="submit"]'
DASHBOARD_URL_PATTERN = "**/dashboard**"


class SessionStore:
    """JSON file of saved cookie sets, one per site."""

    def __init__(self, path, events):
        self.path = Path(path)
        self.events = events

    def _read_all(self) -> dict:
        if not self.path.exists():
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not hold a session mapping")
        return data

    def load(self, site: str) -> Optional[SessionToken]:
        try:
            data = self._read_all()
            if site not in data:
                return None
            return SessionToken.from_dict(site, data[site])
        except (OSError, ValueError) as e:
            self.events.warning(f"Could not read saved session from {self.path}: {e}")
            return None

    def save(self, token: SessionToken) -> bool:
        """Write ``token`` over any earlier one for the same site."""
        try:
            try:
                data = self._read_all()
            except ValueError:
                data = {}
            data[token.site] = token.to_dict()
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            self.events.warning(f"Could not save session cookies: {e}")
            return False
        self.events.info(f"Saved {len(token.cookies)} cookies for future use", path=str(self.path))
        return True


class SessionManager:
    def __init__(self, browser: BrowserSession, store: Optional[SessionStore] = None):
        self.browser = browser
        self.settings = browser.settings
        self.events = browser.events
        self.store = store or SessionStore(self.settings.session_file, self.events)

    def establish(self, credentials: Callable[[], Credentials]) -> SessionToken:
        """Resume the saved session, or log in with credentials asked for only then."""
        token = self.try_resume()
        if token is not None:
            return token
        return self.authenticate(credentials())

    def try_resume(self) -> Optional[SessionToken]:
        token = self.store.load(self.settings.site)
        if token is None:
            self.events.info("No saved session found, a fresh login is needed")
            return None

        self.events.info(f"Loading {len(token.cookies)} saved cookies...")
        page = self.browser.page
        try:
            self.browser.context.add_cookies(token.cookies)
            self.browser.goto(self.settings.dashboard_url)
            page.wait_for_selector(LISTING_TABLE, timeout=self.settings.probe_timeout_ms)
        except PlaywrightError as e:
            self.events.warning("Saved cookies are expired, proceeding with manual login", error=str(e))
            # Nothing from the rejected session may leak into the fresh login.
            self.browser.context.clear_cookies()
            return None

        self.events.success("Login successful using saved cookies", site=token.site)
        return token

    def authenticate(self, credentials: Credentials) -> SessionToken:
        self.events.info("Logging in with credentials...")
        page = self.browser.page
        try:
            self.browser.goto(self.settings.dashboard_url)
        except PlaywrightError as e:
            raise AuthenticationError(f"Could not open the login page: {e}") from e

        try:
            page.wait_for_selector(LOGIN_FORM, timeout=self.settings.login_form_timeout_ms)
        except PlaywrightTimeoutError as e:
            self.browser.snapshot(self.settings.debug_directory / "debug-login-form.png")
            raise AuthenticationError("Login form did not appear") from e

        self._fill_first(IDENTIFIER_FIELDS, credentials.identifier, "email")
        self._fill_first(SECRET_FIELDS, credentials.secret, "password")

        try:
            page.click(SUBMIT_BUTTON, timeout=self.settings.field_timeout_ms)
        except PlaywrightError as e:
            self.browser.snapshot(self.settings.debug_directory / "debug-login-submit.png")
            raise AuthenticationError(f"Could not submit the login form: {e}") from e

        try:
            page.wait_for_url(DASHBOARD_URL_PATTERN, timeout=self.settings.login_timeout_ms)
        except PlaywrightTimeoutError as e:
            raise AuthenticationError(
                "Login did not reach the dashboard. Check your email and password."
            ) from e
        except PlaywrightError as e:
            raise AuthenticationError(f"Login navigation failed: {e}") from e

        token = SessionToken(site=self.settings.site, cookies=self.browser.context.cookies())
        self.store.save(token)
        self.events.success("Successfully logged in")
        return token

    def _fill_first(self, selectors, value: str, label: str) -> None:
        page = self.browser.page
        for selector in selectors:
            try:
                page.fill(selector, value, timeout=self.settings.field_timeout_ms)
            except PlaywrightError:
                self.events.debug(f"No {label} field matched {selector}")
                continue
            self.events.debug(f"Filled {label} field using {selector}")
            return
        raise AuthenticationError(f"Could not find the {label} field on the login page")
