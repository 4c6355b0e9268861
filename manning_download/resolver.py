"""
Pick the dropdown control that serves a given format.

A row usually carries several identical-looking dropdown toggles. Only
opening one shows which download links it holds, so candidates are checked
in document order: first by their label text, then by opening them and
looking for the format's link. The first control that passes both checks
wins. On success its menu is left open for the download step; on failure
all menus are closed.
"""

from playwright.sync_api import Error as PlaywrightError

from .models import BookFormat, CatalogEntry, FormatResolution


class FormatResolver:
    def __init__(self, browser):
        self.browser = browser
        self.settings = browser.settings
        self.events = browser.events

    def resolve(self, entry: CatalogEntry, fmt: BookFormat, exclude_control_index: int = -1) -> FormatResolution:
        token = entry.token_for(fmt)
        if not token:
            self.events.warning(f"No {fmt.value} URL found for {entry.title}")
            return FormatResolution.failed()

        controls = entry.candidate_controls
        if not controls:
            self.events.warning(f"Could not find any dropdown buttons for {fmt.value}", title=entry.title)
            return FormatResolution.failed()

        self.events.debug(f"Looking for link: {token}", controls=len(controls))
        if exclude_control_index >= 0:
            self.events.debug(
                f"Excluding dropdown {exclude_control_index + 1} (already used for other format)"
            )

        self.browser.close_menus()
        for index, control in enumerate(controls):
            position = f"{index + 1}/{len(controls)}"
            if index == exclude_control_index:
                self.events.debug(f"Skipping dropdown {position} (already used)")
                continue
            try:
                if not self._label_matches(control, fmt):
                    self.events.debug(f"Dropdown {position} label does not mention {fmt.value}, skipping")
                    continue
                if self._opens_link(control, token):
                    self.events.debug(f"Found {fmt.value} link in dropdown {position}")
                    return FormatResolution(success=True, consumed_control_index=index)
            except PlaywrightError as e:
                # Detached or covered controls are just not a match.
                self.events.debug(f"Dropdown {position} could not be tested: {e}")
            self.events.debug(f"Dropdown {position} doesn't contain {fmt.value} link")

        self.browser.close_menus()
        self.events.warning(f"Could not find dropdown containing {fmt.value} link", title=entry.title)
        return FormatResolution.failed()

    def _label_matches(self, control, fmt: BookFormat) -> bool:
        # Icon-only toggles have no label and go straight to the open check.
        label = (control.text_content() or "").strip().lower()
        return not label or fmt.extension in label

    def _opens_link(self, control, token: str) -> bool:
        self.browser.close_menus()
        control.scroll_into_view_if_needed()
        control.click()
        self.browser.pause(self.settings.menu_settle_ms)
        return self.browser.visible_link(token).count() > 0
